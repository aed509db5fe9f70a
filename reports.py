"""
reports.py
Revenue and dashboard summaries over members and transactions.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta

import pandas as pd

from models import CASH, EXPIRED, EXPIRING, SNACK, SPLIT, UPI, Member, Transaction
from status import member_status

TRANSACTION_COLUMNS = [
    "id", "timestamp", "type", "amount", "payment_mode", "cash_amount", "upi_amount",
    "description", "member_id", "branch_id",
]


def transactions_frame(txns: list[Transaction]) -> pd.DataFrame:
    """One row per transaction, with the cash and UPI share of each amount."""
    if not txns:
        return pd.DataFrame(columns=TRANSACTION_COLUMNS + ["cash_part", "upi_part"])
    df = pd.DataFrame([asdict(t) for t in txns])[TRANSACTION_COLUMNS]
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    mode = df["payment_mode"]
    cash = pd.to_numeric(df["cash_amount"], errors="coerce").fillna(0)
    upi = pd.to_numeric(df["upi_amount"], errors="coerce").fillna(0)
    df["cash_part"] = df["amount"].where(mode == CASH, 0).where(mode != SPLIT, cash)
    df["upi_part"] = df["amount"].where(mode == UPI, 0).where(mode != SPLIT, upi)
    return df


def revenue(
    txns: list[Transaction],
    now: datetime,
    days: int | None = None,
    mode: str = "ALL",
    types: tuple[str, ...] | None = None,
) -> int:
    """
    Sum of amounts in the last `days` days (all time if None). mode CASH/UPI
    counts full payments in that mode plus that side of SPLIT payments.
    """
    df = transactions_frame(txns)
    if df.empty:
        return 0
    if days is not None:
        df = df[df["timestamp"] >= pd.Timestamp(now - timedelta(days=days))]
    if types:
        df = df[df["type"].isin(types)]
    column = {"ALL": "amount", CASH: "cash_part", UPI: "upi_part"}[mode]
    return int(df[column].sum())


def revenue_overview(txns: list[Transaction], now: datetime, mode: str = "ALL") -> dict:
    return {
        "daily": revenue(txns, now, 1, mode),
        "weekly": revenue(txns, now, 7, mode),
        "monthly": revenue(txns, now, 30, mode),
        "total": revenue(txns, now, None, mode),
        "snacks_monthly": revenue(txns, now, 30, mode, types=(SNACK,)),
    }


def revenue_by_month(txns: list[Transaction]) -> pd.DataFrame:
    df = transactions_frame(txns)
    if df.empty:
        return pd.DataFrame(columns=["month"])
    df["month"] = df["timestamp"].dt.strftime("%Y-%m")
    table = df.pivot_table(index="month", columns="type", values="amount", aggfunc="sum", fill_value=0)
    table["total"] = table.sum(axis=1)
    return table.reset_index().sort_values("month", ascending=False).reset_index(drop=True)


def member_buckets(members: list[Member], now: datetime) -> dict[str, list[Member]]:
    buckets = {"active": [], "expiring": [], "expired": [], "registered_only": []}
    for m in members:
        if not m.has_plan:
            buckets["registered_only"].append(m)
            continue
        status = member_status(m, now)
        if status == EXPIRED:
            buckets["expired"].append(m)
        else:
            buckets["active"].append(m)
            if status == EXPIRING:
                buckets["expiring"].append(m)
    return buckets


def members_frame(members: list[Member], now: datetime) -> pd.DataFrame:
    columns = [
        "id", "full_name", "phone", "subscription_plan", "daily_access_hours", "expiry_date",
        "card_issued", "card_returned", "locker_number", "seat_no",
    ]
    if not members:
        return pd.DataFrame(columns=columns + ["status"])
    df = pd.DataFrame([asdict(m) for m in members])[columns]
    df["status"] = [member_status(m, now) if m.has_plan else "REGISTERED" for m in members]
    return df.sort_values("expiry_date").reset_index(drop=True)
