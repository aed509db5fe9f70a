"""
models.py
Lightweight domain records (members, branches, transactions) and fee tables.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

# Membership status (see status.classify)
ACTIVE = "ACTIVE"
EXPIRING = "EXPIRING"
EXPIRED = "EXPIRED"

# Transaction types
REGISTRATION = "REGISTRATION"
MEMBERSHIP = "MEMBERSHIP"
CARD = "CARD"
LOCKER = "LOCKER"
SNACK = "SNACK"
TRANSACTION_TYPES = (REGISTRATION, MEMBERSHIP, CARD, LOCKER, SNACK)

# Payment modes. INCLUDED only applies to lockers bundled with a plan.
CASH = "CASH"
UPI = "UPI"
SPLIT = "SPLIT"
INCLUDED = "INCLUDED"
PAYMENT_MODES = (CASH, UPI, SPLIT)

# Allocatable resource kinds checked by the ledger
SEAT = "SEAT"
RESOURCE_KINDS = (LOCKER, SEAT)

# Fees in whole rupees
REGISTRATION_FEE = 300
CARD_FEE = 100
LOCKER_FEE = 200

PLAN_1_MONTH = "1 Month"
PLAN_3_MONTHS = "3 Months"
PLAN_6_MONTHS = "6 Months"
PLAN_CUSTOM = "Custom"

# Plan durations in months (used for expiry auto-calculation)
PLAN_MONTHS = {
    PLAN_1_MONTH: 1,
    PLAN_3_MONTHS: 3,
    PLAN_6_MONTHS: 6,
}

# Default prices; Custom is priced by the desk
PLAN_PRICES = {
    PLAN_1_MONTH: 1200,
    PLAN_3_MONTHS: 3200,
    PLAN_6_MONTHS: 6000,
    PLAN_CUSTOM: 0,
}

DAYS = "DAYS"
MONTHS = "MONTHS"

HOURS_6 = "6 Hours"
HOURS_12 = "12 Hours"
HOURS_24 = "24 Hours"
HOURS_CUSTOM = "Custom Hours"
ACCESS_HOURS = (HOURS_6, HOURS_12, HOURS_24, HOURS_CUSTOM)

# Access tiers that come with a free locker
FREE_LOCKER_TIERS = frozenset({HOURS_24})

# Expiry written by clear_plan
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class PersonalDetails:
    full_name: str
    phone: str
    email: str | None
    address: str
    study_purpose: str
    registered_by: str


@dataclass(frozen=True)
class Member:
    id: str
    branch_id: str
    full_name: str
    phone: str
    email: str | None
    address: str
    study_purpose: str
    registered_by: str
    join_date: datetime
    expiry_date: datetime
    subscription_plan: str | None = None  # None = registered only
    daily_access_hours: str | None = None
    current_plan_start_date: datetime | None = None
    card_issued: bool = False
    card_payment_mode: str | None = None
    card_returned: bool = False
    locker_assigned: bool = False
    locker_payment_mode: str | None = None  # CASH/UPI/SPLIT/INCLUDED
    locker_number: str | None = None
    seat_no: str | None = None

    @property
    def has_plan(self) -> bool:
        return bool(self.subscription_plan)

    @property
    def holds_card(self) -> bool:
        return self.card_issued and not self.card_returned

    def resource_key(self, kind: str) -> str | None:
        return self.locker_number if kind == LOCKER else self.seat_no


@dataclass(frozen=True)
class Branch:
    id: str
    name: str
    location: str = ""
    email: str = ""
    total_cards: int = 0
    total_lockers: int = 0


@dataclass(frozen=True)
class Transaction:
    id: str
    branch_id: str
    type: str
    amount: int  # negative for refunds
    payment_mode: str
    timestamp: datetime
    description: str = ""
    member_id: str | None = None
    cash_amount: int | None = None  # SPLIT only
    upi_amount: int | None = None  # SPLIT only
    status: str = "COMPLETED"


@dataclass(frozen=True)
class Payment:
    """How the desk was paid for one checkout."""

    mode: str  # CASH/UPI/SPLIT
    cash_amount: int = 0
    upi_amount: int = 0


@dataclass(frozen=True)
class PlanRequest:
    """
    A plan purchase. plan=None means extras only: the current plan is kept
    and only card/locker/seat changes are billed.
    """

    plan: str | None
    price: int = 0
    access_hours: str = HOURS_6
    custom_access_hours: int | None = None
    custom_duration_value: int | None = None
    custom_duration_unit: str = DAYS

    @property
    def label(self) -> str | None:
        if self.plan == PLAN_CUSTOM:
            return f"Custom ({self.custom_duration_value} {self.custom_duration_unit})"
        return self.plan

    @property
    def access_label(self) -> str:
        if self.access_hours == HOURS_CUSTOM:
            return f"{self.custom_access_hours} Hours"
        return self.access_hours

    @property
    def locker_free(self) -> bool:
        return self.access_hours in FREE_LOCKER_TIERS


@dataclass(frozen=True)
class AllocationRequest:
    wants_card: bool = False
    wants_locker: bool = False
    locker_number: str | None = None
    seat_no: str | None = None


@dataclass(frozen=True)
class Transition:
    """Member record after an operation plus the ledger entries it produced."""

    member: Member | None
    transactions: list[Transaction] = field(default_factory=list)
    previous: Member | None = None
