"""
billing.py
Checkout totals and CASH/UPI/SPLIT payment checks.
"""

from __future__ import annotations

from errors import SplitMismatch, ValidationError
from models import CARD_FEE, CASH, LOCKER_FEE, PAYMENT_MODES, SPLIT, UPI, Payment

STRICT = "strict"
LEGACY_TOLERANT = "legacy_tolerant"

# Old-member backfill entries were keyed in by hand with rounded rupees
LEGACY_TOLERANCE = 1


def compute_total(
    plan_fee: int,
    wants_card: bool,
    already_has_card: bool,
    wants_locker: bool,
    already_has_locker: bool,
    locker_free_with_plan: bool,
) -> int:
    total = int(plan_fee)
    if wants_card and not already_has_card:
        total += CARD_FEE
    if wants_locker and not already_has_locker and not locker_free_with_plan:
        total += LOCKER_FEE
    return total


def validate_split(total: int, cash: int, upi: int, mode: str = STRICT) -> None:
    slack = LEGACY_TOLERANCE if mode == LEGACY_TOLERANT else 0
    if abs((cash + upi) - total) > slack:
        raise SplitMismatch(total, cash, upi)


def validate_payment(total: int, payment: Payment, mode: str = STRICT) -> None:
    if payment.mode not in PAYMENT_MODES:
        raise ValidationError(f"Unknown payment mode: {payment.mode}")
    if payment.mode != SPLIT:
        return
    if payment.cash_amount < 0 or payment.upi_amount < 0:
        raise ValidationError("Split amounts cannot be negative.")
    if payment.cash_amount <= 0 and payment.upi_amount <= 0:
        raise ValidationError("Enter at least one payment amount.")
    validate_split(total, payment.cash_amount, payment.upi_amount, mode)


def allocate_payment(amounts: list[int], payment: Payment) -> list[tuple[str, int | None, int | None]]:
    """
    Spread one checkout payment over its ledger entries.

    Returns (payment_mode, cash_amount, upi_amount) per amount. A SPLIT payment
    pays entries with cash first, then UPI; each entry keeps cash + upi == amount,
    so an entry paid from one source is recorded as plain CASH or UPI.
    """
    if payment.mode != SPLIT:
        return [(payment.mode, None, None) for _ in amounts]

    # Any legacy rounding slack is absorbed on the UPI side
    cash_left = payment.cash_amount
    out = []
    for amount in amounts:
        cash = max(0, min(cash_left, amount))
        upi = amount - cash
        cash_left -= cash
        if upi == 0:
            out.append((CASH, None, None))
        elif cash == 0:
            out.append((UPI, None, None))
        else:
            out.append((SPLIT, cash, upi))
    return out
