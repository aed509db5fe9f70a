"""
capacity.py
Card and locker stock per branch.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from errors import InsufficientStock, ValidationError
from models import Branch, Member
from status import is_current


@dataclass(frozen=True)
class Stock:
    total: int
    in_circulation: int
    not_returned: int
    available: int

    @property
    def in_use(self) -> int:
        return self.in_circulation + self.not_returned


def available(total: int, in_circulation: int, not_returned: int = 0) -> int:
    # Under-provisioning shows up as zero stock, not an error
    return max(0, total - in_circulation - not_returned)


def card_stats(branch: Branch, members: Iterable[Member], now: datetime) -> Stock:
    in_circ = 0
    not_returned = 0
    for m in members:
        # returned cards are back in stock whatever the member's status
        if not m.holds_card:
            continue
        if is_current(m, now):
            in_circ += 1
        else:
            not_returned += 1
    total = int(branch.total_cards or 0)
    return Stock(total, in_circ, not_returned, available(total, in_circ, not_returned))


def locker_stats(branch: Branch, members: Iterable[Member], now: datetime) -> Stock:
    in_use = sum(1 for m in members if m.locker_assigned and is_current(m, now))
    total = int(branch.total_lockers or 0)
    return Stock(total, in_use, 0, available(total, in_use))


def require_stock(stock: Stock, what: str) -> None:
    if stock.available <= 0:
        raise InsufficientStock(f"No {what} available to issue ({stock.in_use} of {stock.total} in use).")


def validate_new_total(new_total, stock: Stock, what: str) -> int:
    """Capacity edits may not go negative or below what is already handed out."""
    try:
        value = int(new_total)
    except (TypeError, ValueError):
        raise ValidationError(f"Total {what} must be a whole number.")
    if value < 0:
        raise ValidationError(f"Total {what} cannot be negative.")
    if value < stock.in_use:
        raise ValidationError(f"Cannot set total {what} below {stock.in_use} ({what} currently in use).")
    return value
