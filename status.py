"""
status.py
Membership status derived from dates. Nothing else in the project compares
expiry dates against "now".
"""

from __future__ import annotations

from datetime import datetime, timedelta

from models import ACTIVE, EXPIRED, EXPIRING, Member

EXPIRING_WINDOW = timedelta(days=3)


def classify(expiry: datetime, now: datetime) -> str:
    if expiry < now:
        return EXPIRED
    if expiry <= now + EXPIRING_WINDOW:
        return EXPIRING
    return ACTIVE


def member_status(member: Member, now: datetime) -> str:
    return classify(member.expiry_date, now)


def is_current(member: Member, now: datetime) -> bool:
    """True for ACTIVE and EXPIRING members (the ones that hold resources)."""
    return member_status(member, now) != EXPIRED
