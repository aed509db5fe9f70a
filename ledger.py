"""
ledger.py
Who holds a locker or seat right now, and can it be handed out.

A resource held only by EXPIRED members is free straight away; seats never need
a return step. Lockers and cards have their own return events in the engine
because money is refunded for them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from errors import ResourceUnavailable, ValidationError
from models import LOCKER, RESOURCE_KINDS, Member
from status import is_current


@dataclass(frozen=True)
class Availability:
    available: bool
    occupant_name: str | None = None
    note: str | None = None


def normalize_key(key: str | None) -> str:
    return (key or "").strip().upper()


def holders(kind: str, key: str, members: Iterable[Member], exclude_member_id: str | None = None) -> list[Member]:
    wanted = normalize_key(key)
    return [
        m for m in members
        if m.id != exclude_member_id and normalize_key(m.resource_key(kind)) == wanted
    ]


def check_availability(
    kind: str,
    key: str,
    members: Iterable[Member],
    now: datetime,
    exclude_member_id: str | None = None,
) -> Availability:
    if kind not in RESOURCE_KINDS:
        raise ValidationError(f"Unknown resource kind: {kind}")
    if not normalize_key(key):
        raise ValidationError(f"{_label(kind)} number is required.")

    found = holders(kind, key, members, exclude_member_id)
    if not found:
        return Availability(available=True)

    for m in found:
        if is_current(m, now):
            return Availability(
                available=False,
                occupant_name=m.full_name,
                note=f"{_label(kind)} is currently occupied by active member: {m.full_name}",
            )

    return Availability(
        available=True,
        note=f"Available (previously held by expired member: {found[0].full_name})",
    )


def require_available(
    kind: str,
    key: str,
    members: Iterable[Member],
    now: datetime,
    exclude_member_id: str | None = None,
) -> Availability:
    result = check_availability(kind, key, members, now, exclude_member_id)
    if not result.available:
        raise ResourceUnavailable(result.note, occupant_name=result.occupant_name)
    return result


def _label(kind: str) -> str:
    return "Locker" if kind == LOCKER else "Seat"
