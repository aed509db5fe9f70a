from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from db import Store
from engine import MembershipTransitionEngine
from models import Branch, Member, Payment, PersonalDetails

NOW = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, instant: datetime = NOW):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant

    def advance(self, **kwargs) -> None:
        self.instant += timedelta(**kwargs)


def details(name="Asha Kumar", phone="9876543210", email="asha@example.com") -> PersonalDetails:
    return PersonalDetails(
        full_name=name,
        phone=phone,
        email=email,
        address="21 Station Road, North City",
        study_purpose="UPSC",
        registered_by="Ravi",
    )


def member(name="Holder", expiry=NOW, member_id=None, **kwargs) -> Member:
    return Member(
        id=member_id or name.lower().replace(" ", "-"),
        branch_id="b1",
        full_name=name,
        phone="9000000000",
        email=None,
        address="Somewhere 1",
        study_purpose="Exams",
        registered_by="Desk",
        join_date=NOW - timedelta(days=60),
        expiry_date=expiry,
        subscription_plan=kwargs.pop("subscription_plan", "1 Month"),
        **kwargs,
    )


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(tmp_path):
    s = Store(tmp_path / "library.db", timeout=0.2)
    s.init_db()
    s.save_branch(Branch(id="b1", name="North Campus Library", total_cards=5, total_lockers=5))
    s.save_branch(Branch(id="b2", name="South City Reading Room", total_cards=5, total_lockers=5))
    return s


@pytest.fixture
def engine(store, clock):
    return MembershipTransitionEngine(store, clock)


@pytest.fixture
def register(engine):
    counter = {"n": 0}

    def _register(name="Asha Kumar", branch_id="b1", phone=None, email=None):
        counter["n"] += 1
        n = counter["n"]
        result = engine.register(
            branch_id,
            details(name=name, phone=phone or f"98765000{n:02d}", email=email or f"member{n}@example.com"),
            Payment("CASH"),
        )
        assert result.ok, result.error
        return result.value

    return _register
