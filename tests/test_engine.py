from datetime import timedelta

import pytest

from conftest import NOW, details
from engine import checkout_total
from errors import (
    DuplicateMember,
    InsufficientStock,
    NoCardIssued,
    ResourceUnavailable,
    SplitMismatch,
    ValidationError,
)
from models import (
    CARD,
    CASH,
    EPOCH,
    HOURS_24,
    INCLUDED,
    LOCKER,
    MEMBERSHIP,
    MONTHS,
    PLAN_1_MONTH,
    PLAN_3_MONTHS,
    PLAN_CUSTOM,
    REGISTRATION,
    SEAT,
    SNACK,
    SPLIT,
    UPI,
    AllocationRequest,
    Payment,
    PlanRequest,
)
from status import member_status

ONE_MONTH = PlanRequest(PLAN_1_MONTH, 1200)


def types_of(txns):
    return sorted(t.type for t in txns)


def renew(engine, m, plan=ONE_MONTH, payment=None, **allocation):
    return engine.activate_or_renew_plan(m, plan, AllocationRequest(**allocation), payment or Payment(CASH))


# ---------- register ----------

def test_register_creates_member_without_plan(engine, store):
    result = engine.register("b1", details(), Payment(CASH))

    assert result.ok
    m = result.value
    assert m.subscription_plan is None
    assert m.expiry_date == m.join_date == NOW
    txns = store.list_transactions(member_id=m.id)
    assert [(t.type, t.amount, t.payment_mode) for t in txns] == [(REGISTRATION, 300, CASH)]


def test_register_duplicate_phone_in_same_branch(engine, store):
    assert engine.register("b1", details(), Payment(CASH)).ok

    result = engine.register("b1", details(name="Someone Else", email="other@example.com"), Payment(CASH))

    assert isinstance(result.error, DuplicateMember)
    assert len(store.list_members("b1")) == 1
    assert len(store.list_transactions("b1")) == 1


def test_register_duplicate_email_in_same_branch(engine):
    assert engine.register("b1", details(), Payment(CASH)).ok
    result = engine.register("b1", details(phone="9123456789", email="ASHA@example.com "), Payment(CASH))
    assert isinstance(result.error, DuplicateMember)


def test_retried_registration_is_not_charged_twice(engine, store):
    engine.register("b1", details(), Payment(UPI))
    engine.register("b1", details(), Payment(UPI))
    assert len(store.list_transactions("b1")) == 1


def test_same_phone_allowed_in_another_branch(engine):
    assert engine.register("b1", details(), Payment(CASH)).ok
    assert engine.register("b2", details(), Payment(CASH)).ok


def test_register_rejects_bad_details(engine, store):
    result = engine.register("b1", details(name="Al", phone="12345"), Payment(CASH))
    assert isinstance(result.error, ValidationError)
    assert len(result.error.problems) == 2
    assert store.list_members("b1") == []


def test_register_split_must_cover_fee(engine):
    assert isinstance(engine.register("b1", details(), Payment(SPLIT, 100, 100)).error, SplitMismatch)
    result = engine.register("b1", details(), Payment(SPLIT, 100, 200))
    assert result.ok


def test_register_unknown_branch(engine):
    assert isinstance(engine.register("nowhere", details(), Payment(CASH)).error, ValidationError)


# ---------- renewal ----------

def test_renewal_with_card_and_locker_split_payment(engine, store, register):
    m = register()

    result = renew(engine, m, payment=Payment(SPLIT, 800, 700), wants_card=True, wants_locker=True, locker_number="l3")

    assert result.ok, result.error
    t = result.value
    assert sum(x.amount for x in t.transactions) == 1500
    assert types_of(t.transactions) == [CARD, LOCKER, MEMBERSHIP]
    for x in t.transactions:
        if x.payment_mode == SPLIT:
            assert x.cash_amount + x.upi_amount == x.amount
    updated = store.get_member(m.id)
    assert updated.subscription_plan == PLAN_1_MONTH
    assert updated.current_plan_start_date == NOW
    assert updated.expiry_date == NOW.replace(month=11)
    assert updated.card_issued and not updated.card_returned
    assert updated.locker_assigned and updated.locker_number == "L3"
    assert len(store.list_transactions(member_id=m.id)) == 4


def test_renewal_split_mismatch_writes_nothing(engine, store, register):
    m = register()

    result = renew(engine, m, payment=Payment(SPLIT, 800, 600), wants_card=True, wants_locker=True, locker_number="L3")

    assert isinstance(result.error, SplitMismatch)
    assert store.get_member(m.id) == m
    assert len(store.list_transactions(member_id=m.id)) == 1


def test_rerenewal_does_not_recharge_existing_card_or_locker(engine, store, register, clock):
    m = register()
    renew(engine, m, wants_card=True, wants_locker=True, locker_number="L1").unwrap()
    clock.advance(days=40)

    result = renew(engine, store.get_member(m.id), wants_card=True, wants_locker=True)

    assert result.ok, result.error
    assert types_of(result.value.transactions) == [MEMBERSHIP]
    assert result.value.member.locker_number == "L1"


def test_renewal_restarts_from_now(engine, store, register, clock):
    m = register()
    renew(engine, m).unwrap()
    clock.advance(days=10)
    t = renew(engine, store.get_member(m.id), plan=PlanRequest(PLAN_3_MONTHS, 3200)).unwrap()
    assert t.member.current_plan_start_date == clock.now()
    assert t.member.expiry_date == clock.now().replace(month=1, year=2027)


def test_custom_plan_duration(engine, register):
    m = register()
    days = renew(engine, m, plan=PlanRequest(PLAN_CUSTOM, 500, custom_duration_value=15)).unwrap()
    assert days.member.expiry_date == NOW + timedelta(days=15)
    assert days.member.subscription_plan == "Custom (15 DAYS)"

    months = renew(
        engine, days.member,
        plan=PlanRequest(PLAN_CUSTOM, 500, custom_duration_value=2, custom_duration_unit=MONTHS),
    ).unwrap()
    assert months.member.expiry_date == NOW.replace(month=12)


def test_renewal_rejects_bad_plan(engine, register):
    m = register()
    result = renew(engine, m, plan=PlanRequest(PLAN_CUSTOM, 0))
    assert isinstance(result.error, ValidationError)
    assert "Duration required." in result.error.problems


def test_locker_free_with_24_hour_plan(engine, register):
    m = register()
    t = renew(
        engine, m, plan=PlanRequest(PLAN_1_MONTH, 1200, access_hours=HOURS_24), wants_locker=True, locker_number="L2"
    ).unwrap()
    assert types_of(t.transactions) == [MEMBERSHIP]
    assert t.member.locker_payment_mode == INCLUDED
    assert t.member.daily_access_hours == HOURS_24


def test_locker_held_by_active_member_blocks_renewal(engine, store, register):
    holder = register("Priya Shah")
    renew(engine, holder, wants_locker=True, locker_number="L5").unwrap()
    m = register()

    result = renew(engine, m, wants_locker=True, locker_number="L5")

    assert isinstance(result.error, ResourceUnavailable)
    assert result.error.occupant_name == "Priya Shah"
    assert store.get_member(m.id).subscription_plan is None


def test_locker_of_expired_member_can_be_reassigned(engine, store, register, clock):
    old = register("Old Holder")
    renew(engine, old, plan=PlanRequest(PLAN_CUSTOM, 300, custom_duration_value=5), wants_locker=True,
          locker_number="L5").unwrap()
    clock.advance(days=15)
    m = register()

    assert engine.check_availability("b1", LOCKER, "L5").value.available
    result = renew(engine, m, wants_locker=True, locker_number="L5")
    assert result.ok, result.error
    assert member_status(result.value.member, clock.now()) != "EXPIRED"


def test_expired_member_cannot_renew_into_reassigned_locker(engine, store, register, clock):
    old = register("Old Holder")
    renew(engine, old, plan=PlanRequest(PLAN_CUSTOM, 300, custom_duration_value=5), wants_locker=True,
          locker_number="L5").unwrap()
    clock.advance(days=15)
    renew(engine, register("New Holder"), wants_locker=True, locker_number="L5").unwrap()

    result = renew(engine, store.get_member(old.id))

    assert isinstance(result.error, ResourceUnavailable)


def test_seat_is_checked_and_released_on_expiry(engine, store, register, clock):
    a = register("Seat Holder")
    renew(engine, a, plan=PlanRequest(PLAN_CUSTOM, 300, custom_duration_value=2), seat_no="a-1").unwrap()
    b = register()

    assert isinstance(renew(engine, b, seat_no="A-1").error, ResourceUnavailable)
    clock.advance(days=3)
    t = renew(engine, store.get_member(b.id), seat_no="A-1").unwrap()
    assert t.member.seat_no == "A-1"
    assert types_of(t.transactions) == [MEMBERSHIP]


def test_resource_keys_are_scoped_per_branch(engine, register):
    renew(engine, register("North Holder", branch_id="b1"), wants_locker=True, locker_number="L1").unwrap()
    south = register("South Member", branch_id="b2")
    assert renew(engine, south, wants_locker=True, locker_number="L1").ok


def test_new_card_needs_stock(engine, store, register):
    store.update_branch_capacity("b1", 1, 5)
    renew(engine, register(), wants_card=True).unwrap()
    result = renew(engine, register(), wants_card=True)
    assert isinstance(result.error, InsufficientStock)


def test_extras_only_bills_just_the_card(engine, store, register):
    m = register()
    first = renew(engine, m).unwrap()

    t = renew(engine, first.member, plan=PlanRequest(None), wants_card=True).unwrap()

    assert [(x.type, x.amount) for x in t.transactions] == [(CARD, 100)]
    assert t.member.expiry_date == first.member.expiry_date


def test_extras_only_needs_an_active_plan(engine, register):
    result = renew(engine, register(), plan=PlanRequest(None), wants_card=True)
    assert isinstance(result.error, ValidationError)


# ---------- cards ----------

def test_issue_and_return_card(engine, store, register):
    m = renew(engine, register()).unwrap().member

    issued = engine.issue_card(m, UPI).unwrap()
    assert issued.member.card_issued and not issued.member.card_returned
    assert [(t.amount, t.payment_mode) for t in issued.transactions] == [(100, UPI)]

    returned = engine.return_card(issued.member).unwrap()
    assert returned.member.card_returned
    assert [(t.amount, t.payment_mode) for t in returned.transactions] == [(-100, UPI)]
    assert engine.card_stats("b1").available == 5


def test_return_card_without_card(engine, register):
    assert isinstance(engine.return_card(register()).error, NoCardIssued)


def test_card_cannot_be_issued_twice(engine, register):
    m = engine.issue_card(register(), CASH).unwrap().member
    assert isinstance(engine.issue_card(m, CASH).error, ValidationError)
    assert isinstance(engine.issue_card(m, SPLIT).error, ValidationError)


def test_return_card_twice(engine, register):
    m = engine.issue_card(register(), CASH).unwrap().member
    engine.return_card(m).unwrap()
    assert isinstance(engine.return_card(m).error, ValidationError)


# ---------- lockers ----------

def test_assign_locker_charges_unless_included(engine, store, register):
    paid = renew(engine, register()).unwrap().member
    free = renew(engine, register()).unwrap().member

    t = engine.assign_locker(paid, "L7", CASH).unwrap()
    assert [(x.type, x.amount) for x in t.transactions] == [(LOCKER, 200)]
    t = engine.assign_locker(free, "L8", INCLUDED).unwrap()
    assert t.transactions == []
    assert store.get_member(free.id).locker_payment_mode == INCLUDED


def test_assign_locker_occupied(engine, register):
    a = renew(engine, register("Priya Shah")).unwrap().member
    b = renew(engine, register()).unwrap().member
    engine.assign_locker(a, "L7", CASH).unwrap()

    result = engine.assign_locker(b, "l7", CASH)

    assert isinstance(result.error, ResourceUnavailable)
    assert result.error.occupant_name == "Priya Shah"


def test_assign_locker_needs_active_plan_and_stock(engine, store, register):
    assert isinstance(engine.assign_locker(register(), "L1", CASH).error, ValidationError)
    store.update_branch_capacity("b1", 5, 0)
    m = renew(engine, register()).unwrap().member
    assert isinstance(engine.assign_locker(m, "L1", CASH).error, InsufficientStock)


def test_return_locker_refunds_paid_locker(engine, store, register):
    m = renew(engine, register()).unwrap().member
    m = engine.assign_locker(m, "L7", UPI).unwrap().member

    t = engine.return_locker(m).unwrap()

    assert [(x.amount, x.payment_mode) for x in t.transactions] == [(-200, UPI)]
    updated = store.get_member(m.id)
    assert not updated.locker_assigned and updated.locker_number is None
    assert engine.check_availability("b1", LOCKER, "L7").value.available


def test_return_included_locker_has_no_refund(engine, register):
    m = renew(engine, register()).unwrap().member
    m = engine.assign_locker(m, "L7", INCLUDED).unwrap().member
    assert engine.return_locker(m).unwrap().transactions == []
    assert isinstance(engine.return_locker(m).error, ValidationError)


# ---------- admin ----------

def test_clear_plan_resets_member_and_keeps_registration(engine, store, register):
    m = register()
    renew(engine, m, wants_card=True, wants_locker=True, locker_number="L1", seat_no="B-2").unwrap()

    cleared = engine.clear_plan([store.get_member(m.id)]).unwrap()

    after = store.get_member(m.id)
    assert cleared == [after]
    assert after.subscription_plan is None
    assert after.expiry_date == EPOCH
    assert after.card_issued and after.card_returned
    assert not after.locker_assigned and after.locker_number is None
    assert after.seat_no is None
    assert [t.type for t in store.list_transactions(member_id=m.id)] == [REGISTRATION]
    assert engine.locker_stats("b1").available == 5
    assert engine.card_stats("b1").available == 5


def test_clear_plan_needs_members(engine):
    assert isinstance(engine.clear_plan([]).error, ValidationError)


def test_delete_members_cascades_to_transactions(engine, store, register):
    m = register()
    keep = register()
    renew(engine, m).unwrap()

    assert engine.delete_members([m.id]).unwrap() == 1

    assert store.get_member(m.id) is None
    assert store.list_transactions(member_id=m.id) == []
    assert len(store.list_transactions(member_id=keep.id)) == 1


def test_set_branch_capacity(engine, store, register):
    m = renew(engine, register(), wants_card=True).unwrap().member
    engine.assign_locker(m, "L1", CASH).unwrap()

    branch = engine.set_branch_capacity("b1", total_cards=20).unwrap()
    assert (branch.total_cards, branch.total_lockers) == (20, 5)

    assert isinstance(engine.set_branch_capacity("b1", total_cards=0).error, ValidationError)
    assert isinstance(engine.set_branch_capacity("b1", total_lockers=-3).error, ValidationError)
    assert store.get_branch("b1").total_lockers == 5


# ---------- old member entry & snacks ----------

def test_enroll_existing_member_backdates_plan(engine, store):
    t = engine.enroll_existing_member(
        "b1",
        details(email=""),
        ONE_MONTH,
        AllocationRequest(wants_card=True),
        Payment(SPLIT, 800, 499),
        days_passed=20,
    ).unwrap()

    m = store.get_member(t.member.id)
    assert m.join_date == NOW - timedelta(days=20)
    assert m.expiry_date == (NOW - timedelta(days=20)).replace(month=10, day=27)
    assert m.email is None
    assert types_of(t.transactions) == [CARD, MEMBERSHIP]
    assert sum(x.amount for x in t.transactions) == 1300
    assert REGISTRATION not in [x.type for x in store.list_transactions(member_id=m.id)]


def test_enroll_existing_member_strict_beyond_one_rupee(engine):
    result = engine.enroll_existing_member(
        "b1", details(), ONE_MONTH, AllocationRequest(), Payment(SPLIT, 800, 398), days_passed=3
    )
    assert isinstance(result.error, SplitMismatch)


def test_enroll_existing_member_checks_duplicates(engine):
    engine.register("b1", details(), Payment(CASH)).unwrap()
    result = engine.enroll_existing_member("b1", details(), ONE_MONTH, AllocationRequest(), Payment(CASH), 1)
    assert isinstance(result.error, DuplicateMember)


def test_record_snack_sale(engine, store):
    txn = engine.record_snack_sale("b1", 45, "Tea + biscuits", Payment(SPLIT, 15, 30)).unwrap()
    assert (txn.type, txn.member_id, txn.cash_amount, txn.upi_amount) == (SNACK, None, 15, 30)
    assert store.list_transactions("b1") == [txn]
    assert isinstance(engine.record_snack_sale("b1", 0, "Tea", Payment(CASH)).error, ValidationError)


def test_check_availability_for_seat(engine, register):
    renew(engine, register("Seat Holder"), seat_no="C-3").unwrap()
    result = engine.check_availability("b1", SEAT, "c-3")
    assert result.ok and not result.value.available
    assert result.value.occupant_name == "Seat Holder"


def test_checkout_total_matches_what_renewal_charges(engine, register):
    m = register()
    both = AllocationRequest(wants_card=True, wants_locker=True, locker_number="L4")
    assert checkout_total(m, ONE_MONTH, both) == 1500
    assert checkout_total(None, PlanRequest(PLAN_1_MONTH, 1200, access_hours=HOURS_24), both) == 1300

    t = engine.activate_or_renew_plan(m, ONE_MONTH, both, Payment(SPLIT, 500, 1000)).unwrap()
    assert sum(x.amount for x in t.transactions) == 1500
    assert checkout_total(t.member, ONE_MONTH, both) == 1200
    assert checkout_total(t.member, PlanRequest(None), both) == 0


def test_snack_sale_without_description(engine):
    txn = engine.record_snack_sale("b1", 20, None, Payment(CASH)).unwrap()
    assert txn.description == "Snack sale"
