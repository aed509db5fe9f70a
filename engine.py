"""
engine.py
Membership lifecycle and resource allocation for one front desk.

Plan state per member:
    UNREGISTERED -> REGISTERED_NO_PLAN -> ACTIVE/EXPIRING -> EXPIRED -> ACTIVE (renewal)
Card, locker and seat grants are flags on top of that state.

Each operation reads the clock once, then does its checks and writes inside a
single Store.transaction(), so the checks hold at write time. If the member row
was written but the ledger entries were not, the member row is put back; if
that also fails the operation raises FatalInconsistency.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import fields, replace
from datetime import datetime, timedelta

import billing
import capacity
import ledger
from errors import (
    DuplicateMember,
    FatalInconsistency,
    NoCardIssued,
    PersistenceFailure,
    ValidationError,
    returns_result,
)
from models import (
    CARD,
    CARD_FEE,
    CASH,
    EPOCH,
    FREE_LOCKER_TIERS,
    INCLUDED,
    LOCKER,
    LOCKER_FEE,
    MEMBERSHIP,
    REGISTRATION,
    REGISTRATION_FEE,
    SEAT,
    SNACK,
    UPI,
    AllocationRequest,
    Branch,
    Member,
    Payment,
    PersonalDetails,
    PlanRequest,
    Transaction,
    Transition,
)
from status import is_current
from utils import plan_expiry, validate_personal_details, validate_plan_request

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def clean_details(details: PersonalDetails) -> PersonalDetails:
    email = (details.email or "").strip().lower() or None
    return PersonalDetails(
        full_name=details.full_name.strip(),
        phone=details.phone.strip(),
        email=email,
        address=details.address.strip(),
        study_purpose=details.study_purpose.strip(),
        registered_by=details.registered_by.strip(),
    )


def new_member(branch_id: str, details: PersonalDetails, joined: datetime) -> Member:
    """A registered member with no plan: expiry equals join date."""
    return Member(
        id=new_id(),
        branch_id=branch_id,
        full_name=details.full_name,
        phone=details.phone,
        email=details.email,
        address=details.address,
        study_purpose=details.study_purpose,
        registered_by=details.registered_by,
        join_date=joined,
        expiry_date=joined,
    )


def member_changes(before: Member, after: Member) -> dict:
    return {
        f.name: getattr(after, f.name)
        for f in fields(Member)
        if f.name != "id" and getattr(before, f.name) != getattr(after, f.name)
    }


def make_transactions(
    member: Member | None,
    branch_id: str,
    entries: list[tuple[str, int, str]],
    payment: Payment,
    now: datetime,
) -> list[Transaction]:
    """entries are (type, amount, description); payment is spread over them."""
    splits = billing.allocate_payment([amount for _, amount, _ in entries], payment)
    return [
        Transaction(
            id=new_id(),
            branch_id=branch_id,
            member_id=member.id if member else None,
            type=txn_type,
            amount=amount,
            payment_mode=mode,
            cash_amount=cash,
            upi_amount=upi,
            description=description,
            timestamp=now,
        )
        for (txn_type, amount, description), (mode, cash, upi) in zip(entries, splits)
    ]


def plan_charges(member: Member | None, plan: PlanRequest) -> tuple[int, bool]:
    """(plan fee, locker included) for a checkout. Extras-only keeps the current tier."""
    if plan.plan is None:
        return 0, member is not None and member.daily_access_hours in FREE_LOCKER_TIERS
    return plan.price, plan.locker_free


def checkout_total(member: Member | None, plan: PlanRequest, allocation: AllocationRequest) -> int:
    """What build_renewal will charge; member=None for someone not yet on file."""
    plan_fee, locker_free = plan_charges(member, plan)
    return billing.compute_total(
        plan_fee,
        allocation.wants_card,
        member is not None and member.holds_card,
        allocation.wants_locker,
        member is not None and member.locker_assigned,
        locker_free,
    )


def build_renewal(
    member: Member,
    branch: Branch,
    branch_members: list[Member],
    plan: PlanRequest,
    allocation: AllocationRequest,
    payment: Payment,
    now: datetime,
    start: datetime | None = None,
    split_mode: str = billing.STRICT,
) -> Transition:
    """
    Work out a plan purchase/renewal with its card, locker and seat changes.

    Existing grants are never re-charged and are only released through
    return_card/return_locker. plan.plan=None bills extras against the
    current plan without touching its dates.
    """
    problems = validate_plan_request(plan)
    if problems:
        raise ValidationError(problems=problems)

    extras_only = plan.plan is None
    if extras_only and not (member.has_plan and is_current(member, now)):
        raise ValidationError("Member has no active plan. Choose a plan to purchase.")

    others = [m for m in branch_members if m.id != member.id]

    # Locker: requested key, or the one already held
    has_locker = member.locker_assigned
    new_locker = allocation.wants_locker and not has_locker
    locker_key = ledger.normalize_key(allocation.locker_number) or (member.locker_number if has_locker else "")
    if new_locker and not locker_key:
        raise ValidationError("Locker number is required.")
    if has_locker or new_locker:
        ledger.require_available(LOCKER, locker_key, others, now)
    if new_locker:
        capacity.require_stock(capacity.locker_stats(branch, branch_members, now), "lockers")

    new_card = allocation.wants_card and not member.holds_card
    if new_card:
        capacity.require_stock(capacity.card_stats(branch, branch_members, now), "cards")

    seat_key = ledger.normalize_key(allocation.seat_no) or member.seat_no
    if seat_key:
        ledger.require_available(SEAT, seat_key, others, now)

    plan_fee, locker_free = plan_charges(member, plan)
    total = checkout_total(member, plan, allocation)
    if total > 0:
        billing.validate_payment(total, payment, split_mode)

    entries = []
    if plan_fee:
        entries.append((MEMBERSHIP, plan_fee, f"Membership ({plan.label} - {plan.access_label}) - {member.full_name}"))
    if new_card:
        entries.append((CARD, CARD_FEE, f"Library card issued - {member.full_name}"))
    if new_locker and not locker_free:
        entries.append((LOCKER, LOCKER_FEE, f"Locker {locker_key} assigned - {member.full_name}"))
    txns = make_transactions(member, member.branch_id, entries, payment, now)
    mode_by_type = {t.type: t.payment_mode for t in txns}

    updated = member
    if not extras_only:
        plan_start = start or now
        updated = replace(
            updated,
            subscription_plan=plan.label,
            daily_access_hours=plan.access_label,
            current_plan_start_date=plan_start,
            expiry_date=plan_expiry(plan_start, plan),
        )
    if new_card:
        updated = replace(updated, card_issued=True, card_returned=False, card_payment_mode=mode_by_type[CARD])
    if new_locker:
        updated = replace(
            updated,
            locker_assigned=True,
            locker_payment_mode=INCLUDED if locker_free else mode_by_type[LOCKER],
        )
    if has_locker or new_locker:
        updated = replace(updated, locker_number=locker_key)
    updated = replace(updated, seat_no=seat_key or None)

    return Transition(member=updated, transactions=txns, previous=member)


class MembershipTransitionEngine:
    def __init__(self, store, clock):
        self.store = store
        self.clock = clock

    # ---------- Lookups ----------

    def _branch(self, branch_id: str) -> Branch:
        branch = self.store.get_branch(branch_id)
        if branch is None:
            raise ValidationError(f"Unknown branch: {branch_id}")
        return branch

    def _reload(self, member: Member) -> Member:
        current = self.store.get_member(member.id)
        if current is None:
            raise ValidationError(f"Member {member.full_name} no longer exists.")
        return current

    def _ensure_unique_contact(self, branch_id: str, details: PersonalDetails) -> None:
        existing = self.store.find_member_by_contact(branch_id, details.phone, details.email)
        if existing is not None:
            raise DuplicateMember("A member with this Phone or Email already exists in this branch.")

    def card_stats(self, branch_id: str) -> capacity.Stock:
        return capacity.card_stats(self._branch(branch_id), self.store.list_members(branch_id), self.clock.now())

    def locker_stats(self, branch_id: str) -> capacity.Stock:
        return capacity.locker_stats(self._branch(branch_id), self.store.list_members(branch_id), self.clock.now())

    @returns_result
    def check_availability(
        self, branch_id: str, kind: str, key: str, exclude_member_id: str | None = None
    ) -> ledger.Availability:
        holders = self.store.find_members_by_resource_key(branch_id, kind, ledger.normalize_key(key))
        return ledger.check_availability(kind, key, holders, self.clock.now(), exclude_member_id)

    # ---------- Writes ----------

    def _write_transactions(self, txns: list[Transaction], undo, what: str) -> None:
        try:
            self.store.insert_transactions(txns)
        except PersistenceFailure as e:
            logger.error("%s: ledger write failed, undoing member change: %s", what, e)
            try:
                undo()
            except PersistenceFailure as undo_error:
                logger.critical("%s: member change could not be undone: %s", what, undo_error)
                raise FatalInconsistency(
                    f"{what}: member updated without its ledger entries and the update could not be undone"
                ) from undo_error
            raise

    def _commit(self, transition: Transition, what: str) -> None:
        before, after = transition.previous, transition.member
        self.store.update_member(after.id, member_changes(before, after))
        self._write_transactions(
            transition.transactions,
            lambda: self.store.update_member(before.id, member_changes(after, before)),
            what,
        )

    def _create(self, transition: Transition, what: str) -> None:
        member = transition.member
        self.store.insert_member(member)
        self._write_transactions(transition.transactions, lambda: self.store.delete_members([member.id]), what)

    # ---------- Operations ----------

    @returns_result
    def register(self, branch_id: str, details: PersonalDetails, payment: Payment) -> Member:
        details = clean_details(details)
        problems = validate_personal_details(details)
        if problems:
            raise ValidationError(problems=problems)
        billing.validate_payment(REGISTRATION_FEE, payment)

        now = self.clock.now()
        member = new_member(branch_id, details, now)
        txns = make_transactions(
            member, branch_id, [(REGISTRATION, REGISTRATION_FEE, f"Registration - {member.full_name}")], payment, now
        )
        with self.store.transaction():
            self._branch(branch_id)
            self._ensure_unique_contact(branch_id, details)
            self._create(Transition(member, txns), "registration")
        logger.info("Registered member %s (%s) in branch %s", member.id, member.full_name, branch_id)
        return member

    @returns_result
    def activate_or_renew_plan(
        self, member: Member, plan: PlanRequest, allocation: AllocationRequest, payment: Payment
    ) -> Transition:
        now = self.clock.now()
        with self.store.transaction():
            current = self._reload(member)
            branch = self._branch(current.branch_id)
            transition = build_renewal(
                current, branch, self.store.list_members(branch.id), plan, allocation, payment, now
            )
            self._commit(transition, "renewal")
        logger.info(
            "Plan for member %s now %s until %s (%d ledger entries)",
            current.id,
            transition.member.subscription_plan,
            transition.member.expiry_date.isoformat(),
            len(transition.transactions),
        )
        return transition

    @returns_result
    def enroll_existing_member(
        self,
        branch_id: str,
        details: PersonalDetails,
        plan: PlanRequest,
        allocation: AllocationRequest,
        payment: Payment,
        days_passed: int,
    ) -> Transition:
        """
        Old-member entry: someone who joined before the desk used this system.
        Start date is backdated by days_passed, no registration fee is charged,
        and hand-keyed split amounts may be off by ₹1.
        """
        details = clean_details(details)
        problems = validate_personal_details(details, email_required=False)
        if plan.plan is None:
            problems.append("Choose the plan the member is on.")
        if days_passed is None or days_passed < 0:
            problems.append("Days already passed cannot be negative.")
        if problems:
            raise ValidationError(problems=problems)

        now = self.clock.now()
        start = now - timedelta(days=days_passed)
        with self.store.transaction():
            branch = self._branch(branch_id)
            self._ensure_unique_contact(branch_id, details)
            base = new_member(branch_id, details, start)
            transition = build_renewal(
                base,
                branch,
                self.store.list_members(branch_id),
                plan,
                allocation,
                payment,
                now,
                start=start,
                split_mode=billing.LEGACY_TOLERANT,
            )
            self._create(transition, "old member entry")
        logger.info("Backfilled member %s (%s), %d days in", base.id, base.full_name, days_passed)
        return transition

    @returns_result
    def issue_card(self, member: Member, payment_mode: str) -> Transition:
        if payment_mode not in (CASH, UPI):
            raise ValidationError("Card payment must be CASH or UPI.")
        now = self.clock.now()
        with self.store.transaction():
            current = self._reload(member)
            if current.holds_card:
                raise ValidationError(f"{current.full_name} already has a library card.")
            branch = self._branch(current.branch_id)
            capacity.require_stock(capacity.card_stats(branch, self.store.list_members(branch.id), now), "cards")
            after = replace(current, card_issued=True, card_returned=False, card_payment_mode=payment_mode)
            txns = make_transactions(
                after, branch.id, [(CARD, CARD_FEE, f"Library card issued - {current.full_name}")],
                Payment(payment_mode), now,
            )
            transition = Transition(after, txns, current)
            self._commit(transition, "card issue")
        logger.info("Card issued to member %s", current.id)
        return transition

    @returns_result
    def return_card(self, member: Member) -> Transition:
        now = self.clock.now()
        with self.store.transaction():
            current = self._reload(member)
            if not current.card_issued:
                raise NoCardIssued(f"{current.full_name} was never issued a card.")
            if current.card_returned:
                raise ValidationError(f"{current.full_name} has already returned the card.")
            after = replace(current, card_returned=True)
            refund_mode = current.card_payment_mode if current.card_payment_mode in (CASH, UPI) else CASH
            txns = make_transactions(
                after, current.branch_id, [(CARD, -CARD_FEE, f"Library card returned (refund) - {current.full_name}")],
                Payment(refund_mode), now,
            )
            transition = Transition(after, txns, current)
            self._commit(transition, "card return")
        logger.info("Card returned by member %s", current.id)
        return transition

    @returns_result
    def assign_locker(self, member: Member, key: str, payment_mode: str) -> Transition:
        if payment_mode not in (CASH, UPI, INCLUDED):
            raise ValidationError("Locker payment must be CASH, UPI or INCLUDED.")
        key = ledger.normalize_key(key)
        now = self.clock.now()
        with self.store.transaction():
            current = self._reload(member)
            if current.locker_assigned:
                raise ValidationError(f"{current.full_name} already has locker {current.locker_number}.")
            if not (current.has_plan and is_current(current, now)):
                raise ValidationError(f"{current.full_name} has no active plan.")
            branch = self._branch(current.branch_id)
            holders = self.store.find_members_by_resource_key(branch.id, LOCKER, key)
            ledger.require_available(LOCKER, key, holders, now, exclude_member_id=current.id)
            capacity.require_stock(capacity.locker_stats(branch, self.store.list_members(branch.id), now), "lockers")

            after = replace(current, locker_assigned=True, locker_number=key, locker_payment_mode=payment_mode)
            txns = []
            if payment_mode != INCLUDED:
                txns = make_transactions(
                    after, branch.id, [(LOCKER, LOCKER_FEE, f"Locker {key} assigned - {current.full_name}")],
                    Payment(payment_mode), now,
                )
            transition = Transition(after, txns, current)
            self._commit(transition, "locker assignment")
        logger.info("Locker %s assigned to member %s (%s)", key, current.id, payment_mode)
        return transition

    @returns_result
    def return_locker(self, member: Member) -> Transition:
        now = self.clock.now()
        with self.store.transaction():
            current = self._reload(member)
            if not current.locker_assigned:
                raise ValidationError(f"{current.full_name} has no locker assigned.")
            after = replace(current, locker_assigned=False, locker_number=None, locker_payment_mode=None)
            txns = []
            if current.locker_payment_mode != INCLUDED:
                refund_mode = current.locker_payment_mode if current.locker_payment_mode in (CASH, UPI) else CASH
                txns = make_transactions(
                    after, current.branch_id,
                    [(LOCKER, -LOCKER_FEE, f"Locker {current.locker_number} returned (refund) - {current.full_name}")],
                    Payment(refund_mode), now,
                )
            transition = Transition(after, txns, current)
            self._commit(transition, "locker return")
        logger.info("Locker %s returned by member %s", current.locker_number, current.id)
        return transition

    @returns_result
    def clear_plan(self, members: list[Member]) -> list[Member]:
        """
        Admin reset: plans wiped, cards treated as handed back, lockers and seats
        released, and the members' MEMBERSHIP/CARD/LOCKER entries deleted.
        Cannot be undone.
        """
        if not members:
            raise ValidationError("Select at least one member.")
        with self.store.transaction():
            pairs = []
            for m in members:
                current = self._reload(m)
                after = replace(
                    current,
                    subscription_plan=None,
                    daily_access_hours=None,
                    current_plan_start_date=None,
                    expiry_date=EPOCH,
                    card_returned=current.card_issued,
                    locker_assigned=False,
                    locker_payment_mode=None,
                    locker_number=None,
                    seat_no=None,
                )
                self.store.update_member(current.id, member_changes(current, after))
                pairs.append((current, after))

            def undo():
                for before, after in pairs:
                    self.store.update_member(before.id, member_changes(after, before))

            try:
                self.store.delete_transactions([b.id for b, _ in pairs], (MEMBERSHIP, CARD, LOCKER))
            except PersistenceFailure as e:
                logger.error("clear plan: ledger delete failed, undoing member resets: %s", e)
                try:
                    undo()
                except PersistenceFailure as undo_error:
                    logger.critical("clear plan: member resets could not be undone: %s", undo_error)
                    raise FatalInconsistency("clear plan: members reset but their ledger entries remain") from undo_error
                raise
        logger.info("Cleared plans for %d members", len(pairs))
        return [after for _, after in pairs]

    @returns_result
    def delete_members(self, member_ids: list[str]) -> int:
        if not member_ids:
            raise ValidationError("Select at least one member.")
        with self.store.transaction():
            self.store.delete_members(member_ids)
        logger.info("Deleted %d members and their transactions", len(member_ids))
        return len(member_ids)

    @returns_result
    def set_branch_capacity(
        self, branch_id: str, total_cards: int | None = None, total_lockers: int | None = None
    ) -> Branch:
        now = self.clock.now()
        with self.store.transaction():
            branch = self._branch(branch_id)
            members = self.store.list_members(branch_id)
            cards = branch.total_cards
            lockers = branch.total_lockers
            if total_cards is not None:
                cards = capacity.validate_new_total(total_cards, capacity.card_stats(branch, members, now), "cards")
            if total_lockers is not None:
                lockers = capacity.validate_new_total(
                    total_lockers, capacity.locker_stats(branch, members, now), "lockers"
                )
            updated = self.store.update_branch_capacity(branch_id, cards, lockers)
        logger.info("Branch %s capacity: %d cards, %d lockers", branch_id, cards, lockers)
        return updated

    @returns_result
    def record_snack_sale(self, branch_id: str, amount: int, description: str, payment: Payment) -> Transaction:
        if amount is None or amount <= 0:
            raise ValidationError("Amount must be > 0.")
        billing.validate_payment(amount, payment)
        now = self.clock.now()
        description = (description or "").strip() or "Snack sale"
        (txn,) = make_transactions(None, branch_id, [(SNACK, amount, description)], payment, now)
        with self.store.transaction():
            self._branch(branch_id)
            self.store.insert_transactions([txn])
        return txn
