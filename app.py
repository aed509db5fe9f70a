"""
app.py
Streamlit front desk for one library branch.
Run: streamlit run app.py
"""

from __future__ import annotations

import logging
import os

import streamlit as st

import reports
import utils
from clock import ClockSync
from db import Store
from engine import MembershipTransitionEngine, checkout_total
from errors import FrontDeskError, ValidationError
from models import (
    ACCESS_HOURS,
    CASH,
    DAYS,
    HOURS_CUSTOM,
    INCLUDED,
    MONTHS,
    PAYMENT_MODES,
    PLAN_CUSTOM,
    PLAN_PRICES,
    REGISTRATION_FEE,
    SEAT,
    SPLIT,
    UPI,
    AllocationRequest,
    Branch,
    Payment,
    PersonalDetails,
    PlanRequest,
)

BRANCH_ID = os.environ.get("LIBRARY_BRANCH_ID", "b_north")
BRANCH_NAME = os.environ.get("LIBRARY_BRANCH_NAME", "North Campus Library")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

st.set_page_config(page_title="Library Front Desk", layout="wide")


@st.cache_resource
def get_engine() -> MembershipTransitionEngine:
    # Initialize DB + branch row if needed; clock syncs once per process
    store = Store()
    store.init_db()
    store.save_branch(Branch(id=BRANCH_ID, name=BRANCH_NAME))
    return MembershipTransitionEngine(store, ClockSync())


def show_result(result, success: str) -> bool:
    if result.ok:
        st.success(success)
        return True
    if isinstance(result.error, ValidationError):
        for p in result.error.problems:
            st.error(p)
    else:
        st.error(result.error.message)
    return False


def payment_inputs(total: int, key: str) -> Payment:
    mode = st.selectbox("Payment mode", PAYMENT_MODES, key=f"{key}_mode")
    if mode != SPLIT:
        return Payment(mode)
    c1, c2 = st.columns(2)
    cash = c1.number_input("Cash (₹)", min_value=0, step=10, key=f"{key}_cash")
    upi = c2.number_input("UPI (₹)", min_value=0, value=max(0, total - int(cash)), step=10, key=f"{key}_upi")
    return Payment(SPLIT, int(cash), int(upi))


def details_inputs(key: str) -> PersonalDetails:
    c1, c2 = st.columns(2)
    with c1:
        full_name = st.text_input("Full name", key=f"{key}_name")
        phone = st.text_input("Phone", key=f"{key}_phone")
        email = st.text_input("Email", key=f"{key}_email")
    with c2:
        address = st.text_input("Address", key=f"{key}_address")
        study_purpose = st.text_input("Study purpose", key=f"{key}_purpose")
        registered_by = st.text_input("Registered by", key=f"{key}_by")
    return PersonalDetails(full_name, phone, email, address, study_purpose, registered_by)


def plan_inputs(key: str) -> PlanRequest:
    c1, c2, c3 = st.columns(3)
    with c1:
        plan = st.selectbox("Plan", list(PLAN_PRICES.keys()), key=f"{key}_plan")
        price = st.number_input("Price (₹)", min_value=0, value=PLAN_PRICES[plan], step=100, key=f"{key}_price_{plan}")
    duration_value, duration_unit = None, DAYS
    with c2:
        if plan == PLAN_CUSTOM:
            duration_value = int(st.number_input("Duration", min_value=0, step=1, key=f"{key}_dur"))
            duration_unit = st.selectbox("Unit", [DAYS, MONTHS], key=f"{key}_unit")
    with c3:
        hours = st.selectbox("Daily access", ACCESS_HOURS, key=f"{key}_hours")
        custom_hours = None
        if hours == HOURS_CUSTOM:
            custom_hours = int(st.number_input("Hours (1-24)", min_value=0, max_value=24, key=f"{key}_chours"))
    return PlanRequest(plan, int(price), hours, custom_hours, duration_value, duration_unit)


def pick_member(engine, label: str, key: str):
    members = engine.store.list_members(BRANCH_ID)
    if not members:
        st.info("No members yet. Register a member first.")
        return None
    options = {f"{m.full_name} ({m.phone})": m for m in members}
    return options[st.selectbox(label, list(options.keys()), key=key)]


def dashboard_page(engine):
    st.header("📊 Dashboard")
    now = engine.clock.now()
    txns = engine.store.list_transactions(BRANCH_ID)
    members = engine.store.list_members(BRANCH_ID)

    mode = st.radio("Payment mode", ["ALL", CASH, UPI], horizontal=True)
    overview = reports.revenue_overview(txns, now, mode)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Today", f"₹{overview['daily']}")
    c2.metric("Last 7 days", f"₹{overview['weekly']}")
    c3.metric("Last 30 days", f"₹{overview['monthly']}")
    c4.metric("All time", f"₹{overview['total']}")

    buckets = reports.member_buckets(members, now)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Active members", len(buckets["active"]))
    c2.metric("Expiring in 3 days", len(buckets["expiring"]))
    c3.metric("Expired", len(buckets["expired"]))
    c4.metric("Registered only", len(buckets["registered_only"]))

    st.divider()
    st.subheader("Members")
    st.dataframe(reports.members_frame(members, now), use_container_width=True, hide_index=True)


def register_page(engine):
    st.header("➕ Register Member")
    st.caption(f"Registration fee: ₹{REGISTRATION_FEE}")
    details = details_inputs("reg")
    payment = payment_inputs(REGISTRATION_FEE, "reg")
    if st.button("Register", type="primary"):
        show_result(engine.register(BRANCH_ID, details, payment), "Member registered.")


def membership_page(engine):
    st.header("🔁 Plans & Renewals")
    member = pick_member(engine, "Member", "renew_member")
    if member is None:
        return
    st.write(
        f"Plan: **{member.subscription_plan or 'none'}** | Expires: **{member.expiry_date:%Y-%m-%d}** | "
        f"Card: **{'yes' if member.holds_card else 'no'}** | Locker: **{member.locker_number or 'none'}** | "
        f"Seat: **{member.seat_no or 'none'}**"
    )
    extras_only = st.toggle("Extras only (keep current plan)", value=False)
    plan = PlanRequest(None) if extras_only else plan_inputs("renew")

    c1, c2, c3 = st.columns(3)
    wants_card = c1.checkbox("Library card (+₹100)", value=member.holds_card, disabled=member.holds_card)
    wants_locker = c2.checkbox("Locker (+₹200)", value=member.locker_assigned, disabled=member.locker_assigned)
    locker_number = c2.text_input("Locker number", value=member.locker_number or "")
    seat_no = c3.text_input("Seat", value=member.seat_no or "")
    if seat_no.strip() and seat_no.strip() != (member.seat_no or ""):
        check = engine.check_availability(BRANCH_ID, SEAT, seat_no, exclude_member_id=member.id)
        if check.ok and check.value.note:
            st.caption(check.value.note)

    allocation = AllocationRequest(wants_card, wants_locker, locker_number or None, seat_no or None)
    total = checkout_total(member, plan, allocation)
    st.write(f"Amount due: **₹{total}**")
    payment = payment_inputs(total, "renew")
    if st.button("Confirm", type="primary"):
        result = engine.activate_or_renew_plan(member, plan, allocation, payment)
        if show_result(result, "Membership updated."):
            total = sum(t.amount for t in result.value.transactions)
            st.info(f"Collected ₹{total} in {len(result.value.transactions)} entries.")


def resources_page(engine):
    st.header("🪪 Cards & Lockers")
    cards = engine.card_stats(BRANCH_ID)
    lockers = engine.locker_stats(BRANCH_ID)
    c1, c2, c3, c4 = st.columns(4)
    c1.metric(f"Cards available (of {cards.total})", cards.available)
    c2.metric("Cards not returned", cards.not_returned)
    c3.metric(f"Lockers available (of {lockers.total})", lockers.available)
    c4.metric("Lockers in use", lockers.in_circulation)

    member = pick_member(engine, "Member", "res_member")
    if member is None:
        return
    c1, c2 = st.columns(2)
    with c1:
        st.subheader("Card")
        card_mode = st.selectbox("Card payment", [CASH, UPI], key="card_mode")
        if st.button("Issue card"):
            show_result(engine.issue_card(member, card_mode), "Card issued.")
        if st.button("Return card"):
            show_result(engine.return_card(member), "Card returned, ₹100 refunded.")
    with c2:
        st.subheader("Locker")
        key = st.text_input("Locker number", key="locker_key")
        locker_mode = st.selectbox("Locker payment", [CASH, UPI, INCLUDED], key="locker_mode")
        if st.button("Assign locker"):
            show_result(engine.assign_locker(member, key, locker_mode), "Locker assigned.")
        if st.button("Return locker"):
            show_result(engine.return_locker(member), "Locker returned.")


def old_member_page(engine):
    st.header("🕰️ Old Member Entry")
    st.caption("Members who joined before the desk used this system. No registration fee.")
    details = details_inputs("old")
    plan = plan_inputs("old")
    days_passed = int(st.number_input("Days already passed", min_value=0, step=1))
    c1, c2 = st.columns(2)
    wants_card = c1.checkbox("Card issued", key="old_card")
    wants_locker = c2.checkbox("Locker assigned", key="old_locker")
    locker_number = c2.text_input("Locker number", key="old_locker_no")
    seat_no = st.text_input("Seat", key="old_seat")
    allocation = AllocationRequest(wants_card, wants_locker, locker_number or None, seat_no or None)
    payment = payment_inputs(checkout_total(None, plan, allocation), "old")
    if st.button("Save old member", type="primary"):
        show_result(
            engine.enroll_existing_member(BRANCH_ID, details, plan, allocation, payment, days_passed),
            "Old member saved.",
        )


def snacks_page(engine):
    st.header("🍪 Snack Sale")
    description = st.text_input("Items", value="Tea")
    amount = int(st.number_input("Amount (₹)", min_value=0, value=15, step=5))
    payment = payment_inputs(amount, "snack")
    if st.button("Record sale", type="primary"):
        show_result(engine.record_snack_sale(BRANCH_ID, amount, description, payment), "Sale recorded.")


def reports_page(engine):
    st.header("🧾 Reports")
    st.subheader("Revenue by month")
    txns = engine.store.list_transactions(BRANCH_ID)
    st.dataframe(reports.revenue_by_month(txns), use_container_width=True, hide_index=True)


def settings_page(engine):
    st.header("⚙️ Settings")
    branch = engine.store.get_branch(BRANCH_ID)

    st.subheader("Stock")
    c1, c2 = st.columns(2)
    total_cards = c1.number_input("Total cards", min_value=0, value=branch.total_cards)
    total_lockers = c2.number_input("Total lockers", min_value=0, value=branch.total_lockers)
    if st.button("Save stock", type="primary"):
        show_result(engine.set_branch_capacity(BRANCH_ID, int(total_cards), int(total_lockers)), "Stock updated.")

    st.divider()
    st.subheader("Clear plans / delete members")
    members = engine.store.list_members(BRANCH_ID)
    options = {f"{m.full_name} ({m.phone})": m for m in members}
    chosen = [options[k] for k in st.multiselect("Members", list(options.keys()))]
    confirm = st.checkbox("I understand this cannot be undone")
    c1, c2 = st.columns(2)
    if c1.button("Clear plans", disabled=not (chosen and confirm)):
        show_result(engine.clear_plan(chosen), f"Cleared {len(chosen)} plans.")
    if c2.button("Delete members", disabled=not (chosen and confirm)):
        show_result(engine.delete_members([m.id for m in chosen]), f"Deleted {len(chosen)} members.")

    st.divider()
    st.subheader("Sample data")
    st.caption("Register 3 sample members, two of them with plans (needs free card/locker stock).")
    if st.button("Insert sample data"):
        try:
            utils.insert_sample_data(engine, BRANCH_ID)
            st.success("Sample data inserted.")
        except FrontDeskError as e:
            st.error(e.message)


PAGES = {
    "Dashboard": dashboard_page,
    "Register": register_page,
    "Plans": membership_page,
    "Cards & Lockers": resources_page,
    "Old Member Entry": old_member_page,
    "Snacks": snacks_page,
    "Reports": reports_page,
    "Settings": settings_page,
}


def run():
    engine = get_engine()
    st.sidebar.title("📚 Library Desk")
    st.sidebar.caption(BRANCH_NAME)
    page = st.sidebar.radio("Navigate", list(PAGES.keys()))
    PAGES[page](engine)


if __name__ == "__main__":
    run()
