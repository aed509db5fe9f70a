"""
utils.py
Plan dates, input validation, sample data.
"""

from __future__ import annotations

import re
from calendar import monthrange
from datetime import datetime, timedelta

from models import (
    CASH,
    DAYS,
    HOURS_12,
    HOURS_24,
    HOURS_CUSTOM,
    MONTHS,
    PLAN_1_MONTH,
    PLAN_3_MONTHS,
    PLAN_CUSTOM,
    PLAN_MONTHS,
    PLAN_PRICES,
    SPLIT,
    UPI,
    AllocationRequest,
    Payment,
    PersonalDetails,
    PlanRequest,
)

PHONE_RE = re.compile(r"^\d{10}$")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def add_months(start: datetime, months: int) -> datetime:
    """
    Add months while keeping day in valid range (e.g., Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    day = min(start.day, monthrange(y, m)[1])
    return start.replace(year=y, month=m, day=day)


def plan_expiry(start: datetime, plan: PlanRequest) -> datetime:
    if plan.plan == PLAN_CUSTOM:
        value = int(plan.custom_duration_value or 0)
        if plan.custom_duration_unit == MONTHS:
            return add_months(start, value)
        return start + timedelta(days=value)
    return add_months(start, PLAN_MONTHS[plan.plan])


def validate_personal_details(details: PersonalDetails, email_required: bool = True) -> list[str]:
    errors: list[str] = []
    if len(details.full_name.strip()) < 3:
        errors.append("Name must be at least 3 characters.")
    if len(details.address.strip()) < 5:
        errors.append("Please provide a full address.")
    if not PHONE_RE.match(details.phone.strip()):
        errors.append("Enter a valid 10-digit phone number.")
    email = (details.email or "").strip()
    if email or email_required:
        if not EMAIL_RE.match(email):
            errors.append("Enter a valid email address.")
    if len(details.study_purpose.strip()) < 2:
        errors.append("Please enter a purpose (e.g. UPSC).")
    if len(details.registered_by.strip()) < 2:
        errors.append("Receptionist name required.")
    return errors


def validate_plan_request(plan: PlanRequest) -> list[str]:
    errors: list[str] = []
    if plan.plan is None:
        return errors
    if plan.plan not in PLAN_PRICES:
        errors.append(f"Unknown plan: {plan.plan}")
        return errors
    if plan.price <= 0:
        errors.append("Please enter a valid amount.")
    if plan.plan == PLAN_CUSTOM:
        if not plan.custom_duration_value or plan.custom_duration_value <= 0:
            errors.append("Duration required.")
        if plan.custom_duration_unit not in (DAYS, MONTHS):
            errors.append("Duration unit must be DAYS or MONTHS.")
    if plan.access_hours == HOURS_CUSTOM:
        hours = plan.custom_access_hours or 0
        if hours <= 0 or hours > 24:
            errors.append("Enter valid hours (1-24).")
    return errors


def insert_sample_data(engine, branch_id: str) -> list:
    """
    Register 3 members through the engine and give two of them plans
    (not idempotent: phones must be free in the branch).
    """
    people = [
        PersonalDetails("Ananya Rao", "9000000001", "ananya@example.com", "12 MG Road, North City", "UPSC", "Desk"),
        PersonalDetails("Rohit Verma", "9000000002", "rohit@example.com", "4 Lake View, North City", "CA Final", "Desk"),
        PersonalDetails("Meera Iyer", "9000000003", "meera@example.com", "88 Park Street, North City", "NEET", "Desk"),
    ]
    members = []
    for p in people:
        members.append(engine.register(branch_id, p, Payment(CASH)).unwrap())

    engine.activate_or_renew_plan(
        members[0],
        PlanRequest(PLAN_1_MONTH, PLAN_PRICES[PLAN_1_MONTH], access_hours=HOURS_12),
        AllocationRequest(wants_card=True, seat_no="A-1"),
        Payment(UPI),
    ).unwrap()
    engine.activate_or_renew_plan(
        members[1],
        PlanRequest(PLAN_3_MONTHS, PLAN_PRICES[PLAN_3_MONTHS], access_hours=HOURS_24),
        AllocationRequest(wants_locker=True, locker_number="L1", seat_no="A-2"),
        Payment(SPLIT, cash_amount=2000, upi_amount=1200),
    ).unwrap()
    return members
