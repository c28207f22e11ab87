"""
Payroll generation and status transitions.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError
from ..models.models import LeaveRequest, PayrollRecord, TimeRecord, User
from .service_orders import safe_number, to_cents
from .time_rules import local_day_bounds


# status -> statuses it may move to
PAYROLL_TRANSITIONS = {
    "pending": {"processing", "paid"},
    "processing": {"paid"},
    "paid": set(),
}


def summarize_period(db: Session, tenant_id: uuid.UUID, user: User, start: date, end: date) -> dict:
    """
    Sum a worker's approved hours and approved leave days within a period.

    Args:
        db: Database session
        tenant_id: Effective tenant
        user: Worker
        start: First local day of the period
        end: Last local day of the period (inclusive)

    Returns:
        Dict with regular_hours, overtime_hours (Decimal) and vacation/sick/unpaid day counts
    """
    start_utc, end_utc = local_day_bounds(start, end)
    records = (
        db.query(TimeRecord)
        .filter(
            TimeRecord.tenant_id == tenant_id,
            TimeRecord.user_id == user.id,
            TimeRecord.status == "approved",
            TimeRecord.check_in_time >= start_utc,
            TimeRecord.check_in_time <= end_utc,
        )
        .all()
    )
    total = sum((safe_number(r.total_hours) for r in records), Decimal("0"))
    overtime = sum((safe_number(r.overtime_hours) for r in records), Decimal("0"))

    leave_days = {"vacation": 0, "sick": 0, "unpaid": 0}
    leaves = (
        db.query(LeaveRequest)
        .filter(
            LeaveRequest.tenant_id == tenant_id,
            LeaveRequest.user_id == user.id,
            LeaveRequest.status == "approved",
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )
        .all()
    )
    for leave in leaves:
        if leave.type in leave_days:
            leave_days[leave.type] += leave.days_count

    return {
        "regular_hours": to_cents(max(Decimal("0"), total - overtime)),
        "overtime_hours": to_cents(overtime),
        "vacation_days": leave_days["vacation"],
        "sick_days": leave_days["sick"],
        "unpaid_days": leave_days["unpaid"],
    }


def price_payroll(regular_hours: Decimal, overtime_hours: Decimal, hourly_rate) -> Decimal:
    rate = safe_number(hourly_rate)
    multiplier = safe_number(settings.overtime_multiplier)
    return to_cents(regular_hours * rate + overtime_hours * rate * multiplier)


def generate_payroll(db: Session, tenant_id: uuid.UUID, user: User, start: date, end: date) -> PayrollRecord:
    summary = summarize_period(db, tenant_id, user, start, end)
    record = PayrollRecord(
        tenant_id=tenant_id,
        user_id=user.id,
        period_start=start,
        period_end=end,
        regular_hours=summary["regular_hours"],
        overtime_hours=summary["overtime_hours"],
        night_hours=Decimal("0"),
        vacation_days=summary["vacation_days"],
        sick_days=summary["sick_days"],
        unpaid_days=summary["unpaid_days"],
        total_amount=price_payroll(summary["regular_hours"], summary["overtime_hours"], user.hourly_rate),
        status="pending",
    )
    db.add(record)
    db.flush()
    return record


def apply_status(record: PayrollRecord, new_status: str) -> None:
    if new_status == record.status:
        return
    if new_status not in PAYROLL_TRANSITIONS.get(record.status, set()):
        raise ConflictError(f"Cannot move payroll from {record.status} to {new_status}")
    record.status = new_status
    if new_status == "paid":
        record.paid_at = datetime.now(timezone.utc)
