"""
Leave request lifecycle: pending -> approved | rejected | cancelled.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..errors import ConflictError, ForbiddenError, ValidationError
from ..models.models import LeaveRequest, User
from .audit import record_audit
from .notifications import notify_leave_decision
from .tenancy import load_scoped
from .time_rules import inclusive_days


logger = structlog.get_logger(__name__)


def resolve_days_count(start: date, end: date, days_count: Optional[int]) -> int:
    """
    Days charged for a request.

    Omitted -> the inclusive span (end - start + 1). A supplied value may be
    smaller than the span (weekends, partial days) but never larger.
    """
    if end < start:
        raise ValidationError("Start date must be before end date")
    span = inclusive_days(start, end)
    if days_count is None:
        return span
    if days_count < 1:
        raise ValidationError("days_count must be positive")
    if days_count > span:
        raise ValidationError(f"days_count ({days_count}) exceeds the requested period ({span} days)")
    return days_count


def pending_vacation_days(db: Session, user_id: uuid.UUID) -> int:
    total = (
        db.query(func.coalesce(func.sum(LeaveRequest.days_count), 0))
        .filter(
            LeaveRequest.user_id == user_id,
            LeaveRequest.type == "vacation",
            LeaveRequest.status == "pending",
        )
        .scalar()
    )
    return int(total or 0)


def create_request(
    db: Session,
    user: User,
    tenant_id: uuid.UUID,
    leave_type: str,
    start: date,
    end: date,
    days_count: Optional[int] = None,
    is_partial_day: bool = False,
    reason: Optional[str] = None,
) -> LeaveRequest:
    days = resolve_days_count(start, end, days_count)
    if leave_type == "vacation":
        # Pending requests already claim part of the balance
        available = (user.vacation_days_balance or 0) - pending_vacation_days(db, user.id)
        if days > available:
            raise ValidationError(
                f"Insufficient vacation balance. Available: {available}, requested: {days}"
            )

    leave = LeaveRequest(
        tenant_id=tenant_id,
        user_id=user.id,
        type=leave_type,
        start_date=start,
        end_date=end,
        days_count=days,
        is_partial_day=is_partial_day,
        reason=reason,
        status="pending",
    )
    db.add(leave)
    db.flush()
    record_audit(
        db,
        entity_type="leave_request",
        entity_id=leave.id,
        action="CREATE",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"after": {"status": "pending", "days_count": days}},
    )
    db.commit()
    db.refresh(leave)
    logger.info("leave_requested", leave_request_id=str(leave.id), user_id=str(user.id), days=days)
    return leave


def _require_pending(leave: LeaveRequest) -> None:
    if leave.status != "pending":
        raise ConflictError(f"Leave request is {leave.status}")


def approve_request(db: Session, approver: User, tenant_id: uuid.UUID, leave_id: uuid.UUID) -> LeaveRequest:
    leave = load_scoped(db, LeaveRequest, leave_id, tenant_id, "Leave request")
    _require_pending(leave)

    if leave.type == "vacation":
        requester = db.get(User, leave.user_id)
        balance = requester.vacation_days_balance or 0
        if leave.days_count > balance:
            raise ValidationError(
                f"Insufficient vacation balance. Available: {balance}, requested: {leave.days_count}"
            )
        requester.vacation_days_balance = balance - leave.days_count

    leave.status = "approved"
    leave.approved_by = approver.id
    leave.approved_at = datetime.now(timezone.utc)
    record_audit(
        db,
        entity_type="leave_request",
        entity_id=leave.id,
        action="APPROVE",
        actor=approver,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "pending"}, "after": {"status": "approved"}},
    )
    notify_leave_decision(db, leave, "approved")
    db.commit()
    db.refresh(leave)
    logger.info("leave_approved", leave_request_id=str(leave.id), approver_id=str(approver.id))
    return leave


def reject_request(
    db: Session,
    approver: User,
    tenant_id: uuid.UUID,
    leave_id: uuid.UUID,
    reason: Optional[str] = None,
) -> LeaveRequest:
    leave = load_scoped(db, LeaveRequest, leave_id, tenant_id, "Leave request")
    _require_pending(leave)

    leave.status = "rejected"
    leave.approved_by = approver.id
    leave.approved_at = datetime.now(timezone.utc)
    leave.rejection_reason = reason
    record_audit(
        db,
        entity_type="leave_request",
        entity_id=leave.id,
        action="REJECT",
        actor=approver,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "pending"}, "after": {"status": "rejected"}},
        context={"rejection_reason": reason},
    )
    notify_leave_decision(db, leave, "rejected")
    db.commit()
    db.refresh(leave)
    logger.info("leave_rejected", leave_request_id=str(leave.id), approver_id=str(approver.id))
    return leave


def cancel_request(db: Session, user: User, tenant_id: uuid.UUID, leave_id: uuid.UUID) -> LeaveRequest:
    leave = load_scoped(db, LeaveRequest, leave_id, tenant_id, "Leave request")
    if leave.user_id != user.id:
        raise ForbiddenError("Only the requester can cancel a leave request")
    _require_pending(leave)

    leave.status = "cancelled"
    record_audit(
        db,
        entity_type="leave_request",
        entity_id=leave.id,
        action="CANCEL",
        actor=user,
        tenant_id=tenant_id,
        changes_json={"before": {"status": "pending"}, "after": {"status": "cancelled"}},
    )
    db.commit()
    db.refresh(leave)
    return leave
