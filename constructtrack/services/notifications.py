"""
In-app notification service.
Respects per-user category preferences.
"""
import uuid
from typing import Optional, Dict, Iterable, List

from sqlalchemy.orm import Session

from ..models.models import Notification, NotificationPreference, User
from ..config import settings


# notification type prefix -> preference column that gates it
CATEGORY_BY_PREFIX = {
    "time_record": "time_reminders",
    "late": "late_alerts",
    "tool": "tool_alerts",
    "contestation": "contestation_alerts",
    "leave": "leave_alerts",
}


def get_or_create_preferences(db: Session, user_id: uuid.UUID) -> NotificationPreference:
    pref = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if pref is None:
        pref = NotificationPreference(user_id=user_id)
        db.add(pref)
        db.flush()
    return pref


def category_for(notification_type: str) -> Optional[str]:
    for prefix, column in CATEGORY_BY_PREFIX.items():
        if notification_type.startswith(prefix):
            return column
    return None


def should_send_notification(db: Session, user_id: uuid.UUID, notification_type: str, channel: str = "in_app") -> bool:
    """
    Check if a notification should be created based on user preferences.

    Args:
        db: Database session
        user_id: Recipient
        notification_type: e.g. time_record_approved, leave_rejected
        channel: in_app|push|email

    Returns:
        True if notification should be sent
    """
    if channel == "push" and not settings.enable_push:
        return False
    if channel == "email" and not settings.enable_email:
        return False

    pref = db.query(NotificationPreference).filter(NotificationPreference.user_id == user_id).first()
    if pref is None:
        return True
    if channel == "push" and not pref.push_enabled:
        return False
    if channel == "email" and not pref.email_enabled:
        return False
    column = category_for(notification_type)
    if column is not None and not getattr(pref, column):
        return False
    return True


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    notification_type: str,
    title: str,
    message: str,
    tenant_id: Optional[uuid.UUID] = None,
    data: Optional[Dict] = None,
    priority: str = "normal",
    channel: str = "in_app",
) -> Optional[Notification]:
    """
    Stage a notification in the caller's transaction.

    Returns:
        Notification object if created, None if skipped by preferences
    """
    if not should_send_notification(db, user_id, notification_type, channel):
        return None

    notification = Notification(
        tenant_id=tenant_id,
        user_id=user_id,
        type=notification_type,
        title=title,
        message=message,
        data=data,
        priority=priority,
        channel=channel,
    )
    db.add(notification)
    db.flush()
    return notification


def notify_time_record_decision(db: Session, record, decision: str, reason: Optional[str] = None):
    """Tell the worker their time record was approved or rejected."""
    if decision == "approved":
        title, message, priority = "Time record approved", "Your time record has been approved.", "normal"
    else:
        title = "Time record rejected"
        message = f"Your time record was rejected: {reason}" if reason else "Your time record was rejected."
        priority = "high"
    return create_notification(
        db,
        user_id=record.user_id,
        notification_type=f"time_record_{decision}",
        title=title,
        message=message,
        tenant_id=record.tenant_id,
        data={"time_record_id": str(record.id), "reason": reason},
        priority=priority,
    )


def tenant_approvers(db: Session, tenant_id: uuid.UUID) -> List[User]:
    return (
        db.query(User)
        .filter(User.tenant_id == tenant_id, User.role.in_(["admin", "manager"]), User.is_active.is_(True))
        .all()
    )


def notify_contestation(db: Session, contestation, approvers: Iterable[User]):
    """Tell tenant approvers a client contested a record."""
    created = []
    for approver in approvers:
        n = create_notification(
            db,
            user_id=approver.id,
            notification_type="contestation_created",
            title="Time record contested",
            message=f"A client contested a time record: {contestation.reason}",
            tenant_id=contestation.tenant_id,
            data={"contestation_id": str(contestation.id), "time_record_id": str(contestation.time_record_id)},
            priority="high" if contestation.severity == "significant" else "normal",
        )
        if n is not None:
            created.append(n)
    return created


def notify_leave_decision(db: Session, leave, decision: str):
    """Tell the requester their leave request was decided."""
    message = f"Your {leave.type} request from {leave.start_date.isoformat()} to {leave.end_date.isoformat()} was {decision}."
    if decision == "rejected" and leave.rejection_reason:
        message = f"{message} Reason: {leave.rejection_reason}"
    return create_notification(
        db,
        user_id=leave.user_id,
        notification_type=f"leave_{decision}",
        title=f"Leave request {decision}",
        message=message,
        tenant_id=leave.tenant_id,
        data={"leave_request_id": str(leave.id)},
    )


def notify_tool_incident(db: Session, tool, incident: str, approvers: Iterable[User]):
    created = []
    for approver in approvers:
        n = create_notification(
            db,
            user_id=approver.id,
            notification_type=f"tool_{incident}",
            title=f"Tool reported {incident}",
            message=f"{tool.name} was reported {incident}.",
            tenant_id=tool.tenant_id,
            data={"tool_id": str(tool.id)},
            priority="high",
        )
        if n is not None:
            created.append(n)
    return created
