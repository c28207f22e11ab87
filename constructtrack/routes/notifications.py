import uuid
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_current_user
from ..errors import NotFoundError
from ..models.models import Notification, User
from ..schemas.notifications import (
    NotificationResponse,
    NotificationPreferences,
    NotificationPreferencesUpdate,
)
from ..services.notifications import get_or_create_preferences


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


@router.get("/unread-count")
def get_unread_count(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .count()
    )
    return {"count": count}


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_as_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Other users' notifications are reported as missing
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if notification is None:
        raise NotFoundError("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = datetime.now(timezone.utc)
        db.commit()
        db.refresh(notification)
    return notification


@router.post("/mark-all-read")
def mark_all_as_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    updated_count = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": datetime.now(timezone.utc)}, synchronize_session=False)
    )
    db.commit()
    return {"success": True, "updated_count": updated_count}


@router.get("/preferences", response_model=NotificationPreferences)
def get_preferences(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    pref = get_or_create_preferences(db, user.id)
    db.commit()
    return pref


@router.put("/preferences", response_model=NotificationPreferences)
def update_preferences(
    payload: NotificationPreferencesUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    pref = get_or_create_preferences(db, user.id)
    for key, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(pref, key, value)
    db.commit()
    db.refresh(pref)
    return pref
