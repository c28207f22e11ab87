import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel


class NotificationResponse(BaseModel):
    id: uuid.UUID
    type: str
    title: str
    message: str
    data: Optional[Dict[str, Any]] = None
    priority: str
    channel: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPreferences(BaseModel):
    email_enabled: bool = True
    push_enabled: bool = True
    sms_enabled: bool = False
    time_reminders: bool = True
    late_alerts: bool = True
    tool_alerts: bool = True
    contestation_alerts: bool = True
    leave_alerts: bool = True

    class Config:
        from_attributes = True


class NotificationPreferencesUpdate(BaseModel):
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    time_reminders: Optional[bool] = None
    late_alerts: Optional[bool] = None
    tool_alerts: Optional[bool] = None
    contestation_alerts: Optional[bool] = None
    leave_alerts: Optional[bool] = None
