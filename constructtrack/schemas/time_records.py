import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class TimeRecordStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    contested = "contested"


class ContestationSeverity(str, Enum):
    minor = "minor"
    significant = "significant"


class ContestationStatus(str, Enum):
    pending = "pending"
    resolved = "resolved"
    rejected = "rejected"


# Time record schemas
class CheckInRequest(BaseModel):
    site_id: uuid.UUID
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    photo: Optional[str] = None
    device_id: Optional[str] = None


class CheckOutRequest(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    photo: Optional[str] = None
    device_id: Optional[str] = None


class ApproveRequest(BaseModel):
    note: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class TimeRecordResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    site_id: uuid.UUID
    check_in_time: datetime
    check_out_time: Optional[datetime] = None
    check_in_latitude: Optional[float] = None
    check_in_longitude: Optional[float] = None
    check_out_latitude: Optional[float] = None
    check_out_longitude: Optional[float] = None
    check_in_photo: Optional[str] = None
    check_out_photo: Optional[str] = None
    break_minutes: int = 0
    total_hours: Optional[float] = None
    overtime_hours: Optional[float] = None
    status: TimeRecordStatus
    is_within_geofence: bool = True
    is_suspicious: bool
    suspicious_reason: Optional[str] = None
    client_validated: bool
    client_validated_at: Optional[datetime] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Contestation schemas
class ContestationCreate(BaseModel):
    time_record_id: uuid.UUID
    reason: str = Field(min_length=1)
    severity: ContestationSeverity = ContestationSeverity.minor


class ContestationResolve(BaseModel):
    status: ContestationStatus
    resolution: Optional[str] = None


class ContestationResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    time_record_id: uuid.UUID
    client_id: uuid.UUID
    reason: str
    severity: ContestationSeverity
    status: ContestationStatus
    resolution: Optional[str] = None
    resolved_by: Optional[uuid.UUID] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
