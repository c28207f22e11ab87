import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class BillingType(str, Enum):
    hourly = "hourly"
    daily = "daily"
    fixed = "fixed"


class SiteStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"


class AssignmentRole(str, Enum):
    worker = "worker"
    supervisor = "supervisor"


# Client Schemas
class ClientBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    tax_id: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    contact_person: Optional[str] = None
    type: str = "company"
    user_id: Optional[uuid.UUID] = None


class ClientCreate(ClientBase):
    pass


class ClientResponse(ClientBase):
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


# Site Schemas
class SiteBase(BaseModel):
    client_id: uuid.UUID
    name: str = Field(min_length=1, max_length=255)
    address: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    geofence_radius: Optional[int] = Field(default=100, gt=0)
    work_start_time: Optional[str] = "08:00"
    work_end_time: Optional[str] = "17:00"
    billing_type: BillingType = BillingType.hourly
    hourly_rate: Optional[float] = Field(default=None, ge=0)

    @field_validator("work_start_time", "work_end_time")
    @classmethod
    def _hhmm(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts) or int(parts[0]) > 23 or int(parts[1]) > 59:
            raise ValueError("must be HH:MM")
        return f"{int(parts[0]):02d}:{int(parts[1]):02d}"


class SiteCreate(SiteBase):
    pass


class SiteUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    address: Optional[str] = None
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    geofence_radius: Optional[int] = Field(default=None, gt=0)
    billing_type: Optional[BillingType] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    status: Optional[SiteStatus] = None


class SiteResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    client_id: uuid.UUID
    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geofence_radius: Optional[int] = None
    work_start_time: Optional[str] = None
    work_end_time: Optional[str] = None
    billing_type: BillingType
    hourly_rate: Optional[float] = None
    status: SiteStatus
    created_at: datetime

    class Config:
        from_attributes = True


# Assignment Schemas
class AssignmentCreate(BaseModel):
    user_id: uuid.UUID
    role: AssignmentRole = AssignmentRole.worker


class AssignmentResponse(BaseModel):
    id: uuid.UUID
    site_id: uuid.UUID
    user_id: uuid.UUID
    role: AssignmentRole
    assigned_at: datetime
    is_active: bool

    class Config:
        from_attributes = True
