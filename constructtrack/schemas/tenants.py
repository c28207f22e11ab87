import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, EmailStr, Field


class SubscriptionStatus(str, Enum):
    active = "active"
    suspended = "suspended"
    cancelled = "cancelled"


class TenantSettings(BaseModel):
    geofence_radius: int = 100
    require_selfie: bool = False
    require_pin: bool = False
    default_language: str = "es"


class TenantBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo: Optional[str] = None
    subscription_plan: str = "basic"


class TenantCreate(TenantBase):
    settings: Optional[TenantSettings] = None


class TenantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo: Optional[str] = None
    subscription_plan: Optional[str] = None
    subscription_status: Optional[SubscriptionStatus] = None
    settings: Optional[TenantSettings] = None


class TenantSelfUpdate(BaseModel):
    """Fields a tenant's own staff may change"""
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    logo: Optional[str] = None
    settings: Optional[TenantSettings] = None


class TenantResponse(TenantBase):
    id: uuid.UUID
    email: Optional[str] = None
    subscription_status: SubscriptionStatus
    settings: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ImpersonationStatus(BaseModel):
    impersonating: bool
    tenant_id: Optional[uuid.UUID] = None
    tenant_name: Optional[str] = None


class PlatformStats(BaseModel):
    total_tenants: int
    active_tenants: int
    total_users: int
    active_workers: int
