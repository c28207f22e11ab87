import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from ..services.permissions import UserRole


class UserBase(BaseModel):
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole = UserRole.employee
    hourly_rate: Optional[float] = Field(default=None, ge=0)


class UserCreate(UserBase):
    password: str = Field(min_length=8)
    pin: Optional[str] = Field(default=None, max_length=10)
    vacation_days_balance: Optional[int] = Field(default=None, ge=0)


class UserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[UserRole] = None
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    vacation_days_balance: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    pin: Optional[str] = Field(default=None, max_length=10)


class UserResponse(BaseModel):
    id: uuid.UUID
    tenant_id: Optional[uuid.UUID] = None
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    role: UserRole
    hourly_rate: Optional[float] = None
    vacation_days_balance: int
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True
