import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class LeaveType(str, Enum):
    vacation = "vacation"
    sick = "sick"
    personal = "personal"
    unpaid = "unpaid"


class LeaveStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


class LeaveRequestCreate(BaseModel):
    type: LeaveType
    start_date: date
    end_date: date
    days_count: Optional[int] = Field(default=None, gt=0)
    is_partial_day: bool = False
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        return self


class LeaveReject(BaseModel):
    reason: Optional[str] = None


class LeaveRequestResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    type: LeaveType
    start_date: date
    end_date: date
    days_count: int
    is_partial_day: bool
    reason: Optional[str] = None
    status: LeaveStatus
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LeaveBalance(BaseModel):
    user_id: uuid.UUID
    vacation_days_balance: int
    pending_vacation_days: int
