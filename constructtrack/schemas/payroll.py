import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class PayrollStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    paid = "paid"


class PayrollCreate(BaseModel):
    user_id: uuid.UUID
    period_start: date
    period_end: date
    regular_hours: float = Field(default=0, ge=0)
    overtime_hours: float = Field(default=0, ge=0)
    night_hours: float = Field(default=0, ge=0)
    vacation_days: int = Field(default=0, ge=0)
    sick_days: int = Field(default=0, ge=0)
    unpaid_days: int = Field(default=0, ge=0)
    total_amount: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must be on or before period_end")
        return self


class PayrollGenerate(BaseModel):
    user_id: uuid.UUID
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _check_period(self):
        if self.period_start > self.period_end:
            raise ValueError("period_start must be on or before period_end")
        return self


class PayrollUpdate(BaseModel):
    regular_hours: Optional[float] = Field(default=None, ge=0)
    overtime_hours: Optional[float] = Field(default=None, ge=0)
    night_hours: Optional[float] = Field(default=None, ge=0)
    total_amount: Optional[float] = Field(default=None, ge=0)
    status: Optional[PayrollStatus] = None


class PayrollResponse(BaseModel):
    id: uuid.UUID
    tenant_id: uuid.UUID
    user_id: uuid.UUID
    period_start: date
    period_end: date
    regular_hours: float
    overtime_hours: float
    night_hours: float
    vacation_days: int
    sick_days: int
    unpaid_days: int
    total_amount: Optional[float] = None
    status: PayrollStatus
    paid_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
