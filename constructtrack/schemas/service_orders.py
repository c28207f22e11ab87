import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field


class ServiceOrderStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class ServiceOrderPriority(str, Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


# Persisted orders
class ServiceOrderBase(BaseModel):
    site_id: uuid.UUID
    client_id: uuid.UUID
    order_number: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1)
    priority: ServiceOrderPriority = ServiceOrderPriority.normal
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None


class ServiceOrderCreate(ServiceOrderBase):
    pass


class ServiceOrderUpdate(BaseModel):
    description: Optional[str] = Field(default=None, min_length=1)
    status: Optional[ServiceOrderStatus] = None
    priority: Optional[ServiceOrderPriority] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    actual_amount: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None
    assigned_to: Optional[uuid.UUID] = None


class ServiceOrderResponse(ServiceOrderBase):
    id: uuid.UUID
    tenant_id: uuid.UUID
    status: ServiceOrderStatus
    actual_hours: Optional[float] = None
    estimated_amount: Optional[float] = None
    actual_amount: Optional[float] = None
    created_by: Optional[uuid.UUID] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Calculated report
class CalculatedOrder(BaseModel):
    site_id: str
    site_name: str
    client_id: Optional[str] = None
    client_name: str
    billing_type: str
    hourly_rate: float
    total_hours: float
    overtime_hours: float
    regular_hours: float
    approved_records: int
    pending_records: int
    regular_cost: float
    overtime_cost: float
    total_cost: float
    workers: List[str]
    worker_ids: List[str]
    work_days: int


class CalculationTotals(BaseModel):
    total_hours: float
    overtime_hours: float
    total_cost: float
    approved_records: int
    pending_records: int


class CalculationPeriod(BaseModel):
    start_date: str
    end_date: str


class CalculationResponse(BaseModel):
    orders: List[CalculatedOrder]
    totals: CalculationTotals
    period: CalculationPeriod
    overtime_multiplier: float
