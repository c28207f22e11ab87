import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ToolStatus(str, Enum):
    available = "available"
    in_use = "in_use"
    maintenance = "maintenance"
    lost = "lost"
    stolen = "stolen"


class TransactionType(str, Enum):
    checkout = "checkout"
    checkin = "checkin"
    lost = "lost"
    stolen = "stolen"
    damaged = "damaged"


class Condition(str, Enum):
    good = "good"
    damaged = "damaged"


# Tool Schemas
class ToolBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: Optional[str] = None
    serial_number: Optional[str] = None
    qr_code: Optional[str] = None
    photo: Optional[str] = None


class ToolCreate(ToolBase):
    pass


class ToolResponse(ToolBase):
    id: uuid.UUID
    tenant_id: uuid.UUID
    status: ToolStatus
    current_user_id: Optional[uuid.UUID] = None
    current_site_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Movement Schemas
class ToolCheckout(BaseModel):
    site_id: Optional[uuid.UUID] = None
    condition: Condition = Condition.good
    notes: Optional[str] = None
    photo: Optional[str] = None


class ToolCheckin(BaseModel):
    condition: Condition = Condition.good
    notes: Optional[str] = None
    photo: Optional[str] = None


class ToolIncident(BaseModel):
    type: TransactionType
    notes: Optional[str] = None
    photo: Optional[str] = None


class ToolTransactionResponse(BaseModel):
    id: uuid.UUID
    tool_id: uuid.UUID
    user_id: uuid.UUID
    site_id: Optional[uuid.UUID] = None
    type: TransactionType
    condition: Optional[Condition] = None
    notes: Optional[str] = None
    photo: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
