import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ChatRoomResponse(BaseModel):
    id: uuid.UUID
    site_id: Optional[uuid.UUID] = None
    name: str
    type: str
    unread_count: int = 0
    updated_at: Optional[datetime] = None


class ChatMessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    attachment: Optional[str] = None


class ChatMessageResponse(BaseModel):
    id: uuid.UUID
    room_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    attachment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
