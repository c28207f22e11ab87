import json
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import anyio
import structlog
from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import authenticate_token, get_tenant_context
from ..errors import AppError, ForbiddenError, ValidationError
from ..models.models import ChatMessage, ChatParticipant, ChatRoom
from ..schemas.chat import ChatRoomResponse, ChatMessageCreate, ChatMessageResponse
from ..services.chat_hub import hub
from ..services.permissions import UserRole, has_role
from ..services.tenancy import RequestContext, build_context, load_scoped


router = APIRouter(tags=["chat"])
logger = structlog.get_logger(__name__)


def _participant(db: Session, room_id: uuid.UUID, user_id: uuid.UUID) -> Optional[ChatParticipant]:
    return (
        db.query(ChatParticipant)
        .filter(ChatParticipant.room_id == room_id, ChatParticipant.user_id == user_id)
        .first()
    )


def _room_for(db: Session, ctx: RequestContext, room_id: uuid.UUID) -> ChatRoom:
    """Load a room the caller may read: participants, plus managers and above of the tenant."""
    room = load_scoped(db, ChatRoom, room_id, ctx.tenant_id, "Chat room")
    if _participant(db, room.id, ctx.user.id) is None and not has_role(ctx.user.role, UserRole.manager):
        raise ForbiddenError("Not a participant of this room")
    return room


def _message_out(msg: ChatMessage) -> dict:
    return {
        "id": str(msg.id),
        "room_id": str(msg.room_id),
        "sender_id": str(msg.sender_id),
        "content": msg.content,
        "attachment": msg.attachment,
        "created_at": msg.created_at.isoformat() if msg.created_at else None,
    }


def _parse_frame(frame: str) -> dict:
    data = json.loads(frame)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


@router.get("/chat/rooms", response_model=List[ChatRoomResponse])
def list_rooms(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    query = db.query(ChatRoom).filter(ChatRoom.tenant_id == ctx.tenant_id)
    if not has_role(ctx.user.role, UserRole.manager):
        query = query.join(ChatParticipant, ChatParticipant.room_id == ChatRoom.id).filter(
            ChatParticipant.user_id == ctx.user.id
        )
    rooms = query.order_by(ChatRoom.updated_at.desc()).all()

    out = []
    for room in rooms:
        membership = _participant(db, room.id, ctx.user.id)
        unread = db.query(func.count(ChatMessage.id)).filter(
            ChatMessage.room_id == room.id, ChatMessage.sender_id != ctx.user.id
        )
        if membership is not None and membership.last_read_at is not None:
            unread = unread.filter(ChatMessage.created_at > membership.last_read_at)
        out.append(ChatRoomResponse(
            id=room.id,
            site_id=room.site_id,
            name=room.name,
            type=room.type,
            unread_count=int(unread.scalar() or 0),
            updated_at=room.updated_at,
        ))
    return out


@router.get("/chat/rooms/{room_id}/messages", response_model=List[ChatMessageResponse])
def list_messages(
    room_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=200),
    before: Optional[datetime] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    """History read path; covers messages a dropped socket missed."""
    room = _room_for(db, ctx, room_id)
    query = db.query(ChatMessage).filter(ChatMessage.room_id == room.id)
    if before is not None:
        query = query.filter(ChatMessage.created_at < before)
    rows = query.order_by(ChatMessage.created_at.desc()).limit(limit).all()
    return list(reversed(rows))


@router.post("/chat/rooms/{room_id}/messages", response_model=ChatMessageResponse, status_code=201)
def send_message(
    room_id: uuid.UUID,
    payload: ChatMessageCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    room = _room_for(db, ctx, room_id)
    content = payload.content.strip()
    if not content:
        raise ValidationError("Empty message")

    msg = ChatMessage(room_id=room.id, sender_id=ctx.user.id, content=content, attachment=payload.attachment)
    db.add(msg)
    room.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(msg)

    # Persisted first; live delivery is best effort
    data = _message_out(msg)

    async def _broadcast():
        await hub.broadcast_to_room(str(room.id), "message_new", data)

    anyio.from_thread.run(_broadcast)
    return msg


@router.post("/chat/rooms/{room_id}/read")
def mark_room_read(room_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    room = _room_for(db, ctx, room_id)
    membership = _participant(db, room.id, ctx.user.id)
    if membership is None:
        raise ForbiddenError("Not a participant of this room")
    membership.last_read_at = datetime.now(timezone.utc)
    db.commit()
    return {"ok": True}


@router.websocket("/ws/chat")
async def ws_chat(websocket: WebSocket, token: Optional[str] = None, db: Session = Depends(get_db)):
    """
    Live room feed.

    Client frames: "ping", {"type": "join", "room_id": ...} and
    {"type": "leave", "room_id": ...}. Server frames: {"event", "data"}.
    """
    if not token:
        await websocket.close(code=4401)
        return
    try:
        session = authenticate_token(db, token)
    except AppError:
        await websocket.close(code=4401)
        return
    ctx = build_context(session.user, session)

    await websocket.accept()
    try:
        while True:
            frame = await websocket.receive_text()
            if frame.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
                continue
            try:
                message = _parse_frame(frame)
                room = _room_for(db, ctx, uuid.UUID(str(message.get("room_id"))))
            except (ValueError, AppError) as e:
                await websocket.send_json({"event": "error", "data": {"detail": str(e)}})
                continue
            if message.get("type") == "join":
                await hub.join(str(room.id), websocket)
                await websocket.send_json({"event": "joined", "data": {"room_id": str(room.id)}})
            elif message.get("type") == "leave":
                await hub.leave(str(room.id), websocket)
                await websocket.send_json({"event": "left", "data": {"room_id": str(room.id)}})
    except WebSocketDisconnect:
        logger.info("chat_socket_closed", user_id=str(ctx.user.id))
    finally:
        await hub.leave_all(websocket)


