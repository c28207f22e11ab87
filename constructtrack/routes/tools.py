import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_min_role, require_permission
from ..errors import ConflictError, NotFoundError
from ..models.models import Tool, ToolTransaction
from ..schemas.tools import (
    ToolCreate,
    ToolResponse,
    ToolCheckout,
    ToolCheckin,
    ToolIncident,
    ToolTransactionResponse,
)
from ..services import tools as tool_service
from ..services.audit import record_audit
from ..services.permissions import Capability, UserRole
from ..services.tenancy import RequestContext, load_scoped


router = APIRouter(prefix="/tools", tags=["tools"])

# Any worker or above may move tools; clients never touch the inventory
tool_user = require_min_role(UserRole.employee)


@router.get("", response_model=List[ToolResponse])
def list_tools(
    status: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(tool_user),
):
    query = db.query(Tool).filter(Tool.tenant_id == ctx.tenant_id)
    if status:
        query = query.filter(Tool.status == status)
    if category:
        query = query.filter(Tool.category == category)
    return query.order_by(Tool.name).all()


@router.get("/qr/{qr_code}", response_model=ToolResponse)
def get_tool_by_qr(qr_code: str, db: Session = Depends(get_db), ctx: RequestContext = Depends(tool_user)):
    tool = db.query(Tool).filter(Tool.tenant_id == ctx.tenant_id, Tool.qr_code == qr_code).first()
    if tool is None:
        raise NotFoundError("Tool not found")
    return tool


@router.get("/{tool_id}", response_model=ToolResponse)
def get_tool(tool_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(tool_user)):
    return load_scoped(db, Tool, tool_id, ctx.tenant_id, "Tool")


@router.post("", response_model=ToolResponse, status_code=201)
def create_tool(
    payload: ToolCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_TOOLS)),
):
    if payload.qr_code:
        taken = db.query(Tool).filter(Tool.tenant_id == ctx.tenant_id, Tool.qr_code == payload.qr_code).first()
        if taken is not None:
            raise ConflictError("QR code already in use")
    tool = Tool(tenant_id=ctx.tenant_id, status="available", **payload.model_dump())
    db.add(tool)
    db.flush()
    record_audit(db, "tool", tool.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": {"name": tool.name, "status": "available"}})
    db.commit()
    db.refresh(tool)
    return tool


@router.post("/{tool_id}/checkout", response_model=ToolTransactionResponse)
def checkout_tool(
    tool_id: uuid.UUID,
    payload: ToolCheckout,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(tool_user),
):
    return tool_service.checkout_tool(
        db, ctx.user, ctx.tenant_id, tool_id,
        site_id=payload.site_id,
        condition=payload.condition.value,
        notes=payload.notes,
        photo=payload.photo,
    )


@router.post("/{tool_id}/checkin", response_model=ToolTransactionResponse)
def checkin_tool(
    tool_id: uuid.UUID,
    payload: ToolCheckin,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(tool_user),
):
    return tool_service.checkin_tool(
        db, ctx.user, ctx.tenant_id, tool_id,
        condition=payload.condition.value,
        notes=payload.notes,
        photo=payload.photo,
    )


@router.post("/{tool_id}/incident", response_model=ToolTransactionResponse)
def report_tool_incident(
    tool_id: uuid.UUID,
    payload: ToolIncident,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(tool_user),
):
    return tool_service.report_incident(
        db, ctx.user, ctx.tenant_id, tool_id, payload.type.value, notes=payload.notes, photo=payload.photo
    )


@router.get("/{tool_id}/transactions", response_model=List[ToolTransactionResponse])
def list_tool_transactions(tool_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(tool_user)):
    tool = load_scoped(db, Tool, tool_id, ctx.tenant_id, "Tool")
    return (
        db.query(ToolTransaction)
        .filter(ToolTransaction.tool_id == tool.id)
        .order_by(ToolTransaction.created_at.desc())
        .all()
    )
