import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_tenant_context, require_min_role, require_permission
from ..errors import ConflictError, ForbiddenError, ValidationError
from ..models.models import Client, ServiceOrder, Site, User
from ..schemas.service_orders import (
    CalculationResponse,
    ServiceOrderCreate,
    ServiceOrderUpdate,
    ServiceOrderResponse,
)
from ..services.audit import record_audit
from ..services.permissions import Capability, UserRole, has_role, parse_role
from ..services.service_orders import load_and_calculate
from ..services.tenancy import RequestContext, load_scoped
from ..services.time_rules import parse_iso_date


router = APIRouter(prefix="/service-orders", tags=["service-orders"])
logger = structlog.get_logger(__name__)

ORDER_TRANSITIONS = {
    "pending": {"in_progress", "cancelled"},
    "in_progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def _optional_uuid(value: Optional[str], label: str) -> Optional[uuid.UUID]:
    # "" and "all" mean no filter
    if value is None or value.strip() in ("", "all"):
        return None
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        raise ValidationError(f"Invalid {label}")


def _estimate(hours, rate) -> Optional[Decimal]:
    if hours is None or rate is None:
        return None
    return (Decimal(str(hours)) * Decimal(str(rate))).quantize(Decimal("0.01"))


@router.get("/calculate", response_model=CalculationResponse)
def calculate_service_orders(
    start_date: Optional[str] = Query(default=None, alias="startDate"),
    end_date: Optional[str] = Query(default=None, alias="endDate"),
    site_id: Optional[str] = Query(default=None, alias="siteId"),
    client_id: Optional[str] = Query(default=None, alias="clientId"),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_min_role(UserRole.manager)),
):
    """
    Cost report for a closed local-date range.

    Read only; repeated calls over unchanged data return the same payload.
    """
    if not start_date or not end_date:
        raise ValidationError("startDate and endDate are required")
    start = parse_iso_date(start_date)
    end = parse_iso_date(end_date)
    if start > end:
        raise ValidationError("Start date must be before end date")

    return load_and_calculate(
        db,
        ctx.tenant_id,
        start,
        end,
        site_id=_optional_uuid(site_id, "siteId"),
        client_id=_optional_uuid(client_id, "clientId"),
    )


@router.get("", response_model=List[ServiceOrderResponse])
def list_service_orders(
    status: Optional[str] = Query(default=None),
    site_id: Optional[uuid.UUID] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    query = db.query(ServiceOrder).filter(ServiceOrder.tenant_id == ctx.tenant_id)
    role = parse_role(ctx.user.role)
    if role == UserRole.client:
        query = query.join(Client, Client.id == ServiceOrder.client_id).filter(Client.user_id == ctx.user.id)
    elif not has_role(role, UserRole.manager):
        raise ForbiddenError("Insufficient permissions")
    if status:
        query = query.filter(ServiceOrder.status == status)
    if site_id is not None:
        query = query.filter(ServiceOrder.site_id == site_id)
    return query.order_by(ServiceOrder.created_at.desc()).all()


@router.get("/{order_id}", response_model=ServiceOrderResponse)
def get_service_order(order_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    order = load_scoped(db, ServiceOrder, order_id, ctx.tenant_id, "Service order")
    role = parse_role(ctx.user.role)
    if role == UserRole.client:
        client = db.get(Client, order.client_id)
        if client is None or client.user_id != ctx.user.id:
            raise ForbiddenError("Access denied")
    elif not has_role(role, UserRole.manager):
        raise ForbiddenError("Insufficient permissions")
    return order


@router.post("", response_model=ServiceOrderResponse, status_code=201)
def create_service_order(
    payload: ServiceOrderCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_SERVICE_ORDERS)),
):
    site = load_scoped(db, Site, payload.site_id, ctx.tenant_id, "Site")
    load_scoped(db, Client, payload.client_id, ctx.tenant_id, "Client")
    if site.client_id != payload.client_id:
        raise ValidationError("Site does not belong to this client")
    if payload.assigned_to is not None:
        load_scoped(db, User, payload.assigned_to, ctx.tenant_id, "User")
    duplicate = (
        db.query(ServiceOrder)
        .filter(ServiceOrder.tenant_id == ctx.tenant_id, ServiceOrder.order_number == payload.order_number)
        .first()
    )
    if duplicate is not None:
        raise ConflictError("Order number already exists")

    data = payload.model_dump()
    data["priority"] = payload.priority.value
    order = ServiceOrder(
        tenant_id=ctx.tenant_id,
        status="pending",
        created_by=ctx.user.id,
        estimated_amount=_estimate(payload.estimated_hours, payload.hourly_rate),
        **data,
    )
    db.add(order)
    db.flush()
    record_audit(db, "service_order", order.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": {"order_number": order.order_number, "status": "pending"}})
    db.commit()
    db.refresh(order)
    return order


@router.patch("/{order_id}", response_model=ServiceOrderResponse)
def update_service_order(
    order_id: uuid.UUID,
    payload: ServiceOrderUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_min_role(UserRole.manager)),
):
    order = load_scoped(db, ServiceOrder, order_id, ctx.tenant_id, "Service order")
    data = payload.model_dump(exclude_unset=True)
    before = order.status

    new_status = data.pop("status", None)
    if new_status is not None and new_status.value != order.status:
        if new_status.value not in ORDER_TRANSITIONS.get(order.status, set()):
            raise ConflictError(f"Cannot move service order from {order.status} to {new_status.value}")
        order.status = new_status.value
        if order.status == "completed":
            order.completed_at = datetime.now(timezone.utc)
    if "priority" in data and data["priority"] is not None:
        data["priority"] = data["priority"].value
    if data.get("assigned_to") is not None:
        load_scoped(db, User, data["assigned_to"], ctx.tenant_id, "User")

    for key, value in data.items():
        setattr(order, key, value)
    if "estimated_hours" in data or "hourly_rate" in data:
        order.estimated_amount = _estimate(order.estimated_hours, order.hourly_rate)

    record_audit(db, "service_order", order.id, "UPDATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"before": {"status": before},
                               "after": payload.model_dump(mode="json", exclude_unset=True)})
    db.commit()
    db.refresh(order)
    return order


@router.delete("/{order_id}")
def delete_service_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_SERVICE_ORDERS)),
):
    order = load_scoped(db, ServiceOrder, order_id, ctx.tenant_id, "Service order")
    record_audit(db, "service_order", order.id, "DELETE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"before": {"order_number": order.order_number, "status": order.status}})
    db.delete(order)
    db.commit()
    logger.info("service_order_deleted", order_id=str(order_id), tenant_id=str(ctx.tenant_id))
    return {"status": "ok"}
