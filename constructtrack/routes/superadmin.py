"""
Platform administration: tenants, impersonation and platform stats.
"""
import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_permission
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import AuthSession, Tenant, TimeRecord, User
from ..schemas.tenants import (
    TenantCreate,
    TenantUpdate,
    TenantResponse,
    ImpersonationStatus,
    PlatformStats,
)
from ..services.audit import record_audit
from ..services.permissions import Capability
from ..services.tenancy import RequestContext


router = APIRouter(prefix="/superadmin", tags=["superadmin"])
logger = structlog.get_logger(__name__)

manage_tenants = require_permission(Capability.MANAGE_TENANTS, tenant=False)
impersonate = require_permission(Capability.IMPERSONATE_TENANT, tenant=False)
platform_stats = require_permission(Capability.VIEW_PLATFORM_STATS, tenant=False)


def _get_tenant(db: Session, tenant_id: uuid.UUID) -> Tenant:
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


@router.get("/tenants", response_model=List[TenantResponse])
def list_tenants(
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(manage_tenants),
):
    query = db.query(Tenant)
    if status:
        query = query.filter(Tenant.subscription_status == status)
    return query.order_by(Tenant.created_at.desc()).all()


@router.post("/tenants", response_model=TenantResponse, status_code=201)
def create_tenant(
    payload: TenantCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(manage_tenants),
):
    if db.query(Tenant).filter(Tenant.name == payload.name).first():
        raise ConflictError("Tenant name already exists")
    data = payload.model_dump(exclude={"settings"})
    tenant = Tenant(**data)
    tenant.settings = (payload.settings.model_dump() if payload.settings else {})
    db.add(tenant)
    db.flush()
    record_audit(db, "tenant", tenant.id, "CREATE", actor=ctx.user, tenant_id=tenant.id)
    db.commit()
    db.refresh(tenant)
    return tenant


@router.patch("/tenants/{tenant_id}", response_model=TenantResponse)
def update_tenant(
    tenant_id: uuid.UUID,
    payload: TenantUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(manage_tenants),
):
    tenant = _get_tenant(db, tenant_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and data["name"] != tenant.name:
        if db.query(Tenant).filter(Tenant.name == data["name"], Tenant.id != tenant.id).first():
            raise ConflictError("Tenant name already exists")
    if "settings" in data:
        merged = dict(tenant.settings or {})
        merged.update(data.pop("settings") or {})
        tenant.settings = merged
    for key, value in data.items():
        setattr(tenant, key, value.value if hasattr(value, "value") else value)
    record_audit(db, "tenant", tenant.id, "UPDATE", actor=ctx.user, tenant_id=tenant.id,
                 changes_json={"after": payload.model_dump(mode="json", exclude_unset=True)})
    db.commit()
    db.refresh(tenant)
    return tenant


@router.delete("/tenants/{tenant_id}")
def cancel_tenant(
    tenant_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(manage_tenants),
):
    """Soft delete: the tenant is marked cancelled, its data is kept."""
    tenant = _get_tenant(db, tenant_id)
    tenant.subscription_status = "cancelled"
    # Sessions impersonating the tenant drop back to the platform context
    ended = (
        db.query(AuthSession)
        .filter(AuthSession.impersonated_tenant_id == tenant.id)
        .update({"impersonated_tenant_id": None, "impersonated_tenant_name": None}, synchronize_session=False)
    )
    record_audit(db, "tenant", tenant.id, "CANCEL", actor=ctx.user, tenant_id=tenant.id,
                 context={"impersonations_ended": ended})
    db.commit()
    logger.info("tenant_cancelled", tenant_id=str(tenant.id), impersonations_ended=ended)
    return {"status": "ok", "id": str(tenant.id)}


@router.post("/impersonate/{tenant_id}", response_model=ImpersonationStatus)
def start_impersonation(
    tenant_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(impersonate),
):
    """Make ``tenant_id`` the effective tenant of the calling session only."""
    tenant = _get_tenant(db, tenant_id)
    if tenant.subscription_status == "cancelled":
        raise ValidationError("Cannot impersonate a cancelled tenant")
    session = ctx.session
    session.impersonated_tenant_id = tenant.id
    session.impersonated_tenant_name = tenant.name
    record_audit(db, "tenant", tenant.id, "IMPERSONATE_START", actor=ctx.user, tenant_id=tenant.id,
                 context={"session_id": str(session.id)})
    db.commit()
    logger.info("impersonation_started", user_id=str(ctx.user.id), session_id=str(session.id), tenant_id=str(tenant.id))
    return ImpersonationStatus(impersonating=True, tenant_id=tenant.id, tenant_name=tenant.name)


@router.post("/stop-impersonate", response_model=ImpersonationStatus)
def stop_impersonation(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(impersonate),
):
    session = ctx.session
    previous = session.impersonated_tenant_id
    session.impersonated_tenant_id = None
    session.impersonated_tenant_name = None
    if previous is not None:
        record_audit(db, "tenant", previous, "IMPERSONATE_STOP", actor=ctx.user, tenant_id=previous,
                     context={"session_id": str(session.id)})
    db.commit()
    logger.info("impersonation_stopped", user_id=str(ctx.user.id), session_id=str(session.id))
    return ImpersonationStatus(impersonating=False)


@router.get("/impersonation-status", response_model=ImpersonationStatus)
def impersonation_status(ctx: RequestContext = Depends(impersonate)):
    if not ctx.is_impersonating:
        return ImpersonationStatus(impersonating=False)
    return ImpersonationStatus(
        impersonating=True,
        tenant_id=ctx.session.impersonated_tenant_id,
        tenant_name=ctx.session.impersonated_tenant_name,
    )


@router.get("/stats", response_model=PlatformStats)
def get_platform_stats(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(platform_stats),
):
    total_tenants = db.query(func.count(Tenant.id)).scalar() or 0
    active_tenants = db.query(func.count(Tenant.id)).filter(Tenant.subscription_status == "active").scalar() or 0
    total_users = db.query(func.count(User.id)).filter(User.role != "superadmin").scalar() or 0
    active_workers = (
        db.query(func.count(func.distinct(TimeRecord.user_id)))
        .filter(TimeRecord.check_out_time.is_(None))
        .scalar()
        or 0
    )
    return PlatformStats(
        total_tenants=total_tenants,
        active_tenants=active_tenants,
        total_users=total_users,
        active_workers=active_workers,
    )
