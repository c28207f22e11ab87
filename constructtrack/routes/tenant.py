import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_tenant_context, require_permission
from ..errors import NotFoundError
from ..models.models import Tenant
from ..schemas.tenants import TenantResponse, TenantSelfUpdate
from ..services.audit import get_audit_logs, record_audit
from ..services.permissions import Capability
from ..services.tenancy import RequestContext


router = APIRouter(prefix="/tenant", tags=["tenant"])


def _current_tenant(db: Session, ctx: RequestContext) -> Tenant:
    tenant = db.get(Tenant, ctx.tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


@router.get("", response_model=TenantResponse)
def get_my_tenant(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    return _current_tenant(db, ctx)


@router.patch("", response_model=TenantResponse)
def update_my_tenant(
    payload: TenantSelfUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.EDIT_COMPANY_SETTINGS)),
):
    tenant = _current_tenant(db, ctx)
    data = payload.model_dump(exclude_unset=True)
    if "settings" in data:
        merged = dict(tenant.settings or {})
        merged.update(data.pop("settings") or {})
        tenant.settings = merged
    for key, value in data.items():
        setattr(tenant, key, value)
    record_audit(db, "tenant", tenant.id, "UPDATE", actor=ctx.user, tenant_id=tenant.id,
                 changes_json={"after": payload.model_dump(mode="json", exclude_unset=True)})
    db.commit()
    db.refresh(tenant)
    return tenant


@router.get("/audit-logs")
def list_audit_logs(
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[uuid.UUID] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.VIEW_COMPANY_SETTINGS)),
):
    logs = get_audit_logs(db, ctx.tenant_id, entity_type, entity_id, limit, offset)
    return [
        {
            "id": str(log.id),
            "entity_type": log.entity_type,
            "entity_id": str(log.entity_id),
            "action": log.action,
            "actor_id": str(log.actor_id) if log.actor_id else None,
            "actor_role": log.actor_role,
            "changes": log.changes_json,
            "context": log.context,
            "timestamp_utc": log.timestamp_utc.isoformat() if log.timestamp_utc else None,
            "integrity_hash": log.integrity_hash,
        }
        for log in logs
    ]
