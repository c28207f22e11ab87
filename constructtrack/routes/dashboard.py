from decimal import Decimal

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_min_role
from ..models.models import Contestation, LeaveRequest, Site, TimeRecord, Tool
from ..services.permissions import UserRole
from ..services.service_orders import safe_number, to_cents
from ..services.tenancy import RequestContext
from ..services.time_rules import local_today_bounds


router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_dashboard_stats(
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_min_role(UserRole.manager)),
):
    """Today's figures for the tenant, in the configured local timezone."""
    tenant_id = ctx.tenant_id
    start_utc, end_utc = local_today_bounds()

    active_workers = (
        db.query(func.count(func.distinct(TimeRecord.user_id)))
        .filter(TimeRecord.tenant_id == tenant_id, TimeRecord.check_out_time.is_(None))
        .scalar()
        or 0
    )
    today_hours = (
        db.query(TimeRecord.total_hours)
        .filter(
            TimeRecord.tenant_id == tenant_id,
            TimeRecord.check_in_time >= start_utc,
            TimeRecord.check_in_time <= end_utc,
            TimeRecord.total_hours.isnot(None),
        )
        .all()
    )
    hours_today = sum((safe_number(h) for (h,) in today_hours), Decimal("0"))

    pending_approvals = (
        db.query(func.count(TimeRecord.id))
        .filter(TimeRecord.tenant_id == tenant_id, TimeRecord.status == "pending",
                TimeRecord.check_out_time.isnot(None))
        .scalar()
        or 0
    )
    suspicious_today = (
        db.query(func.count(TimeRecord.id))
        .filter(
            TimeRecord.tenant_id == tenant_id,
            TimeRecord.is_suspicious.is_(True),
            TimeRecord.check_in_time >= start_utc,
            TimeRecord.check_in_time <= end_utc,
        )
        .scalar()
        or 0
    )
    open_contestations = (
        db.query(func.count(Contestation.id))
        .filter(Contestation.tenant_id == tenant_id, Contestation.status == "pending")
        .scalar()
        or 0
    )
    pending_leave = (
        db.query(func.count(LeaveRequest.id))
        .filter(LeaveRequest.tenant_id == tenant_id, LeaveRequest.status == "pending")
        .scalar()
        or 0
    )
    tools_out = (
        db.query(func.count(Tool.id))
        .filter(Tool.tenant_id == tenant_id, Tool.status == "in_use")
        .scalar()
        or 0
    )
    active_sites = (
        db.query(func.count(Site.id))
        .filter(Site.tenant_id == tenant_id, Site.status == "active")
        .scalar()
        or 0
    )

    return {
        "active_workers": int(active_workers),
        "hours_today": float(to_cents(hours_today)),
        "pending_approvals": int(pending_approvals),
        "suspicious_today": int(suspicious_today),
        "open_contestations": int(open_contestations),
        "pending_leave_requests": int(pending_leave),
        "tools_out": int(tools_out),
        "active_sites": int(active_sites),
    }
