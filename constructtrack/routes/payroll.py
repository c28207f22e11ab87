import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_tenant_context, require_min_role, require_permission
from ..models.models import PayrollRecord, User
from ..schemas.payroll import PayrollCreate, PayrollGenerate, PayrollUpdate, PayrollResponse
from ..services.audit import record_audit
from ..services.payroll import apply_status, generate_payroll
from ..services.permissions import Capability, UserRole
from ..services.tenancy import RequestContext, load_scoped


router = APIRouter(prefix="/payroll", tags=["payroll"])

payroll_admin = require_permission(Capability.MANAGE_PAYROLL)


@router.get("", response_model=List[PayrollResponse])
def list_payroll(
    user_id: Optional[uuid.UUID] = Query(default=None),
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_min_role(UserRole.manager)),
):
    query = db.query(PayrollRecord).filter(PayrollRecord.tenant_id == ctx.tenant_id)
    if user_id is not None:
        query = query.filter(PayrollRecord.user_id == user_id)
    if status:
        query = query.filter(PayrollRecord.status == status)
    return query.order_by(PayrollRecord.period_start.desc()).all()


@router.get("/my", response_model=List[PayrollResponse])
def list_my_payroll(db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    return (
        db.query(PayrollRecord)
        .filter(PayrollRecord.tenant_id == ctx.tenant_id, PayrollRecord.user_id == ctx.user.id)
        .order_by(PayrollRecord.period_start.desc())
        .all()
    )


@router.post("", response_model=PayrollResponse, status_code=201)
def create_payroll(payload: PayrollCreate, db: Session = Depends(get_db), ctx: RequestContext = Depends(payroll_admin)):
    load_scoped(db, User, payload.user_id, ctx.tenant_id, "User")
    record = PayrollRecord(tenant_id=ctx.tenant_id, status="pending", **payload.model_dump())
    db.add(record)
    db.flush()
    record_audit(db, "payroll", record.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": payload.model_dump(mode="json")})
    db.commit()
    db.refresh(record)
    return record


@router.post("/generate", response_model=PayrollResponse, status_code=201)
def generate_payroll_record(
    payload: PayrollGenerate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(payroll_admin),
):
    """Build a pending payroll line from the worker's approved hours and leave."""
    worker = load_scoped(db, User, payload.user_id, ctx.tenant_id, "User")
    record = generate_payroll(db, ctx.tenant_id, worker, payload.period_start, payload.period_end)
    record_audit(db, "payroll", record.id, "GENERATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 context={"period_start": payload.period_start.isoformat(),
                          "period_end": payload.period_end.isoformat()})
    db.commit()
    db.refresh(record)
    return record


@router.patch("/{payroll_id}", response_model=PayrollResponse)
def update_payroll(
    payroll_id: uuid.UUID,
    payload: PayrollUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(payroll_admin),
):
    record = load_scoped(db, PayrollRecord, payroll_id, ctx.tenant_id, "Payroll record")
    before = record.status
    data = payload.model_dump(exclude_unset=True)
    new_status = data.pop("status", None)
    if new_status is not None:
        apply_status(record, new_status.value)
    for key, value in data.items():
        setattr(record, key, value)
    record_audit(db, "payroll", record.id, "UPDATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"before": {"status": before},
                               "after": payload.model_dump(mode="json", exclude_unset=True)})
    db.commit()
    db.refresh(record)
    return record
