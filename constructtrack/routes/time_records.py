"""
Time tracking API routes.
Handles check-in/out, approvals, client validation and contestations.
"""
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_tenant_context, require_min_role, require_permission
from ..errors import ForbiddenError
from ..models.models import Client, Contestation, Site, TimeRecord
from ..schemas.time_records import (
    CheckInRequest,
    CheckOutRequest,
    ApproveRequest,
    RejectRequest,
    TimeRecordResponse,
    ContestationCreate,
    ContestationResolve,
    ContestationResponse,
)
from ..services import time_records as records
from ..services.permissions import Capability, UserRole, has_permission, parse_role
from ..services.tenancy import RequestContext, load_scoped
from ..services.time_rules import local_day_bounds, parse_iso_date


router = APIRouter(tags=["time-records"])

worker = require_min_role(UserRole.employee)
approver = require_permission(Capability.APPROVE_TIMESHEETS)


@router.post("/time-records/check-in", response_model=TimeRecordResponse, status_code=201)
def check_in(payload: CheckInRequest, db: Session = Depends(get_db), ctx: RequestContext = Depends(worker)):
    return records.check_in(
        db,
        ctx.user,
        ctx.tenant_id,
        payload.site_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        photo=payload.photo,
        device_id=payload.device_id,
    )


@router.post("/time-records/{record_id}/check-out", response_model=TimeRecordResponse)
def check_out(
    record_id: uuid.UUID,
    payload: CheckOutRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(worker),
):
    return records.check_out(
        db,
        ctx.user,
        ctx.tenant_id,
        record_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        photo=payload.photo,
        device_id=payload.device_id,
    )


@router.get("/time-records/active", response_model=Optional[TimeRecordResponse])
def get_my_active_record(db: Session = Depends(get_db), ctx: RequestContext = Depends(worker)):
    record = records.get_active_record(db, ctx.user.id)
    if record is None or record.tenant_id != ctx.tenant_id:
        return None
    return record


@router.get("/time-records/my", response_model=List[TimeRecordResponse])
def list_my_records(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(worker),
):
    return (
        db.query(TimeRecord)
        .filter(TimeRecord.tenant_id == ctx.tenant_id, TimeRecord.user_id == ctx.user.id)
        .order_by(TimeRecord.check_in_time.desc())
        .limit(limit)
        .all()
    )


@router.get("/time-records", response_model=List[TimeRecordResponse])
def list_records(
    status: Optional[str] = Query(default=None),
    site_id: Optional[uuid.UUID] = Query(default=None),
    user_id: Optional[uuid.UUID] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    """Team view for approvers; clients only see records of their own sites."""
    role = parse_role(ctx.user.role)
    query = db.query(TimeRecord).filter(TimeRecord.tenant_id == ctx.tenant_id)
    if role == UserRole.client:
        if not has_permission(role, Capability.VIEW_SITE_HOURS):
            raise ForbiddenError("Insufficient permissions")
        query = (
            query.join(Site, Site.id == TimeRecord.site_id)
            .join(Client, Client.id == Site.client_id)
            .filter(Client.user_id == ctx.user.id)
        )
    elif not has_permission(role, Capability.VIEW_TEAM_TIMESHEETS):
        raise ForbiddenError("Insufficient permissions")

    if status:
        query = query.filter(TimeRecord.status == status)
    if site_id is not None:
        query = query.filter(TimeRecord.site_id == site_id)
    if user_id is not None:
        query = query.filter(TimeRecord.user_id == user_id)
    start = parse_iso_date(start_date) if start_date else None
    end = parse_iso_date(end_date) if end_date else None
    if start or end:
        lower, upper = local_day_bounds(start or end, end or start)
        if start:
            query = query.filter(TimeRecord.check_in_time >= lower)
        if end:
            query = query.filter(TimeRecord.check_in_time <= upper)
    return query.order_by(TimeRecord.check_in_time.desc()).all()


@router.patch("/time-records/{record_id}/approve", response_model=TimeRecordResponse)
def approve_record(
    record_id: uuid.UUID,
    payload: Optional[ApproveRequest] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(approver),
):
    return records.approve(db, ctx.user, ctx.tenant_id, record_id, payload.note if payload else None)


@router.patch("/time-records/{record_id}/reject", response_model=TimeRecordResponse)
def reject_record(
    record_id: uuid.UUID,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(approver),
):
    return records.reject(db, ctx.user, ctx.tenant_id, record_id, payload.reason)


@router.patch("/time-records/{record_id}/client-validate", response_model=TimeRecordResponse)
def client_validate_record(
    record_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.VALIDATE_TIME_RECORDS)),
):
    return records.client_validate(db, ctx.user, ctx.tenant_id, record_id)


# =====================
# Contestations
# =====================


@router.post("/contestations", response_model=ContestationResponse, status_code=201)
def create_contestation(
    payload: ContestationCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.CONTEST_TIME_RECORDS)),
):
    return records.contest(
        db, ctx.user, ctx.tenant_id, payload.time_record_id, payload.reason, payload.severity.value
    )


@router.get("/contestations", response_model=List[ContestationResponse])
def list_contestations(
    status: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    role = parse_role(ctx.user.role)
    query = db.query(Contestation).filter(Contestation.tenant_id == ctx.tenant_id)
    if role == UserRole.client:
        query = query.filter(Contestation.client_id == ctx.user.id)
    elif not has_permission(role, Capability.APPROVE_TIMESHEETS):
        raise ForbiddenError("Insufficient permissions")
    if status:
        query = query.filter(Contestation.status == status)
    return query.order_by(Contestation.created_at.desc()).all()


@router.patch("/contestations/{contestation_id}/resolve", response_model=ContestationResponse)
def resolve_contestation(
    contestation_id: uuid.UUID,
    payload: ContestationResolve,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(approver),
):
    return records.resolve_contestation(
        db, ctx.user, ctx.tenant_id, contestation_id, payload.status.value, payload.resolution
    )


@router.get("/time-records/{record_id}", response_model=TimeRecordResponse)
def get_record(record_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(get_tenant_context)):
    record = load_scoped(db, TimeRecord, record_id, ctx.tenant_id, "Time record")
    role = parse_role(ctx.user.role)
    if record.user_id == ctx.user.id or has_permission(role, Capability.VIEW_TEAM_TIMESHEETS):
        return record
    if role == UserRole.client and records.client_owns_record(db, ctx.user, record):
        return record
    raise ForbiddenError("Access denied")
