import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_min_role, require_permission
from ..errors import ForbiddenError
from ..models.models import LeaveRequest, User
from ..schemas.leave import LeaveBalance, LeaveRequestCreate, LeaveReject, LeaveRequestResponse
from ..services import leave as leave_service
from ..services.permissions import Capability, UserRole, has_permission
from ..services.tenancy import RequestContext, load_scoped


router = APIRouter(prefix="/leave-requests", tags=["leave"])

worker = require_min_role(UserRole.employee)
leave_approver = require_permission(Capability.APPROVE_LEAVE)


@router.post("", response_model=LeaveRequestResponse, status_code=201)
def create_leave_request(payload: LeaveRequestCreate, db: Session = Depends(get_db), ctx: RequestContext = Depends(worker)):
    return leave_service.create_request(
        db,
        ctx.user,
        ctx.tenant_id,
        payload.type.value,
        payload.start_date,
        payload.end_date,
        days_count=payload.days_count,
        is_partial_day=payload.is_partial_day,
        reason=payload.reason,
    )


@router.get("/my", response_model=List[LeaveRequestResponse])
def list_my_leave_requests(db: Session = Depends(get_db), ctx: RequestContext = Depends(worker)):
    return (
        db.query(LeaveRequest)
        .filter(LeaveRequest.tenant_id == ctx.tenant_id, LeaveRequest.user_id == ctx.user.id)
        .order_by(LeaveRequest.start_date.desc())
        .all()
    )


@router.get("", response_model=List[LeaveRequestResponse])
def list_leave_requests(
    status: Optional[str] = Query(default=None),
    user_id: Optional[uuid.UUID] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.VIEW_TEAM_LEAVE)),
):
    query = db.query(LeaveRequest).filter(LeaveRequest.tenant_id == ctx.tenant_id)
    if status:
        query = query.filter(LeaveRequest.status == status)
    if user_id is not None:
        query = query.filter(LeaveRequest.user_id == user_id)
    return query.order_by(LeaveRequest.created_at.desc()).all()


@router.get("/balance", response_model=LeaveBalance)
def get_leave_balance(
    user_id: Optional[uuid.UUID] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(worker),
):
    target = ctx.user
    if user_id is not None and user_id != ctx.user.id:
        if not has_permission(ctx.user.role, Capability.VIEW_TEAM_LEAVE):
            raise ForbiddenError("Access denied")
        target = load_scoped(db, User, user_id, ctx.tenant_id, "User")
    return LeaveBalance(
        user_id=target.id,
        vacation_days_balance=target.vacation_days_balance or 0,
        pending_vacation_days=leave_service.pending_vacation_days(db, target.id),
    )


@router.patch("/{leave_id}/approve", response_model=LeaveRequestResponse)
def approve_leave_request(leave_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(leave_approver)):
    return leave_service.approve_request(db, ctx.user, ctx.tenant_id, leave_id)


@router.patch("/{leave_id}/reject", response_model=LeaveRequestResponse)
def reject_leave_request(
    leave_id: uuid.UUID,
    payload: Optional[LeaveReject] = None,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(leave_approver),
):
    return leave_service.reject_request(db, ctx.user, ctx.tenant_id, leave_id, payload.reason if payload else None)


@router.patch("/{leave_id}/cancel", response_model=LeaveRequestResponse)
def cancel_leave_request(leave_id: uuid.UUID, db: Session = Depends(get_db), ctx: RequestContext = Depends(worker)):
    return leave_service.cancel_request(db, ctx.user, ctx.tenant_id, leave_id)
