import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import get_password_hash, get_tenant_context, require_permission
from ..config import settings
from ..errors import ConflictError, ForbiddenError, ValidationError
from ..models.models import Contestation, LeaveRequest, PayrollRecord, TimeRecord, ToolTransaction, User
from ..schemas.users import UserCreate, UserUpdate, UserResponse
from ..services.audit import record_audit
from ..services.permissions import Capability, UserRole, has_role, parse_role
from ..services.tenancy import RequestContext, load_scoped


router = APIRouter(prefix="/users", tags=["users"])
logger = structlog.get_logger(__name__)


def _admin_count(db: Session, tenant_id: uuid.UUID) -> int:
    return (
        db.query(User)
        .filter(User.tenant_id == tenant_id, User.role == UserRole.admin.value, User.is_active.is_(True))
        .count()
    )


def _has_history(db: Session, user_id: uuid.UUID) -> bool:
    """Time, tool, leave, payroll and contestation rows outlive the user; they block a hard delete."""
    owners = (
        (TimeRecord, TimeRecord.user_id),
        (ToolTransaction, ToolTransaction.user_id),
        (LeaveRequest, LeaveRequest.user_id),
        (PayrollRecord, PayrollRecord.user_id),
        (Contestation, Contestation.client_id),
    )
    return any(db.query(model.id).filter(column == user_id).first() is not None for model, column in owners)


def _check_assignable(ctx: RequestContext, role: UserRole) -> None:
    # Nobody hands out a role above their own, and superadmin is never tenant-assignable
    if role == UserRole.superadmin or not has_role(ctx.user.role, role):
        raise ForbiddenError(f"Cannot assign role {role.value}")


@router.get("", response_model=List[UserResponse])
def list_users(
    role: Optional[UserRole] = Query(default=None),
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_EMPLOYEES)),
):
    query = db.query(User).filter(User.tenant_id == ctx.tenant_id)
    if role is not None:
        query = query.filter(User.role == role.value)
    return query.order_by(User.last_name, User.first_name, User.email).all()


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(get_tenant_context),
):
    target = load_scoped(db, User, user_id, ctx.tenant_id, "User")
    if target.id != ctx.user.id and not has_role(ctx.user.role, UserRole.manager):
        raise ForbiddenError("Access denied")
    return target


@router.post("", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_EMPLOYEES)),
):
    _check_assignable(ctx, payload.role)
    email = payload.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    user = User(
        tenant_id=ctx.tenant_id,
        email=email,
        password_hash=get_password_hash(payload.password),
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        role=payload.role.value,
        pin=payload.pin,
        hourly_rate=payload.hourly_rate,
        vacation_days_balance=(
            payload.vacation_days_balance
            if payload.vacation_days_balance is not None
            else settings.default_vacation_days
        ),
    )
    db.add(user)
    db.flush()
    record_audit(db, "user", user.id, "CREATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": {"email": email, "role": user.role}})
    db.commit()
    db.refresh(user)
    return user


@router.patch("/{user_id}", response_model=UserResponse)
def update_user(
    user_id: uuid.UUID,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.MANAGE_EMPLOYEES)),
):
    target = load_scoped(db, User, user_id, ctx.tenant_id, "User")
    if not has_role(ctx.user.role, target.role):
        raise ForbiddenError("Cannot modify a user with a higher role")
    data = payload.model_dump(exclude_unset=True)

    new_role = data.pop("role", None)
    demoting_admin = (
        new_role is not None
        and parse_role(target.role) == UserRole.admin
        and new_role != UserRole.admin
    )
    deactivating_admin = (
        data.get("is_active") is False
        and parse_role(target.role) == UserRole.admin
    )
    if (demoting_admin or deactivating_admin) and _admin_count(db, ctx.tenant_id) <= 1:
        raise ValidationError("Cannot remove the last admin")
    if new_role is not None:
        _check_assignable(ctx, new_role)
        target.role = new_role.value

    for key, value in data.items():
        setattr(target, key, value)
    record_audit(db, "user", target.id, "UPDATE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"after": payload.model_dump(mode="json", exclude_unset=True, exclude={"pin"})})
    db.commit()
    db.refresh(target)
    return target


@router.delete("/{user_id}")
def delete_user(
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: RequestContext = Depends(require_permission(Capability.DELETE_USERS)),
):
    target = load_scoped(db, User, user_id, ctx.tenant_id, "User")
    if parse_role(target.role) == UserRole.admin and _admin_count(db, ctx.tenant_id) <= 1:
        raise ValidationError("Cannot delete the last admin")
    if _has_history(db, target.id):
        raise ConflictError("User has recorded history; deactivate the account instead")
    record_audit(db, "user", target.id, "DELETE", actor=ctx.user, tenant_id=ctx.tenant_id,
                 changes_json={"before": {"email": target.email, "role": target.role}})
    db.delete(target)
    db.commit()
    logger.info("user_deleted", user_id=str(user_id), tenant_id=str(ctx.tenant_id))
    return {"status": "ok"}
