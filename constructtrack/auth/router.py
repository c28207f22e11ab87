from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from ..db import get_db
from ..config import settings
from ..errors import ConflictError, UnauthorizedError
from ..models.models import AuthSession, Tenant, User
from ..schemas.auth import (
    RegisterRequest,
    LoginRequest,
    RefreshRequest,
    TokenResponse,
    MeResponse,
    ImpersonationInfo,
)
from ..services.audit import record_audit
from ..services.permissions import capabilities_for
from ..services.tenancy import RequestContext
from .security import (
    get_password_hash,
    verify_password,
    create_access_token,
    create_refresh_token,
    decode_token,
    open_session,
    resolve_session,
    get_current_session,
    get_request_context,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _issue_tokens(user: User, session: AuthSession) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(str(user.id), str(session.id), user.role),
        refresh_token=create_refresh_token(str(user.id), str(session.id)),
        session_id=str(session.id),
    )


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(
    req: RegisterRequest,
    db: Session = Depends(get_db),
    user_agent: Optional[str] = Header(default=None),
):
    """Create a company and its first admin, and log the admin in."""
    if db.query(Tenant).filter(Tenant.name == req.company_name).first():
        raise ConflictError("Company name already registered")
    email = req.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("Email already registered")

    tenant = Tenant(
        name=req.company_name,
        email=req.company_email,
        phone=req.company_phone,
        settings={"geofence_radius": settings.geo_radius_m_default},
    )
    db.add(tenant)
    db.flush()
    user = User(
        tenant_id=tenant.id,
        email=email,
        password_hash=get_password_hash(req.password),
        first_name=req.first_name,
        last_name=req.last_name,
        role="admin",
        vacation_days_balance=settings.default_vacation_days,
        last_login_at=datetime.now(timezone.utc),
    )
    db.add(user)
    db.flush()
    session = open_session(db, user, user_agent)
    record_audit(db, "tenant", tenant.id, "REGISTER", actor=user, tenant_id=tenant.id)
    db.commit()
    logger.info("tenant_registered", tenant_id=str(tenant.id), admin_id=str(user.id))
    return _issue_tokens(user, session)


@router.post("/login", response_model=TokenResponse)
def login(
    req: LoginRequest,
    db: Session = Depends(get_db),
    user_agent: Optional[str] = Header(default=None),
):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not user.is_active or not verify_password(req.password, user.password_hash):
        raise UnauthorizedError("Invalid credentials")
    if user.tenant is not None and user.tenant.subscription_status == "cancelled":
        raise UnauthorizedError("Company account is cancelled")

    user.last_login_at = datetime.now(timezone.utc)
    session = open_session(db, user, user_agent)
    db.commit()
    logger.info("user_logged_in", user_id=str(user.id), session_id=str(session.id))
    return _issue_tokens(user, session)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    session = resolve_session(db, payload, refresh=True)
    return _issue_tokens(session.user, session)


@router.post("/logout")
def logout(session: AuthSession = Depends(get_current_session), db: Session = Depends(get_db)):
    """Revoke the current session; any impersonation on it ends with it."""
    session.revoked_at = datetime.now(timezone.utc)
    session.impersonated_tenant_id = None
    session.impersonated_tenant_name = None
    db.commit()
    logger.info("user_logged_out", user_id=str(session.user_id), session_id=str(session.id))
    return {"status": "ok"}


@router.get("/me", response_model=MeResponse)
def me(ctx: RequestContext = Depends(get_request_context)):
    user = ctx.user
    impersonating = None
    if ctx.is_impersonating:
        impersonating = ImpersonationInfo(
            tenant_id=ctx.session.impersonated_tenant_id,
            tenant_name=ctx.session.impersonated_tenant_name,
        )
    return MeResponse(
        id=str(user.id),
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        effective_tenant_id=str(ctx.tenant_id) if ctx.tenant_id else None,
        permissions=capabilities_for(user.role),
        impersonating=impersonating,
    )
