import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt as _bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import ForbiddenError, UnauthorizedError
from ..models.models import AuthSession, User
from ..services.permissions import Capability, UserRole, has_permission, has_role
from ..services.tenancy import RequestContext, build_context
from ..services.time_rules import as_utc


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    # Use pbkdf2_sha256 to avoid native bcrypt backend issues
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    # Imported accounts may still carry bcrypt ($2a$/$2b$/$2y$) hashes; check those with bcrypt directly
    if hashed.startswith(("$2a$", "$2b$", "$2y$")):
        pb = plain.encode("utf-8")[:72]
        try:
            return _bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _create_token(sub: str, ttl_seconds: int, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, session_id: str, role: Optional[str] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, extra={"sid": session_id, "role": role})


def create_refresh_token(user_id: str, session_id: str) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, extra={"sid": session_id, "type": "refresh"})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def open_session(db: Session, user: User, user_agent: Optional[str] = None) -> AuthSession:
    """Stage a new server-side session for ``user`` (caller commits)."""
    now = datetime.now(timezone.utc)
    session = AuthSession(
        user_id=user.id,
        created_at=now,
        expires_at=now + timedelta(seconds=settings.session_ttl_seconds),
        user_agent=(user_agent or "")[:255] or None,
    )
    db.add(session)
    db.flush()
    return session


def resolve_session(db: Session, payload: dict, refresh: bool = False) -> AuthSession:
    """Load the live session referenced by a decoded token."""
    is_refresh = payload.get("type") == "refresh"
    if is_refresh != refresh:
        raise UnauthorizedError("Invalid token type")
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
        session_id = uuid.UUID(str(payload.get("sid")))
    except ValueError:
        raise UnauthorizedError("Invalid subject")

    session = db.get(AuthSession, session_id)
    if session is None or session.user_id != user_id:
        raise UnauthorizedError("Session not found")
    if session.revoked_at is not None:
        raise UnauthorizedError("Session revoked")
    if as_utc(session.expires_at) <= datetime.now(timezone.utc):
        raise UnauthorizedError("Session expired")
    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("User not active")
    return session


def authenticate_token(db: Session, token: str) -> AuthSession:
    return resolve_session(db, decode_token(token))


def get_current_session(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> AuthSession:
    if creds is None:
        raise UnauthorizedError("Not authenticated")
    return authenticate_token(db, creds.credentials)


def get_current_user(session: AuthSession = Depends(get_current_session)) -> User:
    return session.user


def get_request_context(session: AuthSession = Depends(get_current_session)) -> RequestContext:
    return build_context(session.user, session)


def get_tenant_context(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Request context that is guaranteed to carry an effective tenant."""
    ctx.require_tenant()
    return ctx


def require_permission(capability: Capability, tenant: bool = True):
    """Require an exact capability grant from the permission matrix."""
    base = get_tenant_context if tenant else get_request_context

    def _dep(ctx: RequestContext = Depends(base)) -> RequestContext:
        if not has_permission(ctx.user.role, capability):
            raise ForbiddenError("Insufficient permissions")
        return ctx

    return _dep


def require_min_role(minimum: UserRole, tenant: bool = True):
    """Require a role at or above ``minimum`` in the hierarchy."""
    base = get_tenant_context if tenant else get_request_context

    def _dep(ctx: RequestContext = Depends(base)) -> RequestContext:
        if not has_role(ctx.user.role, minimum):
            raise ForbiddenError("Insufficient permissions")
        return ctx

    return _dep
