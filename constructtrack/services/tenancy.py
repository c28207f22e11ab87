"""
Tenant resolution.

The effective tenant of a request is the impersonated tenant when a superadmin
has an active impersonation on *this* login session, otherwise the user's own
tenant. Impersonation state lives on the AuthSession row, so two sessions of
the same superadmin resolve independently.
"""
import uuid
from dataclasses import dataclass
from typing import Optional, Type, TypeVar

from sqlalchemy.orm import Session

from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models.models import AuthSession, User
from .permissions import UserRole, parse_role


T = TypeVar("T")


def get_effective_tenant_id(session: Optional[AuthSession], user: User) -> Optional[uuid.UUID]:
    if (
        parse_role(user.role) == UserRole.superadmin
        and session is not None
        and session.impersonated_tenant_id is not None
    ):
        return session.impersonated_tenant_id
    return user.tenant_id


@dataclass(frozen=True)
class RequestContext:
    """Resolved identity for one request"""

    user: User
    session: Optional[AuthSession]
    tenant_id: Optional[uuid.UUID]

    @property
    def role(self) -> Optional[UserRole]:
        return parse_role(self.user.role)

    @property
    def is_impersonating(self) -> bool:
        return (
            self.role == UserRole.superadmin
            and self.session is not None
            and self.session.impersonated_tenant_id is not None
        )

    def require_tenant(self) -> uuid.UUID:
        if self.tenant_id is None:
            raise ValidationError("No tenant context")
        return self.tenant_id


def build_context(user: User, session: Optional[AuthSession]) -> RequestContext:
    return RequestContext(user=user, session=session, tenant_id=get_effective_tenant_id(session, user))


def load_scoped(db: Session, model: Type[T], obj_id: uuid.UUID, tenant_id: uuid.UUID, label: str) -> T:
    """
    Fetch a tenant-scoped row by id.

    Raises NotFoundError when the row does not exist and ForbiddenError when it
    belongs to another tenant.
    """
    obj = db.get(model, obj_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    if getattr(obj, "tenant_id", None) != tenant_id:
        raise ForbiddenError("Access denied")
    return obj
