"""
Role hierarchy and capability matrix.

Two independent, static lookups:
- has_role(): hierarchical, "at least this role" by numeric rank.
- has_permission(): exact allow-list per capability, no rank inheritance.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union


class UserRole(str, Enum):
    superadmin = "superadmin"
    admin = "admin"
    manager = "manager"
    employee = "employee"
    client = "client"


ROLE_RANK: Dict[UserRole, int] = {
    UserRole.superadmin: 100,
    UserRole.admin: 80,
    UserRole.manager: 60,
    UserRole.employee: 40,
    UserRole.client: 20,
}


class Capability(str, Enum):
    # Platform
    MANAGE_TENANTS = "manage_tenants"
    MANAGE_SUBSCRIPTIONS = "manage_subscriptions"
    IMPERSONATE_TENANT = "impersonate_tenant"
    VIEW_PLATFORM_STATS = "view_platform_stats"
    # Company
    MANAGE_EMPLOYEES = "manage_employees"
    DELETE_USERS = "delete_users"
    MANAGE_CLIENTS = "manage_clients"
    MANAGE_SITES = "manage_sites"
    MANAGE_TOOLS = "manage_tools"
    MANAGE_SERVICE_ORDERS = "manage_service_orders"
    MANAGE_PAYROLL = "manage_payroll"
    VIEW_COMPANY_SETTINGS = "view_company_settings"
    EDIT_COMPANY_SETTINGS = "edit_company_settings"
    # Team
    APPROVE_TIMESHEETS = "approve_timesheets"
    APPROVE_LEAVE = "approve_leave"
    VIEW_TEAM_TIMESHEETS = "view_team_timesheets"
    VIEW_TEAM_LEAVE = "view_team_leave"
    # Worker
    RECORD_TIME = "record_time"
    REQUEST_LEAVE = "request_leave"
    CHECKOUT_TOOLS = "checkout_tools"
    CHECKIN_TOOLS = "checkin_tools"
    # Client portal
    VIEW_SERVICE_ORDERS = "view_service_orders"
    VIEW_SITE_HOURS = "view_site_hours"
    VALIDATE_TIME_RECORDS = "validate_time_records"
    CONTEST_TIME_RECORDS = "contest_time_records"


_SUPERADMIN = frozenset({UserRole.superadmin})
_ADMIN = frozenset({UserRole.admin})
_ADMIN_MANAGER = frozenset({UserRole.admin, UserRole.manager})
_EMPLOYEE = frozenset({UserRole.employee})
_CLIENT = frozenset({UserRole.client})

PERMISSIONS: Dict[Capability, FrozenSet[UserRole]] = {
    Capability.MANAGE_TENANTS: _SUPERADMIN,
    Capability.MANAGE_SUBSCRIPTIONS: _SUPERADMIN,
    Capability.IMPERSONATE_TENANT: _SUPERADMIN,
    Capability.VIEW_PLATFORM_STATS: _SUPERADMIN,
    Capability.MANAGE_EMPLOYEES: _ADMIN_MANAGER,
    Capability.DELETE_USERS: _ADMIN,
    Capability.MANAGE_CLIENTS: _ADMIN,
    Capability.MANAGE_SITES: _ADMIN,
    Capability.MANAGE_TOOLS: _ADMIN,
    Capability.MANAGE_SERVICE_ORDERS: _ADMIN,
    Capability.MANAGE_PAYROLL: _ADMIN,
    Capability.VIEW_COMPANY_SETTINGS: _ADMIN,
    Capability.EDIT_COMPANY_SETTINGS: _ADMIN,
    Capability.APPROVE_TIMESHEETS: _ADMIN_MANAGER,
    Capability.APPROVE_LEAVE: _ADMIN_MANAGER,
    Capability.VIEW_TEAM_TIMESHEETS: _ADMIN_MANAGER,
    Capability.VIEW_TEAM_LEAVE: _ADMIN_MANAGER,
    Capability.RECORD_TIME: _EMPLOYEE,
    Capability.REQUEST_LEAVE: _EMPLOYEE,
    Capability.CHECKOUT_TOOLS: _EMPLOYEE,
    Capability.CHECKIN_TOOLS: _EMPLOYEE,
    Capability.VIEW_SERVICE_ORDERS: _CLIENT,
    Capability.VIEW_SITE_HOURS: _CLIENT,
    Capability.VALIDATE_TIME_RECORDS: _CLIENT,
    Capability.CONTEST_TIME_RECORDS: _CLIENT,
}


RoleLike = Union[UserRole, str, None]


def parse_role(role: RoleLike) -> Optional[UserRole]:
    """Return the UserRole for a role name, or None if unknown."""
    if role is None:
        return None
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole(str(role).lower())
    except ValueError:
        return None


def has_role(role: RoleLike, minimum: RoleLike) -> bool:
    """True iff ``role`` ranks at or above ``minimum``. Unknown roles never pass."""
    actual = parse_role(role)
    required = parse_role(minimum)
    if actual is None or required is None:
        return False
    return ROLE_RANK[actual] >= ROLE_RANK[required]


def has_permission(role: RoleLike, capability: Union[Capability, str]) -> bool:
    """True iff ``role`` is explicitly listed for ``capability``."""
    actual = parse_role(role)
    if actual is None:
        return False
    try:
        cap = Capability(capability)
    except ValueError:
        return False
    return actual in PERMISSIONS.get(cap, frozenset())


def capabilities_for(role: RoleLike) -> list:
    actual = parse_role(role)
    if actual is None:
        return []
    return sorted(cap.value for cap, roles in PERMISSIONS.items() if actual in roles)
