"""
Tests for the role hierarchy and the capability matrix.
"""
import pytest

from constructtrack.services.permissions import (
    Capability,
    PERMISSIONS,
    ROLE_RANK,
    UserRole,
    capabilities_for,
    has_permission,
    has_role,
    parse_role,
)


class TestRoleHierarchy:
    def test_ranks(self):
        assert [ROLE_RANK[r] for r in UserRole] == [100, 80, 60, 40, 20]

    @pytest.mark.parametrize("role", list(UserRole))
    def test_every_role_meets_itself(self, role):
        assert has_role(role, role)

    def test_admin_passes_manager_gate(self):
        assert has_role(UserRole.admin, UserRole.manager)

    def test_employee_fails_manager_gate(self):
        assert not has_role(UserRole.employee, UserRole.manager)

    def test_client_is_lowest(self):
        for role in UserRole:
            assert has_role(role, UserRole.client)
        assert not has_role(UserRole.client, UserRole.employee)

    def test_string_roles_accepted(self):
        assert has_role("ADMIN", "manager")

    def test_unknown_role_never_passes(self):
        assert not has_role("foreman", UserRole.client)
        assert not has_role(None, UserRole.client)
        assert parse_role("foreman") is None


class TestPermissionMatrix:
    def test_manager_may_approve_leave_but_not_manage_clients(self):
        # Matrix is an exact allow-list; rank does not inherit
        assert has_permission(UserRole.manager, Capability.APPROVE_LEAVE)
        assert not has_permission(UserRole.manager, Capability.MANAGE_CLIENTS)

    def test_superadmin_gets_only_platform_capabilities(self):
        assert has_permission(UserRole.superadmin, Capability.IMPERSONATE_TENANT)
        assert not has_permission(UserRole.superadmin, Capability.APPROVE_TIMESHEETS)

    def test_admin_is_not_granted_worker_capabilities(self):
        assert not has_permission(UserRole.admin, Capability.RECORD_TIME)

    def test_matrix_lookup_is_exact(self):
        for capability, roles in PERMISSIONS.items():
            for role in UserRole:
                assert has_permission(role, capability) == (role in roles)

    def test_unknown_capability_is_denied(self):
        assert not has_permission(UserRole.admin, "launch_rockets")

    def test_capabilities_for_client(self):
        assert capabilities_for("client") == sorted([
            "contest_time_records",
            "validate_time_records",
            "view_service_orders",
            "view_site_hours",
        ])

    def test_capabilities_for_unknown_role(self):
        assert capabilities_for("foreman") == []
