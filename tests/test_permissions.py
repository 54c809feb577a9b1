"""
tests/test_permissions.py -- Tests for auth/permissions.py.

Covers:
  - the seeded role -> permission table, role by role
  - has_permission / permissions_for, including unknown roles and permissions
  - the two-tier invite gate over every (team role, system role) pair
  - the table cannot be mutated at runtime
"""

from __future__ import annotations

import itertools

import pytest

from auth.models import SystemRole, TeamRole
from auth.permissions import PERMISSIONS, ROLE_PERMISSIONS, AuthorizationModel

authz = AuthorizationModel()


class TestRoleTable:
    def test_owner_has_everything_but_view_assigned(self) -> None:
        assert authz.permissions_for(SystemRole.OWNER) == frozenset(PERMISSIONS) - {"view_assigned_tasks"}
        assert len(authz.permissions_for(SystemRole.OWNER)) == 16

    def test_admin_lacks_delete_project_and_billing(self) -> None:
        admin = authz.permissions_for(SystemRole.ADMIN)
        assert len(admin) == 14
        assert "delete_project" not in admin
        assert "billing_management" not in admin
        assert "change_user_roles" in admin

    def test_team_lead(self) -> None:
        assert authz.permissions_for(SystemRole.TEAM_LEAD) == {
            "create_project",
            "assign_tasks",
            "update_task_status",
            "view_all_tasks",
            "create_tasks",
            "edit_task_details",
            "view_analytics",
        }

    def test_developer_tester_member(self) -> None:
        assert authz.permissions_for(SystemRole.DEVELOPER) == {"view_assigned_tasks", "edit_task_details", "create_tasks"}
        assert authz.permissions_for(SystemRole.TESTER) == {
            "view_assigned_tasks",
            "edit_task_details",
            "update_task_status",
        }
        assert authz.permissions_for(SystemRole.MEMBER) == {"view_assigned_tasks"}

    def test_every_granted_permission_is_known(self) -> None:
        for perms in ROLE_PERMISSIONS.values():
            assert perms <= set(PERMISSIONS)


class TestHasPermission:
    def test_granted(self) -> None:
        assert authz.has_permission(SystemRole.TEAM_LEAD, "assign_tasks") is True

    def test_not_granted(self) -> None:
        assert authz.has_permission(SystemRole.MEMBER, "create_tasks") is False

    def test_accepts_role_string(self) -> None:
        assert authz.has_permission("ADMIN", "invite_users") is True

    def test_unknown_role(self) -> None:
        assert authz.has_permission("SUPERUSER", "create_tasks") is False
        assert authz.permissions_for("SUPERUSER") == frozenset()

    def test_unknown_permission(self) -> None:
        assert authz.has_permission(SystemRole.OWNER, "launch_rockets") is False

    def test_injected_table(self) -> None:
        custom = AuthorizationModel({SystemRole.MEMBER: frozenset({"create_tasks"})})
        assert custom.has_permission(SystemRole.MEMBER, "create_tasks") is True
        assert custom.has_permission(SystemRole.OWNER, "create_tasks") is False


class TestInviteGate:
    @pytest.mark.parametrize("team_role, system_role", list(itertools.product(TeamRole, SystemRole)))
    def test_matrix(self, team_role: TeamRole, system_role: SystemRole) -> None:
        expected = team_role in (TeamRole.OWNER, TeamRole.ADMIN) and system_role in (
            SystemRole.OWNER,
            SystemRole.ADMIN,
            SystemRole.TEAM_LEAD,
        )
        assert AuthorizationModel.can_invite_members(team_role, system_role) is expected

    def test_team_owner_with_member_system_role_cannot_invite(self) -> None:
        assert authz.can_invite_members(TeamRole.OWNER, SystemRole.MEMBER) is False

    def test_unknown_roles(self) -> None:
        assert authz.can_invite_members("BOSS", SystemRole.OWNER) is False
        assert authz.can_invite_members(TeamRole.OWNER, "BOSS") is False


class TestImmutability:
    def test_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            ROLE_PERMISSIONS[SystemRole.MEMBER] = frozenset({"delete_project"})  # type: ignore[index]

    def test_permission_sets_are_frozen(self) -> None:
        with pytest.raises(AttributeError):
            ROLE_PERMISSIONS[SystemRole.MEMBER].add("delete_project")  # type: ignore[attr-defined]
