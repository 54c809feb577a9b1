"""
auth/permissions.py -- System role -> permission table and team-scoped gates.

The table is built once at import time as a mapping of frozensets wrapped in
MappingProxyType. Nothing mutates it at runtime; re-seeding is a deployment
concern, not a request path. AuthorizationModel receives the table by
injection so tests (and alternative deployments) can pass their own.

Every check here is a pure, in-memory lookup: no I/O, never raises.

Layer rule: no imports from api/, teams/, or cache/.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from auth.models import SystemRole, TeamRole

PERMISSIONS: tuple[str, ...] = (
    "create_project",
    "delete_project",
    "manage_users",
    "assign_tasks",
    "reassign_tasks",
    "update_task_status",
    "delete_tasks",
    "view_all_tasks",
    "view_assigned_tasks",
    "create_tasks",
    "edit_task_details",
    "manage_team_settings",
    "view_analytics",
    "billing_management",
    "invite_users",
    "remove_users",
    "change_user_roles",
)

ROLE_PERMISSIONS: Mapping[SystemRole, frozenset[str]] = MappingProxyType(
    {
        SystemRole.OWNER: frozenset(
            {
                "create_project",
                "delete_project",
                "manage_users",
                "assign_tasks",
                "reassign_tasks",
                "update_task_status",
                "delete_tasks",
                "view_all_tasks",
                "create_tasks",
                "edit_task_details",
                "manage_team_settings",
                "view_analytics",
                "billing_management",
                "invite_users",
                "remove_users",
                "change_user_roles",
            }
        ),
        SystemRole.ADMIN: frozenset(
            {
                "create_project",
                "manage_users",
                "assign_tasks",
                "reassign_tasks",
                "update_task_status",
                "delete_tasks",
                "view_all_tasks",
                "create_tasks",
                "edit_task_details",
                "manage_team_settings",
                "view_analytics",
                "invite_users",
                "remove_users",
                "change_user_roles",
            }
        ),
        SystemRole.TEAM_LEAD: frozenset(
            {
                "create_project",
                "assign_tasks",
                "update_task_status",
                "view_all_tasks",
                "create_tasks",
                "edit_task_details",
                "view_analytics",
            }
        ),
        SystemRole.DEVELOPER: frozenset({"view_assigned_tasks", "edit_task_details", "create_tasks"}),
        SystemRole.TESTER: frozenset({"view_assigned_tasks", "edit_task_details", "update_task_status"}),
        SystemRole.MEMBER: frozenset({"view_assigned_tasks"}),
    }
)

_INVITER_SYSTEM_ROLES = frozenset({SystemRole.OWNER, SystemRole.ADMIN, SystemRole.TEAM_LEAD})
_INVITER_TEAM_ROLES = frozenset({TeamRole.OWNER, TeamRole.ADMIN})


class AuthorizationModel:
    """Read-only permission lookups over an injected role table."""

    def __init__(self, role_permissions: Mapping[SystemRole, frozenset[str]] = ROLE_PERMISSIONS) -> None:
        self._table = role_permissions

    def has_permission(self, role: SystemRole | str, permission: str) -> bool:
        try:
            role = SystemRole(role)
        except ValueError:
            return False
        return permission in self._table.get(role, frozenset())

    def permissions_for(self, role: SystemRole | str) -> frozenset[str]:
        try:
            return self._table.get(SystemRole(role), frozenset())
        except ValueError:
            return frozenset()

    @staticmethod
    def can_invite_members(team_role: TeamRole | str, system_role: SystemRole | str) -> bool:
        """Two-tier invite gate: privileged system role AND team OWNER/ADMIN.

        The caller must already have confirmed the inviter is a member of
        the team; this function only compares roles.
        """
        try:
            return SystemRole(system_role) in _INVITER_SYSTEM_ROLES and TeamRole(team_role) in _INVITER_TEAM_ROLES
        except ValueError:
            return False
