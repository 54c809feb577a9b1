"""
teams/service.py -- Team creation, invitation and membership management.

Team role invariants enforced here:
  - A team has exactly one OWNER membership, created with the team in one
    transaction, and its user is the team's owner_id.
  - Nothing can create a second OWNER: invitations with role OWNER fail with
    InvalidRole, role changes to OWNER fail with InvalidOperation.
  - The OWNER membership can never be changed or removed through
    update_member_role() / remove_member().

Concurrency: the service does not lock. Duplicate invitations racing each
other are stopped by UNIQUE(team_id, user_id); the store's update/delete
statements exclude OWNER rows in their WHERE clause so a stale read cannot
demote or remove an owner.

Permission errors are Forbidden; role-invariant violations are
InvalidOperation. Both are user-facing and say what was wrong.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import Team, TeamMembership, TeamRole
from auth.permissions import AuthorizationModel
from auth.store import UserStore
from core.errors import (
    AlreadyMember,
    Forbidden,
    InvalidOperation,
    InvalidRole,
    TeamNotFound,
    UserNotFound,
    ValidationError,
)

logger = logging.getLogger("teamauth.teams")


def _parse_role(role: TeamRole | str, error_cls: type) -> TeamRole:
    try:
        return TeamRole(role)
    except ValueError:
        raise error_cls(f"Unknown team role: {role!r}") from None


class TeamService:
    """Usage:
    teams = TeamService(user_store)
    team = teams.create_team("Platform", owner_id)
    teams.invite_member(team.id, owner_id, "dev@example.com", TeamRole.DEVELOPER)
    members = teams.list_members(team.id, owner_id)
    """

    def __init__(self, store: UserStore, authz: AuthorizationModel | None = None) -> None:
        self.store = store
        self.authz = authz or AuthorizationModel()

    def create_team(self, name: str, owner_id: str) -> Team:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Team name must not be empty.")
        if self.store.get_by_id(owner_id) is None:
            raise UserNotFound()
        team_id = self.store.create_team(name, owner_id)
        logger.info("Team %s created by %s", team_id, owner_id)
        return self.store.get_team(team_id)

    def get_team(self, team_id: str) -> Team:
        team = self.store.get_team(team_id)
        if team is None:
            raise TeamNotFound()
        return team

    def get_user_teams(self, user_id: str) -> list[Team]:
        return self.store.get_user_teams(user_id)

    def is_team_owner(self, team_id: str, user_id: str) -> bool:
        team = self.store.get_team(team_id)
        return team is not None and team.owner_id == user_id

    def invite_member(
        self,
        team_id: str,
        inviter_id: str,
        invitee_email: str,
        desired_role: TeamRole | str = TeamRole.MEMBER,
    ) -> TeamMembership:
        """Add an existing user to the team.

        The OWNER check comes first and does not depend on who is asking.
        The inviter then has to pass the two-tier gate: a privileged system
        role and an OWNER/ADMIN membership in this team.
        """
        role = _parse_role(desired_role, InvalidRole)
        if role == TeamRole.OWNER:
            raise InvalidRole()

        inviter = self.store.get_by_id(inviter_id)
        membership = self.store.get_membership(team_id, inviter_id)
        if inviter is None or membership is None:
            raise Forbidden("You are not a member of this team.")
        if not self.authz.can_invite_members(membership.role, inviter.role):
            raise Forbidden("Only team owners and admins with a leadership role can invite members.")

        invitee = self.store.get_by_email(invitee_email)
        if invitee is None:
            raise UserNotFound()
        if self.store.get_membership(team_id, invitee.id) is not None:
            raise AlreadyMember()

        try:
            self.store.add_membership(
                TeamMembership(team_id=team_id, user_id=invitee.id, role=role, assigned_by=inviter_id)
            )
        except IntegrityError as exc:
            raise AlreadyMember() from exc
        logger.info("User %s invited to team %s as %s by %s", invitee.id, team_id, role.value, inviter_id)
        return self.store.get_membership(team_id, invitee.id)

    def update_member_role(
        self,
        team_id: str,
        target_user_id: str,
        new_role: TeamRole | str,
        requester_id: str,
    ) -> TeamMembership:
        """Change a member's team role. Team OWNER only."""
        requester = self.store.get_membership(team_id, requester_id)
        if requester is None or requester.role != TeamRole.OWNER:
            raise Forbidden("Only team owners can change member roles.")
        role = _parse_role(new_role, InvalidOperation)

        target = self.store.get_membership(team_id, target_user_id)
        if target is None:
            raise UserNotFound("Member not found in this team.")
        if target.role == TeamRole.OWNER:
            raise InvalidOperation("Cannot change owner role.")
        if role == TeamRole.OWNER:
            raise InvalidOperation("Cannot assign OWNER role. Each team can only have one owner.")

        if not self.store.update_membership_role(team_id, target_user_id, role, assigned_by=requester_id):
            raise InvalidOperation("Member role could not be changed.")
        logger.info("Team %s member %s role %s -> %s", team_id, target_user_id, target.role.value, role.value)
        return self.store.get_membership(team_id, target_user_id)

    def remove_member(self, team_id: str, target_user_id: str, requester_id: str) -> None:
        """Remove a member. The OWNER removes anyone but themselves; others may only leave."""
        requester = self.store.get_membership(team_id, requester_id)
        if requester is None:
            raise Forbidden("You are not a member of this team.")

        target = self.store.get_membership(team_id, target_user_id)
        if target is None:
            raise UserNotFound("Member not found in this team.")
        if target.role == TeamRole.OWNER:
            raise InvalidOperation("Cannot remove team owner.")
        if requester.role != TeamRole.OWNER and requester_id != target_user_id:
            raise Forbidden("Only team owners can remove other members.")

        if not self.store.delete_membership(team_id, target_user_id):
            raise InvalidOperation("Member could not be removed.")
        logger.info("User %s removed from team %s by %s", target_user_id, team_id, requester_id)

    def list_members(self, team_id: str, requester_id: str) -> list[TeamMembership]:
        """Members in display order: OWNER first, then role tier, then join time."""
        if self.store.get_membership(team_id, requester_id) is None:
            raise Forbidden("You are not a member of this team.")
        return self.store.list_members(team_id)
