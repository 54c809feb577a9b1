"""
auth/models.py -- Domain dataclasses and enums for identities and teams.

Pattern: Data class (pure data container, no persistence logic). Stores and
services do the work; these types only own the domain shape.

Two role enums exist and must not be confused:
  SystemRole -- account-wide privilege tier, gates permission lookups.
  TeamRole   -- per-membership role, gates team-management operations only.

Layer rule: no imports from api/, teams/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from core.errors import ValidationError


class SystemRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    TEAM_LEAD = "TEAM_LEAD"
    DEVELOPER = "DEVELOPER"
    TESTER = "TESTER"
    MEMBER = "MEMBER"


class TeamRole(str, Enum):
    # Declaration order is the member-listing order (OWNER first).
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    TEAM_LEAD = "TEAM_LEAD"
    DEVELOPER = "DEVELOPER"
    TESTER = "TESTER"
    MEMBER = "MEMBER"


class OAuthProvider(str, Enum):
    GITHUB = "github"
    GOOGLE = "google"


@dataclass
class User:
    """An identity record.

    password_hash is None for OAuth-only users. oauth_provider / oauth_id are
    set together on first OAuth login and then never overwritten. Both kinds of
    credential may coexist once a password user has also logged in via OAuth.
    """

    email: str
    role: SystemRole = SystemRole.MEMBER
    id: str | None = None
    password_hash: str | None = None
    name: str | None = None
    avatar_url: str | None = None
    phone_number: str | None = None
    oauth_provider: str | None = None
    oauth_id: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None


@dataclass
class Team:
    """A team. owner_id is fixed at creation and mirrors the OWNER membership."""

    name: str
    owner_id: str
    id: str | None = None
    created_at: str | None = None


@dataclass
class TeamMembership:
    team_id: str
    user_id: str
    role: TeamRole = TeamRole.MEMBER
    assigned_by: str | None = None
    id: int | None = None
    joined_at: str | None = None
    updated_at: str | None = None
    # Joined from users when listing members; None on bare reads.
    user_email: str | None = None
    user_name: str | None = None


@dataclass(frozen=True)
class OAuthProfile:
    """Provider-neutral profile handed to IdentityDirectory.upsert_oauth().

    Built by the adapters in auth/oauth.py. Construction fails with
    ValidationError when the mandatory email or provider id is missing, so a
    half-parsed provider payload never reaches the directory.
    """

    provider: OAuthProvider
    provider_id: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None

    def __post_init__(self) -> None:
        if not self.email or not self.email.strip():
            raise ValidationError(f"Email not provided by {self.provider.value}.")
        if not self.provider_id:
            raise ValidationError(f"{self.provider.value} profile is missing a stable user id.")
