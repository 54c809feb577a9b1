"""
API request and response models for teamauth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import SystemRole, Team, TeamMembership, TeamRole, User
from auth.tokens import MAX_PASSWORD_BYTES, TokenPair

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", a dot in the domain, no whitespace. Deliverability
# is not checked here.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _password_fits_bcrypt(value: str) -> str:
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    return value


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6, max_length=72)
    name: str = Field(min_length=1, max_length=255)
    phone_number: Optional[str] = Field(default=None, max_length=32)
    terms_accepted: bool

    @field_validator("terms_accepted")
    @classmethod
    def require_terms(cls, value: bool) -> bool:
        if not value:
            raise ValueError("Terms must be accepted.")
        return value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=1, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _password_fits_bcrypt(value)


class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh and POST /auth/logout."""

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. The password digest is never part of it."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: Optional[str]
    avatar_url: Optional[str]
    phone_number: Optional[str]
    role: SystemRole
    oauth_provider: Optional[str]
    is_active: bool
    created_at: str
    last_login: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            avatar_url=user.avatar_url,
            phone_number=user.phone_number,
            role=user.role,
            oauth_provider=user.oauth_provider,
            is_active=user.is_active,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
        )


class AuthResponse(TokenResponse):
    """Token pair plus the authenticated user, returned by signup and login."""

    user: UserResponse

    @classmethod
    def build(cls, pair: TokenPair, user: User) -> "AuthResponse":
        return cls(**TokenResponse.from_pair(pair).model_dump(), user=UserResponse.from_user(user))


class OAuthProviderInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class PermissionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: SystemRole
    permissions: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class SystemRoleUpdate(BaseModel):
    """Request body for PATCH /api/v1/users/{id}/role."""

    role: SystemRole


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)


class InviteRequest(BaseModel):
    """Request body for POST /api/v1/teams/{id}/invite.

    role accepts every TeamRole so that an OWNER request reaches the service
    and is refused there with invalid_role rather than a schema error.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    role: TeamRole = TeamRole.MEMBER


class MemberRoleUpdate(BaseModel):
    role: TeamRole


class TeamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    owner_id: str
    created_at: str

    @classmethod
    def from_team(cls, team: Team) -> "TeamResponse":
        return cls(id=team.id, name=team.name, owner_id=team.owner_id, created_at=team.created_at or "")


class MemberResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    team_id: str
    user_id: str
    role: TeamRole
    email: Optional[str] = None
    name: Optional[str] = None
    assigned_by: Optional[str] = None
    joined_at: str

    @classmethod
    def from_membership(cls, membership: TeamMembership) -> "MemberResponse":
        return cls(
            team_id=membership.team_id,
            user_id=membership.user_id,
            role=membership.role,
            email=membership.user_email,
            name=membership.user_name,
            assigned_by=membership.assigned_by,
            joined_at=membership.joined_at or "",
        )


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
