"""
auth/store.py -- SQLAlchemy Core persistence layer for users, teams and memberships.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Services never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Integrity:
  Uniqueness is enforced by the database, never only by a read-then-write in
  application code:
    UNIQUE(email)
    UNIQUE(oauth_provider, oauth_id) -- NULL pairs are distinct, so users who
        never linked a provider do not collide with each other.
    UNIQUE(team_id, user_id)         -- one membership per user per team.
  Callers translate sqlalchemy.exc.IntegrityError into domain errors.

  Multi-row writes (team + OWNER membership, user + personal team + OWNER
  membership) run inside a single engine.begin() block, so either every row
  commits or none does. No other connection can observe a team without its
  owner membership.

DB path: auth/teamauth.db unless DATABASE_URL is set.

Layer rule: no imports from api/, teams/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    case,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine

from auth.models import SystemRole, Team, TeamMembership, TeamRole, User

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'teamauth.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("name", String(255)),
    Column("avatar_url", Text),
    Column("phone_number", String(32)),
    Column("role", String(20), nullable=False, server_default=SystemRole.MEMBER.value),
    Column("oauth_provider", String(30)),  # "github", "google"
    Column("oauth_id", String(255)),  # provider's stable user ID
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
    UniqueConstraint("oauth_provider", "oauth_id", name="uq_user_oauth"),
)

_teams = Table(
    "teams",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("owner_id", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

_members = Table(
    "team_members",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("team_id", String(32), nullable=False),
    Column("user_id", String(32), nullable=False),
    Column("role_in_team", String(20), nullable=False, server_default=TeamRole.MEMBER.value),
    Column("assigned_by", String(32)),
    Column("joined_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("team_id", "user_id", name="uq_team_user"),
)

# OWNER sorts first, then the remaining tiers in TeamRole declaration order.
_ROLE_RANK = case(
    {role.value: rank for rank, role in enumerate(TeamRole)},
    value=_members.c.role_in_team,
    else_=len(TeamRole),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


def _insert_user(conn: Connection, user: User, now: str) -> str:
    user_id = _new_id()
    conn.execute(
        _users.insert().values(
            id=user_id,
            email=user.email,
            password_hash=user.password_hash,
            name=user.name,
            avatar_url=user.avatar_url,
            phone_number=user.phone_number,
            role=SystemRole(user.role).value,
            oauth_provider=user.oauth_provider,
            oauth_id=user.oauth_id,
            is_active=1 if user.is_active else 0,
            created_at=now,
            updated_at=now,
            last_login=user.last_login,
        )
    )
    return user_id


def _insert_team_with_owner(conn: Connection, name: str, owner_id: str, now: str) -> str:
    """Write a team row and its OWNER membership on the caller's transaction."""
    team_id = _new_id()
    conn.execute(_teams.insert().values(id=team_id, name=name, owner_id=owner_id, created_at=now))
    conn.execute(
        _members.insert().values(
            team_id=team_id,
            user_id=owner_id,
            role_in_team=TeamRole.OWNER.value,
            assigned_by=owner_id,
            joined_at=now,
            updated_at=now,
        )
    )
    return team_id


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Team and TeamMembership entities.

    Usage:
        store = UserStore()
        user_id, team_id = store.create_user_with_team(User(email="a@example.com"), "a's Team")
        members = store.list_members(team_id)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(text("SELECT COUNT(*) FROM users")).scalar()
        return (result or 0) > 0

    def count_users_with_role(self, role: SystemRole) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                text("SELECT COUNT(*) FROM users WHERE role = :role AND is_active = 1"),
                {"role": SystemRole(role).value},
            ).scalar()
        return result or 0

    def create_user(self, user: User) -> str:
        """Insert a user and return its new id.

        Raises sqlalchemy.exc.IntegrityError if the email (or the OAuth
        provider/id pair) is already taken.
        """
        with self.engine.begin() as conn:
            return _insert_user(conn, user, _now_iso())

    def create_user_with_team(self, user: User, team_name: str) -> tuple[str, str]:
        """Insert a user, their personal team and the OWNER membership atomically.

        Returns (user_id, team_id). Raises IntegrityError, with nothing
        written, if any of the three inserts violates a constraint.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            user_id = _insert_user(conn, user, now)
            team_id = _insert_team_with_owner(conn, team_name, user_id, now)
        return user_id, team_id

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_oauth(self, provider: str, oauth_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where((_users.c.oauth_provider == provider) & (_users.c.oauth_id == oauth_id))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: str, **fields) -> bool:
        """Update mutable fields on an existing user and stamp updated_at.

        Accepted fields: role, is_active, name, avatar_url, phone_number,
        password_hash, oauth_provider, oauth_id, last_login.
        Returns True if a row was updated, False if user_id was not found.
        """
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "role" in fields:
            fields["role"] = SystemRole(fields["role"]).value
        fields["updated_at"] = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.begin() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    def create_team(self, name: str, owner_id: str) -> str:
        """Insert a team together with its OWNER membership and return the team id."""
        with self.engine.begin() as conn:
            return _insert_team_with_owner(conn, name, owner_id, _now_iso())

    def get_team(self, team_id: str) -> Team | None:
        with self.engine.connect() as conn:
            row = conn.execute(_teams.select().where(_teams.c.id == team_id)).fetchone()
        return _row_to_team(row) if row is not None else None

    def get_user_teams(self, user_id: str) -> list[Team]:
        """Return every team the user belongs to, oldest membership first."""
        query = (
            select(_teams)
            .select_from(_teams.join(_members, _members.c.team_id == _teams.c.id))
            .where(_members.c.user_id == user_id)
            .order_by(_members.c.joined_at, _members.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_team(r) for r in rows]

    # ------------------------------------------------------------------
    # Memberships
    # ------------------------------------------------------------------

    def get_membership(self, team_id: str, user_id: str) -> TeamMembership | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _members.select().where((_members.c.team_id == team_id) & (_members.c.user_id == user_id))
            ).fetchone()
        return _row_to_membership(row) if row is not None else None

    def add_membership(self, membership: TeamMembership) -> int:
        """Insert a membership row and return its id.

        Raises IntegrityError if the (team_id, user_id) pair already exists --
        the caller treats that as AlreadyMember even if its own pre-check passed.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _members.insert().values(
                    team_id=membership.team_id,
                    user_id=membership.user_id,
                    role_in_team=TeamRole(membership.role).value,
                    assigned_by=membership.assigned_by,
                    joined_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def update_membership_role(self, team_id: str, user_id: str, role: TeamRole, assigned_by: str) -> bool:
        """Change a member's team role.

        The WHERE clause never matches an OWNER row, so even a racing caller
        cannot demote the owner through this path.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _members.update()
                .where(
                    (_members.c.team_id == team_id)
                    & (_members.c.user_id == user_id)
                    & (_members.c.role_in_team != TeamRole.OWNER.value)
                )
                .values(role_in_team=TeamRole(role).value, assigned_by=assigned_by, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def delete_membership(self, team_id: str, user_id: str) -> bool:
        """Delete a non-owner membership. Returns False if nothing matched."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _members.delete().where(
                    (_members.c.team_id == team_id)
                    & (_members.c.user_id == user_id)
                    & (_members.c.role_in_team != TeamRole.OWNER.value)
                )
            )
        return result.rowcount > 0

    def list_members(self, team_id: str) -> list[TeamMembership]:
        """Return a team's memberships: OWNER first, then by role tier, then join time."""
        query = (
            select(
                _members,
                _users.c.email.label("user_email"),
                _users.c.name.label("user_name"),
            )
            .select_from(_members.join(_users, _members.c.user_id == _users.c.id))
            .where(_members.c.team_id == team_id)
            .order_by(_ROLE_RANK, _members.c.joined_at, _members.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_membership(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        name=row.name,
        avatar_url=row.avatar_url,
        phone_number=row.phone_number,
        role=SystemRole(row.role),
        oauth_provider=row.oauth_provider,
        oauth_id=row.oauth_id,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_team(row) -> Team:
    return Team(id=row.id, name=row.name, owner_id=row.owner_id, created_at=row.created_at)


def _row_to_membership(row) -> TeamMembership:
    # user_email / user_name only exist on rows from list_members().
    return TeamMembership(
        id=row.id,
        team_id=row.team_id,
        user_id=row.user_id,
        role=TeamRole(row.role_in_team),
        assigned_by=row.assigned_by,
        joined_at=row.joined_at,
        updated_at=row.updated_at,
        user_email=getattr(row, "user_email", None),
        user_name=getattr(row, "user_name", None),
    )
