"""
auth/directory.py -- User lookup, local signup, password login and OAuth upsert.

Every account created here (local signup or first OAuth login) is born owning
exactly one team: the user row, the personal team and its OWNER membership
are written by UserStore.create_user_with_team() in a single transaction.

Email uniqueness is ultimately the database's job. The read-before-write
check only produces a friendlier error in the common case; a concurrent
signup that slips past it still hits UNIQUE(email) and is reported as
DuplicateEmail.

First-run bootstrap: when the users table is empty the first local signup
receives system role OWNER, so a fresh deployment has someone able to
administer roles. Everyone after that starts as MEMBER.

Layer rule: no imports from api/, teams/, or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import OAuthProfile, SystemRole, User
from auth.permissions import AuthorizationModel
from auth.store import UserStore
from auth.tokens import equalize_timing, verify_password
from core.errors import (
    CorruptCredential,
    DuplicateEmail,
    Forbidden,
    InvalidCredentials,
    InvalidOperation,
    UserNotFound,
)

logger = logging.getLogger("teamauth.auth.directory")


def personal_team_name(user: User) -> str:
    label = user.name or user.email.split("@", 1)[0]
    return f"{label}'s Team"


class IdentityDirectory:
    def __init__(self, store: UserStore, authz: AuthorizationModel | None = None) -> None:
        self.store = store
        self.authz = authz or AuthorizationModel()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        return self.store.get_by_email(email)

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user

    # ------------------------------------------------------------------
    # Local accounts
    # ------------------------------------------------------------------

    def create_local(
        self,
        email: str,
        password_hash: str,
        *,
        name: str | None = None,
        phone_number: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        """Create a password-based user plus their personal team.

        Raises DuplicateEmail if the address is already registered.
        """
        if self.store.get_by_email(email) is not None:
            raise DuplicateEmail()
        role = SystemRole.MEMBER if self.store.has_users() else SystemRole.OWNER
        user = User(
            email=email,
            role=role,
            password_hash=password_hash,
            name=name,
            phone_number=phone_number,
            avatar_url=avatar_url,
        )
        try:
            user_id, team_id = self.store.create_user_with_team(user, personal_team_name(user))
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("Local user %s created (role=%s, team=%s)", user_id, role.value, team_id)
        return self.store.get_by_id(user_id)

    def authenticate(self, email: str, password: str) -> User:
        """Verify an email/password login with timing equalization [C1].

        Unknown email, OAuth-only account, wrong password and inactive account
        all raise the same InvalidCredentials. bcrypt runs exactly once on
        every path so response time does not leak which case applied.
        """
        user = self.store.get_by_email(email)
        if user is None or user.password_hash is None:
            equalize_timing(password)
            raise InvalidCredentials()
        try:
            matches = verify_password(password, user.password_hash)
        except CorruptCredential:
            logger.error("Stored password digest for user %s is malformed", user.id)
            raise InvalidCredentials() from None
        if not matches or not user.is_active:
            raise InvalidCredentials()
        self.store.update_last_login(user.id)
        return self.store.get_by_id(user.id)

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def upsert_oauth(self, profile: OAuthProfile) -> User:
        """Find-or-create the user behind a normalized provider profile.

        New email: create user (MEMBER, provider fields set) and personal
        team atomically. Known email: fill only provider/name/avatar fields
        that are still empty. A password credential is never touched.
        last_login is refreshed either way.
        """
        provider = profile.provider.value
        user = self.store.get_by_email(profile.email)
        if user is None:
            # Provider-side email change: the identity is already linked.
            user = self.store.get_by_oauth(provider, profile.provider_id)

        if user is None:
            new_user = User(
                email=profile.email,
                role=SystemRole.MEMBER,
                name=profile.display_name,
                avatar_url=profile.avatar_url,
                oauth_provider=provider,
                oauth_id=profile.provider_id,
            )
            try:
                user_id, team_id = self.store.create_user_with_team(new_user, personal_team_name(new_user))
            except IntegrityError:
                # A concurrent first login for the same identity won the race.
                user = self.store.get_by_email(profile.email) or self.store.get_by_oauth(
                    provider, profile.provider_id
                )
                if user is None:
                    raise
            else:
                logger.info("OAuth user %s created via %s (team=%s)", user_id, provider, team_id)
                self.store.update_last_login(user_id)
                return self.store.get_by_id(user_id)

        if not user.is_active:
            raise InvalidCredentials()

        updates: dict = {}
        if not user.oauth_provider and not user.oauth_id:
            if self.store.get_by_oauth(provider, profile.provider_id) is None:
                updates["oauth_provider"] = provider
                updates["oauth_id"] = profile.provider_id
            else:
                logger.warning("%s identity %s already linked to another user", provider, profile.provider_id)
        if not user.name and profile.display_name:
            updates["name"] = profile.display_name
        if not user.avatar_url and profile.avatar_url:
            updates["avatar_url"] = profile.avatar_url
        if updates:
            self.store.update_user(user.id, **updates)
            logger.info("User %s merged %s profile fields: %s", user.id, provider, sorted(updates))
        self.store.update_last_login(user.id)
        return self.store.get_by_id(user.id)

    # ------------------------------------------------------------------
    # System role administration
    # ------------------------------------------------------------------

    def update_system_role(self, target_id: str, new_role: SystemRole, requester: User) -> User:
        """Change a user's system role. Requires the change_user_roles permission.

        Only an OWNER may grant or revoke OWNER, and the last active OWNER
        cannot be demoted.
        """
        new_role = SystemRole(new_role)
        if not self.authz.has_permission(requester.role, "change_user_roles"):
            raise Forbidden("Only administrators can change user roles.")
        target = self.get_profile(target_id)
        touches_owner = SystemRole.OWNER in (new_role, target.role)
        if touches_owner and requester.role != SystemRole.OWNER:
            raise Forbidden("Only an owner can grant or revoke the OWNER role.")
        if (
            target.role == SystemRole.OWNER
            and new_role != SystemRole.OWNER
            and self.store.count_users_with_role(SystemRole.OWNER) <= 1
        ):
            raise InvalidOperation("Cannot demote the last owner.")
        self.store.update_user(target_id, role=new_role)
        logger.info("User %s system role %s -> %s by %s", target_id, target.role.value, new_role.value, requester.id)
        return self.get_profile(target_id)
