"""
admin/services.py -- Administrative operations on users, profiles and roles.

Unlike the authentication flows, every failure here is specific: a caller that
references unknown IDs gets NotFound listing exactly which IDs are missing,
and a duplicate name or e-mail gets Conflict. These are correctable client
errors, not enumeration risks -- all routes that reach this module are
admin-only.

Name and e-mail checks run before the write for a clear message; the unique
indexes in auth/store.py catch the race where two requests pass the check at
the same time, and that IntegrityError is translated into the same Conflict.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.exc import IntegrityError

from auth.errors import Conflict, NotFound, ValidationFailed
from auth.mailer import Notifier, UserCreated
from auth.models import Profile, Role, User
from auth.passwords import PasswordEncoder, PasswordGenerator
from auth.store import UserStore
from core.clock import Clock, utc_now

logger = logging.getLogger("passport.admin")


class AdminService:
    def __init__(
        self,
        store: UserStore,
        encoder: PasswordEncoder,
        generator: PasswordGenerator,
        notifier: Notifier,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._encoder = encoder
        self._generator = generator
        self._notifier = notifier
        self._clock = clock

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, username: str, name: str, email: str, profile_ids: Iterable[int]) -> User:
        """Create an account with a generated password and notify its owner.

        The plaintext password only leaves through the UserCreated event.
        """
        if self._store.get_by_username(username) is not None:
            raise Conflict(f"Username '{username}' is already registered")
        if self._store.get_by_email(email) is not None:
            raise Conflict(f"Email '{email}' is already registered")
        profiles = self._load_profiles(profile_ids)

        password = self._generator.generate()
        user = User(
            username=username,
            name=name,
            email=email,
            encoded_password=self._encoder.hash_password(password),
            profiles=profiles,
        )
        try:
            user_id = self._store.create_user(user, now=self._clock())
        except IntegrityError as exc:
            raise Conflict("A user with that username or email already exists") from exc
        created = self._store.get_by_id(user_id)
        logger.info("User created. username=%s", created.username)

        try:
            self._notifier.user_created(
                UserCreated(
                    id=created.id,
                    name=created.name,
                    username=created.username,
                    email=created.email,
                    created_at=created.created_at,
                    password=password,
                )
            )
        except Exception:
            logger.exception("Failed to dispatch user created notification. username=%s", created.username)
        return created

    def get_user(self, user_id: int) -> User:
        user = self._store.get_by_id(user_id)
        if user is None:
            raise NotFound(f"User not found! userId={user_id}", ids=[user_id])
        return user

    def update_user(
        self,
        user_id: int,
        name: str,
        email: str,
        profile_ids: Iterable[int] | None = None,
    ) -> User:
        """Update name and e-mail, and replace profiles when ``profile_ids`` is given."""
        user = self.get_user(user_id)
        if user.email.lower() != email.lower():
            existing = self._store.get_by_email(email)
            if existing is not None and existing.id != user_id:
                raise Conflict(f"Email '{email}' is already registered")

        profiles = self._load_profiles(profile_ids) if profile_ids is not None else None
        now = self._clock()
        try:
            self._store.update_user(user_id, now=now, name=name, email=email)
        except IntegrityError as exc:
            raise Conflict(f"Email '{email}' is already registered") from exc
        if profiles is not None:
            self._store.set_user_profiles(user_id, [p.id for p in profiles], now=now)
            logger.info("Updated user profiles to: %s", [p.name for p in profiles])
        logger.info("User updated successfully: %s", user.username)
        return self.get_user(user_id)

    def set_user_disabled(self, user_id: int, disabled: bool, acting_user_id: int | None = None) -> User:
        """Enable or disable an account. An administrator cannot disable itself."""
        if disabled and acting_user_id is not None and acting_user_id == user_id:
            raise ValidationFailed("You cannot disable your own account.")
        self.get_user(user_id)
        self._store.update_user(user_id, now=self._clock(), disabled=disabled)
        logger.info("User %s. userId=%d", "disabled" if disabled else "enabled", user_id)
        return self.get_user(user_id)

    def assign_profiles(self, user_id: int, profile_ids: Iterable[int]) -> User:
        user = self.get_user(user_id)
        if user.disabled:
            raise NotFound("Cannot assign profiles to disabled user", ids=[user_id])
        profiles = self._load_profiles(profile_ids)
        self._store.set_user_profiles(user_id, [p.id for p in profiles], now=self._clock())
        return self.get_user(user_id)

    def search_users(
        self,
        name: str | None = None,
        email: str | None = None,
        profile_ids: Iterable[int] | None = None,
        role_ids: Iterable[int] | None = None,
        disabled: bool | None = False,
    ) -> list[User]:
        """Search users. Defaults to active users only; pass disabled=None for all."""
        return self._store.search_users(
            name=name, email=email, profile_ids=profile_ids, role_ids=role_ids, disabled=disabled
        )

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def create_profile(self, name: str, role_ids: Iterable[int]) -> Profile:
        if self._store.get_profile_by_name(name) is not None:
            raise Conflict(f"Profile with name '{name}' already exists")
        roles = self._load_roles(role_ids)
        try:
            profile_id = self._store.create_profile(Profile(name=name, roles=roles))
        except IntegrityError as exc:
            raise Conflict(f"Profile with name '{name}' already exists") from exc
        return self.get_profile(profile_id)

    def get_profile(self, profile_id: int) -> Profile:
        profile = self._store.get_profile(profile_id)
        if profile is None:
            raise NotFound(f"Profile not found! profileId={profile_id}", ids=[profile_id])
        return profile

    def list_profiles(self) -> list[Profile]:
        return self._store.list_profiles()

    def search_profiles(
        self,
        name: str | None = None,
        role_ids: Iterable[int] | None = None,
        disabled: bool | None = None,
    ) -> list[Profile]:
        return self._store.search_profiles(name=name, role_ids=role_ids, disabled=disabled)

    def update_profile(self, profile_id: int, name: str, role_ids: Iterable[int]) -> Profile:
        profile = self.get_profile(profile_id)
        if profile.name.lower() != name.lower():
            existing = self._store.get_profile_by_name(name)
            if existing is not None and existing.id != profile_id:
                raise Conflict(f"Profile with name '{name}' already exists")
        roles = self._load_roles(role_ids)
        try:
            self._store.update_profile(profile_id, name=name)
        except IntegrityError as exc:
            raise Conflict(f"Profile with name '{name}' already exists") from exc
        self._store.set_profile_roles(profile_id, [r.id for r in roles])
        return self.get_profile(profile_id)

    def set_profile_disabled(self, profile_id: int, disabled: bool) -> Profile:
        self.get_profile(profile_id)
        self._store.update_profile(profile_id, disabled=disabled)
        logger.info("Profile %s. profileId=%d", "disabled" if disabled else "enabled", profile_id)
        return self.get_profile(profile_id)

    def assign_roles(self, profile_id: int, role_ids: Iterable[int]) -> Profile:
        self.get_profile(profile_id)
        roles = self._load_roles(role_ids)
        self._store.set_profile_roles(profile_id, [r.id for r in roles])
        return self.get_profile(profile_id)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str) -> Role:
        if self._store.get_role_by_name(name) is not None:
            raise Conflict(f"Role with name '{name}' already exists")
        try:
            role_id = self._store.create_role(Role(name=name))
        except IntegrityError as exc:
            raise Conflict(f"Role with name '{name}' already exists") from exc
        return Role(id=role_id, name=name)

    def list_roles(self) -> list[Role]:
        return self._store.list_roles()

    def search_roles(self, name: str | None = None) -> list[Role]:
        return self._store.search_roles(name=name)

    def delete_role(self, role_id: int) -> Role:
        """Delete a role; every profile that granted it stops granting it."""
        role = self._store.get_role(role_id)
        if role is None:
            raise NotFound(f"Role not found! roleId={role_id}", ids=[role_id])
        logger.info("Deleting role: %s", role.name)
        self._store.delete_role(role_id)
        return role

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def ensure_admin_profile(self, role_name: str, profile_name: str = "Administrators") -> Profile:
        """Return a profile granting ``role_name``, creating the role and profile if missing."""
        role = self._store.get_role_by_name(role_name) or self.create_role(role_name)
        profile = self._store.get_profile_by_name(profile_name)
        if profile is None:
            return self.create_profile(profile_name, [role.id])
        if role.id not in {r.id for r in profile.roles}:
            return self.assign_roles(profile.id, [r.id for r in profile.roles] + [role.id])
        return profile

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_profiles(self, profile_ids: Iterable[int]) -> list[Profile]:
        wanted = set(profile_ids)
        found = self._store.get_profiles_by_ids(wanted)
        missing = wanted - {p.id for p in found}
        if missing:
            raise NotFound(f"Could not find profiles! ids={sorted(missing)}", ids=missing)
        return found

    def _load_roles(self, role_ids: Iterable[int]) -> list[Role]:
        wanted = set(role_ids)
        found = self._store.get_roles_by_ids(wanted)
        missing = wanted - {r.id for r in found}
        if missing:
            raise NotFound(f"Could not find roles! ids={sorted(missing)}", ids=missing)
        return found
