"""
auth/service.py -- Login and change-own-password flows.

Security:
  [C1] login() runs the PBKDF2 derivation whether or not the e-mail exists, so
       response time does not reveal which e-mails are registered. Unknown
       e-mail, disabled account and wrong password all raise the same
       InvalidCredentials.
  [C2] change_password() re-verifies the current password and refuses a
       disabled caller, even though the caller already holds a valid token.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.authorities import effective_authorities
from auth.errors import InvalidCredentials, ValidationFailed
from auth.models import User
from auth.passwords import PasswordEncoder
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.clock import Clock, utc_now

logger = logging.getLogger("passport.auth")


@dataclass(frozen=True)
class UserInfo:
    """Public projection of a user returned to clients. Never carries the digest."""

    id: int
    username: str
    name: str
    email: str
    profiles: list[str]
    roles: list[str]

    @classmethod
    def load(cls, user: User) -> UserInfo:
        return cls(
            id=user.id,
            username=user.username,
            name=user.name,
            email=user.email,
            profiles=sorted(p.name for p in user.profiles),
            roles=sorted(effective_authorities(user)),
        )


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: UserInfo


class AuthService:
    def __init__(
        self,
        store: UserStore,
        encoder: PasswordEncoder,
        issuer: TokenIssuer,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._encoder = encoder
        self._issuer = issuer
        self._clock = clock

    def authenticate(self, email: str, password: str) -> User:
        """Return the enabled user owning ``email`` if ``password`` matches [C1]."""
        user = self._store.get_by_email(email)
        if user is None:
            self._encoder.hash_password(password)
            raise InvalidCredentials()
        matched = self._encoder.matches(password, user.encoded_password)
        if not matched or user.disabled:
            raise InvalidCredentials()
        return user

    def login(self, email: str, password: str) -> LoginResult:
        user = self.authenticate(email, password)
        token = self._issuer.issue(user)
        logger.info("User logged in. username=%s", user.username)
        return LoginResult(token=token, user=UserInfo.load(user))

    def change_password(self, username: str, current_password: str, new_password: str) -> None:
        """Replace the caller's password after re-verifying the current one [C2]."""
        if not new_password:
            raise ValidationFailed("New password must not be empty.")
        if current_password == new_password:
            raise ValidationFailed("New password must be different from the current password.")

        user = self._store.get_by_username(username)
        if user is None or user.disabled or not self._encoder.matches(current_password, user.encoded_password):
            raise InvalidCredentials()
        self._store.set_password(user.id, self._encoder.hash_password(new_password), now=self._clock())
        logger.info("Password changed. username=%s", user.username)
