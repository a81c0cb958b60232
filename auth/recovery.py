"""
auth/recovery.py -- Password reset (recovery token) lifecycle.

State machine per user:

    (none)  --request-->           ACTIVE
    ACTIVE  --confirm(success)-->  USED      (terminal)
    ACTIVE  --24h elapses-->       EXPIRED   (inert; used stays false)
    ACTIVE  --request-->           ACTIVE    (no-op, nothing is sent)

Security design decisions:
  [R1] request() never reveals whether the e-mail exists or already has an
       active token. The route always answers 200.
  [R2] The one-time recovery password is hashed with PasswordEncoder before it
       is stored. The plaintext only travels in the notification.
  [R3] confirm() collapses every failure (unknown token, wrong recovery
       password, used, expired, disabled owner) into RecoveryNotFound.
  [R4] Expiry is enforced at confirm time, not only when a token is created.
  [R5] The used flip and the password rewrite commit together
       (UserStore.consume_reset_token); concurrent confirms yield one success.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

import logging
import uuid

from auth.errors import RecoveryNotFound, ValidationFailed
from auth.mailer import Notifier, ResetPasswordRequested
from auth.models import ResetPasswordToken
from auth.passwords import PasswordEncoder, PasswordGenerator
from auth.store import RESET_TOKEN_TTL, UserStore
from core.clock import Clock, to_iso, utc_now

logger = logging.getLogger("passport.recovery")


class PasswordRecovery:
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

    def request(self, email: str) -> ResetPasswordToken | None:
        """Start a reset for the user owning ``email`` [R1].

        Returns the created token, or None when nothing was created (unknown
        e-mail, disabled user, or an active token already exists).
        """
        user = self._store.get_by_email(email)
        if user is None or user.disabled:
            logger.warning("No active user found for reset request. Ignoring...")
            return None

        now = self._clock()
        if self._store.find_active_reset_token(user.id, now) is not None:
            logger.warning("There is one reset password token active for user! username=%s", user.username)
            return None

        recovery_password = self._generator.generate()
        token = ResetPasswordToken(
            token=str(uuid.uuid4()),
            encoded_password=self._encoder.hash_password(recovery_password),  # [R2]
            user_id=user.id,
            requested_at=to_iso(now),
        )
        token_id = self._store.create_reset_token(token, now)
        if token_id is None:
            logger.warning("Concurrent reset request already created a token. username=%s", user.username)
            return None
        token.id = token_id

        event = ResetPasswordRequested(
            name=user.name,
            username=user.username,
            email=user.email,
            requested_at=now,
            expires_at=now + RESET_TOKEN_TTL,
            password=recovery_password,
            token=token.token,
        )
        try:
            self._notifier.reset_password_requested(event)
        except Exception:
            # The token is committed; delivery problems must not undo it.
            logger.exception("Failed to dispatch reset password notification. username=%s", user.username)
        return token

    def confirm(self, token: str, recovery_password: str, new_password: str) -> None:
        """Consume ``token`` and set ``new_password`` on its owner [R3][R4][R5].

        Raises ValidationFailed for an empty new password and RecoveryNotFound
        for every other failure.
        """
        if not new_password:
            raise ValidationFailed("New password must not be empty.")

        now = self._clock()
        found = self._store.find_valid_reset_token(token, now)
        # Hash even when the token is unknown so timing does not reveal it.
        passphrase_ok = self._encoder.matches(recovery_password or "", found.encoded_password if found else "")
        if found is None or not passphrase_ok:
            raise RecoveryNotFound()

        if not self._store.consume_reset_token(found.id, self._encoder.hash_password(new_password), now):
            raise RecoveryNotFound()
        logger.info("Password reset completed for user_id=%s", found.user_id)
