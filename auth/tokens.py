"""
auth/tokens.py -- Signed identity assertions (JWT).

Security design decisions:
  JWT: python-jose with an asymmetric algorithm (RS256 by default). Tokens are
       signed with the server-held private key and carry the issuer, the
       username as subject/upn, the user id, username, e-mail and the
       effective authorities as "groups". Verification only needs the public
       key and returns None on any failure -- the route layer turns that
       into a 401.

  Lifetime: fixed at 24 hours from issue. Not configurable per call.

  Clock: TokenIssuer takes a clock callable so tests can pin iat/exp.

Layer rule: no imports from api/ or admin/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from jose import jwt
from jose.exceptions import JOSEError

from auth.authorities import effective_authorities
from auth.errors import SigningFailure
from auth.models import User
from core.clock import Clock, utc_now

logger = logging.getLogger("passport.auth")

TOKEN_LIFETIME = timedelta(days=1)


class TokenIssuer:
    """Issue and verify signed assertions.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue(user)
        claims = issuer.decode(token)
    """

    def __init__(
        self,
        issuer: str,
        private_key: str,
        public_key: str,
        algorithm: str = "RS256",
        clock: Clock = utc_now,
    ) -> None:
        self.issuer = issuer
        self._private_key = private_key
        self._public_key = public_key
        self._algorithm = algorithm
        self._clock = clock

    @classmethod
    def from_settings(cls, settings, clock: Clock = utc_now) -> TokenIssuer:
        return cls(
            issuer=settings.jwt_issuer,
            private_key=settings.jwt_private_key,
            public_key=settings.jwt_public_key,
            algorithm=settings.jwt_algorithm,
            clock=clock,
        )

    def issue(self, user: User) -> str:
        """Encode a signed JWT for ``user``. The user is not modified."""
        now = self._clock()
        payload = {
            "iss": self.issuer,
            "sub": user.username,
            "upn": user.username,
            "id": user.id,
            "username": user.username,
            "email": user.email,
            "groups": sorted(effective_authorities(user)),
            "iat": int(now.timestamp()),
            "exp": int((now + TOKEN_LIFETIME).timestamp()),
        }
        try:
            return jwt.encode(payload, self._private_key, algorithm=self._algorithm)
        except JOSEError as exc:
            logger.exception("Failed to sign token for user_id=%s", user.id)
            raise SigningFailure("Could not sign token") from exc

    def decode(self, token: str) -> dict | None:
        """Decode and verify a JWT. Returns the claims dict or None on any failure.

        Expiry is checked against the injected clock rather than the library's
        own wall clock, so tokens issued under a pinned clock verify under it.
        """
        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[self._algorithm],
                issuer=self.issuer,
                options={"verify_exp": False, "verify_aud": False},
            )
        except JOSEError:
            return None
        if "id" not in claims or "exp" not in claims:
            return None
        if int(claims["exp"]) <= int(self._clock().timestamp()):
            return None
        return claims
