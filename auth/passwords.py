"""
auth/passwords.py -- Password derivation, verification and generation.

Security design decisions:
  Derivation: PBKDF2-HMAC via hashlib.pbkdf2_hmac with a fixed, configured
       salt, iteration count, key length and digest. The fixed salt makes the
       digest deterministic, which the reset-token lookup relies on. The output
       is standard base64 text.

  Verification: matches() re-derives and compares with hmac.compare_digest, a
       constant-time comparison. A plain == would leak the length of the
       matching prefix through response time.

  Algorithm availability: checked once in PasswordEncoder.__init__. A missing
       algorithm raises CryptoUnavailable at startup, never per request.

  Generation: PasswordGenerator draws from secrets.SystemRandom (the OS CSPRNG),
       guarantees one character of each class, then Fisher-Yates shuffles so
       the guaranteed characters do not sit at fixed positions.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

from auth.errors import CryptoUnavailable

UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
DIGITS = "0123456789"
SPECIAL_CHARS = "!@#$%^&*()-_=+[]{}|;:,.<>?"
ALL_CHARS = UPPERCASE + LOWERCASE + DIGITS + SPECIAL_CHARS


class PasswordEncoder:
    """Derive and verify password digests.

    Usage:
        encoder = PasswordEncoder(iterations=210_000, key_length=512, algorithm="sha512", salt="...")
        digest = encoder.hash_password("qwas1234")
        encoder.matches("qwas1234", digest)  # True

    key_length is expressed in bits and must be a multiple of 8.
    """

    def __init__(self, iterations: int, key_length: int, algorithm: str, salt: str) -> None:
        algorithm = algorithm.lower()
        if algorithm not in hashlib.algorithms_available:
            raise CryptoUnavailable(f"Hash algorithm not available: {algorithm}")
        try:
            hashlib.new(algorithm)
        except ValueError as exc:
            raise CryptoUnavailable(f"Hash algorithm not available: {algorithm}") from exc
        if iterations < 1:
            raise ValueError("iterations must be positive")
        if key_length < 8 or key_length % 8:
            raise ValueError("key_length must be a positive multiple of 8 bits")
        self._iterations = iterations
        self._dklen = key_length // 8
        self._algorithm = algorithm
        self._salt = salt.encode("utf-8")

    @classmethod
    def from_settings(cls, settings) -> PasswordEncoder:
        return cls(
            iterations=settings.password_iterations,
            key_length=settings.password_key_length,
            algorithm=settings.password_algorithm,
            salt=settings.password_salt,
        )

    def hash_password(self, password: str) -> str:
        """Return the base64 PBKDF2 digest of ``password``."""
        if password is None:
            raise TypeError("password cannot be None")
        derived = hashlib.pbkdf2_hmac(
            self._algorithm,
            password.encode("utf-8"),
            self._salt,
            self._iterations,
            dklen=self._dklen,
        )
        return base64.b64encode(derived).decode("ascii")

    def matches(self, plain_password: str, hashed_password: str) -> bool:
        """Return True if ``plain_password`` derives to ``hashed_password``.

        An empty stored digest never matches, even for an empty input.
        """
        if plain_password is None:
            raise TypeError("plain_password cannot be None")
        if hashed_password is None:
            raise TypeError("hashed_password cannot be None")
        candidate = self.hash_password(plain_password)
        if not hashed_password:
            return False
        return hmac.compare_digest(candidate.encode("ascii"), hashed_password.encode("utf-8"))


class PasswordGenerator:
    """Generate one-time passwords for new accounts and reset requests."""

    def __init__(self, length: int) -> None:
        if length < 4:
            raise ValueError("Password length must be at least 4 characters to include all character types")
        self.length = length
        self._random = secrets.SystemRandom()

    def generate(self) -> str:
        chars = [
            self._random.choice(UPPERCASE),
            self._random.choice(LOWERCASE),
            self._random.choice(DIGITS),
            self._random.choice(SPECIAL_CHARS),
        ]
        chars.extend(self._random.choice(ALL_CHARS) for _ in range(self.length - 4))

        # Fisher-Yates
        for i in range(len(chars) - 1, 0, -1):
            j = self._random.randint(0, i)
            chars[i], chars[j] = chars[j], chars[i]
        return "".join(chars)
