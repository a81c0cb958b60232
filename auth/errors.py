"""
auth/errors.py -- Exception taxonomy for the identity core.

Authentication and recovery failures are deliberately coarse: every reason a
login or a reset confirmation can fail collapses into one exception with one
fixed message, so callers cannot enumerate users or probe tokens.
Administrative failures (NotFound, Conflict) are specific and actionable.

api/main.py maps each class to an HTTP status via its ``status_code`` and
``code`` attributes.
"""

from __future__ import annotations

from collections.abc import Iterable


class PassportError(Exception):
    """Base class for every error raised by auth/ and admin/."""

    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.public_message)


class InvalidCredentials(PassportError):
    """Unknown principal, disabled principal or wrong secret."""

    status_code = 401
    code = "bad_credentials"
    public_message = "Invalid credentials."


class RecoveryNotFound(PassportError):
    """Unknown token, wrong passphrase, used, expired or disabled owner."""

    status_code = 404
    code = "not_found"
    public_message = "Reset token not found."


class CryptoUnavailable(PassportError):
    """The configured hash algorithm is not provided by this runtime."""


class SigningFailure(PassportError):
    """The signed assertion could not be produced."""


class ValidationFailed(PassportError):
    status_code = 400
    code = "validation_error"
    public_message = "Request validation failed."


class NotFound(PassportError):
    """A referenced user, profile or role does not exist.

    ``ids`` lists the offending identifiers when the caller asked for several.
    """

    status_code = 404
    code = "not_found"
    public_message = "Resource not found."

    def __init__(self, message: str | None = None, ids: Iterable[int] = ()) -> None:
        self.ids = sorted(ids)
        super().__init__(message)


class Conflict(PassportError):
    """Duplicate name, username or e-mail."""

    status_code = 409
    code = "conflict"
    public_message = "Resource already exists."
