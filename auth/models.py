"""
auth/models.py -- Domain dataclasses for identity and access entities.

Pattern: Data class (pure data container, zero logic). Stores and services
do the work.

Relations are owned-by-id in the database (user_profiles, profile_roles).
UserStore resolves them into plain object graphs: User.profiles holds Profile
objects, Profile.roles holds Role objects. Nothing in the core mutates a
resolved Profile or Role.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Role:
    """An atomic named authority (a privilege). Unique by case-insensitive name."""

    name: str
    id: int | None = None


@dataclass
class Profile:
    """A named, reusable bundle of roles that can be assigned to users.

    A disabled profile keeps its assignments but grants nothing: its roles are
    excluded from every member's effective authorities.
    """

    name: str
    id: int | None = None
    disabled: bool = False
    roles: list[Role] = field(default_factory=list)


@dataclass
class User:
    """An authenticable identity.

    encoded_password is the base64 PBKDF2 digest produced by PasswordEncoder.
    The plaintext is never stored. created_at / updated_at are ISO 8601 UTC
    strings assigned by the store.
    """

    username: str
    name: str
    email: str
    encoded_password: str
    id: int | None = None
    disabled: bool = False
    profiles: list[Profile] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class ResetPasswordToken:
    """A one-time credential-reset artifact.

    Security design:
    - token is an opaque UUID4 string handed to the user; it identifies the
      record but is not a secret on its own.
    - encoded_password is the PBKDF2 digest of a generated one-time passphrase.
      The passphrase is e-mailed once and never persisted.
    - used only moves false -> true. A used token is terminal.
    - expired is set when a later request observes the token aged past the
      24h validity window. It mirrors time, it does not replace the age check.
    """

    token: str
    encoded_password: str
    user_id: int
    requested_at: str
    id: int | None = None
    used: bool = False
    expired: bool = False
