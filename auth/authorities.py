"""
auth/authorities.py -- Effective authority resolution.

A user's authorities are the role names reachable through the profiles
assigned to it. Disabling a profile revokes its grants immediately: roles that
are reachable only through disabled profiles are not part of the result.

Pure function over an already-loaded User graph -- no store access here.
"""

from __future__ import annotations

from auth.models import User


def effective_authorities(user: User) -> set[str]:
    """Return the deduplicated role names granted to ``user`` by enabled profiles."""
    return {role.name for profile in user.profiles if not profile.disabled for role in profile.roles}


def has_authority(user: User, name: str) -> bool:
    """Case-insensitive membership test against effective_authorities()."""
    wanted = name.lower()
    return any(authority.lower() == wanted for authority in effective_authorities(user))
