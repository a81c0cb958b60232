"""
auth/store.py -- SQLAlchemy Core persistence layer for identity entities.

Pattern: Repository + Data Mapper. UserStore is the repository; the _row_to_*
functions are the mappers. Services and routes never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Case-insensitive uniqueness (usernames, e-mails, profile and role names) is
  enforced by unique indexes on lower(column), so two concurrent creates that
  differ only in case cannot both succeed.

  At most one active reset token per user is enforced by a partial unique
  index on (user_id) WHERE used = 0 AND expired = 0. create_reset_token()
  runs its check-then-insert inside one write transaction; a concurrent second
  writer that slips past the check is rejected by the index.

Relations are stored as join tables (user_profiles, profile_roles) and
resolved into dataclass graphs on read: User.profiles -> Profile.roles.

Timestamps are stored as fixed-width ISO 8601 UTC strings (core.clock.to_iso),
so string comparison in SQL is chronological comparison.

DB path: auth/passport.db unless DATABASE_URL overrides it.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Profile, ResetPasswordToken, Role, User
from core.clock import to_iso, utc_now
from core.config import get_settings

RESET_TOKEN_TTL = timedelta(days=1)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(15), nullable=False),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("encoded_password", Text, nullable=False),
    Column("disabled", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)
Index("uq_users_username_lower", func.lower(_users.c.username), unique=True)
Index("uq_users_email_lower", func.lower(_users.c.email), unique=True)

_profiles = Table(
    "profiles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("disabled", Integer, nullable=False, server_default="0"),
)
Index("uq_profiles_name_lower", func.lower(_profiles.c.name), unique=True)

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(50), nullable=False),
)
Index("uq_roles_name_lower", func.lower(_roles.c.name), unique=True)

_profile_roles = Table(
    "profile_roles",
    _metadata,
    Column("profile_id", Integer, primary_key=True),
    Column("role_id", Integer, primary_key=True),
)

_user_profiles = Table(
    "user_profiles",
    _metadata,
    Column("user_id", Integer, primary_key=True),
    Column("profile_id", Integer, primary_key=True),
)

_reset_tokens = Table(
    "reset_password_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("token", String(36), nullable=False, unique=True),
    Column("encoded_password", Text, nullable=False),
    Column("used", Integer, nullable=False, server_default="0"),
    Column("expired", Integer, nullable=False, server_default="0"),
    Column("requested_at", String(32), nullable=False),
)
_active_token_predicate = (_reset_tokens.c.used == 0) & (_reset_tokens.c.expired == 0)
Index(
    "uq_reset_tokens_active_user",
    _reset_tokens.c.user_id,
    unique=True,
    sqlite_where=_active_token_predicate,
    postgresql_where=_active_token_predicate,
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


def _expiry_threshold(now: datetime) -> str:
    """Tokens requested at or before this instant are past the 24h window."""
    return to_iso(now - RESET_TOKEN_TTL)


def _contains(column, needle: str):
    """Case-insensitive substring match; ``%`` and ``_`` in *needle* match literally."""
    escaped = needle.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return func.lower(column).like(f"%{escaped}%", escape="\\")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User, Profile, Role and ResetPasswordToken entities.

    Usage:
        store = UserStore()
        role_id = store.create_role(Role(name="admin"))
        profile_id = store.create_profile(Profile(name="Administrators", roles=[Role(name="admin", id=role_id)]))
        user_id = store.create_user(User(username="admin", name="Admin", email="a@x.dev", encoded_password=digest))
        store.set_user_profiles(user_id, [profile_id])
        user = store.get_by_email("A@X.dev")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists."""
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User, now: datetime | None = None) -> int:
        """Insert a new user (and its profile links) and return its database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or e-mail is
        already taken, compared case-insensitively.
        """
        stamp = to_iso(now or utc_now())
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    name=user.name,
                    email=user.email,
                    encoded_password=user.encoded_password,
                    disabled=1 if user.disabled else 0,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
            user_id = result.inserted_primary_key[0]
            profile_ids = {p.id for p in user.profiles if p.id is not None}
            if profile_ids:
                conn.execute(
                    _user_profiles.insert(),
                    [{"user_id": user_id, "profile_id": pid} for pid in sorted(profile_ids)],
                )
        return user_id

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        return self._get_user(_users.c.id == user_id)

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by username, case-insensitively."""
        return self._get_user(func.lower(_users.c.username) == username.lower())

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by e-mail, case-insensitively."""
        return self._get_user(func.lower(_users.c.email) == email.lower())

    def _get_user(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
            if row is None:
                return None
            profiles = _profiles_for_users(conn, [row.id])
        return _row_to_user(row, profiles.get(row.id, []))

    def update_user(self, user_id: int, now: datetime | None = None, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: name, email, disabled, encoded_password. disabled must
        be passed as bool; this method converts to int for SQLite. updated_at
        never moves backwards.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError when the new e-mail collides with another user.
        """
        if "disabled" in fields:
            fields["disabled"] = 1 if fields["disabled"] else 0
        stamp = to_iso(now or utc_now())
        fields["updated_at"] = case((_users.c.updated_at > stamp, _users.c.updated_at), else_=stamp)
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def set_password(self, user_id: int, encoded_password: str, now: datetime | None = None) -> bool:
        return self.update_user(user_id, now=now, encoded_password=encoded_password)

    def set_user_profiles(self, user_id: int, profile_ids: Iterable[int], now: datetime | None = None) -> None:
        """Replace the set of profiles assigned to a user."""
        stamp = to_iso(now or utc_now())
        with self.engine.begin() as conn:
            conn.execute(_user_profiles.delete().where(_user_profiles.c.user_id == user_id))
            rows = [{"user_id": user_id, "profile_id": pid} for pid in sorted(set(profile_ids))]
            if rows:
                conn.execute(_user_profiles.insert(), rows)
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(updated_at=case((_users.c.updated_at > stamp, _users.c.updated_at), else_=stamp))
            )

    def search_users(
        self,
        name: str | None = None,
        email: str | None = None,
        profile_ids: Iterable[int] | None = None,
        role_ids: Iterable[int] | None = None,
        disabled: bool | None = None,
    ) -> list[User]:
        """Return users matching every supplied criterion, ordered by name.

        name / email are case-insensitive substring matches. profile_ids and
        role_ids match users holding any of the given profiles / any profile
        granting one of the given roles. disabled=None means no filter.
        """
        query = _users.select()
        if disabled is not None:
            query = query.where(_users.c.disabled == (1 if disabled else 0))
        if name:
            query = query.where(_contains(_users.c.name, name))
        if email:
            query = query.where(_contains(_users.c.email, email))
        profile_ids = list(profile_ids or [])
        if profile_ids:
            query = query.where(
                _users.c.id.in_(
                    select(_user_profiles.c.user_id).where(_user_profiles.c.profile_id.in_(profile_ids))
                )
            )
        role_ids = list(role_ids or [])
        if role_ids:
            query = query.where(
                _users.c.id.in_(
                    select(_user_profiles.c.user_id)
                    .join(_profile_roles, _profile_roles.c.profile_id == _user_profiles.c.profile_id)
                    .where(_profile_roles.c.role_id.in_(role_ids))
                )
            )
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_users.c.name, _users.c.id)).fetchall()
            profiles = _profiles_for_users(conn, [r.id for r in rows])
        return [_row_to_user(r, profiles.get(r.id, [])) for r in rows]

    # ------------------------------------------------------------------
    # Profile queries
    # ------------------------------------------------------------------

    def create_profile(self, profile: Profile) -> int:
        """Insert a profile with its role links. Raises IntegrityError on a duplicate name."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _profiles.insert().values(name=profile.name, disabled=1 if profile.disabled else 0)
            )
            profile_id = result.inserted_primary_key[0]
            role_ids = {r.id for r in profile.roles if r.id is not None}
            if role_ids:
                conn.execute(
                    _profile_roles.insert(),
                    [{"profile_id": profile_id, "role_id": rid} for rid in sorted(role_ids)],
                )
        return profile_id

    def get_profile(self, profile_id: int) -> Profile | None:
        found = self.get_profiles_by_ids([profile_id])
        return found[0] if found else None

    def get_profile_by_name(self, name: str) -> Profile | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_profiles.c.id).where(func.lower(_profiles.c.name) == name.lower())
            ).fetchone()
            if row is None:
                return None
            return _load_profiles(conn, [row.id])[row.id]

    def get_profiles_by_ids(self, profile_ids: Iterable[int]) -> list[Profile]:
        """Return the existing profiles among ``profile_ids``, ordered by name."""
        ids = list(set(profile_ids))
        if not ids:
            return []
        with self.engine.connect() as conn:
            loaded = _load_profiles(conn, ids)
        return sorted(loaded.values(), key=lambda p: (p.name.lower(), p.id))

    def search_profiles(
        self,
        name: str | None = None,
        role_ids: Iterable[int] | None = None,
        disabled: bool | None = None,
    ) -> list[Profile]:
        """Return profiles matching every supplied criterion, ordered by name."""
        query = select(_profiles.c.id)
        if name:
            query = query.where(_contains(_profiles.c.name, name))
        if disabled is not None:
            query = query.where(_profiles.c.disabled == (1 if disabled else 0))
        role_ids = list(role_ids or [])
        if role_ids:
            query = query.where(
                _profiles.c.id.in_(
                    select(_profile_roles.c.profile_id).where(_profile_roles.c.role_id.in_(role_ids))
                )
            )
        with self.engine.connect() as conn:
            ids = [r.id for r in conn.execute(query).fetchall()]
            loaded = _load_profiles(conn, ids)
        return sorted(loaded.values(), key=lambda p: (p.name.lower(), p.id))

    def list_profiles(self) -> list[Profile]:
        return self.search_profiles()

    def update_profile(self, profile_id: int, **fields) -> bool:
        """Update name and/or disabled. Returns False if the profile does not exist."""
        if "disabled" in fields:
            fields["disabled"] = 1 if fields["disabled"] else 0
        if not fields:
            return self.get_profile(profile_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(_profiles.update().where(_profiles.c.id == profile_id).values(**fields))
        return result.rowcount > 0

    def set_profile_roles(self, profile_id: int, role_ids: Iterable[int]) -> None:
        """Replace the set of roles granted by a profile."""
        with self.engine.begin() as conn:
            conn.execute(_profile_roles.delete().where(_profile_roles.c.profile_id == profile_id))
            rows = [{"profile_id": profile_id, "role_id": rid} for rid in sorted(set(role_ids))]
            if rows:
                conn.execute(_profile_roles.insert(), rows)

    # ------------------------------------------------------------------
    # Role queries
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role. Raises IntegrityError on a duplicate (case-insensitive) name."""
        with self.engine.begin() as conn:
            result = conn.execute(_roles.insert().values(name=role.name))
        return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(func.lower(_roles.c.name) == name.lower())).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_roles_by_ids(self, role_ids: Iterable[int]) -> list[Role]:
        ids = list(set(role_ids))
        if not ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().where(_roles.c.id.in_(ids)).order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def search_roles(self, name: str | None = None) -> list[Role]:
        query = _roles.select()
        if name:
            query = query.where(_contains(_roles.c.name, name))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def list_roles(self) -> list[Role]:
        return self.search_roles()

    def delete_role(self, role_id: int) -> bool:
        """Delete a role and unlink it from every profile. Returns False if not found."""
        with self.engine.begin() as conn:
            conn.execute(_profile_roles.delete().where(_profile_roles.c.role_id == role_id))
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Reset password tokens
    # ------------------------------------------------------------------

    def find_active_reset_token(self, user_id: int, now: datetime) -> ResetPasswordToken | None:
        """Return the user's unused token requested less than 24h before ``now``."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _reset_tokens.select().where(
                    (_reset_tokens.c.user_id == user_id)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.requested_at > _expiry_threshold(now))
                )
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def create_reset_token(self, token: ResetPasswordToken, now: datetime) -> int | None:
        """Persist ``token`` unless the user already holds an active one.

        Runs in a single write transaction: aged-out tokens are flagged
        expired first, which also takes the SQLite write lock before the
        active-token check. Returns the new token ID, or None when an active
        token exists or a concurrent request created one first.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _reset_tokens.update()
                    .where(
                        (_reset_tokens.c.user_id == token.user_id)
                        & _active_token_predicate
                        & (_reset_tokens.c.requested_at <= _expiry_threshold(now))
                    )
                    .values(expired=1)
                )
                active = conn.execute(
                    select(_reset_tokens.c.id).where(
                        (_reset_tokens.c.user_id == token.user_id) & _active_token_predicate
                    )
                ).fetchone()
                if active is not None:
                    return None
                result = conn.execute(
                    _reset_tokens.insert().values(
                        user_id=token.user_id,
                        token=token.token,
                        encoded_password=token.encoded_password,
                        used=1 if token.used else 0,
                        expired=0,
                        requested_at=token.requested_at,
                    )
                )
                return result.inserted_primary_key[0]
        except IntegrityError:
            return None

    def get_reset_token(self, token: str) -> ResetPasswordToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(_reset_tokens.select().where(_reset_tokens.c.token == token)).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def find_valid_reset_token(self, token: str, now: datetime) -> ResetPasswordToken | None:
        """Return the token if it is unused, inside its 24h window and its owner is enabled."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _reset_tokens.select().where(
                    (_reset_tokens.c.token == token)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.requested_at > _expiry_threshold(now))
                    & _reset_tokens.c.user_id.in_(select(_users.c.id).where(_users.c.disabled == 0))
                )
            ).fetchone()
        return _row_to_reset_token(row) if row is not None else None

    def consume_reset_token(self, token_id: int, encoded_password: str, now: datetime) -> bool:
        """Mark a token used and rewrite its owner's password in one transaction.

        The used flag flips with a conditional update that re-checks every
        validity condition, so of several concurrent confirmations exactly one
        gets rowcount 1. Returns False (and writes nothing) for the others.
        """
        stamp = to_iso(now)
        with self.engine.begin() as conn:
            result = conn.execute(
                _reset_tokens.update()
                .where(
                    (_reset_tokens.c.id == token_id)
                    & (_reset_tokens.c.used == 0)
                    & (_reset_tokens.c.requested_at > _expiry_threshold(now))
                    & _reset_tokens.c.user_id.in_(select(_users.c.id).where(_users.c.disabled == 0))
                )
                .values(used=1)
            )
            if result.rowcount != 1:
                return False
            user_id = conn.execute(
                select(_reset_tokens.c.user_id).where(_reset_tokens.c.id == token_id)
            ).scalar_one()
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    encoded_password=encoded_password,
                    updated_at=case((_users.c.updated_at > stamp, _users.c.updated_at), else_=stamp),
                )
            )
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Graph loading
# ---------------------------------------------------------------------------


def _load_profiles(conn: Connection, profile_ids: list[int]) -> dict[int, Profile]:
    """Load profiles by ID with their roles resolved. Missing IDs are absent from the result."""
    if not profile_ids:
        return {}
    rows = conn.execute(_profiles.select().where(_profiles.c.id.in_(profile_ids))).fetchall()
    profiles = {r.id: _row_to_profile(r) for r in rows}
    if profiles:
        role_rows = conn.execute(
            select(_profile_roles.c.profile_id, _roles.c.id, _roles.c.name)
            .join(_roles, _roles.c.id == _profile_roles.c.role_id)
            .where(_profile_roles.c.profile_id.in_(list(profiles)))
            .order_by(_roles.c.name)
        ).fetchall()
        for r in role_rows:
            profiles[r.profile_id].roles.append(Role(id=r.id, name=r.name))
    return profiles


def _profiles_for_users(conn: Connection, user_ids: list[int]) -> dict[int, list[Profile]]:
    if not user_ids:
        return {}
    links = conn.execute(
        select(_user_profiles.c.user_id, _user_profiles.c.profile_id).where(_user_profiles.c.user_id.in_(user_ids))
    ).fetchall()
    profiles = _load_profiles(conn, list({link.profile_id for link in links}))
    by_user: dict[int, list[Profile]] = {}
    for link in links:
        if link.profile_id in profiles:
            by_user.setdefault(link.user_id, []).append(profiles[link.profile_id])
    for assigned in by_user.values():
        assigned.sort(key=lambda p: (p.name.lower(), p.id))
    return by_user


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, profiles: list[Profile]) -> User:
    return User(
        id=row.id,
        username=row.username,
        name=row.name,
        email=row.email,
        encoded_password=row.encoded_password,
        disabled=bool(row.disabled),
        profiles=profiles,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_profile(row) -> Profile:
    return Profile(id=row.id, name=row.name, disabled=bool(row.disabled))


def _row_to_role(row) -> Role:
    return Role(id=row.id, name=row.name)


def _row_to_reset_token(row) -> ResetPasswordToken:
    return ResetPasswordToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        encoded_password=row.encoded_password,
        used=bool(row.used),
        expired=bool(row.expired),
        requested_at=row.requested_at,
    )
