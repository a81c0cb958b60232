"""
tests/conftest.py -- Shared test fixtures for Passport unit and integration tests.

This module provides:
  - _make_test_store(): creates an isolated in-memory DB for the identity store
  - FrozenClock: a settable clock injected wherever services take ``clock=``
  - RecordingNotifier: captures notification events instead of sending mail
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin JWT for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates the salt and the JWT key pair in dev mode rather than raising
ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any auth/core import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
# Keep PBKDF2 cheap in tests; the derivation itself is covered in test_passwords.py.
os.environ.setdefault("PASSWORD_ITERATIONS", "1000")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, configure_services
from auth.mailer import ResetPasswordRequested, UserCreated
from auth.models import Profile, Role, User
from auth.passwords import PasswordEncoder, PasswordGenerator
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings

ADMIN_EMAIL = "admin@passport.dev"
ADMIN_PASSWORD = "adminpass123"  # noqa: S105 # nosec B105 -- test fixture credential

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier:
    """Notifier that keeps every event. Set ``fail = True`` to make delivery raise."""

    def __init__(self) -> None:
        self.reset_events: list[ResetPasswordRequested] = []
        self.created_events: list[UserCreated] = []
        self.fail = False

    def reset_password_requested(self, event: ResetPasswordRequested) -> None:
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.reset_events.append(event)

    def user_created(self, event: UserCreated) -> None:
        if self.fail:
            raise RuntimeError("SMTP unavailable")
        self.created_events.append(event)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_passport_{db_suffix}?mode=memory&cache=shared&uri=true")


def _seed_user(
    store: UserStore,
    encoder: PasswordEncoder,
    username: str,
    email: str,
    password: str,
    roles: tuple[str, ...] = (),
    profile_name: str | None = None,
    disabled: bool = False,
) -> User:
    """Create a user holding one profile that grants ``roles`` (roles/profile created if missing)."""
    profiles = []
    if roles or profile_name:
        role_objs = []
        for name in roles:
            role = store.get_role_by_name(name)
            if role is None:
                role = Role(name=name, id=store.create_role(Role(name=name)))
            role_objs.append(role)
        pname = profile_name or f"{username}-profile"
        profile = store.get_profile_by_name(pname)
        if profile is None:
            profile = Profile(name=pname, roles=role_objs)
            profile.id = store.create_profile(profile)
        profiles.append(profile)
    user = User(
        username=username,
        name=username.title(),
        email=email,
        encoded_password=encoder.hash_password(password),
        disabled=disabled,
        profiles=profiles,
    )
    return store.get_by_id(store.create_user(user))


def _patch_lifespan(store: UserStore, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and a RecordingNotifier into app.state through the
    same configure_services() the real lifespan uses.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_services(app, store, notifier)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = _make_test_store(uuid.uuid4().hex)
    yield s
    s.close()


@pytest.fixture
def encoder() -> PasswordEncoder:
    return PasswordEncoder.from_settings(get_settings())


@pytest.fixture
def generator() -> PasswordGenerator:
    return PasswordGenerator(12)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def issuer(clock: FrozenClock) -> TokenIssuer:
    return TokenIssuer.from_settings(get_settings(), clock=clock)


@pytest.fixture
def seed_user(store: UserStore, encoder: PasswordEncoder):
    """Return a factory creating users in ``store`` (or in ``target=`` when given)."""

    def _factory(username: str, email: str, password: str, target: UserStore | None = None, **kwargs) -> User:
        return _seed_user(target or store, encoder, username, email, password, **kwargs)

    return _factory


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> None:
    """Each test starts with a fresh rate-limit window."""
    limiter.reset()


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    The admin user (ADMIN_EMAIL / ADMIN_PASSWORD, holding the admin role
    through the "Administrators" profile) is created before the client
    starts and its JWT is issued for use in Authorization headers.

    The RecordingNotifier is reachable as client.app.state.notifier.
    """
    settings = get_settings()
    test_store = _make_test_store(f"api_{uuid.uuid4().hex}")
    enc = PasswordEncoder.from_settings(settings)
    admin = _seed_user(
        test_store,
        enc,
        username="testadmin",
        email=ADMIN_EMAIL,
        password=ADMIN_PASSWORD,
        roles=(settings.admin_role,),
        profile_name="Administrators",
    )
    token = TokenIssuer.from_settings(settings).issue(admin)

    app.router.lifespan_context = _patch_lifespan(test_store, RecordingNotifier())

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    test_store.close()
