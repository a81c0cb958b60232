"""
tests/test_api_routes.py -- Integration tests for the Passport REST API.

These tests exercise the full stack: FastAPI routing -> auth dependency injection
-> services -> UserStore -> response model serialization -> exception handlers.

Coverage:
  - Auth failures: 401 without token, 403 for non-admin on admin routes
  - Login: success payload + no-store, uniform 401 body, rate limit 429
  - /me, change-password (403 on wrong current, 422 on same password)
  - Password reset: always-200 request, confirm success, uniform 404 afterwards
  - Admin: role/profile/user CRUD, 404 with offending ids, 409 on duplicates
  - Disabling a user or its profile takes effect on existing tokens

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with admin JWT.
    The admin is ADMIN_EMAIL / ADMIN_PASSWORD holding the admin role.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from jose import jwt

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _unique(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


def _create_role(client: TestClient, token: str, name: str | None = None) -> dict:
    resp = client.post("/api/v1/roles", json={"name": name or _unique("role")}, headers=_auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_profile(client: TestClient, token: str, role_ids: list[int], name: str | None = None) -> dict:
    body = {"name": name or _unique("profile"), "role_ids": role_ids}
    resp = client.post("/api/v1/profiles", json=body, headers=_auth(token))
    assert resp.status_code == 201, resp.text
    return resp.json()


def _create_user(client: TestClient, token: str, profile_ids: list[int]) -> tuple[dict, str]:
    """Create a user through the API and return (user json, generated password)."""
    username = _unique("u")
    body = {"username": username, "name": "Test User", "email": f"{username}@passport.dev", "profile_ids": profile_ids}
    resp = client.post("/api/v1/users", json=body, headers=_auth(token))
    assert resp.status_code == 201, resp.text
    password = client.app.state.notifier.created_events[-1].password
    return resp.json(), password


def _login(client: TestClient, email: str, password: str):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


def _regular_user(client: TestClient, token: str) -> tuple[dict, str, str]:
    """Create a non-admin user and return (user json, password, jwt)."""
    role = _create_role(client, token)
    profile = _create_profile(client, token, [role["id"]])
    user, password = _create_user(client, token, [profile["id"]])
    resp = _login(client, user["email"], password)
    assert resp.status_code == 200, resp.text
    return user, password, resp.json()["token"]


class TestApiAuthFailure:
    """Unauthenticated and unauthorized requests."""

    def test_me_unauthenticated(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_garbage_token(self, api_client) -> None:
        client, _token, _uid = api_client
        assert client.get("/api/v1/auth/me", headers=_auth("not.a.jwt")).status_code == 401

    def test_admin_routes_require_token(self, api_client) -> None:
        client, _token, _uid = api_client
        for path in ("/api/v1/roles", "/api/v1/profiles", "/api/v1/users/search"):
            assert client.get(path).status_code == 401, path

    def test_admin_routes_forbid_non_admin(self, api_client) -> None:
        client, token, _uid = api_client
        _user, _pw, user_token = _regular_user(client, token)
        resp = client.get("/api/v1/roles", headers=_auth(user_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_docs_require_admin(self, api_client) -> None:
        client, token, _uid = api_client
        assert client.get("/docs").status_code == 401
        assert client.get("/docs", headers=_auth(token)).status_code == 200


class TestLogin:
    def test_login_success(self, api_client) -> None:
        client, _token, uid = api_client
        resp = _login(client, ADMIN_EMAIL, ADMIN_PASSWORD)
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 24 * 60 * 60
        assert data["user"]["id"] == uid
        assert "admin" in data["user"]["roles"]
        claims = jwt.get_unverified_claims(data["token"])
        assert claims["exp"] - claims["iat"] == 24 * 60 * 60
        assert claims["email"] == ADMIN_EMAIL

    def test_login_failures_are_uniform(self, api_client) -> None:
        client, _token, _uid = api_client
        wrong_password = _login(client, ADMIN_EMAIL, "wrong-password")
        unknown_email = _login(client, "ghost@passport.dev", ADMIN_PASSWORD)
        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json()
        assert wrong_password.json()["error"]["code"] == "bad_credentials"
        assert wrong_password.headers["Cache-Control"] == "no-store"

    def test_login_rate_limited(self, api_client) -> None:
        client, _token, _uid = api_client
        statuses = [_login(client, "ghost@passport.dev", "x").status_code for _ in range(11)]
        assert statuses[:10] == [401] * 10
        assert statuses[10] == 429

    def test_request_reset_rate_limited(self, api_client) -> None:
        client, _token, _uid = api_client
        body = {"email": "ghost@passport.dev"}
        statuses = [client.post("/api/v1/auth/request-reset-password", json=body).status_code for _ in range(11)]
        assert statuses[:10] == [200] * 10
        assert statuses[10] == 429

    def test_invalid_body_is_422(self, api_client) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestMeAndChangePassword:
    def test_me(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_auth(token))
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == uid
        assert data["profiles"] == ["Administrators"]

    def test_change_password(self, api_client) -> None:
        client, token, _uid = api_client
        user, password, user_token = _regular_user(client, token)
        body = {"current_password": password, "new_password": "fresh-pass-1"}
        resp = client.post("/api/v1/auth/change-password", json=body, headers=_auth(user_token))
        assert resp.status_code == 200, resp.text
        assert _login(client, user["email"], password).status_code == 401
        assert _login(client, user["email"], "fresh-pass-1").status_code == 200

    def test_change_password_wrong_current_is_403(self, api_client) -> None:
        client, token, _uid = api_client
        _user, _password, user_token = _regular_user(client, token)
        body = {"current_password": "not-my-password", "new_password": "fresh-pass-1"}
        resp = client.post("/api/v1/auth/change-password", json=body, headers=_auth(user_token))
        assert resp.status_code == 403

    def test_change_password_same_value_is_422(self, api_client) -> None:
        client, token, _uid = api_client
        _user, password, user_token = _regular_user(client, token)
        body = {"current_password": password, "new_password": password}
        resp = client.post("/api/v1/auth/change-password", json=body, headers=_auth(user_token))
        assert resp.status_code == 422


class TestPasswordReset:
    def test_request_for_unknown_email_still_200(self, api_client) -> None:
        client, _token, _uid = api_client
        notifier = client.app.state.notifier
        before = len(notifier.reset_events)
        resp = client.post("/api/v1/auth/request-reset-password", json={"email": "ghost@passport.dev"})
        assert resp.status_code == 200
        assert len(notifier.reset_events) == before

    def test_full_reset_flow(self, api_client) -> None:
        client, token, _uid = api_client
        user, old_password, _user_token = _regular_user(client, token)

        resp = client.post("/api/v1/auth/request-reset-password", json={"email": user["email"]})
        assert resp.status_code == 200
        event = client.app.state.notifier.reset_events[-1]
        assert event.email == user["email"]

        body = {"token": event.token, "recovery_password": event.password, "new_password": "after-reset-1"}
        resp = client.post("/api/v1/auth/reset", json=body)
        assert resp.status_code == 200, resp.text
        assert _login(client, user["email"], "after-reset-1").status_code == 200
        assert _login(client, user["email"], old_password).status_code == 401

        # Second use of the same token.
        body["new_password"] = "after-reset-2"
        replay = client.post("/api/v1/auth/reset", json=body)
        assert replay.status_code == 404
        assert replay.json()["error"] == {"code": "not_found", "message": "Reset token not found.", "detail": None}

    def test_wrong_recovery_password_looks_like_unknown_token(self, api_client) -> None:
        client, token, _uid = api_client
        user, _password, _user_token = _regular_user(client, token)
        client.post("/api/v1/auth/request-reset-password", json={"email": user["email"]})
        event = client.app.state.notifier.reset_events[-1]

        wrong = client.post(
            "/api/v1/auth/reset",
            json={"token": event.token, "recovery_password": "nope", "new_password": "after-reset-1"},
        )
        unknown = client.post(
            "/api/v1/auth/reset",
            json={"token": str(uuid.uuid4()), "recovery_password": event.password, "new_password": "after-reset-1"},
        )
        assert wrong.status_code == unknown.status_code == 404
        assert wrong.json() == unknown.json()


class TestAdministration:
    def test_role_profile_user_lifecycle(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        profile = _create_profile(client, token, [role["id"]])
        assert profile["roles"] == [role]

        user, _password = _create_user(client, token, [profile["id"]])
        assert user["roles"] == [role["name"]]
        assert [p["id"] for p in user["profiles"]] == [profile["id"]]
        assert "encoded_password" not in user

        fetched = client.get(f"/api/v1/users/{user['id']}", headers=_auth(token))
        assert fetched.status_code == 200
        assert fetched.json()["username"] == user["username"]

        resp = client.put(
            f"/api/v1/users/{user['id']}",
            json={"name": "Renamed", "email": user["email"]},
            headers=_auth(token),
        )
        assert resp.status_code == 200
        assert resp.json()["name"] == "Renamed"

    def test_unknown_ids_reported(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        resp = client.post(
            "/api/v1/profiles",
            json={"name": _unique("p"), "role_ids": [role["id"], 99998, 99999]},
            headers=_auth(token),
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["detail"] == "ids=99998,99999"

    def test_duplicate_role_is_409(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        resp = client.post("/api/v1/roles", json={"name": role["name"].upper()}, headers=_auth(token))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_delete_role(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        resp = client.delete(f"/api/v1/roles/{role['id']}", headers=_auth(token))
        assert resp.status_code == 200
        assert client.delete(f"/api/v1/roles/{role['id']}", headers=_auth(token)).status_code == 404

    def test_cannot_disable_self(self, api_client) -> None:
        client, token, uid = api_client
        resp = client.post(f"/api/v1/users/{uid}/disable", headers=_auth(token))
        assert resp.status_code == 400

    def test_disabled_user_loses_access(self, api_client) -> None:
        client, token, _uid = api_client
        user, password, user_token = _regular_user(client, token)
        assert client.get("/api/v1/auth/me", headers=_auth(user_token)).status_code == 200

        resp = client.post(f"/api/v1/users/{user['id']}/disable", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["disabled"] is True
        assert client.get("/api/v1/auth/me", headers=_auth(user_token)).status_code == 401
        assert _login(client, user["email"], password).status_code == 401

        search = client.get("/api/v1/users/search", params={"name": "Test User"}, headers=_auth(token))
        assert user["id"] not in [u["id"] for u in search.json()]
        search = client.get("/api/v1/users/search", params={"disabled": "true"}, headers=_auth(token))
        assert user["id"] in [u["id"] for u in search.json()]

        client.post(f"/api/v1/users/{user['id']}/enable", headers=_auth(token))
        assert _login(client, user["email"], password).status_code == 200

    def test_disabled_profile_revokes_roles(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        profile = _create_profile(client, token, [role["id"]])
        user, _password = _create_user(client, token, [profile["id"]])

        resp = client.post(f"/api/v1/profiles/{profile['id']}/disable", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["disabled"] is True
        fetched = client.get(f"/api/v1/users/{user['id']}", headers=_auth(token)).json()
        assert fetched["roles"] == []

    def test_search_users_by_role(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        profile = _create_profile(client, token, [role["id"]])
        user, _password = _create_user(client, token, [profile["id"]])
        resp = client.get("/api/v1/users/search", params={"role_ids": [role["id"]]}, headers=_auth(token))
        assert [u["id"] for u in resp.json()] == [user["id"]]

    def test_search_users_status_filter(self, api_client) -> None:
        client, token, _uid = api_client
        role = _create_role(client, token)
        profile = _create_profile(client, token, [role["id"]])
        active, _ = _create_user(client, token, [profile["id"]])
        disabled, _ = _create_user(client, token, [profile["id"]])
        client.post(f"/api/v1/users/{disabled['id']}/disable", headers=_auth(token))

        def ids(**params) -> list[int]:
            params["role_ids"] = [role["id"]]
            resp = client.get("/api/v1/users/search", params=params, headers=_auth(token))
            assert resp.status_code == 200, resp.text
            return sorted(u["id"] for u in resp.json())

        assert ids() == [active["id"]]
        assert ids(disabled="true") == [disabled["id"]]
        assert ids(include_disabled="true") == sorted([active["id"], disabled["id"]])

    def test_assign_profiles_and_roles(self, api_client) -> None:
        client, token, _uid = api_client
        first, second = _create_role(client, token), _create_role(client, token)
        profile = _create_profile(client, token, [first["id"]])
        user, _password = _create_user(client, token, [profile["id"]])

        resp = client.post(
            f"/api/v1/profiles/{profile['id']}/roles", json={"role_ids": [second["id"]]}, headers=_auth(token)
        )
        assert [r["id"] for r in resp.json()["roles"]] == [second["id"]]

        other = _create_profile(client, token, [first["id"]])
        resp = client.post(
            f"/api/v1/users/{user['id']}/profiles",
            json={"profile_ids": [profile["id"], other["id"]]},
            headers=_auth(token),
        )
        assert resp.status_code == 200
        assert sorted(resp.json()["roles"]) == sorted([first["name"], second["name"]])

    def test_create_user_validation(self, api_client) -> None:
        client, token, _uid = api_client
        body = {"username": "abc", "name": "Short", "email": "short@passport.dev", "profile_ids": [1]}
        assert client.post("/api/v1/users", json=body, headers=_auth(token)).status_code == 422
        body = {"username": "okname", "name": "No profiles", "email": "np@passport.dev", "profile_ids": []}
        assert client.post("/api/v1/users", json=body, headers=_auth(token)).status_code == 422
