"""
tests/test_api_routes.py -- Integration tests for the auth gateway routes.

These tests exercise the full stack: FastAPI routing -> middleware ->
dependency injection -> AuthService -> SQLAlchemy stores -> error handlers.
Unit testing individual route functions would miss the cookie handling,
status mapping and security headers, so integration tests are the right tool.

Coverage:
  - Public routes: signup, signin, refresh-token rotation, logout, health
  - Error mapping: 401 / 403 / 404 / 409 / 422 / 423 with the error envelope
  - Authorization: self-or-admin on /users/{id}, admin-only listing,
    stale admin tokens
  - Response hygiene: refresh cookie flags, Cache-Control, security headers

Fixtures used (from conftest.py):
  - api_client: ApiHarness(client, admin_token, admin_id, users, service)
    The fixture creates admin@example.com with roles ["user", "admin"].

Refresh secrets are sent with an explicit Cookie header after clearing the
client's jar, so each test controls exactly which secret the server sees.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

PASSWORD = "Str0ng!Pass"


def _email() -> str:
    return f"user-{uuid.uuid4().hex[:10]}@example.com"


def _name() -> str:
    return f"User {uuid.uuid4().hex[:10]}"


def _signup(client: TestClient, email: str | None = None, password: str = PASSWORD):
    client.cookies.clear()
    return client.post("/api/v1/signup", json={"name": _name(), "email": email or _email(), "password": password})


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _with_refresh(client: TestClient, path: str, secret: str):
    client.cookies.clear()
    return client.post(path, headers={"Cookie": f"refresh_token={secret}"})


class TestHealth:
    def test_health(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "1.0.0"}

    def test_security_headers(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/health")
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]

    def test_docs_disabled(self, api_client) -> None:
        assert api_client.client.get("/docs").status_code == 404


class TestSignUpAndSignIn:
    def test_signup_sets_refresh_cookie(self, api_client) -> None:
        email = _email()
        resp = _signup(api_client.client, email=email.upper())
        assert resp.status_code == 200, resp.text

        data = resp.json()
        assert data["user"]["email"] == email
        assert data["user"]["roles"] == ["user"]
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert "refresh_token" not in data
        assert "hashed_password" not in data["user"]

        assert resp.headers["Cache-Control"] == "no-store"
        set_cookie = resp.headers["set-cookie"].lower()
        assert set_cookie.startswith("refresh_token=")
        assert "httponly" in set_cookie
        assert "samesite=strict" in set_cookie
        assert "path=/" in set_cookie

    def test_signup_weak_password(self, api_client) -> None:
        resp = _signup(api_client.client, password="alllowercase1!")
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        assert "uppercase" in error["message"]

    def test_signup_malformed_body(self, api_client) -> None:
        resp = api_client.client.post("/api/v1/signup", json={"email": _email()})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_signup_duplicate(self, api_client) -> None:
        email = _email()
        assert _signup(api_client.client, email=email).status_code == 200
        resp = _signup(api_client.client, email=email)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_user"

    def test_signin(self, api_client) -> None:
        email = _email()
        user_id = _signup(api_client.client, email=email).json()["user"]["id"]
        api_client.client.cookies.clear()

        resp = api_client.client.post("/api/v1/signin", json={"email": email, "password": PASSWORD})
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["id"] == user_id
        assert resp.cookies.get("refresh_token")

    def test_signin_wrong_password_and_unknown_email(self, api_client) -> None:
        email = _email()
        _signup(api_client.client, email=email)
        wrong = api_client.client.post("/api/v1/signin", json={"email": email, "password": "Wr0ng!Pass"})
        unknown = api_client.client.post("/api/v1/signin", json={"email": _email(), "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["message"] == "invalid credentials"

    def test_signin_lockout(self, api_client) -> None:
        email = _email()
        _signup(api_client.client, email=email)
        for _ in range(3):
            resp = api_client.client.post("/api/v1/signin", json={"email": email, "password": "Wr0ng!Pass"})
            assert resp.status_code == 401

        resp = api_client.client.post("/api/v1/signin", json={"email": email, "password": PASSWORD})
        assert resp.status_code == 423
        assert resp.json()["error"] == {
            "code": "account_locked",
            "message": "account locked due to multiple failed login attempts",
            "detail": None,
        }


class TestRefreshAndLogout:
    def test_refresh_rotates_cookie(self, api_client) -> None:
        client = api_client.client
        signup = _signup(client)
        old_secret = signup.cookies.get("refresh_token")
        user_id = signup.json()["user"]["id"]

        resp = _with_refresh(client, "/api/v1/refresh-token", old_secret)
        assert resp.status_code == 200, resp.text
        new_secret = resp.cookies.get("refresh_token")
        assert new_secret and new_secret != old_secret
        assert resp.headers["Cache-Control"] == "no-store"

        me = client.get(f"/api/v1/users/{user_id}", headers=_bearer(resp.json()["access_token"]))
        assert me.status_code == 200

        replay = _with_refresh(client, "/api/v1/refresh-token", old_secret)
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "invalid_refresh_token"

        assert _with_refresh(client, "/api/v1/refresh-token", new_secret).status_code == 200

    def test_refresh_without_cookie(self, api_client) -> None:
        api_client.client.cookies.clear()
        resp = api_client.client.post("/api/v1/refresh-token")
        assert resp.status_code == 401
        assert resp.json()["error"] == {"code": "unauthorized", "message": "refresh token not found"}

    def test_logout_revokes_and_clears_cookie(self, api_client) -> None:
        client = api_client.client
        secret = _signup(client).cookies.get("refresh_token")

        resp = _with_refresh(client, "/api/v1/logout", secret)
        assert resp.status_code == 200
        assert resp.json() == {"message": "logged out successfully"}
        set_cookie = resp.headers["set-cookie"].lower()
        assert set_cookie.startswith('refresh_token=""') or "max-age=0" in set_cookie

        assert _with_refresh(client, "/api/v1/refresh-token", secret).status_code == 401

    def test_logout_without_cookie(self, api_client) -> None:
        api_client.client.cookies.clear()
        assert api_client.client.post("/api/v1/logout").status_code == 200


class TestUserRoutes:
    def _new_user(self, client: TestClient) -> tuple[str, str]:
        data = _signup(client).json()
        client.cookies.clear()
        return data["user"]["id"], data["access_token"]

    def test_requires_bearer_token(self, api_client) -> None:
        resp = api_client.client.get(f"/api/v1/users/{api_client.admin_id}")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_rejects_garbage_token(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/users", headers=_bearer("not-a-token"))
        assert resp.status_code == 401

    def test_get_self(self, api_client) -> None:
        user_id, token = self._new_user(api_client.client)
        resp = api_client.client.get(f"/api/v1/users/{user_id}", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["id"] == user_id

    def test_get_other_user_forbidden(self, api_client) -> None:
        _user_id, token = self._new_user(api_client.client)
        resp = api_client.client.get(f"/api/v1/users/{api_client.admin_id}", headers=_bearer(token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_gets_any_user(self, api_client) -> None:
        user_id, _token = self._new_user(api_client.client)
        resp = api_client.client.get(f"/api/v1/users/{user_id}", headers=_bearer(api_client.admin_token))
        assert resp.status_code == 200

    def test_bad_identifier(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/users/not-a-uuid", headers=_bearer(api_client.admin_token))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "invalid user ID format"

    def test_unknown_user(self, api_client) -> None:
        resp = api_client.client.get(f"/api/v1/users/{uuid.uuid4()}", headers=_bearer(api_client.admin_token))
        assert resp.status_code == 404

    def test_list_users_admin_only(self, api_client) -> None:
        _user_id, token = self._new_user(api_client.client)
        assert api_client.client.get("/api/v1/users", headers=_bearer(token)).status_code == 403

        resp = api_client.client.get("/api/v1/users", headers=_bearer(api_client.admin_token))
        assert resp.status_code == 200
        assert "admin@example.com" in [u["email"] for u in resp.json()]

    def test_stale_admin_token_cannot_list(self, api_client) -> None:
        user_id, _token = self._new_user(api_client.client)
        stale = api_client.service.issuer.issue_access_token(user_id, ["user", "admin"])
        resp = api_client.client.get("/api/v1/users", headers=_bearer(stale))
        assert resp.status_code == 403

    def test_update_email_only(self, api_client) -> None:
        client = api_client.client
        data = _signup(client).json()
        client.cookies.clear()
        user_id, token = data["user"]["id"], data["access_token"]
        new_email = _email()

        resp = client.put(
            f"/api/v1/users/{user_id}",
            json={"email": new_email.upper(), "roles": ["admin"]},
            headers=_bearer(token),
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["email"] == new_email
        assert body["name"] == data["user"]["name"]
        assert body["roles"] == ["user"]

    def test_update_without_fields(self, api_client) -> None:
        user_id, token = self._new_user(api_client.client)
        resp = api_client.client.put(f"/api/v1/users/{user_id}", json={}, headers=_bearer(token))
        assert resp.status_code == 422
        assert resp.json()["error"]["message"] == "cannot update user with invalid credentials"

    def test_update_other_user_forbidden(self, api_client) -> None:
        other_id, _ = self._new_user(api_client.client)
        _user_id, token = self._new_user(api_client.client)
        resp = api_client.client.put(f"/api/v1/users/{other_id}", json={"name": "Mallory"}, headers=_bearer(token))
        assert resp.status_code == 403

    def test_delete_self(self, api_client) -> None:
        client = api_client.client
        user_id, token = self._new_user(client)

        resp = client.delete(f"/api/v1/users/{user_id}", headers=_bearer(token))
        assert resp.status_code == 204
        assert "refresh_token" in resp.headers.get("set-cookie", "")

        assert client.get(f"/api/v1/users/{user_id}", headers=_bearer(token)).status_code == 404

    def test_admin_deletes_user(self, api_client) -> None:
        user_id, _token = self._new_user(api_client.client)
        resp = api_client.client.delete(f"/api/v1/users/{user_id}", headers=_bearer(api_client.admin_token))
        assert resp.status_code == 204
        assert "set-cookie" not in resp.headers
        assert api_client.users.get_by_id(user_id) is None
