"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> auth dependency
injection -> AuthService -> SQLite + fake Redis -> response model
serialization. Unit testing route functions directly would miss the error
envelope, the cookie handling and the dependency wiring.

Coverage:
  - Auth failures: 401 on protected routes without or with a bad token
  - register 201 / 409 / 422
  - login 200 with cookie and no-store; wrong password and unknown user give
    the same 401 body
  - validate-token, me, devices, trust, revoke, logout, logout-all
  - admin routes: 403 for non-admin callers, lock/unlock/devices for admin
  - passwords: 72-byte UTF-8 limit gives 422, surrounding spaces are kept

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, auth). The client is shared by the whole
    module, so every test uses its own usernames. _login() clears the cookie
    jar after logging in so each request authenticates only with the header
    it passes.
"""

from __future__ import annotations

from fastapi.testclient import TestClient


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register(client: TestClient, username: str, password: str = "pw1-secret"):
    return client.post(
        "/api/v1/auth/register",
        json={"username": username, "email": f"{username}@example.com", "password": password},
    )


def _login(client: TestClient, username: str, device_id: str, password: str = "pw1-secret"):
    resp = client.post(
        "/api/v1/auth/login",
        json={
            "username": username,
            "password": password,
            "device_id": device_id,
            "device_name": f"{device_id} browser",
            "device_type": "web",
        },
    )
    client.cookies.clear()
    return resp


def _token(client: TestClient, username: str, device_id: str) -> str:
    resp = _login(client, username, device_id)
    assert resp.status_code == 200, resp.text
    return resp.json()["access_token"]


class TestApiAuthFailure:
    """Protected routes reject missing and bad tokens with the same 401."""

    def test_me_without_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_me_with_garbage_token(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.get("/api/v1/auth/me", headers=_bearer("garbage"))
        assert resp.status_code == 401

    def test_devices_without_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/auth/devices").status_code == 401

    def test_logout_without_token(self, api_client) -> None:
        client, _, _ = api_client
        assert client.post("/api/v1/auth/logout").status_code == 401


class TestRegisterAndLogin:
    def test_register_returns_201(self, api_client) -> None:
        client, _, _ = api_client
        resp = _register(client, "reg_user")
        assert resp.status_code == 201
        data = resp.json()
        assert data["username"] == "reg_user"
        assert data["must_change_password"] is True
        assert "password" not in data
        assert "hashed_password" not in data

    def test_register_duplicate_returns_409(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "dup_user")
        resp = _register(client, "dup_user")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "already_exists"

    def test_register_short_password_returns_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = _register(client, "short_pw", password="short")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_login_returns_token_cookie_and_no_store(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "login_ok")
        resp = client.post(
            "/api/v1/auth/login",
            json={"username": "login_ok", "password": "pw1-secret", "device_id": "L1", "device_name": "Laptop"},
        )
        client.cookies.clear()
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["session"]["device_id"] == "L1"
        assert "access_token=" in resp.headers["set-cookie"]
        assert "httponly" in resp.headers["set-cookie"].lower()
        assert resp.headers["cache-control"] == "no-store"

    def test_wrong_password_and_unknown_user_look_the_same(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "login_bad")
        wrong = _login(client, "login_bad", "L1", password="not-the-password")
        unknown = _login(client, "nobody_here", "L1")
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_locked_account_returns_403(self, api_client) -> None:
        client, admin_token, _ = api_client
        uid = _register(client, "locked_user").json()["id"]
        client.post(f"/api/v1/auth/users/{uid}/lock", headers=_bearer(admin_token))
        resp = _login(client, "locked_user", "L1")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_locked"


class TestSessionRoutes:
    def test_validate_token_and_me(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "sess_user")
        token = _token(client, "sess_user", "S1")

        resp = client.post("/api/v1/auth/validate-token", json={"token": token})
        assert resp.status_code == 200
        assert resp.json()["username"] == "sess_user"

        me = client.get("/api/v1/auth/me", headers=_bearer(token))
        assert me.status_code == 200
        assert me.json()["device_id"] == "S1"

    def test_validate_token_rejects_garbage_generically(self, api_client) -> None:
        client, _, _ = api_client
        resp = client.post("/api/v1/auth/validate-token", json={"token": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"] == {
            "code": "invalid_token",
            "message": "Invalid or expired token.",
            "detail": None,
        }

    def test_cookie_authenticates(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "cookie_user")
        token = _token(client, "cookie_user", "C1")
        resp = client.get("/api/v1/auth/me", headers={"Cookie": f"access_token={token}"})
        assert resp.status_code == 200
        assert resp.json()["username"] == "cookie_user"

    def test_devices_listing_has_no_tokens(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "dev_user")
        token = _token(client, "dev_user", "D1")
        _token(client, "dev_user", "D2")

        resp = client.get("/api/v1/auth/devices", headers=_bearer(token))
        assert resp.status_code == 200
        devices = resp.json()
        assert {d["device_id"] for d in devices} == {"D1", "D2"}
        assert all("token" not in d for d in devices)

    def test_trust_device(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "trust_user")
        token = _token(client, "trust_user", "T1")

        resp = client.post("/api/v1/auth/devices/trust", json={"device_id": "T1"}, headers=_bearer(token))
        assert resp.status_code == 200
        devices = client.get("/api/v1/auth/devices", headers=_bearer(token)).json()
        assert devices[0]["is_trusted"] is True
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 200

    def test_trust_unknown_device_returns_404(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "trust_404")
        token = _token(client, "trust_404", "T1")
        resp = client.post("/api/v1/auth/devices/trust", json={"device_id": "ghost"}, headers=_bearer(token))
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_revoke_other_device_keeps_current_session(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "revoke_user")
        t1 = _token(client, "revoke_user", "R1")
        t2 = _token(client, "revoke_user", "R2")

        resp = client.post("/api/v1/auth/devices/revoke", json={"device_id": "R1"}, headers=_bearer(t2))
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(t1)).status_code == 401
        assert client.get("/api/v1/auth/me", headers=_bearer(t2)).status_code == 200

    def test_logout_ends_current_device_only(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "logout_user")
        t1 = _token(client, "logout_user", "O1")
        t2 = _token(client, "logout_user", "O2")

        resp = client.post("/api/v1/auth/logout", headers=_bearer(t1))
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(t1)).status_code == 401

        devices = {d["device_id"]: d for d in client.get("/api/v1/auth/devices", headers=_bearer(t2)).json()}
        assert devices["O1"]["is_active"] is False
        assert devices["O2"]["is_active"] is True

    def test_logout_all(self, api_client) -> None:
        client, _, _ = api_client
        _register(client, "logout_all_user")
        t1 = _token(client, "logout_all_user", "A1")
        t2 = _token(client, "logout_all_user", "A2")

        assert client.post("/api/v1/auth/logout-all", headers=_bearer(t1)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(t1)).status_code == 401
        assert client.get("/api/v1/auth/me", headers=_bearer(t2)).status_code == 401


class TestAdminRoutes:
    def test_non_admin_is_forbidden(self, api_client) -> None:
        client, _, _ = api_client
        uid = _register(client, "plain_user").json()["id"]
        token = _token(client, "plain_user", "P1")
        for method, path in (
            ("get", f"/api/v1/auth/users/{uid}/devices"),
            ("post", f"/api/v1/auth/users/{uid}/lock"),
            ("post", f"/api/v1/auth/users/{uid}/unlock"),
        ):
            resp = getattr(client, method)(path, headers=_bearer(token))
            assert resp.status_code == 403, path
            assert resp.json()["error"]["code"] == "forbidden"

    def test_admin_lists_user_devices(self, api_client) -> None:
        client, admin_token, _ = api_client
        uid = _register(client, "watched_user").json()["id"]
        _token(client, "watched_user", "W1")
        resp = client.get(f"/api/v1/auth/users/{uid}/devices", headers=_bearer(admin_token))
        assert resp.status_code == 200
        assert [d["device_id"] for d in resp.json()] == ["W1"]

    def test_admin_unknown_user_returns_404(self, api_client) -> None:
        client, admin_token, _ = api_client
        resp = client.get("/api/v1/auth/users/99999/devices", headers=_bearer(admin_token))
        assert resp.status_code == 404

    def test_lock_signs_out_and_unlock_restores_login(self, api_client) -> None:
        client, admin_token, _ = api_client
        uid = _register(client, "lock_cycle").json()["id"]
        token = _token(client, "lock_cycle", "K1")

        assert client.post(f"/api/v1/auth/users/{uid}/lock", headers=_bearer(admin_token)).status_code == 200
        assert client.get("/api/v1/auth/me", headers=_bearer(token)).status_code == 401

        assert client.post(f"/api/v1/auth/users/{uid}/unlock", headers=_bearer(admin_token)).status_code == 200
        assert _login(client, "lock_cycle", "K1").status_code == 200


class TestPasswordHandling:
    """Passwords are measured in UTF-8 bytes and never trimmed."""

    def test_register_multibyte_password_over_72_bytes_returns_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = _register(client, "accent_long", password="é" * 64)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_register_and_login_with_72_byte_password(self, api_client) -> None:
        client, _, _ = api_client
        assert _register(client, "accent_ok", password="é" * 36).status_code == 201
        assert _login(client, "accent_ok", "E1", password="é" * 36).status_code == 200

    def test_login_password_over_72_bytes_returns_422(self, api_client) -> None:
        client, _, _ = api_client
        resp = _login(client, "accent_ok", "E1", password="é" * 40)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_cli_created_password_with_spaces_logs_in_over_http(self, api_client) -> None:
        client, _, auth = api_client
        auth.register("spaced_cli", "spaced_cli@example.com", "  padded secret  ")
        assert _login(client, "spaced_cli", "P1", password="  padded secret  ").status_code == 200
        assert _login(client, "spaced_cli", "P1", password="padded secret").status_code == 401

    def test_http_registered_password_with_spaces_is_stored_verbatim(self, api_client) -> None:
        client, _, auth = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"username": "  spaced_http ", "email": " spaced_http@example.com ", "password": " lead and trail "},
        )
        assert resp.status_code == 201
        assert resp.json()["username"] == "spaced_http"
        assert auth.credentials.verify("spaced_http", " lead and trail ").username == "spaced_http"
