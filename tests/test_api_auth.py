"""
tests/test_api_auth.py -- Integration tests for /api/v1/auth and /api/v1/users.

These tests exercise the full stack: FastAPI routing -> bearer dependency ->
CredentialManager / AccountService -> stores -> response model serialization
-> error envelope.

Coverage:
  - signup 201 without tokens, 409 on duplicates, 422 on bad bodies
  - verify-email single use, 400 on reuse
  - login 200 with no-store header, 401 with the same body for bad email/password
  - refresh rotation, logout, access token rejected on the refresh path
  - forgot-password identical responses, reset-password single use
  - profile, user admin listing, self-only PATCH/DELETE, deleted principal -> 401
  - external provider routes: unknown provider 404, callback issues tokens
"""

from __future__ import annotations

import pytest

from core.errors import NotFound


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestSignup:
    def test_signup_returns_principal_without_secrets(self, api) -> None:
        resp = api.client.post(
            "/api/v1/auth/signup",
            json={"email": "Alice@Example.com", "username": "alice", "password": "correct-horse-9"},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        user = body["user"]
        assert user["email"] == "alice@example.com"
        assert user["is_email_verified"] is False
        assert "access_token" not in body
        for secret in ("password_hash", "refresh_token_hash", "reset_token_hash", "verification_token_hash"):
            assert secret not in user

    def test_signup_sends_verification_link(self, api) -> None:
        api.signup("alice")
        to_address, _subject, body = api.mailer.messages[-1]
        assert to_address == "alice@example.com"
        assert "/verify-email?token=" in body

    def test_duplicate_signup_conflicts(self, api) -> None:
        api.signup("alice")
        resp = api.client.post(
            "/api/v1/auth/signup",
            json={"email": "alice@example.com", "username": "alice2", "password": "correct-horse-9"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    @pytest.mark.parametrize(
        "body",
        [
            {"email": "not-an-email", "username": "alice", "password": "correct-horse-9"},
            {"email": "a@example.com", "username": "a", "password": "correct-horse-9"},
            {"email": "a@example.com", "username": "alice", "password": "short"},
            {"email": "a@example.com"},
        ],
    )
    def test_invalid_signup_body(self, api, body) -> None:
        resp = api.client.post("/api/v1/auth/signup", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestVerifyEmail:
    def test_verify_then_reuse(self, api) -> None:
        api.signup("alice")
        token = api.mailer.last_token("alice@example.com")

        resp = api.client.get("/api/v1/auth/verify-email", params={"token": token})
        assert resp.status_code == 200

        profile = api.client.get("/api/v1/auth/profile", headers=api.headers_for("alice")).json()
        assert profile["is_email_verified"] is True

        again = api.client.get("/api/v1/auth/verify-email", params={"token": token})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_or_expired_token"


class TestLogin:
    def test_login_success(self, api) -> None:
        api.signup("alice")
        resp = api.client.post(
            "/api/v1/auth/login", json={"email": "alice@example.com", "password": "correct-horse-9"}
        )
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] > 0
        assert data["refresh_expires_in"] > data["expires_in"]

    def test_bad_email_and_bad_password_are_indistinguishable(self, api) -> None:
        api.signup("alice")
        wrong_pw = api.client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "nope"})
        unknown = api.client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "nope"})
        assert wrong_pw.status_code == unknown.status_code == 401
        assert wrong_pw.json() == unknown.json()
        assert wrong_pw.headers["WWW-Authenticate"] == "Bearer"


class TestSession:
    def test_refresh_rotates_and_old_token_dies(self, api) -> None:
        api.signup("alice")
        first = api.login("alice")

        resp = api.client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != first["refresh_token"]

        replay = api.client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert replay.status_code == 401

    def test_access_token_rejected_on_refresh_path(self, api) -> None:
        api.signup("alice")
        pair = api.login("alice")
        resp = api.client.post("/api/v1/auth/refresh", json={"refresh_token": pair["access_token"]})
        assert resp.status_code == 401

    def test_refresh_token_rejected_as_bearer(self, api) -> None:
        api.signup("alice")
        pair = api.login("alice")
        resp = api.client.get("/api/v1/auth/profile", headers=_bearer(pair["refresh_token"]))
        assert resp.status_code == 401

    def test_logout_then_refresh(self, api) -> None:
        api.signup("alice")
        pair = api.login("alice")
        resp = api.client.post("/api/v1/auth/logout", headers=_bearer(pair["access_token"]))
        assert resp.status_code == 200
        again = api.client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
        assert again.status_code == 401

    def test_protected_routes_need_a_token(self, api) -> None:
        assert api.client.get("/api/v1/auth/profile").status_code == 401
        assert api.client.post("/api/v1/auth/logout").status_code == 401
        resp = api.client.get("/api/v1/auth/profile", headers=_bearer("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"


class TestPasswordReset:
    def test_forgot_password_does_not_reveal_accounts(self, api) -> None:
        api.signup("alice")
        known = api.client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        unknown = api.client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_flow(self, api) -> None:
        api.signup("alice")
        api.client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        token = api.mailer.last_token("alice@example.com")

        resp = api.client.post(
            "/api/v1/auth/reset-password", json={"token": token, "new_password": "brand-new-pass"}
        )
        assert resp.status_code == 200
        assert api.login("alice", password="brand-new-pass")["access_token"]

        reuse = api.client.post(
            "/api/v1/auth/reset-password", json={"token": token, "new_password": "another-pass-1"}
        )
        assert reuse.status_code == 400

    def test_reset_is_audited_without_secrets(self, api) -> None:
        user = api.signup("alice")
        api.client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
        token = api.mailer.last_token("alice@example.com")
        api.client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": "brand-new-pass"})

        admin = api.make_admin("root")
        entries = api.client.get(f"/api/v1/audit/user/{user['id']}", headers=admin).json()
        assert [e["action"] for e in entries] == ["password_reset"]
        assert token not in str(entries)


class TestUsers:
    def test_admin_lists_users_with_page_meta(self, api) -> None:
        for name in ("alice", "bob", "carol"):
            api.signup(name)
        admin = api.make_admin("root")

        resp = api.client.get("/api/v1/users", params={"page": 2, "limit": 2}, headers=admin)
        assert resp.status_code == 200
        meta = resp.json()["meta"]
        assert meta == {
            "total_items": 4,
            "item_count": 2,
            "items_per_page": 2,
            "total_pages": 2,
            "current_page": 2,
        }

    def test_non_admin_cannot_list_users(self, api) -> None:
        resp = api.client.get("/api/v1/users", headers=api.headers_for("alice"))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_get_user_by_id(self, api) -> None:
        bob = api.signup("bob")
        resp = api.client.get(f"/api/v1/users/{bob['id']}", headers=api.headers_for("alice"))
        assert resp.status_code == 200
        assert resp.json()["username"] == "bob"
        missing = api.client.get("/api/v1/users/9999", headers=api.headers_for("alice"))
        assert missing.status_code == 404

    def test_update_own_username(self, api) -> None:
        headers = api.headers_for("alice")
        me = api.client.get("/api/v1/auth/profile", headers=headers).json()
        resp = api.client.patch(f"/api/v1/users/{me['id']}", json={"username": "alice2"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice2"

    def test_update_rejects_fields_outside_allow_list(self, api) -> None:
        headers = api.headers_for("alice")
        me = api.client.get("/api/v1/auth/profile", headers=headers).json()
        resp = api.client.patch(f"/api/v1/users/{me['id']}", json={"role": "admin"}, headers=headers)
        assert resp.status_code == 422
        assert api.client.get("/api/v1/auth/profile", headers=headers).json()["role"] == "user"

    def test_update_to_taken_username_conflicts(self, api) -> None:
        api.signup("bob")
        headers = api.headers_for("alice")
        me = api.client.get("/api/v1/auth/profile", headers=headers).json()
        resp = api.client.patch(f"/api/v1/users/{me['id']}", json={"username": "bob"}, headers=headers)
        assert resp.status_code == 409

    def test_cannot_touch_someone_else(self, api) -> None:
        bob = api.signup("bob")
        headers = api.headers_for("alice")
        resp = api.client.patch(f"/api/v1/users/{bob['id']}", json={"username": "x-bob"}, headers=headers)
        assert resp.status_code == 403
        assert api.client.delete(f"/api/v1/users/{bob['id']}", headers=headers).status_code == 403

    def test_delete_self_revokes_access(self, api) -> None:
        headers = api.headers_for("alice")
        me = api.client.get("/api/v1/auth/profile", headers=headers).json()
        assert api.client.delete(f"/api/v1/users/{me['id']}", headers=headers).status_code == 200
        assert api.client.get("/api/v1/auth/profile", headers=headers).status_code == 401
        # The email is free again.
        api.signup("alice")


class _FakeClient:
    def __init__(self, token: dict) -> None:
        self.token = token

    async def authorize_access_token(self, request):
        return self.token


class _FakeOAuth:
    def __init__(self, token: dict) -> None:
        self.token = token

    def create_client(self, name: str) -> _FakeClient:
        return _FakeClient(self.token)


class TestExternalProviders:
    def test_providers_list_empty_without_credentials(self, api) -> None:
        resp = api.client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_unconfigured_provider_is_not_found(self, api) -> None:
        resp = api.client.get("/api/v1/auth/google/login", follow_redirects=False)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == NotFound.code

    def test_callback_creates_principal_and_issues_tokens(self, api, monkeypatch) -> None:
        monkeypatch.setattr("api.routes.v1.auth.get_enabled_providers", lambda: ["google"])
        api.client.app.state.oauth = _FakeOAuth(
            {
                "userinfo": {
                    "email": "carol@example.com",
                    "email_verified": True,
                    "given_name": "Carol",
                    "family_name": "Jones",
                    "sub": "google-123",
                }
            }
        )
        resp = api.client.get("/api/v1/auth/google/callback")
        assert resp.status_code == 200, resp.text
        access = resp.json()["access_token"]
        profile = api.client.get("/api/v1/auth/profile", headers=_bearer(access)).json()
        assert profile["email"] == "carol@example.com"
        assert profile["auth_provider"] == "google"
        assert profile["is_email_verified"] is True

    def test_callback_rejects_unverified_email(self, api, monkeypatch) -> None:
        monkeypatch.setattr("api.routes.v1.auth.get_enabled_providers", lambda: ["google"])
        api.client.app.state.oauth = _FakeOAuth(
            {"userinfo": {"email": "carol@example.com", "email_verified": False, "sub": "google-123"}}
        )
        resp = api.client.get("/api/v1/auth/google/callback")
        assert resp.status_code == 401
        assert api.principal_store.get_by_email("carol@example.com") is None
