"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> auth services -> UserStore -> response model serialization -> the
AuthError exception handler. Unit tests of the services would miss the status
mapping and the generic error messages, which is where enumeration leaks live.

Coverage:
  - Login: 200 token pair, 401 with identical bodies for unknown/wrong
  - /me: access token only; reset and refresh tokens are 401
  - Refresh endpoint
  - Forgot password: identical response for known and unknown accounts
  - OTP and reset failures: 400 with generic codes
  - OAuth: providers list, unknown provider, callback with a fake provider
  - Validation errors use the ErrorResponse envelope

The reset flow that changes a password lives in test_api_reset_flow.py, so
the shared module database here never has its credentials changed.

Fixtures used (from conftest.py):
  - api_client: (client, mailer, provider)
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from tests.conftest import USER_EMAIL, USER_PASSWORD


def _login(client: TestClient, email: str = USER_EMAIL, password: str = USER_PASSWORD):
    return client.post("/api/v1/auth/login", json={"email": email, "password": password})


class TestLogin:
    def test_valid_credentials(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = _login(client)
        assert resp.status_code == 200
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 900
        assert data["access_token"] and data["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_wrong_password_is_401(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = _login(client, password="wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_unknown_email_is_indistinguishable_from_wrong_password(self, api_client) -> None:
        client, _mailer, _provider = api_client
        unknown = _login(client, email="nobody@x.test")
        wrong = _login(client, password="wrong-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_malformed_email_is_422_envelope(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "not-an-email", "password": "x"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestMe:
    def test_access_token_resolves_user(self, api_client) -> None:
        client, _mailer, _provider = api_client
        token = _login(client).json()["access_token"]
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == USER_EMAIL
        assert data["role"] == "user"
        assert data["provider"] is None

    def test_no_token_is_401(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_refresh_token_is_not_an_access_token(self, api_client) -> None:
        client, _mailer, _provider = api_client
        token = _login(client).json()["refresh_token"]
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_reset_token_is_not_an_access_token(self, api_client) -> None:
        client, _mailer, _provider = api_client
        token = client.app.state.tokens.issue_reset_token(USER_EMAIL)
        resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_garbage_token_is_401(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401


class TestRefresh:
    def test_refresh_returns_new_pair(self, api_client) -> None:
        client, _mailer, _provider = api_client
        refresh_token = _login(client).json()["refresh_token"]
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
        assert resp.status_code == 200
        access = resp.json()["access_token"]
        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
        assert me.json()["email"] == USER_EMAIL

    def test_access_token_cannot_refresh(self, api_client) -> None:
        client, _mailer, _provider = api_client
        access = _login(client).json()["access_token"]
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"


class TestPasswordResetRoutes:
    def test_forgot_password_is_identical_for_unknown_account(self, api_client) -> None:
        client, mailer, _provider = api_client
        known = client.post("/api/v1/auth/forgot-password", json={"email": USER_EMAIL})
        unknown = client.post("/api/v1/auth/forgot-password", json={"email": "nobody@x.test"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert [to for to, _code in mailer.sent].count("nobody@x.test") == 0

    def test_wrong_otp_is_400(self, api_client) -> None:
        client, mailer, _provider = api_client
        client.post("/api/v1/auth/forgot-password", json={"email": USER_EMAIL})
        wrong = "000000" if mailer.last_code(USER_EMAIL) != "000000" else "000001"
        resp = client.post("/api/v1/auth/verify-otp", json={"email": USER_EMAIL, "code": wrong})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_or_expired_otp"

    def test_otp_for_unknown_email_is_same_400(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.post("/api/v1/auth/verify-otp", json={"email": "nobody@x.test", "code": "123456"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_or_expired_otp"

    def test_access_token_cannot_reset_password(self, api_client) -> None:
        client, _mailer, _provider = api_client
        access = _login(client).json()["access_token"]
        resp = client.post("/api/v1/auth/reset-password", json={"reset_token": access, "new_password": "Hacked99"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_reset_token"
        assert _login(client).status_code == 200

    def test_short_new_password_is_422(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.post("/api/v1/auth/reset-password", json={"reset_token": "x", "new_password": "abc"})
        assert resp.status_code == 422


class TestOAuthRoutes:
    def test_providers_empty_when_unconfigured(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_login_redirect_for_unconfigured_provider_is_400(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/oauth/facebook/login", follow_redirects=False)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unsupported_provider"

    def test_callback_creates_user_and_returns_tokens(self, api_client) -> None:
        client, _mailer, provider = api_client
        resp = client.get("/api/v1/auth/oauth/google/callback", params={"code": "abc"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["user"]["email"] == "oauth@x.test"
        assert data["user"]["role"] == "user"
        assert data["user"]["provider"] == "google"
        assert provider.exchanged[-1][0] == "abc"
        assert provider.exchanged[-1][1].endswith("/google/callback")

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.json()["id"] == data["user"]["id"]

    def test_repeat_callback_maps_to_same_user(self, api_client) -> None:
        client, _mailer, _provider = api_client
        first = client.get("/api/v1/auth/oauth/google/callback", params={"code": "one"}).json()
        second = client.get("/api/v1/auth/oauth/google/callback", params={"code": "two"}).json()
        assert first["user"]["id"] == second["user"]["id"]

    def test_callback_for_unconfigured_provider_is_400(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/oauth/github/callback", params={"code": "abc"})
        assert resp.status_code == 400

    def test_callback_without_code_is_422(self, api_client) -> None:
        client, _mailer, _provider = api_client
        resp = client.get("/api/v1/auth/oauth/google/callback")
        assert resp.status_code == 422


class TestOTPExactMatch:
    def test_padded_code_is_rejected(self, api_client) -> None:
        client, mailer, _provider = api_client
        client.post("/api/v1/auth/forgot-password", json={"email": USER_EMAIL})
        code = mailer.last_code(USER_EMAIL)
        resp = client.post("/api/v1/auth/verify-otp", json={"email": USER_EMAIL, "code": f" {code} "})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_or_expired_otp"
