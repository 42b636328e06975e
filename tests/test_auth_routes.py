"""
tests/test_auth_routes.py -- Integration tests for /api/auth/* and /api/csrf-token.

These tests exercise the full stack: middleware (CSRF, security headers) ->
FastAPI routing -> auth dependencies -> services -> AccountStore -> response
model serialization, with a recording notifier and a fake clock.

Coverage:
  - register -> login -> wrong password, duplicate registration, validation
  - remember_me token lifetime, token expiry via the fake clock
  - forgot-password: byte-identical answers for known and unknown emails
  - reset-password with the emailed token
  - OTP routes: auth required, CSRF required, send/verify, single use, mismatch
  - profile read/update, admin-only user list
  - auth rate limit: 429 with Retry-After on the sixth request

Fixtures used (from conftest.py):
  - api_client: ApiContext(client, notifier, clock, accounts, admin_id)
"""

from __future__ import annotations

import pytest

from auth.ratelimit import FixedWindowRateLimiter
from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, bearer, login, register, session_headers
from kvstore import MemoryStore


def _token(api_client, email: str, password: str = "secret1") -> str:
    resp = login(api_client.client, email, password)
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


class TestRegisterAndLogin:
    def test_register_login_wrong_password(self, api_client) -> None:
        client = api_client.client
        resp = register(client, "alpha", "a@x.com", "secret1")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user"]["email"] == "a@x.com"
        assert data["user"]["role"] == "user"
        assert data["token"]
        assert "password_hash" not in data["user"]

        resp = login(client, "a@x.com", "secret1")
        assert resp.status_code == 200
        assert resp.json()["user"]["username"] == "alpha"
        assert resp.headers["Cache-Control"] == "no-store"

        resp = login(client, "a@x.com", "wrong-password")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credentials"

    def test_unknown_email_same_error_as_wrong_password(self, api_client) -> None:
        unknown = login(api_client.client, "ghost@x.com", "secret1")
        wrong = login(api_client.client, ADMIN_EMAIL, "not-the-password")
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_register_token_is_usable(self, api_client) -> None:
        resp = register(api_client.client, "bravo", "b@x.com")
        token = resp.json()["token"]
        profile = api_client.client.get("/api/auth/profile", headers=bearer(token))
        assert profile.status_code == 200
        assert profile.json()["user"]["username"] == "bravo"

    @pytest.mark.parametrize(
        ("username", "email"),
        [("charlie2", "C@x.com"), ("charlie", "c2@x.com")],
    )
    def test_duplicate_registration(self, api_client, username, email) -> None:
        register(api_client.client, "charlie", "c@x.com")
        resp = register(api_client.client, username, email)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_account"

    def test_registration_never_grants_admin(self, api_client) -> None:
        resp = register(api_client.client, "delta", "d@x.com", role="admin")
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "user"

    @pytest.mark.parametrize(
        "body",
        [
            {"username": "ab", "email": "e@x.com", "password": "secret1"},
            {"username": "echo", "email": "not-an-email", "password": "secret1"},
            {"username": "echo", "email": "e@x.com", "password": "12345"},
            {"username": "echo", "email": "e@x.com", "password": "secret1", "phoneNumber": "123"},
        ],
    )
    def test_validation_errors(self, api_client, body) -> None:
        resp = api_client.client.post("/api/auth/register", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert "secret1" not in resp.text

    @pytest.mark.parametrize("password", ["p" * 100, "\u00e9" * 40])
    def test_password_over_72_bytes_is_422(self, api_client, password) -> None:
        resp = register(api_client.client, "echo", "e@x.com", password)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_long_password_login_is_401(self, api_client) -> None:
        assert login(api_client.client, ADMIN_EMAIL, "p" * 100).status_code == 401

    def test_remember_me_issues_longer_token(self, api_client) -> None:
        short = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD).json()
        long = login(api_client.client, ADMIN_EMAIL, ADMIN_PASSWORD, remember_me=True).json()
        assert short["expires_in"] == 7 * 24 * 3600
        assert long["expires_in"] == 30 * 24 * 3600


class TestTokenGuards:
    def test_missing_token_is_401(self, api_client) -> None:
        resp = api_client.client.get("/api/auth/profile")
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Access token required."

    @pytest.mark.parametrize("token", ["garbage", "a.b.c"])
    def test_bad_token_is_403(self, api_client, token) -> None:
        resp = api_client.client.get("/api/auth/profile", headers=bearer(token))
        assert resp.status_code == 403

    def test_expired_token_is_403_with_message(self, api_client) -> None:
        token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        api_client.clock.advance(7 * 24 * 3600)
        try:
            resp = api_client.client.get("/api/auth/profile", headers=bearer(token))
        finally:
            api_client.clock.advance(-7 * 24 * 3600)
        assert resp.status_code == 403
        assert resp.json()["error"]["message"] == "Token has expired."

    def test_admin_route_requires_admin_role(self, api_client) -> None:
        register(api_client.client, "foxtrot", "f@x.com")
        user_token = _token(api_client, "f@x.com")
        resp = api_client.client.get("/api/auth/users", headers=bearer(user_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

        admin_token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.get("/api/auth/users", headers=bearer(admin_token))
        assert resp.status_code == 200
        assert ADMIN_EMAIL in [u["email"] for u in resp.json()]


class TestPasswordReset:
    def test_forgot_password_does_not_leak_existence(self, api_client) -> None:
        register(api_client.client, "golf", "g@x.com")
        known = api_client.client.post("/api/auth/forgot-password", json={"email": "g@x.com"})
        unknown = api_client.client.post("/api/auth/forgot-password", json={"email": "nobody@x.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.content == unknown.content

    def test_reset_flow(self, api_client) -> None:
        client = api_client.client
        register(client, "hotel", "h@x.com", "secret1")
        client.post("/api/auth/forgot-password", json={"email": "h@x.com"})
        token = api_client.notifier.last_reset_token("h@x.com")

        resp = client.post("/api/auth/reset-password", json={"token": token, "password": "newsecret"})
        assert resp.status_code == 200, resp.text
        assert login(client, "h@x.com", "secret1").status_code == 401
        assert login(client, "h@x.com", "newsecret").status_code == 200

        again = client.post("/api/auth/reset-password", json={"token": token, "password": "other12"})
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "reset_token_invalid"

    def test_reset_rejects_password_over_72_bytes(self, api_client) -> None:
        client = api_client.client
        register(client, "hotel2", "h2@x.com", "secret1")
        client.post("/api/auth/forgot-password", json={"email": "h2@x.com"})
        token = api_client.notifier.last_reset_token("h2@x.com")
        resp = client.post("/api/auth/reset-password", json={"token": token, "password": "p" * 100})
        assert resp.status_code == 422
        assert login(client, "h2@x.com", "secret1").status_code == 200

    def test_reset_is_csrf_exempt_even_with_bearer(self, api_client) -> None:
        token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.post(
            "/api/auth/reset-password", json={"token": "nope", "password": "newsecret"}, headers=bearer(token)
        )
        assert resp.status_code == 400


class TestCsrf:
    def test_csrf_token_requires_auth(self, api_client) -> None:
        assert api_client.client.get("/api/csrf-token").status_code == 401

    def test_missing_csrf_header(self, api_client) -> None:
        token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        resp = api_client.client.post(
            "/api/auth/send-email-verification", json={"email": ADMIN_EMAIL}, headers=bearer(token)
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == {"code": "csrf_invalid", "message": "CSRF token required.", "detail": None}

    def test_stale_csrf_token_rejected(self, api_client) -> None:
        token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        stale = session_headers(api_client.client, token)
        session_headers(api_client.client, token)
        resp = api_client.client.post("/api/auth/send-email-verification", json={"email": ADMIN_EMAIL}, headers=stale)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_invalid"

    def test_csrf_token_bound_to_session(self, api_client) -> None:
        first = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        api_client.clock.advance(1)
        second = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        headers = {**session_headers(api_client.client, first), **bearer(second)}
        resp = api_client.client.post("/api/auth/send-email-verification", json={"email": ADMIN_EMAIL}, headers=headers)
        assert resp.status_code == 403

    def test_non_ascii_csrf_header_rejected(self, api_client) -> None:
        token = _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD)
        session_headers(api_client.client, token)
        headers = {**bearer(token), "X-CSRF-Token": b"\xe9t\xe9"}
        resp = api_client.client.put("/api/auth/profile", json={"username": "pilotadmin"}, headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "csrf_invalid"

    def test_no_bearer_falls_through_to_401(self, api_client) -> None:
        resp = api_client.client.post("/api/auth/send-email-verification", json={"email": ADMIN_EMAIL})
        assert resp.status_code == 401


class TestVerificationCodes:
    def test_email_otp_flow(self, api_client) -> None:
        client = api_client.client
        register(client, "india", "i@x.com")
        headers = session_headers(client, _token(api_client, "i@x.com"))

        resp = client.post("/api/auth/send-email-verification", json={"email": "I@x.com"}, headers=headers)
        assert resp.status_code == 200, resp.text
        code = api_client.notifier.last_code("email", "i@x.com")

        resp = client.post("/api/auth/verify-email-otp", json={"email": "i@x.com", "otp": code}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["message"] == "Email verified successfully."

        resp = client.post("/api/auth/verify-email-otp", json={"email": "i@x.com", "otp": code}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_not_found"

    def test_phone_otp_mismatch_then_success(self, api_client) -> None:
        client = api_client.client
        headers = session_headers(client, _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD))
        resp = client.post("/api/auth/send-phone-verification", json={"phoneNumber": "98480 22338"}, headers=headers)
        assert resp.status_code == 200, resp.text
        code = api_client.notifier.last_code("phone", "9848022338")
        wrong = "000000" if code != "000000" else "111111"

        resp = client.post("/api/auth/verify-phone-otp", json={"phoneNumber": "9848022338", "otp": wrong}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_mismatch"

        resp = client.post("/api/auth/verify-phone-otp", json={"phoneNumber": "9848022338", "otp": code}, headers=headers)
        assert resp.status_code == 200

    def test_expired_code(self, api_client) -> None:
        client = api_client.client
        headers = session_headers(client, _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD))
        client.post("/api/auth/send-email-verification", json={"email": "late@x.com"}, headers=headers)
        code = api_client.notifier.last_code("email", "late@x.com")
        api_client.clock.advance(601)
        resp = client.post("/api/auth/verify-email-otp", json={"email": "late@x.com", "otp": code}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "otp_expired"

    def test_non_ascii_digits_rejected(self, api_client) -> None:
        client = api_client.client
        headers = session_headers(client, _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD))
        client.post("/api/auth/send-email-verification", json={"email": "arabic@x.com"}, headers=headers)
        arabic_indic = "\u0661\u0662\u0663\u0664\u0665\u0666"
        resp = client.post("/api/auth/verify-email-otp", json={"email": "arabic@x.com", "otp": arabic_indic}, headers=headers)
        assert resp.status_code == 422
        code = api_client.notifier.last_code("email", "arabic@x.com")
        resp = client.post("/api/auth/verify-email-otp", json={"email": "arabic@x.com", "otp": code}, headers=headers)
        assert resp.status_code == 200

    def test_delivery_failure_is_502(self, api_client) -> None:
        client = api_client.client
        headers = session_headers(client, _token(api_client, ADMIN_EMAIL, ADMIN_PASSWORD))
        api_client.notifier.fail = True
        try:
            resp = client.post("/api/auth/send-phone-verification", json={"phone_number": "9848022338"}, headers=headers)
        finally:
            api_client.notifier.fail = False
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "delivery_failed"


class TestProfile:
    def test_update_profile(self, api_client) -> None:
        client = api_client.client
        register(client, "juliet", "j@x.com")
        headers = session_headers(client, _token(api_client, "j@x.com"))
        resp = client.put(
            "/api/auth/profile",
            json={"phoneNumber": "9848022338", "employeeStudentId": "21071A0501"},
            headers=headers,
        )
        assert resp.status_code == 200, resp.text
        user = resp.json()["user"]
        assert user["phone_number"] == "9848022338"
        assert user["employee_student_id"] == "21071A0501"
        assert user["username"] == "juliet"

    def test_update_requires_csrf(self, api_client) -> None:
        register(api_client.client, "kilo", "k@x.com")
        resp = api_client.client.put(
            "/api/auth/profile", json={"username": "kilo2"}, headers=bearer(_token(api_client, "k@x.com"))
        )
        assert resp.status_code == 403

    def test_invalid_phone_is_422_not_a_clear(self, api_client) -> None:
        client = api_client.client
        register(client, "mike", "m@x.com", phone_number="9848022338")
        headers = session_headers(client, _token(api_client, "m@x.com"))
        resp = client.put("/api/auth/profile", json={"phoneNumber": "abc"}, headers=headers)
        assert resp.status_code == 422
        assert client.get("/api/auth/profile", headers=headers).json()["user"]["phone_number"] == "9848022338"

        resp = client.put("/api/auth/profile", json={"phoneNumber": " "}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["user"]["phone_number"] is None

    def test_username_taken(self, api_client) -> None:
        client = api_client.client
        register(client, "lima", "l@x.com")
        headers = session_headers(client, _token(api_client, "l@x.com"))
        resp = client.put("/api/auth/profile", json={"username": "pilotadmin"}, headers=headers)
        assert resp.status_code == 409


class TestAuthRateLimit:
    @pytest.fixture
    def strict_limiter(self, api_client):
        app = api_client.client.app
        original = app.state.auth_limiter
        app.state.auth_limiter = FixedWindowRateLimiter(
            MemoryStore(namespace="ratelimit"), max_requests=5, window_seconds=900, clock=api_client.clock
        )
        yield app.state.auth_limiter
        app.state.auth_limiter = original

    def test_sixth_login_is_429(self, api_client, strict_limiter) -> None:
        for _ in range(5):
            assert login(api_client.client, "ghost@x.com", "secret1").status_code == 401
        resp = login(api_client.client, "ghost@x.com", "secret1")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert 0 < int(resp.headers["Retry-After"]) <= 900

    def test_limits_are_per_route(self, api_client, strict_limiter) -> None:
        for _ in range(5):
            login(api_client.client, "ghost@x.com", "secret1")
        resp = api_client.client.post("/api/auth/forgot-password", json={"email": "ghost@x.com"})
        assert resp.status_code == 200

    def test_window_reopens(self, api_client, strict_limiter) -> None:
        for _ in range(6):
            login(api_client.client, "ghost@x.com", "secret1")
        api_client.clock.advance(901)
        assert login(api_client.client, "ghost@x.com", "secret1").status_code == 401
