"""
core/errors.py -- Error taxonomy for authentication and verification.

Every failure a service can report is a subclass of AuthError. Each class
carries a stable machine-readable code, a client-safe message and the HTTP
status the API layer should use. Services raise; api/main.py has a single
exception handler that turns any AuthError into the standard error envelope.

Messages are written for clients. They never contain the underlying cause
(library exception text, algorithm names, stack traces). The original
exception, when there is one, is chained with `raise ... from exc` and is
visible only in server logs.

Token errors all map to 403 with distinct messages so a client can tell an
expired session from a broken one, while the status code gives an attacker no
extra signal.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every expected authentication/verification failure."""

    code: str = "auth_error"
    message: str = "Authentication failed."
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Credentials and accounts
# ---------------------------------------------------------------------------


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid credentials."
    status_code = 401


class DuplicateAccount(AuthError):
    code = "duplicate_account"
    message = "User already exists with this email or username."
    status_code = 409


class Unauthorized(AuthError):
    code = "unauthorized"
    message = "Access token required."
    status_code = 401


class Forbidden(AuthError):
    code = "forbidden"
    message = "Access denied."
    status_code = 403


class ResetTokenInvalid(AuthError):
    code = "reset_token_invalid"
    message = "Password reset link is invalid or has expired."
    status_code = 400


# ---------------------------------------------------------------------------
# Bearer tokens
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    code = "invalid_token"
    message = "Invalid or expired token."
    status_code = 403


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Token has expired."


class TokenMalformed(TokenError):
    code = "token_malformed"
    message = "Invalid token format."


class TokenInvalidSignature(TokenError):
    code = "token_invalid"
    message = "Invalid token."


class TokenMissingClaims(TokenError):
    code = "token_payload_invalid"
    message = "Invalid token payload."


# ---------------------------------------------------------------------------
# One-time codes
# ---------------------------------------------------------------------------


class OTPError(AuthError):
    status_code = 400


class OTPNotFound(OTPError):
    code = "otp_not_found"
    message = "No verification code found."


class OTPExpired(OTPError):
    code = "otp_expired"
    message = "Verification code expired."


class OTPMismatch(OTPError):
    code = "otp_mismatch"
    message = "Invalid verification code."


# ---------------------------------------------------------------------------
# Request protection
# ---------------------------------------------------------------------------


class CSRFMismatch(AuthError):
    code = "csrf_invalid"
    message = "Invalid CSRF token."
    status_code = 403


class RateLimitExceeded(AuthError):
    code = "rate_limited"
    message = "Too many requests. Please try again later."
    status_code = 429

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class DeliveryFailure(AuthError):
    code = "delivery_failed"
    message = "Could not deliver the verification code. Please request a new one."
    status_code = 502
