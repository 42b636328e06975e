"""
api/routes/auth.py -- Account, session and verification REST endpoints.

Routes:
  POST /api/auth/register                -- create a "user" account; returns a token
  POST /api/auth/login                   -- email + password; 7d token, 30d with remember_me
  POST /api/auth/forgot-password         -- email a reset link (uniform response)
  POST /api/auth/reset-password          -- consume a reset token, set a new password
  POST /api/auth/send-email-verification -- email a one-time code
  POST /api/auth/send-phone-verification -- text a one-time code
  POST /api/auth/verify-email-otp        -- check an email code
  POST /api/auth/verify-phone-otp        -- check a phone code
  GET  /api/auth/profile                 -- current account
  PUT  /api/auth/profile                 -- update username / phone / employee id
  GET  /api/auth/users                   -- all accounts (admin only)

Security:
  Every POST here runs enforce_auth_rate_limit before the handler.
  authenticate_account() provides timing equalization -- use it, never inline.
  Login answers unknown email and wrong password with the same 401.
  Forgot-password answers every caller with the same bytes.
  CSRF is enforced by middleware in api/main.py for the authenticated POST/PUT
  routes; login, register, forgot-password and reset-password are exempt.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfileResponse,
    ProfileUpdate,
    ProfileUpdateResponse,
    RegisterRequest,
    ResetPasswordRequest,
    SendEmailVerificationRequest,
    SendPhoneVerificationRequest,
    UserResponse,
    VerifyEmailOTPRequest,
    VerifyPhoneOTPRequest,
)
from auth.dependencies import authenticate, enforce_auth_rate_limit, require_admin
from auth.models import Account, TokenClaims
from auth.passwords import authenticate_account
from auth.tokens import claims_for
from core.config import get_settings
from core.errors import DuplicateAccount, InvalidCredentials, Unauthorized

logger = logging.getLogger("parkingpilot.api.auth")

FORGOT_PASSWORD_MESSAGE = "If an account exists for that email, a password reset link has been sent."

# Auth policy:
# - register, login, forgot-password, reset-password: public, rate limited
# - send-*/verify-* verification routes:              authenticate + CSRF, rate limited
# - GET  profile:                                      authenticate
# - PUT  profile:                                      authenticate + CSRF
# - GET  users:                                        require_admin
router = APIRouter(prefix="/auth")


def _session_response(request: Request, account: Account, message: str, remember_me: bool = False) -> AuthResponse:
    settings = get_settings()
    ttl = settings.remember_me_token_ttl_seconds if remember_me else settings.session_token_ttl_seconds
    token = request.app.state.tokens.issue(claims_for(account), ttl)
    return AuthResponse(
        message=message,
        user=UserResponse.from_account(account),
        token=token,
        expires_in=ttl,
    )


def _current_account(request: Request, claims: TokenClaims) -> Account:
    account = request.app.state.accounts.get_by_id(claims.id)
    if account is None:
        # Token is authentic but the account was removed after issuance.
        raise Unauthorized("Account no longer exists.")
    return account


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=201,
    dependencies=[Depends(enforce_auth_rate_limit)],
)
def register(request: Request, body: RegisterRequest) -> AuthResponse:
    """Create a self-service account. The role is always "user"."""
    accounts = request.app.state.accounts
    if accounts.find_by_email_or_username(body.email, body.username) is not None:
        raise DuplicateAccount()

    account_id = accounts.create_account(
        Account(
            username=body.username,
            email=body.email,
            password_hash=request.app.state.hasher.hash(body.password),
            phone_number=body.phone_number,
            employee_student_id=body.employee_student_id,
        )
    )
    account = accounts.get_by_id(account_id)
    logger.info("Account registered id=%s", account_id)
    return _session_response(request, account, "User registered successfully")


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(enforce_auth_rate_limit)])
def login(request: Request, body: LoginRequest) -> AuthResponse:
    account = authenticate_account(request.app.state.accounts, request.app.state.hasher, body.email, body.password)
    if account is None:
        raise InvalidCredentials()
    logger.info("Login id=%s remember_me=%s", account.id, body.remember_me)
    return _session_response(request, account, "Login successful", remember_me=body.remember_me)


@router.post("/forgot-password", response_model=MessageResponse, dependencies=[Depends(enforce_auth_rate_limit)])
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Send a reset link if the email is registered. The response never says which."""
    request.app.state.reset.request_reset(body.email)
    return MessageResponse(message=FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password", response_model=MessageResponse, dependencies=[Depends(enforce_auth_rate_limit)])
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    request.app.state.reset.reset_password(body.token, body.password)
    return MessageResponse(message="Password has been reset successfully.")


# ---------------------------------------------------------------------------
# Verification codes (authenticated)
# ---------------------------------------------------------------------------


@router.post(
    "/send-email-verification",
    response_model=MessageResponse,
    dependencies=[Depends(enforce_auth_rate_limit)],
)
def send_email_verification(
    request: Request,
    body: SendEmailVerificationRequest,
    claims: TokenClaims = Depends(authenticate),
) -> MessageResponse:
    request.app.state.otp.request_code("email", body.email)
    return MessageResponse(message="Verification code sent to your email.")


@router.post(
    "/send-phone-verification",
    response_model=MessageResponse,
    dependencies=[Depends(enforce_auth_rate_limit)],
)
def send_phone_verification(
    request: Request,
    body: SendPhoneVerificationRequest,
    claims: TokenClaims = Depends(authenticate),
) -> MessageResponse:
    request.app.state.otp.request_code("phone", body.phone_number)
    return MessageResponse(message="Verification code sent to your phone.")


@router.post("/verify-email-otp", response_model=MessageResponse, dependencies=[Depends(enforce_auth_rate_limit)])
def verify_email_otp(
    request: Request,
    body: VerifyEmailOTPRequest,
    claims: TokenClaims = Depends(authenticate),
) -> MessageResponse:
    request.app.state.otp.verify_code("email", body.email, body.otp)
    logger.info("Email verified for account id=%s", claims.id)
    return MessageResponse(message="Email verified successfully.")


@router.post("/verify-phone-otp", response_model=MessageResponse, dependencies=[Depends(enforce_auth_rate_limit)])
def verify_phone_otp(
    request: Request,
    body: VerifyPhoneOTPRequest,
    claims: TokenClaims = Depends(authenticate),
) -> MessageResponse:
    request.app.state.otp.verify_code("phone", body.phone_number, body.otp)
    logger.info("Phone verified for account id=%s", claims.id)
    return MessageResponse(message="Phone number verified successfully.")


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=ProfileResponse)
def get_profile(request: Request, claims: TokenClaims = Depends(authenticate)) -> ProfileResponse:
    return ProfileResponse(user=UserResponse.from_account(_current_account(request, claims)))


@router.put("/profile", response_model=ProfileUpdateResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    claims: TokenClaims = Depends(authenticate),
) -> ProfileUpdateResponse:
    """Update only the fields present in the body. Email and role are not editable."""
    account = _current_account(request, claims)
    changes = body.model_dump(include=body.model_fields_set)
    if changes.get("username") is None:
        changes.pop("username", None)
    if changes:
        request.app.state.accounts.update_profile(account.id, **changes)
        account = request.app.state.accounts.get_by_id(account.id)
    return ProfileUpdateResponse(message="Profile updated successfully", user=UserResponse.from_account(account))


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, admin: TokenClaims = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.from_account(a) for a in request.app.state.accounts.list_accounts()]
