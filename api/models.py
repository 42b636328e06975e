"""
API request and response models for ParkingPilot REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Input hygiene happens here: every free-text field passes through
core.sanitize in a mode="before" validator, so markup is stripped, emails are
lower-cased and phone numbers are reduced to digits before the field
constraints (lengths, EmailStr, patterns) are checked.

The frontend sends some fields in camelCase (phoneNumber, employeeStudentId,
rememberMe); AliasChoices accepts both spellings.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field, field_validator

from auth.models import Account
from auth.passwords import MAX_PASSWORD_BYTES
from core.sanitize import sanitize_email, sanitize_phone, sanitize_text

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PHONE_PATTERN = r"^[0-9]{10,15}$"
OTP_PATTERN = r"^[0-9]{4,10}$"

_PHONE_ALIASES = AliasChoices("phone_number", "phoneNumber")
_EMPLOYEE_ID_ALIASES = AliasChoices("employee_student_id", "employeeStudentId")


class _Sanitized(BaseModel):
    """Base for request bodies: applies the shared sanitizers by field name."""

    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def clean_email(cls, value):
        return sanitize_email(value)

    @field_validator("phone_number", mode="before", check_fields=False)
    @classmethod
    def clean_phone(cls, value):
        # Only blank input clears the phone; "abc" reduces to "" and fails PHONE_PATTERN.
        if isinstance(value, str) and not value.strip():
            return None
        return sanitize_phone(value)

    @field_validator("username", "employee_student_id", mode="before", check_fields=False)
    @classmethod
    def clean_text(cls, value):
        return sanitize_text(value)

    @field_validator("otp", "token", mode="before", check_fields=False)
    @classmethod
    def strip_codes(cls, value):
        return value.strip() if isinstance(value, str) else value


class _NewPassword(_Sanitized):
    """Base for bodies that set a password: bcrypt reads at most 72 bytes."""

    @field_validator("password", check_fields=False)
    @classmethod
    def check_password_bytes(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
        return value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_NewPassword):
    """Request body for POST /api/auth/register.

    There is no role field: self-registration always creates a "user".
    Admin accounts are created with `python main.py create-admin`.
    """

    username: str = Field(min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)
    phone_number: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, validation_alias=_PHONE_ALIASES)
    employee_student_id: Optional[str] = Field(default=None, max_length=50, validation_alias=_EMPLOYEE_ID_ALIASES)


class LoginRequest(_Sanitized):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    remember_me: bool = Field(default=False, validation_alias=AliasChoices("remember_me", "rememberMe"))


class ForgotPasswordRequest(_Sanitized):
    email: EmailStr


class ResetPasswordRequest(_NewPassword):
    token: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=6, max_length=128)


class SendEmailVerificationRequest(_Sanitized):
    email: EmailStr


class SendPhoneVerificationRequest(_Sanitized):
    phone_number: str = Field(pattern=PHONE_PATTERN, validation_alias=_PHONE_ALIASES)


class VerifyEmailOTPRequest(_Sanitized):
    email: EmailStr
    otp: str = Field(pattern=OTP_PATTERN)


class VerifyPhoneOTPRequest(_Sanitized):
    phone_number: str = Field(pattern=PHONE_PATTERN, validation_alias=_PHONE_ALIASES)
    otp: str = Field(pattern=OTP_PATTERN)


class ProfileUpdate(_Sanitized):
    """Request body for PUT /api/auth/profile. Omitted fields are left unchanged."""

    username: Optional[str] = Field(default=None, min_length=3, max_length=50)
    phone_number: Optional[str] = Field(default=None, pattern=PHONE_PATTERN, validation_alias=_PHONE_ALIASES)
    employee_student_id: Optional[str] = Field(default=None, max_length=50, validation_alias=_EMPLOYEE_ID_ALIASES)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account. Never includes hashes or reset state."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    phone_number: Optional[str] = None
    employee_student_id: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_account(cls, account: Account) -> "UserResponse":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            role=account.role,
            phone_number=account.phone_number,
            employee_student_id=account.employee_student_id,
            created_at=account.created_at or "",
        )


class AuthResponse(BaseModel):
    """Response for register and login: the account plus a bearer token."""

    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse
    token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ProfileResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user: UserResponse


class ProfileUpdateResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str
    user: UserResponse


class CsrfTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    csrf_token: str = Field(alias="csrfToken")


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
