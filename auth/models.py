"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; api/models.py owns the HTTP representation.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = ("user", "admin")


@dataclass
class Account:
    """A registered user of the parking pilot.

    password_hash is always a bcrypt hash, never plaintext.

    reset_token_hash is HMAC-SHA256(JWT_SECRET, raw_token). The raw reset token
    only ever exists in the email sent to the user, so a leaked database row
    cannot be replayed against /reset-password.
    """

    username: str
    email: str
    password_hash: str
    role: str = "user"  # "user" or "admin"
    id: int | None = None
    phone_number: str | None = None
    employee_student_id: str | None = None
    reset_token_hash: str | None = None
    reset_token_expiry: float | None = None  # epoch seconds
    created_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Identity carried by a verified bearer token."""

    id: int
    email: str
    role: str
    username: str | None = None
    issued_at: int | None = None
    expires_at: int | None = None
