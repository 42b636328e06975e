"""
auth/passwords.py -- bcrypt password hashing and constant-time login.

Security design decisions:
  bcrypt directly (no passlib wrapper). The work factor is configurable via
  BCRYPT_ROUNDS (default 10); tests drop it to the minimum of 4 for speed.

  verify() never raises. A malformed or truncated stored hash makes bcrypt
  raise ValueError; that is reported as a non-match so a corrupt row can never
  turn into a 500 (or into an oracle) on the login endpoint.

  bcrypt only reads the first 72 bytes of a password, and bcrypt 5 refuses
  longer input outright. hash() raises ValueError past MAX_PASSWORD_BYTES
  whatever the installed version does; the request models reject such
  passwords with a 422 before they get here.

  authenticate_account() always runs bcrypt, against a dummy hash when the
  email is unknown, so response time does not reveal whether an account
  exists.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt

if TYPE_CHECKING:
    from auth.models import Account
    from auth.store import AccountStore

MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = 10) -> None:
        self.rounds = rounds
        # Timing equalization dummy, computed once per hasher with the same
        # cost as real hashes.
        self._dummy_hash = self.hash("parkingpilot_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash of the given plaintext password.

        Raises ValueError if the password is longer than MAX_PASSWORD_BYTES.
        """
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext password matches the bcrypt hash."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def burn(self, plain: str) -> None:
        """Spend one verification's worth of CPU without a real hash."""
        self.verify(plain, self._dummy_hash)


def authenticate_account(store: AccountStore, hasher: PasswordHasher, email: str, password: str) -> Account | None:
    """Check an email/password pair with timing equalization.

    Returns the Account on success, None on any failure. Callers must not
    distinguish "no such email" from "wrong password" in their response.
    """
    account = store.get_by_email(email)
    if account is None:
        # Do NOT return before running bcrypt.
        hasher.burn(password)
        return None
    if not hasher.verify(password, account.password_hash):
        return None
    return account
