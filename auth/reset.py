"""
auth/reset.py -- Forgot-password / reset-password lifecycle.

request_reset(email)
    Unknown email: nothing happens. Known email: a fresh opaque token
    replaces any earlier one (only the newest link works), its HMAC is stored
    on the account with expiry = now + RESET_TOKEN_TTL_SECONDS, and a link is
    emailed. The method returns None either way and swallows delivery errors
    after logging them, so the route can answer every caller with the same
    bytes.

reset_password(token, new_password)
    Unknown token or expired token -> ResetTokenInvalid (an expired token is
    also cleared). Otherwise the new bcrypt hash is stored and the token is
    cleared in the same UPDATE, which only matches while the row still
    holds the token. A concurrent reset with the same link loses that race
    and gets ResetTokenInvalid, so the link is single use.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from auth.passwords import PasswordHasher
from auth.store import AccountStore
from auth.tokens import TokenService
from core.clock import Clock, system_clock
from core.errors import ResetTokenInvalid
from notify.base import DeliveryError, Notifier
from notify.templates import password_reset_message

logger = logging.getLogger("parkingpilot.auth.reset")


class PasswordResetService:
    def __init__(
        self,
        store: AccountStore,
        tokens: TokenService,
        hasher: PasswordHasher,
        notifier: Notifier,
        frontend_url: str,
        ttl_seconds: int = 3600,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._hasher = hasher
        self._notifier = notifier
        self._frontend_url = frontend_url.rstrip("/")
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def request_reset(self, email: str) -> None:
        account = self._store.get_by_email(email)
        if account is None:
            logger.info("Password reset requested for unknown email")
            return

        raw_token = self._tokens.generate_opaque_token()
        self._store.set_reset_token(
            account.id,
            self._tokens.hash_opaque_token(raw_token),
            self._clock() + self.ttl_seconds,
        )
        reset_url = f"{self._frontend_url}/reset-password?{urlencode({'token': raw_token})}"
        subject, body = password_reset_message(account.username, reset_url, self.ttl_seconds)
        try:
            self._notifier.send("email", account.email, subject, body)
        except DeliveryError:
            logger.exception("Password reset email to account id=%s failed", account.id)
            return
        logger.info("Password reset link sent to account id=%s", account.id)

    def reset_password(self, token: str, new_password: str) -> None:
        if not token:
            raise ResetTokenInvalid()
        token_hash = self._tokens.hash_opaque_token(token)
        account = self._store.get_by_reset_token_hash(token_hash)
        if account is None:
            raise ResetTokenInvalid()
        if account.reset_token_expiry is None or self._clock() > account.reset_token_expiry:
            self._store.set_reset_token(account.id, None, None)
            raise ResetTokenInvalid()
        if not self._store.reset_password(token_hash, self._hasher.hash(new_password), self._clock()):
            # Another request consumed or replaced the token since the lookup.
            raise ResetTokenInvalid()
        logger.info("Password reset completed for account id=%s", account.id)
