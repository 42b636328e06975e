"""
auth/otp.py -- One-time codes proving control of an email address or phone.

Per (channel, identifier) key the lifecycle is:

    NONE --request_code--> PENDING --verify_code(match)--> VERIFIED (entry deleted)
                              |  ^
                              |  +-- verify_code(mismatch): stays PENDING
                              |  +-- request_code again: new code replaces old
                              +--(now > expires_at)--> EXPIRED (deleted on next
                                                       verify or sweep)

Rules:
  - At most one live code per key. Re-requesting overwrites, so only the most
    recent code is accepted.
  - Codes are single use: a successful match deletes the entry before
    returning, so the same code can never verify twice.
  - A mismatch keeps the entry; the user may retry until expiry. Brute force
    is bounded by the auth rate limit on the verify endpoints.
  - The code is stored BEFORE delivery. If delivery fails the caller gets
    DeliveryFailure but the code stays valid -- the user may still have
    received it, and a resend simply replaces it.

Identifiers are normalized before they are used as keys: emails trimmed and
lower-cased, phone numbers reduced to digits.
"""

from __future__ import annotations

import hmac
import logging
import re
import secrets
from dataclasses import dataclass

from core.clock import Clock, system_clock
from core.errors import DeliveryFailure, OTPExpired, OTPMismatch, OTPNotFound
from kvstore.store import KeyValueStore
from notify.base import CHANNELS, DeliveryError, Notifier
from notify.templates import otp_message

logger = logging.getLogger("parkingpilot.auth.otp")


@dataclass(frozen=True)
class OneTimeCode:
    channel: str
    identifier: str
    code: str
    expires_at: float


def normalize_identifier(channel: str, identifier: str) -> str:
    cleaned = identifier.strip()
    if channel == "email":
        return cleaned.lower()
    return re.sub(r"\D", "", cleaned)


class OTPService:
    def __init__(
        self,
        store: KeyValueStore,
        notifier: Notifier,
        ttl_seconds: int = 600,
        code_length: int = 6,
        clock: Clock = system_clock,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self.ttl_seconds = ttl_seconds
        self._code_length = code_length
        self._clock = clock

    def request_code(self, channel: str, identifier: str) -> OneTimeCode:
        """Generate, store and deliver a fresh code for (channel, identifier).

        Raises DeliveryFailure if the notifier could not send the message. The
        stored code is left in place in that case.
        """
        key = self._key(channel, identifier)
        record = OneTimeCode(
            channel=channel,
            identifier=normalize_identifier(channel, identifier),
            code=self._generate_code(),
            expires_at=self._clock() + self.ttl_seconds,
        )
        self._store.set(key, {"code": record.code}, expires_at=record.expires_at)

        subject, body = otp_message(channel, record.code, self.ttl_seconds)
        try:
            self._notifier.send(channel, record.identifier, subject, body)
        except DeliveryError as exc:
            logger.error("OTP delivery failed channel=%s: %s", channel, exc)
            raise DeliveryFailure() from exc
        logger.info("OTP issued channel=%s", channel)
        return record

    def verify_code(self, channel: str, identifier: str, submitted: str) -> None:
        """Consume the code for (channel, identifier) if submitted matches.

        Raises OTPNotFound, OTPExpired or OTPMismatch. Returns None on success.
        """
        key = self._key(channel, identifier)
        entry = self._store.get(key)
        if entry is None:
            raise OTPNotFound()
        if self._clock() > entry["expires_at"]:
            self._store.delete(key)
            raise OTPExpired()
        if not hmac.compare_digest(entry["code"].encode("utf-8"), (submitted or "").strip().encode("utf-8")):
            raise OTPMismatch()
        # Only the request that actually removes the entry wins; a concurrent
        # duplicate submission of the same code sees OTPNotFound.
        if not self._store.delete(key):
            raise OTPNotFound()
        logger.info("OTP verified channel=%s", channel)

    def sweep(self) -> int:
        """Delete every expired code. Returns the number removed."""
        removed = self._store.sweep(self._clock())
        if removed:
            logger.info("Swept %d expired verification codes", removed)
        return removed

    def _key(self, channel: str, identifier: str) -> str:
        if channel not in CHANNELS:
            raise ValueError(f"Unknown verification channel: {channel!r}")
        return f"{channel}:{normalize_identifier(channel, identifier)}"

    def _generate_code(self) -> str:
        return str(secrets.randbelow(10**self._code_length)).zfill(self._code_length)
