"""
notify/sms.py -- Twilio SMS sender over the Twilio REST API.

Uses a module-level requests.Session for connection pooling, the same way
the HTTP fetchers in this codebase do. Redirects are capped: the Twilio API
never redirects, so anything more than a hop is unexpected.

Numbers are normalized to E.164 before sending. A bare 10-digit number gets
DEFAULT_COUNTRY_CODE prepended (Indian mobile numbers are entered without
the +91 prefix on the registration form).
"""

from __future__ import annotations

import logging
import re

import requests

from notify.base import DeliveryError, Notifier

logger = logging.getLogger("parkingpilot.notify.sms")

TWILIO_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"

_session = requests.Session()
_session.max_redirects = 1


class TwilioSmsSender(Notifier):
    def __init__(self, account_sid: str, auth_token: str, from_number: str, default_country_code: str = "+91") -> None:
        if not account_sid or not auth_token or not from_number:
            raise ValueError("Twilio account SID, auth token and sender number are all required.")
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from_number = normalize_e164(from_number, default_country_code)
        self._default_country_code = default_country_code

    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        to_number = normalize_e164(recipient, self._default_country_code)
        try:
            resp = _session.post(
                TWILIO_MESSAGES_URL.format(sid=self._account_sid),
                data={"To": to_number, "From": self._from_number, "Body": body},
                auth=(self._account_sid, self._auth_token),
                timeout=10,
            )
            resp.raise_for_status()
        except requests.HTTPError as exc:
            logger.error("Twilio rejected SMS to=%s status=%s", to_number, exc.response.status_code)
            raise DeliveryError("SMS provider rejected the message") from exc
        except requests.RequestException as exc:
            logger.error("Twilio unreachable for SMS to=%s: %s", to_number, exc)
            raise DeliveryError("SMS provider unreachable") from exc
        logger.info("SMS sent to=%s sid=%s", to_number, _message_sid(resp))


def _message_sid(resp: requests.Response) -> str:
    """Twilio's message SID from a 2xx reply, or "?" if the body is not the usual JSON."""
    try:
        payload = resp.json()
    except ValueError:
        return "?"
    return payload.get("sid", "?") if isinstance(payload, dict) else "?"


def normalize_e164(phone_number: str, default_country_code: str = "+91") -> str:
    digits = re.sub(r"\D", "", phone_number or "")
    if not digits:
        raise DeliveryError("Phone number is missing")
    if len(digits) == 10:
        country = re.sub(r"\D", "", default_country_code)
        if not country:
            raise DeliveryError("Default country code is not configured")
        digits = f"{country}{digits}"
    if len(digits) < 10 or len(digits) > 15:
        raise DeliveryError("Phone number must include a valid country code")
    return f"+{digits}"
