"""
notify/base.py -- Notifier interface, channel routing and the console fallback.

A Notifier delivers one message to one recipient over one channel ("phone" or
"email"). Senders raise DeliveryError when the provider rejects the message or
cannot be reached; the OTP and reset services decide what that means for the
caller.

ChannelNotifier is what the application wires in: it holds one sender per
channel and dispatches on the channel name. Any channel without a configured
provider falls back to ConsoleNotifier, which writes the message to the log
(development mode). The console notifier is the only code path that ever logs
a verification code.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("parkingpilot.notify")

CHANNELS = ("email", "phone")


class DeliveryError(RuntimeError):
    """Raised when a message could not be handed to the provider."""


class Notifier:
    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        raise NotImplementedError


class ConsoleNotifier(Notifier):
    """Log messages instead of sending them. Used when no provider is configured."""

    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        logger.warning("%s delivery not configured -- would send to=%s subject=%r body=%r", channel, recipient, subject, body)


class ChannelNotifier(Notifier):
    def __init__(self, email: Notifier | None = None, phone: Notifier | None = None) -> None:
        console = ConsoleNotifier()
        self._senders: dict[str, Notifier] = {
            "email": email or console,
            "phone": phone or console,
        }

    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        sender = self._senders.get(channel)
        if sender is None:
            raise DeliveryError(f"Unknown delivery channel: {channel!r}")
        sender.send(channel, recipient, subject, body)
