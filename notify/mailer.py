"""
notify/mailer.py -- SMTP email sender.

Sends a multipart/alternative message (plain text first, HTML second) over
SMTP with STARTTLS. Login is skipped when no username is configured, which
is what a local relay or a mail catcher in development expects.

Every failure, including an address or message that cannot be encoded for
the server, surfaces as DeliveryError.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from notify.base import DeliveryError, Notifier
from notify.templates import to_html

logger = logging.getLogger("parkingpilot.notify.email")


class SmtpEmailSender(Notifier):
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout

    def send(self, channel: str, recipient: str, subject: str, body: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = recipient
        msg.attach(MIMEText(body, "plain", "utf-8"))
        msg.attach(MIMEText(to_html(subject, body), "html", "utf-8"))

        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
                server.starttls()
                if self._username:
                    server.login(self._username, self._password)
                server.sendmail(self._sender, [recipient], msg.as_string())
        except (smtplib.SMTPException, OSError, UnicodeError) as exc:
            logger.error("SMTP delivery to=%s failed: %s", recipient, exc)
            raise DeliveryError("Email provider rejected or could not be reached") from exc
        logger.info("Email sent to=%s subject=%r", recipient, subject)
