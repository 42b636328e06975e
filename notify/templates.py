"""
notify/templates.py -- Message text for verification codes and password resets.

Each builder returns (subject, body). Bodies are plain text; the email sender
wraps them in a minimal HTML layout via to_html(). All user-controlled values
are escaped before they reach HTML.
"""

import html

BRAND = "VNR Parking Pilot"


def _minutes(ttl_seconds: int) -> int:
    return max(1, ttl_seconds // 60)


def otp_message(channel: str, code: str, ttl_seconds: int) -> tuple[str, str]:
    label = "email verification" if channel == "email" else "verification"
    subject = f"{BRAND} - {label.capitalize()} Code"
    body = (
        f"{BRAND}: Your {label} code is {code}. "
        f"This code will expire in {_minutes(ttl_seconds)} minutes. "
        "Do not share this code with anyone."
    )
    return subject, body


def password_reset_message(username: str, reset_url: str, ttl_seconds: int) -> tuple[str, str]:
    subject = f"{BRAND} - Password Reset"
    body = (
        f"Hello {username},\n\n"
        f"We received a request to reset your password. Open the link below to choose a new one:\n\n"
        f"{reset_url}\n\n"
        f"This link expires in {_minutes(ttl_seconds)} minutes. "
        "If you did not request a reset, you can ignore this email."
    )
    return subject, body


def to_html(subject: str, body: str) -> str:
    paragraphs = "".join(
        f"<p>{html.escape(chunk).replace(chr(10), '<br>')}</p>" for chunk in body.split("\n\n") if chunk
    )
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">'
        f'<h1 style="color: #1e40af;">{html.escape(BRAND)}</h1>'
        f"<h2>{html.escape(subject)}</h2>"
        f"{paragraphs}"
        "</div>"
    )
