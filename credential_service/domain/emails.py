"""HTML bodies for verification and password-reset notifications."""

from __future__ import annotations

from html import escape
from urllib.parse import urlencode

from .contracts import Notification

VERIFY_PATH = "/api/users/verify-email"
RESET_PATH = "/api/users/reset-password"

_LAYOUT = """\
<html>
  <body style="font-family: Arial, sans-serif; background-color: #f4f4f4; padding: 20px;">
    <div style="max-width: 600px; margin: auto; background-color: #fff; padding: 20px; border-radius: 8px;">
      <h2 style="color: #333;">Hello {name},</h2>
      {content}
    </div>
  </body>
</html>
"""

_BUTTON = (
    '<a href="{href}" style="display: inline-block; background-color: {colour}; color: #fff; '
    'padding: 10px 20px; text-decoration: none; border-radius: 4px; margin-top: 10px;">{label}</a>'
)


def build_link(base_url: str, path: str, token: str) -> str:
    """Join the frontend base URL, a route path and the token query string."""
    return f"{base_url.rstrip('/')}{path}?{urlencode({'token': token})}"


def verification_email(*, recipient: str, name: str, base_url: str, token: str) -> Notification:
    link = build_link(base_url, VERIFY_PATH, token)
    content = "\n      ".join(
        [
            '<p style="color: #555;">Thank you for registering! Please click the link below to verify '
            "your email address and complete the registration process:</p>",
            _BUTTON.format(href=escape(link), colour="#4CAF50", label="Verify Your Email"),
            '<p style="color: #555; margin-top: 20px;">If you did not request this, please ignore this email.</p>',
        ]
    )
    return Notification(
        recipient=recipient,
        subject="Verify Your Email",
        html_body=_LAYOUT.format(name=escape(name), content=content),
    )


def password_reset_email(
    *, recipient: str, name: str, base_url: str, token: str, ttl_minutes: int
) -> Notification:
    link = build_link(base_url, RESET_PATH, token)
    content = "\n      ".join(
        [
            '<p style="color: #555;">We received a request to reset your password. '
            "If you did not request this, please ignore this email.</p>",
            '<p style="color: #555;">To reset your password, click the link below:</p>',
            _BUTTON.format(href=escape(link), colour="#FF5722", label="Reset Password"),
            f'<p style="color: #555; margin-top: 20px;">This link will expire in {ttl_minutes} minutes.</p>',
        ]
    )
    return Notification(
        recipient=recipient,
        subject="Password Reset Request",
        html_body=_LAYOUT.format(name=escape(name), content=content),
    )
