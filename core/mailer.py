"""
core/mailer.py -- SMTP delivery for transactional email.

Thin wrapper over smtplib + email.message.EmailMessage. One message per
connection; TripDesk only sends low-volume account email (password resets).

When SMTP_HOST is unset the mailer logs that delivery is disabled and
returns without sending. Useful in local dev; production sets SMTP_HOST.

Never log message bodies. Reset emails carry a one-time credential.

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import html
import logging
import smtplib
import ssl
from email.message import EmailMessage

from core.config import Settings

logger = logging.getLogger("tripdesk.mailer")


class MailDeliveryError(Exception):
    """Raised when the SMTP transport fails. The message carries no credentials."""


class Mailer:
    """Send email through the configured SMTP relay.

    Usage:
        mailer = Mailer(get_settings())
        mailer.send_password_reset("user@example.com", reset_url, ttl_seconds=3600)
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return bool(self._settings.smtp_host)

    def send(self, to: str, subject: str, text: str, body_html: str | None = None) -> None:
        """Deliver one message. Raises MailDeliveryError on transport failure."""
        if not self.enabled:
            logger.warning("SMTP_HOST not configured -- email '%s' not delivered", subject)
            return

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._settings.smtp_from
        msg["To"] = to
        msg.set_content(text)
        if body_html is not None:
            msg.add_alternative(body_html, subtype="html")

        cfg = self._settings
        try:
            with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.smtp_timeout_seconds) as smtp:
                if cfg.smtp_starttls:
                    smtp.starttls(context=ssl.create_default_context())
                if cfg.smtp_user:
                    smtp.login(cfg.smtp_user, cfg.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            raise MailDeliveryError(f"SMTP delivery to {cfg.smtp_host}:{cfg.smtp_port} failed") from exc

    def send_password_reset(self, to: str, reset_url: str, ttl_seconds: int) -> None:
        minutes = max(1, ttl_seconds // 60)
        lifetime = "1 hour" if minutes == 60 else f"{minutes} minutes"
        text = (
            "You requested a password reset.\n\n"
            f"Open this link to choose a new password:\n{reset_url}\n\n"
            f"This link will expire in {lifetime}.\n"
            "If you didn't request this, please ignore this email."
        )
        body_html = (
            "<p>You requested a password reset.</p>"
            f'<p>Click this <a href="{html.escape(reset_url)}">link</a> to reset your password.</p>'
            f"<p>This link will expire in {lifetime}.</p>"
            "<p>If you didn't request this, please ignore this email.</p>"
        )
        self.send(to, "Reset Your Password", text, body_html)
