"""
Outbound e-mail over SMTP.

When SMTP_HOST is not configured, messages are logged instead of sent
(dev/test mode). Delivery is best-effort: failures are logged and
reported through the return value, never raised.
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)


def _config(key: str, default=None):
    if not has_app_context():
        return default
    return current_app.config.get(key, default)


def is_configured() -> bool:
    return bool((_config("SMTP_HOST") or "").strip())


def send_email(to: str, subject: str, body: str, *, html: str | None = None) -> bool:
    """Send one message. Returns True only when the SMTP server accepted it."""
    if not to:
        return False
    if not is_configured():
        logger.info("[email log-only] to=%s subject=%s", to, subject)
        return False

    if html:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html, "html"))
    else:
        msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = _config("MAIL_DEFAULT_SENDER") or "noreply@localhost"
    msg["To"] = to

    host = _config("SMTP_HOST").strip()
    port = int(_config("SMTP_PORT") or 587)
    username = (_config("SMTP_USERNAME") or "").strip()
    password = _config("SMTP_PASSWORD") or ""
    try:
        with smtplib.SMTP(host, port, timeout=10) as server:
            if _config("SMTP_USE_TLS", True):
                server.starttls()
            if username and password:
                server.login(username, password)
            server.send_message(msg)
    except smtplib.SMTPAuthenticationError as e:
        logger.error("SMTP authentication failed for %s: %s", host, e)
        return False
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("Email to %s failed: %s", to, e)
        return False

    logger.info("Sent email to %s with subject: %s", to, subject)
    return True


def app_url(path: str = "") -> str:
    base = (_config("APP_BASE_URL") or "").rstrip("/")
    return f"{base}{path}" if base else path
