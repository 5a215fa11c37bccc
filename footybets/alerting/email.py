"""
Email alerting for hard settlement failures.

Sends SMTP alerts with a per-type cooldown to prevent spam.
"""

import asyncio
import logging
import smtplib
from datetime import datetime, timedelta
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum

from footybets.config import get_settings

logger = logging.getLogger(__name__)


class AlertType(Enum):
    """Types of hard alerts."""

    RECONCILIATION_FAULT = "reconciliation_fault"
    SETTLEMENT_PHASE_FAILED = "settlement_phase_failed"
    CACHE_UPDATE_FAILED = "cache_update_failed"


# In-memory cooldown tracking (resets on restart)
_last_alert_times: dict[AlertType, datetime] = {}


def _can_send_alert(alert_type: AlertType) -> bool:
    """Check if enough time has passed since last alert of this type."""
    settings = get_settings()
    cooldown = timedelta(minutes=settings.ALERT_COOLDOWN_MINUTES)

    last_sent = _last_alert_times.get(alert_type)
    if last_sent is None:
        return True

    return datetime.utcnow() - last_sent >= cooldown


def _record_alert_sent(alert_type: AlertType) -> None:
    _last_alert_times[alert_type] = datetime.utcnow()


def reset_cooldowns() -> None:
    _last_alert_times.clear()


def _build_alert_email(alert_type: AlertType, message: str) -> tuple[str, str]:
    title = alert_type.value.replace("_", " ").title()
    subject = f"[footybets] CRITICAL: {title}"
    body = f"""
footybets Settlement Alert
==========================

Type: {alert_type.value}
Time (UTC): {datetime.utcnow().isoformat(timespec="seconds")}

Details:
--------
{message}

---
This is an automated alert from footybets.
"""
    return subject, body


async def send_alert_email(alert_type: AlertType, message: str) -> bool:
    """
    Send an alert email if SMTP is enabled and the cooldown allows.

    Returns:
        True if email was sent, False if skipped (cooldown/disabled/error).
    """
    settings = get_settings()

    if not settings.SMTP_ENABLED:
        logger.debug("[ALERT] SMTP disabled, skipping email")
        return False

    if not _can_send_alert(alert_type):
        logger.info(f"[ALERT] Skipped {alert_type.value}: cooldown active ({settings.ALERT_COOLDOWN_MINUTES}min)")
        return False

    subject, body = _build_alert_email(alert_type, message)
    mime = _compose(settings.SMTP_FROM_EMAIL, settings.SMTP_TO_EMAIL, subject, body)

    # smtplib blocks; keep it off the event loop
    try:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, _deliver, settings, mime)
    except Exception as e:
        logger.error(f"[ALERT] Failed to send email: {e}")
        return False

    _record_alert_sent(alert_type)
    logger.info(f"[ALERT] Email sent: {alert_type.value} to {settings.SMTP_TO_EMAIL}")
    return True


def _compose(from_email: str, to_email: str, subject: str, body: str) -> MIMEMultipart:
    mime = MIMEMultipart()
    mime["From"] = from_email
    mime["To"] = to_email
    mime["Subject"] = subject
    mime.attach(MIMEText(body, "plain"))
    return mime


def _deliver(settings, mime: MIMEMultipart) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(mime)
