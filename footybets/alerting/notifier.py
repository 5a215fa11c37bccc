"""Best-effort notification sink used by settlement and the cron routes."""

import logging

from footybets.alerting.email import AlertType, send_alert_email
from footybets.alerting.telegram import send_telegram_message

logger = logging.getLogger(__name__)


class Notifier:
    """Telegram for every message, plus email for hard alerts.

    Neither method raises: a broken notification channel must not abort
    the caller.
    """

    async def send(self, message: str) -> None:
        try:
            await send_telegram_message(message)
        except Exception as e:
            logger.error(f"[ALERT] Notification failed: {e}")

    async def alert(self, alert_type: AlertType, message: str) -> None:
        logger.error(f"[ALERT] {alert_type.value}: {message}")
        await self.send(message)
        try:
            await send_alert_email(alert_type, message)
        except Exception as e:
            logger.error(f"[ALERT] Alert email failed: {e}")
