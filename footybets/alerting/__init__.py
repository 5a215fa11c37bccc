"""Alerting module for footybets."""

from footybets.alerting.email import AlertType, send_alert_email
from footybets.alerting.notifier import Notifier
from footybets.alerting.telegram import send_telegram_message

__all__ = ["AlertType", "Notifier", "send_alert_email", "send_telegram_message"]
