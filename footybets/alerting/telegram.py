"""Telegram Bot API sender for settlement updates and alerts."""

import logging

import httpx

from footybets.config import get_settings

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
# Telegram rejects messages longer than this
MAX_MESSAGE_LENGTH = 4096


async def send_telegram_message(text: str, client: httpx.AsyncClient | None = None) -> bool:
    """
    Post a message to the configured chat (HTML parse mode).

    Returns:
        True if Telegram accepted the message, False if skipped or failed.
        Never raises.
    """
    settings = get_settings()
    if not settings.TELEGRAM_BOT_TOKEN or not settings.TELEGRAM_CHAT_ID:
        logger.info("[ALERT] Telegram credentials not configured, skipping message")
        return False

    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[: MAX_MESSAGE_LENGTH - 3] + "..."

    url = f"{TELEGRAM_API_URL}/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
    payload = {
        "chat_id": settings.TELEGRAM_CHAT_ID,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    }

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.TELEGRAM_TIMEOUT_SECONDS) as owned:
                response = await owned.post(url, json=payload)
        else:
            response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.error(f"[ALERT] Telegram request failed: {type(e).__name__}")
        return False

    if response.status_code != 200:
        logger.error(f"[ALERT] Telegram rejected message: HTTP {response.status_code}")
        return False

    logger.debug("[ALERT] Telegram message sent")
    return True
