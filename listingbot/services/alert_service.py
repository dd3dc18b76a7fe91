"""Operator alerts for lost replies and failed listing writes, sent through a separate bot."""

import html
from typing import Optional

from listingbot.config import get_settings
from listingbot.logging_config import get_logger
from listingbot.services.telegram_service import TelegramService

logger = get_logger("alert_service")

LEVEL_EMOJI = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_EMOJI.get(level, '📢')} <b>{level}</b>\n\n{html.escape(message)}"
    if context:
        lines = "\n".join(f"{key}: {value}" for key, value in context.items())
        text += f"\n\n<pre>{html.escape(lines)}</pre>"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Returns True when the operator chat accepted the alert."""
    settings = get_settings()
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    bot = TelegramService(settings.alert_bot_token, settings.telegram_api_base_url, timeout_seconds=10)
    result = bot.send_message(settings.alert_chat_id, format_alert(level, message, context))
    if not result.get("ok"):
        logger.error(f"Failed to send alert: {result.get('description') or result.get('error')}")
        return False
    return True


def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("CRITICAL", message, context)
