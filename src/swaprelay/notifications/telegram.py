"""Operator alerting via Telegram.

Alerts are fire-and-forget: ``AlertSink.alert`` logs synchronously and
schedules delivery in the background, so a slow or failing Telegram API never
blocks or breaks a relay operation.
"""

import asyncio
import html
import logging
from enum import Enum
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from swaprelay.config import get_settings

logger = logging.getLogger(__name__)

# Singleton bot instance
_bot_instance: Optional[Bot] = None
_bot_lock = asyncio.Lock()


async def get_bot() -> Optional[Bot]:
    """Get or create the bot instance for alerts."""
    global _bot_instance

    if _bot_instance is not None:
        return _bot_instance

    async with _bot_lock:
        if _bot_instance is not None:
            return _bot_instance

        settings = get_settings()
        if not settings.telegram_bot_token:
            logger.warning("Telegram bot token not configured - alerts go to logs only")
            return None

        _bot_instance = Bot(token=settings.telegram_bot_token)
        return _bot_instance


async def close_bot() -> None:
    """Close the bot session (call on shutdown)."""
    global _bot_instance
    if _bot_instance is not None:
        await _bot_instance.session.close()
        _bot_instance = None


class AlertLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    AlertLevel.INFO: logging.INFO,
    AlertLevel.WARNING: logging.WARNING,
    AlertLevel.CRITICAL: logging.CRITICAL,
}

_LEVEL_PREFIX = {
    AlertLevel.INFO: "ℹ️",
    AlertLevel.WARNING: "⚠️",
    AlertLevel.CRITICAL: "🚨",
}


def format_alert(level: AlertLevel, title: str, details: Optional[dict] = None) -> str:
    lines = [f"{_LEVEL_PREFIX[level]} <b>{html.escape(title)}</b>"]
    for key, value in (details or {}).items():
        lines.append(f"<b>{html.escape(str(key))}:</b> <code>{html.escape(str(value))}</code>")
    return "\n".join(lines)


class AlertSink:
    """Delivers operator alerts to the admin Telegram chats."""

    def __init__(self, bot: Optional[Bot] = None, chat_ids: Optional[list[int]] = None):
        self._bot = bot
        self._chat_ids = chat_ids
        self._pending: set[asyncio.Task] = set()

    @property
    def chat_ids(self) -> list[int]:
        if self._chat_ids is not None:
            return self._chat_ids
        return get_settings().admin_ids

    async def _get_bot(self) -> Optional[Bot]:
        if self._bot:
            return self._bot
        return await get_bot()

    def alert(self, level: AlertLevel, title: str, details: Optional[dict] = None) -> None:
        """Log the alert and schedule Telegram delivery without awaiting it."""
        logger.log(_LOG_LEVELS[level], f"ALERT [{level.value}] {title} {details or {}}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        task = loop.create_task(self.send(level, title, details))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def critical(self, title: str, details: Optional[dict] = None) -> None:
        self.alert(AlertLevel.CRITICAL, title, details)

    def warning(self, title: str, details: Optional[dict] = None) -> None:
        self.alert(AlertLevel.WARNING, title, details)

    async def send(self, level: AlertLevel, title: str, details: Optional[dict] = None) -> bool:
        """Send an alert to every admin chat.

        Returns:
            True if at least one chat received it
        """
        bot = await self._get_bot()
        if not bot or not self.chat_ids:
            return False

        message = format_alert(level, title, details)
        delivered = False
        for chat_id in self.chat_ids:
            try:
                await bot.send_message(chat_id=chat_id, text=message, parse_mode="HTML")
                delivered = True
            except TelegramForbiddenError:
                logger.warning(f"Admin chat {chat_id} has blocked the bot")
            except TelegramBadRequest as e:
                logger.error(f"Bad request sending alert to {chat_id}: {e}")
            except Exception as e:
                logger.error(f"Failed to send alert to {chat_id}: {e}")
        return delivered

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# Singleton sink
_alert_sink: Optional[AlertSink] = None


def get_alert_sink() -> AlertSink:
    global _alert_sink
    if _alert_sink is None:
        _alert_sink = AlertSink()
    return _alert_sink
