# timesheet_bot/infra/notifications.py
"""
Admin notification channels for disputes and unlink requests.

Usage:
    notifier = get_admin_notifier()
    await notifier.notify(text)

``notify`` never raises: it returns False and logs when delivery fails, so a
dispute is always stored even if the admin chat is unreachable.
"""
from __future__ import annotations

import abc

from timesheet_bot.config import settings
from timesheet_bot.infra.logging_config import get_logger
from timesheet_bot.infra.metrics import inc_counter
from timesheet_bot.transport.telegram_sender import TelegramSendError, send_text_message

logger = get_logger(__name__)


class AdminNotificationChannel(abc.ABC):
    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Channel name for logging/metrics"""

    @abc.abstractmethod
    async def notify(self, text: str) -> bool:
        """Returns True if the notice was delivered."""

    @abc.abstractmethod
    def is_configured(self) -> bool:
        pass


class TelegramAdminNotifier(AdminNotificationChannel):
    """Posts notices to the admin group chat through the bot itself."""

    def __init__(self, chat_id: str | None = None, token: str | None = None) -> None:
        self.chat_id = chat_id or settings.admin_chat_id
        self.token = token or settings.telegram_bot_token

    @property
    def name(self) -> str:
        return "telegram"

    def is_configured(self) -> bool:
        return bool(self.chat_id and self.token)

    async def notify(self, text: str) -> bool:
        if not self.is_configured():
            logger.warning("Telegram admin channel not configured")
            return False

        try:
            await send_text_message(self.chat_id, text, token=self.token)
        except TelegramSendError as exc:
            logger.error(f"Admin notification failed: {exc}")
            inc_counter("admin_notifications_total", channel=self.name, status="failed")
            return False

        inc_counter("admin_notifications_total", channel=self.name, status="sent")
        return True


class LoggingAdminNotifier(AdminNotificationChannel):
    """Fallback when no admin chat is configured: the notice goes to the log."""

    @property
    def name(self) -> str:
        return "log"

    def is_configured(self) -> bool:
        return True

    async def notify(self, text: str) -> bool:
        logger.info(f"Admin notice (not delivered, no admin chat): {text}")
        inc_counter("admin_notifications_total", channel=self.name, status="logged")
        return False


def get_admin_notifier() -> AdminNotificationChannel:
    if not settings.admin_notifications_enabled:
        logger.info("Admin notifications disabled, using log channel")
        return LoggingAdminNotifier()

    channel = TelegramAdminNotifier()
    if not channel.is_configured():
        logger.warning("ADMIN_CHAT_ID or TELEGRAM_BOT_TOKEN missing, using log channel")
        return LoggingAdminNotifier()
    return channel
