# timesheet_bot/transport/telegram_adapter.py
"""
Telegram Update -> InboundEvent.

Handled update kinds:
    {"update_id": 1, "message": {"message_id": 42, "from": {...}, "chat": {"id": 123}, "text": "..."}}
    {"update_id": 2, "callback_query": {"id": "...", "from": {"id": 123}, "data": "correct:42:19787"}}

Everything else (edited messages, channel posts, media without caption) is ignored.
"""
from __future__ import annotations

from timesheet_bot.core.domain import InboundEvent
from timesheet_bot.infra.logging_config import get_logger, mask_channel_id

logger = get_logger(__name__)


class TelegramAdapter:
    def adapt_update(self, update: dict) -> InboundEvent | None:
        if "callback_query" in update:
            return self._parse_callback(update["callback_query"], update.get("update_id"))
        if "message" in update:
            return self._parse_message(update["message"], update.get("update_id"))

        logger.debug(f"Telegram update ignored (keys={list(update.keys())})")
        return None

    def _parse_message(self, message: dict, update_id) -> InboundEvent | None:
        chat = message.get("chat") or {}
        if chat.get("type", "private") != "private":
            logger.debug("Telegram message from non-private chat ignored")
            return None

        channel_id = str((message.get("from") or {}).get("id") or chat.get("id") or "")
        if not channel_id:
            logger.warning("Telegram message: missing sender id, ignoring")
            return None

        text = message.get("text") or message.get("caption")
        if not text:
            return None

        logger.info(
            f"Telegram message: from={mask_channel_id(channel_id)}, msg_id={message.get('message_id')}"
        )
        return InboundEvent(
            channel_id=channel_id,
            event_id=f"tg_{update_id}",
            text=text,
            sender_name=self._extract_sender_name(message.get("from") or {}),
        )

    def _parse_callback(self, query: dict, update_id) -> InboundEvent | None:
        sender = query.get("from") or {}
        channel_id = str(sender.get("id") or "")
        if not channel_id or not query.get("id"):
            logger.warning("Telegram callback_query without sender or id, ignoring")
            return None

        return InboundEvent(
            channel_id=channel_id,
            event_id=f"tg_{update_id}",
            callback_data=query.get("data") or "",
            callback_id=str(query["id"]),
            sender_name=self._extract_sender_name(sender),
        )

    @staticmethod
    def _extract_sender_name(sender: dict) -> str | None:
        """``"First Last (@username)"``, ``"@username"`` or the full name."""
        if not sender:
            return None
        full_name = f"{sender.get('first_name', '')} {sender.get('last_name', '')}".strip()
        username = sender.get("username")
        if username and full_name:
            return f"{full_name} (@{username})"
        if username:
            return f"@{username}"
        return full_name or None
