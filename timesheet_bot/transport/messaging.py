# timesheet_bot/transport/messaging.py
"""
MessageSender implementation over the Telegram Bot API.

Buttons become ``inline_keyboard`` markup; menu labels become a persistent
reply keyboard. Bot API failures surface as TransportDeliveryFailure.
"""
from __future__ import annotations

from timesheet_bot.core.domain import ButtonRows
from timesheet_bot.core.errors import TransportDeliveryFailure
from timesheet_bot.transport import telegram_sender
from timesheet_bot.transport.telegram_sender import TelegramSendError


def inline_keyboard(buttons: ButtonRows) -> dict:
    return {
        "inline_keyboard": [
            [{"text": b.text, "callback_data": b.payload} for b in row]
            for row in buttons
        ]
    }


def reply_keyboard(labels: list[list[str]]) -> dict:
    return {
        "keyboard": [[{"text": label} for label in row] for row in labels],
        "resize_keyboard": True,
        "is_persistent": True,
    }


class TelegramMessageSender:
    def __init__(self, token: str | None = None) -> None:
        self.token = token

    async def send(self, channel_id: str, text: str, buttons: ButtonRows | None = None) -> None:
        markup = inline_keyboard(buttons) if buttons else None
        await self._call(telegram_sender.send_text_message(channel_id, text, markup, self.token))

    async def send_menu_keyboard(self, channel_id: str, text: str, labels: list[list[str]]) -> None:
        await self._call(
            telegram_sender.send_text_message(channel_id, text, reply_keyboard(labels), self.token)
        )

    async def answer_callback(self, callback_id: str, text: str | None = None, *, alert: bool = False) -> None:
        await self._call(telegram_sender.answer_callback_query(callback_id, text, alert, self.token))

    @staticmethod
    async def _call(request) -> None:
        try:
            await request
        except TelegramSendError as exc:
            raise TransportDeliveryFailure(exc.description, retryable=exc.retryable) from exc
