# tests/test_telegram_adapter.py
"""Tests for timesheet_bot/transport/telegram_adapter.py and the poller's dispatch step."""
from __future__ import annotations

import pytest

from timesheet_bot.transport.telegram_adapter import TelegramAdapter
from timesheet_bot.transport.telegram_polling import TelegramPoller


def _message(text="hello", chat_type="private", **sender):
    sender = {"id": 2002, "first_name": "Ivan", **sender}
    return {
        "update_id": 10,
        "message": {
            "message_id": 5,
            "from": sender,
            "chat": {"id": 2002, "type": chat_type},
            "text": text,
        },
    }


class TestTelegramAdapter:
    def test_text_message(self):
        event = TelegramAdapter().adapt_update(_message("/start", last_name="Petrov", username="ipetrov"))

        assert event.channel_id == "2002"
        assert event.event_id == "tg_10"
        assert event.text == "/start"
        assert not event.is_callback()
        assert event.sender_name == "Ivan Petrov (@ipetrov)"

    def test_callback_query(self):
        event = TelegramAdapter().adapt_update({
            "update_id": 11,
            "callback_query": {"id": "777", "from": {"id": 2002, "username": "ipetrov"}, "data": "action:week"},
        })

        assert event.is_callback()
        assert event.callback_data == "action:week"
        assert event.callback_id == "777"
        assert event.sender_name == "@ipetrov"

    def test_group_chat_ignored(self):
        assert TelegramAdapter().adapt_update(_message(chat_type="group")) is None

    def test_media_without_caption_ignored(self):
        update = _message()
        del update["message"]["text"]
        assert TelegramAdapter().adapt_update(update) is None

    def test_caption_used_as_text(self):
        update = _message()
        del update["message"]["text"]
        update["message"]["caption"] = "Petrov"
        assert TelegramAdapter().adapt_update(update).text == "Petrov"

    @pytest.mark.parametrize("update", [
        {"update_id": 1, "edited_message": {"text": "x"}},
        {"update_id": 2, "callback_query": {"id": "1", "data": "x"}},
        {"update_id": 3, "callback_query": {"from": {"id": 5}, "data": "x"}},
        {},
    ])
    def test_unsupported_updates(self, update):
        assert TelegramAdapter().adapt_update(update) is None


class TestPollerDispatch:
    @pytest.mark.asyncio
    async def test_update_reaches_conversation(self, bot, sender):
        poller = TelegramPoller(bot.conversation)

        task = poller.dispatch_update(_message("/tgid"))
        await task

        assert sender.texts_to("2002") == ["<code>2002</code>"]

    @pytest.mark.asyncio
    async def test_ignored_update_schedules_nothing(self, bot):
        poller = TelegramPoller(bot.conversation)
        assert poller.dispatch_update({"update_id": 1, "poll": {}}) is None
