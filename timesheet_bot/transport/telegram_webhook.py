# timesheet_bot/transport/telegram_webhook.py
"""
POST /webhooks/telegram: inbound Updates in webhook mode.

- X-Telegram-Bot-Api-Secret-Token header validation (if configured)
- Always 200 for well-authenticated requests so Telegram does not retry
"""
from __future__ import annotations

import hmac

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from timesheet_bot.config import settings
from timesheet_bot.core.conversation import ConversationEngine
from timesheet_bot.infra.logging_config import LogContext, get_logger
from timesheet_bot.infra.metrics import inc_counter
from timesheet_bot.transport.telegram_adapter import TelegramAdapter

logger = get_logger(__name__)

_adapter = TelegramAdapter()


def verify_secret_token(request: Request, secret: str | None = None) -> bool:
    """True if the header matches, or if no secret is configured."""
    expected = secret if secret is not None else settings.telegram_webhook_secret
    if not expected:
        return True

    header_token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not header_token:
        logger.warning("Telegram webhook: missing X-Telegram-Bot-Api-Secret-Token header")
        return False
    return hmac.compare_digest(header_token, expected)


async def telegram_webhook_handler(request: Request, engine: ConversationEngine) -> JSONResponse:
    if not verify_secret_token(request):
        logger.error("Telegram webhook: secret token verification failed")
        inc_counter("webhook_validation_failed_total", provider="telegram")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        payload = await request.json()
    except Exception:
        logger.warning("Telegram webhook: invalid JSON payload, returning 200 to suppress retries")
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True}, status_code=200)

    event = _adapter.adapt_update(payload if isinstance(payload, dict) else {})
    if event is None:
        return JSONResponse({"ok": True}, status_code=200)

    request_id = getattr(request.state, "request_id", "unknown")
    log_ctx = LogContext(logger, channel_id=event.channel_id, request_id=request_id)
    log_ctx.info(f"Telegram webhook received: callback={event.is_callback()}")

    # handle() reports its own errors to the sender and never raises
    await engine.handle(event)
    return JSONResponse({"ok": True, "processed": 1}, status_code=200)
