# timesheet_bot/infra/http_client.py
"""
Shared aiohttp sessions.

Session profiles
~~~~~~~~~~~~~~~~
- **sender**  – Bot API calls (total=25 s, connect=5 s, pool limit=20)
- **poller**  – long polling ``getUpdates`` (total=timeout+15 s, pool limit=2)
- **default** – admin notifications and other calls (total=30 s, connect=5 s)

Call ``close_all_sessions()`` once during application shutdown.
"""
from __future__ import annotations

import aiohttp

from timesheet_bot.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is None or session.closed:
        session = aiohttp.ClientSession(
            timeout=timeout,
            connector=aiohttp.TCPConnector(
                keepalive_timeout=30,
                limit=limit,
                enable_cleanup_closed=True,
            ),
        )
        _sessions[name] = session
        logger.debug("HTTP session '%s' created (limit=%d)", name, limit)
    return session


def get_sender_session() -> aiohttp.ClientSession:
    """Session for outbound Bot API calls (sendMessage, answerCallbackQuery)."""
    return _get_or_create(
        "sender",
        aiohttp.ClientTimeout(total=25, connect=5),
        limit=20,
    )


def get_poller_session(poll_timeout: int = 30) -> aiohttp.ClientSession:
    """Session for getUpdates; the total timeout must outlast the long-poll wait."""
    return _get_or_create(
        "poller",
        aiohttp.ClientTimeout(total=poll_timeout + 15, connect=5),
        limit=2,
    )


def get_default_session() -> aiohttp.ClientSession:
    """General-purpose session (admin notifications, etc.)."""
    return _get_or_create(
        "default",
        aiohttp.ClientTimeout(total=30, connect=5),
        limit=10,
    )


async def close_all_sessions() -> None:
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
