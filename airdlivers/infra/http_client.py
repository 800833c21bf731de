# airdlivers/infra/http_client.py
"""
Shared aiohttp session for outbound Bot API calls.

One lazily created ``aiohttp.ClientSession`` per profile avoids a new TCP
connection per message. Call ``close_all_sessions()`` once on shutdown.
"""
from __future__ import annotations

import aiohttp

from airdlivers.infra.logging_config import get_logger

logger = get_logger(__name__)

_sessions: dict[str, aiohttp.ClientSession] = {}


def _get_or_create(
    name: str,
    timeout: aiohttp.ClientTimeout,
    limit: int = 10,
) -> aiohttp.ClientSession:
    """Return an existing session or create a new one."""
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
    """Session for sendMessage / sendPhoto / answerCallbackQuery."""
    return _get_or_create(
        "sender",
        aiohttp.ClientTimeout(total=25, connect=5),
        limit=20,
    )


def get_polling_session() -> aiohttp.ClientSession:
    """Session for getUpdates long polling; total timeout exceeds the poll timeout."""
    return _get_or_create(
        "polling",
        aiohttp.ClientTimeout(total=60, connect=10),
        limit=2,
    )


async def close_all_sessions() -> None:
    """Gracefully close every managed session.  Call during app shutdown."""
    for name in list(_sessions):
        session = _sessions.pop(name, None)
        if session is not None and not session.closed:
            await session.close()
            logger.debug("HTTP session '%s' closed", name)
