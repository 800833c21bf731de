# airdlivers/transport/telegram_polling.py
"""
Telegram Bot API long-polling handler.

Alternative to webhook mode. Calls getUpdates in a loop with long-polling.
Simpler ops (no public URL or SSL required).

Usage:
    poller = TelegramPoller(engine=engine)
    await poller.start()
    # ... on shutdown:
    await poller.stop()
"""
from __future__ import annotations

import asyncio

from airdlivers.config import settings
from airdlivers.core.engine.use_cases import MarketplaceEngine
from airdlivers.transport.telegram_sender import (
    get_updates,
    delete_webhook,
    TelegramSendError,
)
from airdlivers.transport.telegram_webhook import process_update
from airdlivers.infra.logging_config import get_logger
from airdlivers.infra.rate_limiter import InMemoryRateLimiter

logger = get_logger(__name__)

MAX_BACKOFF_SECONDS = 30


class TelegramPoller:
    """
    Long-polling loop for receiving Telegram updates.

    Calls getUpdates with a 30-second timeout (long-poll) and processes
    each update through the engine in order.

    Error handling:
    - On API errors: exponential backoff (1s → 2s → 4s → ... → 30s max)
    - On processing errors: log and continue (the offset still advances)
    - On cancellation: graceful shutdown
    """

    def __init__(
        self,
        engine: MarketplaceEngine,
        poll_timeout: int = 30,
        *,
        token: str | None = None,
    ):
        self.engine = engine
        self.poll_timeout = poll_timeout
        self._token = token
        self._task: asyncio.Task | None = None
        self._offset: int | None = None
        self._running = False
        self._backoff = 1  # seconds, doubles on error

        self._chat_rate_limiter = InMemoryRateLimiter(
            max_requests=settings.chat_rate_limit_per_minute,
            window_seconds=60,
        )

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            logger.warning("Telegram poller already running")
            return

        # getUpdates is refused while a webhook is registered
        try:
            await delete_webhook(token=self._token)
            logger.info("Telegram webhook removed (switching to polling mode)")
        except TelegramSendError as e:
            logger.warning(f"Could not delete Telegram webhook: {e}")

        self._running = True
        self._task = asyncio.create_task(self._poll_loop(), name="tg_poller")
        logger.info(f"Telegram poller started (timeout={self.poll_timeout}s)")

    async def stop(self) -> None:
        """Stop the polling loop gracefully."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Telegram poller stopped")

    async def poll_once(self) -> int:
        """Fetch and process one batch. Returns the number of updates seen."""
        updates = await get_updates(
            offset=self._offset,
            timeout=self.poll_timeout,
            token=self._token,
        )
        for update in updates:
            # Acknowledge before processing so a poison update is not refetched forever
            self._offset = update.get("update_id", 0) + 1
            await process_update(self.engine, update, self._chat_rate_limiter, source="poll")
        return len(updates)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
                self._backoff = 1

            except TelegramSendError as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling error: {e}, backing off {self._backoff}s")
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)

            except asyncio.CancelledError:
                break

            except Exception as e:
                if not self._running:
                    break
                logger.error(f"Telegram polling unexpected error: {e}", exc_info=True)
                await asyncio.sleep(self._backoff)
                self._backoff = min(self._backoff * 2, MAX_BACKOFF_SECONDS)
