# airdlivers/transport/telegram_webhook.py
"""
Telegram Bot API webhook handler.

Handles:
- POST /webhooks/telegram - inbound Updates from Telegram

Security features:
- X-Telegram-Bot-Api-Secret-Token header validation (if configured)
- Per-chat rate limiting (anti-spam)
- 200 for every authenticated update, so Telegram never redelivers
"""
from __future__ import annotations

import hmac

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse

from airdlivers.config import settings
from airdlivers.core.engine.use_cases import MarketplaceEngine
from airdlivers.transport.adapters import TelegramAdapter
from airdlivers.transport.telegram_sender import TelegramSendError, answer_callback_query
from airdlivers.infra.logging_config import get_logger, LogContext
from airdlivers.infra.metrics import AppMetrics, inc_counter
from airdlivers.infra.rate_limiter import InMemoryRateLimiter

logger = get_logger(__name__)

_adapter = TelegramAdapter()

# Per-chat rate limiter (lazy init)
_chat_rate_limiter: InMemoryRateLimiter | None = None


def get_chat_rate_limiter() -> InMemoryRateLimiter:
    global _chat_rate_limiter
    if _chat_rate_limiter is None:
        _chat_rate_limiter = InMemoryRateLimiter(
            max_requests=settings.chat_rate_limit_per_minute,
            window_seconds=60,
        )
    return _chat_rate_limiter


def verify_secret_token(request: Request) -> bool:
    """
    Verify X-Telegram-Bot-Api-Secret-Token header.
    Returns True if valid or if secret token verification is disabled.
    """
    if not settings.telegram_webhook_secret:
        return True

    header_token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
    if not header_token:
        logger.warning("Telegram webhook: missing X-Telegram-Bot-Api-Secret-Token header")
        return False

    return hmac.compare_digest(header_token, settings.telegram_webhook_secret)


async def process_update(
    engine: MarketplaceEngine,
    update: dict,
    limiter: InMemoryRateLimiter,
    *,
    source: str,
    request_id: str | None = None,
) -> dict:
    """
    Adapt one Update and run it through the engine.

    Shared by the webhook and the long-polling runner. Never raises:
    the caller must keep acknowledging updates whatever happens here.
    """
    event = _adapter.adapt_update(update)
    if event is None:
        return {"status": "ignored"}

    log_ctx = LogContext(logger, actor_id=event.actor_id, event_id=event.event_id, request_id=request_id)

    if event.callback_id:
        try:
            await answer_callback_query(event.callback_id)
        except TelegramSendError as err:
            log_ctx.warning(f"answerCallbackQuery failed: {err}")

    allowed, retry_after = limiter.is_allowed(event.chat_id)
    if not allowed:
        log_ctx.warning(f"Rate limit exceeded for chat, retry_after={retry_after}s")
        inc_counter("inbound_rate_limited", provider="telegram", source=source)
        return {"status": "rate_limited"}

    try:
        result = await engine.process_event(event)
    except Exception as exc:
        # Idempotency store or lock failures escape the engine's own boundary
        log_ctx.error(f"Telegram {source} processing failed: {exc.__class__.__name__}", exc_info=True)
        AppMetrics.internal_error(f"telegram_{source}")
        return {"status": "error"}

    inc_counter("inbound_events_total", provider="telegram", source=source)
    log_ctx.info(f"Telegram {source} processed: kind={event.kind.value}, status={result['status']}")
    return result


async def telegram_webhook_handler(request: Request) -> JSONResponse:
    """
    Handle Telegram Bot API webhook Updates (POST).

    Returns 403 on a bad secret and 200 otherwise, including malformed
    payloads and processing errors.
    """
    if not verify_secret_token(request):
        logger.error("Telegram webhook: secret token verification failed")
        AppMetrics.webhook_validation_failed("telegram")
        raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Telegram webhook: invalid JSON payload, returning 200 to suppress retries")
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True}, status_code=200)

    if not isinstance(payload, dict):
        inc_counter("telegram_webhook_malformed_payload")
        return JSONResponse({"ok": True}, status_code=200)

    engine: MarketplaceEngine = request.app.state.engine
    result = await process_update(
        engine,
        payload,
        get_chat_rate_limiter(),
        source="webhook",
        request_id=getattr(request.state, "request_id", None),
    )

    return JSONResponse({"ok": True, "status": result["status"]}, status_code=200)
