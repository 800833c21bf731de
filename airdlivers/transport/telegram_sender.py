# airdlivers/transport/telegram_sender.py
"""
Telegram Bot API outbound sender.

Module functions wrap single Bot API calls and raise ``TelegramSendError``.
``TelegramMessenger`` implements the core ``Messenger`` port on top of them:
it retries once on retryable errors and otherwise logs and swallows the
failure, so one unreachable recipient never aborts the handling of an
event for everyone else.

Error classification (TelegramSendError.retryable):
- Token invalid / bot blocked  → NOT retryable (needs human intervention)
- Bad request / chat not found → NOT retryable
- Rate limiting (429)          → retryable  (backoff then retry)
- Network / timeout            → retryable  (transient)
- Unknown server error         → retryable  (optimistic)

HTTP session lifecycle:
- Uses the shared sessions from airdlivers.infra.http_client.
- Call close_all_sessions() during application shutdown.
"""
from __future__ import annotations

import asyncio
from typing import Sequence

import aiohttp

from airdlivers.config import settings
from airdlivers.core.engine.domain import Action
from airdlivers.infra.http_client import get_polling_session, get_sender_session
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import inc_counter

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"

# Telegram caps photo captions at 1024 characters
MAX_CAPTION_LEN = 1024


def _bot_url(method: str, token: str | None = None) -> str:
    """Build Telegram Bot API URL."""
    bot_token = token or settings.telegram_bot_token
    return f"{TELEGRAM_API_BASE}/bot{bot_token}/{method}"


# ---------------------------------------------------------------------------
# Error type
# ---------------------------------------------------------------------------

class TelegramSendError(Exception):
    """Error calling the Telegram Bot API.

    Attributes:
        status:      HTTP status code (0 for connection-level errors).
        error_code:  Telegram-specific error code from the response body.
        retryable:   Whether the caller should schedule a retry.
        retry_after: Seconds Telegram asked us to wait (429 only).
    """

    def __init__(
        self,
        status: int,
        error_code: int | None,
        message: str,
        *,
        retryable: bool = False,
        retry_after: int | None = None,
    ):
        self.status = status
        self.error_code = error_code
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(f"Telegram API error {status} (code={error_code}): {message}")


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def inline_keyboard(rows: Sequence[Sequence[Action]]) -> dict:
    """Render action rows as a Telegram ``reply_markup`` object."""
    return {
        "inline_keyboard": [
            [{"text": a.label, "callback_data": a.token} for a in row]
            for row in rows
        ]
    }


async def send_text_message(
    chat_id: str,
    text: str,
    reply_markup: dict | None = None,
    token: str | None = None,
) -> dict:
    """
    Send an HTML text message, optionally with an inline keyboard.

    Raises:
        TelegramSendError: On API errors (check .retryable before retrying)
    """
    payload: dict = {
        "chat_id": chat_id,
        "text": text,
        "parse_mode": "HTML",
        "disable_web_page_preview": True,
    }
    if reply_markup:
        payload["reply_markup"] = reply_markup
    return await _send_request(_bot_url("sendMessage", token), payload, chat_id)


async def send_photo_message(
    chat_id: str,
    photo: str,
    caption: str | None = None,
    token: str | None = None,
) -> dict:
    """Send a photo by Telegram file_id (or URL) with an optional HTML caption."""
    payload: dict = {"chat_id": chat_id, "photo": photo}
    if caption:
        payload["caption"] = caption[:MAX_CAPTION_LEN]
        payload["parse_mode"] = "HTML"
    return await _send_request(_bot_url("sendPhoto", token), payload, chat_id)


async def answer_callback_query(callback_id: str, token: str | None = None) -> dict:
    """Stop the button's loading spinner on the user's client."""
    return await _send_request(
        _bot_url("answerCallbackQuery", token),
        {"callback_query_id": callback_id},
        "system",
    )


async def delete_webhook(token: str | None = None) -> dict:
    """Remove webhook so polling can work."""
    return await _send_request(_bot_url("deleteWebhook", token), {}, "system")


async def set_webhook(
    webhook_url: str,
    secret_token: str | None = None,
    token: str | None = None,
) -> dict:
    """
    Register the public webhook URL.

    ``secret_token`` is echoed back by Telegram in the
    X-Telegram-Bot-Api-Secret-Token header of every update.
    """
    payload: dict = {"url": webhook_url, "allowed_updates": ["message", "callback_query"]}
    if secret_token:
        payload["secret_token"] = secret_token
    return await _send_request(_bot_url("setWebhook", token), payload, "system")


async def get_updates(
    offset: int | None = None,
    timeout: int = 30,
    token: str | None = None,
) -> list[dict]:
    """
    Long-poll for updates via getUpdates.

    Returns:
        List of Update dicts
    """
    payload: dict = {"timeout": timeout, "allowed_updates": ["message", "callback_query"]}
    if offset is not None:
        payload["offset"] = offset

    session = get_polling_session()
    try:
        async with session.post(
            _bot_url("getUpdates", token),
            json=payload,
            timeout=aiohttp.ClientTimeout(total=timeout + 10, connect=5),
        ) as resp:
            body = await _safe_response_json(resp)

            if resp.status == 200 and body and body.get("ok"):
                return body.get("result", [])

            error_desc = (body or {}).get("description", "Unknown error")
            error_code = (body or {}).get("error_code")

            raise TelegramSendError(
                resp.status, error_code, error_desc,
                retryable=resp.status == 429 or resp.status >= 500,
            )

    except TelegramSendError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Telegram getUpdates connection error: {exc}", exc_info=True)
        raise TelegramSendError(0, None, str(exc), retryable=True)


# ---------------------------------------------------------------------------
# Messenger port implementation
# ---------------------------------------------------------------------------

class TelegramMessenger:
    """
    Messenger backed by the Bot API.

    Delivery failures are logged and counted, never raised.
    """

    def __init__(self, token: str | None = None, max_attempts: int = 2, retry_delay: float = 1.0):
        self.token = token
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    async def send_text(self, chat_id: str, text: str) -> None:
        await self._deliver("text", chat_id, send_text_message, chat_id, text, token=self.token)

    async def send_photo(self, chat_id: str, photo_ref: str, caption: str | None = None) -> None:
        await self._deliver("photo", chat_id, send_photo_message, chat_id, photo_ref, caption, token=self.token)

    async def send_with_actions(
        self,
        chat_id: str,
        text: str,
        actions: Sequence[Sequence[Action]],
    ) -> None:
        await self._deliver(
            "actions", chat_id, send_text_message, chat_id, text, inline_keyboard(actions), token=self.token
        )

    async def _deliver(self, kind: str, chat_id: str, call, *args, **kwargs) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await call(*args, **kwargs)
                inc_counter("outbound_messages_total", kind=kind, status="sent")
                return
            except TelegramSendError as err:
                if not err.retryable or attempt >= self.max_attempts:
                    logger.error(f"Telegram {kind} delivery failed: to={mask_id(chat_id)}, error={err}")
                    inc_counter("outbound_messages_total", kind=kind, status="failed")
                    return
                delay = min(err.retry_after or self.retry_delay * attempt, 30)
                logger.warning(f"Telegram {kind} delivery retry in {delay}s: to={mask_id(chat_id)}")
                await asyncio.sleep(delay)


# ---------------------------------------------------------------------------
# Internal
# ---------------------------------------------------------------------------

async def _safe_response_json(resp: aiohttp.ClientResponse) -> dict | None:
    """Parse JSON from response, returning None if body is not valid JSON."""
    try:
        return await resp.json()
    except (aiohttp.ContentTypeError, ValueError):
        logger.warning(f"Telegram API returned non-JSON body: status={resp.status}")
        return None


async def _send_request(url: str, payload: dict, chat_id: str) -> dict:
    """
    Execute a Telegram Bot API request with error handling.
    """
    try:
        session = get_sender_session()
        async with session.post(url, json=payload) as resp:
            body = await _safe_response_json(resp)

            if resp.status == 200 and body and body.get("ok"):
                result = body.get("result", {})
                msg_id = result.get("message_id", "unknown") if isinstance(result, dict) else "ok"
                logger.info(f"Telegram call ok: to={mask_id(chat_id)}, msg_id={msg_id}")
                inc_counter("telegram_outbound_sent")
                return body

            # --- Error path ------------------------------------------------
            error_desc = (body or {}).get("description", "Unknown error")
            error_code = (body or {}).get("error_code")

            # -- Auth failure: token invalid (DO NOT retry) --------
            if resp.status == 401 or error_code == 401:
                logger.error(f"Telegram API auth error (token invalid): {error_desc}")
                inc_counter("telegram_outbound_auth_error")
                raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

            # -- Forbidden: bot blocked by user (DO NOT retry) --
            if resp.status == 403:
                logger.warning(f"Telegram API forbidden: {error_desc}")
                inc_counter("telegram_outbound_forbidden")
                raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

            # -- Bad request: chat not found, bad markup, etc. (DO NOT retry) --
            if resp.status == 400:
                logger.warning(f"Telegram API bad request: {error_desc}")
                inc_counter("telegram_outbound_bad_request")
                raise TelegramSendError(resp.status, error_code, error_desc, retryable=False)

            # -- Rate limit: retry with backoff --------------
            if resp.status == 429:
                retry_after = (body or {}).get("parameters", {}).get("retry_after", 30)
                logger.warning(f"Telegram API rate limit, retry_after={retry_after}s")
                inc_counter("telegram_outbound_rate_limited")
                raise TelegramSendError(
                    resp.status, error_code, error_desc, retryable=True, retry_after=retry_after,
                )

            # -- Anything else: optimistic retry ----------------------------
            logger.error(f"Telegram API error: status={resp.status}, code={error_code}, msg={error_desc}")
            inc_counter("telegram_outbound_error")
            raise TelegramSendError(resp.status, error_code, error_desc, retryable=True)

    except TelegramSendError:
        raise
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.error(f"Telegram API connection error: {exc}", exc_info=True)
        inc_counter("telegram_outbound_connection_error")
        raise TelegramSendError(0, None, str(exc), retryable=True)
