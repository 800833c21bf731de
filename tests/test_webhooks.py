# tests/test_webhooks.py
"""Tests for the Telegram webhook, the shared update processor and outbound delivery."""
from __future__ import annotations

from unittest.mock import MagicMock, AsyncMock, patch

import pytest
from fastapi import HTTPException

from airdlivers.infra.rate_limiter import InMemoryRateLimiter
from airdlivers.transport.telegram_sender import TelegramMessenger, TelegramSendError, inline_keyboard
from airdlivers.core.engine.domain import Action


# ============================================================================
# Telegram secret token verification
# ============================================================================

class TestTelegramSecretToken:
    """Tests for verify_secret_token() in telegram_webhook.py."""

    @patch("airdlivers.transport.telegram_webhook.settings")
    def test_valid_secret_token(self, mock_settings):
        mock_settings.telegram_webhook_secret = "my-secret-abc"
        from airdlivers.transport.telegram_webhook import verify_secret_token

        request = MagicMock()
        request.headers = {"X-Telegram-Bot-Api-Secret-Token": "my-secret-abc"}

        assert verify_secret_token(request) is True

    @patch("airdlivers.transport.telegram_webhook.settings")
    def test_invalid_secret_token(self, mock_settings):
        mock_settings.telegram_webhook_secret = "correct-secret"
        from airdlivers.transport.telegram_webhook import verify_secret_token

        request = MagicMock()
        request.headers = {"X-Telegram-Bot-Api-Secret-Token": "wrong-secret"}

        assert verify_secret_token(request) is False

    @patch("airdlivers.transport.telegram_webhook.settings")
    def test_missing_header(self, mock_settings):
        mock_settings.telegram_webhook_secret = "my-secret"
        from airdlivers.transport.telegram_webhook import verify_secret_token

        request = MagicMock()
        request.headers = {}

        assert verify_secret_token(request) is False

    @patch("airdlivers.transport.telegram_webhook.settings")
    def test_no_secret_configured_skips(self, mock_settings):
        mock_settings.telegram_webhook_secret = None
        from airdlivers.transport.telegram_webhook import verify_secret_token

        request = MagicMock()
        request.headers = {}

        assert verify_secret_token(request) is True


# ============================================================================
# Shared update processing (webhook + poller)
# ============================================================================

def _engine(result: dict | None = None) -> MagicMock:
    engine = MagicMock()
    engine.process_event = AsyncMock(return_value=result or {"status": "ok"})
    return engine


class TestProcessUpdate:
    @pytest.mark.asyncio
    async def test_message_reaches_engine(self, sample_telegram_message):
        from airdlivers.transport.telegram_webhook import process_update

        engine = _engine()
        result = await process_update(engine, sample_telegram_message, InMemoryRateLimiter(10), source="webhook")

        assert result == {"status": "ok"}
        event = engine.process_event.call_args.args[0]
        assert event.event_id == "tg:100200300"
        assert event.payload == "/start"

    @pytest.mark.asyncio
    async def test_ignored_update(self):
        from airdlivers.transport.telegram_webhook import process_update

        engine = _engine()
        result = await process_update(engine, {"update_id": 5, "edited_message": {}}, InMemoryRateLimiter(10), source="poll")

        assert result == {"status": "ignored"}
        engine.process_event.assert_not_called()

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_webhook.answer_callback_query", new_callable=AsyncMock)
    async def test_callback_is_answered(self, mock_answer, sample_telegram_callback):
        from airdlivers.transport.telegram_webhook import process_update

        engine = _engine()
        await process_update(engine, sample_telegram_callback, InMemoryRateLimiter(10), source="webhook")

        mock_answer.assert_awaited_once_with("cbq-77")
        assert engine.process_event.call_args.args[0].payload == "flow:sender"

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_webhook.answer_callback_query", new_callable=AsyncMock)
    async def test_callback_answer_failure_does_not_block(self, mock_answer, sample_telegram_callback):
        from airdlivers.transport.telegram_webhook import process_update

        mock_answer.side_effect = TelegramSendError(400, 400, "query is too old")
        engine = _engine()
        result = await process_update(engine, sample_telegram_callback, InMemoryRateLimiter(10), source="webhook")

        assert result == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_rate_limited_chat(self, sample_telegram_message):
        from airdlivers.transport.telegram_webhook import process_update

        engine = _engine()
        limiter = InMemoryRateLimiter(max_requests=1, window_seconds=60, clock=lambda: 1000.0)
        first = dict(sample_telegram_message, update_id=1)
        second = dict(sample_telegram_message, update_id=2)

        assert (await process_update(engine, first, limiter, source="poll"))["status"] == "ok"
        assert (await process_update(engine, second, limiter, source="poll"))["status"] == "rate_limited"
        assert engine.process_event.await_count == 1

    @pytest.mark.asyncio
    async def test_engine_failure_is_contained(self, sample_telegram_message):
        from airdlivers.transport.telegram_webhook import process_update

        engine = MagicMock()
        engine.process_event = AsyncMock(side_effect=ConnectionError("pool closed"))

        result = await process_update(engine, sample_telegram_message, InMemoryRateLimiter(10), source="webhook")

        assert result == {"status": "error"}


# ============================================================================
# Webhook handler
# ============================================================================

class TestTelegramWebhookHandler:
    def _make_request(self, engine, *, payload=None, secret: str | None = None, bad_json: bool = False):
        request = MagicMock()
        request.headers = {"X-Telegram-Bot-Api-Secret-Token": secret} if secret else {}
        if bad_json:
            request.json = AsyncMock(side_effect=ValueError("Expecting value"))
        else:
            request.json = AsyncMock(return_value=payload)
        request.app.state.engine = engine
        request.state.request_id = "req-1"
        return request

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_webhook.settings")
    async def test_bad_secret_is_403(self, mock_settings, sample_telegram_message):
        mock_settings.telegram_webhook_secret = "expected"
        from airdlivers.transport.telegram_webhook import telegram_webhook_handler

        engine = _engine()
        request = self._make_request(engine, payload=sample_telegram_message, secret="forged")

        with pytest.raises(HTTPException) as exc_info:
            await telegram_webhook_handler(request)

        assert exc_info.value.status_code == 403
        engine.process_event.assert_not_called()

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_webhook.settings")
    async def test_invalid_json_is_acknowledged(self, mock_settings):
        mock_settings.telegram_webhook_secret = None
        from airdlivers.transport.telegram_webhook import telegram_webhook_handler

        engine = _engine()
        response = await telegram_webhook_handler(self._make_request(engine, bad_json=True))

        assert response.status_code == 200
        engine.process_event.assert_not_called()

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_webhook.get_chat_rate_limiter")
    @patch("airdlivers.transport.telegram_webhook.settings")
    async def test_update_is_processed(self, mock_settings, mock_limiter, sample_telegram_message):
        mock_settings.telegram_webhook_secret = "expected"
        mock_limiter.return_value = InMemoryRateLimiter(10)
        from airdlivers.transport.telegram_webhook import telegram_webhook_handler

        engine = _engine({"status": "refused", "reason": "NotAuthorizedError"})
        request = self._make_request(engine, payload=sample_telegram_message, secret="expected")

        response = await telegram_webhook_handler(request)

        assert response.status_code == 200
        assert b'"status":"refused"' in response.body
        engine.process_event.assert_awaited_once()


# ============================================================================
# Outbound delivery
# ============================================================================

class TestTelegramMessenger:
    def test_inline_keyboard(self):
        markup = inline_keyboard([[Action("Yes", "submit:yes"), Action("No", "submit:no")]])
        assert markup == {"inline_keyboard": [[
            {"text": "Yes", "callback_data": "submit:yes"},
            {"text": "No", "callback_data": "submit:no"},
        ]]}

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_sender.send_text_message", new_callable=AsyncMock)
    async def test_permanent_failure_is_swallowed(self, mock_send):
        mock_send.side_effect = TelegramSendError(403, 403, "bot was blocked by the user")
        messenger = TelegramMessenger(token="t", retry_delay=0)

        await messenger.send_text("4242", "hello")

        assert mock_send.await_count == 1

    @pytest.mark.asyncio
    @patch("airdlivers.transport.telegram_sender.asyncio.sleep", new_callable=AsyncMock)
    @patch("airdlivers.transport.telegram_sender.send_text_message", new_callable=AsyncMock)
    async def test_retryable_failure_is_retried_once(self, mock_send, mock_sleep):
        mock_send.side_effect = [TelegramSendError(0, None, "timeout", retryable=True), {"ok": True}]
        messenger = TelegramMessenger(token="t", max_attempts=2, retry_delay=1.0)

        await messenger.send_with_actions("4242", "pick", [[Action("Go", "flow:sender")]])

        assert mock_send.await_count == 2
        mock_sleep.assert_awaited_once_with(1.0)
        reply_markup = mock_send.call_args.args[2]
        assert reply_markup["inline_keyboard"][0][0]["callback_data"] == "flow:sender"
