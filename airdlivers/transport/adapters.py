# airdlivers/transport/adapters.py
"""
Adapters to convert provider-specific payloads into InboundEvent.
These are pure converters - they don't contain domain logic.
"""
from __future__ import annotations
import uuid
from typing import Optional

from airdlivers.core.engine.domain import EventKind, InboundEvent
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


def normalize_command(text: str) -> str:
    """"/start@MyBot arg" -> "/start arg"; non-commands are returned unchanged."""
    if not text.startswith("/"):
        return text
    parts = text.split(" ", 1)
    parts[0] = parts[0].split("@")[0]
    return " ".join(parts)


class TelegramAdapter:
    """
    Adapter for Telegram Bot API Updates (webhook body or getUpdates item).

    Handled update types:
    - message with text          -> TEXT
    - message with photo         -> PHOTO (largest size's file_id)
    - callback_query with data   -> BUTTON

    Event ids are derived from ``update_id``, which Telegram redelivers
    unchanged on retry, so duplicates are caught by the idempotency store.
    Everything else (edited messages, stickers, joins) yields None.
    """

    def adapt_update(self, update: dict) -> Optional[InboundEvent]:
        update_id = update.get("update_id")
        if update_id is None:
            logger.debug("Telegram update without update_id, ignoring")
            return None
        event_id = f"tg:{update_id}"

        if "callback_query" in update:
            return self._from_callback(event_id, update["callback_query"])

        message = update.get("message")
        if not message:
            logger.debug(f"Telegram update ignored (keys: {list(update.keys())})")
            return None
        return self._from_message(event_id, message)

    def _from_callback(self, event_id: str, query: dict) -> Optional[InboundEvent]:
        data = query.get("data")
        sender = query.get("from") or {}
        if not data or "id" not in sender:
            return None

        actor_id = str(sender["id"])
        chat = (query.get("message") or {}).get("chat") or {}
        chat_id = str(chat.get("id", actor_id))

        logger.info(f"Telegram button: from={mask_id(actor_id)}, token_len={len(data)}")
        return InboundEvent(
            event_id=event_id,
            actor_id=actor_id,
            chat_id=chat_id,
            kind=EventKind.BUTTON,
            payload=data,
            sender_name=self._extract_sender_name(sender),
            callback_id=query.get("id"),
        )

    def _from_message(self, event_id: str, message: dict) -> Optional[InboundEvent]:
        sender = message.get("from") or {}
        chat = message.get("chat") or {}
        if "id" not in chat:
            return None

        chat_id = str(chat["id"])
        actor_id = str(sender.get("id", chat_id))
        sender_name = self._extract_sender_name(sender)

        photos = message.get("photo")
        if photos:
            # Telegram sends multiple sizes; the largest is last
            file_id = photos[-1].get("file_id")
            if not file_id:
                return None
            logger.info(f"Telegram photo: from={mask_id(actor_id)}")
            return InboundEvent(
                event_id=event_id,
                actor_id=actor_id,
                chat_id=chat_id,
                kind=EventKind.PHOTO,
                payload=file_id,
                sender_name=sender_name,
            )

        text = message.get("text")
        if not text:
            logger.debug(f"Telegram message: no text or photo, ignoring (keys: {list(message.keys())})")
            return None

        logger.info(f"Telegram message: from={mask_id(actor_id)}, len={len(text)}")
        return InboundEvent(
            event_id=event_id,
            actor_id=actor_id,
            chat_id=chat_id,
            kind=EventKind.TEXT,
            payload=normalize_command(text),
            sender_name=sender_name,
        )

    @staticmethod
    def _extract_sender_name(sender: dict) -> str | None:
        """Prefer "Full Name (@username)", fall back to whichever part exists."""
        if not sender:
            return None
        full_name = f"{sender.get('first_name', '')} {sender.get('last_name', '')}".strip()
        username = sender.get("username")

        if username and full_name:
            return f"{full_name} (@{username})"
        if username:
            return f"@{username}"
        return full_name or None


class DevAdapter:
    """
    Adapter for the development endpoint.
    Accepts simple parameters and converts to InboundEvent.
    """

    def adapt(
            self,
            actor_id: str,
            kind: EventKind,
            payload: str,
            event_id: str | None = None,
    ) -> InboundEvent:
        if not event_id:
            event_id = f"dev_{uuid.uuid4().hex[:16]}"

        if kind is EventKind.TEXT:
            payload = normalize_command(payload)

        logger.info(f"Dev event: actor={mask_id(actor_id)}, kind={kind.value}")
        return InboundEvent(
            event_id=event_id,
            actor_id=actor_id,
            chat_id=actor_id,
            kind=kind,
            payload=payload,
        )
