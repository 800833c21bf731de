# airdlivers/transport/dev_messenger.py
"""
In-process Messenger for local development without a bot token.

Outgoing messages are kept per chat and drained by ``POST /dev/event``,
so the whole conversation can be driven with curl.
"""
from __future__ import annotations

from collections import defaultdict
from typing import Sequence

from airdlivers.core.engine.domain import Action
from airdlivers.infra.logging_config import get_logger, mask_id

logger = get_logger(__name__)


class OutboxMessenger:
    def __init__(self, max_per_chat: int = 200):
        self.max_per_chat = max_per_chat
        self._outbox: dict[str, list[dict]] = defaultdict(list)

    def _push(self, chat_id: str, item: dict) -> None:
        box = self._outbox[chat_id]
        box.append(item)
        del box[:-self.max_per_chat]
        logger.debug(f"Dev outbox: to={mask_id(chat_id)}, type={item['type']}")

    async def send_text(self, chat_id: str, text: str) -> None:
        self._push(chat_id, {"type": "text", "text": text})

    async def send_photo(self, chat_id: str, photo_ref: str, caption: str | None = None) -> None:
        self._push(chat_id, {"type": "photo", "photo": photo_ref, "caption": caption})

    async def send_with_actions(
        self,
        chat_id: str,
        text: str,
        actions: Sequence[Sequence[Action]],
    ) -> None:
        self._push(chat_id, {
            "type": "actions",
            "text": text,
            "actions": [[{"label": a.label, "token": a.token} for a in row] for row in actions],
        })

    def drain(self, chat_id: str) -> list[dict]:
        return self._outbox.pop(chat_id, [])
