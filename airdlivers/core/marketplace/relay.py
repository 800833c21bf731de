# airdlivers/core/marketplace/relay.py
"""Forward free text between the two sides of a locked match."""
from __future__ import annotations

from typing import Optional

from airdlivers.core.engine.domain import Request
from airdlivers.core.engine.ports import AsyncRequestStore, Messenger
from airdlivers.core.marketplace.texts import esc, get_text
from airdlivers.core.marketplace.validators import sanitize_text
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)


class Relay:
    def __init__(
        self,
        *,
        requests: AsyncRequestStore,
        messenger: Messenger,
        moderation_chat_id: str | None,
    ) -> None:
        self.requests = requests
        self.messenger = messenger
        self.moderation_chat_id = moderation_chat_id

    async def active_match(self, actor_id: str) -> Optional[tuple[Request, Request]]:
        """(mine, theirs) for the actor's most recent locked match, if any."""
        locked = await self.requests.find_many(owner_id=actor_id, match_locked=True)
        for mine in sorted(locked, key=lambda r: r.match_finalized_at or r.created_at, reverse=True):
            if not mine.matched_with:
                continue
            other = await self.requests.find_one(request_id=mine.matched_with)
            if other is not None and other.match_locked and other.matched_with == mine.request_id:
                return mine, other
        return None

    async def forward(self, actor_id: str, text: str) -> bool:
        """Relay ``text`` to the counterpart and mirror it to moderators. False if not matched."""
        pair = await self.active_match(actor_id)
        if pair is None:
            return False
        _, other = pair

        body = esc(sanitize_text(text, 3000))
        await self.messenger.send_text(other.owner_id, get_text("relay_from_match", text=body))
        if self.moderation_chat_id:
            await self.messenger.send_text(
                self.moderation_chat_id,
                get_text("relay_mirror", from_id=esc(actor_id), to_id=esc(other.owner_id), text=body),
            )

        AppMetrics.relay_forwarded()
        logger.debug(f"Relayed message: from={mask_id(actor_id)} to={mask_id(other.owner_id)}")
        return True
