# airdlivers/core/marketplace/tracking.py
"""Track Shipment: status lookup of the actor's own request by phone."""
from __future__ import annotations

from airdlivers.core.engine.domain import EventKind, FlowKind, InboundEvent, SessionState
from airdlivers.core.engine.ports import AsyncRequestStore, AsyncSessionStore, Messenger
from airdlivers.core.marketplace.texts import esc, get_text
from airdlivers.core.marketplace.validators import parse_phone

TRACKING_STEP = "phone"


class TrackingService:
    def __init__(
        self,
        *,
        sessions: AsyncSessionStore,
        requests: AsyncRequestStore,
        messenger: Messenger,
    ) -> None:
        self.sessions = sessions
        self.requests = requests
        self.messenger = messenger

    async def start(self, actor_id: str, chat_id: str) -> None:
        await self.sessions.upsert(SessionState(actor_id=actor_id, flow=FlowKind.TRACKING, step=TRACKING_STEP))
        await self.messenger.send_text(chat_id, get_text("ask_tracking_phone"))

    async def handle(self, session: SessionState, event: InboundEvent) -> None:
        if event.kind is not EventKind.TEXT:
            await self.messenger.send_text(event.chat_id, get_text("err_expect_text"))
            return
        try:
            phone = parse_phone(event.payload)
        except ValueError:
            await self.messenger.send_text(event.chat_id, get_text("err_phone"))
            return

        await self.sessions.delete(session.actor_id)

        # Only the actor's own requests are visible
        found = await self.requests.find_many(owner_id=session.actor_id, phone=phone)
        if not found:
            await self.messenger.send_text(event.chat_id, get_text("tracking_none"))
            return

        latest = max(found, key=lambda r: r.created_at)
        text = get_text(
            "tracking_result",
            request_id=latest.request_id,
            role=latest.role.value,
            status=latest.status.value,
        )
        if latest.moderator_note:
            text += get_text("tracking_note", note=esc(latest.moderator_note))
        await self.messenger.send_text(event.chat_id, text)
