# airdlivers/core/engine/use_cases.py
"""
MarketplaceEngine: the single entry point for inbound events.

Transports (webhook, poller, dev endpoint) normalize provider payloads into
InboundEvent and call ``process_event``; everything else happens here.
"""
from __future__ import annotations

import asyncio
import weakref
from datetime import datetime
from typing import Callable

from airdlivers.core.engine import tokens
from airdlivers.core.engine.domain import Action, EventKind, FlowKind, InboundEvent, utcnow
from airdlivers.core.engine.errors import MarketplaceError
from airdlivers.core.engine.ports import (
    AsyncAuthSessionStore,
    AsyncInboundEventRepository,
    AsyncRequestStore,
    AsyncSessionStore,
    AsyncUserControlStore,
    Messenger,
)
from airdlivers.core.marketplace.admin_auth import AdminAuth
from airdlivers.core.marketplace.matching import MatchingService
from airdlivers.core.marketplace.moderation import ModerationGate
from airdlivers.core.marketplace.relay import Relay
from airdlivers.core.marketplace.submission import SubmissionFlow
from airdlivers.core.marketplace.suspension import SuspensionGate, command_of
from airdlivers.core.marketplace.texts import get_text
from airdlivers.core.marketplace.tracking import TrackingService
from airdlivers.core.marketplace.validators import sanitize_text
from airdlivers.infra.logging_config import LogContext, get_logger
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)

MODERATOR_COMMANDS = ("/suspend", "/unsuspend", "/terminatechat", "/pending")


def main_menu() -> list[list[Action]]:
    return [
        [Action(get_text("menu_sender"), tokens.flow("sender"))],
        [Action(get_text("menu_traveler"), tokens.flow("traveler"))],
        [Action(get_text("menu_tracking"), tokens.flow("tracking"))],
        [Action(get_text("menu_help"), tokens.flow("help"))],
    ]


class MarketplaceEngine:
    """
    Application service / dispatch layer.
    Workflow: idempotency -> per-actor lock -> gate -> route -> reply.

    This is the error boundary: domain errors become their short reply,
    anything else is logged with a stack trace and answered with a generic
    retry message. One actor's failure never stops events of other actors.
    """

    def __init__(
        self,
        *,
        provider: str,
        inbound: AsyncInboundEventRepository,
        messenger: Messenger,
        gate: SuspensionGate,
        auth: AdminAuth,
        flow: SubmissionFlow,
        tracking: TrackingService,
        moderation: ModerationGate,
        matching: MatchingService,
        relay: Relay,
        support_email: str,
    ) -> None:
        self.provider = provider
        self.inbound = inbound
        self.messenger = messenger
        self.gate = gate
        self.auth = auth
        self.flow = flow
        self.tracking = tracking
        self.moderation = moderation
        self.matching = matching
        self.relay = relay
        self.support_email = support_email
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _actor_lock(self, actor_id: str) -> asyncio.Lock:
        lock = self._locks.get(actor_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[actor_id] = lock
        return lock

    async def process_event(self, event: InboundEvent) -> dict:
        """
        Handle one inbound event to completion.

        Returns a small status dict for the transport / dev endpoint:
        ``ok``, ``duplicate``, ``refused`` or ``error``.
        """
        log = LogContext(logger, actor_id=event.actor_id, event_id=event.event_id)

        if await self.inbound.seen_or_mark(self.provider, event.event_id, event.actor_id):
            AppMetrics.idempotency_hit(self.provider)
            log.info("Duplicate event ignored")
            return {"status": "duplicate"}

        AppMetrics.event_received(event.kind.value)

        lock = self._actor_lock(event.actor_id)
        async with lock:
            with AppMetrics.track_processing_time(event.kind.value):
                try:
                    await self._dispatch(event)
                except MarketplaceError as exc:
                    log.info(f"Refused: {type(exc).__name__}")
                    await self.messenger.send_text(event.chat_id, exc.detail)
                    return {"status": "refused", "reason": type(exc).__name__}
                except Exception:
                    log.exception(f"Unhandled error processing {event.kind.value} event")
                    AppMetrics.internal_error(event.kind.value)
                    await self._reply_internal_error(event)
                    return {"status": "error"}

        return {"status": "ok"}

    async def _reply_internal_error(self, event: InboundEvent) -> None:
        try:
            await self.messenger.send_text(event.chat_id, get_text("internal_error"))
        except Exception:
            logger.error("Failed to deliver internal error notice", exc_info=True)

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def _dispatch(self, event: InboundEvent) -> None:
        if not await self.gate.check(event):
            return

        actor, chat = event.actor_id, event.chat_id

        if event.kind is EventKind.BUTTON:
            await self._button(event)
            return

        if event.is_command:
            await self._command(event)
            return

        if event.kind is EventKind.TEXT:
            if await self.auth.is_awaiting_pin(actor):
                await self.auth.submit_pin(actor, chat, event.text)
                return
            reason_for = await self.auth.take_awaiting_reason(actor)
            if reason_for:
                await self.moderation.reject(actor, chat, reason_for, sanitize_text(event.text))
                return

        session = await self.flow.load(actor)
        if session is not None:
            if session.flow is FlowKind.TRACKING:
                await self.tracking.handle(session, event)
            else:
                await self.flow.handle(session, event)
            return

        if event.kind is EventKind.PHOTO:
            if await self.moderation.upload_visa(actor, chat, event.payload):
                return
            if await self.relay.active_match(actor) is not None:
                await self.messenger.send_text(chat, get_text("relay_photo_unsupported"))
                return
            await self.messenger.send_text(chat, get_text("hint_start"))
            return

        if await self.relay.forward(actor, event.text):
            return

        await self.messenger.send_text(chat, get_text("hint_start"))

    async def _command(self, event: InboundEvent) -> None:
        actor, chat = event.actor_id, event.chat_id
        cmd = command_of(event)
        args = event.text.split(maxsplit=2)[1:]

        if cmd == "/start":
            await self.flow.discard(actor)
            await self.messenger.send_with_actions(chat, get_text("intro"), main_menu())
        elif cmd == "/help":
            await self._help(chat)
        elif cmd == "/admin":
            await self.auth.begin_login(actor, chat)
        elif cmd == "/logout":
            await self.auth.logout(actor, chat)
        elif cmd in MODERATOR_COMMANDS:
            # Authorization before any argument parsing or target lookup
            await self.auth.require_moderator(actor)
            await self._moderator_command(cmd, args, actor, chat)
        else:
            await self.messenger.send_text(chat, get_text("hint_start"))

    async def _moderator_command(self, cmd: str, args: list[str], actor: str, chat: str) -> None:
        if cmd == "/pending":
            await self.moderation.list_pending(actor, chat)
        elif cmd == "/suspend":
            if len(args) < 2:
                await self.messenger.send_text(chat, get_text("usage_suspend"))
                return
            await self.gate.suspend(actor, chat, args[0], args[1])
        elif cmd == "/unsuspend":
            if len(args) < 1:
                await self.messenger.send_text(chat, get_text("usage_unsuspend"))
                return
            await self.gate.unsuspend(actor, chat, args[0])
        elif cmd == "/terminatechat":
            if len(args) < 2:
                await self.messenger.send_text(chat, get_text("usage_terminate"))
                return
            await self.gate.terminate_chat(actor, chat, args[0], args[1])

    async def _button(self, event: InboundEvent) -> None:
        actor, chat = event.actor_id, event.chat_id
        try:
            token = tokens.parse(event.payload)
        except tokens.TokenError:
            logger.warning(f"Unknown callback token: {event.payload[:64]!r}")
            await self.messenger.send_text(chat, get_text("unknown_action"))
            return

        if token.domain == "flow":
            if token.action == "help":
                await self._help(chat)
            elif token.action == "tracking":
                await self.tracking.start(actor, chat)
            else:
                await self.flow.start(actor, FlowKind(token.action))
            return

        if token.domain in ("cat", "submit"):
            session = await self.flow.load(actor)
            if session is None:
                await self.messenger.send_text(chat, get_text("no_form"))
            elif session.flow is FlowKind.TRACKING:
                await self.tracking.handle(session, event)
            else:
                await self.flow.handle(session, event)
            return

        if token.domain == "mod":
            rid = token.arg(0)
            if token.action == "approve":
                await self.moderation.approve(actor, chat, rid)
            elif token.action == "reject":
                await self.moderation.begin_reject(actor, chat, rid)
            elif token.action == "visa":
                await self.moderation.request_visa(actor, chat, rid)
            else:
                await self.moderation.reject_with_reason(actor, chat, rid, token.arg(1))
            return

        if token.domain == "match":
            if token.action == "conf":
                await self.matching.confirm(actor, token.arg(0), token.arg(1))
            else:
                await self.matching.skip(actor, token.arg(0), token.arg(1))
            return

        if token.domain == "ctl":
            await self.gate.terminate_chat(actor, chat, token.arg(0))
            return

    async def _help(self, chat_id: str) -> None:
        await self.messenger.send_text(chat_id, get_text("help", support_email=self.support_email))


def build_engine(
    *,
    provider: str,
    requests: AsyncRequestStore,
    sessions: AsyncSessionStore,
    controls: AsyncUserControlStore,
    auth_sessions: AsyncAuthSessionStore,
    inbound: AsyncInboundEventRepository,
    messenger: Messenger,
    moderation_chat_id: str | None,
    super_admin_id: str | None,
    admin_pin: str | None,
    support_email: str,
    clock: Callable[[], datetime] = utcnow,
    admin_session_ttl_hours: int = 12,
    session_ttl_seconds: int = 86400,
    max_weight_kg: float = 10.0,
    weight_tolerance_kg: float = 2.0,
    date_tolerance_days: int = 1,
) -> MarketplaceEngine:
    """Wire every service over the given stores and messenger."""
    auth = AdminAuth(
        store=auth_sessions,
        messenger=messenger,
        super_admin_id=super_admin_id,
        admin_pin=admin_pin,
        session_ttl_hours=admin_session_ttl_hours,
    )
    matching = MatchingService(
        requests=requests,
        messenger=messenger,
        moderation_chat_id=moderation_chat_id,
        weight_tolerance_kg=weight_tolerance_kg,
        date_tolerance_days=date_tolerance_days,
    )
    moderation = ModerationGate(
        requests=requests,
        messenger=messenger,
        auth=auth,
        matching=matching,
        moderation_chat_id=moderation_chat_id,
    )
    flow = SubmissionFlow(
        sessions=sessions,
        requests=requests,
        messenger=messenger,
        announce=moderation.announce,
        clock=clock,
        max_weight_kg=max_weight_kg,
        session_ttl_seconds=session_ttl_seconds,
    )
    return MarketplaceEngine(
        provider=provider,
        inbound=inbound,
        messenger=messenger,
        gate=SuspensionGate(
            controls=controls,
            sessions=sessions,
            requests=requests,
            messenger=messenger,
            auth=auth,
            moderation_chat_id=moderation_chat_id,
            support_email=support_email,
        ),
        auth=auth,
        flow=flow,
        tracking=TrackingService(sessions=sessions, requests=requests, messenger=messenger),
        moderation=moderation,
        matching=matching,
        relay=Relay(requests=requests, messenger=messenger, moderation_chat_id=moderation_chat_id),
        support_email=support_email,
    )
