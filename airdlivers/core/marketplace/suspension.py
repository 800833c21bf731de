# airdlivers/core/marketplace/suspension.py
"""
Suspension / termination gate.

Per-user flags checked before anything else handles an event:

- suspended: everything except the help allow-list is refused, and a
  refused event writes nothing to any store.
- terminated: set when a moderator closes a user's matched chat; the
  user sees a notice until they send ``/start``, which clears it.
"""
from __future__ import annotations

from airdlivers.core.engine.domain import EventKind, InboundEvent, RequestStatus, UserControl, utcnow
from airdlivers.core.engine.errors import ConflictError
from airdlivers.core.engine.ports import (
    AsyncRequestStore,
    AsyncSessionStore,
    AsyncUserControlStore,
    Messenger,
)
from airdlivers.core.marketplace.admin_auth import AdminAuth
from airdlivers.core.marketplace.matching import MATCH_FIELDS
from airdlivers.core.marketplace.texts import esc, get_text
from airdlivers.core.marketplace.validators import sanitize_text
from airdlivers.infra.audit_log import audit_event
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)

# Commands and button tokens a suspended user may still use
ALLOWED_COMMANDS = frozenset({"/help"})
ALLOWED_TOKENS = frozenset({"flow:help"})

DEFAULT_TERMINATE_REASON = "Closed by moderator"
DEFAULT_SUSPEND_REASON = "Not provided"


def command_of(event: InboundEvent) -> str | None:
    if not event.is_command:
        return None
    return event.text.split()[0].lower()


def is_allow_listed(event: InboundEvent) -> bool:
    if event.kind is EventKind.BUTTON:
        return event.payload in ALLOWED_TOKENS
    return command_of(event) in ALLOWED_COMMANDS


class SuspensionGate:
    def __init__(
        self,
        *,
        controls: AsyncUserControlStore,
        sessions: AsyncSessionStore,
        requests: AsyncRequestStore,
        messenger: Messenger,
        auth: AdminAuth,
        moderation_chat_id: str | None,
        support_email: str,
    ) -> None:
        self.controls = controls
        self.sessions = sessions
        self.requests = requests
        self.messenger = messenger
        self.auth = auth
        self.moderation_chat_id = moderation_chat_id
        self.support_email = support_email

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    async def check(self, event: InboundEvent) -> bool:
        """True if the event may proceed. Refusals answer the actor and write nothing."""
        control = await self.controls.get(event.actor_id)
        if control is None:
            return True

        if control.suspended:
            if is_allow_listed(event):
                return True
            AppMetrics.gate_refused("suspended")
            logger.info(f"Suspended actor refused: actor={mask_id(event.actor_id)}, kind={event.kind.value}")
            await self.messenger.send_text(event.chat_id, self._suspended_text(control))
            return False

        if control.terminated:
            if command_of(event) == "/start":
                control.terminated = False
                control.terminated_reason = None
                control.updated_at = utcnow()
                await self.controls.upsert(control)
                return True
            if is_allow_listed(event):
                return True
            AppMetrics.gate_refused("terminated")
            await self.messenger.send_text(
                event.chat_id,
                get_text("terminated_notice", reason=esc(control.terminated_reason or DEFAULT_TERMINATE_REASON)),
            )
            return False

        return True

    def _suspended_text(self, control: UserControl) -> str:
        return get_text(
            "suspended",
            reason=esc(control.suspended_reason or DEFAULT_SUSPEND_REASON),
            support_email=self.support_email,
        )

    # ------------------------------------------------------------------
    # Moderator commands
    # ------------------------------------------------------------------

    async def suspend(self, actor_id: str, chat_id: str, user_id: str, reason: str) -> None:
        await self.auth.require_moderator(actor_id)
        reason = sanitize_text(reason, 300)

        control = await self.controls.get(user_id) or UserControl(user_id=user_id)
        control.suspended = True
        control.suspended_reason = reason
        control.updated_at = utcnow()
        await self.controls.upsert(control)

        # An in-progress form is discarded, not resumed after unsuspension
        await self.sessions.delete(user_id)

        audit_event("user.suspend", actor_id=actor_id, target_user=user_id, detail=reason)
        await self.messenger.send_text(user_id, self._suspended_text(control))
        await self._notify(chat_id, get_text("user_suspended_admin", user_id=esc(user_id), reason=esc(reason)))

    async def unsuspend(self, actor_id: str, chat_id: str, user_id: str) -> None:
        await self.auth.require_moderator(actor_id)

        control = await self.controls.get(user_id)
        if control is not None and control.suspended:
            control.suspended = False
            control.suspended_reason = None
            control.updated_at = utcnow()
            await self.controls.upsert(control)
            await self.messenger.send_text(user_id, get_text("user_unsuspended"))

        audit_event("user.unsuspend", actor_id=actor_id, target_user=user_id)
        await self._notify(chat_id, get_text("user_unsuspended_admin", user_id=esc(user_id)))

    async def terminate_chat(self, actor_id: str, chat_id: str, user_id: str, reason: str | None = None) -> None:
        """
        Dissolve the user's live match on both sides: statuses become
        Terminated, match fields are reset, both users get the terminated
        flag and a notice. Neither side is re-matched automatically.
        """
        await self.auth.require_moderator(actor_id)
        reason = sanitize_text(reason or "", 300) or DEFAULT_TERMINATE_REASON

        mine = await self.requests.find_one(owner_id=user_id, match_locked=True)
        if mine is None or not mine.matched_with:
            raise ConflictError(get_text("no_active_match", user_id=esc(user_id)))

        other = await self.requests.find_one(request_id=mine.matched_with)
        pair_ids = [mine.request_id] + ([other.request_id] if other is not None else [])

        await self.requests.update_fields(
            {"request_id": pair_ids, "match_locked": True},
            {"status": RequestStatus.TERMINATED, "moderator_note": reason},
            unset_fields=MATCH_FIELDS,
        )

        owners = [mine.owner_id] + ([other.owner_id] if other is not None else [])
        for owner in owners:
            control = await self.controls.get(owner) or UserControl(user_id=owner)
            control.terminated = True
            control.terminated_reason = reason
            control.updated_at = utcnow()
            await self.controls.upsert(control)
            await self.messenger.send_text(owner, get_text("terminated_notice", reason=esc(reason)))

        AppMetrics.moderation_action("terminate")
        audit_event(
            "match.terminate",
            actor_id=actor_id,
            request_id=mine.request_id,
            target_user=user_id,
            detail=reason,
        )
        await self._notify(chat_id, get_text(
            "terminated_admin",
            user_id=esc(user_id),
            a=mine.request_id,
            b=other.request_id if other is not None else "-",
            reason=esc(reason),
        ))

    async def _notify(self, chat_id: str, text: str) -> None:
        await self.messenger.send_text(self.moderation_chat_id or chat_id, text)
