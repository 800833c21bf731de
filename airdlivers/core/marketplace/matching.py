# airdlivers/core/marketplace/matching.py
"""
Matching & confirmation protocol.

1. When a request is approved, every Approved, unlocked, compatible
   request of the opposite role is offered to both sides.
2. A first confirmation records ``pending_match_with`` on the confirming
   side (conditional write) and re-offers the pair to the other side.
3. A confirmation that finds the other side already pending on it locks
   both rows with one atomic store call (``lock_pair``); of two racing
   attempts at most one succeeds.
4. A lock clears every third-party pending that pointed at either side.

A pending that points at a request which is no longer a candidate is
stale and discarded the next time its owner confirms something.
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable

from airdlivers.core.engine import tokens
from airdlivers.core.engine.domain import Action, Request, RequestStatus, utcnow
from airdlivers.core.engine.errors import ConflictError, NotAuthorizedError, StaleReferenceError
from airdlivers.core.engine.ports import AsyncRequestStore, Messenger
from airdlivers.core.marketplace.compatibility import (
    DATE_TOLERANCE_DAYS,
    WEIGHT_TOLERANCE_KG,
    is_compatible,
)
from airdlivers.core.marketplace.texts import get_text, offer_card
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)

# Fields reset whenever a request leaves a match
MATCH_FIELDS = ("match_locked", "matched_with", "pending_match_with", "match_finalized_at")


class MatchingService:
    def __init__(
        self,
        *,
        requests: AsyncRequestStore,
        messenger: Messenger,
        moderation_chat_id: str | None,
        weight_tolerance_kg: float = WEIGHT_TOLERANCE_KG,
        date_tolerance_days: int = DATE_TOLERANCE_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.requests = requests
        self.messenger = messenger
        self.moderation_chat_id = moderation_chat_id
        self.weight_tolerance_kg = weight_tolerance_kg
        self.date_tolerance_days = date_tolerance_days
        self.clock = clock

    def compatible(self, a: Request, b: Request) -> bool:
        return is_compatible(
            a, b,
            weight_tolerance=self.weight_tolerance_kg,
            date_tolerance_days=self.date_tolerance_days,
        )

    # ------------------------------------------------------------------
    # Discovery and offers
    # ------------------------------------------------------------------

    async def find_candidates(self, request: Request) -> list[Request]:
        """Full scan of Approved, unlocked requests of the opposite role."""
        pool = await self.requests.find_many(
            role=request.role.opposite,
            status=RequestStatus.APPROVED,
            match_locked=False,
        )
        return [
            c for c in pool
            if c.owner_id != request.owner_id and self.compatible(request, c)
        ]

    async def offer_candidates(self, request: Request) -> int:
        """Offer every compatible candidate to both sides. Returns the number of pairs offered."""
        if not request.is_match_candidate:
            return 0

        candidates = await self.find_candidates(request)
        for candidate in candidates:
            await self._send_offer(request, candidate)
            await self._send_offer(candidate, request)

        if candidates:
            AppMetrics.candidates_offered(len(candidates))
        logger.info(f"Matching for {request.request_id}: {len(candidates)} candidate(s)")
        return len(candidates)

    async def _send_offer(self, me: Request, other: Request, *, reciprocal: bool = False) -> None:
        key = "offer_reciprocal" if reciprocal else "offer"
        text = get_text(key, my_id=me.request_id, card=offer_card(other))
        actions = [[
            Action(get_text("btn_confirm_match"), tokens.match_confirm(me.request_id, other.request_id)),
            Action(get_text("btn_skip_match"), tokens.match_skip(me.request_id, other.request_id)),
        ]]
        await self.messenger.send_with_actions(me.owner_id, text, actions)

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def _own_request(self, actor_id: str, my_id: str) -> Request:
        me = await self.requests.find_one(request_id=my_id)
        if me is None or me.owner_id != actor_id:
            raise NotAuthorizedError(get_text("match_not_yours"))
        return me

    async def confirm(self, actor_id: str, my_id: str, other_id: str) -> None:
        me = await self._own_request(actor_id, my_id)

        if me.match_locked:
            raise ConflictError(get_text("match_already"))
        if me.status is not RequestStatus.APPROVED:
            raise StaleReferenceError(get_text("match_unavailable"))

        other = await self.requests.find_one(request_id=other_id)
        if other is None or not other.is_match_candidate or not self.compatible(me, other):
            AppMetrics.lock_conflict("unavailable")
            raise StaleReferenceError(get_text("match_unavailable"))

        already_pending = me.pending_match_with == other_id
        await self._drop_stale_pending(me, other_id)

        if other.pending_match_with == my_id:
            await self._lock(me, other)
            return

        # First confirmation; only applies if nothing changed since the read
        matched = await self.requests.update_fields(
            {
                "request_id": my_id,
                "status": RequestStatus.APPROVED,
                "match_locked": False,
                "pending_match_with": [None, other_id],
            },
            {"pending_match_with": other_id},
        )
        if matched == 0:
            fresh = await self.requests.find_one(request_id=my_id)
            if fresh is not None and fresh.match_locked:
                raise ConflictError(get_text("match_already"))
            raise ConflictError(get_text("match_busy"))

        logger.info(f"Match pending: {my_id} -> {other_id}")

        # The other side may have confirmed in the meantime
        other = await self.requests.find_one(request_id=other_id)
        if other is not None and other.is_match_candidate and other.pending_match_with == my_id:
            me.pending_match_with = other_id
            await self._lock(me, other)
            return

        await self.messenger.send_text(me.owner_id, get_text("wait_other"))
        if not already_pending and other is not None and other.is_match_candidate:
            await self._send_offer(other, me, reciprocal=True)

    async def _drop_stale_pending(self, me: Request, other_id: str) -> None:
        """
        Discard my pending on a third request if it can no longer lock with me:
        the target is gone, or it has since confirmed someone else. Refuse
        while it could still confirm me back.
        """
        current = me.pending_match_with
        if not current or current == other_id:
            return

        target = await self.requests.find_one(request_id=current)
        if (
            target is not None
            and target.is_match_candidate
            and target.pending_match_with in (None, me.request_id)
        ):
            AppMetrics.lock_conflict("busy")
            raise ConflictError(get_text("match_busy"))

        await self.requests.update_fields(
            {"request_id": me.request_id, "pending_match_with": current},
            unset_fields=("pending_match_with",),
        )
        me.pending_match_with = None
        logger.info(f"Stale pending discarded: {me.request_id} -> {current}")

    async def _lock(self, me: Request, other: Request) -> None:
        locked = await self.requests.lock_pair(me.request_id, other.request_id, self.clock())
        if not locked:
            AppMetrics.lock_conflict("lock_race")
            fresh = await self.requests.find_one(request_id=me.request_id)
            # Also covers a concurrent confirmation that locked this same pair and announced it
            if fresh is not None and fresh.match_locked:
                raise ConflictError(get_text("match_already"))
            raise StaleReferenceError(get_text("match_unavailable"))

        AppMetrics.match_locked()
        logger.info(f"Match locked: {me.request_id} <-> {other.request_id}")

        for side, counterpart in ((me, other), (other, me)):
            await self.messenger.send_text(
                side.owner_id,
                get_text("match_locked", my_id=side.request_id, other_id=counterpart.request_id),
            )

        if self.moderation_chat_id:
            await self.messenger.send_with_actions(
                self.moderation_chat_id,
                get_text("mod_match_locked", a=me.request_id, b=other.request_id),
                [
                    [Action(get_text("btn_terminate", user=mask_id(me.owner_id)), tokens.terminate(me.owner_id))],
                    [Action(get_text("btn_terminate", user=mask_id(other.owner_id)), tokens.terminate(other.owner_id))],
                ],
            )

        await self.clear_pending_on(me.request_id)
        await self.clear_pending_on(other.request_id)

    async def clear_pending_on(self, request_id: str) -> int:
        """Clear every pending confirmation pointing at ``request_id`` and tell the owners."""
        waiting = await self.requests.find_many(pending_match_with=request_id)
        cleared = 0
        for request in waiting:
            n = await self.requests.update_fields(
                {"request_id": request.request_id, "pending_match_with": request_id},
                unset_fields=("pending_match_with",),
            )
            if n:
                cleared += 1
                await self.messenger.send_text(
                    request.owner_id, get_text("candidate_gone", request_id=request.request_id)
                )
        return cleared

    # ------------------------------------------------------------------
    # Skip
    # ------------------------------------------------------------------

    async def skip(self, actor_id: str, my_id: str, other_id: str) -> None:
        """Dismiss one offer; withdraws my pending confirmation for that candidate if present."""
        me = await self._own_request(actor_id, my_id)
        if not me.match_locked and me.pending_match_with == other_id:
            await self.requests.update_fields(
                {"request_id": my_id, "pending_match_with": other_id, "match_locked": False},
                unset_fields=("pending_match_with",),
            )
            logger.info(f"Pending withdrawn: {my_id} -> {other_id}")
        await self.messenger.send_text(me.owner_id, get_text("match_skipped"))
