# airdlivers/core/marketplace/moderation.py
"""
Moderation gate.

Status transitions:

    Pending -> Approved | Rejected
    Pending -> VisaRequested -> VisaUploaded -> Approved | Rejected   (travelers)

Every write is conditional on the status that was read, so two moderators
pressing buttons at once cannot both apply. Approval hands the request to
the matching service; rejection clears every match field that could
reference the request.
"""
from __future__ import annotations

from airdlivers.core.engine import tokens
from airdlivers.core.engine.domain import Action, Request, RequestStatus, Role, TravelerDetails
from airdlivers.core.engine.errors import ConflictError, StaleReferenceError
from airdlivers.core.engine.ports import AsyncRequestStore, Messenger
from airdlivers.core.marketplace.admin_auth import AdminAuth
from airdlivers.core.marketplace.choices import REJECT_REASON_OTHER, REJECT_REASONS
from airdlivers.core.marketplace.matching import MATCH_FIELDS, MatchingService
from airdlivers.core.marketplace.texts import esc, get_text, request_summary
from airdlivers.core.marketplace.validators import sanitize_text
from airdlivers.infra.audit_log import audit_event
from airdlivers.infra.logging_config import get_logger
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)

APPROVABLE = (RequestStatus.PENDING, RequestStatus.VISA_UPLOADED)


def moderation_actions(request: Request) -> list[list[Action]]:
    """Buttons a moderator gets for a request in its current status."""
    rid = request.request_id
    if request.status not in APPROVABLE:
        return []
    rows = [[
        Action(get_text("btn_approve"), tokens.moderate("approve", rid)),
        Action(get_text("btn_reject"), tokens.moderate("reject", rid)),
    ]]
    if request.role is Role.TRAVELER and request.status is RequestStatus.PENDING:
        rows.append([Action(get_text("btn_visa"), tokens.moderate("visa", rid))])
    return rows


def evidence_photos(request: Request) -> list[tuple[str, str]]:
    """(photo handle, caption) pairs for the moderation channel."""
    d = request.details
    if isinstance(d, TravelerDetails):
        photos = [(d.passport_selfie, "Passport selfie"), (d.itinerary_photo, "Itinerary")]
        if d.visa_photo:
            photos.append((d.visa_photo, "Visa"))
    else:
        photos = [(d.package_photo, "Package"), (d.selfie_id, "Selfie with ID")]
    return [(ref, f"{caption}: {request.request_id}") for ref, caption in photos if ref]


class ModerationGate:
    def __init__(
        self,
        *,
        requests: AsyncRequestStore,
        messenger: Messenger,
        auth: AdminAuth,
        matching: MatchingService,
        moderation_chat_id: str | None,
    ) -> None:
        self.requests = requests
        self.messenger = messenger
        self.auth = auth
        self.matching = matching
        self.moderation_chat_id = moderation_chat_id

    async def _notify_moderators(self, text: str, fallback_chat: str | None = None) -> None:
        target = self.moderation_chat_id or fallback_chat
        if target:
            await self.messenger.send_text(target, text)

    async def _load(self, request_id: str) -> Request:
        request = await self.requests.find_one(request_id=request_id)
        if request is None:
            raise StaleReferenceError(get_text("mod_not_found"))
        return request

    # ------------------------------------------------------------------
    # New submissions
    # ------------------------------------------------------------------

    async def announce(self, request: Request) -> None:
        """Post a new submission (summary, evidence, actions) to the moderation channel."""
        if not self.moderation_chat_id:
            logger.warning(f"No moderation chat configured; {request.request_id} not announced")
            return
        for ref, caption in evidence_photos(request):
            await self.messenger.send_photo(self.moderation_chat_id, ref, caption)
        text = get_text("mod_new", role=request.role.value, summary=request_summary(request))
        await self.messenger.send_with_actions(self.moderation_chat_id, text, moderation_actions(request))

    async def list_pending(self, actor_id: str, chat_id: str) -> int:
        await self.auth.require_moderator(actor_id)
        waiting = await self.requests.find_many(status=list(APPROVABLE))
        if not waiting:
            await self.messenger.send_text(chat_id, get_text("mod_pending_empty"))
            return 0
        for request in sorted(waiting, key=lambda r: r.created_at):
            await self.messenger.send_with_actions(chat_id, request_summary(request), moderation_actions(request))
        return len(waiting)

    # ------------------------------------------------------------------
    # Approve
    # ------------------------------------------------------------------

    async def approve(self, actor_id: str, chat_id: str, request_id: str) -> None:
        await self.auth.require_moderator(actor_id)
        request = await self._load(request_id)
        self._check_approvable(request)

        matched = await self.requests.update_fields(
            {"request_id": request_id, "status": request.status},
            {"status": RequestStatus.APPROVED, "moderator_note": "Approved"},
        )
        if matched == 0:
            # Someone else decided first
            self._check_approvable(await self._load(request_id))
            raise ConflictError(get_text("mod_already", request_id=request_id, status=request.status.value))

        request.status = RequestStatus.APPROVED
        request.moderator_note = "Approved"
        AppMetrics.moderation_action("approve")
        audit_event("request.approve", actor_id=actor_id, request_id=request_id)
        logger.info(f"Request approved: {request_id}")

        await self.messenger.send_text(request.owner_id, get_text("user_approved", request_id=request_id))
        await self._notify_moderators(
            get_text("mod_done", icon="✅", request_id=request_id, verb="approved", moderator=esc(actor_id)),
            chat_id,
        )
        await self.matching.offer_candidates(request)

    @staticmethod
    def _check_approvable(request: Request) -> None:
        rid, status = request.request_id, request.status
        if status in (RequestStatus.APPROVED, RequestStatus.REJECTED):
            raise ConflictError(get_text("mod_already", request_id=rid, status=status.value))
        if status not in APPROVABLE:
            raise ConflictError(get_text("mod_not_allowed", request_id=rid, verb="approved", status=status.value))

    # ------------------------------------------------------------------
    # Reject
    # ------------------------------------------------------------------

    async def begin_reject(self, actor_id: str, chat_id: str, request_id: str) -> None:
        """Show the rejection reasons for a request."""
        await self.auth.require_moderator(actor_id)
        request = await self._load(request_id)
        if request.status is RequestStatus.REJECTED:
            raise ConflictError(get_text("mod_already", request_id=request_id, status=request.status.value))

        rows = [
            [Action(text, tokens.reject_reason(request_id, key))]
            for key, text in REJECT_REASONS.items()
        ]
        rows.append([Action(get_text("btn_reason_other"), tokens.reject_reason(request_id, REJECT_REASON_OTHER))])
        await self.messenger.send_with_actions(chat_id, get_text("mod_choose_reason", request_id=request_id), rows)

    async def reject_with_reason(self, actor_id: str, chat_id: str, request_id: str, reason_key: str) -> None:
        await self.auth.require_moderator(actor_id)
        if reason_key == REJECT_REASON_OTHER:
            await self._load(request_id)
            await self.auth.await_reason(actor_id, request_id)
            await self.messenger.send_text(chat_id, get_text("mod_type_reason", request_id=request_id))
            return

        reason = REJECT_REASONS.get(reason_key)
        if reason is None:
            raise ConflictError(get_text("unknown_action"))
        await self.reject(actor_id, chat_id, request_id, reason)

    async def reject(self, actor_id: str, chat_id: str, request_id: str, reason: str) -> None:
        """
        Reject a request with a reason and clear every match reference to it:
        its own match fields, a locked counterpart, and other requests pending on it.
        """
        await self.auth.require_moderator(actor_id)
        reason = sanitize_text(reason, 300) or "No reason given"
        request = await self._load(request_id)
        if request.status is RequestStatus.REJECTED:
            raise ConflictError(get_text("mod_already", request_id=request_id, status=request.status.value))

        matched = await self.requests.update_fields(
            {"request_id": request_id, "status": request.status},
            {"status": RequestStatus.REJECTED, "moderator_note": reason},
            unset_fields=MATCH_FIELDS,
        )
        if matched == 0:
            raise ConflictError(get_text("mod_already", request_id=request_id, status="changed"))

        AppMetrics.moderation_action("reject")
        audit_event("request.reject", actor_id=actor_id, request_id=request_id, detail=reason)
        logger.info(f"Request rejected: {request_id}")

        await self._release_counterparts(request_id)
        await self.matching.clear_pending_on(request_id)

        await self.messenger.send_text(
            request.owner_id, get_text("user_rejected", request_id=request_id, reason=esc(reason))
        )
        await self._notify_moderators(
            get_text("mod_done", icon="❌", request_id=request_id, verb="rejected", moderator=esc(actor_id)),
            chat_id,
        )

    async def _release_counterparts(self, request_id: str) -> None:
        """Unlock whatever is still locked to a rejected request."""
        partners = await self.requests.find_many(matched_with=request_id)
        if not partners:
            return
        await self.requests.update_fields({"matched_with": request_id}, unset_fields=MATCH_FIELDS)
        for other in partners:
            await self.messenger.send_text(
                other.owner_id, get_text("match_dissolved", request_id=other.request_id)
            )

    # ------------------------------------------------------------------
    # Visa
    # ------------------------------------------------------------------

    async def request_visa(self, actor_id: str, chat_id: str, request_id: str) -> None:
        await self.auth.require_moderator(actor_id)
        request = await self._load(request_id)
        if request.role is not Role.TRAVELER or request.status is not RequestStatus.PENDING:
            raise ConflictError(get_text(
                "mod_not_allowed", request_id=request_id, verb="sent a visa request", status=request.status.value,
            ))

        matched = await self.requests.update_fields(
            {"request_id": request_id, "status": RequestStatus.PENDING},
            {"status": RequestStatus.VISA_REQUESTED, "moderator_note": "Visa requested"},
        )
        if matched == 0:
            raise ConflictError(get_text("mod_already", request_id=request_id, status="changed"))

        AppMetrics.moderation_action("visa_request")
        audit_event("request.visa_request", actor_id=actor_id, request_id=request_id)

        await self.messenger.send_text(request.owner_id, get_text("user_visa_requested", request_id=request_id))
        await self._notify_moderators(
            get_text("mod_done", icon="🛂", request_id=request_id, verb="visa requested", moderator=esc(actor_id)),
            chat_id,
        )

    async def upload_visa(self, actor_id: str, chat_id: str, photo_ref: str) -> bool:
        """
        Store a photo as the visa of the actor's VisaRequested request.

        Returns False when the actor has no request waiting for a visa.
        """
        request = await self.requests.find_one(
            owner_id=actor_id, role=Role.TRAVELER, status=RequestStatus.VISA_REQUESTED
        )
        if request is None:
            return False

        details = request.details
        details.visa_photo = photo_ref
        matched = await self.requests.update_fields(
            {"request_id": request.request_id, "status": RequestStatus.VISA_REQUESTED},
            {"status": RequestStatus.VISA_UPLOADED, "details": details},
        )
        if matched == 0:
            return False

        request.status = RequestStatus.VISA_UPLOADED
        logger.info(f"Visa uploaded: {request.request_id}")
        await self.messenger.send_text(chat_id, get_text("user_visa_received"))

        if self.moderation_chat_id:
            await self.messenger.send_photo(
                self.moderation_chat_id, photo_ref, f"Visa: {request.request_id}"
            )
            await self.messenger.send_with_actions(
                self.moderation_chat_id,
                get_text("mod_visa_uploaded", request_id=request.request_id),
                moderation_actions(request),
            )
        return True
