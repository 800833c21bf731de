# airdlivers/core/marketplace/submission.py
"""
Submission forms for senders and travelers.

The form is an explicit state machine: ``Step`` enumerates the states,
``FLOW_STEPS`` fixes their order per role, and ``STEP_SPECS`` is the
transition table. Each step accepts exactly one input kind; any other
(step, kind) pair takes the corrective branch and leaves the step
unchanged. Collected values live in the session in payload form, so the
finished session data *is* the request payload.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Optional

from airdlivers.core.engine import tokens
from airdlivers.core.engine.domain import (
    Action,
    EventKind,
    FlowKind,
    InboundEvent,
    Request,
    RequestStatus,
    Role,
    SessionState,
    details_from_payload,
)
from airdlivers.core.engine.errors import DuplicateRequestIdError
from airdlivers.core.engine.ports import AsyncRequestStore, AsyncSessionStore, Messenger
from airdlivers.core.marketplace import validators as v
from airdlivers.core.marketplace.choices import CATEGORIES, PROHIBITED_CATEGORY
from airdlivers.core.marketplace.texts import get_text, request_summary
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)


# ============================================================================
# STEPS
# ============================================================================

class Step(str, Enum):
    # shared
    NAME = "name"
    PHONE = "phone"
    EMAIL = "email"
    DESTINATION = "destination"
    NOTES = "notes"
    CONFIRM = "confirm"
    # sender
    PICKUP = "pickup"
    WEIGHT = "weight"
    CATEGORY = "category"
    SEND_DATE = "send_date"
    ARRIVAL_DATE = "arrival_date"
    PACKAGE_PHOTO = "package_photo"
    SELFIE_ID = "selfie_id"
    # traveler
    DEPARTURE = "departure"
    DEPARTURE_COUNTRY = "departure_country"
    ARRIVAL_COUNTRY = "arrival_country"
    CAPACITY = "available_weight"
    PASSPORT_NUMBER = "passport_number"
    DEPARTURE_TIME = "departure_time"
    ARRIVAL_TIME = "arrival_time"
    PASSPORT_SELFIE = "passport_selfie"
    ITINERARY = "itinerary_photo"


FLOW_STEPS: dict[FlowKind, tuple[Step, ...]] = {
    FlowKind.SENDER: (
        Step.NAME, Step.PHONE, Step.EMAIL,
        Step.PICKUP, Step.DESTINATION,
        Step.WEIGHT, Step.CATEGORY,
        Step.SEND_DATE, Step.ARRIVAL_DATE,
        Step.PACKAGE_PHOTO, Step.SELFIE_ID,
        Step.NOTES, Step.CONFIRM,
    ),
    FlowKind.TRAVELER: (
        Step.NAME, Step.PHONE, Step.EMAIL,
        Step.DEPARTURE, Step.DEPARTURE_COUNTRY,
        Step.DESTINATION, Step.ARRIVAL_COUNTRY,
        Step.CAPACITY, Step.PASSPORT_NUMBER,
        Step.DEPARTURE_TIME, Step.ARRIVAL_TIME,
        Step.PASSPORT_SELFIE, Step.ITINERARY,
        Step.NOTES, Step.CONFIRM,
    ),
}

FLOW_ROLES: dict[FlowKind, Role] = {
    FlowKind.SENDER: Role.SENDER,
    FlowKind.TRAVELER: Role.TRAVELER,
}


# ============================================================================
# TRANSITION TABLE
# ============================================================================

@dataclass(frozen=True)
class FormContext:
    """What a parser may look at besides the raw input."""
    now: datetime
    data: dict[str, Any]
    max_weight_kg: float

    @property
    def today(self) -> date:
        return self.now.date()


Parser = Callable[[str, FormContext], Any]


@dataclass(frozen=True)
class StepSpec:
    kind: EventKind
    prompt: str  # text key
    error: str = ""  # text key for generic parse failures
    parse: Optional[Parser] = None


def _parse_weight(raw: str, ctx: FormContext) -> float:
    return v.parse_weight(raw, ctx.max_weight_kg)


def _parse_send_date(raw: str, ctx: FormContext) -> str:
    return v.parse_date(raw, ctx.today).isoformat()


def _parse_arrival_date(raw: str, ctx: FormContext) -> str:
    start = date.fromisoformat(ctx.data["send_date"])
    return v.parse_date(raw, ctx.today, not_before=start).isoformat()


def _parse_departure_time(raw: str, ctx: FormContext) -> str:
    return v.parse_datetime(raw, ctx.now).isoformat()


def _parse_arrival_time(raw: str, ctx: FormContext) -> str:
    start = datetime.fromisoformat(ctx.data["departure_time"])
    return v.parse_datetime(raw, ctx.now, not_before=start).isoformat()


def _text(fn: Callable[[str], Any]) -> Parser:
    return lambda raw, ctx: fn(raw)


_TEXT = EventKind.TEXT
_PHOTO = EventKind.PHOTO
_BUTTON = EventKind.BUTTON

_SHARED: dict[Step, StepSpec] = {
    Step.NAME: StepSpec(_TEXT, "ask_name", "err_name", _text(v.parse_name)),
    Step.PHONE: StepSpec(_TEXT, "ask_phone", "err_phone", _text(v.parse_phone)),
    Step.EMAIL: StepSpec(_TEXT, "ask_email", "err_email", _text(v.parse_email)),
    Step.NOTES: StepSpec(_TEXT, "ask_notes", "", _text(v.parse_notes)),
    Step.CONFIRM: StepSpec(_BUTTON, "confirm_yes"),
}

STEP_SPECS: dict[FlowKind, dict[Step, StepSpec]] = {
    FlowKind.SENDER: {
        **_SHARED,
        Step.PICKUP: StepSpec(_TEXT, "ask_pickup", "err_place", _text(v.parse_place)),
        Step.DESTINATION: StepSpec(_TEXT, "ask_destination", "err_place", _text(v.parse_place)),
        Step.WEIGHT: StepSpec(_TEXT, "ask_weight", "err_weight", _parse_weight),
        Step.CATEGORY: StepSpec(_BUTTON, "ask_category"),
        Step.SEND_DATE: StepSpec(_TEXT, "ask_send_date", "err_date_format", _parse_send_date),
        Step.ARRIVAL_DATE: StepSpec(_TEXT, "ask_arrival_date", "err_date_format", _parse_arrival_date),
        Step.PACKAGE_PHOTO: StepSpec(_PHOTO, "ask_package_photo"),
        Step.SELFIE_ID: StepSpec(_PHOTO, "ask_selfie_id"),
    },
    FlowKind.TRAVELER: {
        **_SHARED,
        Step.DEPARTURE: StepSpec(_TEXT, "ask_departure", "err_place", _text(v.parse_place)),
        Step.DEPARTURE_COUNTRY: StepSpec(_TEXT, "ask_departure_country", "err_place", _text(v.parse_place)),
        Step.DESTINATION: StepSpec(_TEXT, "ask_traveler_destination", "err_place", _text(v.parse_place)),
        Step.ARRIVAL_COUNTRY: StepSpec(_TEXT, "ask_arrival_country", "err_place", _text(v.parse_place)),
        Step.CAPACITY: StepSpec(_TEXT, "ask_capacity", "err_weight", _parse_weight),
        Step.PASSPORT_NUMBER: StepSpec(
            _TEXT, "ask_passport_number", "err_passport_number", _text(v.parse_passport_number)
        ),
        Step.DEPARTURE_TIME: StepSpec(_TEXT, "ask_departure_time", "err_datetime_format", _parse_departure_time),
        Step.ARRIVAL_TIME: StepSpec(_TEXT, "ask_arrival_time", "err_datetime_format", _parse_arrival_time),
        Step.PASSPORT_SELFIE: StepSpec(_PHOTO, "ask_passport_selfie"),
        Step.ITINERARY: StepSpec(_PHOTO, "ask_itinerary"),
    },
}

# Date parser reasons that get their own message
_DATE_ERRORS = {
    "date in the past": "err_date_past",
    "date before start": "err_arrival_before",
}

_WRONG_KIND = {
    EventKind.TEXT: "err_expect_text",
    EventKind.PHOTO: "err_expect_photo",
    EventKind.BUTTON: "err_expect_button",
}


def next_step(flow: FlowKind, step: Step) -> Optional[Step]:
    order = FLOW_STEPS[flow]
    idx = order.index(step)
    return order[idx + 1] if idx + 1 < len(order) else None


def make_request_id(role: Role, now: datetime) -> str:
    """Role prefix + YYMMDDHHMMSS + milliseconds, e.g. ``snd260115093012123``."""
    return f"{role.prefix}{now.strftime('%y%m%d%H%M%S')}{now.microsecond // 1000:03d}"


def category_keyboard() -> list[list[Action]]:
    items = [Action(label, tokens.category(key)) for key, label in CATEGORIES.items()]
    return [items[i:i + 2] for i in range(0, len(items), 2)]


def confirm_keyboard() -> list[list[Action]]:
    return [
        [Action(get_text("confirm_yes"), tokens.submit(True))],
        [Action(get_text("confirm_no"), tokens.submit(False))],
    ]


# ============================================================================
# FLOW SERVICE
# ============================================================================

class SubmissionFlow:
    """
    Drives one actor through a sender or traveler form.

    Sessions come from an injected store keyed by actor id: created on
    start, deleted on completion, cancel, abort, or expiry.
    """

    def __init__(
        self,
        *,
        sessions: AsyncSessionStore,
        requests: AsyncRequestStore,
        messenger: Messenger,
        announce: Callable[[Request], Any],
        clock: Callable[[], datetime],
        max_weight_kg: float = 10.0,
        session_ttl_seconds: int = 86400,
    ) -> None:
        self.sessions = sessions
        self.requests = requests
        self.messenger = messenger
        self.announce = announce
        self.clock = clock
        self.max_weight_kg = max_weight_kg
        self.session_ttl_seconds = session_ttl_seconds

    # ----------------------------------------------------------------------
    # Session lifecycle
    # ----------------------------------------------------------------------

    async def load(self, actor_id: str) -> Optional[SessionState]:
        """Return the actor's live session, discarding it if it expired."""
        session = await self.sessions.get(actor_id)
        if session is None:
            return None
        if session.updated_at is not None:
            age = (self.clock() - session.updated_at).total_seconds()
            if age > self.session_ttl_seconds:
                logger.info(f"Session expired: actor={mask_id(actor_id)}, step={session.step}")
                await self.sessions.delete(actor_id)
                return None
        return session

    async def start(self, actor_id: str, flow: FlowKind) -> None:
        first = FLOW_STEPS[flow][0]
        await self.sessions.upsert(SessionState(actor_id=actor_id, flow=flow, step=first.value))
        await self._prompt(actor_id, flow, first)

    async def discard(self, actor_id: str) -> None:
        await self.sessions.delete(actor_id)

    # ----------------------------------------------------------------------
    # Input handling
    # ----------------------------------------------------------------------

    async def handle(self, session: SessionState, event: InboundEvent) -> None:
        """Feed one event to the form; wrong input kinds re-prompt the same step."""
        flow = session.flow
        step = Step(session.step)
        spec = STEP_SPECS[flow][step]

        if event.kind is not spec.kind:
            await self.messenger.send_text(event.chat_id, get_text(_WRONG_KIND[spec.kind]))
            return

        if spec.kind is EventKind.BUTTON:
            await self._handle_button(session, step, event)
            return

        if spec.kind is EventKind.PHOTO:
            value: Any = event.payload
        else:
            ctx = FormContext(now=self.clock(), data=session.data, max_weight_kg=self.max_weight_kg)
            try:
                value = spec.parse(event.payload, ctx)
            except ValueError as exc:
                key = _DATE_ERRORS.get(str(exc), spec.error)
                await self.messenger.send_text(event.chat_id, get_text(key, max_kg=self.max_weight_kg))
                return

        session.data[step.value] = value
        await self._advance(session, step, event.chat_id)

    async def _handle_button(self, session: SessionState, step: Step, event: InboundEvent) -> None:
        try:
            token = tokens.parse(event.payload)
        except tokens.TokenError:
            token = None

        if step is Step.CATEGORY and token is not None and token.domain == "cat":
            category = token.action
            if category not in CATEGORIES:
                await self.messenger.send_text(event.chat_id, get_text("err_expect_button"))
                return
            if category == PROHIBITED_CATEGORY:
                await self.sessions.delete(session.actor_id)
                AppMetrics.submission_aborted(session.flow.value, "prohibited")
                logger.info(f"Sender form aborted (prohibited category): actor={mask_id(session.actor_id)}")
                await self.messenger.send_text(event.chat_id, get_text("prohibited_abort"))
                return
            session.data[Step.CATEGORY.value] = category
            await self._advance(session, step, event.chat_id)
            return

        if step is Step.CONFIRM and token is not None and token.domain == "submit":
            if token.action == "yes":
                await self._complete(session, event.chat_id)
            else:
                await self.sessions.delete(session.actor_id)
                AppMetrics.submission_aborted(session.flow.value, "cancelled")
                await self.messenger.send_text(event.chat_id, get_text("cancelled"))
            return

        await self.messenger.send_text(event.chat_id, get_text("err_expect_button"))

    async def _advance(self, session: SessionState, step: Step, chat_id: str) -> None:
        nxt = next_step(session.flow, step)
        session.step = nxt.value
        await self.sessions.upsert(session)
        if nxt is Step.CONFIRM:
            await self._show_summary(session, chat_id)
        else:
            await self._prompt(chat_id, session.flow, nxt)

    async def _prompt(self, chat_id: str, flow: FlowKind, step: Step) -> None:
        spec = STEP_SPECS[flow][step]
        text = get_text(spec.prompt, max_kg=self.max_weight_kg)
        if step is Step.CATEGORY:
            await self.messenger.send_with_actions(chat_id, text, category_keyboard())
        else:
            await self.messenger.send_text(chat_id, text)

    async def _show_summary(self, session: SessionState, chat_id: str) -> None:
        role = FLOW_ROLES[session.flow]
        preview = Request(
            request_id="(assigned on submit)",
            owner_id=session.actor_id,
            role=role,
            details=details_from_payload(role, session.data),
        )
        await self.messenger.send_with_actions(chat_id, request_summary(preview), confirm_keyboard())

    # ----------------------------------------------------------------------
    # Completion
    # ----------------------------------------------------------------------

    async def _complete(self, session: SessionState, chat_id: str) -> None:
        role = FLOW_ROLES[session.flow]
        details = details_from_payload(role, session.data)
        now = self.clock()

        request: Request | None = None
        for attempt in range(3):
            candidate_id = make_request_id(role, now + timedelta(milliseconds=attempt))
            request = Request(
                request_id=candidate_id,
                owner_id=session.actor_id,
                role=role,
                details=details,
                status=RequestStatus.PENDING,
            )
            try:
                await self.requests.insert(request)
                break
            except DuplicateRequestIdError:
                logger.warning(f"Request id collision, retrying: {candidate_id}")
        else:
            raise DuplicateRequestIdError(f"could not allocate request id for {role.value}")

        await self.sessions.delete(session.actor_id)
        AppMetrics.submission_created(role.value)
        logger.info(f"Request submitted: {request.request_id}, role={role.value}, owner={mask_id(session.actor_id)}")

        await self.messenger.send_text(chat_id, get_text("submitted", request_id=request.request_id))
        await self.announce(request)
