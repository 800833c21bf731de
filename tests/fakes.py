# tests/fakes.py
"""In-memory implementations of the core ports, plus request / event builders."""
from __future__ import annotations

import copy
import itertools
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from airdlivers.core.engine.domain import (
    AuthSession,
    EventKind,
    InboundEvent,
    Request,
    RequestStatus,
    Role,
    SenderDetails,
    SessionState,
    TravelerDetails,
    UserControl,
)
from airdlivers.core.engine.errors import DuplicateRequestIdError
from airdlivers.core.engine.use_cases import build_engine

NOW = datetime(2026, 1, 10, 9, 30, 0, 123000, tzinfo=timezone.utc)

SUPER_ADMIN = "admin-1"
MOD_CHAT = "mods"
ADMIN_PIN = "482913"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ============================================================================
# STORES
# ============================================================================

_UNSET_VALUES = {"match_locked": False}


def _field(request: Request, key: str) -> Any:
    if key == "phone":
        return request.details.phone
    return getattr(request, key)


def _matches(request: Request, filters: dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = _field(request, key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class FakeRequestStore:
    """Dict-backed request store with the same filter and update semantics as the SQL one."""

    def __init__(self):
        self.rows: dict[str, Request] = {}

    def add(self, *requests: Request) -> None:
        for request in requests:
            self.rows[request.request_id] = copy.deepcopy(request)

    def get(self, request_id: str) -> Optional[Request]:
        return self.rows.get(request_id)

    async def insert(self, request: Request) -> None:
        if request.request_id in self.rows:
            raise DuplicateRequestIdError(request.request_id)
        self.rows[request.request_id] = copy.deepcopy(request)

    async def find_one(self, **filters: Any) -> Optional[Request]:
        # Newest first, like ORDER BY created_at DESC LIMIT 1
        found = await self.find_many(**filters)
        return found[-1] if found else None

    async def find_many(self, **filters: Any) -> list[Request]:
        hits = [copy.deepcopy(r) for r in self.rows.values() if _matches(r, filters)]
        return sorted(hits, key=lambda r: r.created_at)

    async def update_fields(
        self,
        filters: dict[str, Any],
        set_fields: dict[str, Any] | None = None,
        unset_fields: Iterable[str] = (),
    ) -> int:
        if not filters:
            raise ValueError("update without filters")
        hits = [r for r in self.rows.values() if _matches(r, filters)]
        for row in hits:
            for key, value in (set_fields or {}).items():
                setattr(row, key, copy.deepcopy(value))
            for key in unset_fields:
                setattr(row, key, _UNSET_VALUES.get(key))
        return len(hits)

    async def lock_pair(self, my_id: str, other_id: str, locked_at: datetime) -> bool:
        me, other = self.rows.get(my_id), self.rows.get(other_id)
        if me is None or other is None:
            return False
        if not (me.is_match_candidate and other.is_match_candidate):
            return False
        if other.pending_match_with != my_id or me.pending_match_with not in (None, other_id):
            return False
        for row, partner in ((me, other_id), (other, my_id)):
            row.match_locked = True
            row.matched_with = partner
            row.pending_match_with = None
            row.match_finalized_at = locked_at
        return True


class FakeSessionStore:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.rows: dict[str, SessionState] = {}

    async def get(self, actor_id: str) -> Optional[SessionState]:
        state = self.rows.get(actor_id)
        return copy.deepcopy(state) if state is not None else None

    async def upsert(self, state: SessionState) -> None:
        stored = copy.deepcopy(state)
        stored.updated_at = self.clock()
        self.rows[state.actor_id] = stored

    async def delete(self, actor_id: str) -> None:
        self.rows.pop(actor_id, None)

    async def cleanup_expired(self, ttl_seconds: int) -> int:
        cutoff = self.clock() - timedelta(seconds=ttl_seconds)
        expired = [k for k, s in self.rows.items() if s.updated_at < cutoff]
        for key in expired:
            del self.rows[key]
        return len(expired)


class FakeUserControlStore:
    def __init__(self):
        self.rows: dict[str, UserControl] = {}

    async def get(self, user_id: str) -> Optional[UserControl]:
        control = self.rows.get(user_id)
        return copy.deepcopy(control) if control is not None else None

    async def upsert(self, control: UserControl) -> None:
        self.rows[control.user_id] = copy.deepcopy(control)


class FakeAuthSessionStore:
    def __init__(self):
        self.rows: dict[str, AuthSession] = {}

    async def get(self, actor_id: str) -> Optional[AuthSession]:
        session = self.rows.get(actor_id)
        return copy.deepcopy(session) if session is not None else None

    async def upsert(self, session: AuthSession) -> None:
        self.rows[session.actor_id] = copy.deepcopy(session)

    async def delete(self, actor_id: str) -> None:
        self.rows.pop(actor_id, None)


class FakeInboundRepo:
    def __init__(self):
        self.seen: set[tuple[str, str]] = set()

    async def seen_or_mark(self, provider: str, event_id: str, actor_id: str) -> bool:
        key = (provider, event_id)
        if key in self.seen:
            return True
        self.seen.add(key)
        return False


# ============================================================================
# MESSENGER
# ============================================================================

@dataclass
class Sent:
    kind: str
    chat_id: str
    text: str
    tokens: list[str]


class RecordingMessenger:
    """Keeps every outbound message for assertions."""

    def __init__(self):
        self.sent: list[Sent] = []

    async def send_text(self, chat_id: str, text: str) -> None:
        self.sent.append(Sent("text", chat_id, text, []))

    async def send_photo(self, chat_id: str, photo_ref: str, caption: str | None = None) -> None:
        self.sent.append(Sent("photo", chat_id, caption or "", [photo_ref]))

    async def send_with_actions(self, chat_id: str, text: str, actions) -> None:
        self.sent.append(Sent("actions", chat_id, text, [a.token for row in actions for a in row]))

    def to(self, chat_id: str) -> list[Sent]:
        return [m for m in self.sent if m.chat_id == chat_id]

    def texts_to(self, chat_id: str) -> list[str]:
        return [m.text for m in self.to(chat_id)]

    def last_to(self, chat_id: str) -> Sent:
        messages = self.to(chat_id)
        assert messages, f"nothing was sent to {chat_id}"
        return messages[-1]

    def tokens_to(self, chat_id: str) -> list[str]:
        return [t for m in self.to(chat_id) if m.kind == "actions" for t in m.tokens]

    def clear(self) -> None:
        self.sent.clear()


# ============================================================================
# BUILDERS
# ============================================================================

def make_sender(
    request_id: str = "snd1",
    owner_id: str = "u-sender",
    *,
    pickup: str = "DEL",
    destination: str = "DXB",
    weight: float = 5.0,
    send_date: date = date(2026, 1, 20),
    phone: str = "+911234567890",
    status: RequestStatus = RequestStatus.APPROVED,
    **envelope: Any,
) -> Request:
    details = SenderDetails(
        name="Asha Rao",
        phone=phone,
        email="asha@example.com",
        pickup=pickup,
        destination=destination,
        weight=weight,
        category="Documents",
        send_date=send_date,
        arrival_date=send_date + timedelta(days=1),
        package_photo="file-package",
        selfie_id="file-selfie",
    )
    return Request(
        request_id=request_id, owner_id=owner_id, role=Role.SENDER,
        details=details, status=status, **envelope,
    )


def make_traveler(
    request_id: str = "trv1",
    owner_id: str = "u-traveler",
    *,
    departure: str = "DEL",
    destination: str = "DXB",
    available_weight: float = 6.0,
    departure_time: datetime = datetime(2026, 1, 20, 10, 0),
    phone: str = "+971501234567",
    status: RequestStatus = RequestStatus.APPROVED,
    **envelope: Any,
) -> Request:
    details = TravelerDetails(
        name="Ravi Menon",
        phone=phone,
        email="ravi@example.com",
        departure=departure,
        departure_country="India",
        destination=destination,
        arrival_country="UAE",
        available_weight=available_weight,
        passport_number="Z1234567",
        departure_time=departure_time,
        arrival_time=departure_time + timedelta(hours=4),
        passport_selfie="file-passport",
        itinerary_photo="file-itinerary",
    )
    return Request(
        request_id=request_id, owner_id=owner_id, role=Role.TRAVELER,
        details=details, status=status, **envelope,
    )


def lock(a: Request, b: Request) -> None:
    """Mark two request snapshots as matched with each other."""
    for row, partner in ((a, b), (b, a)):
        row.match_locked = True
        row.matched_with = partner.request_id
        row.pending_match_with = None
        row.match_finalized_at = NOW


_event_ids = itertools.count(1)


def text_event(actor_id: str, text: str, *, chat_id: str | None = None, event_id: str | None = None) -> InboundEvent:
    return InboundEvent(
        event_id=event_id or f"ev-{next(_event_ids)}",
        actor_id=actor_id,
        chat_id=chat_id or actor_id,
        kind=EventKind.TEXT,
        payload=text,
    )


def photo_event(actor_id: str, file_id: str, *, chat_id: str | None = None) -> InboundEvent:
    return InboundEvent(
        event_id=f"ev-{next(_event_ids)}",
        actor_id=actor_id,
        chat_id=chat_id or actor_id,
        kind=EventKind.PHOTO,
        payload=file_id,
    )


def button_event(actor_id: str, token: str, *, chat_id: str | None = None) -> InboundEvent:
    return InboundEvent(
        event_id=f"ev-{next(_event_ids)}",
        actor_id=actor_id,
        chat_id=chat_id or actor_id,
        kind=EventKind.BUTTON,
        payload=token,
    )


# ============================================================================
# WIRED ENGINE
# ============================================================================

class World:
    """A fully wired engine over in-memory stores."""

    def __init__(self, clock: FakeClock | None = None, **overrides: Any):
        self.clock = clock or FakeClock()
        self.requests = FakeRequestStore()
        self.sessions = FakeSessionStore(self.clock)
        self.controls = FakeUserControlStore()
        self.auth_sessions = FakeAuthSessionStore()
        self.inbound = FakeInboundRepo()
        self.messenger = overrides.pop("messenger", None) or RecordingMessenger()
        options = dict(
            moderation_chat_id=MOD_CHAT,
            super_admin_id=SUPER_ADMIN,
            admin_pin=ADMIN_PIN,
            support_email="help@example.com",
        )
        options.update(overrides)
        self.engine = build_engine(
            provider="test",
            requests=self.requests,
            sessions=self.sessions,
            controls=self.controls,
            auth_sessions=self.auth_sessions,
            inbound=self.inbound,
            messenger=self.messenger,
            clock=self.clock,
            **options,
        )

    async def text(self, actor_id: str, text: str) -> dict:
        return await self.engine.process_event(text_event(actor_id, text))

    async def photo(self, actor_id: str, file_id: str) -> dict:
        return await self.engine.process_event(photo_event(actor_id, file_id))

    async def press(self, actor_id: str, token: str) -> dict:
        return await self.engine.process_event(button_event(actor_id, token))


# ============================================================================
# FORM ANSWERS (kind, payload) for a complete sender / traveler form
# ============================================================================

SENDER_ANSWERS = [
    ("text", "Asha Rao"),
    ("text", "+911234567890"),
    ("text", "asha@example.com"),
    ("text", "Delhi Airport"),
    ("text", "Dubai"),
    ("text", "5"),
    ("button", "cat:Documents"),
    ("text", "20-01-2026"),
    ("text", "21-01-2026"),
    ("photo", "file-package"),
    ("photo", "file-selfie"),
    ("text", "None"),
]

# Same route as SENDER_ANSWERS once airport names are normalized
TRAVELER_ANSWERS = [
    ("text", "Ravi Menon"),
    ("text", "+971501234567"),
    ("text", "ravi@example.com"),
    ("text", "Delhi"),
    ("text", "India"),
    ("text", "Dubai International"),
    ("text", "UAE"),
    ("text", "6"),
    ("text", "z1234567"),
    ("text", "20-01-26 10:00"),
    ("text", "20-01-26 14:00"),
    ("photo", "file-passport"),
    ("photo", "file-itinerary"),
    ("text", "Window seat, fragile ok"),
]
