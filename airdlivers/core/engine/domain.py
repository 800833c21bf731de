# airdlivers/core/engine/domain.py
from __future__ import annotations

from dataclasses import dataclass, field, fields, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Any, Dict, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# ENUMS
# ============================================================================

class Role(str, Enum):
    SENDER = "sender"
    TRAVELER = "traveler"

    @property
    def prefix(self) -> str:
        """Request id prefix for this role."""
        return "snd" if self is Role.SENDER else "trv"

    @property
    def opposite(self) -> "Role":
        return Role.TRAVELER if self is Role.SENDER else Role.SENDER


class RequestStatus(str, Enum):
    PENDING = "Pending"
    VISA_REQUESTED = "VisaRequested"
    VISA_UPLOADED = "VisaUploaded"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    TERMINATED = "Terminated"


class EventKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    BUTTON = "button"


class FlowKind(str, Enum):
    SENDER = "sender"
    TRAVELER = "traveler"
    TRACKING = "tracking"


# ============================================================================
# REQUEST PAYLOADS (role-specific)
# ============================================================================

@dataclass
class SenderDetails:
    name: str
    phone: str
    email: str
    pickup: str
    destination: str
    weight: float
    category: str
    send_date: date
    arrival_date: date
    package_photo: str
    selfie_id: str
    notes: str = ""

    def to_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data["send_date"] = self.send_date.isoformat()
        data["arrival_date"] = self.arrival_date.isoformat()
        return data

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "SenderDetails":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["send_date"] = date.fromisoformat(values["send_date"])
        values["arrival_date"] = date.fromisoformat(values["arrival_date"])
        values["weight"] = float(values["weight"])
        return cls(**values)


@dataclass
class TravelerDetails:
    name: str
    phone: str
    email: str
    departure: str
    departure_country: str
    destination: str
    arrival_country: str
    available_weight: float
    passport_number: str
    departure_time: datetime
    arrival_time: datetime
    passport_selfie: str
    itinerary_photo: str
    notes: str = ""
    visa_photo: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        data = asdict(self)
        data["departure_time"] = self.departure_time.isoformat()
        data["arrival_time"] = self.arrival_time.isoformat()
        return data

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "TravelerDetails":
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        values["departure_time"] = datetime.fromisoformat(values["departure_time"])
        values["arrival_time"] = datetime.fromisoformat(values["arrival_time"])
        values["available_weight"] = float(values["available_weight"])
        return cls(**values)


Details = Union[SenderDetails, TravelerDetails]


def details_from_payload(role: Role, data: Dict[str, Any]) -> Details:
    if role is Role.SENDER:
        return SenderDetails.from_payload(data)
    return TravelerDetails.from_payload(data)


# ============================================================================
# REQUEST (shared envelope + role payload)
# ============================================================================

@dataclass
class Request:
    """
    A sender's or traveler's persisted submission.

    Match fields obey: match_locked implies matched_with is set and
    pending_match_with is empty.
    """
    request_id: str
    owner_id: str
    role: Role
    details: Details
    status: RequestStatus = RequestStatus.PENDING
    moderator_note: Optional[str] = None
    match_locked: bool = False
    pending_match_with: Optional[str] = None
    matched_with: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: Optional[datetime] = None
    match_finalized_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        expected = SenderDetails if self.role is Role.SENDER else TravelerDetails
        if not isinstance(self.details, expected):
            raise TypeError(f"{self.role.value} request requires {expected.__name__}")

    @property
    def phone(self) -> str:
        return self.details.phone

    @property
    def is_match_candidate(self) -> bool:
        return self.status is RequestStatus.APPROVED and not self.match_locked


# ============================================================================
# PER-USER CONTROL AND MODERATOR AUTH
# ============================================================================

@dataclass
class UserControl:
    """Suspension / chat-termination flags for one user."""
    user_id: str
    suspended: bool = False
    suspended_reason: Optional[str] = None
    terminated: bool = False
    terminated_reason: Optional[str] = None
    updated_at: Optional[datetime] = None


@dataclass
class AuthSession:
    """Moderator login state, persisted so it survives restarts."""
    actor_id: str
    logged_in: bool = False
    awaiting_pin: bool = False
    awaiting_reason_for: Optional[str] = None
    logged_in_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# SUBMISSION SESSION
# ============================================================================

@dataclass
class SessionState:
    """In-progress form for one actor (sender, traveler or tracking)."""
    actor_id: str
    flow: FlowKind
    step: str
    data: Dict[str, Any] = field(default_factory=dict)

    # Populated from the store on load
    updated_at: Optional[datetime] = field(default=None, repr=False)


# ============================================================================
# INBOUND EVENTS AND OUTBOUND ACTIONS
# ============================================================================

@dataclass
class InboundEvent:
    """
    Normalized inbound event from the chat transport.

    ``payload`` is the text, the photo handle, or the button token.
    """
    event_id: str
    actor_id: str
    chat_id: str
    kind: EventKind
    payload: str
    sender_name: Optional[str] = None
    callback_id: Optional[str] = None  # Telegram callback_query id, answered by the transport

    @property
    def text(self) -> str:
        return self.payload.strip() if self.kind is EventKind.TEXT else ""

    @property
    def is_command(self) -> bool:
        return self.kind is EventKind.TEXT and self.payload.strip().startswith("/")


@dataclass(frozen=True)
class Action:
    """Inline button: label shown to the user, token echoed back on press."""
    label: str
    token: str
