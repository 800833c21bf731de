# airdlivers/core/marketplace/compatibility.py
"""
Sender/traveler compatibility.

``is_compatible`` is a pure function of two request snapshots. It takes
the pair in either order and gives the same answer.
"""
from __future__ import annotations

from airdlivers.core.engine.domain import Request, Role, SenderDetails, TravelerDetails
from airdlivers.core.marketplace.validators import normalize_airport

WEIGHT_TOLERANCE_KG = 2.0
DATE_TOLERANCE_DAYS = 1

# Float noise guard so 7.0 - 5.0 style differences compare exactly
_EPS = 1e-9


def _same_place(a: str, b: str) -> bool:
    left, right = normalize_airport(a), normalize_airport(b)
    return bool(left) and left == right


def details_compatible(
    sender: SenderDetails,
    traveler: TravelerDetails,
    *,
    weight_tolerance: float = WEIGHT_TOLERANCE_KG,
    date_tolerance_days: int = DATE_TOLERANCE_DAYS,
) -> bool:
    """Route, weight and date rules on the role payloads alone."""
    if not _same_place(sender.pickup, traveler.departure):
        return False
    if not _same_place(sender.destination, traveler.destination):
        return False

    if abs(sender.weight - traveler.available_weight) > weight_tolerance + _EPS:
        return False

    # Date-only comparison; time of day is ignored
    day_gap = abs((traveler.departure_time.date() - sender.send_date).days)
    return day_gap <= date_tolerance_days


def is_compatible(
    a: Request,
    b: Request,
    *,
    weight_tolerance: float = WEIGHT_TOLERANCE_KG,
    date_tolerance_days: int = DATE_TOLERANCE_DAYS,
) -> bool:
    """
    True when one request is a sender, the other a traveler, neither is
    locked, and their route, weight and dates line up.
    """
    if a.role is b.role:
        return False
    if a.match_locked or b.match_locked:
        return False

    sender, traveler = (a, b) if a.role is Role.SENDER else (b, a)
    return details_compatible(
        sender.details,
        traveler.details,
        weight_tolerance=weight_tolerance,
        date_tolerance_days=date_tolerance_days,
    )
