# airdlivers/core/marketplace/validators.py
"""
Input validators for the submission forms.

Pure functions: each parser either returns the normalized value or raises
:class:`ValueError` with a short reason. The submission flow turns that
into a corrective prompt for the same step.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

__all__ = [
    "norm", "sanitize_text",
    "is_valid_phone", "is_valid_email",
    "parse_name", "parse_phone", "parse_email", "parse_place",
    "parse_weight", "parse_date", "parse_datetime", "parse_notes",
    "parse_passport_number",
    "normalize_airport", "same_airport",
    "DATE_FORMAT", "DATETIME_FORMAT",
]


# ---------------------------------------------------------------------------
# Text normalisation helpers
# ---------------------------------------------------------------------------

_HTML_TAG_RE = re.compile(r"<[^>]{1,200}>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MULTI_SPACE_RE = re.compile(r"[ \t]{2,}")
_MAX_FIELD_LEN = 300


def norm(s: Optional[str]) -> str:
    """Strip whitespace from *s* (None-safe)."""
    return (s or "").strip()


def sanitize_text(s: Optional[str], max_length: int = _MAX_FIELD_LEN) -> str:
    """Strip HTML tags and control characters, collapse runs of spaces, cap length."""
    cleaned = _HTML_TAG_RE.sub("", s or "")
    cleaned = _CONTROL_RE.sub("", cleaned)
    cleaned = _MULTI_SPACE_RE.sub(" ", cleaned).strip()
    return cleaned[:max_length]


# ---------------------------------------------------------------------------
# Contact fields
# ---------------------------------------------------------------------------

_PHONE_RE = re.compile(r"^\+\d{8,15}$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_phone(s: Optional[str]) -> bool:
    return bool(_PHONE_RE.match(norm(s)))


def is_valid_email(s: Optional[str]) -> bool:
    return bool(_EMAIL_RE.match(norm(s)))


def parse_name(s: str) -> str:
    name = sanitize_text(s, 100)
    if len(name) < 2:
        raise ValueError("name too short")
    return name


def parse_phone(s: str) -> str:
    phone = norm(s)
    if not _PHONE_RE.match(phone):
        raise ValueError("invalid phone")
    return phone


def parse_email(s: str) -> str:
    email = norm(s)
    if not _EMAIL_RE.match(email):
        raise ValueError("invalid email")
    return email


def parse_place(s: str) -> str:
    """Airport or country name: any non-empty text."""
    place = sanitize_text(s, 100)
    if len(place) < 2:
        raise ValueError("place too short")
    return place


def parse_passport_number(s: str) -> str:
    value = sanitize_text(s, 20).upper()
    if not re.fullmatch(r"[A-Z0-9]{5,20}", value):
        raise ValueError("invalid passport number")
    return value


def parse_notes(s: str) -> str:
    """Free-text notes; ``none`` (any case) means no notes."""
    notes = sanitize_text(s, 500)
    if notes.lower() == "none":
        return ""
    return notes


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def parse_weight(s: str, max_kg: float = 10.0) -> float:
    """Parse a weight in kg: 0 < weight <= max_kg. Out-of-range values are rejected, never clamped."""
    raw = norm(s).lower().removesuffix("kg").strip().replace(",", ".")
    try:
        weight = float(raw)
    except ValueError:
        raise ValueError("not a number")
    if weight != weight or weight <= 0:  # NaN or non-positive
        raise ValueError("weight must be positive")
    if weight > max_kg:
        raise ValueError("weight above maximum")
    return weight


# ---------------------------------------------------------------------------
# Dates (strict formats, no auto-correction)
# ---------------------------------------------------------------------------

DATE_FORMAT = "%d-%m-%Y"        # DD-MM-YYYY
DATETIME_FORMAT = "%d-%m-%y %H:%M"  # DD-MM-YY HH:mm

_DATE_RE = re.compile(r"^\d{2}-\d{2}-\d{4}$")
_DATETIME_RE = re.compile(r"^\d{2}-\d{2}-\d{2} \d{2}:\d{2}$")


def parse_date(s: str, today: date, not_before: Optional[date] = None) -> date:
    """
    Parse ``DD-MM-YYYY``.

    Rejects wrong formats, impossible dates (31-02-2026), past dates, and
    dates before *not_before*.
    """
    raw = norm(s)
    if not _DATE_RE.match(raw):
        raise ValueError("wrong format")
    try:
        value = datetime.strptime(raw, DATE_FORMAT).date()
    except ValueError:
        raise ValueError("impossible date")
    if value < today:
        raise ValueError("date in the past")
    if not_before is not None and value < not_before:
        raise ValueError("date before start")
    return value


def parse_datetime(s: str, now: datetime, not_before: Optional[datetime] = None) -> datetime:
    """
    Parse ``DD-MM-YY HH:mm`` (naive, local time).

    Rejects wrong formats, impossible values, moments before today, and
    moments before *not_before*.
    """
    raw = norm(s)
    if not _DATETIME_RE.match(raw):
        raise ValueError("wrong format")
    try:
        value = datetime.strptime(raw, DATETIME_FORMAT)
    except ValueError:
        raise ValueError("impossible date")
    if value.date() < now.date():
        raise ValueError("date in the past")
    if not_before is not None and value < not_before:
        raise ValueError("date before start")
    return value


# ---------------------------------------------------------------------------
# Airports
# ---------------------------------------------------------------------------

_AIRPORT_NOISE = {"INTERNATIONAL", "INTL", "AIRPORT"}


def normalize_airport(name: Optional[str]) -> str:
    """Uppercase, drop the words INTERNATIONAL/INTL/AIRPORT, collapse whitespace."""
    words = norm(name).upper().split()
    return " ".join(w for w in words if w not in _AIRPORT_NOISE)


def same_airport(a: Optional[str], b: Optional[str]) -> bool:
    """Exact comparison of normalized names; no fuzzy matching, no aliases."""
    return normalize_airport(a) == normalize_airport(b)
