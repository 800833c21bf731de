# tests/test_domain.py
"""Tests for domain models"""
from datetime import date

import pytest

from airdlivers.core.engine.domain import (
    EventKind,
    InboundEvent,
    Request,
    RequestStatus,
    Role,
    SenderDetails,
    TravelerDetails,
    details_from_payload,
)

from fakes import make_sender, make_traveler


class TestRole:
    def test_prefix_and_opposite(self):
        assert Role.SENDER.prefix == "snd"
        assert Role.TRAVELER.prefix == "trv"
        assert Role.SENDER.opposite is Role.TRAVELER
        assert Role.TRAVELER.opposite is Role.SENDER


class TestRequest:
    def test_role_and_details_must_agree(self):
        traveler_details = make_traveler().details
        with pytest.raises(TypeError):
            Request(request_id="snd1", owner_id="u1", role=Role.SENDER, details=traveler_details)

    def test_defaults(self):
        request = make_sender(status=RequestStatus.PENDING)
        assert request.match_locked is False
        assert request.pending_match_with is None
        assert request.matched_with is None
        assert request.created_at is not None

    def test_match_candidate(self):
        assert make_sender().is_match_candidate
        assert not make_sender(status=RequestStatus.PENDING).is_match_candidate
        assert not make_sender(match_locked=True, matched_with="trv1").is_match_candidate

    def test_phone_comes_from_details(self):
        assert make_traveler(phone="+971500000000").phone == "+971500000000"


class TestPayloads:
    def test_sender_payload_uses_iso_dates(self):
        payload = make_sender().details.to_payload()
        assert payload["send_date"] == "2026-01-20"
        restored = details_from_payload(Role.SENDER, payload)
        assert isinstance(restored, SenderDetails)
        assert restored.send_date == date(2026, 1, 20)

    def test_traveler_payload_ignores_unknown_keys(self):
        payload = make_traveler().details.to_payload()
        payload["legacy_field"] = "ignored"
        restored = TravelerDetails.from_payload(payload)
        assert restored == make_traveler().details

    def test_visa_photo_is_optional(self):
        payload = make_traveler().details.to_payload()
        del payload["visa_photo"]
        assert TravelerDetails.from_payload(payload).visa_photo is None


class TestInboundEvent:
    def test_text_and_command(self):
        event = InboundEvent("e1", "u1", "u1", EventKind.TEXT, "  /start  ")
        assert event.is_command
        assert event.text == "/start"

    def test_photo_has_no_text(self):
        event = InboundEvent("e2", "u1", "u1", EventKind.PHOTO, "file-1")
        assert event.text == ""
        assert not event.is_command
