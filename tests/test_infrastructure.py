# tests/test_infrastructure.py
"""Tests for infrastructure helpers: SQL filter rendering, rate limiting, metrics, log masking"""
import pytest

from airdlivers.core.engine.domain import RequestStatus, Role
from airdlivers.infra.logging_config import mask_id
from airdlivers.infra.metrics import get_metrics_collector, inc_counter
from airdlivers.infra.pg_request_repo_async import _build_where, _row_count
from airdlivers.infra.rate_limiter import InMemoryRateLimiter


# ============================================================================
# Request store filter rendering
# ============================================================================

class TestBuildWhere:
    def test_equality_and_enums(self):
        params = []
        where = _build_where({"role": Role.SENDER, "status": RequestStatus.APPROVED}, params)

        assert where == "role = $1 AND status = $2"
        assert params == ["sender", "Approved"]

    def test_none_is_null(self):
        params = []
        assert _build_where({"matched_with": None}, params) == "matched_with IS NULL"
        assert params == []

    def test_list_with_none(self):
        params = []
        where = _build_where({"pending_match_with": [None, "trv1"]}, params)

        assert where == "(pending_match_with IS NULL OR pending_match_with = ANY($1))"
        assert params == [["trv1"]]

    def test_status_list(self):
        params = ["existing"]
        where = _build_where({"status": [RequestStatus.PENDING, RequestStatus.VISA_UPLOADED]}, params)

        assert where == "status = ANY($2)"
        assert params[1] == ["Pending", "VisaUploaded"]

    def test_phone_reads_payload(self):
        params = []
        assert _build_where({"phone": "+911234567890"}, params) == "payload->>'phone' = $1"

    def test_empty_filters(self):
        assert _build_where({}, []) == "TRUE"

    def test_unknown_filter_rejected(self):
        with pytest.raises(ValueError):
            _build_where({"payload": "x"}, [])


class TestRowCount:
    def test_parses_status(self):
        assert _row_count("UPDATE 2") == 2
        assert _row_count("UPDATE 0") == 0

    def test_empty(self):
        assert _row_count(None) == 0
        assert _row_count("") == 0


# ============================================================================
# Rate limiter
# ============================================================================

class TestInMemoryRateLimiter:
    def setup_method(self):
        self.now = 1000.0
        self.limiter = InMemoryRateLimiter(max_requests=2, window_seconds=60, clock=lambda: self.now)

    def test_limit_and_retry_after(self):
        assert self.limiter.is_allowed("chat-1") == (True, None)
        assert self.limiter.is_allowed("chat-1") == (True, None)

        allowed, retry_after = self.limiter.is_allowed("chat-1")
        assert not allowed
        assert retry_after == 61

    def test_keys_are_independent(self):
        self.limiter.is_allowed("chat-1")
        self.limiter.is_allowed("chat-1")
        assert self.limiter.is_allowed("chat-2") == (True, None)

    def test_window_slides(self):
        self.limiter.is_allowed("chat-1")
        self.limiter.is_allowed("chat-1")
        self.now += 61
        assert self.limiter.is_allowed("chat-1") == (True, None)

    def test_cleanup(self):
        self.limiter.is_allowed("chat-1")
        self.now += 7200
        self.limiter.is_allowed("chat-2")

        assert self.limiter.cleanup(max_age_seconds=3600) == 1
        assert self.limiter.cleanup(max_age_seconds=3600) == 0


# ============================================================================
# Metrics and logging helpers
# ============================================================================

class TestMetrics:
    def test_labelled_counter(self):
        inc_counter("matches_finalized_total")
        inc_counter("events_refused_total", reason="SuspendedError")
        inc_counter("events_refused_total", reason="SuspendedError")

        collector = get_metrics_collector()
        assert collector.get_counter("matches_finalized_total") == 1
        assert collector.get_counter("events_refused_total", reason="SuspendedError") == 2
        assert collector.get_counter("events_refused_total", reason="Other") == 0
        assert "events_refused_total{reason=SuspendedError}" in collector.get_metrics()["counters"]


class TestMaskId:
    def test_masks(self):
        assert mask_id("123456789") == "1234***"
        assert mask_id("42") == "4***"
        assert mask_id(None) == "-"
