# tests/test_matching.py
"""Tests for candidate offers and the two-sided confirmation lock"""
import asyncio
from datetime import timedelta

import pytest

from airdlivers.core.engine.domain import RequestStatus
from airdlivers.core.engine.errors import ConflictError, NotAuthorizedError, StaleReferenceError
from airdlivers.core.marketplace.matching import MatchingService
from airdlivers.core.marketplace.texts import get_text
from airdlivers.infra.metrics import get_metrics_collector

from fakes import (
    MOD_CHAT,
    NOW,
    FakeClock,
    FakeRequestStore,
    RecordingMessenger,
    lock,
    make_sender,
    make_traveler,
)


class MatchingTestBase:
    def setup_method(self):
        self.requests = FakeRequestStore()
        self.messenger = RecordingMessenger()
        self.matching = MatchingService(
            requests=self.requests,
            messenger=self.messenger,
            moderation_chat_id=MOD_CHAT,
            clock=FakeClock(),
        )

    def assert_locked(self, a: str, b: str):
        left, right = self.requests.get(a), self.requests.get(b)
        assert left.match_locked and right.match_locked
        assert left.matched_with == b
        assert right.matched_with == a
        assert left.pending_match_with is None
        assert right.pending_match_with is None
        assert left.match_finalized_at == NOW


class TestOffers(MatchingTestBase):
    @pytest.mark.asyncio
    async def test_all_compatible_candidates_are_offered(self):
        sender = make_sender()
        self.requests.add(
            sender,
            make_traveler("trv1", "u-t1"),
            make_traveler("trv2", "u-t2", available_weight=4.0),
            make_traveler("trv3", "u-t3", status=RequestStatus.PENDING),
            make_traveler("trv4", "u-t4", match_locked=True, matched_with="snd9"),
            make_traveler("trv5", "u-t5", departure="BOM"),
        )

        offered = await self.matching.offer_candidates(sender)

        assert offered == 2
        assert self.messenger.tokens_to("u-sender") == [
            "match:conf:snd1:trv1", "match:skip:snd1:trv1",
            "match:conf:snd1:trv2", "match:skip:snd1:trv2",
        ]
        for owner in ("u-t3", "u-t4", "u-t5"):
            assert self.messenger.to(owner) == []

    @pytest.mark.asyncio
    async def test_own_requests_are_not_offered(self):
        sender = make_sender(owner_id="same-user")
        self.requests.add(sender, make_traveler(owner_id="same-user"))

        assert await self.matching.offer_candidates(sender) == 0

    @pytest.mark.asyncio
    async def test_offer_hides_contact_details(self):
        sender, traveler = make_sender(), make_traveler()
        self.requests.add(sender, traveler)

        await self.matching.offer_candidates(sender)

        to_traveler = self.messenger.last_to("u-traveler").text
        to_sender = self.messenger.last_to("u-sender").text
        for secret in ("Asha Rao", "+911234567890", "asha@example.com"):
            assert secret not in to_traveler
        for secret in ("Ravi Menon", "+971501234567", "ravi@example.com", "Z1234567"):
            assert secret not in to_sender

    @pytest.mark.asyncio
    async def test_not_approved_is_not_offered(self):
        sender = make_sender(status=RequestStatus.PENDING)
        self.requests.add(sender, make_traveler())
        assert await self.matching.offer_candidates(sender) == 0


class TestConfirm(MatchingTestBase):
    @pytest.mark.asyncio
    async def test_mutual_confirmation_locks_the_pair(self):
        self.requests.add(make_sender(), make_traveler())

        await self.matching.confirm("u-sender", "snd1", "trv1")

        assert self.requests.get("snd1").pending_match_with == "trv1"
        assert self.requests.get("snd1").match_locked is False
        assert self.messenger.last_to("u-sender").text == get_text("wait_other")
        assert self.messenger.tokens_to("u-traveler") == ["match:conf:trv1:snd1", "match:skip:trv1:snd1"]

        await self.matching.confirm("u-traveler", "trv1", "snd1")

        self.assert_locked("snd1", "trv1")
        for owner, mine, other in (("u-sender", "snd1", "trv1"), ("u-traveler", "trv1", "snd1")):
            assert get_text("match_locked", my_id=mine, other_id=other) in self.messenger.texts_to(owner)
        assert set(self.messenger.tokens_to(MOD_CHAT)) == {"ctl:term:u-sender", "ctl:term:u-traveler"}
        assert get_metrics_collector().get_counter("matches_locked_total") == 1

    @pytest.mark.asyncio
    async def test_confirming_someone_elses_request(self):
        self.requests.add(make_sender(), make_traveler())
        with pytest.raises(NotAuthorizedError):
            await self.matching.confirm("u-intruder", "snd1", "trv1")
        assert self.requests.get("snd1").pending_match_with is None

    @pytest.mark.asyncio
    async def test_candidate_gone(self):
        self.requests.add(make_sender(), make_traveler(status=RequestStatus.REJECTED))
        with pytest.raises(StaleReferenceError):
            await self.matching.confirm("u-sender", "snd1", "trv1")

    @pytest.mark.asyncio
    async def test_candidate_locked_elsewhere(self):
        traveler, other_sender = make_traveler(), make_sender("snd2", "u-s2")
        lock(traveler, other_sender)
        self.requests.add(make_sender(), traveler, other_sender)

        with pytest.raises(StaleReferenceError):
            await self.matching.confirm("u-sender", "snd1", "trv1")

    @pytest.mark.asyncio
    async def test_already_matched(self):
        sender, traveler = make_sender(), make_traveler()
        lock(sender, traveler)
        self.requests.add(sender, traveler, make_traveler("trv2", "u-t2"))

        with pytest.raises(ConflictError, match="already matched"):
            await self.matching.confirm("u-sender", "snd1", "trv2")

    @pytest.mark.asyncio
    async def test_no_longer_compatible(self):
        self.requests.add(make_sender(), make_traveler(destination="LHR"))
        with pytest.raises(StaleReferenceError):
            await self.matching.confirm("u-sender", "snd1", "trv1")

    @pytest.mark.asyncio
    async def test_busy_with_another_live_candidate(self):
        self.requests.add(
            make_sender(pending_match_with="trv1"),
            make_traveler("trv1", "u-t1"),
            make_traveler("trv2", "u-t2"),
        )

        with pytest.raises(ConflictError):
            await self.matching.confirm("u-sender", "snd1", "trv2")
        assert self.requests.get("snd1").pending_match_with == "trv1"

    @pytest.mark.asyncio
    async def test_stale_pending_is_discarded(self):
        self.requests.add(
            make_sender(pending_match_with="trv1"),
            make_traveler("trv1", "u-t1", status=RequestStatus.REJECTED),
            make_traveler("trv2", "u-t2"),
        )

        await self.matching.confirm("u-sender", "snd1", "trv2")

        assert self.requests.get("snd1").pending_match_with == "trv2"

    @pytest.mark.asyncio
    async def test_confirming_twice_is_harmless(self):
        self.requests.add(make_sender(), make_traveler())

        for _ in range(3):
            await self.matching.confirm("u-sender", "snd1", "trv1")

        assert self.requests.get("snd1").pending_match_with == "trv1"
        assert self.requests.get("snd1").match_locked is False
        assert self.messenger.tokens_to("u-traveler").count("match:conf:trv1:snd1") == 1

    @pytest.mark.asyncio
    async def test_pending_on_a_candidate_who_chose_someone_else_is_discarded(self):
        self.requests.add(
            make_sender("snd1", "u-s1", pending_match_with="trv1"),
            make_sender("snd2", "u-s2"),
            make_traveler("trv1", "u-t1", pending_match_with="snd2"),
            make_traveler("trv2", "u-t2"),
        )

        await self.matching.confirm("u-s1", "snd1", "trv2")

        assert self.requests.get("snd1").pending_match_with == "trv2"
        assert self.requests.get("trv1").pending_match_with == "snd2"
        assert "match:conf:trv2:snd1" in self.messenger.tokens_to("u-t2")

    @pytest.mark.asyncio
    async def test_lock_clears_third_party_pendings(self):
        self.requests.add(
            make_sender("snd1", "u-s1"),
            make_sender("snd2", "u-s2", pending_match_with="trv1"),
            make_traveler("trv1", "u-t1", pending_match_with="snd1"),
        )

        await self.matching.confirm("u-s1", "snd1", "trv1")

        self.assert_locked("snd1", "trv1")
        assert self.requests.get("snd2").pending_match_with is None
        assert get_text("candidate_gone", request_id="snd2") in self.messenger.texts_to("u-s2")

    @pytest.mark.asyncio
    async def test_loser_of_a_race_is_told(self):
        self.requests.add(
            make_sender("snd1", "u-s1"),
            make_sender("snd2", "u-s2"),
            make_traveler("trv1", "u-t1", pending_match_with="snd1"),
        )

        await self.matching.confirm("u-s1", "snd1", "trv1")
        with pytest.raises(StaleReferenceError):
            await self.matching.confirm("u-s2", "snd2", "trv1")

        self.assert_locked("snd1", "trv1")
        assert self.requests.get("snd2").match_locked is False

    @pytest.mark.asyncio
    async def test_same_pair_locked_concurrently(self):
        self.requests.add(
            make_sender(pending_match_with="trv1"),
            make_traveler(pending_match_with="snd1"),
        )
        store_lock_pair = self.requests.lock_pair

        async def locked_by_the_other_side(my_id, other_id, locked_at):
            await store_lock_pair(other_id, my_id, locked_at)
            return False

        self.requests.lock_pair = locked_by_the_other_side

        with pytest.raises(ConflictError) as exc_info:
            await self.matching.confirm("u-sender", "snd1", "trv1")

        assert exc_info.value.detail == get_text("match_already")
        self.assert_locked("snd1", "trv1")
        assert get_metrics_collector().get_counter("match_lock_conflicts_total", reason="lock_race") == 1

    @pytest.mark.asyncio
    async def test_concurrent_confirmations_lock_once(self):
        self.requests.add(make_sender(), make_traveler(pending_match_with="snd1"))

        results = await asyncio.gather(
            self.matching.confirm("u-sender", "snd1", "trv1"),
            self.matching.confirm("u-traveler", "trv1", "snd1"),
            return_exceptions=True,
        )

        self.assert_locked("snd1", "trv1")
        assert sum(1 for r in results if r is None) == 1
        assert sum(1 for r in results if isinstance(r, ConflictError)) == 1
        assert get_metrics_collector().get_counter("matches_locked_total") == 1
        announcements = [t for t in self.messenger.texts_to("u-sender") if "Match confirmed" in t]
        assert len(announcements) == 1


class TestLockPairStore:
    @pytest.mark.asyncio
    async def test_second_lock_fails(self):
        store = FakeRequestStore()
        store.add(make_sender(), make_traveler(pending_match_with="snd1"))

        assert await store.lock_pair("snd1", "trv1", NOW)
        assert not await store.lock_pair("snd1", "trv1", NOW)

    @pytest.mark.asyncio
    async def test_requires_other_side_pending(self):
        store = FakeRequestStore()
        store.add(make_sender(), make_traveler())

        assert not await store.lock_pair("snd1", "trv1", NOW)
        assert store.get("snd1").match_locked is False


class TestRequestStoreOrdering:
    @pytest.mark.asyncio
    async def test_oldest_first_and_newest_single(self):
        store = FakeRequestStore()
        newer = make_sender("snd2", "u-sender", created_at=NOW)
        older = make_sender("snd1", "u-sender", created_at=NOW - timedelta(days=1))
        store.add(newer, older)

        assert [r.request_id for r in await store.find_many(owner_id="u-sender")] == ["snd1", "snd2"]
        assert (await store.find_one(owner_id="u-sender")).request_id == "snd2"


class TestSkip(MatchingTestBase):
    @pytest.mark.asyncio
    async def test_skip_withdraws_pending(self):
        self.requests.add(make_sender(pending_match_with="trv1"), make_traveler())

        await self.matching.skip("u-sender", "snd1", "trv1")

        assert self.requests.get("snd1").pending_match_with is None
        assert self.messenger.last_to("u-sender").text == get_text("match_skipped")

    @pytest.mark.asyncio
    async def test_skip_other_candidate_keeps_pending(self):
        self.requests.add(make_sender(pending_match_with="trv1"), make_traveler(), make_traveler("trv2", "u-t2"))

        await self.matching.skip("u-sender", "snd1", "trv2")

        assert self.requests.get("snd1").pending_match_with == "trv1"

    @pytest.mark.asyncio
    async def test_skip_requires_ownership(self):
        self.requests.add(make_sender(), make_traveler())
        with pytest.raises(NotAuthorizedError):
            await self.matching.skip("u-traveler", "snd1", "trv1")
