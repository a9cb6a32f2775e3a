"""Tests for relevance decay, archival and importance scoring."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from mnemo.memory.models import Memory, MemoryValidationError, QueryFilters
from mnemo.memory.relevance import decay_start, decayed_score, importance_score, should_archive
from mnemo.memory.store import MemoryStore

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _memory(**kw) -> Memory:
    fields = dict(
        id="mem_1",
        content="Some useful content",
        summary="Something",
        type="decision",
        confidence=0.8,
        author="agent",
        created=T0,
        last_accessed=T0,
    )
    fields.update(kw)
    return Memory(**fields)


async def _make(store: MemoryStore, summary: str = "Something worth keeping"):
    return await store.create(content="Some useful content", summary=summary, type="decision")


class TestDecayedScore:
    def test_formula(self):
        memory = _memory(access_count=1)
        score = decayed_score(memory, T0 + timedelta(days=30))
        assert score == pytest.approx(math.exp(-1) + math.log10(2) * 0.1)

    def test_fresh_unread_memory_keeps_its_score(self):
        assert decayed_score(_memory(relevance_score=0.7), T0) == pytest.approx(0.7)

    def test_clamped_to_unit_interval(self):
        assert decayed_score(_memory(access_count=1000), T0) == 1.0
        assert decayed_score(_memory(relevance_score=0.0), T0 + timedelta(days=3650)) >= 0.0

    def test_staler_memory_scores_lower(self):
        now = T0 + timedelta(days=60)
        stale = _memory(last_accessed=T0, access_count=3)
        recent = _memory(last_accessed=T0 + timedelta(days=50), access_count=3)
        assert decayed_score(stale, now) <= decayed_score(recent, now)

    def test_measured_from_decay_base(self):
        memory = _memory(relevance_score=0.5, decay_base=0.9)
        assert decay_start(memory) == 0.9
        assert decayed_score(memory, T0 + timedelta(days=30)) == pytest.approx(0.9 * math.exp(-1))


class TestDecayPass:
    @pytest.mark.asyncio
    async def test_recently_read_memory_decays_less(self, store: MemoryStore, clock):
        stale = await _make(store, "Read long ago")
        recent = await _make(store, "Read lately")
        await store.get(stale.id)
        clock.advance(days=50)
        await store.get(recent.id)
        clock.advance(days=10)

        assert await store.run_maintenance("decay") == 2

        found = {m.id: m for m in await store.query()}
        assert found[stale.id].relevance_score <= found[recent.id].relevance_score
        assert all(0.0 <= m.relevance_score <= 1.0 for m in found.values())

    @pytest.mark.asyncio
    async def test_small_changes_are_not_written(self, store: MemoryStore):
        memory = await _make(store)
        assert await store.run_maintenance("decay") == 0
        assert (await store.get(memory.id)).version == 1

    @pytest.mark.asyncio
    async def test_decay_write_bumps_version(self, store: MemoryStore, clock):
        memory = await _make(store)
        clock.advance(days=45)
        await store.run_maintenance("decay")
        decayed = await store.get(memory.id)
        assert decayed.version == 2
        assert decayed.relevance_score == pytest.approx(math.exp(-1.5))

    @pytest.mark.asyncio
    async def test_repeated_passes_match_one_pass(self, store: MemoryStore, clock):
        memory = await _make(store)
        clock.advance(days=20)
        await store.run_maintenance("decay")
        clock.advance(days=10)
        await store.run_maintenance("decay")
        await store.run_maintenance("decay")
        found = (await store.query())[0]
        assert found.id == memory.id
        assert found.relevance_score == pytest.approx(math.exp(-1))
        assert found.decay_base == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_read_restarts_decay_from_current_score(self, store: MemoryStore, clock):
        memory = await _make(store)
        clock.advance(days=30)
        await store.run_maintenance("decay")
        read = await store.get(memory.id)
        assert read.decay_base is None
        assert read.relevance_score == pytest.approx(math.exp(-1))

        clock.advance(days=30)
        await store.run_maintenance("decay")
        found = (await store.query())[0]
        assert found.relevance_score == pytest.approx(math.exp(-2) + math.log10(2) * 0.1)

    @pytest.mark.asyncio
    async def test_explicit_score_restarts_decay(self, store: MemoryStore, clock):
        memory = await _make(store)
        clock.advance(days=30)
        await store.run_maintenance("decay")
        updated = await store.update(memory.id, relevance_score=0.6)
        assert updated.decay_base is None

        clock.advance(days=30)
        await store.run_maintenance("decay")
        found = (await store.query())[0]
        assert found.relevance_score == pytest.approx(0.6 * math.exp(-2))


class TestArchive:
    @pytest.mark.asyncio
    async def test_old_unread_low_relevance_memory_is_archived(self, store: MemoryStore, clock):
        quiet = await _make(store, "Rarely used")
        busy = await _make(store, "Used all the time")
        for _ in range(2):
            await store.get(quiet.id)
        for _ in range(10):
            await store.get(busy.id)
        await store.update(quiet.id, relevance_score=0.2)
        await store.update(busy.id, relevance_score=0.2)
        clock.advance(days=100)

        assert await store.run_maintenance("archive", 90) == 1

        archived = await store.query({"archived": True})
        assert [m.id for m in archived] == [quiet.id]
        assert [m.id for m in await store.query()] == [busy.id]

    @pytest.mark.asyncio
    async def test_archived_memory_is_still_readable(self, store: MemoryStore, clock):
        memory = await _make(store)
        await store.update(memory.id, relevance_score=0.1)
        clock.advance(days=100)
        await store.run_maintenance("archive", 90)
        fetched = await store.get(memory.id)
        assert fetched.archived is True
        assert fetched.content == "Some useful content"

    @pytest.mark.asyncio
    async def test_archive_is_idempotent(self, store: MemoryStore, clock):
        memory = await _make(store)
        await store.update(memory.id, relevance_score=0.1)
        clock.advance(days=100)
        assert await store.run_maintenance("archive", 90) == 1
        assert await store.run_maintenance("archive", 90) == 0
        assert len(await store.query(QueryFilters(archived=None))) == 1

    @pytest.mark.asyncio
    async def test_rejects_bad_days(self, store: MemoryStore):
        with pytest.raises(MemoryValidationError):
            await store.run_maintenance("archive", 0)
        with pytest.raises(MemoryValidationError):
            await store.run_maintenance("archive", -5)

    @pytest.mark.asyncio
    async def test_rejects_unknown_operation(self, store: MemoryStore):
        with pytest.raises(MemoryValidationError):
            await store.run_maintenance("vacuum")

    def test_each_criterion_is_required(self):
        cutoff = T0 + timedelta(days=10)
        assert should_archive(_memory(relevance_score=0.2), cutoff)
        assert not should_archive(_memory(relevance_score=0.5), cutoff)
        assert not should_archive(_memory(relevance_score=0.2, access_count=5), cutoff)
        assert not should_archive(_memory(relevance_score=0.2, created=cutoff), cutoff)
        assert not should_archive(_memory(relevance_score=0.2, archived=True), cutoff)


class TestImportance:
    def test_breakthrough_outranks_feedback(self):
        breakthrough = _memory(type="breakthrough")
        feedback = _memory(type="feedback")
        assert importance_score(breakthrough, T0) > importance_score(feedback, T0)

    def test_bounded(self):
        score = importance_score(_memory(confidence=1.0, access_count=10_000), T0)
        assert 0.0 <= score <= 1.0
