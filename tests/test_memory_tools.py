"""Tests for the agent-facing memory tools."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from mnemo.config import MnemoConfig
from mnemo.memory.models import QueryFilters
from mnemo.memory.store import MemoryStore
from mnemo.tools.memory_tools import get_memory_tools


@pytest.fixture
def tools(store: MemoryStore):
    return get_memory_tools(store)


async def _record(tools, content="Use Redis for session caching", **kw) -> str:
    kw.setdefault("summary", "Session cache decision")
    kw.setdefault("type", "decision")
    return await tools["record_memory"](content=content, **kw)


def _id_from(text: str) -> str:
    for line in text.splitlines():
        if line.startswith("ID: "):
            return line[4:].strip()
    raise AssertionError(f"no ID in {text!r}")


class TestRecordMemory:
    @pytest.mark.asyncio
    async def test_records(self, tools, store: MemoryStore):
        result = await _record(tools, tags=["cache"], project_id="shop")
        assert result.startswith("Memory recorded successfully!")
        assert "Type: decision" in result
        assert "Project: shop" in result
        memory = await store.get(_id_from(result))
        assert memory.tags == ["cache"]
        assert memory.trigger_context == "Manual recording via memory tool"

    @pytest.mark.asyncio
    async def test_entities_are_extracted_from_content(self, tools, store: MemoryStore):
        result = await _record(tools, content="Moved retry logic into worker/queue.py")
        memory = await store.get(_id_from(result))
        assert "worker/queue.py" in memory.entities

    @pytest.mark.asyncio
    async def test_recent_duplicate_is_skipped(self, tools, store: MemoryStore):
        await _record(tools)
        result = await _record(tools, content="use redis for session caching!")
        assert result.startswith("A similar memory already exists")
        assert len(await store.query()) == 1

    @pytest.mark.asyncio
    async def test_duplicate_window_expires(self, tools, store: MemoryStore, clock):
        await _record(tools)
        clock.advance(minutes=10)
        result = await _record(tools)
        assert result.startswith("Memory recorded successfully!")
        assert len(await store.query()) == 2

    @pytest.mark.asyncio
    async def test_other_type_is_not_a_duplicate(self, tools):
        await _record(tools)
        result = await _record(tools, type="pattern")
        assert result.startswith("Memory recorded successfully!")

    @pytest.mark.asyncio
    async def test_short_content(self, tools):
        result = await _record(tools, content="too short")
        assert result == "Error recording memory: Memory content must be at least 10 characters"

    @pytest.mark.asyncio
    async def test_bad_type(self, tools):
        result = await _record(tools, type="gossip")
        assert result.startswith("Error recording memory: Unknown memory type")


class TestQueryAndGet:
    @pytest.mark.asyncio
    async def test_query(self, tools):
        await _record(tools, tags=["cache"])
        result = await tools["query_memory"](filters={"tags": ["cache"]})
        assert result.startswith("Found 1 memories:")
        assert "[DECISION] Session cache decision" in result

    @pytest.mark.asyncio
    async def test_query_nothing(self, tools):
        assert await tools["query_memory"](search_text="kafka") == "No memories found matching your query."

    @pytest.mark.asyncio
    async def test_query_limit(self, tools):
        result = await tools["query_memory"](limit=500)
        assert result == "Error querying memories: limit must be at most 100"

    @pytest.mark.asyncio
    async def test_query_bad_sort(self, tools):
        result = await tools["query_memory"](sort_by="bogus")
        assert result.startswith("Error querying memories:")

    @pytest.mark.asyncio
    async def test_get(self, tools):
        memory_id = _id_from(await _record(tools))
        result = await tools["get_memory"](memory_id)
        assert result.startswith("Memory Details:")
        assert "Access Count: 1" in result
        assert "Content:\nUse Redis for session caching" in result

    @pytest.mark.asyncio
    async def test_get_missing(self, tools):
        assert await tools["get_memory"]("mem_x") == "Memory with ID mem_x not found."


class TestUpdateAndDelete:
    @pytest.mark.asyncio
    async def test_update(self, tools):
        memory_id = _id_from(await _record(tools))
        result = await tools["update_memory"](memory_id, {"summary": "Redis session cache"})
        assert result.startswith("Memory updated successfully!")
        assert "Version: 2" in result

    @pytest.mark.asyncio
    async def test_update_rejects_fields(self, tools):
        memory_id = _id_from(await _record(tools))
        result = await tools["update_memory"](memory_id, {"id": "mem_other"})
        assert result == "Error updating memory: Fields cannot be updated: id"

    @pytest.mark.asyncio
    async def test_update_missing(self, tools):
        result = await tools["update_memory"]("mem_x", {"summary": "Whatever"})
        assert result == "Memory with ID mem_x not found."

    @pytest.mark.asyncio
    async def test_delete(self, tools):
        memory_id = _id_from(await _record(tools))
        assert await tools["delete_memory"](memory_id) == f"Memory {memory_id} has been successfully deleted."
        assert "not found" in await tools["delete_memory"](memory_id)


class TestMaintenanceTools:
    @pytest.mark.asyncio
    async def test_stats(self, tools):
        await _record(tools, project_id="shop")
        result = await tools["memory_maintenance"]("get_stats")
        assert "Total Memories: 1" in result
        assert "  decision: 1" in result
        assert "  shop: 1" in result

    @pytest.mark.asyncio
    async def test_decay_and_archive(self, tools):
        await _record(tools)
        assert await tools["memory_maintenance"]("decay_scores") == (
            "Relevance scores updated for 0 memories."
        )
        result = await tools["memory_maintenance"]("archive_old", 30)
        assert result.startswith("Archived 0 old memories (older than 30 days")

    @pytest.mark.asyncio
    async def test_unknown_operation(self, tools):
        result = await tools["memory_maintenance"]("vacuum")
        assert result == "Error in maintenance operation: Unknown maintenance operation: vacuum"

    @pytest.mark.asyncio
    async def test_stats_time_range_and_top_tags(self, tools, store: MemoryStore, clock):
        await store.create(
            content="Old cache decision", summary="Old cache", type="decision", tags=["cache"]
        )
        clock.advance(days=60)
        await store.create(
            content="New cache decision", summary="New cache", type="decision",
            tags=["cache", "redis"], project_id="shop",
        )
        await store.create(
            content="Cache hit rate looks fine", summary="Feedback", type="feedback", tags=["cache"]
        )

        everything = await tools["memory_maintenance"]("get_stats")
        assert "Time Range: all\n" in everything
        assert "Total Memories: 3" in everything
        assert "Top Tags:\n  cache: 3\n  redis: 1" in everything
        assert "  High (0.6-0.8): 2" in everything
        assert "  Medium (0.4-0.6): 1" in everything

        month = await tools["memory_maintenance"]("get_stats", time_range="month")
        assert "Time Range: month (since " in month
        assert "Total Memories: 2" in month
        assert "  decision: 1" in month
        assert "  feedback: 1" in month
        assert "Top Tags:\n  cache: 2\n  redis: 1" in month

        shop = await tools["memory_maintenance"]("get_stats", project_id="shop")
        assert "Project: shop" in shop
        assert "Total Memories: 1" in shop

    @pytest.mark.asyncio
    async def test_stats_bad_time_range(self, tools):
        result = await tools["memory_maintenance"]("get_stats", time_range="decade")
        assert result.startswith("Error in maintenance operation: time_range must be one of")


class TestChainTool:
    @pytest.mark.asyncio
    async def test_chain(self, tools, store: MemoryStore):
        b = await store.create(content="Redis runs in cluster mode", summary="Redis topology", type="decision")
        c = await store.create(
            content="Cluster needs three shards", summary="Shard count", type="decision"
        )
        await store.update(b.id, related_memories=[c.id])
        a = await store.create(
            content="Use Redis for sessions", summary="Session store", type="decision",
            related_memories=[b.id],
        )
        result = await tools["get_memory_chain"](a.id, depth=2, include_content=True)
        assert 'Memory Chain for "Session store"' in result
        assert "Found 3 related memories" in result
        assert "[ROOT] Session store" in result
        assert "[DIRECT] Redis topology" in result
        assert "[INDIRECT] Shard count" in result
        assert "**Content Preview:** Use Redis for sessions" in result

    @pytest.mark.asyncio
    async def test_similar_neighbours_are_listed(self, tools, store: MemoryStore, clock):
        root = await store.create(
            content="Use Redis for sessions", summary="Session store", type="decision",
            tags=["redis"],
        )
        clock.advance(minutes=1)
        await store.create(
            content="Cluster needs three shards", summary="Shard count", type="decision",
            tags=["redis"],
        )
        clock.advance(minutes=1)
        await store.create(
            content="Prefer composition over inheritance", summary="Composition", type="decision"
        )
        clock.advance(minutes=1)
        await store.create(
            content="Use Redis for sessions in staging", summary="Staging sessions", type="decision"
        )
        clock.advance(minutes=1)
        await store.create(
            content="Redis key naming", summary="Key naming", type="pattern", tags=["redis"]
        )

        result = await tools["get_memory_chain"](root.id)
        assert "Found 3 related memories" in result
        assert "[SIMILAR] Shard count" in result
        assert "[SIMILAR] Staging sessions" in result
        assert "Composition" not in result
        assert "Key naming" not in result

        plain = await tools["get_memory_chain"](root.id, auto_detect=False)
        assert "Found 1 related memories" in plain

    @pytest.mark.asyncio
    async def test_depth_limits(self, tools):
        result = await tools["get_memory_chain"]("mem_x", depth=9)
        assert result == "Error retrieving memory chain: depth must be between 1 and 5"

    @pytest.mark.asyncio
    async def test_missing_root(self, tools):
        assert await tools["get_memory_chain"]("mem_x") == "Memory with ID mem_x not found."


class TestConsolidateTool:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, tools, store: MemoryStore):
        await store.create(content="Pin the numpy version in CI", summary="Pin numpy", type="decision")
        await store.create(
            content="Pin the numpy version in CI", summary="Pin numpy", type="decision",
            confidence=0.5,
        )
        report = await tools["consolidate_memories"](type="decision")
        assert "Memories discarded: 1" in report
        assert "Run with confirm=True" in report
        assert len(await store.query()) == 2

        report = await tools["consolidate_memories"](type="decision", confirm=True)
        assert "Memories discarded: 1" in report
        assert "confirm=True" not in report
        assert len(await store.query()) == 1


class TestBackupTools:
    @pytest.mark.asyncio
    async def test_export_then_import_elsewhere(self, tools, store: MemoryStore, tmp_path: Path, clock):
        await store.create(
            content="Use Redis for sessions", summary="Session store", type="decision",
            tags=["cache"], project_id="shop",
        )
        old = await store.create(
            content="Orders went through a cron queue", summary="Old queue", type="pattern",
            project_id="shop",
        )
        await store.update(old.id, archived=True)
        await store.create(
            content="Readers want shorter posts", summary="Post length", type="feedback",
            project_id="blog",
        )

        path = tmp_path / "shop.json"
        result = await tools["export_memories"](str(path), project_id="shop")
        assert result.startswith(f"Successfully exported 2 memories to:\n{path}\n")
        assert "Project: shop" in result
        assert "Included archived: Yes" in result
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == "1.0"
        assert data["project_id"] == "shop"
        assert data["total_memories"] == 2
        assert {m["summary"] for m in data["memories"]} == {"Session store", "Old queue"}

        other = MemoryStore(MnemoConfig(memory_dir=tmp_path / "other"), clock=clock)
        result = await get_memory_tools(other)["import_memories"](str(path), project_id="shop-copy")
        assert "- Successfully imported: 2 memories" in result
        assert "- Skipped/Failed: 0 memories" in result
        assert "- All memories assigned to project: shop-copy" in result
        imported = {m.summary: m for m in await other.query(QueryFilters(archived=None))}
        assert set(imported) == {"Session store", "Old queue"}
        assert {m.project_id for m in imported.values()} == {"shop-copy"}
        assert imported["Session store"].tags == ["cache"]
        assert imported["Session store"].version == 1
        assert imported["Session store"].id not in {m["id"] for m in data["memories"]}

    @pytest.mark.asyncio
    async def test_export_default_path_without_archived(self, tools, store: MemoryStore):
        kept = await store.create(content="Use Redis for sessions", summary="Session store", type="decision")
        old = await store.create(content="Orders went through a cron queue", summary="Old queue", type="pattern")
        await store.update(old.id, archived=True)

        result = await tools["export_memories"](include_archived=False)
        path = Path(result.splitlines()[1])
        assert path.parent == store.root / "exports"
        assert "Project: All projects" in result
        assert "Included archived: No" in result
        data = json.loads(path.read_text(encoding="utf-8"))
        assert [m["id"] for m in data["memories"]] == [kept.id]
        assert data["project_id"] is None
        assert [m.id for m in await store.query()] == [kept.id]

    @pytest.mark.asyncio
    async def test_export_nothing(self, tools):
        assert await tools["export_memories"]() == "No memories found to export."

    @pytest.mark.asyncio
    async def test_import_rejects_foreign_files(self, tools, tmp_path: Path):
        notes = tmp_path / "notes.txt"
        notes.write_text("{}", encoding="utf-8")
        assert await tools["import_memories"](str(notes)) == (
            "Error: File must be in JSON format exported by the memory system."
        )
        bogus = tmp_path / "bogus.json"
        bogus.write_text(json.dumps({"memories": "nope"}), encoding="utf-8")
        assert await tools["import_memories"](str(bogus)) == (
            "Error: Invalid import file format. Please use a file exported by the memory system."
        )
        missing = await tools["import_memories"](str(tmp_path / "missing.json"))
        assert missing.startswith("Error importing memories:")

    @pytest.mark.asyncio
    async def test_import_reports_bad_entries(self, tools, store: MemoryStore, tmp_path: Path):
        path = tmp_path / "mixed.json"
        path.write_text(
            json.dumps(
                {
                    "version": "1.0",
                    "memories": [
                        {
                            "content": "Queue retries back off exponentially",
                            "summary": "Retry backoff",
                            "type": "pattern",
                            "projectId": "jobs",
                            "relatedMemories": [],
                        },
                        {"content": "This entry has no type", "summary": "No type"},
                        {"content": "This entry has a bad type", "summary": "Bad type", "type": "rumour"},
                    ],
                }
            ),
            encoding="utf-8",
        )
        result = await tools["import_memories"](str(path))
        assert "- Successfully imported: 1 memories" in result
        assert "- Skipped/Failed: 2 memories" in result
        assert "- Memory 2:" in result
        assert "- Memory 3: Unknown memory type 'rumour'" in result
        [memory] = await store.query()
        assert memory.project_id == "jobs"
        assert memory.summary == "Retry backoff"
