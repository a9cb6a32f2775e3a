"""Record store: one Markdown file per memory plus a JSON index.

Each memory file carries every field except the content in its YAML
frontmatter; the body is the content. Files are located only through the
index's id → filename map, so ids never have to double as file names.

All mutations go through a single asyncio.Lock (one writer at a time within
the process) and follow load-index → mutate → save-index. Queries and chain
lookups take no lock and may see a slightly stale index. Several processes
sharing one directory are not supported.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

import frontmatter
import yaml

from mnemo.config import MnemoConfig
from mnemo.memory import query as query_engine
from mnemo.memory.chain import resolve_chain
from mnemo.memory.consolidation import plan_consolidation
from mnemo.memory.index import MemoryIndex, atomic_write_text, load_index, save_index
from mnemo.memory.models import (
    UPDATABLE_FIELDS,
    ConsolidationResult,
    ConsolidationScope,
    ContextSnapshot,
    Memory,
    MemoryQuery,
    MemoryType,
    MemoryValidationError,
    QueryContext,
    QueryFilters,
    SortKey,
    generate_memory_id,
    utcnow,
)
from mnemo.memory.relevance import (
    DEFAULT_ARCHIVE_DAYS,
    archive_cutoff,
    decay_start,
    decayed_score,
    needs_decay_write,
    should_archive,
)

logger = logging.getLogger(__name__)

INDEX_FILE = "_index.json"
STATS_FILE = "_stats.json"
RECORD_PREFIX = "memory_"

MAINTENANCE_OPERATIONS = ("decay", "archive", "reindex")

_READ_ERRORS = (OSError, ValueError, TypeError, KeyError, yaml.YAMLError)


class MemoryStore:
    """Persistent, indexed, relevance-scored memory records."""

    def __init__(
        self,
        config: MnemoConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.root = Path(config.memory_dir)
        self.index_path = self.root / INDEX_FILE
        self.stats_path = self.root / STATS_FILE
        self._clock = clock or utcnow
        self._write_lock = asyncio.Lock()
        self._ensure_initialized()

    # ── Initialization & file access ─────────────────────────

    def _ensure_initialized(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def now(self) -> datetime:
        return self._clock()

    def _record_path(self, location: str) -> Path:
        return self.root / location

    def _new_location(self, created: datetime, index: MemoryIndex) -> str:
        """memory_YYYYmmddHHMMSS.md, with -2, -3, ... on collision."""
        stem = f"{RECORD_PREFIX}{created:%Y%m%d%H%M%S}"
        taken = set(index.locations.values())
        location = f"{stem}.md"
        counter = 2
        while location in taken or self._record_path(location).exists():
            location = f"{stem}-{counter}.md"
            counter += 1
        return location

    def _read_record(self, location: str) -> Memory | None:
        """Parse one record file. Unreadable or corrupt files yield None."""
        path = self._record_path(location)
        try:
            post = frontmatter.loads(path.read_text(encoding="utf-8"))
            return Memory.from_frontmatter(dict(post.metadata), post.content)
        except FileNotFoundError:
            logger.debug("Record %s is indexed but missing on disk", location)
            return None
        except _READ_ERRORS as e:
            logger.warning("Skipping unreadable memory record %s: %s", location, e)
            return None

    def _read_records(self, pairs: Iterable[tuple[str, str]]) -> list[Memory]:
        memories = []
        for memory_id, location in pairs:
            memory = self._read_record(location)
            if memory is None:
                continue
            if memory.id != memory_id:
                logger.warning("Record %s holds %s, expected %s", location, memory.id, memory_id)
                continue
            memories.append(memory)
        return memories

    def _write_record(self, memory: Memory, location: str) -> None:
        post = frontmatter.Post(memory.content, **memory.to_frontmatter())
        atomic_write_text(self._record_path(location), frontmatter.dumps(post) + "\n")

    async def _load_index(self) -> MemoryIndex:
        return await asyncio.to_thread(load_index, self.index_path)

    async def _save_index(self, index: MemoryIndex) -> None:
        await asyncio.to_thread(save_index, index, self.index_path, self.stats_path, self.now())

    async def _load_indexed(self, index: MemoryIndex, memory_id: str) -> Memory | None:
        location = index.location_of(memory_id)
        if location is None:
            return None
        found = await asyncio.to_thread(self._read_records, [(memory_id, location)])
        return found[0] if found else None

    async def _load_many(self, index: MemoryIndex, ids: Iterable[str]) -> list[Memory]:
        pairs = [(i, index.locations[i]) for i in ids if i in index.locations]
        return await asyncio.to_thread(self._read_records, pairs)

    # ── CRUD ─────────────────────────────────────────────────

    async def create(
        self,
        content: str,
        summary: str,
        type: MemoryType | str,
        confidence: float = 0.8,
        *,
        tags: list[str] | None = None,
        entities: list[str] | None = None,
        related_memories: list[str] | None = None,
        context_snapshot: ContextSnapshot | dict | None = None,
        project_id: str | None = None,
        task_id: str | None = None,
        author: str = "agent",
        metadata: dict[str, Any] | None = None,
        trigger_context: str | None = None,
    ) -> Memory:
        """Persist a new memory and index it."""
        now = self.now()
        memory = Memory(
            id=generate_memory_id(now),
            content=content,
            summary=summary,
            type=type,
            confidence=confidence,
            author=author,
            created=now,
            last_accessed=now,
            tags=tags or [],
            entities=entities or [],
            related_memories=related_memories or [],
            context_snapshot=context_snapshot,
            project_id=project_id,
            task_id=task_id,
            metadata=metadata or {},
            trigger_context=trigger_context,
        )
        async with self._write_lock:
            index = await self._load_index()
            location = self._new_location(now, index)
            await asyncio.to_thread(self._write_record, memory, location)
            index.index(memory, location)
            await self._save_index(index)
        logger.info("Created memory %s (%s): %s", memory.id, memory.type.value, memory.summary)
        return memory

    async def get(self, memory_id: str) -> Memory | None:
        """Read one memory, counting the access."""
        async with self._write_lock:
            index = await self._load_index()
            memory = await self._load_indexed(index, memory_id)
            if memory is None:
                return None
            memory.access_count += 1
            memory.last_accessed = self.now()
            memory.decay_base = None
            await asyncio.to_thread(self._write_record, memory, index.locations[memory_id])
        return memory

    async def update(self, memory_id: str, **changes: Any) -> Memory | None:
        """Merge changes into a memory in place and bump its version."""
        rejected = set(changes) - UPDATABLE_FIELDS
        if rejected:
            raise MemoryValidationError(f"Fields cannot be updated: {', '.join(sorted(rejected))}")
        if "relevance_score" in changes:
            changes["decay_base"] = None
        async with self._write_lock:
            index = await self._load_index()
            memory = await self._load_indexed(index, memory_id)
            if memory is None:
                return None
            updated = await self._apply_update(index, memory, changes)
            await self._save_index(index)
        logger.info("Updated memory %s to version %d", memory_id, updated.version)
        return updated

    async def delete(self, memory_id: str) -> bool:
        """Remove the record and every index reference."""
        async with self._write_lock:
            index = await self._load_index()
            location = index.location_of(memory_id)
            if location is None:
                return False
            existed = await asyncio.to_thread(self._unlink, location)
            index.deindex(memory_id)
            await self._save_index(index)
        if existed:
            logger.info("Deleted memory %s", memory_id)
        else:
            logger.warning("Memory %s was indexed but its file %s was gone", memory_id, location)
        return existed

    def _unlink(self, location: str) -> bool:
        path = self._record_path(location)
        if not path.exists():
            return False
        path.unlink()
        return True

    async def _apply_update(
        self, index: MemoryIndex, memory: Memory, changes: dict[str, Any]
    ) -> Memory:
        """Write a new version of ``memory``. Caller holds the lock and saves the index."""
        updated = replace(
            memory,
            **changes,
            id=memory.id,
            created=memory.created,
            version=memory.version + 1,
            last_updated=self.now(),
            supersedes=memory.id,
        )
        location = index.locations[memory.id]
        await asyncio.to_thread(self._write_record, updated, location)
        index.index(updated, location)
        return updated

    # ── Query & chains ───────────────────────────────────────

    async def query(
        self,
        filters: QueryFilters | dict | None = None,
        search_text: str | None = None,
        context: QueryContext | dict | None = None,
        sort_by: SortKey = "relevance",
        limit: int | None = None,
    ) -> list[Memory]:
        """Filter → load → secondary filter → search → context score → sort → limit."""
        if isinstance(filters, dict):
            filters = QueryFilters.from_dict(filters)
        if isinstance(context, dict):
            context = QueryContext.from_dict(context)
        q = MemoryQuery(
            filters=filters or QueryFilters(),
            search_text=search_text,
            context=context,
            sort_by=sort_by,
            limit=limit,
        )
        index = await self._load_index()
        candidates = query_engine.select_candidates(index, q.filters)
        memories = await self._load_many(index, candidates)
        results = query_engine.finish(memories, q)
        logger.debug("Query matched %d of %d candidates", len(results), len(candidates))
        return results

    async def get_chain(
        self, memory_id: str, depth: int = 2, include_content: bool = False
    ) -> list[Memory]:
        """Memories reachable over related_memories within ``depth`` hops."""
        if depth < 0:
            raise MemoryValidationError(f"depth must be >= 0, got {depth}")
        index = await self._load_index()
        chain = await resolve_chain(memory_id, depth, lambda i: self._load_indexed(index, i))
        if include_content:
            return chain
        stripped = []
        for memory in chain:
            memory = copy.copy(memory)
            memory.content = ""
            stripped.append(memory)
        return stripped

    # ── Maintenance ──────────────────────────────────────────

    async def run_maintenance(self, operation: str, days_old: int = DEFAULT_ARCHIVE_DAYS) -> int:
        """Run decay, archive or reindex. Returns the number of memories affected."""
        if operation not in MAINTENANCE_OPERATIONS:
            raise MemoryValidationError(
                f"Unknown maintenance operation {operation!r} "
                f"(expected one of: {', '.join(MAINTENANCE_OPERATIONS)})"
            )
        if operation == "decay":
            return await self.decay_relevance()
        if operation == "archive":
            return await self.archive_old(days_old)
        return await self.rebuild_index()

    async def decay_relevance(self) -> int:
        async with self._write_lock:
            index = await self._load_index()
            now = self.now()
            changed = 0
            for memory in await self._load_many(index, index.all_ids()):
                if memory.archived:
                    continue
                score = decayed_score(memory, now)
                if needs_decay_write(memory.relevance_score, score):
                    await self._apply_update(
                        index, memory, {"relevance_score": score, "decay_base": decay_start(memory)}
                    )
                    changed += 1
            if changed:
                await self._save_index(index)
        logger.info("Decay pass updated %d memories", changed)
        return changed

    async def archive_old(self, days_old: int = DEFAULT_ARCHIVE_DAYS) -> int:
        if isinstance(days_old, bool) or not isinstance(days_old, int) or days_old <= 0:
            raise MemoryValidationError(f"days_old must be a positive integer, got {days_old!r}")
        async with self._write_lock:
            index = await self._load_index()
            cutoff = archive_cutoff(self.now(), days_old)
            archived = 0
            for memory in await self._load_many(index, index.all_ids()):
                if should_archive(memory, cutoff):
                    await self._apply_update(index, memory, {"archived": True})
                    archived += 1
            if archived:
                await self._save_index(index)
        logger.info("Archived %d memories older than %d days", archived, days_old)
        return archived

    async def rebuild_index(self) -> int:
        """Rebuild the index from a full scan of the record files."""
        async with self._write_lock:
            records = await asyncio.to_thread(self._scan_records)
            index = MemoryIndex()
            index.rebuild(records)
            await self._save_index(index)
        logger.info("Rebuilt index from %d records", len(index))
        return len(index)

    def _scan_records(self) -> list[tuple[Memory, str]]:
        records = []
        for path in sorted(self.root.glob(f"{RECORD_PREFIX}*.md")):
            memory = self._read_record(path.name)
            if memory is not None:
                records.append((memory, path.name))
        return records

    async def get_stats(self) -> dict:
        """Counts by type and project, from the stats file when present."""
        try:
            text = await asyncio.to_thread(self.stats_path.read_text, encoding="utf-8")
            return json.loads(text)
        except (OSError, ValueError):
            index = await self._load_index()
            return index.stats(self.now())

    # ── Consolidation ────────────────────────────────────────

    async def consolidate(self, scope: ConsolidationScope | None = None) -> ConsolidationResult:
        """Merge near-duplicates inside one bucket. Lossy: absorbed content is dropped."""
        scope = scope or ConsolidationScope(
            threshold=self.config.consolidation.similarity_threshold
        )
        async with self._write_lock:
            index = await self._load_index()
            filters = QueryFilters(
                project_id=scope.project_id,
                types=[scope.type] if scope.type else [],
                tags=[scope.tag] if scope.tag else [],
            )
            candidates = [
                m
                for m in await self._load_many(
                    index, query_engine.select_candidates(index, filters)
                )
                if not m.archived
                and (scope.project_id is None or m.project_id == scope.project_id)
                and (scope.type is None or m.type == scope.type)
                and (scope.tag is None or scope.tag in m.tags)
            ]
            groups = plan_consolidation(candidates, scope.threshold)
            survivor_of = {
                absorbed_id: group.keeper.id
                for group in groups
                for absorbed_id in group.absorbed_ids
            }
            result = ConsolidationResult()
            for group in groups:
                result.discarded_ids.extend(group.absorbed_ids)
                if scope.dry_run:
                    result.kept.append(group.keeper)
                    continue
                kept = await self._apply_update(
                    index,
                    group.keeper,
                    {
                        "tags": group.merged_tags,
                        "consolidated_from": group.keeper.consolidated_from + group.absorbed_ids,
                        "related_memories": _redirect_links(group.keeper, survivor_of),
                    },
                )
                result.kept.append(kept)
                for absorbed_id in group.absorbed_ids:
                    await asyncio.to_thread(self._unlink, index.locations[absorbed_id])
                    index.deindex(absorbed_id)
            if groups and not scope.dry_run:
                await self._relink(index, survivor_of, {m.id for m in result.kept})
                await self._save_index(index)
        logger.info(
            "Consolidation over %d memories: kept %d, discarded %d%s",
            len(candidates),
            len(result.kept),
            len(result.discarded_ids),
            " (dry run)" if scope.dry_run else "",
        )
        return result

    async def _relink(
        self, index: MemoryIndex, survivor_of: dict[str, str], skip: set[str]
    ) -> int:
        """Point related_memories edges at absorbed ids to their survivors. Caller holds the lock."""
        relinked = 0
        for memory in await self._load_many(index, [i for i in index.all_ids() if i not in skip]):
            links = _redirect_links(memory, survivor_of)
            if links != memory.related_memories:
                await self._apply_update(index, memory, {"related_memories": links})
                relinked += 1
        if relinked:
            logger.info("Redirected related links on %d memories", relinked)
        return relinked


def _redirect_links(memory: Memory, survivor_of: dict[str, str]) -> list[str]:
    """related_memories with absorbed ids swapped for their survivor, minus self-links."""
    links: dict[str, None] = {}
    for related_id in memory.related_memories:
        target = survivor_of.get(related_id, related_id)
        if target != memory.id:
            links[target] = None
    return list(links)
