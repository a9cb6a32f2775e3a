"""Derived lookup structures over the memory id space.

The index is a cache: everything in it can be rebuilt from the record files.
It only ever sees the indexed fields of a memory, never its content.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterable

from mnemo.memory.models import Memory, MemoryType, utcnow

logger = logging.getLogger(__name__)

INDEX_FORMAT = 1


class MemoryIndex:
    """project/type/tag/entity/temporal lookups plus the id → file map."""

    def __init__(self) -> None:
        self._clear()

    def _clear(self) -> None:
        self.entries: dict[str, dict] = {}
        self.locations: dict[str, str] = {}
        self.projects: dict[str, list[str]] = {}
        self.types: dict[str, list[str]] = {t.value: [] for t in MemoryType}
        self.tags: dict[str, list[str]] = {}
        self.entities: dict[str, list[str]] = {}
        self.temporal: list[dict[str, str]] = []

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self.locations

    def __len__(self) -> int:
        return len(self.locations)

    # ── Mutation ──────────────────────────────────────────────

    def index(self, memory: Memory, location: str) -> None:
        """Insert or refresh every structure for one memory. Idempotent."""
        self.deindex(memory.id)
        created = memory.created.isoformat()
        self.locations[memory.id] = location
        self.entries[memory.id] = {
            "project": memory.project_id,
            "type": memory.type.value,
            "tags": list(memory.tags),
            "entities": list(memory.entities),
            "created": created,
            "location": location,
        }
        if memory.project_id:
            self.projects.setdefault(memory.project_id, []).append(memory.id)
        self.types.setdefault(memory.type.value, []).append(memory.id)
        for tag in memory.tags:
            self.tags.setdefault(tag, []).append(memory.id)
        for entity in memory.entities:
            self.entities.setdefault(entity, []).append(memory.id)

        self.temporal.append({"id": memory.id, "timestamp": created})
        self.temporal.sort(key=lambda item: datetime.fromisoformat(item["timestamp"]), reverse=True)

    def deindex(self, memory_id: str) -> None:
        """Remove an id from every structure."""
        self.locations.pop(memory_id, None)
        self.entries.pop(memory_id, None)
        # Sweep every bucket; a loaded index may hold stale entries.
        for buckets, prune in (
            (self.projects, True),
            (self.types, False),
            (self.tags, True),
            (self.entities, True),
        ):
            for key in list(buckets):
                ids = buckets[key]
                if memory_id in ids:
                    ids.remove(memory_id)
                if prune and not ids:
                    del buckets[key]
        self.temporal = [item for item in self.temporal if item["id"] != memory_id]

    def rebuild(self, records: Iterable[tuple[Memory, str]]) -> None:
        """Reset and re-index from (memory, location) pairs."""
        self._clear()
        for memory, location in records:
            self.index(memory, location)

    # ── Lookup ────────────────────────────────────────────────

    def location_of(self, memory_id: str) -> str | None:
        return self.locations.get(memory_id)

    def all_ids(self) -> list[str]:
        """Every id, newest first."""
        return [item["id"] for item in self.temporal]

    def lookup(
        self,
        project_id: str | None = None,
        types: Iterable[MemoryType] = (),
        tags: Iterable[str] = (),
        entities: Iterable[str] = (),
    ) -> list[str]:
        """Union of the project, type, tag and entity buckets, in first-seen order."""
        ids: dict[str, None] = {}
        if project_id:
            ids.update(dict.fromkeys(self.projects.get(project_id, [])))
        for t in types:
            ids.update(dict.fromkeys(self.types.get(MemoryType(t).value, [])))
        for tag in tags:
            ids.update(dict.fromkeys(self.tags.get(tag, [])))
        for entity in entities:
            ids.update(dict.fromkeys(self.entities.get(entity, [])))
        return list(ids)

    def stats(self, now: datetime | None = None) -> dict:
        total = len(self.locations)
        return {
            "total_memories": total,
            "by_type": {t: len(ids) for t, ids in self.types.items()},
            "by_project": {p: len(ids) for p, ids in self.projects.items()},
            "last_updated": (now or utcnow()).isoformat(),
        }

    # ── Serialization ─────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            "format": INDEX_FORMAT,
            "entries": self.entries,
            "locations": self.locations,
            "projects": self.projects,
            "types": self.types,
            "tags": self.tags,
            "entities": self.entities,
            "temporal": self.temporal,
        }

    @classmethod
    def from_dict(cls, data: dict) -> MemoryIndex:
        index = cls()
        index.entries = dict(data.get("entries", {}))
        index.locations = dict(data.get("locations", {}))
        index.projects = {k: list(v) for k, v in data.get("projects", {}).items()}
        index.types.update({k: list(v) for k, v in data.get("types", {}).items()})
        index.tags = {k: list(v) for k, v in data.get("tags", {}).items()}
        index.entities = {k: list(v) for k, v in data.get("entities", {}).items()}
        index.temporal = [
            {"id": str(item["id"]), "timestamp": str(item["timestamp"])}
            for item in data.get("temporal", [])
        ]
        return index


def load_index(path: Path) -> MemoryIndex:
    """Read the index file. Missing or unreadable means empty."""
    if not path.exists():
        return MemoryIndex()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("index root is not an object")
        return MemoryIndex.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Index %s unreadable (%s), starting from an empty index", path, e)
        return MemoryIndex()


def atomic_write_text(path: Path, text: str) -> None:
    """Write via a sibling temp file and os.replace, so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fp: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            dir=str(path.parent),
            prefix=f".{path.name}.tmp.",
        ) as f:
            tmp_fp = Path(f.name)
            f.write(text)
        os.replace(tmp_fp, path)
        tmp_fp = None
    finally:
        if tmp_fp is not None:
            tmp_fp.unlink(missing_ok=True)


def save_index(
    index: MemoryIndex, index_path: Path, stats_path: Path, now: datetime | None = None
) -> None:
    """Persist the whole index, then regenerate the stats file from it."""
    atomic_write_text(index_path, json.dumps(index.to_dict(), indent=2, ensure_ascii=False))
    atomic_write_text(stats_path, json.dumps(index.stats(now), indent=2, ensure_ascii=False))
