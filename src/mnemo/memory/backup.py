"""JSON export and import of memories.

An export file is one JSON object:

    {
      "version": "1.0",
      "export_date": "...",
      "project_id": "shop" | null,
      "total_memories": 2,
      "memories": [{"id": ..., "summary": ..., "content": ..., ...}]
    }

Import re-creates each entry as a new memory. The store assigns fresh ids,
versions, timestamps, access counts and relevance scores.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mnemo.memory.index import atomic_write_text
from mnemo.memory.models import Memory, MemoryValidationError, QueryFilters

if TYPE_CHECKING:
    from mnemo.memory.store import MemoryStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
EXPORT_DIR = "exports"

# Fields an imported entry may carry into create(); camelCase spellings accepted.
_IMPORT_FIELDS = {
    "content": "content",
    "summary": "summary",
    "type": "type",
    "confidence": "confidence",
    "tags": "tags",
    "entities": "entities",
    "related_memories": "relatedMemories",
    "context_snapshot": "contextSnapshot",
    "project_id": "projectId",
    "task_id": "taskId",
    "author": "author",
    "metadata": "metadata",
    "trigger_context": "triggerContext",
}


class BackupFormatError(MemoryValidationError):
    """The file is not a memory export this version can read."""


@dataclass
class ImportResult:
    imported: list[Memory] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def default_export_path(root: Path, project_id: str | None, now: datetime) -> Path:
    return root / EXPORT_DIR / f"memories_{project_id or 'all'}_{now:%Y%m%d%H%M%S}.json"


def build_export(memories: list[Memory], project_id: str | None, now: datetime) -> dict[str, Any]:
    return {
        "version": EXPORT_VERSION,
        "export_date": now.isoformat(),
        "project_id": project_id,
        "total_memories": len(memories),
        "memories": [{**m.to_frontmatter(), "content": m.content} for m in memories],
    }


def write_export(path: Path, payload: dict[str, Any]) -> None:
    atomic_write_text(path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")


def read_export(path: Path) -> dict[str, Any]:
    """Load and check an export file."""
    if path.suffix.lower() != ".json":
        raise BackupFormatError("File must be in JSON format exported by the memory system.")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise BackupFormatError(f"File is not valid JSON: {e}") from e
    if not isinstance(data, dict) or "version" not in data or not isinstance(
        data.get("memories"), list
    ):
        raise BackupFormatError(
            "Invalid import file format. Please use a file exported by the memory system."
        )
    major = str(data["version"]).split(".")[0]
    if major != EXPORT_VERSION.split(".")[0]:
        raise BackupFormatError(f"Unsupported export version {data['version']!r}")
    return data


async def export_memories(
    store: MemoryStore, project_id: str | None = None, include_archived: bool = True
) -> dict[str, Any]:
    """Export payload for one project (or every memory), newest first."""
    memories = await store.query(
        QueryFilters(project_id=project_id, archived=None if include_archived else False),
        sort_by="recency",
    )
    if project_id:
        memories = [m for m in memories if m.project_id == project_id]
    logger.info("Exporting %d memories (project=%s)", len(memories), project_id or "all")
    return build_export(memories, project_id, store.now())


def _create_kwargs(entry: Any, project_id: str | None) -> dict[str, Any]:
    if not isinstance(entry, dict):
        raise MemoryValidationError("entry is not an object")
    kwargs = {}
    for name, camel in _IMPORT_FIELDS.items():
        value = entry.get(name, entry.get(camel))
        if value is not None:
            kwargs[name] = value
    if project_id:
        kwargs["project_id"] = project_id
    return kwargs


async def import_memories(
    store: MemoryStore, data: dict[str, Any], project_id: str | None = None
) -> ImportResult:
    """Create a memory for every valid entry. Bad entries are reported, not fatal."""
    result = ImportResult()
    for position, entry in enumerate(data["memories"], 1):
        try:
            result.imported.append(await store.create(**_create_kwargs(entry, project_id)))
        except (MemoryValidationError, TypeError) as e:
            result.errors.append(f"Memory {position}: {e}")
    logger.info(
        "Imported %d memories, %d failed", len(result.imported), len(result.errors)
    )
    return result
