"""Agent-facing memory tools.

These functions are designed to be exposed as tools to an AI agent. Each takes
plain JSON-like arguments and returns readable text; errors come back as text
too, so a failed call never breaks the agent loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from mnemo.config import MnemoConfig
from mnemo.memory import backup
from mnemo.memory.analytics import range_start, summarize
from mnemo.memory.chain import find_neighbours
from mnemo.memory.consolidation import fingerprint, jaccard_similarity
from mnemo.memory.entities import extract_entities
from mnemo.memory.models import (
    ConsolidationScope,
    DateRange,
    Memory,
    MemoryType,
    MemoryValidationError,
    QueryFilters,
)

if TYPE_CHECKING:
    from mnemo.memory.store import MemoryStore

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 10
MIN_SUMMARY_CHARS = 5
MAX_QUERY_LIMIT = 100
MAX_CHAIN_DEPTH = 5
PREVIEW_CHARS = 200
MAX_IMPORT_ERRORS = 10


def _format_list(memories: list[Memory]) -> str:
    lines = []
    for i, m in enumerate(memories, 1):
        lines.append(
            f"{i}. [{m.type.value.upper()}] {m.summary}\n"
            f"   ID: {m.id} | Created: {m.created.isoformat()}\n"
            f"   Relevance: {m.relevance_score:.2f} | Access Count: {m.access_count}\n"
            f"   Tags: {', '.join(m.tags) or 'None'}"
            + ("\n   ARCHIVED" if m.archived else "")
        )
    return "\n\n".join(lines)


def _format_detail(m: Memory) -> str:
    return (
        f"ID: {m.id}\n"
        f"Type: {m.type.value}\n"
        f"Version: {m.version}\n"
        f"Created: {m.created.isoformat()}\n"
        f"Last Accessed: {m.last_accessed.isoformat()}\n"
        f"Access Count: {m.access_count}\n"
        f"Relevance Score: {m.relevance_score:.2f}\n"
        f"Confidence: {m.confidence}\n"
        f"Archived: {'Yes' if m.archived else 'No'}\n\n"
        f"Summary: {m.summary}\n\n"
        f"Content:\n{m.content}\n\n"
        f"Tags: {', '.join(m.tags) or 'None'}\n"
        f"Entities: {', '.join(m.entities) or 'None'}\n"
        f"Related Memories: {', '.join(m.related_memories) or 'None'}\n\n"
        f"Context Snapshot:\n{json.dumps(m.context_snapshot.to_dict(), indent=2)}"
    )


def get_memory_tools(
    store: MemoryStore, config: MnemoConfig | None = None
) -> dict[str, Callable[..., Awaitable[str]]]:
    """Return a dict of tool_name -> async callable for memory operations.

    These can be registered as MCP tools or called directly.
    """
    config = config or store.config

    async def _find_duplicate(content: str, type: MemoryType, project_id: str | None) -> Memory | None:
        now = store.now()
        window = timedelta(minutes=config.consolidation.duplicate_window_minutes)
        recent = await store.query(
            QueryFilters(
                project_id=project_id,
                types=[type],
                date_range=DateRange(now - window, now),
            )
        )
        wanted = fingerprint(content, type)
        for memory in recent:
            if project_id and memory.project_id != project_id:
                continue
            if memory.type != type:
                continue
            if fingerprint(memory.content, memory.type) == wanted:
                return memory
            if jaccard_similarity(content, memory.content) > config.consolidation.duplicate_similarity:
                return memory
        return None

    async def record_memory(
        content: str,
        summary: str,
        type: str,
        confidence: float = 0.8,
        tags: list[str] | None = None,
        entities: list[str] | None = None,
        related_memories: list[str] | None = None,
        project_id: str | None = None,
        task_id: str | None = None,
        context_snapshot: dict | None = None,
        metadata: dict | None = None,
    ) -> str:
        """Record a new memory unless a near-identical one was just recorded."""
        try:
            if len(content.strip()) < MIN_CONTENT_CHARS:
                raise MemoryValidationError(
                    f"Memory content must be at least {MIN_CONTENT_CHARS} characters"
                )
            if len(summary.strip()) < MIN_SUMMARY_CHARS:
                raise MemoryValidationError(
                    f"Memory summary must be at least {MIN_SUMMARY_CHARS} characters"
                )
            memory_type = MemoryType.parse(type)
            similar = await _find_duplicate(content, memory_type, project_id)
            if similar:
                logger.info("Skipped recording a duplicate of %s", similar.id)
                return (
                    f"A similar memory already exists (created {similar.created.isoformat()}):\n\n"
                    f"Type: {similar.type.value}\nSummary: {similar.summary}\n\n"
                    "The new memory was not created to avoid duplication. "
                    "Consider updating the existing memory if you have additional insights."
                )
            memory = await store.create(
                content=content,
                summary=summary,
                type=memory_type,
                confidence=confidence,
                tags=tags or [],
                entities=[*(entities or []), *extract_entities(content)],
                related_memories=related_memories or [],
                project_id=project_id,
                task_id=task_id,
                context_snapshot=context_snapshot,
                metadata=metadata or {},
                trigger_context="Manual recording via memory tool",
            )
        except Exception as e:
            return f"Error recording memory: {e}"
        return (
            "Memory recorded successfully!\n\n"
            f"ID: {memory.id}\n"
            f"Type: {memory.type.value}\n"
            f"Summary: {memory.summary}\n"
            f"Project: {memory.project_id or 'Global'}\n"
            f"Task: {memory.task_id or 'None'}\n"
            f"Tags: {', '.join(memory.tags) or 'None'}\n"
            f"Entities: {', '.join(memory.entities) or 'None'}\n"
            f"Confidence: {memory.confidence}"
        )

    async def query_memory(
        filters: dict | None = None,
        search_text: str | None = None,
        context: dict | None = None,
        limit: int = 20,
        sort_by: str = "relevance",
    ) -> str:
        """Search memories by filters, free text and current working context."""
        try:
            if limit > MAX_QUERY_LIMIT:
                raise MemoryValidationError(f"limit must be at most {MAX_QUERY_LIMIT}")
            memories = await store.query(
                filters=filters, search_text=search_text, context=context,
                sort_by=sort_by, limit=limit,
            )
        except Exception as e:
            return f"Error querying memories: {e}"
        if not memories:
            return "No memories found matching your query."
        return (
            f"Found {len(memories)} memories:\n\n{_format_list(memories)}\n\n"
            "Use 'get_memory' with a specific ID to view full content."
        )

    async def get_memory(memory_id: str) -> str:
        """Show one memory in full."""
        try:
            memory = await store.get(memory_id)
        except Exception as e:
            return f"Error retrieving memory: {e}"
        if memory is None:
            return f"Memory with ID {memory_id} not found."
        return f"Memory Details:\n\n{_format_detail(memory)}"

    async def update_memory(memory_id: str, updates: dict[str, Any]) -> str:
        """Update fields of a memory; its version is incremented."""
        try:
            memory = await store.update(memory_id, **updates)
        except Exception as e:
            return f"Error updating memory: {e}"
        if memory is None:
            return f"Memory with ID {memory_id} not found."
        return (
            "Memory updated successfully!\n\n"
            f"ID: {memory.id}\n"
            f"Version: {memory.version}\n"
            f"Last Updated: {memory.last_updated.isoformat() if memory.last_updated else '-'}"
        )

    async def delete_memory(memory_id: str) -> str:
        try:
            deleted = await store.delete(memory_id)
        except Exception as e:
            return f"Error deleting memory: {e}"
        if not deleted:
            return f"Memory with ID {memory_id} not found or could not be deleted."
        return f"Memory {memory_id} has been successfully deleted."

    async def memory_maintenance(
        operation: str,
        days_old: int | None = None,
        time_range: str = "all",
        project_id: str | None = None,
        include_archived: bool = True,
    ) -> str:
        """archive_old | decay_scores | get_stats

        ``time_range`` (week, month, quarter, year, all), ``project_id`` and
        ``include_archived`` narrow the memories get_stats reports on.
        """
        try:
            if operation == "archive_old":
                days = days_old or config.maintenance.archive_days
                count = await store.run_maintenance("archive", days)
                return (
                    f"Archived {count} old memories "
                    f"(older than {days} days with low relevance/access)."
                )
            if operation == "decay_scores":
                count = await store.run_maintenance("decay")
                return f"Relevance scores updated for {count} memories."
            if operation == "get_stats":
                return await _stats_report(time_range, project_id, include_archived)
            raise MemoryValidationError(f"Unknown maintenance operation: {operation}")
        except Exception as e:
            return f"Error in maintenance operation: {e}"

    async def _stats_report(
        time_range: str, project_id: str | None, include_archived: bool
    ) -> str:
        now = store.now()
        start = range_start(time_range, now)
        memories = await store.query(
            QueryFilters(
                project_id=project_id,
                date_range=DateRange(start, now) if start else None,
                archived=None if include_archived else False,
            )
        )
        if project_id:
            memories = [m for m in memories if m.project_id == project_id]
        report = summarize(memories, now)
        stats = await store.get_stats()

        def block(pairs) -> str:
            return "\n".join(f"  {k}: {n}" for k, n in pairs) or "  None"

        return (
            "Memory System Statistics:\n\n"
            f"Time Range: {time_range}"
            + (f" (since {start.isoformat()})" if start else "")
            + f"\nProject: {project_id or 'All projects'}\n"
            f"Total Memories: {report.total}\n"
            f"Archived: {report.archived}\n\n"
            f"By Type:\n{block(report.by_type.items())}\n\n"
            f"By Project:\n{block(report.by_project.items())}\n\n"
            f"Importance Distribution:\n{block(report.importance.items())}\n\n"
            f"Top Tags:\n{block(report.top_tags)}\n\n"
            f"Average Relevance Score: {report.average_relevance:.2f}\n"
            f"Average Importance Score: {report.average_importance:.2f}\n"
            f"Last Updated: {stats.get('last_updated', '-')}"
        )

    async def _neighbours_of(root: Memory, seen: set[str]) -> list[Memory]:
        """Same-project, same-type memories recorded near the root that look related."""
        peers = {
            m.id: m
            for m in await store.query(
                QueryFilters(project_id=root.project_id, types=[root.type])
            )
            if m.type == root.type and m.project_id == root.project_id
        }
        peers.setdefault(root.id, root)
        linked = find_neighbours(list(peers.values())).get(root.id, [])
        return [peers[i] for i in linked if i not in seen]

    async def get_memory_chain(
        memory_id: str,
        depth: int = 2,
        include_content: bool = False,
        auto_detect: bool = True,
    ) -> str:
        """Follow related-memory links from one memory.

        With ``auto_detect`` the chain also lists memories recorded right after
        the root that share a tag with it or read alike, marked SIMILAR.
        """
        try:
            if not 1 <= depth <= MAX_CHAIN_DEPTH:
                raise MemoryValidationError(f"depth must be between 1 and {MAX_CHAIN_DEPTH}")
            chain = await store.get_chain(memory_id, depth, include_content=True)
            similar: list[Memory] = []
            if chain and auto_detect:
                similar = await _neighbours_of(chain[0], {m.id for m in chain})
        except Exception as e:
            return f"Error retrieving memory chain: {e}"
        if not chain:
            return f"Memory with ID {memory_id} not found."
        root = chain[0]
        similar_ids = {m.id for m in similar}
        chain = chain + similar
        output = f'## Memory Chain for "{root.summary}"\n\nFound {len(chain)} related memories:\n\n'
        for i, memory in enumerate(chain):
            if i == 0:
                relationship = "ROOT"
            elif memory.id in similar_ids:
                relationship = "SIMILAR"
            elif memory.id in root.related_memories:
                relationship = "DIRECT"
            else:
                relationship = "INDIRECT"
            output += f"### {i + 1}. [{relationship}] {memory.summary}\n"
            output += f"- **Type:** {memory.type.value}\n"
            output += f"- **Created:** {memory.created.isoformat()}\n"
            output += f"- **Tags:** {', '.join(memory.tags) or 'None'}\n"
            if include_content:
                output += f"- **Content Preview:** {memory.content[:PREVIEW_CHARS]}\n"
            output += "\n"
        return output

    async def consolidate_memories(
        type: str | None = None,
        project_id: str | None = None,
        tag: str | None = None,
        confirm: bool = False,
    ) -> str:
        """Merge near-duplicate memories. Without confirm=True only reports."""
        try:
            scope = ConsolidationScope(
                project_id=project_id,
                type=type,
                tag=tag,
                threshold=config.consolidation.similarity_threshold,
                dry_run=not confirm,
            )
            result = await store.consolidate(scope)
        except Exception as e:
            return f"Error consolidating memories: {e}"
        lines = [
            "Memory Consolidation Report:\n",
            f"Groups merged: {len(result.kept)}",
            f"Memories discarded: {len(result.discarded_ids)}",
        ]
        for memory in result.kept:
            lines.append(f"- kept {memory.id}: {memory.summary}")
        if result.discarded_ids:
            lines.append(f"Discarded IDs: {', '.join(result.discarded_ids)}")
        if not confirm:
            lines.append("\nRun with confirm=True to actually consolidate memories.")
        return "\n".join(lines)

    async def export_memories(
        output_path: str | None = None,
        project_id: str | None = None,
        include_archived: bool = True,
    ) -> str:
        """Write memories to a JSON backup file (default: <memory_dir>/exports/)."""
        try:
            payload = await backup.export_memories(store, project_id, include_archived)
            if not payload["memories"]:
                return "No memories found to export."
            path = (
                Path(output_path).expanduser()
                if output_path
                else backup.default_export_path(store.root, project_id, store.now())
            )
            await asyncio.to_thread(backup.write_export, path, payload)
        except Exception as e:
            return f"Error exporting memories: {e}"
        return (
            f"Successfully exported {payload['total_memories']} memories to:\n{path}\n\n"
            "Format: json\n"
            f"Project: {project_id or 'All projects'}\n"
            f"Included archived: {'Yes' if include_archived else 'No'}"
        )

    async def import_memories(file_path: str, project_id: str | None = None) -> str:
        """Re-create memories from a JSON backup; project_id overrides every entry's project."""
        try:
            data = await asyncio.to_thread(backup.read_export, Path(file_path).expanduser())
            result = await backup.import_memories(store, data, project_id)
        except backup.BackupFormatError as e:
            return f"Error: {e}"
        except Exception as e:
            return f"Error importing memories: {e}"
        lines = [
            "Import completed:\n",
            f"- Successfully imported: {len(result.imported)} memories",
            f"- Skipped/Failed: {len(result.errors)} memories",
        ]
        if project_id:
            lines.append(f"- All memories assigned to project: {project_id}")
        if result.errors:
            lines.append("\nErrors:")
            lines.extend(f"- {error}" for error in result.errors[:MAX_IMPORT_ERRORS])
            if len(result.errors) > MAX_IMPORT_ERRORS:
                lines.append(f"- ... and {len(result.errors) - MAX_IMPORT_ERRORS} more errors")
        return "\n".join(lines)

    return {
        "record_memory": record_memory,
        "query_memory": query_memory,
        "get_memory": get_memory,
        "update_memory": update_memory,
        "delete_memory": delete_memory,
        "memory_maintenance": memory_maintenance,
        "get_memory_chain": get_memory_chain,
        "consolidate_memories": consolidate_memories,
        "export_memories": export_memories,
        "import_memories": import_memories,
    }
