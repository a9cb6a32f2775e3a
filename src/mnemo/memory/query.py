"""Query pipeline stages: candidate selection, filtering, search, scoring, sorting.

The store drives the stages in cost order (index lookup, load, secondary
filters, text search, context scoring, sort, limit) so full-record work only
happens on candidates that survive the cheap lookups.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from mnemo.memory.index import MemoryIndex
from mnemo.memory.models import Memory, MemoryQuery, QueryContext, QueryFilters, clamp

TASK_MATCH_BOOST = 0.3
FILE_OVERLAP_BOOST = 0.2
ACTION_OVERLAP_BOOST = 0.1


def select_candidates(index: MemoryIndex, filters: QueryFilters) -> list[str]:
    """Union of the structural buckets, or every id when none is given."""
    if not filters.has_structural:
        return index.all_ids()
    return index.lookup(filters.project_id, filters.types, filters.tags, filters.entities)


def apply_filters(memories: Iterable[Memory], filters: QueryFilters) -> list[Memory]:
    """Secondary filters that have no index support."""
    result = []
    for m in memories:
        if filters.date_range and not filters.date_range.contains(m.created):
            continue
        if filters.min_relevance is not None and m.relevance_score < filters.min_relevance:
            continue
        if filters.archived is not None and m.archived != filters.archived:
            continue
        result.append(m)
    return result


def matches_text(memory: Memory, words: list[str]) -> bool:
    """True if any word is a substring of content, summary or a tag."""
    content = memory.content.lower()
    summary = memory.summary.lower()
    tags = [t.lower() for t in memory.tags]
    return any(
        w in content or w in summary or any(w in t for t in tags) for w in words
    )


def search(memories: Iterable[Memory], search_text: str | None) -> list[Memory]:
    memories = list(memories)
    words = (search_text or "").lower().split()
    if not words:
        return memories
    return [m for m in memories if matches_text(m, words)]


def _overlap_ratio(wanted: list[str], have: list[str]) -> float:
    # Empty context lists contribute nothing.
    if not wanted:
        return 0.0
    have_set = set(have)
    return sum(1 for item in wanted if item in have_set) / len(wanted)


def context_boost(memory: Memory, context: QueryContext) -> float:
    boost = 0.0
    if context.current_task and memory.task_id == context.current_task:
        boost += TASK_MATCH_BOOST
    snapshot = memory.context_snapshot
    boost += FILE_OVERLAP_BOOST * _overlap_ratio(context.current_files, snapshot.files)
    boost += ACTION_OVERLAP_BOOST * _overlap_ratio(context.recent_actions, snapshot.recent_actions)
    return boost


def score_by_context(memories: Iterable[Memory], context: QueryContext | None) -> list[Memory]:
    """Return copies with the context boost added to relevance_score.

    The persisted score is never touched.
    """
    if context is None:
        return list(memories)
    return [
        replace(m, relevance_score=clamp(m.relevance_score + context_boost(m, context)))
        for m in memories
    ]


def sort_memories(memories: list[Memory], sort_by: str) -> list[Memory]:
    if sort_by == "recency":
        key = lambda m: m.created
    elif sort_by == "access_count":
        key = lambda m: m.access_count
    else:
        key = lambda m: m.relevance_score
    return sorted(memories, key=key, reverse=True)


def finish(memories: Iterable[Memory], query: MemoryQuery) -> list[Memory]:
    """Everything after loading: filter, search, score, sort, limit."""
    result = apply_filters(memories, query.filters)
    result = search(result, query.search_text)
    result = score_by_context(result, query.context)
    result = sort_memories(result, query.sort_by)
    if query.limit:
        result = result[: query.limit]
    return result
