"""Aggregate views over a set of memories for reports."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from mnemo.memory.models import Memory, MemoryType, MemoryValidationError
from mnemo.memory.relevance import importance_score

TIME_RANGES = {"week": 7, "month": 30, "quarter": 90, "year": 365, "all": None}

# (label, lower bound); checked top-down.
IMPORTANCE_BANDS = (
    ("Very High (0.8-1.0)", 0.8),
    ("High (0.6-0.8)", 0.6),
    ("Medium (0.4-0.6)", 0.4),
    ("Low (0.2-0.4)", 0.2),
    ("Very Low (0-0.2)", 0.0),
)

TOP_TAGS = 10


def range_start(time_range: str, now: datetime) -> datetime | None:
    """Start of the reporting window, or None for all time."""
    if time_range not in TIME_RANGES:
        raise MemoryValidationError(
            f"time_range must be one of {', '.join(TIME_RANGES)}, got {time_range!r}"
        )
    days = TIME_RANGES[time_range]
    return None if days is None else now - timedelta(days=days)


def importance_band(score: float) -> str:
    for label, floor in IMPORTANCE_BANDS:
        if score >= floor:
            return label
    return IMPORTANCE_BANDS[-1][0]


@dataclass
class MemoryAnalytics:
    total: int = 0
    archived: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_project: dict[str, int] = field(default_factory=dict)
    importance: dict[str, int] = field(default_factory=dict)
    top_tags: list[tuple[str, int]] = field(default_factory=list)
    average_relevance: float = 0.0
    average_importance: float = 0.0


def summarize(memories: list[Memory], now: datetime) -> MemoryAnalytics:
    result = MemoryAnalytics(
        total=len(memories),
        archived=sum(1 for m in memories if m.archived),
        by_type={t.value: 0 for t in MemoryType},
        importance={label: 0 for label, _ in IMPORTANCE_BANDS},
    )
    if not memories:
        return result
    tags: Counter[str] = Counter()
    importance_total = 0.0
    for m in memories:
        result.by_type[m.type.value] += 1
        if m.project_id:
            result.by_project[m.project_id] = result.by_project.get(m.project_id, 0) + 1
        score = importance_score(m, now)
        importance_total += score
        result.importance[importance_band(score)] += 1
        tags.update(m.tags)
    result.top_tags = tags.most_common(TOP_TAGS)
    result.average_relevance = sum(m.relevance_score for m in memories) / len(memories)
    result.average_importance = importance_total / len(memories)
    return result
