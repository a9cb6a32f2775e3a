"""Relevance decay, archival policy and importance scoring."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from mnemo.memory.models import Memory, MemoryType, clamp

DECAY_DAYS = 30.0
ACCESS_WEIGHT = 0.1
DECAY_EPSILON = 0.01

ARCHIVE_MAX_RELEVANCE = 0.3
ARCHIVE_MAX_ACCESS = 5
DEFAULT_ARCHIVE_DAYS = 90

TYPE_IMPORTANCE = {
    MemoryType.BREAKTHROUGH: 0.9,
    MemoryType.ERROR_RECOVERY: 0.8,
    MemoryType.DECISION: 0.7,
    MemoryType.PATTERN: 0.7,
    MemoryType.USER_PREFERENCE: 0.6,
    MemoryType.FEEDBACK: 0.5,
}


def _days_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / 86400)


def decay_start(memory: Memory) -> float:
    """Score the decay is measured from: the score held at the last access or explicit set."""
    return memory.relevance_score if memory.decay_base is None else memory.decay_base


def decayed_score(memory: Memory, now: datetime) -> float:
    """Exponential staleness decay plus a log bonus for frequently read memories.

    Always computed from ``decay_start`` over the whole time since the last
    access, so running the pass repeatedly gives the same score as running it once.
    """
    days = _days_between(memory.last_accessed, now)
    score = decay_start(memory) * math.exp(-days / DECAY_DAYS)
    score += math.log10(memory.access_count + 1) * ACCESS_WEIGHT
    return clamp(score)


def needs_decay_write(old: float, new: float) -> bool:
    return abs(new - old) > DECAY_EPSILON


def archive_cutoff(now: datetime, days_old: int) -> datetime:
    return now - timedelta(days=days_old)


def should_archive(memory: Memory, cutoff: datetime) -> bool:
    """Old AND rarely read AND low relevance. No single criterion is enough."""
    return (
        not memory.archived
        and memory.created < cutoff
        and memory.relevance_score < ARCHIVE_MAX_RELEVANCE
        and memory.access_count < ARCHIVE_MAX_ACCESS
    )


def importance_score(memory: Memory, now: datetime) -> float:
    recency = math.exp(-_days_between(memory.created, now) / 90)
    access = math.log10(memory.access_count + 1) / 2
    type_weight = TYPE_IMPORTANCE.get(memory.type, 0.5)
    return clamp(recency * 0.3 + access * 0.2 + memory.confidence * 0.3 + type_weight * 0.2)
