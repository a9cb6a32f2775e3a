"""Text similarity and near-duplicate merge planning.

Merges are lossy on purpose: the survivor keeps its own content and only
picks up the tags (and ids) of the memories it absorbs.
"""

from __future__ import annotations

import hashlib
import math
import re
from collections import Counter
from dataclasses import dataclass, field

from mnemo.memory.models import Memory, MemoryType

STOP_WORDS = frozenset(
    {
        "the", "is", "at", "which", "on", "a", "an", "as", "are", "was", "were",
        "be", "been", "being", "have", "has", "had", "do", "does", "did", "will",
        "would", "could", "should", "may", "might", "must", "can", "shall", "and",
        "or", "but", "of", "in", "to", "for", "with", "by", "from", "it", "this",
        "that", "these", "those", "we", "our", "not", "into", "than", "then",
    }
)
STOP_WEIGHT = 0.1

_WORD_RE = re.compile(r"\w+")


def _words(text: str) -> list[str]:
    return _WORD_RE.findall(text.lower())


def _is_stop(word: str) -> bool:
    return len(word) <= 2 or word in STOP_WORDS


def weighted_similarity(text1: str, text2: str) -> float:
    """Cosine similarity over term counts, with stop-words weighted down.

    Returns 0.0 unless both texts contain at least one content word.
    """
    words1, words2 = _words(text1), _words(text2)
    if not any(not _is_stop(w) for w in words1) or not any(not _is_stop(w) for w in words2):
        return 0.0

    def vector(words: list[str]) -> dict[str, float]:
        return {
            w: n * (STOP_WEIGHT if _is_stop(w) else 1.0) for w, n in Counter(words).items()
        }

    v1, v2 = vector(words1), vector(words2)
    dot = sum(weight * v2.get(w, 0.0) for w, weight in v1.items())
    norm = math.sqrt(sum(x * x for x in v1.values())) * math.sqrt(sum(x * x for x in v2.values()))
    return dot / norm if norm else 0.0


def jaccard_similarity(text1: str, text2: str) -> float:
    words1, words2 = set(text1.lower().split()), set(text2.lower().split())
    union = words1 | words2
    return len(words1 & words2) / len(union) if union else 0.0


def fingerprint(content: str, type: MemoryType | str) -> str:
    """Stable hash of normalized content, for exact-duplicate checks."""
    normalized = re.sub(r"\s+", " ", content.lower().strip())
    normalized = re.sub(r"[^\w\s]", "", normalized)
    type_value = type.value if isinstance(type, MemoryType) else type
    return hashlib.sha256(f"{type_value}:{normalized}".encode()).hexdigest()


def memory_text(memory: Memory) -> str:
    return f"{memory.summary}\n{memory.content}"


def survivor_order(memory: Memory) -> tuple:
    """Sort key: higher confidence first, then more accesses, then oldest."""
    return (-memory.confidence, -memory.access_count, memory.created)


@dataclass
class MergeGroup:
    keeper: Memory
    absorbed: list[Memory] = field(default_factory=list)

    @property
    def merged_tags(self) -> list[str]:
        tags = list(self.keeper.tags)
        for m in self.absorbed:
            tags.extend(t for t in m.tags if t not in tags)
        return tags

    @property
    def absorbed_ids(self) -> list[str]:
        return [m.id for m in self.absorbed]


def plan_consolidation(memories: list[Memory], threshold: float) -> list[MergeGroup]:
    """Group near-duplicates of the same type. Only groups that absorbed something are returned."""
    ordered = sorted(memories, key=survivor_order)
    processed: set[str] = set()
    groups: list[MergeGroup] = []
    for i, keeper in enumerate(ordered):
        if keeper.id in processed:
            continue
        processed.add(keeper.id)
        group = MergeGroup(keeper)
        keeper_text = memory_text(keeper)
        for candidate in ordered[i + 1 :]:
            if candidate.id in processed or candidate.type != keeper.type:
                continue
            if weighted_similarity(keeper_text, memory_text(candidate)) >= threshold:
                group.absorbed.append(candidate)
                processed.add(candidate.id)
        if group.absorbed:
            groups.append(group)
    return groups
