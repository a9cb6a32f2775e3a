"""Breadth-first traversal of the related-memories graph, plus implicit neighbours.

The graph may contain cycles; the visited set is what guarantees termination.
"""

from __future__ import annotations

from collections import deque
from typing import Awaitable, Callable

from mnemo.memory.consolidation import jaccard_similarity
from mnemo.memory.models import Memory

Loader = Callable[[str], Awaitable["Memory | None"]]

NEIGHBOUR_WINDOW = 3
NEIGHBOUR_SIMILARITY = 0.3


async def resolve_chain(root_id: str, depth: int, load: Loader) -> list[Memory]:
    """Root first, then every memory within ``depth`` hops, once each, in BFS order."""
    root = await load(root_id)
    if root is None:
        return []

    chain = [root]
    visited = {root.id}
    frontier = deque((rid, 1) for rid in root.related_memories)
    while frontier:
        memory_id, hops = frontier.popleft()
        if hops > depth or memory_id in visited:
            continue
        visited.add(memory_id)
        memory = await load(memory_id)
        if memory is None:
            continue
        chain.append(memory)
        if hops < depth:
            frontier.extend((rid, hops + 1) for rid in memory.related_memories if rid not in visited)
    return chain


def find_neighbours(
    memories: list[Memory], window: int = NEIGHBOUR_WINDOW
) -> dict[str, list[str]]:
    """Implicit links between memories recorded close together.

    Memories are ordered by creation time; each one is linked to the next
    ``window`` memories that share a tag with it or whose content overlaps
    by more than ``NEIGHBOUR_SIMILARITY`` (Jaccard over words).
    """
    ordered = sorted(memories, key=lambda m: m.created)
    links: dict[str, list[str]] = {}
    for i, memory in enumerate(ordered):
        tags = set(memory.tags)
        found = [
            other.id
            for other in ordered[i + 1 : i + 1 + window]
            if tags & set(other.tags)
            or jaccard_similarity(memory.content, other.content) > NEIGHBOUR_SIMILARITY
        ]
        if found:
            links[memory.id] = found
    return links
