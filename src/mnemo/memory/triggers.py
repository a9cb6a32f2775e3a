"""Keyword triggers that turn task notes into memories.

Task tracking itself lives elsewhere; these hooks are called with a small
``TaskEvent`` describing the task that completed or was verified.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mnemo.memory.models import Memory, MemoryType

if TYPE_CHECKING:
    from mnemo.memory.store import MemoryStore

logger = logging.getLogger(__name__)

SUMMARY_MAX = 100

TRIGGER_PATTERNS: dict[MemoryType, tuple[list[str], float]] = {
    MemoryType.BREAKTHROUGH: (
        ["solved", "fixed", "discovered", "realized", "breakthrough", "aha",
         "figured out", "found the issue", "finally"],
        0.7,
    ),
    MemoryType.DECISION: (
        ["decided", "chose", "will use", "going with", "selected", "opted for", "determined"],
        0.6,
    ),
    MemoryType.FEEDBACK: (
        ["good work", "great job", "thanks", "excellent", "perfect", "well done",
         "awesome", "appreciate"],
        0.8,
    ),
    MemoryType.ERROR_RECOVERY: (
        ["resolved error", "fixed bug", "error was", "issue was", "problem solved", "debugging"],
        0.7,
    ),
    MemoryType.PATTERN: (
        ["pattern", "recurring", "again", "similar to", "like before", "same issue",
         "keeps happening"],
        0.6,
    ),
    MemoryType.USER_PREFERENCE: (
        ["prefer", "like this", "always", "usually", "my style", "i want", "please always"],
        0.6,
    ),
}

SUMMARY_PREFIX = {
    MemoryType.BREAKTHROUGH: "Breakthrough: ",
    MemoryType.DECISION: "Decision made: ",
    MemoryType.ERROR_RECOVERY: "Error resolved: ",
    MemoryType.PATTERN: "Pattern identified: ",
}
FIXED_SUMMARY = {
    MemoryType.FEEDBACK: "Positive feedback received",
    MemoryType.USER_PREFERENCE: "User preference noted",
}

KEYWORD_TAGS = [
    ("test", "testing"),
    ("bug", "debugging"),
    ("error", "debugging"),
    ("performance", "performance"),
    ("security", "security"),
    ("api", "api"),
    ("database", "database"),
]


@dataclass
class TriggerResult:
    type: MemoryType
    confidence: float
    summary: str
    content: str
    tags: list[str] = field(default_factory=list)
    should_trigger: bool = True


@dataclass
class TaskEvent:
    task_id: str
    name: str
    project_id: str | None = None


def summarize(type: MemoryType, text: str) -> str:
    if type in FIXED_SUMMARY:
        return FIXED_SUMMARY[type]
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return SUMMARY_PREFIX.get(type, "") + first_line[:SUMMARY_MAX]


def extract_tags(text: str, type: MemoryType) -> list[str]:
    tags = [type.value]
    for ext in re.findall(r"\.([a-zA-Z]+)\b", text):
        if len(ext) < 9:
            tags.append(ext.lower())
    lowered = text.lower()
    tags.extend(tag for keyword, tag in KEYWORD_TAGS if keyword in lowered)
    return list(dict.fromkeys(tags))


def analyze_trigger(text: str) -> TriggerResult | None:
    """Classify text by the first memory type whose keywords appear in it."""
    lowered = text.lower()
    for type, (keywords, min_confidence) in TRIGGER_PATTERNS.items():
        matches = sum(1 for k in keywords if k in lowered)
        if not matches:
            continue
        confidence = min(0.95, min_confidence + matches * 0.1)
        return TriggerResult(
            type=type,
            confidence=round(confidence, 2),
            summary=summarize(type, text),
            content=text,
            tags=extract_tags(text, type),
            should_trigger=confidence >= min_confidence,
        )
    return None


async def _record_task_event(
    store: MemoryStore, task: TaskEvent, notes: str | None, status: str
) -> Memory | None:
    if not notes or not notes.strip():
        return None
    trigger = analyze_trigger(notes)
    if trigger is None or not trigger.should_trigger:
        return None
    memory = await store.create(
        content=trigger.content,
        summary=trigger.summary,
        type=trigger.type,
        confidence=trigger.confidence,
        tags=[*trigger.tags, f"task-{status}"],
        project_id=task.project_id,
        task_id=task.task_id,
        context_snapshot={
            "task_context": {"task_id": task.task_id, "task_name": task.name, "task_status": status}
        },
        trigger_context=f"Task {status}: {task.name}",
    )
    logger.info("Recorded %s memory from task %s", trigger.type.value, task.task_id)
    return memory


async def on_task_complete(
    store: MemoryStore, task: TaskEvent, notes: str | None = None
) -> Memory | None:
    return await _record_task_event(store, task, notes, "completion")


async def on_task_verify(
    store: MemoryStore, task: TaskEvent, notes: str | None = None
) -> Memory | None:
    return await _record_task_event(store, task, notes, "verification")
