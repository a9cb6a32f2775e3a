"""Memory record types, query inputs and boundary validation.

Records are plain dataclasses. ``to_frontmatter``/``from_frontmatter`` convert
between a ``Memory`` and the YAML metadata stored at the top of its file; the
body of the file is the memory content.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal


class MemoryValidationError(ValueError):
    """Raised when caller input is malformed. No state is mutated."""


class MemoryType(str, Enum):
    BREAKTHROUGH = "breakthrough"
    DECISION = "decision"
    FEEDBACK = "feedback"
    ERROR_RECOVERY = "error_recovery"
    PATTERN = "pattern"
    USER_PREFERENCE = "user_preference"

    @classmethod
    def parse(cls, value: MemoryType | str) -> MemoryType:
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise MemoryValidationError(
                f"Unknown memory type {value!r} (expected one of: {valid})"
            ) from None


SortKey = Literal["relevance", "recency", "access_count"]
SORT_KEYS = ("relevance", "recency", "access_count")

# Fields callers may change through update(); everything else is store-managed.
UPDATABLE_FIELDS = frozenset(
    {
        "content",
        "summary",
        "type",
        "confidence",
        "tags",
        "entities",
        "related_memories",
        "context_snapshot",
        "project_id",
        "task_id",
        "author",
        "metadata",
        "trigger_context",
        "archived",
        "relevance_score",
    }
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def generate_memory_id(now: datetime | None = None) -> str:
    """Opaque id: ``mem_<epoch-ms>_<random>``."""
    ts = int((now or utcnow()).timestamp() * 1000)
    return f"mem_{ts}_{uuid.uuid4().hex[:9]}"


def _unique(values: list[str] | tuple[str, ...] | set[str] | None, name: str) -> list[str]:
    """De-duplicate a string collection, keeping first-seen order."""
    if values is None:
        return []
    if isinstance(values, str):
        raise MemoryValidationError(f"{name} must be a list of strings, not a string")
    seen: list[str] = []
    for v in values:
        if not isinstance(v, str):
            raise MemoryValidationError(f"{name} must contain only strings, got {v!r}")
        if v not in seen:
            seen.append(v)
    return seen


def _parse_dt(value: datetime | str | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _check_unit(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MemoryValidationError(f"{name} must be a number in [0, 1], got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise MemoryValidationError(f"{name} must be in [0, 1], got {value}")
    return float(value)


def _check_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MemoryValidationError(f"{name} is required and must be non-empty text")
    return value.strip()


@dataclass
class ContextSnapshot:
    """Working context captured when a memory was recorded."""

    files: list[str] = field(default_factory=list)
    recent_actions: list[str] = field(default_factory=list)
    environment_state: dict[str, Any] = field(default_factory=dict)
    task_context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: ContextSnapshot | dict | None) -> ContextSnapshot:
        if data is None:
            return cls()
        if isinstance(data, ContextSnapshot):
            return data
        if not isinstance(data, dict):
            raise MemoryValidationError(f"context_snapshot must be a mapping, got {data!r}")
        return cls(
            files=_unique(data.get("files"), "context_snapshot.files"),
            recent_actions=_unique(
                data.get("recent_actions", data.get("recentActions")),
                "context_snapshot.recent_actions",
            ),
            environment_state=dict(
                data.get("environment_state", data.get("environmentState")) or {}
            ),
            task_context=dict(data.get("task_context", data.get("taskContext")) or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Memory:
    """One persisted unit of agent knowledge."""

    id: str
    content: str
    summary: str
    type: MemoryType
    confidence: float
    author: str
    created: datetime
    last_accessed: datetime
    tags: list[str] = field(default_factory=list)
    entities: list[str] = field(default_factory=list)
    related_memories: list[str] = field(default_factory=list)
    context_snapshot: ContextSnapshot = field(default_factory=ContextSnapshot)
    project_id: str | None = None
    task_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    trigger_context: str | None = None
    last_updated: datetime | None = None
    access_count: int = 0
    relevance_score: float = 1.0
    version: int = 1
    supersedes: str | None = None
    archived: bool = False
    consolidated_from: list[str] = field(default_factory=list)
    # Score the current decay run started from; None until the first decay write.
    decay_base: float | None = None

    def __post_init__(self) -> None:
        self.type = MemoryType.parse(self.type)
        self.content = _check_text(self.content, "content")
        self.summary = _check_text(self.summary, "summary")
        self.author = _check_text(self.author, "author")
        self.confidence = _check_unit(self.confidence, "confidence")
        self.relevance_score = clamp(float(self.relevance_score))
        self.tags = _unique(self.tags, "tags")
        self.entities = _unique(self.entities, "entities")
        self.related_memories = _unique(self.related_memories, "related_memories")
        self.consolidated_from = _unique(self.consolidated_from, "consolidated_from")
        if not isinstance(self.archived, bool):
            raise MemoryValidationError(f"archived must be true or false, got {self.archived!r}")
        if self.decay_base is not None:
            self.decay_base = clamp(float(self.decay_base))
        self.context_snapshot = ContextSnapshot.from_dict(self.context_snapshot)
        if self.metadata is None:
            self.metadata = {}
        elif not isinstance(self.metadata, dict):
            raise MemoryValidationError(f"metadata must be a mapping, got {self.metadata!r}")

    # ── Frontmatter serialization ─────────────────────────────

    def to_frontmatter(self) -> dict[str, Any]:
        """All fields except ``content``, as YAML-safe values."""
        meta: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "content":
                continue
            value = getattr(self, f.name)
            if isinstance(value, MemoryType):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            elif isinstance(value, ContextSnapshot):
                value = value.to_dict()
            meta[f.name] = value
        return meta

    @classmethod
    def from_frontmatter(cls, meta: dict[str, Any], content: str) -> Memory:
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in meta.items() if k in known}
        data["content"] = content
        for key in ("created", "last_accessed", "last_updated"):
            data[key] = _parse_dt(data.get(key))
        if data["created"] is None:
            raise ValueError("record has no created timestamp")
        if data["last_accessed"] is None:
            data["last_accessed"] = data["created"]
        return cls(**data)


@dataclass
class DateRange:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        try:
            self.start = _parse_dt(self.start)
            self.end = _parse_dt(self.end)
        except (AttributeError, TypeError, ValueError) as e:
            raise MemoryValidationError(f"Invalid date range: {e}") from e
        if self.start is None or self.end is None:
            raise MemoryValidationError("date_range requires both start and end")
        if self.start > self.end:
            raise MemoryValidationError("date_range start must not be after end")

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts <= self.end


@dataclass
class QueryFilters:
    """Structural (indexed) and secondary (scanned) filters.

    ``archived`` defaults to False so archived memories only show up when asked
    for; pass ``None`` to include both.
    """

    project_id: str | None = None
    types: list[MemoryType] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    entities: list[str] = field(default_factory=list)
    date_range: DateRange | None = None
    min_relevance: float | None = None
    archived: bool | None = False

    def __post_init__(self) -> None:
        self.types = [MemoryType.parse(t) for t in (self.types or [])]
        self.tags = _unique(self.tags, "tags")
        self.entities = _unique(self.entities, "entities")
        if isinstance(self.date_range, dict):
            try:
                self.date_range = DateRange(**self.date_range)
            except TypeError as e:
                raise MemoryValidationError(f"Invalid date range: {e}") from e
        elif self.date_range is not None and not isinstance(self.date_range, DateRange):
            raise MemoryValidationError(f"Invalid date range: {self.date_range!r}")
        if self.min_relevance is not None:
            self.min_relevance = _check_unit(self.min_relevance, "min_relevance")

    @property
    def has_structural(self) -> bool:
        return bool(self.project_id or self.types or self.tags or self.entities)

    @classmethod
    def from_dict(cls, data: dict | None) -> QueryFilters:
        if not data:
            return cls()
        date_range = data.get("date_range", data.get("dateRange"))
        return cls(
            project_id=data.get("project_id", data.get("projectId")),
            types=data.get("types") or [],
            tags=data.get("tags") or [],
            entities=data.get("entities") or [],
            date_range=date_range or None,
            min_relevance=data.get("min_relevance", data.get("minRelevance")),
            archived=data.get("archived", False),
        )


@dataclass
class QueryContext:
    """What the caller is working on right now, used for relevance boosting."""

    current_task: str | None = None
    current_files: list[str] = field(default_factory=list)
    recent_actions: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.current_files = _unique(self.current_files, "current_files")
        self.recent_actions = _unique(self.recent_actions, "recent_actions")

    @classmethod
    def from_dict(cls, data: dict | None) -> QueryContext | None:
        if not data:
            return None
        return cls(
            current_task=data.get("current_task", data.get("currentTask")),
            current_files=data.get("current_files", data.get("currentFiles")) or [],
            recent_actions=data.get("recent_actions", data.get("recentActions")) or [],
        )


@dataclass
class MemoryQuery:
    filters: QueryFilters = field(default_factory=QueryFilters)
    search_text: str | None = None
    context: QueryContext | None = None
    sort_by: SortKey = "relevance"
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.filters is None:
            self.filters = QueryFilters()
        if self.sort_by not in SORT_KEYS:
            raise MemoryValidationError(
                f"sort_by must be one of {', '.join(SORT_KEYS)}, got {self.sort_by!r}"
            )
        if self.limit is not None and (
            isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit <= 0
        ):
            raise MemoryValidationError(f"limit must be a positive integer, got {self.limit!r}")
        if self.search_text is not None and not isinstance(self.search_text, str):
            raise MemoryValidationError("search_text must be a string")


@dataclass
class ConsolidationScope:
    """Bucket of memories to deduplicate in one pass."""

    project_id: str | None = None
    type: MemoryType | None = None
    tag: str | None = None
    threshold: float = 0.85
    dry_run: bool = False

    def __post_init__(self) -> None:
        if self.type is not None:
            self.type = MemoryType.parse(self.type)
        self.threshold = _check_unit(self.threshold, "threshold")


@dataclass
class ConsolidationResult:
    kept: list[Memory] = field(default_factory=list)
    discarded_ids: list[str] = field(default_factory=list)
