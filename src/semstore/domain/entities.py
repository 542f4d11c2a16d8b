"""Domain entities for semstore.

All entities are Pydantic BaseModels. ``ContentSource`` is a tagged union
discriminated on ``kind``; metadata values are restricted to JSON-safe
values through pydantic's ``JsonValue``.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, JsonValue, TypeAdapter, field_validator

from semstore.domain.enums import ContentTag, MatchSource


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Content sources (tagged union)
# ---------------------------------------------------------------------------


class _Source(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> str:
        """Grouping key used by source filters and statistics."""
        return self.kind  # type: ignore[attr-defined]


class ClipboardSource(_Source):
    kind: Literal["clipboard"] = "clipboard"


class ScreenCaptureSource(_Source):
    kind: Literal["screen_capture"] = "screen_capture"
    app: str

    @property
    def key(self) -> str:
        return f"screen:{self.app}"


class EmailSource(_Source):
    kind: Literal["email"] = "email"
    sender: str | None = None
    subject: str | None = None


class BrowserSource(_Source):
    kind: Literal["browser"] = "browser"
    url: str
    title: str | None = None


class MeetingSource(_Source):
    kind: Literal["meeting"] = "meeting"
    participants: list[str] = Field(default_factory=list)


class ManualSource(_Source):
    kind: Literal["manual"] = "manual"


ContentSource = Annotated[
    Union[
        ClipboardSource,
        ScreenCaptureSource,
        EmailSource,
        BrowserSource,
        MeetingSource,
        ManualSource,
    ],
    Field(discriminator="kind"),
]

SOURCE_ADAPTER: TypeAdapter[ContentSource] = TypeAdapter(ContentSource)


def source_key(source: _Source | str) -> str:
    """Return the grouping key of *source*; strings are taken as keys."""
    if isinstance(source, str):
        return source
    return source.key


def source_from_key(key: str) -> _Source:
    """Build the simplest source matching a grouping key (CLI/API helper)."""
    if key.startswith("screen:"):
        return ScreenCaptureSource(app=key.split(":", 1)[1])
    if key == "browser":
        return BrowserSource(url="")
    simple: dict[str, type[_Source]] = {
        "clipboard": ClipboardSource,
        "email": EmailSource,
        "meeting": MeetingSource,
        "manual": ManualSource,
    }
    if key not in simple:
        raise ValueError(f"Unknown source key: {key}")
    return simple[key]()


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ContentRecord(BaseModel):
    """A stored piece of text with its provenance and bookkeeping."""

    id: str
    text: str
    source: ContentSource = Field(default_factory=ManualSource)
    tags: set[ContentTag] = Field(default_factory=set)
    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    access_count: int = 0
    last_accessed: datetime | None = None
    user_created: bool = False

    @field_validator("timestamp", "created_at", "updated_at", "last_accessed")
    @classmethod
    def _tz_aware(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class VectorRecord(BaseModel):
    """An embedding with its cached L2 magnitude."""

    id: str
    dimension: int
    embedding: list[float]
    magnitude: float

    @classmethod
    def from_embedding(cls, id: str, embedding: list[float]) -> VectorRecord:
        magnitude = math.sqrt(sum(x * x for x in embedding))
        return cls(id=id, dimension=len(embedding), embedding=list(embedding), magnitude=magnitude)


class IndexNode(BaseModel):
    """A node of the HNSW graph; ``connections`` maps level to neighbor ids."""

    id: str
    level: int
    connections: dict[int, list[str]] = Field(default_factory=dict)
    is_entry_point: bool = False

    def neighbors(self, level: int) -> list[str]:
        return self.connections.get(level, [])


class StoreItem(BaseModel):
    """One element of a batch store request.

    Either ``embedding`` or an embedding provider on the engine is needed.
    """

    id: str | None = None
    text: str
    embedding: list[float] | None = None
    source: ContentSource = Field(default_factory=ManualSource)
    tags: set[ContentTag] = Field(default_factory=set)
    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    timestamp: datetime | None = None
    user_created: bool = False

    @field_validator("timestamp")
    @classmethod
    def _tz_aware(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


# ---------------------------------------------------------------------------
# Query results and reports
# ---------------------------------------------------------------------------


class RankedResult(BaseModel):
    """A search hit returned to query callers."""

    id: str
    text: str
    source: ContentSource
    tags: list[ContentTag]
    score: float
    timestamp: datetime
    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    match_source: MatchSource = MatchSource.SEMANTIC

    @classmethod
    def from_record(
        cls,
        record: ContentRecord,
        score: float,
        match_source: MatchSource,
    ) -> RankedResult:
        return cls(
            id=record.id,
            text=record.text,
            source=record.source,
            tags=sorted(record.tags, key=lambda t: t.value),
            score=score,
            timestamp=record.timestamp,
            metadata=record.metadata,
            match_source=match_source,
        )


class SearchMetrics(BaseModel):
    """Observable search counters, updated by the engine after every search."""

    searches: int = 0
    failures: int = 0
    last_search_ms: float = 0.0
    total_search_ms: float = 0.0
    last_error: str | None = None

    @property
    def mean_search_ms(self) -> float:
        if self.searches == 0:
            return 0.0
        return self.total_search_ms / self.searches


class AccessEntry(BaseModel):
    id: str
    text: str
    access_count: int
    last_accessed: datetime | None = None


class StoreStats(BaseModel):
    """Aggregate statistics computed by full scan."""

    content_count: int = 0
    vector_count: int = 0
    index_node_count: int = 0
    dimension: int | None = None
    capacity: int = 0
    tag_counts: dict[str, int] = Field(default_factory=dict)
    source_counts: dict[str, int] = Field(default_factory=dict)
    most_accessed: list[AccessEntry] = Field(default_factory=list)
    last_search_ms: float = 0.0


class SweepReport(BaseModel):
    """Outcome of a retention, capacity or orphan sweep."""

    operation: str
    content_deleted: int = 0
    vectors_deleted: int = 0
    index_nodes_deleted: int = 0
    duration_ms: float = 0.0
    deleted_ids: list[str] = Field(default_factory=list)

    def merge(self, other: SweepReport) -> SweepReport:
        return SweepReport(
            operation=self.operation,
            content_deleted=self.content_deleted + other.content_deleted,
            vectors_deleted=self.vectors_deleted + other.vectors_deleted,
            index_nodes_deleted=self.index_nodes_deleted + other.index_nodes_deleted,
            duration_ms=self.duration_ms + other.duration_ms,
            deleted_ids=self.deleted_ids + other.deleted_ids,
        )
