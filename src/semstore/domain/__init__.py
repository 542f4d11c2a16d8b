"""Domain layer: enums, entities and ports."""

from semstore.domain.entities import (
    SOURCE_ADAPTER,
    AccessEntry,
    BrowserSource,
    ClipboardSource,
    ContentRecord,
    ContentSource,
    EmailSource,
    IndexNode,
    ManualSource,
    MeetingSource,
    RankedResult,
    ScreenCaptureSource,
    SearchMetrics,
    StoreItem,
    StoreStats,
    SweepReport,
    VectorRecord,
    source_from_key,
    source_key,
    utcnow,
)
from semstore.domain.enums import ContentTag, MatchSource
from semstore.domain.ports import EmbeddingProvider

__all__ = [
    "SOURCE_ADAPTER",
    "AccessEntry",
    "BrowserSource",
    "ClipboardSource",
    "ContentRecord",
    "ContentSource",
    "ContentTag",
    "EmailSource",
    "EmbeddingProvider",
    "IndexNode",
    "ManualSource",
    "MatchSource",
    "MeetingSource",
    "RankedResult",
    "ScreenCaptureSource",
    "SearchMetrics",
    "StoreItem",
    "StoreStats",
    "SweepReport",
    "VectorRecord",
    "source_from_key",
    "source_key",
    "utcnow",
]
