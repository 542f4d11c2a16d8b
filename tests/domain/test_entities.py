"""Tests for semstore domain entities."""

from __future__ import annotations

from datetime import datetime, timezone

import pydantic
import pytest

from semstore.domain.entities import (
    SOURCE_ADAPTER,
    BrowserSource,
    ClipboardSource,
    ContentRecord,
    EmailSource,
    IndexNode,
    ManualSource,
    MeetingSource,
    RankedResult,
    ScreenCaptureSource,
    SearchMetrics,
    SweepReport,
    VectorRecord,
    source_from_key,
    source_key,
)
from semstore.domain.enums import ContentTag, MatchSource


@pytest.mark.unit
class TestContentSource:
    @pytest.mark.parametrize(
        "source,key",
        [
            (ClipboardSource(), "clipboard"),
            (ScreenCaptureSource(app="Slack"), "screen:Slack"),
            (EmailSource(sender="a@b.c", subject="Hi"), "email"),
            (BrowserSource(url="https://example.org"), "browser"),
            (MeetingSource(participants=["ann", "bo"]), "meeting"),
            (ManualSource(), "manual"),
        ],
    )
    def test_keys(self, source, key):
        assert source.key == key
        assert source_key(source) == key

    def test_string_is_taken_as_key(self):
        assert source_key("screen:Mail") == "screen:Mail"

    def test_tagged_union_parses_by_kind(self):
        parsed = SOURCE_ADAPTER.validate_python({"kind": "screen_capture", "app": "Xcode"})
        assert isinstance(parsed, ScreenCaptureSource)
        assert parsed.app == "Xcode"

    def test_union_json_round_trip(self):
        source = MeetingSource(participants=["ann"])
        assert SOURCE_ADAPTER.validate_json(source.model_dump_json()) == source

    def test_unknown_kind_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SOURCE_ADAPTER.validate_python({"kind": "fax"})

    def test_sources_are_frozen(self):
        with pytest.raises(pydantic.ValidationError):
            ScreenCaptureSource(app="a").app = "b"

    def test_source_from_key(self):
        assert source_from_key("screen:Slack") == ScreenCaptureSource(app="Slack")
        assert isinstance(source_from_key("clipboard"), ClipboardSource)
        assert isinstance(source_from_key("browser"), BrowserSource)

    def test_source_from_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown source key"):
            source_from_key("carrier-pigeon")


@pytest.mark.unit
class TestContentRecord:
    def test_defaults(self):
        record = ContentRecord(id="r1", text="hello")
        assert record.source == ManualSource()
        assert record.tags == set()
        assert record.access_count == 0
        assert record.last_accessed is None
        assert record.user_created is False
        assert record.timestamp.tzinfo is not None

    def test_naive_datetimes_become_utc(self):
        record = ContentRecord(id="r1", text="x", timestamp=datetime(2026, 1, 1, 12, 0))
        assert record.timestamp == datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_tags_accept_strings(self):
        record = ContentRecord(id="r1", text="x", tags={"email_thread", "urgent_action"})
        assert record.tags == {ContentTag.EMAIL_THREAD, ContentTag.URGENT_ACTION}

    def test_metadata_accepts_json_values(self):
        meta = {"n": 1, "f": 0.5, "ok": True, "none": None, "list": [1, "a"], "map": {"k": "v"}}
        record = ContentRecord(id="r1", text="x", metadata=meta)
        assert record.metadata == meta

    def test_metadata_rejects_non_json_values(self):
        with pytest.raises(pydantic.ValidationError):
            ContentRecord(id="r1", text="x", metadata={"bad": object()})

    def test_source_from_dict(self):
        record = ContentRecord(id="r1", text="x", source={"kind": "email", "sender": "boss"})
        assert isinstance(record.source, EmailSource)
        assert record.source.sender == "boss"


@pytest.mark.unit
class TestVectorAndIndexNode:
    def test_vector_record_magnitude(self):
        record = VectorRecord.from_embedding("v1", [3.0, 4.0])
        assert record.dimension == 2
        assert record.magnitude == pytest.approx(5.0)

    def test_index_node_neighbors(self):
        node = IndexNode(id="n", level=1, connections={0: ["a", "b"], 1: ["a"]})
        assert node.neighbors(0) == ["a", "b"]
        assert node.neighbors(1) == ["a"]
        assert node.neighbors(5) == []


@pytest.mark.unit
class TestResultsAndReports:
    def test_ranked_result_from_record(self):
        record = ContentRecord(
            id="r1",
            text="x",
            tags={ContentTag.URGENT_ACTION, ContentTag.EMAIL_THREAD},
            metadata={"a": 1},
        )
        result = RankedResult.from_record(record, 0.75, MatchSource.SEMANTIC)
        assert result.id == "r1"
        assert result.score == 0.75
        assert result.tags == [ContentTag.EMAIL_THREAD, ContentTag.URGENT_ACTION]
        assert result.metadata == {"a": 1}
        assert result.match_source == MatchSource.SEMANTIC

    def test_sweep_report_merge(self):
        a = SweepReport(operation="retention", content_deleted=2, vectors_deleted=2, deleted_ids=["a", "b"])
        b = SweepReport(operation="orphans", vectors_deleted=1, index_nodes_deleted=1, deleted_ids=["c"])
        merged = a.merge(b)
        assert merged.operation == "retention"
        assert merged.content_deleted == 2
        assert merged.vectors_deleted == 3
        assert merged.index_nodes_deleted == 1
        assert merged.deleted_ids == ["a", "b", "c"]

    def test_search_metrics_mean(self):
        metrics = SearchMetrics()
        assert metrics.mean_search_ms == 0.0
        metrics.searches = 4
        metrics.total_search_ms = 10.0
        assert metrics.mean_search_ms == 2.5
