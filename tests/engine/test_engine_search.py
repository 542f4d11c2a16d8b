"""Tests for StorageEngine search operations."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio
from helpers import KeywordEmbedder, at, axis

from semstore.core.exceptions import (
    DimensionMismatchError,
    EngineExecutionError,
    SearchFailedError,
    ValidationError,
)
from semstore.domain.entities import ClipboardSource, ScreenCaptureSource
from semstore.domain.enums import ContentTag, MatchSource
from semstore.engine import StorageEngine


async def _seed_urgent_email(engine: StorageEngine) -> None:
    """Three identical 'urgent email' notes at t0 < t1 < t2 plus noise."""
    for minutes, id in ((0, "t0"), (10, "t1"), (20, "t2")):
        await engine.store(
            f"Urgent email from finance ({id})",
            axis("urgent", "email"),
            id=id,
            tags=[ContentTag.URGENT_ACTION, ContentTag.EMAIL_THREAD],
            timestamp=at(minutes),
        )
    await engine.store("lunch plans for friday", axis("lunch"), id="lunch", timestamp=at(30))
    await engine.store("travel budget", axis("travel", "budget"), id="travel", timestamp=at(40))


@pytest_asyncio.fixture
async def budget_engine(engine):
    """Records for keyword, hybrid and filter tests."""
    await engine.store(
        "Budget meeting notes",
        axis("budget", "meeting"),
        id="notes",
        tags=[ContentTag.MEETING_NOTES],
        source=ScreenCaptureSource(app="Zoom"),
        timestamp=at(0),
    )
    await engine.store(
        "travel budget for March",
        axis("travel", "budget"),
        id="travel",
        tags=[ContentTag.TASK],
        source=ClipboardSource(),
        timestamp=at(10),
    )
    await engine.store(
        "quarterly numbers",
        axis("budget"),
        id="numbers",
        source=ClipboardSource(),
        timestamp=at(20),
    )
    await engine.store(
        "meeting over lunch",
        axis("meeting", "lunch"),
        id="lunch",
        tags=[ContentTag.MEETING_NOTES],
        timestamp=at(30),
    )
    return engine


class TestSimilaritySearch:
    @pytest.mark.asyncio
    async def test_equal_scores_newest_first(self, engine):
        await _seed_urgent_email(engine)
        results = await engine.similarity_search("urgent email reply", k=10, threshold=0.6)
        assert [r.id for r in results] == ["t2", "t1", "t0"]
        assert all(r.score == pytest.approx(1.0) for r in results)
        assert all(r.match_source == MatchSource.SEMANTIC for r in results)

    @pytest.mark.asyncio
    async def test_identical_notes_partial_query(self, engine):
        for minutes, id in ((0, "t0"), (10, "t1"), (20, "t2")):
            await engine.store_text(
                "urgent email reply",
                id=id,
                tags=[ContentTag.EMAIL_THREAD, ContentTag.URGENT_ACTION],
                timestamp=at(minutes),
            )
        results = await engine.similarity_search("urgent", k=3, threshold=0.6)
        assert [r.id for r in results] == ["t2", "t1", "t0"]
        assert results[0].score == pytest.approx(0.70710678, abs=1e-5)

    @pytest.mark.asyncio
    async def test_accepts_embedding(self, engine):
        await _seed_urgent_email(engine)
        results = await engine.similarity_search(axis("travel"), k=5, threshold=0.5)
        assert [r.id for r in results] == ["travel"]
        assert results[0].score == pytest.approx(0.70710678, abs=1e-5)

    @pytest.mark.asyncio
    async def test_default_threshold(self, engine):
        await _seed_urgent_email(engine)
        # cos(travel+budget, budget) is about 0.707, above the 0.7 default
        assert [r.id for r in await engine.similarity_search(axis("budget"))] == ["travel"]
        assert await engine.similarity_search(axis("budget", "lunch", "meeting")) == []

    @pytest.mark.asyncio
    async def test_k_limits(self, engine):
        await _seed_urgent_email(engine)
        results = await engine.similarity_search(axis("urgent", "email"), k=2)
        assert [r.id for r in results] == ["t2", "t1"]

    @pytest.mark.asyncio
    async def test_empty_store(self, engine):
        assert await engine.similarity_search(axis("budget")) == []
        assert engine.last_search_error is None

    @pytest.mark.asyncio
    async def test_hits_bump_access(self, engine):
        await _seed_urgent_email(engine)
        await engine.similarity_search(axis("urgent", "email"), k=1)
        assert (await engine.content.get("t2")).access_count == 1
        assert (await engine.content.get("t1")).access_count == 0

    @pytest.mark.asyncio
    async def test_recency_wins_among_many_ties(self, engine):
        # id order runs opposite to recency
        for minutes in range(6):
            await engine.store(
                f"urgent email copy {minutes}",
                axis("urgent", "email"),
                id=f"n{minutes}",
                timestamp=at(minutes),
            )
        top = await engine.similarity_search(axis("urgent", "email"), k=1, threshold=0.6)
        assert [r.id for r in top] == ["n5"]
        top2 = await engine.similarity_search(axis("urgent", "email"), k=2, threshold=0.6)
        assert [r.id for r in top2] == ["n5", "n4"]

    @pytest.mark.asyncio
    async def test_tag_filter_accepts_strings(self, budget_engine):
        results = await budget_engine.similarity_search(
            axis("budget"), threshold=0.5, tags=["meeting_notes"]
        )
        assert [r.id for r in results] == ["notes"]

    @pytest.mark.asyncio
    async def test_unknown_tag_filter_degrades(self, budget_engine):
        results = await budget_engine.similarity_search(
            axis("budget"), threshold=0.1, tags=["not_a_tag"]
        )
        assert results == []
        assert isinstance(budget_engine.last_search_error, ValidationError)
        assert budget_engine.search_error is budget_engine.last_search_error

    @pytest.mark.asyncio
    async def test_tag_filter(self, budget_engine):
        results = await budget_engine.similarity_search(
            axis("budget"), threshold=0.5, tags=[ContentTag.MEETING_NOTES]
        )
        assert [r.id for r in results] == ["notes"]

    @pytest.mark.asyncio
    async def test_tag_filter_is_any_of(self, budget_engine):
        results = await budget_engine.similarity_search(
            axis("budget"), threshold=0.5, tags=[ContentTag.MEETING_NOTES, ContentTag.TASK]
        )
        assert {r.id for r in results} == {"notes", "travel"}

    @pytest.mark.asyncio
    async def test_time_filter(self, budget_engine):
        results = await budget_engine.similarity_search(
            axis("budget"), threshold=0.5, since=at(5), until=at(20)
        )
        assert [r.id for r in results] == ["numbers", "travel"]

    @pytest.mark.asyncio
    async def test_filters_over_ann_when_scan_limit_exceeded(self, settings):
        narrow = settings.model_copy(update={"exact_scan_limit": 0})
        async with StorageEngine(narrow, embedder=KeywordEmbedder(), index_seed=3) as engine:
            for i in range(30):
                await engine.store(
                    f"travel note {i}",
                    axis("travel"),
                    id=f"travel-{i}",
                    timestamp=at(i),
                )
            await engine.store(
                "budget deadline",
                axis("budget", "deadline"),
                id="target",
                tags=[ContentTag.DEADLINE],
                timestamp=at(100),
            )
            results = await engine.similarity_search(
                axis("budget"), threshold=0.5, tags=[ContentTag.DEADLINE]
            )
            assert [r.id for r in results] == ["target"]


class TestAnnSearch:
    @pytest.mark.asyncio
    async def test_nearest_ids(self, budget_engine):
        ids = await budget_engine.ann_search(axis("budget"), k=2)
        assert ids[0] == "numbers"
        assert len(ids) == 2

    @pytest.mark.asyncio
    async def test_degrades(self, budget_engine):
        assert await budget_engine.ann_search([1.0, 2.0]) == []
        assert isinstance(budget_engine.last_search_error, DimensionMismatchError)


class TestKeywordSearch:
    @pytest.mark.asyncio
    async def test_case_insensitive_newest_first(self, budget_engine):
        results = await budget_engine.keyword_search("BUDGET")
        assert [r.id for r in results] == ["travel", "notes"]
        assert all(r.score == 1.0 for r in results)
        assert all(r.match_source == MatchSource.KEYWORD for r in results)

    @pytest.mark.asyncio
    async def test_blank_query(self, budget_engine):
        assert await budget_engine.keyword_search("   ") == []


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_rrf_fusion(self, budget_engine):
        results = await budget_engine.hybrid_search("budget", axis("budget"), k=10)
        # keyword: travel, notes; semantic: numbers, travel, notes
        assert [r.id for r in results] == ["travel", "notes", "numbers"]
        by_id = {r.id: r for r in results}
        assert by_id["travel"].score == pytest.approx(1 / 60 + 1 / 61)
        assert by_id["notes"].score == pytest.approx(1 / 61 + 1 / 62)
        assert by_id["numbers"].score == pytest.approx(1 / 60)
        assert by_id["travel"].match_source == MatchSource.FUSION
        assert by_id["numbers"].match_source == MatchSource.SEMANTIC

    @pytest.mark.asyncio
    async def test_embeds_query_with_provider(self, budget_engine):
        explicit = await budget_engine.hybrid_search("budget", axis("budget"))
        embedded = await budget_engine.hybrid_search("budget")
        assert [r.id for r in embedded] == [r.id for r in explicit]

    @pytest.mark.asyncio
    async def test_keyword_only_when_not_embeddable(self, budget_engine):
        results = await budget_engine.hybrid_search("March", k=5)
        assert [r.id for r in results] == ["travel"]
        assert results[0].match_source == MatchSource.KEYWORD
        assert results[0].score == pytest.approx(1 / 60)

    @pytest.mark.asyncio
    async def test_k_limits(self, budget_engine):
        assert len(await budget_engine.hybrid_search("budget", axis("budget"), k=1)) == 1


class TestFilterQueries:
    @pytest.mark.asyncio
    async def test_by_tag(self, budget_engine):
        results = await budget_engine.by_tag(ContentTag.MEETING_NOTES)
        assert [r.id for r in results] == ["lunch", "notes"]
        assert all(r.score == 1.0 and r.match_source == MatchSource.FILTER for r in results)

    @pytest.mark.asyncio
    async def test_by_tag_string(self, budget_engine):
        assert [r.id for r in await budget_engine.by_tag("task")] == ["travel"]

    @pytest.mark.asyncio
    async def test_by_unknown_tag_degrades(self, budget_engine):
        assert await budget_engine.by_tag("nonsense") == []
        assert isinstance(budget_engine.last_search_error, ValidationError)
        assert budget_engine.metrics.failures == 1

    @pytest.mark.asyncio
    async def test_by_source(self, budget_engine):
        assert [r.id for r in await budget_engine.by_source(ClipboardSource())] == [
            "numbers",
            "travel",
        ]
        assert [r.id for r in await budget_engine.by_source("screen:Zoom")] == ["notes"]
        assert await budget_engine.by_source("screen:Slack") == []

    @pytest.mark.asyncio
    async def test_by_time_range(self, budget_engine):
        results = await budget_engine.by_time_range(at(10), at(30))
        assert [r.id for r in results] == ["lunch", "numbers", "travel"]

    @pytest.mark.asyncio
    async def test_recent(self, budget_engine):
        assert [r.id for r in await budget_engine.recent(2)] == ["lunch", "numbers"]

    @pytest.mark.asyncio
    async def test_limit(self, budget_engine):
        assert len(await budget_engine.by_time_range(at(0), at(30), limit=1)) == 1


class TestIntelligentQuery:
    @pytest.mark.asyncio
    async def test_tags_and_window_from_cues(self, engine):
        now = at(days=1, minutes=60)
        await engine.store(
            "urgent email today",
            axis("urgent", "email"),
            id="today",
            tags=[ContentTag.URGENT_ACTION],
            timestamp=at(days=1),
        )
        await engine.store(
            "urgent email yesterday",
            axis("urgent", "email"),
            id="yesterday",
            tags=[ContentTag.URGENT_ACTION],
            timestamp=at(0),
        )
        await engine.store(
            "untagged urgent email",
            axis("urgent", "email"),
            id="untagged",
            timestamp=at(days=1),
        )
        results = await engine.intelligent_query("urgent email today", now=now)
        assert [r.id for r in results] == ["today"]

        results = await engine.intelligent_query("urgent email yesterday", now=now)
        assert [r.id for r in results] == ["yesterday"]

    @pytest.mark.asyncio
    async def test_no_cues_is_plain_similarity(self, budget_engine):
        results = await budget_engine.intelligent_query("budget", now=at(60))
        assert [r.id for r in results][0] == "numbers"
        assert {r.id for r in results} == {"numbers", "travel", "notes"}

    @pytest.mark.asyncio
    async def test_falls_back_to_filtered_scan(self, engine):
        await engine.store(
            "I will send the slides",
            axis("deadline"),
            id="promise",
            tags=[ContentTag.COMMITMENT],
            timestamp=at(0),
        )
        await engine.store("no tag here", axis("deadline"), id="other", timestamp=at(1))
        results = await engine.intelligent_query("what did I promise", now=at(60))
        assert [r.id for r in results] == ["promise"]
        assert results[0].match_source == MatchSource.FILTER

    @pytest.mark.asyncio
    async def test_no_vector_and_no_cues(self, budget_engine):
        assert await budget_engine.intelligent_query("hello there", now=at(60)) == []

    @pytest.mark.asyncio
    async def test_limit(self, engine):
        await _seed_urgent_email(engine)
        results = await engine.intelligent_query("urgent email", limit=2, now=at(60))
        assert [r.id for r in results] == ["t2", "t1"]


class TestDegradedSearch:
    @pytest.mark.asyncio
    async def test_dimension_mismatch(self, budget_engine):
        assert await budget_engine.similarity_search([1.0, 0.0]) == []
        error = budget_engine.last_search_error
        assert isinstance(error, DimensionMismatchError)
        assert budget_engine.metrics.failures == 1
        assert budget_engine.metrics.last_error == error.message

    @pytest.mark.asyncio
    async def test_unembeddable_text_query(self, budget_engine):
        assert await budget_engine.similarity_search("hello there") == []
        assert isinstance(budget_engine.last_search_error, SearchFailedError)

    @pytest.mark.asyncio
    async def test_storage_fault(self, budget_engine, monkeypatch):
        async def broken(*args, **kwargs):
            raise EngineExecutionError("database is locked")

        monkeypatch.setattr(budget_engine.content, "get_many", broken)
        assert await budget_engine.similarity_search(axis("budget")) == []
        error = budget_engine.last_search_error
        assert isinstance(error, SearchFailedError)
        assert "database is locked" in error.message

    @pytest.mark.asyncio
    async def test_search_error_is_scoped_to_task(self, budget_engine):
        async def run(query):
            await budget_engine.similarity_search(query, threshold=0.5)
            return budget_engine.search_error

        failed, succeeded = await asyncio.gather(
            asyncio.create_task(run([1.0, 0.0])),
            asyncio.create_task(run(axis("budget"))),
        )
        assert isinstance(failed, DimensionMismatchError)
        assert succeeded is None
        assert budget_engine.search_error is None

    @pytest.mark.asyncio
    async def test_success_clears_search_error(self, budget_engine):
        await budget_engine.similarity_search([1.0, 0.0])
        assert budget_engine.search_error is not None
        await budget_engine.similarity_search(axis("budget"))
        assert budget_engine.search_error is None
        assert budget_engine.last_search_error is not None

    @pytest.mark.asyncio
    async def test_metrics(self, budget_engine):
        await budget_engine.similarity_search(axis("budget"))
        await budget_engine.keyword_search("budget")
        metrics = budget_engine.metrics
        assert metrics.searches == 2
        assert metrics.failures == 0
        assert metrics.last_search_ms >= 0.0
        assert metrics.total_search_ms >= metrics.last_search_ms
