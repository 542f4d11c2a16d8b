"""The storage engine.

``StorageEngine`` owns the content store, the vector store, the in-memory
HNSW graph, the embedding provider and the search metrics. Construct one
per process, ``open()`` it at startup, pass it to collaborators and
``close()`` it at shutdown (or use it as an async context manager).

Writes commit the vector database first and the content database second.
A crash in between can only leave vectors without content, which the
orphan sweep run by every ``open()`` removes.
"""

from __future__ import annotations

import math
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable, Sequence
from contextvars import ContextVar
from datetime import datetime

import numpy as np
import pydantic
import structlog
from pydantic import JsonValue

from semstore.application.fusion import reciprocal_rank_fusion
from semstore.application.maintenance import excess_count, find_orphans, retention_cutoff
from semstore.application.query_inference import infer_query
from semstore.application.ranking import rank_hits
from semstore.application.sanitize import Sanitizer
from semstore.config.settings import Settings, get_settings
from semstore.core.exceptions import (
    ConfigurationError,
    DimensionMismatchError,
    EngineExecutionError,
    InsertFailedError,
    OpenFailedError,
    SearchFailedError,
    SemStoreError,
    StoreNotOpenError,
    ValidationError,
)
from semstore.domain.entities import (
    ContentRecord,
    ContentSource,
    ManualSource,
    RankedResult,
    SearchMetrics,
    StoreItem,
    StoreStats,
    SweepReport,
    VectorRecord,
    source_key,
    utcnow,
)
from semstore.domain.enums import ContentTag, MatchSource
from semstore.domain.ports import EmbeddingProvider
from semstore.infrastructure.index.hnsw import HNSWIndex
from semstore.infrastructure.sqlite.content_store import SQLiteContentStore
from semstore.infrastructure.sqlite.locks import ReadWriteLock
from semstore.infrastructure.sqlite.vector_store import SQLiteVectorStore
from semstore.infrastructure.vector.similarity import is_finite, to_array

logger = structlog.get_logger(__name__)

QueryInput = str | Sequence[float]

_search_error: ContextVar[SemStoreError | None] = ContextVar("semstore_search_error", default=None)


class StorageEngine:
    """Semantic storage and retrieval over two SQLite files and an HNSW graph."""

    def __init__(
        self,
        settings: Settings | None = None,
        embedder: EmbeddingProvider | None = None,
        index_seed: int | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.embedder = embedder
        self.content = SQLiteContentStore(self.settings.content_db_path)
        self.vectors = SQLiteVectorStore(self.settings.vector_db_path)
        self.index = HNSWIndex(
            m=self.settings.hnsw_m,
            ef_construction=self.settings.hnsw_ef_construction,
            ef_search=self.settings.hnsw_ef_search,
            max_level=self.settings.hnsw_max_level,
            seed=index_seed,
        )
        self.sanitizer = Sanitizer(
            enabled=self.settings.redact_sensitive,
            redact_emails=self.settings.redact_emails,
        )
        self.metrics = SearchMetrics()
        self.last_search_error: SemStoreError | None = None
        self._lock = ReadWriteLock()
        self._dimension: int | None = self.settings.dimension
        self._open = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def dimension(self) -> int | None:
        return self._dimension

    @property
    def search_error(self) -> SemStoreError | None:
        """Error of the latest search in the calling asyncio context, if it failed.

        ``last_search_error`` is engine-wide; this one is per task.
        """
        return _search_error.get()

    async def open(self) -> None:
        """Open both databases, load the graph and sweep orphans."""
        if self._open:
            return
        log = logger.bind(data_dir=str(self.settings.data_dir))
        log.debug("engine.open.start")
        try:
            await self.content.open()
            await self.vectors.open()
            persisted = await self.vectors.get_dimension()
        except SemStoreError:
            await self._close_stores()
            raise

        configured = self.settings.dimension
        if persisted is not None and configured is not None and persisted != configured:
            await self._close_stores()
            raise ConfigurationError(
                f"Configured dimension {configured} conflicts with stored dimension {persisted}",
                {"configured": configured, "stored": persisted},
            )
        self._dimension = persisted if persisted is not None else configured
        if (
            self.embedder is not None
            and self._dimension is not None
            and self.embedder.dimensions != self._dimension
        ):
            await self._close_stores()
            raise ConfigurationError(
                f"Embedding provider produces {self.embedder.dimensions}-d vectors, "
                f"store expects {self._dimension}",
                {"provider": self.embedder.dimensions, "store": self._dimension},
            )

        self._open = True
        try:
            async with self._lock.write():
                await self._load_index()
                report = await self._orphan_sweep_locked()
        except SemStoreError as exc:
            self._open = False
            await self._close_stores()
            self.index.clear()
            raise OpenFailedError(
                f"Failed to load the vector index: {exc.message}", exc.details
            ) from exc
        log.info(
            "engine.open.complete",
            vectors=len(self.index),
            dimension=self._dimension,
            orphans_removed=report.vectors_deleted + report.index_nodes_deleted,
        )

    async def close(self) -> None:
        if not self._open:
            return
        async with self._lock.write():
            self._open = False
            await self._close_stores()
            self.index.clear()
        logger.info("engine.close")

    async def __aenter__(self) -> StorageEngine:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def store(
        self,
        text: str,
        embedding: Sequence[float],
        *,
        id: str | None = None,
        source: ContentSource | None = None,
        tags: Iterable[ContentTag | str] = (),
        metadata: dict[str, JsonValue] | None = None,
        timestamp: datetime | None = None,
        user_created: bool = False,
    ) -> ContentRecord:
        """Store one record with its embedding; re-storing an id replaces it."""
        item = _build_item(
            id=id,
            text=text,
            embedding=[float(x) for x in embedding],
            source=source,
            tags=tags,
            metadata=metadata,
            timestamp=timestamp,
            user_created=user_created,
        )
        records = await self.batch_store([item])
        return records[0]

    async def store_text(
        self,
        text: str,
        *,
        id: str | None = None,
        source: ContentSource | None = None,
        tags: Iterable[ContentTag | str] = (),
        metadata: dict[str, JsonValue] | None = None,
        timestamp: datetime | None = None,
        user_created: bool = False,
    ) -> ContentRecord | None:
        """Embed *text* with the provider and store it.

        Sensitive numbers are redacted before embedding when
        ``redact_sensitive`` is on. Returns ``None`` (nothing stored) when
        the text is shorter than ``min_text_length`` or the provider
        declines to embed it.
        """
        self._require_open()
        log = logger.bind(length=len(text))
        if len(text.strip()) < self.settings.min_text_length:
            log.debug("store.skip.too_short", min_length=self.settings.min_text_length)
            return None
        if self.embedder is None:
            raise ConfigurationError("store_text requires an embedding provider")

        clean = self.sanitizer(text)
        embedding = self.embedder.embed(clean)
        if embedding is None:
            log.info("store.skip.embedding_declined")
            return None
        return await self.store(
            clean,
            embedding,
            id=id,
            source=source,
            tags=tags,
            metadata=metadata,
            timestamp=timestamp,
            user_created=user_created,
        )

    async def batch_store(self, items: Sequence[StoreItem]) -> list[ContentRecord]:
        """Store *items* all-or-nothing under one transaction per database."""
        self._require_open()
        if not items:
            return []

        prepared = self._prepare(items)
        dims = len(next(iter(prepared.values()))[1])
        log = logger.bind(count=len(prepared))

        async with self._lock.write():
            self._require_open()
            if self._dimension is not None and dims != self._dimension:
                raise DimensionMismatchError(self._dimension, dims)
            fix_dimension = self._dimension is None

            existing = await self.content.get_many(list(prepared))
            for record_id, (record, _) in prepared.items():
                if record_id in existing:
                    record.created_at = existing[record_id].created_at

            changed: set[str] = set()
            try:
                async with self.vectors.db.transaction():
                    if fix_dimension:
                        await self.vectors.set_dimension(dims)
                    for record_id, (_, vector) in prepared.items():
                        stored = VectorRecord.from_embedding(record_id, vector.tolist())
                        await self.vectors.upsert_vector(stored)
                        changed |= self.index.insert(record_id, vector, norm=stored.magnitude)
                    await self._persist_nodes(changed)
            except Exception as exc:
                await self._load_index()
                log.error("store.insert.vector_failed", error=str(exc))
                raise InsertFailedError(
                    f"Vector write failed: {exc}", {"ids": list(prepared)}
                ) from exc
            if fix_dimension:
                self._dimension = dims

            try:
                async with self.content.db.transaction():
                    for record, _ in prepared.values():
                        await self.content.upsert(record)
            except Exception as exc:
                log.error("store.insert.content_failed", error=str(exc))
                await self._compensate([i for i in prepared if i not in existing])
                raise InsertFailedError(
                    f"Content write failed: {exc}", {"ids": list(prepared)}
                ) from exc

            evicted = await self._enforce_capacity_locked()

        log.info(
            "store.insert.complete",
            replaced=len(existing),
            evicted=evicted.content_deleted,
        )
        return [record for record, _ in prepared.values()]

    def _prepare(self, items: Sequence[StoreItem]) -> dict[str, tuple[ContentRecord, np.ndarray]]:
        """Validate and normalise *items* before any write; later ids win."""
        prepared: dict[str, tuple[ContentRecord, np.ndarray]] = {}
        dims: int | None = self._dimension
        now = utcnow()
        for item in items:
            record_id = item.id or uuid.uuid4().hex
            if not item.text or not item.text.strip():
                raise ValidationError("Content text must not be empty", {"id": record_id})
            if item.embedding is None or len(item.embedding) == 0:
                raise ValidationError("An embedding is required", {"id": record_id})
            if not is_finite(item.embedding):
                raise ValidationError("Embedding contains non-finite values", {"id": record_id})
            if dims is None:
                dims = len(item.embedding)
            elif len(item.embedding) != dims:
                raise DimensionMismatchError(dims, len(item.embedding), record_id)

            record = ContentRecord(
                id=record_id,
                text=item.text,
                source=item.source,
                tags=set(item.tags),
                metadata=item.metadata,
                timestamp=item.timestamp or now,
                created_at=now,
                updated_at=now,
                user_created=item.user_created,
            )
            prepared.pop(record_id, None)
            prepared[record_id] = (record, to_array(item.embedding))
        return prepared

    # ------------------------------------------------------------------
    # Point access
    # ------------------------------------------------------------------

    async def fetch(self, id: str) -> ContentRecord | None:
        """Return the record for *id* and bump its access bookkeeping."""
        self._require_open()
        async with self._lock.read():
            record = await self.content.get(id)
        if record is None:
            return None
        now = utcnow()
        await self._bump_access([id], now)
        return record.model_copy(
            update={"access_count": record.access_count + 1, "last_accessed": now}
        )

    async def fetch_embedding(self, id: str) -> list[float] | None:
        self._require_open()
        async with self._lock.read():
            vector = await self.vectors.get_vector(id)
        return None if vector is None else vector.embedding

    async def delete(self, id: str) -> bool:
        """Remove the content row, vector and graph node for *id*."""
        self._require_open()
        async with self._lock.write():
            content, vectors, _ = await self._delete_ids([id])
        logger.info("store.delete", id=id, found=bool(content or vectors))
        return bool(content or vectors)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def similarity_search(
        self,
        query: QueryInput,
        k: int = 10,
        threshold: float | None = None,
        *,
        tags: Iterable[ContentTag | str] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[RankedResult]:
        """Exact cosine re-rank of ANN (or filtered) candidates.

        *query* is either an embedding or text for the provider to embed.
        """
        cutoff = threshold if threshold is not None else self.settings.default_threshold

        async def run() -> list[RankedResult]:
            tag_set = {_as_tag(t) for t in tags or ()}
            vector = self._query_vector(query)
            return await self._similarity(vector, k, cutoff, tag_set, since, until)

        return await self._run_search("similarity", run)

    async def ann_search(self, query: QueryInput, k: int = 10) -> list[str]:
        """Approximate nearest ids straight from the graph, nearest first."""
        self._require_open()
        started = time.perf_counter()
        _search_error.set(None)
        try:
            vector = self._query_vector(query)
            async with self._lock.read():
                hits = self.index.search(vector, k)[:k]
        except SemStoreError as exc:
            self._record_failure("ann", exc, started)
            return []
        self._record_success("ann", started, len(hits))
        return [i for i, _ in hits]

    async def keyword_search(self, query: str, k: int = 10) -> list[RankedResult]:
        """Case-insensitive substring match, newest first (score 1.0)."""

        async def run() -> list[RankedResult]:
            return await self._keyword(query, k)

        return await self._run_search("keyword", run)

    async def hybrid_search(
        self,
        query: str,
        query_embedding: Sequence[float] | None = None,
        k: int = 10,
    ) -> list[RankedResult]:
        """Reciprocal-rank fusion of keyword and similarity results.

        Each side fetches ``2k`` hits; the fused list carries RRF scores.
        Without an embedding (none given and none produced by the provider)
        only the keyword side contributes.
        """

        async def run() -> list[RankedResult]:
            keyword = await self._keyword(query, 2 * k)
            semantic: list[RankedResult] = []
            vector = self._optional_query_vector(query, query_embedding)
            if vector is not None:
                semantic = await self._similarity(
                    vector, 2 * k, self.settings.hybrid_threshold, set(), None, None
                )

            keyword_ids = [r.id for r in keyword]
            semantic_ids = [r.id for r in semantic]
            fused = reciprocal_rank_fusion(
                [keyword_ids, semantic_ids], k=self.settings.rrf_k, limit=k
            )
            by_id = {r.id: r for r in keyword}
            by_id.update({r.id: r for r in semantic})
            both = set(keyword_ids) & set(semantic_ids)
            results: list[RankedResult] = []
            for item_id, score in fused:
                hit = by_id[item_id]
                match = MatchSource.FUSION if item_id in both else hit.match_source
                results.append(hit.model_copy(update={"score": score, "match_source": match}))
            return results

        return await self._run_search("hybrid", run)

    async def by_tag(self, tag: ContentTag | str, limit: int = 50) -> list[RankedResult]:
        async def run() -> list[RankedResult]:
            async with self._lock.read():
                records = await self.content.by_tag(_as_tag(tag), limit)
            return _filter_results(records)

        return await self._run_search("by_tag", run)

    async def by_source(self, source: ContentSource | str, limit: int = 50) -> list[RankedResult]:
        """Records whose source key equals that of *source* (a model or a key)."""

        async def run() -> list[RankedResult]:
            async with self._lock.read():
                records = await self.content.by_source(source_key(source), limit)
            return _filter_results(records)

        return await self._run_search("by_source", run)

    async def by_time_range(
        self,
        start: datetime,
        end: datetime,
        limit: int = 50,
    ) -> list[RankedResult]:
        async def run() -> list[RankedResult]:
            async with self._lock.read():
                records = await self.content.by_time_range(start, end, limit)
            return _filter_results(records)

        return await self._run_search("by_time_range", run)

    async def recent(self, limit: int = 20) -> list[RankedResult]:
        async def run() -> list[RankedResult]:
            async with self._lock.read():
                records = await self.content.recent(limit)
            return _filter_results(records)

        return await self._run_search("recent", run)

    async def intelligent_query(
        self,
        text: str,
        limit: int = 10,
        now: datetime | None = None,
    ) -> list[RankedResult]:
        """Similarity search narrowed by tags and time windows inferred from *text*."""
        plan = infer_query(text, now or utcnow())
        log = logger.bind(tags=sorted(t.value for t in plan.tags), window=plan.window)

        async def run() -> list[RankedResult]:
            vector = self._optional_query_vector(text, None)
            if vector is None:
                if not plan.has_filters:
                    return []
                log.debug("query.intelligent.fallback_scan")
                async with self._lock.read():
                    records = await self.content.filtered(
                        plan.tags, plan.since, plan.until, limit
                    )
                return _filter_results(records)
            results = await self._similarity(
                vector,
                2 * limit,
                self.settings.query_threshold,
                plan.tags,
                plan.since,
                plan.until,
            )
            return results[:limit]

        results = await self._run_search("intelligent", run)
        log.debug("query.intelligent.complete", results=len(results))
        return results

    # ------------------------------------------------------------------
    # Retention, eviction and statistics
    # ------------------------------------------------------------------

    async def enforce_capacity(self) -> SweepReport:
        self._require_open()
        async with self._lock.write():
            return await self._enforce_capacity_locked()

    async def retention_sweep(self, now: datetime | None = None) -> SweepReport:
        """Delete non-user content older than the retention window, then orphans."""
        self._require_open()
        started = time.perf_counter()
        cutoff = retention_cutoff(now or utcnow(), self.settings.retention_days)
        async with self._lock.write():
            expired = await self.content.expired_ids(cutoff)
            content, vectors, nodes = await self._delete_ids(expired)
            orphans = await self._orphan_sweep_locked()
        report = SweepReport(
            operation="retention",
            content_deleted=content,
            vectors_deleted=vectors,
            index_nodes_deleted=nodes,
            duration_ms=_elapsed_ms(started),
            deleted_ids=expired,
        ).merge(orphans)
        logger.info(
            "maintenance.retention.complete",
            cutoff=cutoff.isoformat(),
            content_deleted=report.content_deleted,
            vectors_deleted=report.vectors_deleted,
        )
        return report

    async def orphan_sweep(self) -> SweepReport:
        self._require_open()
        async with self._lock.write():
            return await self._orphan_sweep_locked()

    async def statistics(self, most_accessed: int = 10) -> StoreStats:
        self._require_open()
        async with self._lock.read():
            return StoreStats(
                content_count=await self.content.count(),
                vector_count=await self.vectors.count_vectors(),
                index_node_count=await self.vectors.count_nodes(),
                dimension=self._dimension,
                capacity=self.settings.capacity,
                tag_counts=await self.content.tag_counts(),
                source_counts=await self.content.source_counts(),
                most_accessed=await self.content.most_accessed(most_accessed),
                last_search_ms=self.metrics.last_search_ms,
            )

    # ------------------------------------------------------------------
    # Internals: search
    # ------------------------------------------------------------------

    async def _run_search(
        self,
        operation: str,
        run: Callable[[], Awaitable[list[RankedResult]]],
    ) -> list[RankedResult]:
        """Time *run*, bump access counts of its hits, degrade failures to ``[]``."""
        self._require_open()
        started = time.perf_counter()
        _search_error.set(None)
        try:
            results = await run()
        except SemStoreError as exc:
            self._record_failure(operation, exc, started)
            return []
        self._record_success(operation, started, len(results))
        if results:
            await self._bump_access([r.id for r in results], utcnow())
        return results

    def _record_success(self, operation: str, started: float, count: int) -> None:
        elapsed = _elapsed_ms(started)
        self.metrics.searches += 1
        self.metrics.last_search_ms = elapsed
        self.metrics.total_search_ms += elapsed
        logger.debug("search.complete", operation=operation, results=count, ms=round(elapsed, 3))

    def _record_failure(self, operation: str, exc: SemStoreError, started: float) -> None:
        if not isinstance(exc, (SearchFailedError, ValidationError)):
            exc = SearchFailedError(f"{operation} search failed: {exc.message}", exc.details)
        self.metrics.failures += 1
        self.metrics.last_search_ms = _elapsed_ms(started)
        self.metrics.last_error = exc.message
        self.last_search_error = exc
        _search_error.set(exc)
        logger.warning("search.failed", operation=operation, error=exc.message)

    def _query_vector(self, query: QueryInput) -> np.ndarray:
        if isinstance(query, str):
            if self.embedder is None:
                raise SearchFailedError("Text queries require an embedding provider")
            embedded = self.embedder.embed(query)
            if embedded is None:
                raise SearchFailedError("Embedding provider declined the query", {"query": query})
            query = embedded
        vector = to_array(query)
        if vector.size == 0 or not is_finite(vector):
            raise ValidationError("Query embedding must be non-empty and finite")
        if self._dimension is not None and vector.size != self._dimension:
            raise DimensionMismatchError(self._dimension, int(vector.size))
        return vector

    def _optional_query_vector(
        self,
        text: str,
        embedding: Sequence[float] | None,
    ) -> np.ndarray | None:
        if embedding is not None:
            return self._query_vector(embedding)
        if self.embedder is None:
            return None
        embedded = self.embedder.embed(text)
        return None if embedded is None else self._query_vector(embedded)

    async def _similarity(
        self,
        vector: np.ndarray,
        k: int,
        threshold: float,
        tags: set[ContentTag],
        since: datetime | None,
        until: datetime | None,
    ) -> list[RankedResult]:
        if k <= 0:
            return []
        async with self._lock.read():
            if tags or since is not None or until is not None:
                allowed = await self.content.filtered_ids(tags, since, until)
                if len(allowed) <= self.settings.exact_scan_limit:
                    candidates = allowed
                else:
                    allowed_set = set(allowed)
                    total = len(self.index)
                    fetch_k = min(total, 2 * k * math.ceil(total / len(allowed)))
                    candidates = [
                        i for i, _ in self.index.search(vector, fetch_k) if i in allowed_set
                    ]
            else:
                width = max(2 * k, self.settings.hnsw_ef_search)
                candidates = [i for i, _ in self.index.search(vector, width)]

            scores = self.index.similarities(vector, candidates)
            records = await self.content.get_many(list(scores))

        hits = [(records[i], s) for i, s in scores.items() if i in records]
        ranked = rank_hits(hits, threshold, k)
        return [
            RankedResult.from_record(record, score, MatchSource.SEMANTIC)
            for record, score in ranked
        ]

    async def _keyword(self, query: str, k: int) -> list[RankedResult]:
        if not query.strip() or k <= 0:
            return []
        async with self._lock.read():
            records = await self.content.keyword(query.strip(), k)
        return [RankedResult.from_record(r, 1.0, MatchSource.KEYWORD) for r in records]

    async def _bump_access(self, ids: Sequence[str], when: datetime) -> None:
        async with self._lock.write():
            if not self._open:
                return
            async with self.content.db.transaction():
                await self.content.bump_access(ids, when)

    # ------------------------------------------------------------------
    # Internals: writes (callers hold the write lock)
    # ------------------------------------------------------------------

    async def _load_index(self) -> None:
        """Rebuild the in-memory graph from the vector database."""
        nodes = await self.vectors.load_nodes()
        vectors, norms = await self.vectors.load_vectors()
        missing = self.index.load(nodes, vectors, norms)
        if not missing:
            return
        changed: set[str] = set()
        for vector_id in missing:
            changed |= self.index.insert(vector_id, vectors[vector_id], norm=norms[vector_id])
        async with self.vectors.db.transaction():
            await self._persist_nodes(changed)
        logger.info("index.rebuild.complete", inserted=len(missing))

    async def _persist_nodes(self, changed: Iterable[str]) -> None:
        nodes = [node for node in (self.index.node(i) for i in changed) if node is not None]
        await self.vectors.upsert_nodes(nodes)

    async def _delete_ids(self, ids: Sequence[str]) -> tuple[int, int, int]:
        """Delete content first, then vectors and nodes; returns the three counts."""
        if not ids:
            return 0, 0, 0
        async with self.content.db.transaction():
            content = await self.content.delete(ids)
        changed = self.index.remove_many(ids)
        try:
            async with self.vectors.db.transaction():
                vectors = await self.vectors.delete_vectors(ids)
                nodes = await self.vectors.delete_nodes(ids)
                await self._persist_nodes(changed)
        except Exception as exc:
            await self._load_index()
            raise EngineExecutionError(
                f"Vector delete failed: {exc}", {"count": len(ids)}
            ) from exc
        return content, vectors, nodes

    async def _compensate(self, ids: Sequence[str]) -> None:
        """Undo vector rows written for a failed content commit."""
        if not ids:
            return
        changed = self.index.remove_many(ids)
        try:
            async with self.vectors.db.transaction():
                await self.vectors.delete_vectors(ids)
                await self.vectors.delete_nodes(ids)
                await self._persist_nodes(changed)
        except Exception as exc:
            logger.error("store.compensate.failed", error=str(exc), count=len(ids))
            await self._load_index()

    async def _enforce_capacity_locked(self) -> SweepReport:
        started = time.perf_counter()
        count = await self.vectors.count_vectors()
        excess = excess_count(count, self.settings.capacity)
        if not excess:
            return SweepReport(operation="capacity")
        victims = await self.content.eviction_candidates(excess)
        content, vectors, nodes = await self._delete_ids(victims)
        logger.info(
            "maintenance.evict.complete",
            evicted=len(victims),
            capacity=self.settings.capacity,
        )
        return SweepReport(
            operation="capacity",
            content_deleted=content,
            vectors_deleted=vectors,
            index_nodes_deleted=nodes,
            duration_ms=_elapsed_ms(started),
            deleted_ids=victims,
        )

    async def _orphan_sweep_locked(self) -> SweepReport:
        started = time.perf_counter()
        orphans = find_orphans(
            await self.content.all_ids(),
            await self.vectors.vector_ids(),
            await self.vectors.node_ids(),
        )
        if not orphans:
            return SweepReport(operation="orphans", duration_ms=_elapsed_ms(started))

        changed = self.index.remove_many(orphans.all_ids)
        async with self.vectors.db.transaction():
            vectors = await self.vectors.delete_vectors(sorted(orphans.vectors))
            nodes = await self.vectors.delete_nodes(sorted(orphans.nodes))
            await self._persist_nodes(changed)
        logger.info("maintenance.orphans.complete", vectors=vectors, nodes=nodes)
        return SweepReport(
            operation="orphans",
            vectors_deleted=vectors,
            index_nodes_deleted=nodes,
            duration_ms=_elapsed_ms(started),
            deleted_ids=sorted(orphans.all_ids),
        )

    async def _close_stores(self) -> None:
        await self.content.close()
        await self.vectors.close()

    def _require_open(self) -> None:
        if not self._open:
            raise StoreNotOpenError("Storage engine is not open")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _filter_results(records: Iterable[ContentRecord]) -> list[RankedResult]:
    return [RankedResult.from_record(r, 1.0, MatchSource.FILTER) for r in records]


def _as_tag(tag: ContentTag | str) -> ContentTag:
    try:
        return ContentTag(tag)
    except ValueError as exc:
        raise ValidationError(f"Unknown tag: {tag}", {"tag": str(tag)}) from exc


def _build_item(**fields: object) -> StoreItem:
    values = {k: v for k, v in fields.items() if v is not None}
    values["tags"] = set(fields.get("tags") or ())
    values.setdefault("source", ManualSource())
    try:
        return StoreItem.model_validate(values)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid store request: {exc}", {"errors": exc.errors()}) from exc


def create_engine(
    settings: Settings | None = None,
    embedder: EmbeddingProvider | None = None,
) -> StorageEngine:
    """Build an unopened engine with the configured embedding provider."""
    from semstore.infrastructure.embedding.factory import create_embedder

    settings = settings or get_settings()
    if embedder is None:
        embedder = create_embedder(settings)
    return StorageEngine(settings=settings, embedder=embedder)
