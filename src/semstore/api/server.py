"""semstore REST API (FastAPI server).

Endpoints:
  POST   /v1/content               store (embedding given) or embed-and-store
  GET    /v1/content/{id}          fetch one record
  DELETE /v1/content/{id}          delete one record
  POST   /v1/search                exact-re-ranked similarity search
  POST   /v1/search/hybrid         keyword + similarity fused with RRF
  POST   /v1/query                 cue-driven intelligent query
  GET    /v1/tags/{tag}            records carrying a tag
  GET    /v1/sources/{source_key}  records from a source
  GET    /v1/timeline              records within a time range
  GET    /v1/stats                 store statistics
  POST   /v1/maintenance/sweep     retention (or orphan-only) sweep
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, JsonValue

from semstore.api.middleware import LoggingMiddleware
from semstore.config.settings import Settings
from semstore.core.exceptions import (
    SemStoreError,
    StoreNotOpenError,
    ValidationError,
)
from semstore.domain.entities import (
    ContentRecord,
    ContentSource,
    ManualSource,
    RankedResult,
    StoreStats,
    SweepReport,
)
from semstore.domain.enums import ContentTag
from semstore.domain.ports import EmbeddingProvider
from semstore.engine import StorageEngine, create_engine

# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    engine: StorageEngine | None = getattr(app.state, "engine", None)
    if engine is not None:
        await engine.open()
    try:
        yield
    finally:
        if engine is not None:
            await engine.close()


app = FastAPI(
    title="semstore API",
    version="1.0.0",
    description="Semantic storage and retrieval engine.",
    lifespan=_lifespan,
)
app.add_middleware(LoggingMiddleware)


def _get_engine() -> StorageEngine:
    """Dependency injection: resolve the engine attached to the app.

    Override ``app.dependency_overrides[_get_engine]`` in tests.
    """
    engine: StorageEngine | None = getattr(app.state, "engine", None)
    if engine is None or not engine.is_open:
        raise HTTPException(503, "Storage engine not open.")
    return engine


@app.exception_handler(SemStoreError)
async def _semstore_error(request: Request, exc: SemStoreError) -> JSONResponse:
    if isinstance(exc, ValidationError):
        status = 422
    elif isinstance(exc, StoreNotOpenError):
        status = 503
    else:
        status = 500
    return JSONResponse(
        status_code=status,
        content={"error": type(exc).__name__, "message": exc.message, "details": exc.details},
    )


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class ContentRequest(BaseModel):
    id: str | None = None
    text: str = Field(..., min_length=1)
    embedding: list[float] | None = None
    source: ContentSource = Field(default_factory=ManualSource)
    tags: list[ContentTag] = Field(default_factory=list)
    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    timestamp: datetime | None = None
    user_created: bool = False


class StoreResponse(BaseModel):
    stored: bool
    record: ContentRecord | None = None


class SearchRequest(BaseModel):
    query: str | None = None
    embedding: list[float] | None = None
    limit: int = Field(10, ge=1, le=1000)
    threshold: float | None = Field(None, ge=0.0, le=1.0)
    tags: list[ContentTag] | None = None
    since: datetime | None = None
    until: datetime | None = None


class HybridRequest(BaseModel):
    query: str = Field(..., min_length=1)
    embedding: list[float] | None = None
    limit: int = Field(10, ge=1, le=1000)


class QueryRequest(BaseModel):
    query: str = Field(..., min_length=1)
    limit: int = Field(10, ge=1, le=1000)


class SearchResponse(BaseModel):
    results: list[RankedResult]
    total_results: int
    search_ms: float
    error: str | None = None


class DeleteResponse(BaseModel):
    id: str
    deleted: bool


class SweepRequest(BaseModel):
    orphans_only: bool = False
    now: datetime | None = None


def _respond(engine: StorageEngine, results: list[RankedResult]) -> SearchResponse:
    error = engine.search_error
    return SearchResponse(
        results=results,
        total_results=len(results),
        search_ms=round(engine.metrics.last_search_ms, 3),
        error=error.message if error is not None else None,
    )


# ---------------------------------------------------------------------------
# Endpoints: content
# ---------------------------------------------------------------------------


@app.post("/v1/content", response_model=StoreResponse, status_code=201)
async def store_content(
    body: ContentRequest,
    engine: StorageEngine = Depends(_get_engine),
):
    """Store a record; without an embedding the configured provider embeds it."""
    if body.embedding is not None:
        record = await engine.store(
            body.text,
            body.embedding,
            id=body.id,
            source=body.source,
            tags=body.tags,
            metadata=body.metadata,
            timestamp=body.timestamp,
            user_created=body.user_created,
        )
    else:
        record = await engine.store_text(
            body.text,
            id=body.id,
            source=body.source,
            tags=body.tags,
            metadata=body.metadata,
            timestamp=body.timestamp,
            user_created=body.user_created,
        )
    return StoreResponse(stored=record is not None, record=record)


@app.get("/v1/content/{record_id}", response_model=ContentRecord)
async def get_content(
    record_id: str,
    engine: StorageEngine = Depends(_get_engine),
):
    record = await engine.fetch(record_id)
    if record is None:
        raise HTTPException(404, f"Record not found: {record_id}")
    return record


@app.delete("/v1/content/{record_id}", response_model=DeleteResponse)
async def delete_content(
    record_id: str,
    engine: StorageEngine = Depends(_get_engine),
):
    deleted = await engine.delete(record_id)
    if not deleted:
        raise HTTPException(404, f"Record not found: {record_id}")
    return DeleteResponse(id=record_id, deleted=True)


# ---------------------------------------------------------------------------
# Endpoints: search
# ---------------------------------------------------------------------------


@app.post("/v1/search", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    engine: StorageEngine = Depends(_get_engine),
):
    """Similarity search by text (embedded by the provider) or by embedding."""
    query = body.embedding if body.embedding is not None else body.query
    if query is None:
        raise HTTPException(400, "Either query or embedding is required.")
    results = await engine.similarity_search(
        query,
        k=body.limit,
        threshold=body.threshold,
        tags=body.tags,
        since=body.since,
        until=body.until,
    )
    return _respond(engine, results)


@app.post("/v1/search/hybrid", response_model=SearchResponse)
async def search_hybrid(
    body: HybridRequest,
    engine: StorageEngine = Depends(_get_engine),
):
    results = await engine.hybrid_search(body.query, body.embedding, k=body.limit)
    return _respond(engine, results)


@app.post("/v1/query", response_model=SearchResponse)
async def intelligent_query(
    body: QueryRequest,
    engine: StorageEngine = Depends(_get_engine),
):
    results = await engine.intelligent_query(body.query, limit=body.limit)
    return _respond(engine, results)


@app.get("/v1/tags/{tag}", response_model=SearchResponse)
async def by_tag(
    tag: ContentTag,
    limit: int = 50,
    engine: StorageEngine = Depends(_get_engine),
):
    results = await engine.by_tag(tag, limit)
    return _respond(engine, results)


@app.get("/v1/sources/{source_key}", response_model=SearchResponse)
async def by_source(
    source_key: str,
    limit: int = 50,
    engine: StorageEngine = Depends(_get_engine),
):
    results = await engine.by_source(source_key, limit)
    return _respond(engine, results)


@app.get("/v1/timeline", response_model=SearchResponse)
async def timeline(
    start: datetime,
    end: datetime,
    limit: int = 50,
    engine: StorageEngine = Depends(_get_engine),
):
    if end < start:
        raise HTTPException(400, "end must not precede start.")
    results = await engine.by_time_range(start, end, limit)
    return _respond(engine, results)


# ---------------------------------------------------------------------------
# Endpoints: maintenance
# ---------------------------------------------------------------------------


@app.get("/v1/stats", response_model=StoreStats)
async def stats(
    most_accessed: int = 10,
    engine: StorageEngine = Depends(_get_engine),
):
    return await engine.statistics(most_accessed=most_accessed)


@app.post("/v1/maintenance/sweep", response_model=SweepReport)
async def sweep(
    body: SweepRequest | None = None,
    engine: StorageEngine = Depends(_get_engine),
):
    body = body or SweepRequest()
    if body.orphans_only:
        return await engine.orphan_sweep()
    return await engine.retention_sweep(now=body.now)


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------


def create_app(
    settings: Settings | None = None,
    embedder: EmbeddingProvider | None = None,
) -> FastAPI:
    """Attach an unopened engine to the app; the lifespan opens and closes it."""
    app.state.engine = create_engine(settings, embedder)
    return app
