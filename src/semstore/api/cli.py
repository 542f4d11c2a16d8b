"""semstore command-line interface (Click).

Every command opens the engine under ``--data-dir``, runs one operation
and closes it again.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import click

from semstore import __version__
from semstore.config.logging import configure_logging
from semstore.config.settings import Settings, get_settings
from semstore.core.exceptions import SemStoreError
from semstore.domain.entities import RankedResult, source_from_key
from semstore.domain.enums import ContentTag
from semstore.engine import StorageEngine, create_engine

T = TypeVar("T")

_TAG_CHOICE = click.Choice([t.value for t in ContentTag])


def _create_engine(settings: Settings) -> StorageEngine:
    return create_engine(settings)


def _run(settings: Settings, operation: Callable[[StorageEngine], Awaitable[T]]) -> T:
    """Open an engine, run *operation* against it and close it."""

    async def main() -> T:
        async with _create_engine(settings) as engine:
            return await operation(engine)

    try:
        return asyncio.run(main())
    except SemStoreError as exc:
        raise click.ClickException(exc.message) from exc


def _echo_results(results: list[RankedResult], as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in results], indent=2))
        return
    if not results:
        click.echo("No results.")
        return
    click.echo(f"Found {len(results)} results:")
    for r in results:
        tags = ",".join(t.value for t in r.tags)
        when = r.timestamp.strftime("%Y-%m-%d %H:%M")
        click.echo(f"  [{r.score:.4f}] {r.id}  {when}  {r.source.key}  {tags}")
        click.echo(f"      {_snippet(r.text)}")


def _snippet(text: str, width: int = 100) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= width else flat[: width - 3] + "..."


def _dump(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(__version__, prog_name="semstore")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding content.db and vectors.db.",
)
@click.option("--verbose", "-v", is_flag=True, help="Log at the configured level.")
@click.pass_context
def cli(ctx: click.Context, data_dir: Path | None, verbose: bool) -> None:
    """Semantic storage and retrieval engine."""
    settings = get_settings()
    if data_dir is not None:
        settings = settings.model_copy(update={"data_dir": data_dir})
    configure_logging(settings.log_level if verbose else "WARNING", json=settings.log_json)
    ctx.obj = settings


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


@cli.command("add")
@click.argument("text")
@click.option("--tag", "-t", "tags", multiple=True, type=_TAG_CHOICE, help="Tag (repeatable).")
@click.option("--source", "-s", "source", default="manual", help="Source key, e.g. clipboard or screen:Slack.")
@click.option("--id", "record_id", default=None, help="Explicit record id.")
@click.option("--user-created", is_flag=True, help="Exempt from time retention.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def add(
    settings: Settings,
    text: str,
    tags: tuple[str, ...],
    source: str,
    record_id: str | None,
    user_created: bool,
    as_json: bool,
) -> None:
    """Embed TEXT with the configured provider and store it."""
    try:
        parsed_source = source_from_key(source)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--source") from exc

    record = _run(
        settings,
        lambda engine: engine.store_text(
            text,
            id=record_id,
            source=parsed_source,
            tags=tags,
            user_created=user_created,
        ),
    )
    if record is None:
        click.echo("Skipped: text too short or could not be embedded.")
        return
    if as_json:
        click.echo(record.model_dump_json(indent=2))
        return
    click.echo(f"Stored {record.id}")


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@cli.command("search")
@click.argument("query")
@click.option("--limit", "-l", default=10, help="Max results")
@click.option("--threshold", type=float, default=None, help="Minimum cosine similarity")
@click.option("--tag", "-t", "tags", multiple=True, type=_TAG_CHOICE, help="Any-of tag filter")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def search(
    settings: Settings,
    query: str,
    limit: int,
    threshold: float | None,
    tags: tuple[str, ...],
    as_json: bool,
) -> None:
    """Similarity search for QUERY."""
    results = _run(
        settings,
        lambda engine: engine.similarity_search(
            query,
            k=limit,
            threshold=threshold,
            tags=[ContentTag(t) for t in tags] or None,
        ),
    )
    _echo_results(results, as_json)


@cli.command("hybrid")
@click.argument("query")
@click.option("--limit", "-l", default=10, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def hybrid(settings: Settings, query: str, limit: int, as_json: bool) -> None:
    """Keyword and similarity search fused with reciprocal rank fusion."""
    results = _run(settings, lambda engine: engine.hybrid_search(query, k=limit))
    _echo_results(results, as_json)


@cli.command("query")
@click.argument("text")
@click.option("--limit", "-l", default=10, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def query(settings: Settings, text: str, limit: int, as_json: bool) -> None:
    """Intelligent query: infer tag and time filters from cue words in TEXT."""
    results = _run(settings, lambda engine: engine.intelligent_query(text, limit=limit))
    _echo_results(results, as_json)


@cli.command("tag")
@click.argument("tag", type=_TAG_CHOICE)
@click.option("--limit", "-l", default=50, help="Max results")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def tag(settings: Settings, tag: str, limit: int, as_json: bool) -> None:
    """List records carrying TAG, newest first."""
    results = _run(settings, lambda engine: engine.by_tag(ContentTag(tag), limit))
    _echo_results(results, as_json)


@cli.command("recent")
@click.option("--limit", "-l", default=20, help="Max results")
@click.option("--source", "-s", "source", default=None, help="Only this source key.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def recent(settings: Settings, limit: int, source: str | None, as_json: bool) -> None:
    """List the most recent records."""
    if source is not None:
        results = _run(settings, lambda engine: engine.by_source(source, limit))
    else:
        results = _run(settings, lambda engine: engine.recent(limit))
    _echo_results(results, as_json)


# ---------------------------------------------------------------------------
# Maintenance
# ---------------------------------------------------------------------------


@cli.command("stats")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def stats(settings: Settings, as_json: bool) -> None:
    """Show store statistics."""
    result = _run(settings, lambda engine: engine.statistics())
    if as_json:
        click.echo(result.model_dump_json(indent=2))
        return
    click.echo(f"Records:     {result.content_count}")
    click.echo(f"Vectors:     {result.vector_count} / {result.capacity}")
    click.echo(f"Index nodes: {result.index_node_count}")
    click.echo(f"Dimension:   {result.dimension if result.dimension is not None else '-'}")
    if result.tag_counts:
        click.echo("Tags:")
        for name, count in result.tag_counts.items():
            click.echo(f"  {name}: {count}")
    if result.source_counts:
        click.echo("Sources:")
        for name, count in result.source_counts.items():
            click.echo(f"  {name}: {count}")
    if result.most_accessed:
        click.echo("Most accessed:")
        for entry in result.most_accessed:
            click.echo(f"  {entry.access_count:>4}  {entry.id}  {_snippet(entry.text, 60)}")


@cli.command("sweep")
@click.option("--orphans-only", is_flag=True, help="Only remove vectors without content.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_obj
def sweep(settings: Settings, orphans_only: bool, as_json: bool) -> None:
    """Apply time retention (then orphan cleanup)."""
    if orphans_only:
        report = _run(settings, lambda engine: engine.orphan_sweep())
    else:
        now = datetime.now(timezone.utc)
        report = _run(settings, lambda engine: engine.retention_sweep(now))
    if as_json:
        _dump(report.model_dump(mode="json"))
        return
    click.echo(f"Sweep ({report.operation}) finished in {report.duration_ms:.1f} ms")
    click.echo(f"  Content deleted:     {report.content_deleted}")
    click.echo(f"  Vectors deleted:     {report.vectors_deleted}")
    click.echo(f"  Index nodes deleted: {report.index_nodes_deleted}")


@cli.command("serve")
@click.option("--host", default=None, help="Bind address (default from settings).")
@click.option("--port", type=int, default=None, help="Port (default from settings).")
@click.pass_obj
def serve(settings: Settings, host: str | None, port: int | None) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from semstore.api.server import create_app

    configure_logging(settings.log_level, json=settings.log_json)
    uvicorn.run(
        create_app(settings),
        host=host or settings.api_host,
        port=port or settings.api_port,
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
