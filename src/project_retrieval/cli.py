"""Command-line access to the project retrieval backend.

Usage:
    project-retrieval ingest notes.md --document-id 7 --project-id 2
    project-retrieval search 2 "what did we decide about caching?" --top-k 3
    project-retrieval delete-project 2
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from loguru import logger

from project_retrieval.config import RetrievalConfig, load_config
from project_retrieval.coordinator import RetrievalCoordinator
from project_retrieval.logging_setup import configure_logging

T = TypeVar("T")


def _run(config: RetrievalConfig, work: Callable[[RetrievalCoordinator], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with RetrievalCoordinator.from_config(config) as coordinator:
            return await work(coordinator)

    return asyncio.run(runner())


@click.group()
@click.option("--config-name", default="default", help="Config file in conf/retrieval/")
@click.option(
    "--config-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory holding config YAML files",
)
@click.option("--override", "overrides", multiple=True, help="Hydra override, e.g. retrieval.top_k=8")
@click.option("--log-level", default="INFO", show_default=True)
@click.option("--log-file", type=click.Path(dir_okay=False, path_type=Path), default=None)
@click.pass_context
def cli(
    ctx: click.Context,
    config_name: str,
    config_dir: Path | None,
    overrides: tuple[str, ...],
    log_level: str,
    log_file: Path | None,
) -> None:
    """Chunk, vectorize, and search project documents."""
    configure_logging(log_level, log_file)
    ctx.obj = load_config(config_name, config_path=config_dir, overrides=list(overrides))


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--document-id", type=int, required=True)
@click.option("--project-id", type=int, required=True)
@click.option("--name", default=None, help="Document name shown in citations")
@click.pass_obj
def ingest(
    config: RetrievalConfig, path: Path, document_id: int, project_id: int, name: str | None
) -> None:
    """Chunk a text file as a document and vectorize it."""
    text = path.read_text(encoding="utf-8")

    report = _run(
        config,
        lambda c: c.update_document(document_id, project_id, name or path.name, text),
    )
    if report.skipped_reason:
        logger.warning(f"Chunks saved, vectorization skipped: {report.skipped_reason}")
    else:
        logger.success(
            f"Vectorized {report.vectorized_count} chunks ({len(report.failed)} failed)"
        )


@cli.command()
@click.option("--document-id", type=int, default=None)
@click.option("--project-id", type=int, default=None)
@click.option("--limit", type=int, default=500, show_default=True)
@click.pass_obj
def vectorize(
    config: RetrievalConfig, document_id: int | None, project_id: int | None, limit: int
) -> None:
    """Vectorize pending chunks of one document or a whole project."""
    if (document_id is None) == (project_id is None):
        raise click.UsageError("Pass exactly one of --document-id or --project-id")

    if document_id is not None:
        report = _run(config, lambda c: c.vectorize_pending(document_id))
    else:
        assert project_id is not None
        report = _run(config, lambda c: c.vectorize_project(project_id, limit=limit))

    click.echo(report.model_dump_json(indent=2))


@cli.command()
@click.argument("project_id", type=int)
@click.argument("query", type=str)
@click.option("--top-k", type=int, default=None, help="Number of chunks to return")
@click.option("--show-context", is_flag=True, help="Print the prompt context block")
@click.pass_obj
def search(
    config: RetrievalConfig, project_id: int, query: str, top_k: int | None, show_context: bool
) -> None:
    """Search a project's vectorized chunks."""
    context = _run(config, lambda c: c.search(project_id, query, top_k))

    if context.is_empty:
        logger.warning("No results found!")
        return

    distances = {hit.chunk_id: hit.distance for hit in context.hits}
    for i, source in enumerate(context.sources, 1):
        distance = distances.get(source.chunk_id, float("nan"))
        click.echo(f"{i}. [{source.document_name} #{source.chunk_index}] distance={distance:.4f}")
        click.echo(f"   {source.chunk_preview}")

    if show_context:
        click.echo()
        click.echo(context.prompt_context())


@cli.command()
@click.argument("project_id", type=int)
@click.pass_obj
def stats(config: RetrievalConfig, project_id: int) -> None:
    """Show chunk and index statistics for a project."""

    async def work(c: RetrievalCoordinator) -> dict[str, Any]:
        index = await c.cache.get_or_open(project_id)
        index_stats = await index.stats()
        return {
            "chunks": c.store.count_for_project(project_id),
            "vectorized_chunks": len(c.store.vectorized_ids_for_project(project_id)),
            **index_stats.model_dump(mode="json"),
        }

    for key, value in _run(config, work).items():
        click.echo(f"{key}: {value}")


@cli.command("delete-project")
@click.argument("project_id", type=int)
@click.confirmation_option(prompt="Delete this project's index and chunks?")
@click.pass_obj
def delete_project(config: RetrievalConfig, project_id: int) -> None:
    """Delete a project's vector index directory and chunk rows."""
    _run(config, lambda c: c.delete_project(project_id))
    logger.success(f"Deleted project {project_id}")


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
