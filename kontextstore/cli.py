"""CLI entry point for kontextstore."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler

from kontextstore.activity import read_activity_log
from kontextstore.config import Config
from kontextstore.corpus import build_service, ingest_corpus, load_corpus
from kontextstore.errors import KontextError
from kontextstore.models import Context
from kontextstore.service import ContextService

app = typer.Typer(help="Store tagged knowledge snippets and serve ranked queries to AI agents.")

T = TypeVar("T")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load_config() -> Config:
    config = Config.load()
    issues = config.validate()
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)
    return config


def _run(action: Callable[[ContextService], Awaitable[T]]) -> T:
    """Build the configured service, run one action against it, then close it."""
    config = _load_config()

    async def runner() -> T:
        service = await build_service(config)
        try:
            return await action(service)
        finally:
            await service.storage.close()

    try:
        return asyncio.run(runner())
    except KontextError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _print_context(context: Context) -> None:
    meta = context.metadata
    score = f"{meta.relevance_score:.2f}" if meta.relevance_score is not None else "-"
    rprint(f"[bold]{meta.title}[/bold]  [dim]({context.type.value}, score {score})[/dim]")
    rprint(f"  id: {context.id}")
    if meta.tags:
        rprint(f"  tags: {', '.join(meta.tags)}")
    if meta.description:
        rprint(f"  {meta.description}")


@app.command()
def serve() -> None:
    """Start the MCP server (called by Claude Code / Cursor automatically)."""
    from kontextstore.mcp_server import main as mcp_main

    asyncio.run(mcp_main(_load_config()))


@app.command()
def ingest(
    file: Path = typer.Argument(help="JSON file with a list of context payloads"),
) -> None:
    """Ingest contexts from a JSON file into the configured store."""
    if not file.exists():
        rprint(f"[red]File not found: {file}[/red]")
        raise typer.Exit(1)

    async def action(service: ContextService):
        return await ingest_corpus(service, load_corpus(file))

    result = _run(action)
    rprint(f"Ingested [bold]{result.succeeded}[/bold] contexts")
    if result.errors:
        rprint(f"[yellow]{result.failed} failed:[/yellow]")
        for err in result.errors:
            rprint(f"  #{err['index']}: {err['error']}")


@app.command()
def query(
    text: str = typer.Argument("", help="Free-text filter (case-insensitive substring)"),
    types: list[str] = typer.Option(None, "--type", "-t", help="Context type (repeatable)"),
    tags: list[str] = typer.Option(None, "--tag", help="Tag (repeatable, any match)"),
    contract_type: str = typer.Option(None, "--contract-type", help="Exact contract type"),
    limit: int = typer.Option(10, help="Page size"),
    offset: int = typer.Option(0, help="Page start"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
) -> None:
    """Query stored contexts."""
    params: dict[str, Any] = {"limit": limit, "offset": offset}
    if text:
        params["query"] = text
    if types:
        params["types"] = types
    if tags:
        params["tags"] = tags
    if contract_type:
        params["contractType"] = contract_type

    async def action(service: ContextService):
        return await service.query(params)

    page = _run(action)
    if format == "json":
        typer.echo(json.dumps(page.to_dict(), indent=2))
        return

    rprint(f"[bold]{page.total}[/bold] match(es), showing {len(page.results)} from offset {page.offset}\n")
    for context in page.results:
        _print_context(context)


@app.command()
def similar(
    context_id: str = typer.Argument(help="Context id"),
    limit: int = typer.Option(5, help="Max results"),
) -> None:
    """Show contexts similar to the given one."""

    async def action(service: ContextService):
        return await service.find_similar(context_id, limit)

    results = _run(action)
    if not results:
        rprint(f"[yellow]No similar contexts for {context_id}[/yellow]")
        return
    for context in results:
        _print_context(context)


@app.command()
def stats() -> None:
    """Show statistics about the knowledge base."""

    async def action(service: ContextService):
        return await service.get_stats()

    s = _run(action)
    rprint("[bold]kontextstore statistics:[/bold]")
    rprint(f"  Total contexts: {s['total_contexts']}")
    for context_type, count in s["by_type"].items():
        if count:
            rprint(f"  {context_type:<18} {count}")


@app.command()
def activity(
    limit: int = typer.Option(20, help="Number of entries"),
    tool: str = typer.Option(None, help="Only this tool name"),
) -> None:
    """Show recent MCP tool calls."""
    config = Config.load()
    entries = read_activity_log(limit=limit, tool_name=tool, log_path=config.log_path)
    if not entries:
        rprint("No activity recorded yet.")
        return
    for entry in entries:
        status = "[red]error[/red]" if entry.get("error") else "[green]ok[/green]"
        rprint(
            f"{entry['timestamp']}  [bold]{entry['tool_name']}[/bold]  "
            f"{status}  {entry.get('duration_ms', 0)}ms"
        )


if __name__ == "__main__":
    app()
