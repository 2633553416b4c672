"""
CLI interface for memorypilot.

Usage:
    memorypilot remember "Use Redis for caching" --type decision -t redis
    memorypilot recall "caching"
    memorypilot status
    memorypilot mcp
"""

import json
import os
from pathlib import Path
from typing import Optional

import typer
from typing_extensions import Annotated

from .api import MemoryPilot
from .config import get_default_store_path, load_or_create_config
from .errors import MemoryPilotError, log_exception
from .logging_config import configure_quiet_mode, enable_debug_mode
from .mcp import render_memories, render_stats
from .types import Memory, MemoryScope, MemoryType, RecallFilters

# Set MEMORYPILOT_VERBOSE=1 to enable debug mode via environment
if os.environ.get("MEMORYPILOT_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from . import __version__
        print(f"memorypilot {__version__}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


_store_override: Optional[Path] = None


def _store_callback(value: Optional[Path]) -> Optional[Path]:
    global _store_override
    _store_override = value
    return value


app = typer.Typer(
    name="memorypilot",
    help="Persistent memory for AI coding assistants.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="MEMORYPILOT_STORE_PATH",
        help="Path to the store directory (default: ~/.memorypilot/)",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Persistent memory for AI coding assistants."""


# Shared options

JsonOption = Annotated[
    bool,
    typer.Option(
        "--json", "-j",
        help="Output as JSON",
    )
]

TopicOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--topic", "-t",
        help="Topic (repeatable)",
    )
]


def _get_pilot() -> MemoryPilot:
    """Open the store, turning setup failures into a clean CLI error."""
    try:
        return MemoryPilot(_store_override)
    except (MemoryPilotError, ValueError, OSError) as e:
        typer.echo(f"Error: cannot open memory store: {e}", err=True)
        raise typer.Exit(1)


def _fail(e: Exception) -> None:
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(1)


def _echo_memory(memory: Memory, as_json: bool) -> None:
    if as_json:
        typer.echo(json.dumps(memory.to_dict(), indent=2, ensure_ascii=False))
        return
    typer.echo(f"{memory.id} [{memory.type.value}] {memory.summary}")
    typer.echo(f"  scope: {memory.scope.value}"
               + (f"  project: {memory.project}" if memory.project else ""))
    if memory.topics:
        typer.echo(f"  topics: {', '.join(memory.topics)}")
    typer.echo(f"  created: {memory.created_at}  accessed: {memory.access_count}x")
    typer.echo("")
    typer.echo(memory.content)


# Commands

@app.command()
def remember(
    content: Annotated[str, typer.Argument(help="What to remember")],
    type: Annotated[str, typer.Option(
        "--type", "-T",
        help=f"Memory type ({', '.join(t.value for t in MemoryType)})",
    )] = MemoryType.FACT.value,
    topic: TopicOption = None,
    scope: Annotated[str, typer.Option(
        "--scope",
        help=f"Visibility ({', '.join(s.value for s in MemoryScope)})",
    )] = MemoryScope.PERSONAL.value,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-p",
        help="Project this memory belongs to",
    )] = None,
    importance: Annotated[float, typer.Option(
        "--importance",
        help="Ranking weight between 0 and 1",
    )] = 1.0,
    output_json: JsonOption = False,
):
    """Store a memory."""
    with _get_pilot() as mp:
        try:
            result = mp.remember(
                content,
                type=type,
                topics=topic,
                scope=scope,
                project=project,
                importance=importance,
                source_reference="cli",
            )
        except MemoryPilotError as e:
            _fail(e)
        if output_json:
            typer.echo(json.dumps({"id": result.memory.id, "embedded": result.embedded}))
        else:
            note = "" if result.embedded else " (no embedding; keyword search only)"
            typer.echo(f"Remembered {result.memory.id} [{result.memory.type.value}]{note}")


@app.command()
def recall(
    query: Annotated[str, typer.Argument(help="What to search for")],
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Maximum results to return",
    )] = None,
    type: Annotated[Optional[list[str]], typer.Option(
        "--type", "-T",
        help="Only this memory type (repeatable)",
    )] = None,
    topic: TopicOption = None,
    scope: Annotated[Optional[str], typer.Option(
        "--scope",
        help="Only this scope",
    )] = None,
    project: Annotated[Optional[str], typer.Option(
        "--project", "-p",
        help="Only this project",
    )] = None,
    output_json: JsonOption = False,
):
    """Search memories by relevance to a query."""
    with _get_pilot() as mp:
        try:
            filters = RecallFilters(
                types=[MemoryType.parse(t) for t in type or []],
                topics=list(topic or []),
                scope=MemoryScope.parse(scope) if scope else None,
                project=project,
            )
            result = mp.recall(query, limit=limit, filters=filters)
        except MemoryPilotError as e:
            _fail(e)
        if output_json:
            typer.echo(json.dumps({
                "mode": result.mode,
                "memories": [m.to_dict() for m in result.memories],
            }, indent=2, ensure_ascii=False))
        else:
            typer.echo(render_memories(query, result.memories).rstrip("\n"))


@app.command()
def get(
    id: Annotated[str, typer.Argument(help="Memory ID")],
    output_json: JsonOption = False,
):
    """Show one memory by ID."""
    with _get_pilot() as mp:
        try:
            memory = mp.get(id)
        except MemoryPilotError as e:
            _fail(e)
        _echo_memory(memory, output_json)


@app.command()
def status(
    output_json: JsonOption = False,
):
    """Show memory statistics."""
    with _get_pilot() as mp:
        try:
            stats = mp.status()
        except MemoryPilotError as e:
            _fail(e)
        if output_json:
            typer.echo(json.dumps(stats.to_dict(), indent=2))
        else:
            typer.echo(render_stats(stats).rstrip("\n"))


@app.command()
def reembed(
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Maximum memories to embed in this run",
    )] = None,
):
    """Compute embeddings for memories missing one from the current model."""
    with _get_pilot() as mp:
        try:
            counts = mp.reembed(limit=limit)
        except MemoryPilotError as e:
            _fail(e)
        typer.echo(
            f"Embedded {counts['embedded']} memories "
            f"({counts['remaining']} remaining)"
        )
        if counts["skipped"]:
            typer.echo("Embedding provider unavailable; run again later.", err=True)
            raise typer.Exit(1)


@app.command()
def config(
    output_json: JsonOption = False,
):
    """Show the store location and its configuration."""
    store_path = _store_override.expanduser().resolve() if _store_override else get_default_store_path()
    try:
        cfg = load_or_create_config(store_path)
    except (ValueError, OSError) as e:
        _fail(e)
    data = {
        "store": str(cfg.path),
        "config": str(cfg.config_path),
        "database": str(cfg.database_path),
        "embedding": {
            "provider": cfg.embedding.name,
            "model": cfg.embedding.model,
            "base_url": cfg.embedding.base_url,
            "timeout": cfg.embedding.timeout,
        },
        "search": {
            "keyword_weight": cfg.search.keyword_weight,
            "semantic_weight": cfg.search.semantic_weight,
            "default_limit": cfg.search.default_limit,
        },
    }
    if output_json:
        typer.echo(json.dumps(data, indent=2))
        return
    typer.echo(f"Store:     {data['store']}")
    typer.echo(f"Config:    {data['config']}")
    typer.echo(f"Database:  {data['database']}")
    typer.echo(f"Embedding: {cfg.embedding.name} ({cfg.embedding.model}, timeout {cfg.embedding.timeout}s)")
    typer.echo(f"Search:    keyword {cfg.search.keyword_weight} / semantic {cfg.search.semantic_weight}, "
               f"default limit {cfg.search.default_limit}")


@app.command()
def mcp():
    """Start MCP stdio server for AI agent integration."""
    from .mcp import MCPServer, ServerOptions
    MCPServer(_get_pilot(), ServerOptions()).run()


def main():
    """Console entry point: unexpected errors print one line, tracebacks go to the error log."""
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        raise SystemExit(130)
    except Exception as e:
        log_path = log_exception(e, context="memorypilot CLI")
        typer.echo(f"Unexpected error: {e} (traceback in {log_path})", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
