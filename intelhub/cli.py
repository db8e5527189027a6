"""CLI entry point for intelhub."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich import print as rprint
from rich.markup import escape
from rich.table import Table

from intelhub.activity import read_activity_log
from intelhub.config import Config
from intelhub.errors import IntelHubError
from intelhub.storage.db import get_connection
from intelhub.tools.handlers import ToolHandlers

app = typer.Typer(help="Entity reference graph, context assembly and training pipeline for AI agents.")


def _open_handlers(db_path: str | None, must_exist: bool = True) -> ToolHandlers:
    config = Config.load()
    db = Path(db_path) if db_path else config.db_path
    if must_exist and not db.exists():
        rprint(f"[red]Database not found at {db}. Set INTELHUB_DB_PATH or pass --db-path.[/red]")
        raise typer.Exit(1)
    return ToolHandlers(get_connection(db), config)


@app.command()
def serve(
    db_path: str = typer.Option(None, "--db-path", help="Database file path"),
) -> None:
    """Start the MCP server (called by Claude Code / Cursor automatically)."""
    import asyncio
    from intelhub.mcp_server import main as mcp_main
    asyncio.run(mcp_main(Path(db_path) if db_path else None))


@app.command()
def context(
    entity_type: str = typer.Argument(help="Entity type (task, skill, rule, ...)"),
    entity_id: str = typer.Argument(help="Entity ID"),
    format: str = typer.Option("claude", "--format", "-f", help="Output format: claude, json or compact"),
    depth: int = typer.Option(1, help="Traversal depth"),
    max_tokens: int = typer.Option(None, "--max-tokens", help="Token budget (default from config)"),
    section: list[str] = typer.Option(None, "--section", "-s", help="Section to include (repeatable)"),
    db_path: str = typer.Option(None, "--db-path", help="Database file path"),
) -> None:
    """Print the assembled context for an entity."""
    handlers = _open_handlers(db_path)
    try:
        result = handlers.builder.build(
            entity_type,
            entity_id,
            format=format,
            sections=section or None,
            max_tokens=max_tokens or handlers.config.max_tokens,
            depth=depth,
        )
    except IntelHubError as e:
        rprint(f"[red]{escape(e.message)}[/red]")
        raise typer.Exit(1)
    finally:
        handlers.close()

    typer.echo(result.formatted)
    if result.truncated:
        rprint(f"[yellow]Dropped sections to fit budget: {', '.join(result.dropped_sections)}[/yellow]")


@app.command()
def link(
    source: str = typer.Argument(help="Source entity as type:id"),
    relationship: str = typer.Argument(help="Relationship type"),
    target: str = typer.Argument(help="Target entity as type:id"),
    created_by: str = typer.Option("user", help="Who created the reference"),
    remove: bool = typer.Option(False, "--remove", help="Remove the reference instead of creating it"),
    db_path: str = typer.Option(None, "--db-path", help="Database file path"),
) -> None:
    """Create (or remove) a reference between two entities."""
    if ":" not in source or ":" not in target:
        rprint("[red]Entities must be given as type:id[/red]")
        raise typer.Exit(1)
    source_type, source_id = source.split(":", 1)
    target_type, target_id = target.split(":", 1)
    args = {
        "sourceType": source_type,
        "sourceId": source_id,
        "targetType": target_type,
        "targetId": target_id,
        "relationship": relationship,
        "createdBy": created_by,
    }

    handlers = _open_handlers(db_path, must_exist=False)
    try:
        result = handlers.dispatch("entity_unlink" if remove else "entity_link", args)
    finally:
        handlers.close()

    if not result["success"]:
        rprint(f"[red]{escape(result['error'])}[/red]")
        raise typer.Exit(1)
    edge = escape(f"{source} --[{relationship}]--> {target}")
    if remove:
        rprint(f"[green]Removed {edge}[/green]")
    elif result["created"]:
        rprint(f"[green]Linked {edge}[/green]")
    else:
        rprint(f"[yellow]Already linked: {edge}[/yellow]")


@app.command()
def training(
    module_id: str = typer.Argument(help="Module ID"),
    role: str = typer.Option(None, help="Agent role"),
    task_type: str = typer.Option(None, "--task-type", help="Task type"),
    project_path: str = typer.Option(None, "--project-path", help="Project path (default from config)"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, "--db-path", help="Database file path"),
) -> None:
    """Show the training context (skills, rules, lessons) for a module."""
    handlers = _open_handlers(db_path)
    try:
        result = handlers.dispatch("training_context_get", {
            "moduleId": module_id,
            "projectPath": project_path,
            "role": role,
            "taskType": task_type,
        })
    finally:
        handlers.close()

    if not result["success"]:
        rprint(f"[red]{escape(result['error'])}[/red]")
        raise typer.Exit(1)
    if format == "json":
        typer.echo(json.dumps(result, indent=2, default=str))
        return

    if result["contextPrompt"]:
        typer.echo(result["contextPrompt"])
    else:
        rprint(f"[yellow]No training content applies to module {module_id}.[/yellow]")
    incidents = result["context"]["recent_incidents"]
    if incidents:
        rprint(f"[bold]{len(incidents)}[/bold] open incident(s) in this module:")
        for incident in incidents:
            typer.echo(f"  [{incident['severity']}] {incident['title']}")


@app.command()
def stats(
    db_path: str = typer.Option(None, "--db-path", help="Database file path"),
) -> None:
    """Show record counts."""
    handlers = _open_handlers(db_path)
    try:
        s = handlers.repo.get_stats()
    finally:
        handlers.close()

    table = Table(title="intelhub statistics")
    table.add_column("Records")
    table.add_column("Count", justify="right")
    for key, count in s.items():
        table.add_row(key.replace("_", " "), str(count))
    rprint(table)


@app.command()
def activity(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    tool: str = typer.Option(None, "--tool", help="Only show calls to this tool"),
    errors: bool = typer.Option(False, "--errors", help="Only show failed calls"),
    log_path: str = typer.Option(None, "--log-path", help="Activity log file path"),
) -> None:
    """Show recent MCP tool calls."""
    path = Path(log_path) if log_path else Config.load().log_path
    entries = read_activity_log(limit=limit, tool_name=tool, log_path=path, errors_only=errors)
    if not entries:
        rprint("[yellow]No activity recorded yet.[/yellow]")
        return

    table = Table(title="Recent tool calls")
    table.add_column("Time")
    table.add_column("Tool")
    table.add_column("ms", justify="right")
    table.add_column("Result")
    for entry in entries:
        outcome = f"[red]{escape(str(entry['error']))}[/red]" if entry.get("error") else "ok"
        table.add_row(
            entry.get("timestamp", "")[:19],
            entry.get("tool_name", ""),
            str(entry.get("duration_ms", "")),
            outcome,
        )
    rprint(table)


if __name__ == "__main__":
    app()
