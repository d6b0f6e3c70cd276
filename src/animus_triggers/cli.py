"""CLI entry points for the trigger engine.

Commands:
    animus-triggers rules list      — List a guild's triggers
    animus-triggers rules show      — Print one trigger as JSON
    animus-triggers rules delete    — Delete a trigger
    animus-triggers rules import    — Import triggers from a JSON file
    animus-triggers rules export    — Export a guild's triggers as JSON
    animus-triggers test            — Dry-run a trigger against a sample event
    animus-triggers config show     — Show the effective configuration
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from animus_triggers.actions import ActionExecutor
from animus_triggers.channels import DryRunChannels
from animus_triggers.config import ConfigManager
from animus_triggers.dispatcher import Dispatcher
from animus_triggers.errors import NotFoundError, TriggerError
from animus_triggers.models import Rule
from animus_triggers.runtime import build_store
from animus_triggers.store import InMemoryRuleStore, RuleStore

console = Console()
app = typer.Typer(
    name="animus-triggers",
    help="Manage and test event triggers.",
    no_args_is_help=True,
)
rules_app = typer.Typer(help="List, inspect, import and export triggers.")
app.add_typer(rules_app, name="rules")

config_app = typer.Typer(help="Inspect configuration.")
app.add_typer(config_app, name="config")

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI output."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )


def _open_store() -> RuleStore:
    return build_store(ConfigManager().load())


def _require_rule(guild_id: str, rule_id: str) -> Rule:
    store = _open_store()
    try:
        return asyncio.run(store.require(guild_id, rule_id))
    except NotFoundError as exc:
        console.print(f"[red]{exc.message}.[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        console.print(f"[red]Could not read {path}: {exc}[/red]")
        raise typer.Exit(code=1) from exc


# ------------------------------------------------------------------
# animus-triggers rules ...
# ------------------------------------------------------------------


@rules_app.command("list")
def rules_list(guild_id: str = typer.Argument(..., help="Guild to list")) -> None:
    """List all triggers of a guild, in priority order."""
    store = _open_store()
    try:
        rules = asyncio.run(store.list(guild_id))
    finally:
        store.close()

    table = Table(title=f"Triggers for {guild_id}", border_style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="bold")
    table.add_column("Event")
    table.add_column("Priority", justify="right")
    table.add_column("Presets", justify="right")
    table.add_column("Enabled")

    for rule in sorted(rules, key=lambda r: r.priority):
        table.add_row(
            rule.id,
            rule.name,
            str(getattr(rule.event_type, "value", rule.event_type)),
            str(rule.priority),
            str(len(rule.presets)),
            "[green]Yes[/green]" if rule.enabled else "[red]No[/red]",
        )

    console.print()
    console.print(table)
    if not rules:
        console.print("[dim]No triggers configured.[/dim]")
    console.print()


@rules_app.command("show")
def rules_show(
    guild_id: str = typer.Argument(..., help="Guild the trigger belongs to"),
    rule_id: str = typer.Argument(..., help="Trigger ID"),
) -> None:
    """Print one trigger as JSON."""
    rule = _require_rule(guild_id, rule_id)
    console.print_json(json.dumps(rule.to_dict()))


@rules_app.command("delete")
def rules_delete(
    guild_id: str = typer.Argument(..., help="Guild the trigger belongs to"),
    rule_id: str = typer.Argument(..., help="Trigger ID"),
) -> None:
    """Delete a trigger."""
    store = _open_store()
    try:
        deleted = asyncio.run(store.delete(guild_id, rule_id))
    finally:
        store.close()

    if not deleted:
        console.print(f"[red]Trigger {rule_id} not found.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted trigger {rule_id}.[/green]")


@rules_app.command("import")
def rules_import(
    guild_id: str = typer.Argument(..., help="Guild to import into"),
    file: Path = typer.Argument(..., help="JSON file: a list or {\"triggers\": [...]}"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Import triggers from an export file, assigning fresh IDs."""
    _setup_logging(verbose)
    data = _read_json(file)
    payloads = data.get("triggers", []) if isinstance(data, dict) else data
    if not isinstance(payloads, list):
        console.print("[red]Expected a list of triggers.[/red]")
        raise typer.Exit(code=1)

    store = _open_store()
    try:
        imported = asyncio.run(store.import_rules(guild_id, payloads))
    finally:
        store.close()

    console.print(f"Imported [bold]{len(imported)}[/bold] of {len(payloads)} triggers.")
    if len(imported) < len(payloads):
        console.print("[yellow]Some triggers were skipped; see the log for details.[/yellow]")


@rules_app.command("export")
def rules_export(
    guild_id: str = typer.Argument(..., help="Guild to export"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write to a file"),
) -> None:
    """Export a guild's triggers as JSON."""
    store = _open_store()
    try:
        triggers = asyncio.run(store.export_rules(guild_id))
    finally:
        store.close()

    payload = json.dumps({"triggers": triggers, "count": len(triggers)}, indent=2)
    if output is None:
        console.print_json(payload)
        return
    output.write_text(payload, encoding="utf-8")
    console.print(f"Exported {len(triggers)} triggers to {output}")


# ------------------------------------------------------------------
# animus-triggers test
# ------------------------------------------------------------------


@app.command("test")
def test_rule(
    guild_id: str = typer.Argument(..., help="Guild the trigger belongs to"),
    rule_id: str = typer.Argument(..., help="Trigger ID"),
    event_file: Path = typer.Argument(..., help="JSON file with the sample event payload"),
    event_type: str | None = typer.Option(
        None, "--event-type", "-e", help="Event type (defaults to the trigger's own)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Dry-run a trigger against a sample event; nothing is sent."""
    _setup_logging(verbose)
    event = _read_json(event_file)

    rule = _require_rule(guild_id, rule_id)
    channels = DryRunChannels()
    executor = ActionExecutor(channels)
    executor.record_webhooks(channels)
    dispatcher = Dispatcher(InMemoryRuleStore(), executor)
    try:
        result = asyncio.run(dispatcher.dry_run(rule, event_type or rule.event_type, event))
    except TriggerError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc

    if not result.conditions_met:
        console.print(f"[yellow]Conditions not met; {rule.name} would not fire.[/yellow]")
        return

    table = Table(title=f"Dry run: {rule.name}", border_style="cyan")
    table.add_column("Preset", style="dim")
    table.add_column("Type")
    table.add_column("Result")
    table.add_column("Output")
    for outcome in result.outcomes:
        status = "[green]OK[/green]" if outcome.success else f"[red]{outcome.error}[/red]"
        table.add_row(
            outcome.preset_id, outcome.preset_type, status, outcome.rendered_output or ""
        )
    console.print(table)
    console.print(f"[dim]{len(channels.sent)} outbound call(s) recorded.[/dim]")


# ------------------------------------------------------------------
# animus-triggers config show
# ------------------------------------------------------------------


@config_app.command("show")
def config_show() -> None:
    """Show the effective configuration."""
    manager = ConfigManager()
    config = manager.load()
    source = manager.get_config_path() if manager.exists() else "defaults"
    console.print(f"[dim]Source: {source}[/dim]")
    console.print_json(config.model_dump_json())


if __name__ == "__main__":
    app()
