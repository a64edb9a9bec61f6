"""Command line interface for the ruleflow engine."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from .config import load_config
from .contracts import TriggerPayload
from .service import TriggerProcessingService, get_service
from .templates import TEMPLATE_CATEGORIES, templates_by_category

app = typer.Typer(help="CLI for ruleflow automation rules")

# Command groups
schedule_app = typer.Typer(help="Commands for scheduled rules")
trigger_app = typer.Typer(help="Commands for trigger events")
rules_app = typer.Typer(help="Commands for managing rules")
logs_app = typer.Typer(help="Commands for execution logs")
templates_app = typer.Typer(help="Commands for rule templates")

app.add_typer(schedule_app, name="schedule")
app.add_typer(trigger_app, name="trigger")
app.add_typer(rules_app, name="rules")
app.add_typer(logs_app, name="logs")
app.add_typer(templates_app, name="templates")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
) -> None:
    """ruleflow CLI entry point."""
    settings = load_config(str(config) if config else None)
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = settings


def _service(ctx: typer.Context) -> TriggerProcessingService:
    return get_service(ctx.obj)


@schedule_app.command("run")
def schedule_run(ctx: typer.Context) -> None:
    """
    Run every scheduled rule that is currently due.

    Meant to be called periodically by cron or a similar scheduler. Each due
    rule is executed once and rescheduled by its interval, whether it
    succeeded or not.

    Example:
        ruleflow schedule run
        # Output: Processed 2 rules: 1 succeeded, 1 failed
        #         - rule_ab12 (Morning Briefing): Tool execution service not configured
    """
    result = asyncio.run(_service(ctx).process_scheduled())
    typer.echo(
        f"Processed {result.rules_processed} rules: "
        f"{result.rules_succeeded} succeeded, {result.rules_failed} failed"
    )
    for error in result.errors:
        typer.echo(f"- {error.rule_id} ({error.rule_name}): {error.error}")


@trigger_app.command("process")
def trigger_process(ctx: typer.Context, user_id: str, payload_file: Path) -> None:
    """
    Feed a trigger event stored as JSON to the rule matcher.

    The file holds a trigger payload with at least ``trigger_slug`` and
    ``toolkit_slug``; ``user_id`` defaults to the command argument.

    Example:
        ruleflow trigger process user_1 ./new_email.json
        # Output: Matched rule rule_ab12 (Boss emails): executed
    """
    if not payload_file.exists():
        typer.secho("Payload file does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        data = json.loads(payload_file.read_text())
        data.setdefault("user_id", user_id)
        payload = TriggerPayload.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as exc:
        typer.secho(f"Invalid trigger payload: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    result = asyncio.run(_service(ctx).process(user_id, payload))
    if not result.matched:
        typer.echo("No rule matched" + (f": {result.error}" if result.error else ""))
        return
    status = "executed" if result.executed else f"failed: {result.error}"
    typer.echo(f"Matched rule {result.rule_id} ({result.rule_name}): {status}")


@rules_app.command("list")
def rules_list(ctx: typer.Context, user_id: str) -> None:
    """List a user's rules with their activation mode, priority and run count."""
    rules = asyncio.run(_service(ctx).rules.list_by_user(user_id))
    if not rules:
        typer.echo("No rules found")
        return
    for rule in rules:
        state = "active" if rule.is_active else "inactive"
        typer.echo(
            f"{rule.id}\t{rule.name}\t{rule.activation_mode}\t{state}"
            f"\tpriority={rule.priority}\truns={rule.execution_count}"
        )


@rules_app.command("invoke")
def rules_invoke(
    ctx: typer.Context,
    user_id: str,
    rule_id: str,
    context: str = typer.Option("", help="Free-text context handed to the rule"),
) -> None:
    """Run one of the user's manual rules right away."""
    result = asyncio.run(_service(ctx).process_manual_by_id(user_id, rule_id, context))
    if not result.success:
        typer.secho(f"Rule failed: {result.error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(result.output or "Rule executed successfully.")


@logs_app.command("list")
def logs_list(
    ctx: typer.Context,
    user_id: str,
    limit: int = typer.Option(20, help="Maximum number of entries to show"),
) -> None:
    """Show the newest execution log entries of a user."""
    entries, total = asyncio.run(_service(ctx).logs.list_by_user(user_id, limit=limit))
    if not entries:
        typer.echo("No executions found")
        return
    for entry in entries:
        duration = f"{entry.duration_ms}ms" if entry.duration_ms is not None else "-"
        typer.echo(
            f"{entry.created_at.isoformat()}\t{entry.rule_name}\t{entry.trigger_slug}"
            f"\t{entry.status.value}\t{duration}"
        )
    typer.echo(f"Showing {len(entries)} of {total}")


@logs_app.command("stats")
def logs_stats(ctx: typer.Context, user_id: str) -> None:
    """Show run count, success rate and mean duration for a user."""
    stats = asyncio.run(_service(ctx).logs.get_stats(user_id))
    typer.echo(f"Total runs: {stats.total_runs}")
    typer.echo(f"Success rate: {stats.success_rate:.1f}%")
    typer.echo(f"Average duration: {stats.avg_duration_ms}ms")


@logs_app.command("prune")
def logs_prune(
    ctx: typer.Context,
    days: int = typer.Option(30, help="Delete entries older than this many days"),
) -> None:
    """Delete old execution log entries."""
    if days < 0:
        typer.secho("--days must not be negative", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    deleted = asyncio.run(_service(ctx).logs.delete_older_than(days))
    typer.echo(f"Deleted {deleted} log entries")


@templates_app.command("list")
def templates_list() -> None:
    """List the built-in rule templates by category."""
    for category, templates in templates_by_category().items():
        typer.echo(f"{TEMPLATE_CATEGORIES[category]}:")
        for template in templates:
            typer.echo(f"  {template.id}\t{template.name} - {template.description}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
