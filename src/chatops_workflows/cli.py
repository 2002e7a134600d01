"""Command-line interface for inspecting workflow definitions.

Provides offline tooling over a YAML/JSON file of workflows:
- validate   - Check models and cron expressions
- match      - Dry-run an event against the workflows
- next-runs  - Show upcoming fire times of schedule workflows
"""

from __future__ import annotations

import argparse
import json
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .core import LoggingConfig, WorkflowError, WorkflowNotFoundError, get_logger, setup_logging
from .workflows import (
    TriggerType,
    Workflow,
    WorkflowEngine,
    WorkflowEvent,
    build_match,
    upcoming_runs,
    validate_schedule,
)
from .workflows.models import utcnow

logger = get_logger("cli")


def _read_document(path: str | Path) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, encoding="utf-8") as handle:
        if file_path.suffix.lower() == ".json":
            try:
                return json.load(handle)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {file_path}: {exc}") from exc
        try:
            return yaml.safe_load(handle)
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {file_path}: {exc}") from exc


def load_workflows(path: str | Path) -> list[Workflow]:
    """Load workflows from a file holding a list or a ``workflows`` mapping.

    Entries without ``id`` or timestamps are given defaults so that plain
    definitions can be checked before they are stored.
    """
    document = _read_document(path)
    if isinstance(document, dict):
        document = document.get("workflows", [])
    if not isinstance(document, list):
        raise ValueError("Workflow file must contain a list of workflows")

    now = utcnow()
    workflows = []
    for index, entry in enumerate(document, 1):
        if not isinstance(entry, dict):
            raise ValueError(f"Workflow #{index} is not a mapping")
        record = {"id": f"workflow-{index}", "createdAt": now, "updatedAt": now, **entry}
        workflows.append(Workflow.model_validate(record))
    return workflows


def select_workflows(workflows: list[Workflow], workflow_id: str | None) -> list[Workflow]:
    """Narrow ``workflows`` to one id when given.

    Raises:
        WorkflowNotFoundError: If no workflow has ``workflow_id``
    """
    if workflow_id is None:
        return workflows
    selected = [workflow for workflow in workflows if workflow.id == workflow_id]
    if not selected:
        raise WorkflowNotFoundError(workflow_id)
    return selected


def load_event(path: str | Path) -> WorkflowEvent:
    """Load an event; ``id`` and ``receivedAt`` default to fresh values."""
    document = _read_document(path)
    if not isinstance(document, dict):
        raise ValueError("Event file must contain a mapping")
    if "id" not in document:
        fresh = WorkflowEvent.create(document.get("type", TriggerType.WEBHOOK))
        document = {"id": fresh.id, "receivedAt": fresh.received_at, **document}
    return WorkflowEvent.model_validate(document)


def _format_time(value: datetime | None) -> str:
    return value.isoformat() if value else "-"


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle validate command."""
    workflows = load_workflows(args.file)
    console = Console()

    table = Table(title="Workflows")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Trigger", style="magenta")
    table.add_column("Status")
    table.add_column("Actions", style="green")

    failures = 0
    for workflow in workflows:
        status = "[green]OK[/]" if workflow.enabled else "[yellow]Disabled[/]"
        schedule = workflow.trigger.schedule
        if schedule is not None:
            error = validate_schedule(schedule, args.timezone)
            if error:
                failures += 1
                status = f"[red]{escape(error)}[/]"
        table.add_row(
            escape(workflow.id),
            escape(workflow.name),
            workflow.trigger.type.value,
            status,
            str(len(workflow.actions)),
        )

    console.print(table)
    if failures:
        console.print(f"[red]{failures} workflow(s) have invalid schedules[/]")
        return 1
    return 0


def cmd_match(args: argparse.Namespace) -> int:
    """Handle match command."""
    workflows = select_workflows(load_workflows(args.file), args.workflow)
    event = load_event(args.event)
    engine = WorkflowEngine()
    console = Console()

    matched = 0
    for workflow, result in zip(workflows, engine.run(workflows, event)):
        if not result.matched:
            console.print(f"[dim]- {escape(workflow.id)} ({escape(workflow.name)}): no match[/]")
            continue
        matched += 1
        match = build_match(workflow, result, event)
        console.print(f"[green]+ {escape(workflow.id)} ({escape(workflow.name)}): matched[/]")
        if result.extracted:
            console.print(f"  extracted: {escape(json.dumps(result.extracted))}")
        for planned in match.actions:
            console.print(f"  [{planned.index}] {planned.action_type}")
            for ref in planned.tool_refs:
                tool_input = escape(json.dumps(ref.input or {}))
                console.print(f"      -> {ref.integration_id}.{ref.tool_name} {tool_input}")
            if planned.input and not planned.tool_refs:
                console.print(f"      {escape(json.dumps(planned.input))}")

    console.print(f"\n[bold]{matched}/{len(workflows)} workflow(s) matched[/]")
    return 0


def cmd_next_runs(args: argparse.Namespace) -> int:
    """Handle next-runs command."""
    workflows = select_workflows(load_workflows(args.file), args.workflow)
    console = Console()

    table = Table(title="Upcoming runs")
    table.add_column("ID", style="cyan")
    table.add_column("Cron")
    table.add_column("Next runs")

    for workflow in workflows:
        if not workflow.is_schedulable:
            continue
        schedule = workflow.trigger.schedule
        if schedule is None:
            continue
        error = validate_schedule(schedule, args.timezone)
        if error:
            table.add_row(escape(workflow.id), escape(schedule.cron), f"[red]{escape(error)}[/]")
            continue
        runs = upcoming_runs(schedule, args.limit, args.timezone)
        table.add_row(
            escape(workflow.id),
            escape(schedule.cron),
            "\n".join(_format_time(r) for r in runs),
        )

    console.print(table)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="chatops-workflows",
        description="Inspect and dry-run chat-ops workflow definitions",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Check every workflow and its cron schedule
  chatops-workflows validate workflows.yaml

  # See which workflows an event would trigger
  chatops-workflows match workflows.yaml event.json
        """,
    )
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    parser.add_argument(
        "--timezone", default="UTC", help="Default timezone for schedules without one"
    )

    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Validate workflow definitions")
    validate_parser.add_argument("file", help="YAML or JSON workflow file")
    validate_parser.set_defaults(handler=cmd_validate)

    match_parser = subparsers.add_parser("match", help="Dry-run an event against workflows")
    match_parser.add_argument("file", help="YAML or JSON workflow file")
    match_parser.add_argument("event", help="YAML or JSON event file")
    match_parser.add_argument("-w", "--workflow", help="Only evaluate this workflow id")
    match_parser.set_defaults(handler=cmd_match)

    runs_parser = subparsers.add_parser("next-runs", help="Show upcoming schedule fire times")
    runs_parser.add_argument("file", help="YAML or JSON workflow file")
    runs_parser.add_argument("-n", "--limit", type=int, default=5, help="Runs per workflow")
    runs_parser.add_argument("-w", "--workflow", help="Only show this workflow id")
    runs_parser.set_defaults(handler=cmd_next_runs)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "handler", None):
        parser.print_help()
        return 1

    try:
        setup_logging(LoggingConfig(level=args.log_level))
        return args.handler(args)
    except (OSError, ValueError, WorkflowError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        Console(stderr=True).print(f"[red]Error:[/] {escape(str(exc))}")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
