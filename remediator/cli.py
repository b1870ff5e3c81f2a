"""Remediator CLI commands.

Provides command-line interface for the remediation service:
- Watch a project and remediate errors as they appear
- Scan a project once and wait for remediation to finish
- Show knowledge store statistics and recent events
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

from .config import load_config
from .errors import ConfigurationError
from .events import EventType, RemediationEvent
from .knowledge import KnowledgeStore
from .service import EVENT_LOG_NAME, RemediationService
from .utils.logging import setup_logging

console = Console()

_EVENT_STYLES = {
    EventType.ERROR_DETECTED: "yellow",
    EventType.ITERATION_STARTED: "cyan",
    EventType.ITERATION_ATTEMPT: "dim",
    EventType.ITERATION_COMPLETED: "green",
    EventType.ITERATION_FAILED: "red",
}


def main(argv=None):
    """Main entry point for the remediator CLI."""
    parser = argparse.ArgumentParser(
        description="Detect and remediate failing workflow nodes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch logs/ and workflows/ of the current directory
  remediator watch

  # Scan another project once, without the model service
  remediator scan --project-dir ~/n8n-project --no-model

  # Knowledge statistics and the last 20 events
  remediator status --events 20
        """,
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path.cwd(),
        help="Project directory holding .remediator.json (default: current directory)",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    watch_parser = subparsers.add_parser("watch", help="Watch sources and remediate continuously")
    watch_parser.add_argument("--no-model", action="store_true", help="Never call the model service")

    scan_parser = subparsers.add_parser("scan", help="Scan sources once and remediate")
    scan_parser.add_argument("--no-model", action="store_true", help="Never call the model service")
    scan_parser.add_argument("--json", action="store_true", help="Output as JSON")

    status_parser = subparsers.add_parser("status", help="Show knowledge statistics and recent events")
    status_parser.add_argument("--events", type=int, default=10, help="Number of recent events")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(args.project_dir.expanduser().resolve())
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        sys.exit(2)

    setup_logging(config.log_dir, debug=args.debug, console=args.debug)

    try:
        if args.command == "watch":
            asyncio.run(cmd_watch(config, args))
        elif args.command == "scan":
            asyncio.run(cmd_scan(config, args))
        elif args.command == "status":
            cmd_status(config, args)
    except KeyboardInterrupt:
        console.print("\nStopped.")


def print_event(event: RemediationEvent) -> None:
    """Render one event as a console line."""
    style = _EVENT_STYLES.get(event.event_type, "white")
    target = "/".join(p for p in (event.workflow_id, event.node_id) if p) or "-"
    detail = ""
    data = event.data
    if event.event_type == EventType.ERROR_DETECTED:
        record = data.get("record", {})
        detail = f"{record.get('type')}: {record.get('message', '')[:80]}"
        if not data.get("needs_fixing"):
            detail += " (not remediated)"
    elif event.event_type == EventType.ITERATION_ATTEMPT:
        attempt = data.get("attempt") or {}
        outcome = "ok" if attempt.get("success") else attempt.get("error") or "failed"
        detail = f"attempt {data.get('attempt_count')}: {outcome}"
    elif event.event_type in (EventType.ITERATION_COMPLETED, EventType.ITERATION_FAILED):
        detail = f"{data.get('status')} after {data.get('attempt_count')} attempts"
    console.print(f"[{style}]{event.event_type.value:<20}[/{style}] {target}  {detail}")


async def cmd_watch(config, args):
    """Watch the project until interrupted."""
    service = RemediationService(config, use_model=not args.no_model)
    service.emitter.add_callback(print_event)
    await service.start()
    console.print(
        f"Watching [bold]{config.logs_dir}[/bold] and [bold]{config.workflows_dir}[/bold] "
        "(Ctrl+C to stop)"
    )
    try:
        await asyncio.Event().wait()
    finally:
        await service.stop()


async def cmd_scan(config, args):
    """Scan once and report the outcome."""
    service = RemediationService(config, use_model=not args.no_model)
    if not args.json:
        service.emitter.add_callback(print_event)
    status = await service.scan()

    if args.json:
        print(json.dumps(status, indent=2, default=str))
        return

    controller = status["controller"]
    console.print(
        f"\nLoops: {controller['started']} started, [green]{controller['completed']} fixed[/green], "
        f"[red]{controller['failed']} failed[/red], {controller['stopped']} stopped"
    )
    print_knowledge_table(status["knowledge"])


def cmd_status(config, args):
    """Show knowledge statistics and recent events."""
    knowledge = KnowledgeStore.from_config(config)
    stats = knowledge.get_stats()
    state_dir = config.paths.resolve(config.project_dir)["state_dir"]
    events = read_recent_events(state_dir / EVENT_LOG_NAME, args.events)

    if args.json:
        print(json.dumps({"knowledge": stats, "events": [e.to_dict() for e in events]}, indent=2))
        return

    print_knowledge_table(stats)
    if events:
        console.print(f"\n[bold]Last {len(events)} events[/bold]")
        for event in events:
            print_event(event)
    else:
        console.print("\nNo events recorded yet.")


def print_knowledge_table(stats: dict[str, Any]) -> None:
    """Render knowledge statistics per error type."""
    table = Table(title="Knowledge store")
    table.add_column("Error type")
    table.add_column("Patterns", justify="right")
    table.add_column("Outcomes", justify="right")
    table.add_column("Successes", justify="right")
    table.add_column("Success rate", justify="right")

    for error_type, row in sorted(stats.get("by_type", {}).items()):
        total = row.get("total", 0)
        successes = row.get("successes", 0)
        rate = f"{successes / total:.0%}" if total else "-"
        table.add_row(error_type, str(row.get("patterns", 0)), str(total), str(successes), rate)

    console.print(table)
    console.print(
        f"Templates: {stats.get('total_templates', 0)} "
        f"({stats.get('promoted_templates', 0)} promoted), "
        f"learned patterns: {stats.get('learned_patterns', 0)}"
    )


def read_recent_events(path: Path, limit: int) -> list[RemediationEvent]:
    """Read the last ``limit`` events from a JSON lines event log."""
    if limit <= 0 or not path.exists():
        return []
    events = []
    for line in path.read_text(encoding="utf-8").splitlines()[-limit:]:
        try:
            events.append(RemediationEvent.from_dict(json.loads(line)))
        except (json.JSONDecodeError, KeyError, ValueError):
            continue
    return events
