#!/usr/bin/env python3
"""
GuardianLink CLI - Logs command group.

View the audit log and verify its hash chain.
"""
from __future__ import annotations

import sys
from datetime import datetime
from typing import Optional

import click
from rich.panel import Panel
from rich.table import Table

from guardianlink.cli_helpers import VERDICT_STYLES, console, styled


@click.group()
def logs():
    """View and verify the security audit log."""
    pass


@logs.command("show",
    epilog="""\b
Examples:
  guardianlink logs show                     Show last 20 events
  guardianlink logs show -n 50               Show last 50 events
  guardianlink logs show --type rule_learned Filter by event type
  guardianlink logs show --rule learned:ab12cd34
  guardianlink logs show --stats --days 30   Statistics for the last 30 days
"""
)
@click.option("--limit", "-n", default=20, help="Number of events to show")
@click.option("--type", "-t", "event_type", help="Filter by event type")
@click.option("--rule", "rule_id", help="Filter by heuristic rule id")
@click.option("--stats", is_flag=True, help="Show statistics instead of events")
@click.option("--days", "-d", default=7, help="Number of days to analyze (with --stats)")
def logs_show(limit: int, event_type: Optional[str], rule_id: Optional[str],
              stats: bool, days: int):
    """Show recent security events."""
    from guardianlink.logging.security_log import EventType, get_logger

    security_logger = get_logger()

    if stats:
        stat_data = security_logger.get_stats(days=days)
        console.print(Panel.fit(
            f"[cyan]Period:[/cyan] Last {days} days\n"
            f"[cyan]Total Events:[/cyan] {stat_data['total_events']}",
            title="Security Statistics"
        ))

        if stat_data["by_verdict"]:
            table = Table(title="Verdicts")
            table.add_column("Verdict", style="cyan")
            table.add_column("Count", justify="right")
            for verdict, count in stat_data["by_verdict"].items():
                table.add_row(styled(verdict, VERDICT_STYLES), str(count))
            console.print(table)
            console.print()

        if stat_data["by_event_type"]:
            table = Table(title="Events by Type")
            table.add_column("Event", style="cyan")
            table.add_column("Count", justify="right")
            for name, count in stat_data["by_event_type"].items():
                table.add_row(name, str(count))
            console.print(table)
            console.print()

        if stat_data["top_rules"]:
            table = Table(title="Most Active Rules")
            table.add_column("Rule", style="cyan")
            table.add_column("Events", justify="right")
            for entry in stat_data["top_rules"]:
                table.add_row(entry["rule_id"], str(entry["count"]))
            console.print(table)
        return

    et = None
    if event_type:
        try:
            et = EventType(event_type)
        except ValueError:
            console.print(f"[red]Unknown event type: {event_type}[/red]")
            console.print(f"[white]Valid types: {', '.join(e.value for e in EventType)}[/white]")
            return

    events = security_logger.get_recent_events(limit=limit, event_type=et, rule_id=rule_id)
    if not events:
        console.print("[yellow]No events found[/yellow]")
        return

    table = Table(title="Recent Security Events")
    table.add_column("Time", style="white")
    table.add_column("Type", style="cyan")
    table.add_column("Component", style="green")
    table.add_column("Verdict")
    table.add_column("Rule / Reason", max_width=40)
    table.add_column("URL", max_width=40)

    for event in events:
        timestamp = event.get("timestamp", "")
        if timestamp:
            try:
                timestamp = datetime.fromisoformat(timestamp).strftime("%m/%d %H:%M:%S")
            except (ValueError, TypeError):
                pass

        verdict = event.get("verdict") or ""
        reason = event.get("rule_id") or event.get("reason") or ""
        if len(str(reason)) > 40:
            reason = str(reason)[:37] + "..."

        table.add_row(
            timestamp,
            event.get("event_type", ""),
            event.get("component", ""),
            styled(verdict, VERDICT_STYLES) if verdict else "",
            str(reason),
            event.get("url") or "",
        )

    console.print(table)
    console.print(f"\n[white]Showing {len(events)} events. Use --limit to see more.[/white]")


@logs.command("verify")
def logs_verify():
    """Verify the audit log hash chain.

    Exit code 0 if intact, 1 if any entry was altered.
    """
    from guardianlink.logging.security_log import get_logger

    result = get_logger().verify_chain()

    if result["valid"]:
        console.print(
            f"[green]✓[/green] Hash chain intact ({result['verified']}/{result['total']} entries)"
        )
        return

    console.print(
        f"[red]✗[/red] Hash chain broken at entry {result['broken_at']} "
        f"({len(result['errors'])} bad entries of {result['total']})"
    )
    for error in result["errors"][:10]:
        console.print(
            f"  #{error['id']} {error['event_type']} {error['timestamp']} "
            f"expected {error['expected_hash']} stored {error['stored_hash']}"
        )
    sys.exit(1)
