#!/usr/bin/env python3
"""
GuardianLink CLI - rules command group

Inspect, validate, seed and maintain the heuristic rule set.
"""
from __future__ import annotations

import json
import sys
from typing import Optional

import click
from rich.table import Table

from guardianlink.cli_helpers import (
    SEVERITY_STYLES,
    console,
    print_error,
    print_success,
    print_warning,
    styled,
)


@click.group()
def rules():
    """Heuristic rule management.

    Rules are conjunctive condition sets; every condition must hold for a
    rule to add its score impact to a URL's suspicion.
    """
    pass


def _store():
    from guardianlink.heuristics import get_rule_store

    return get_rule_store()


@rules.command("list")
@click.option("--all", "show_all", is_flag=True, help="Include deactivated rules")
@click.option("--learned", is_flag=True, help="Only rules created by learning")
@click.option("--json", "json_out", is_flag=True, help="Output as JSON")
def rules_list(show_all: bool, learned: bool, json_out: bool):
    """List heuristic rules."""
    store = _store()
    selected = store.get_all() if show_all else store.get_active_rules()
    if learned:
        selected = [r for r in selected if r.is_learned]

    if json_out:
        click.echo(json.dumps([r.to_dict() for r in selected], indent=2))
        return

    if not selected:
        console.print("[white]No rules found.[/white]")
        return

    table = Table(title="Heuristic Rules")
    table.add_column("ID", style="cyan")
    table.add_column("Conditions")
    table.add_column("Impact", justify="right")
    table.add_column("Severity")
    table.add_column("Confidence", justify="right")
    table.add_column("Active")

    for rule in selected:
        table.add_row(
            rule.id,
            ", ".join(f"{k}={v}" for k, v in rule.conditions.items()),
            f"{rule.score_impact:g}",
            styled(rule.severity, SEVERITY_STYLES),
            f"{rule.confidence:.3f}",
            "[green]yes[/green]" if rule.active else "[red]no[/red]",
        )

    console.print(table)
    console.print(f"\n[white]{len(selected)} rule(s)[/white]")


@rules.command("show")
@click.argument("rule_id")
def rules_show(rule_id: str):
    """Show every field of one rule."""
    from guardianlink.heuristics import RuleNotFoundError

    try:
        rule = _store().get_rule(rule_id)
    except RuleNotFoundError:
        print_error(f"Rule not found: {rule_id}", fix_hint="guardianlink rules list --all")
        sys.exit(1)

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in rule.to_dict().items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value)
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@rules.command("validate")
def rules_validate():
    """Report rules that can never match or that collide.

    Exit code 0 if the rule set is clean, 1 otherwise.
    """
    from guardianlink.heuristics import HeuristicEvaluator

    problems = HeuristicEvaluator(_store()).validate()
    if not problems:
        print_success("All rules are valid")
        return

    table = Table(title="Rule Problems")
    table.add_column("#", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Problem", style="yellow")
    for problem in problems:
        table.add_row(str(problem.idx), problem.id or "[dim]-[/dim]", problem.problem)
    console.print(table)
    sys.exit(1)


@rules.command("decay")
def rules_decay():
    """Apply time-based confidence decay now."""
    from guardianlink.heuristics import apply_decay

    report = apply_decay(_store())
    print_success(f"Decayed {report.decayed} rule(s)")
    for rule_id in report.expired:
        print_warning(f"Deactivated {rule_id}")


@rules.command("reset-decay")
@click.argument("rule_id")
def rules_reset_decay(rule_id: str):
    """Reactivate a rule and restart its decay clock."""
    from guardianlink.heuristics import reset_decay_for_rule

    if reset_decay_for_rule(_store(), rule_id):
        print_success(f"Decay reset for {rule_id}")
    else:
        print_error(f"Rule not found: {rule_id}")
        sys.exit(1)


@rules.command("stats")
def rules_stats():
    """Show rule counts and average confidence."""
    stats = _store().get_stats()

    table = Table(title="Heuristic Rule Set")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total", str(stats["total"]))
    table.add_row("Active", str(stats["active"]))
    table.add_row("Expired", str(stats["expired"]))
    table.add_row("Learned", str(stats["learned"]))
    table.add_row("Avg confidence (active)", f"{stats['average_confidence']:.3f}")
    console.print(table)
    console.print(f"  Store: {stats['path']}")


@rules.command("seed")
@click.option("--file", "seed_file", type=click.Path(exists=True, dir_okay=False),
              help="heuristics.yaml to seed from (default: bundled rules)")
def rules_seed(seed_file: Optional[str]):
    """Add seed rules whose ids are not yet in the store."""
    from guardianlink.config import ConfigError

    try:
        added = _store().seed_from_yaml(seed_file)
    except ConfigError as e:
        print_error(str(e))
        sys.exit(1)

    if added:
        print_success(f"Seeded {added} rule(s)")
    else:
        console.print("[white]All seed rules already present.[/white]")
