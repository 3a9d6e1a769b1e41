#!/usr/bin/env python3
"""
GuardianLink CLI - URL threat scoring from the command line.

Usage:
    guardianlink scan URL [--phases FILE] [--context FILE] [--json]
    guardianlink rules list|show|validate|decay|stats|seed|reset-decay
    guardianlink learn malicious URL --context FILE
    guardianlink learn false-positive URL --rule ID [--rule ID ...]
    guardianlink cache stats|invalidate|clear
    guardianlink logs show|verify
"""

import asyncio
import json
from typing import Optional, Tuple

import click
import yaml
from rich.panel import Panel
from rich.table import Table

from guardianlink import __version__
from guardianlink.cli_helpers import (
    STATUS_STYLES,
    VERDICT_STYLES,
    build_examples_epilog,
    console,
    load_mapping_file,
    print_success,
    print_warning,
    spinner,
    styled,
)
from guardianlink.cli_logs import logs
from guardianlink.cli_rules import rules
from guardianlink.logging.security_log import flush_audit


@click.group()
@click.version_option(version=__version__, prog_name="guardianlink")
def main():
    """GuardianLink - URL threat scoring and decision engine.

    Combines reputation, certificate, content and heuristic evidence into
    an ALLOW / WARN / BLOCK verdict.
    """
    pass


# ============================================================
# SCAN
# ============================================================


def _print_decision(decision) -> None:
    table = Table(title="Evidence")
    table.add_column("Phase", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Status")
    table.add_column("Notes", max_width=50)

    for name, phase in decision.phases.items():
        notes = phase.reason or phase.error or ", ".join(phase.findings[:3])
        if not phase.available:
            notes = f"[dim]unavailable[/dim] {notes}".strip()
        table.add_row(
            name,
            f"{phase.score:g}/{phase.max_score:g}",
            styled(phase.status, STATUS_STYLES),
            notes,
        )

    if decision.phases:
        console.print(table)

    verdict = decision.verdict.value
    color = VERDICT_STYLES.get(verdict, "white")
    body = (
        f"[bold {color}]{verdict}[/bold {color}]  "
        f"risk {decision.risk_level.value}  "
        f"safety {decision.percentage}%  "
        f"({decision.total_score:g}/{decision.max_total_score:g})\n\n"
        f"{decision.reasoning}"
    )
    if decision.mandate_override:
        body += "\n\n[red]Blocked by a provider mandate.[/red]"
    console.print(Panel(body, title=decision.fingerprint, border_style=color))


async def _scan_and_flush(service, url: str):
    decision = await service.scan(url)
    if service.cache is not None:
        await service.cache.flush()
    await flush_audit()
    return decision


@main.command(
    epilog=build_examples_epilog([
        ("guardianlink scan https://example.com", "Heuristics only"),
        ("guardianlink scan URL --phases results.json", "Replay recorded provider results"),
        ("guardianlink scan URL --context whois.yaml", "Add recorded WHOIS/SSL context"),
        ("guardianlink scan URL --json", "Machine-readable decision"),
    ])
)
@click.argument("url")
@click.option("--phases", "phases_file", type=click.Path(exists=True, dir_okay=False),
              help="JSON/YAML mapping of phase name to provider result")
@click.option("--context", "context_file", type=click.Path(exists=True, dir_okay=False),
              help="JSON/YAML signal context (whois, ssl, reputation...)")
@click.option("--no-cache", is_flag=True, help="Bypass the scan cache")
@click.option("--json", "json_out", is_flag=True, help="Output as JSON")
def scan(url: str, phases_file: Optional[str], context_file: Optional[str],
         no_cache: bool, json_out: bool):
    """Score a URL and print the verdict."""
    from guardianlink.cache import ScanCache
    from guardianlink.config import get_config
    from guardianlink.producers import load_phases_file, static_producers
    from guardianlink.scanner import ScanService

    try:
        phases = load_phases_file(phases_file) if phases_file else {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.BadParameter(str(e), param_hint="--phases")
    context = load_mapping_file(context_file) if context_file else {}

    config = get_config()
    cache = None
    if no_cache:
        # In-memory only, so the persisted cache is neither read nor written
        cache = ScanCache()

    service = ScanService(
        producers=static_producers(phases),
        cache=cache,
        config=config,
        context=context,
    )

    if json_out:
        decision = asyncio.run(_scan_and_flush(service, url))
        click.echo(json.dumps(decision.to_dict(), indent=2))
        return

    with spinner(f"Scanning {url}"):
        decision = asyncio.run(_scan_and_flush(service, url))
    _print_decision(decision)


# ============================================================
# LEARN
# ============================================================


@main.group()
def learn():
    """Feed confirmed verdicts back into the heuristic rule set."""
    pass


@learn.command("malicious")
@click.argument("url")
@click.option("--context", "context_file", required=True,
              type=click.Path(exists=True, dir_okay=False),
              help="JSON/YAML scan context including the provider mandate")
def learn_malicious(url: str, context_file: str):
    """Learn a rule from a URL a trusted provider marked malicious."""
    from guardianlink.config import get_config
    from guardianlink.heuristics import HeuristicLearner, get_rule_store

    context = load_mapping_file(context_file)
    learner = HeuristicLearner(get_rule_store(), get_config().learning)
    result = learner.learn_from_confirmed_malicious(url, context)

    if result.learned:
        print_success(f"Learned rule [bold]{result.rule_id}[/bold]")
        for key in sorted(result.conditions or {}):
            console.print(f"  [cyan]{key}[/cyan]")
    else:
        print_warning(f"No rule learned: {result.reason}")


@learn.command("false-positive")
@click.argument("url")
@click.option("--rule", "rule_ids", multiple=True, required=True,
              help="Rule that fired on the URL (repeatable)")
def learn_false_positive(url: str, rule_ids: Tuple[str, ...]):
    """Lower the confidence of rules that fired on a safe URL."""
    from guardianlink.config import get_config
    from guardianlink.heuristics import HeuristicLearner, get_rule_store

    learner = HeuristicLearner(get_rule_store(), get_config().learning)
    result = learner.learn_from_false_positive(url, {"triggered_rules": list(rule_ids)})

    if not result.adjusted:
        print_warning(f"Nothing adjusted: {result.reason}")
        return

    for entry in result.adjusted_rules:
        state = "[red]deactivated[/red]" if not entry["active"] else "active"
        console.print(f"  {entry['id']}: confidence {entry['confidence']:.3f} ({state})")
    print_success(f"Adjusted {len(result.adjusted_rules)} rule(s)")


# ============================================================
# CACHE
# ============================================================


@main.group()
def cache():
    """Inspect and clear the scan cache."""
    pass


def _open_cache():
    from guardianlink.cache import ScanCache
    from guardianlink.config import get_config

    return ScanCache.from_config(get_config().cache)


@cache.command("stats")
def cache_stats():
    """Show cache size and TTL."""
    stats = _open_cache().stats()

    table = Table(title="Scan Cache")
    table.add_column("Setting", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Entries", str(stats["entries"]))
    table.add_row("TTL (hours)", f"{stats['ttl_hours']:g}")
    table.add_row("Backing file", stats["db_path"] or "[dim]memory only[/dim]")
    console.print(table)


@cache.command("invalidate")
@click.argument("url")
def cache_invalidate(url: str):
    """Drop the cached decision for one URL."""
    from guardianlink.cache import canonicalize_url

    if _open_cache().invalidate(url):
        print_success(f"Invalidated {canonicalize_url(url)}")
    else:
        print_warning(f"No cached decision for {canonicalize_url(url)}")


@cache.command("clear")
@click.confirmation_option(prompt="Clear every cached decision?")
def cache_clear():
    """Remove all cached decisions."""
    count = _open_cache().clear()
    print_success(f"Cleared {count} cached decision(s)")


main.add_command(rules)
main.add_command(logs)


if __name__ == "__main__":
    main()
