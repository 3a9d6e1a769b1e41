#!/usr/bin/env python3
"""
GuardianLink CLI Helpers

Shared formatting utilities for consistent CLI output across all commands.
"""

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Tuple

import click
import yaml
from rich.console import Console

# Single shared Console instance for the entire CLI
console = Console()

VERDICT_STYLES = {"ALLOW": "green", "WARN": "yellow", "BLOCK": "red"}
STATUS_STYLES = {"safe": "green", "warning": "yellow", "danger": "red"}
SEVERITY_STYLES = {"critical": "red", "high": "yellow", "medium": "blue", "low": "white"}


def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow triangle."""
    console.print(f"[yellow]⚠[/yellow]  {message}")


def print_error(message: str, fix_hint: str = "") -> None:
    """Print an error message with red X and optional fix hint."""
    console.print(f"[red]✗[/red] {message}")
    if fix_hint:
        console.print(f"  [white]Hint: {fix_hint}[/white]")


def styled(value: str, styles: Dict[str, str]) -> str:
    """Wrap a value in the Rich color registered for it."""
    color = styles.get(str(value), "white")
    return f"[{color}]{value}[/{color}]"


def format_command_example(command: str, description: str) -> str:
    return f"  {command:<44s} {description}"


def build_examples_epilog(examples: List[Tuple[str, str]]) -> str:
    """
    Build a formatted epilog string with command examples.

    Args:
        examples: List of (command, description) tuples.

    Returns:
        Multi-line string suitable for Click's epilog parameter.
    """
    lines = ["\b\nExamples:"]
    for cmd, desc in examples:
        lines.append(format_command_example(cmd, desc))
    return "\n".join(lines) + "\n"


@contextmanager
def spinner(message: str):
    """Show a Rich spinner while a scan runs."""
    with console.status(f"[bold cyan]{message}...", spinner="dots"):
        yield


def load_mapping_file(path: str) -> Dict[str, Any]:
    """Read a JSON or YAML file that must contain a mapping.

    Raises:
        click.BadParameter: if the file is unreadable or not a mapping.
    """
    file_path = Path(path)
    try:
        with open(file_path) as f:
            if file_path.suffix.lower() == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise click.BadParameter(f"Could not read {file_path}: {e}")
    if not isinstance(data, dict):
        raise click.BadParameter(f"{file_path} must contain a mapping")
    return data
