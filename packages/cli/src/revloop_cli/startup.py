"""Startup checks shared by the commands that talk to a provider."""

from __future__ import annotations

import click
from rich.console import Console

console = Console()


def validate_or_exit(config: dict) -> None:
    """Print config warnings and raise UsageError if the config cannot run a cycle."""
    from revloop_core.config import validate_config

    errors, warnings = validate_config(config)
    for warning in warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    if errors:
        raise click.UsageError("\n".join(errors))


def load_instructions_or_exit(config: dict) -> str:
    from revloop_core.config import load_instructions

    try:
        return load_instructions(config)
    except FileNotFoundError as e:
        raise click.UsageError(str(e)) from e
