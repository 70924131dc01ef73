"""CLI entry point for revloop.

Commands:
  run     start the polling review service
  cycle   run a single review cycle and exit
  ledger  show which pull request revisions have been reviewed
  init    interactive setup wizard
"""

from __future__ import annotations

import importlib.metadata
import logging

import click
from rich.console import Console
from rich.logging import RichHandler

from revloop_cli.commands.cycle import cycle_cmd
from revloop_cli.commands.init import init_cmd
from revloop_cli.commands.ledger import ledger_cmd
from revloop_cli.commands.run import run_cmd


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _build_store(config: dict):
    """Instantiate the configured ledger store from .revloop.yml settings.

    Store selection:
      store: json    → JsonFileLedgerStore at store_path (default)
      store: memory  → MemoryLedgerStore (forgotten on restart)

    Returns None for an unknown store; validate_config reports it before any
    command that needs a store can start a cycle.

    This factory lives in cli.py so neither revloop_core nor revloop_store
    know about the CLI config format.
    """
    store_type = config.get("store", "json")

    if store_type == "json":
        from revloop_store.json_file import JsonFileLedgerStore

        return JsonFileLedgerStore(path=config.get("store_path") or "review-state.json")

    if store_type == "memory":
        from revloop_store.memory import MemoryLedgerStore

        return MemoryLedgerStore()

    return None


@click.group()
@click.version_option(
    version=importlib.metadata.version("revloop"),
    prog_name="revloop",
)
@click.option(
    "--config",
    "config_path",
    default=".revloop.yml",
    show_default=True,
    help="Path to the configuration file.",
    envvar="REVLOOP_CONFIG",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, config_path: str, verbose: bool):
    """Automated pull request reviews driven by an external AI agent CLI."""
    from revloop_core.config import load_config
    from revloop_cli.auth import resolve_token

    _configure_logging(verbose)
    ctx.ensure_object(dict)

    config = load_config(config_path)

    # Resolve the credential early so all subcommands share the same resolution.
    token = resolve_token(config.get("provider"))
    if token:
        key = "github_token" if config.get("provider") == "github" else "azure_devops_token"
        config[key] = token

    store = _build_store(config)
    ctx.obj["store"] = store
    ctx.obj["config"] = config
    ctx.obj["config_path"] = config_path
    if store is not None:
        ctx.call_on_close(store.close)


main.add_command(run_cmd)
main.add_command(cycle_cmd)
main.add_command(ledger_cmd)
main.add_command(init_cmd)
