"""run command: the long-running polling review service."""

from __future__ import annotations

import logging
import signal
import threading

import click
from rich.console import Console

from revloop_cli.startup import load_instructions_or_exit, validate_or_exit
from revloop_core.reviewer import get_agent, get_provider, run_polling_loop

console = Console()
logger = logging.getLogger(__name__)


@click.command("run")
@click.pass_context
def run_cmd(ctx):
    """Poll the configured repositories and review new pull request revisions.

    Runs until SIGINT or SIGTERM. A signal stops the service at the next
    checkpoint; an agent that is already running is left to finish on its own.

    \b
    Required environment variables:
      AZURE_DEVOPS_PAT     Personal access token (provider: azure_devops)
      GITHUB_TOKEN         GitHub token, or use gh CLI (provider: github)
    """
    config = ctx.obj["config"]
    store = ctx.obj["store"]

    validate_or_exit(config)
    instructions = load_instructions_or_exit(config)

    stop_event = threading.Event()

    def _request_stop(signum, _frame):
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        stop_event.set()

    previous = {sig: signal.signal(sig, _request_stop) for sig in (signal.SIGINT, signal.SIGTERM)}

    provider = get_provider(config)
    agent = get_agent(config, stop_event=stop_event)
    repo_count = len(config["repositories"])
    console.print(
        f"[bold cyan]revloop[/bold cyan] watching {repo_count} repositor{'y' if repo_count == 1 else 'ies'} "
        f"every {config['polling_interval_minutes']} minute(s). Press Ctrl+C to stop."
    )
    try:
        run_polling_loop(provider, store, agent, config, instructions, stop_event)
    finally:
        provider.close()
        for sig, handler in previous.items():
            signal.signal(sig, handler)
