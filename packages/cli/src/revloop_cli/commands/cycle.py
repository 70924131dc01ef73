"""cycle command: run exactly one review cycle."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

from revloop_cli.startup import load_instructions_or_exit, validate_or_exit
from revloop_core.reviewer import CycleSummary, get_agent, get_provider, run_cycle

console = Console()


@click.command("cycle")
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print review comments without posting them or updating the ledger.",
)
@click.pass_context
def cycle_cmd(ctx, shadow: bool):
    """Run one review cycle over every configured repository and exit."""
    config = ctx.obj["config"]
    store = ctx.obj["store"]

    validate_or_exit(config)
    instructions = load_instructions_or_exit(config)

    provider = get_provider(config)
    agent = get_agent(config)
    try:
        summary = run_cycle(provider, store, agent, config, instructions, shadow=shadow)
    finally:
        provider.close()

    _print_summary(summary, shadow)
    if summary.failed or summary.repositories_failed:
        ctx.exit(1)


def _print_summary(summary: CycleSummary, shadow: bool) -> None:
    title = "Review Cycle (shadow)" if shadow else "Review Cycle"
    table = Table(title=title, show_header=False)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Repositories scanned", str(summary.repositories_scanned))
    failed_repos = len(summary.repositories_failed)
    table.add_row("Repositories failed", f"[red]{failed_repos}[/red]" if failed_repos else "0")
    table.add_row("Pull requests reviewed", str(len(summary.reviewed)))
    table.add_row("Pull requests skipped", str(summary.skipped))
    table.add_row("Pull requests failed", f"[red]{len(summary.failed)}[/red]" if summary.failed else "0")
    table.add_row("Comments posted", str(summary.comments_posted))
    table.add_row("Ledger keys removed", str(len(summary.removed_keys)))
    console.print(table)

    for repo in summary.repositories_failed:
        console.print(f"[red]Could not scan {repo}[/red]")
    for key in summary.failed:
        console.print(f"[yellow]Review failed for {key}; it will be retried next cycle.[/yellow]")
