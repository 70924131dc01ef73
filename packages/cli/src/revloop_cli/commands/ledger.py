"""ledger command: display the dedup ledger."""

from __future__ import annotations

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.command("ledger")
@click.option("--project", default=None, help="Only show pull requests of this project (or GitHub owner).")
@click.option("--repo", "repository", default=None, help="Only show pull requests of this repository.")
@click.pass_context
def ledger_cmd(ctx, project: str | None, repository: str | None):
    """Show tracked pull requests and the revisions already reviewed."""
    from revloop_store.memory import MemoryLedgerStore

    store = ctx.obj.get("store") if ctx.obj else None
    if store is None or isinstance(store, MemoryLedgerStore):
        raise click.UsageError(
            "No persistent ledger store configured. Set 'store: json' in .revloop.yml, "
            "or run `revloop init` to set one up."
        )

    ledger = store.load()
    rows = []
    for key, revisions in sorted(ledger.reviewed_commits.items()):
        key_project, _, rest = key.partition("/")
        key_repository, _, pr_id = rest.rpartition("/")
        if project and key_project != project:
            continue
        if repository and key_repository != repository:
            continue
        rows.append((key_project, key_repository, pr_id, revisions))

    if not rows:
        console.print("[yellow]No reviewed pull requests found.[/yellow]")
        return

    table = Table(
        title=f"Review Ledger (updated {ledger.last_updated[:19].replace('T', ' ')})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Project", style="bold")
    table.add_column("Repository")
    table.add_column("PR", width=8)
    table.add_column("Revisions", justify="right", width=10)
    table.add_column("Latest", width=10)

    for key_project, key_repository, pr_id, revisions in rows:
        table.add_row(
            key_project,
            key_repository,
            f"#{pr_id}",
            str(len(revisions)),
            revisions[-1][:7] if revisions else "",
        )

    console.print(table)
