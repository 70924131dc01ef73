"""init command: interactive setup wizard that writes .revloop.yml."""

from __future__ import annotations

import subprocess
from pathlib import Path

import click
import yaml
from rich.console import Console

console = Console()


@click.command("init")
@click.pass_context
def init_cmd(ctx):
    """Set up revloop for this machine.

    Asks for the provider, the repositories to watch, the agent CLI and the
    ledger store, then writes them to the configuration file.
    """
    config_path = Path((ctx.obj or {}).get("config_path") or ".revloop.yml")
    console.print("\n[bold cyan]revloop init[/bold cyan]: setup wizard\n")

    provider = click.prompt(
        "PR provider",
        type=click.Choice(["azure_devops", "github"]),
        default="azure_devops",
    )
    config: dict = {"provider": provider}

    if provider == "azure_devops":
        config["organization_url"] = click.prompt("Organization URL (https://dev.azure.com/<organization>)").rstrip("/")

    config["repositories"] = _prompt_repositories(provider)

    config["agent_command"] = click.prompt("Agent CLI command", default="agent")

    console.print("\nLedger store:")
    console.print("  [bold]json[/bold]    remembers reviewed revisions across restarts (default)")
    console.print("  [bold]memory[/bold]  remembers reviewed revisions until the process exits")
    store_type = click.prompt("Store backend", type=click.Choice(["json", "memory"]), default="json")
    config["store"] = store_type
    if store_type == "json":
        store_path = click.prompt("Ledger file path", default="review-state.json")
        if store_path != "review-state.json":
            config["store_path"] = store_path

    _write_config(config_path, config)
    console.print(f"[green]Created {config_path}[/green]")

    token_env = "GITHUB_TOKEN" if provider == "github" else "AZURE_DEVOPS_PAT"
    console.print(f"\n[yellow]Remember to export [bold]{token_env}[/bold] before starting the service.[/yellow]")
    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Try one shadow cycle with: [bold]revloop cycle --shadow[/bold]")


def _prompt_repositories(provider: str) -> list[dict]:
    label = "owner/name" if provider == "github" else "project/repository"
    detected = _detect_repo_from_git() if provider == "github" else None
    if detected:
        console.print(f"[dim]Detected repository: {detected}[/dim]")

    repositories: list[dict] = []
    while True:
        default = detected if detected and not repositories else ""
        answer = click.prompt(
            f"Repository to watch ({label}, empty to finish)",
            default=default,
            show_default=bool(default),
        ).strip()
        if not answer:
            if repositories:
                return repositories
            console.print("[yellow]At least one repository is required.[/yellow]")
            continue
        project, _, repository = answer.partition("/")
        if not project or not repository:
            console.print(f"[yellow]Expected {label}, got {answer!r}.[/yellow]")
            continue
        repositories.append({"project": project, "repository": repository})


def _detect_repo_from_git() -> str | None:
    """Try to detect the GitHub repo slug from the git remote URL."""
    try:
        result = subprocess.run(
            ["git", "remote", "get-url", "origin"],
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    url = result.stdout.strip()
    # https://github.com/owner/repo.git and git@github.com:owner/repo.git
    if "github.com" not in url:
        return None
    slug = url.split("github.com")[-1].lstrip("/:").removesuffix(".git")
    return slug if "/" in slug else None


def _write_config(path: Path, config: dict) -> None:
    """Write or update the config file, preserving any existing keys."""
    existing: dict = {}
    if path.exists():
        existing = yaml.safe_load(path.read_text()) or {}
    existing.update(config)
    path.write_text(yaml.dump(existing, default_flow_style=False, sort_keys=False))
