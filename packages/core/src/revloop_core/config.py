import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_EXCLUDE = [
    "*.generated.cs",
    "*.Designer.cs",
    "*.g.cs",
    "package-lock.json",
    "yarn.lock",
    "pnpm-lock.yaml",
    "*.min.js",
    "*.min.css",
]

DEFAULT_CONFIG: dict = {
    "provider": "azure_devops",  # "azure_devops" | "github"
    "organization_url": None,
    "repositories": [],  # [{"project": ..., "repository": ...}]
    "polling_interval_minutes": 5,
    "comment_prefix": "[AutoBot]",
    "max_comments_per_file": 5,
    "max_file_size_kb": 500,
    "exclude": DEFAULT_EXCLUDE,  # glob patterns matched against filename and full path
    "agent_command": "agent",
    "agent_timeout_seconds": 300,
    "agent_max_retries": 3,
    "agent_model": None,
    "instructions": None,  # None = use built-in instructions; set to a path string to override
    "store": "json",  # "json" | "memory"
    "store_path": "review-state.json",
}

SUPPORTED_PROVIDERS = ("azure_devops", "github")
SUPPORTED_STORES = ("json", "memory")

BUILTIN_INSTRUCTIONS_DIR = Path(__file__).parent / "instructions"
_BUILTIN_DEFAULT = BUILTIN_INSTRUCTIONS_DIR / "review.md"

_PLACEHOLDER_ORG_URL = "https://dev.azure.com/your-organization"
_PLACEHOLDER_NAMES = {"YourProject", "YourRepository"}


def load_config(config_path: str = ".revloop.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .revloop.yml in the current directory
      3. CLI argument overrides
    """
    config = {**DEFAULT_CONFIG, "exclude": list(DEFAULT_CONFIG["exclude"]), "repositories": []}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["azure_devops_token"] = os.environ.get("AZURE_DEVOPS_PAT")
    config["github_token"] = os.environ.get("GITHUB_TOKEN")

    return config


def provider_token(config: dict) -> Optional[str]:
    if config.get("provider") == "github":
        return config.get("github_token")
    return config.get("azure_devops_token")


def validate_config(config: dict) -> tuple[list[str], list[str]]:
    """Return ``(errors, warnings)`` for a loaded config.

    Any error is fatal at startup: no review cycle may run without an
    endpoint, a credential and at least one repository.
    """
    errors: list[str] = []
    warnings: list[str] = []

    provider = config.get("provider")
    if provider not in SUPPORTED_PROVIDERS:
        errors.append(f"Unknown provider: {provider!r}. Choose one of: {', '.join(SUPPORTED_PROVIDERS)}.")

    if provider == "azure_devops":
        org_url = (config.get("organization_url") or "").strip()
        if not org_url or org_url.rstrip("/") == _PLACEHOLDER_ORG_URL:
            errors.append("organization_url is not set. Set it to https://dev.azure.com/<organization> in .revloop.yml.")
        if not config.get("azure_devops_token"):
            errors.append("AZURE_DEVOPS_PAT environment variable is not set.")
    elif provider == "github" and not config.get("github_token"):
        errors.append("No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.")

    repositories = config.get("repositories") or []
    if not repositories:
        errors.append("No repositories configured. Add at least one entry under 'repositories' in .revloop.yml.")
    for repo in repositories:
        if not isinstance(repo, dict) or not repo.get("project") or not repo.get("repository"):
            errors.append(f"Invalid repository entry {repo!r}: both 'project' and 'repository' are required.")
            continue
        if repo["project"] in _PLACEHOLDER_NAMES or repo["repository"] in _PLACEHOLDER_NAMES:
            warnings.append(
                f"Repository appears to use placeholder values ({repo['project']}/{repo['repository']}). "
                "Update .revloop.yml with actual values."
            )

    store = config.get("store", "json")
    if store not in SUPPORTED_STORES:
        errors.append(f"Unknown store: {store!r}. Choose one of: {', '.join(SUPPORTED_STORES)}.")

    for key in (
        "polling_interval_minutes",
        "max_comments_per_file",
        "max_file_size_kb",
        "agent_timeout_seconds",
        "agent_max_retries",
    ):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            errors.append(f"{key} must be a positive integer (got {value!r}).")

    return errors, warnings


def load_instructions(config: dict) -> str:
    """
    Load the instruction payload handed to the agent.

    If ``instructions`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("instructions")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise FileNotFoundError(f"Instructions file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise FileNotFoundError("No instructions configured and built-in default is missing.")
