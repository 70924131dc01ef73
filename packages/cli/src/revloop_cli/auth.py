"""Credential resolution for the configured provider.

Resolution order (stops at first success):
  azure_devops: AZURE_DEVOPS_PAT environment variable
  github:       GITHUB_TOKEN environment variable, then `gh auth token`
"""

from __future__ import annotations

import logging
import os
import subprocess

logger = logging.getLogger(__name__)


def resolve_token(provider: str) -> str | None:
    """Return the credential for ``provider`` or None if none is available.

    Never raises; startup validation reports the missing credential.
    """
    if provider == "github":
        return resolve_github_token()
    return os.environ.get("AZURE_DEVOPS_PAT") or None


def resolve_github_token() -> str | None:
    token = os.environ.get("GITHUB_TOKEN")
    if token:
        return token

    # Reuse the session stored by `gh auth login`.
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if result.returncode == 0:
            gh_token = result.stdout.strip()
            if gh_token:
                logger.debug("Resolved GitHub token via gh CLI session.")
                return gh_token
    except (FileNotFoundError, subprocess.TimeoutExpired):
        pass

    return None
