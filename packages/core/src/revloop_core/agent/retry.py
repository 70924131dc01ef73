"""Failure classification and backoff for agent invocations."""

from __future__ import annotations

# Substrings of an outcome's error text that mark a transient failure.
_RETRYABLE_MARKERS = (
    "timeout",
    "timed out",
    "network",
    "connection",
    "econnreset",
    "etimedout",
    "rate limit",
    "502",
    "503",
    "504",
)


def is_retryable_error(error: str | None) -> bool:
    """Return True if a failed outcome is worth another attempt.

    An empty error is retryable: the agent failed without saying why.
    """
    if not error:
        return True
    lowered = error.lower()
    return any(marker in lowered for marker in _RETRYABLE_MARKERS)


def backoff_seconds(attempt: int, unit: float = 1.0) -> float:
    """Delay after the 1-indexed ``attempt``: 2, 4, 8, ... units."""
    return unit * 2**attempt
