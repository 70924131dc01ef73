from __future__ import annotations


class ReviewCancelled(Exception):
    """Raised when the shared stop signal fires while work is suspended.

    Propagates through every layer untouched: retries, per-PR and
    per-repository error containment all re-raise it.
    """


class ProviderError(Exception):
    """A pull-request source provider call failed.

    Raised by listing calls (pull requests, iterations, changes). The message
    carries actionable guidance where the failure mode is recognisable.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
