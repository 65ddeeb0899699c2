"""Error taxonomy for a sync run.

Every failure that ends a run is a `SyncError`. The CLI reports `reason` (plus the
optional `suggestion`) once on stderr and exits non-zero; nothing is retried.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Fatal run error with an actionable hint."""

    def __init__(self, reason: str, *, suggestion: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(reason)
        self.reason = reason
        self.suggestion = suggestion
        self.details = details or {}

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.reason} ({self.suggestion})"
        return self.reason


class ListUnavailable(SyncError):
    """The /json/list endpoint could not be reached or returned a non-2xx status."""


class ListMalformed(SyncError):
    """The /json/list body is not a JSON array."""


class NoTargetFound(SyncError):
    """No page target scored above zero."""


class OpenFailed(SyncError):
    """The control channel errored before becoming ready."""


class SessionClosed(SyncError):
    """A call was issued after close, or was still pending when the channel closed."""


class RemoteCallError(SyncError):
    """The remote side answered a call with an error (or a thrown exception)."""


class InjectionFailed(SyncError):
    """The injection program found no supported editor surface."""


class VerifyFailed(SyncError):
    """Readback after save did not match the pushed script."""


__all__ = [
    "InjectionFailed",
    "ListMalformed",
    "ListUnavailable",
    "NoTargetFound",
    "OpenFailed",
    "RemoteCallError",
    "SessionClosed",
    "SyncError",
    "VerifyFailed",
]
