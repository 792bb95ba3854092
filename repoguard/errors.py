"""
Scan error taxonomy.

Only TreeUnavailable and AuthExpired abort a session. FetchFailed and
RateLimited are per-file; BinaryUnreadable is a value, not an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence


class ScanError(Exception):
    """Base class for all scan engine errors."""

    code = "SCAN-ERROR"
    fatal = False
    retryable = False

    def to_dict(self) -> dict:
        return {"code": self.code, "message": str(self), "retryable": self.retryable}


class TreeUnavailable(ScanError):
    code = "TREE-UNAVAILABLE"
    fatal = True
    retryable = True

    def __init__(self, owner: str, name: str, branches: Sequence[str], status: Optional[int] = None,
                 reason: str = ""):
        self.owner = owner
        self.name = name
        self.branches = tuple(branches)
        self.status = status
        self.reason = reason
        tried = ", ".join(self.branches) or "<none>"
        detail = reason or f"last status: {status}"
        super().__init__(f"Could not resolve tree for {owner}/{name} (tried: {tried}; {detail})")


class AuthExpired(ScanError):
    code = "AUTH-EXPIRED"
    fatal = True

    def __init__(self, message: str = "Authorization rejected by the remote API — re-authenticate"):
        super().__init__(message)


class FetchFailed(ScanError):
    code = "FETCH-FAILED"

    def __init__(self, path: str, status: Optional[int] = None, reason: str = ""):
        self.path = path
        self.status = status
        self.reason = reason
        detail = reason or f"HTTP {status}"
        super().__init__(f"{path}: {detail}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({"path": self.path, "status": self.status})
        return data


class RateLimited(ScanError):
    code = "RATE-LIMITED"
    retryable = True

    def __init__(self, path: str, retry_after: Optional[float] = None):
        self.path = path
        self.retry_after = retry_after
        super().__init__(f"{path}: rate limited (retry after {retry_after}s)")


@dataclass(frozen=True)
class BinaryUnreadable:
    """Fetch outcome for content that is not decodable text."""

    path: str
    reason: str = "binary content"


class SessionNotFound(LookupError):
    """No live session for the given handle (unknown, or replaced by a newer scan)."""
