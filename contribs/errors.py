"""
contribs/errors.py — Exception taxonomy shared by every layer.

ValidationError and WindowError abort a request immediately. SyncError is
fatal except for the tolerated fast-forward pull. UpstreamError is raised by
the GitHub client and recovered locally by the identity resolver.
CancellationError short-circuits everything and is never cached.
"""

from typing import Optional


class ContribsError(Exception):
    """Base class for all errors raised by contribs."""


class ValidationError(ContribsError):
    """Malformed slug or non-positive contributor limit."""


class SyncError(ContribsError):
    """A subprocess exited with a non-zero status or broke its output contract."""


class WindowError(ContribsError):
    """The repository has no commits, or its commit dates could not be parsed."""


class UpstreamError(ContribsError):
    """Non-OK GitHub API response, transport failure, or retry budget exhausted."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CancellationError(ContribsError):
    """The caller's cancellation signal fired mid-operation."""

    def __init__(self, message: str = "The operation was aborted.") -> None:
        super().__init__(message)
