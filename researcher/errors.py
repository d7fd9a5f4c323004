"""
Application errors for the research core.

Gateway problems surface as UpstreamFailure subclasses, budget exhaustion as
QuotaExceeded, and missing credentials as ConfigurationError, so the HTTP
layer and the CLI can map each to its own status or exit code.
"""

from __future__ import annotations

from datetime import date


class ResearchError(Exception):
    """Base class for every error raised by the research core."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(ResearchError):
    """A required credential or setting is missing or invalid. Not retryable."""


class QuotaExceeded(ResearchError):
    """The per-period completion budget is spent. Retry after `resets_at`."""

    def __init__(self, limit: int, resets_at: date) -> None:
        self.limit = limit
        self.resets_at = resets_at
        super().__init__(
            f"Daily completion limit of {limit} reached. Please try again tomorrow."
        )


class UpstreamFailure(ResearchError):
    """The search or completion provider was unreachable or rejected the request."""


class SearchUnavailable(UpstreamFailure):
    pass


class CompletionUnavailable(UpstreamFailure):
    pass


class SessionNotFound(ResearchError):
    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionBusy(ResearchError):
    """A run is already in flight for this session id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"A research run is already in progress for session {session_id}")
