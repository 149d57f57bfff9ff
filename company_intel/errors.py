from __future__ import annotations

TRANSIENT_CODES = frozenset({"TIMEOUT", "RATE_LIMITED", "NETWORK_ERROR"})


class CompanyIntelError(Exception):
    """Base class for pipeline errors."""

    retriable: bool = False


class ScrapeError(CompanyIntelError):
    """A single URL could not be scraped."""

    def __init__(self, message: str, *, url: str = "", code: str = "API_ERROR"):
        super().__init__(message)
        self.url = url
        self.code = code
        self.retriable = code in TRANSIENT_CODES


class PluginUnavailableError(CompanyIntelError):
    """Dispatch was attempted against a disabled or unknown plugin."""


class MergeInputError(CompanyIntelError, ValueError):
    pass


class DiscoveryError(CompanyIntelError, ValueError):
    pass


class SessionNotFoundError(CompanyIntelError, LookupError):
    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class SessionConflictError(CompanyIntelError):
    """Another writer updated the session first; re-read and retry."""

    retriable = True

    def __init__(self, session_id: str, expected_version: int | None = None):
        detail = f" (expected version {expected_version})" if expected_version is not None else ""
        super().__init__(f"Session version conflict for {session_id}{detail}")
        self.session_id = session_id
        self.expected_version = expected_version


def is_retriable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retriable", False))
