"""Exception hierarchy for quota checks.

Every error raised while authorizing or probing a single client application derives from
QuotaCheckError, so the orchestrator can isolate failures per application with one except
clause. Configuration problems are reported separately through CredentialError, before any
application is processed.
"""

from typing import Optional


class QuotaCheckError(Exception):
    """Base class for failures scoped to one client application."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NetworkError(QuotaCheckError):
    """A request failed in transport or returned a non-success status."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ProtocolError(QuotaCheckError):
    """A response had an unexpected encoding or shape."""


class AuthorizationDenied(QuotaCheckError):
    """The authorization server answered with a terminal error code."""

    def __init__(self, error: str, description: Optional[str] = None) -> None:
        message = f"Authorization denied: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)
        self.error = error
        self.description = description


class AuthorizationTimeout(QuotaCheckError):
    """No token was obtained before the session deadline."""


class AuthorizationCancelled(QuotaCheckError):
    """The operator aborted the run while a session was waiting."""


class CredentialError(ValueError):
    """The configured credentials cannot be used for the selected mode."""
