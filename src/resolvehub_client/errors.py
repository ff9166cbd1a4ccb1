"""Error taxonomy shared by every component that talks to the backend."""

from __future__ import annotations

from typing import Optional


class ResolveHubError(Exception):
    """Base class for all client-side errors."""


class InputValidationError(ResolveHubError):
    """A required field is empty or invalid; never sent to the backend."""


class AuthenticationError(ResolveHubError):
    """Login was refused. The server text is deliberately not kept."""


class UnauthorizedError(ResolveHubError):
    """The backend answered 401 to an authenticated call."""


class TransportError(ResolveHubError):
    """The backend could not be reached."""


class BackendError(ResolveHubError):
    """Non-2xx answer, optionally carrying the backend's ``detail`` text."""

    def __init__(self, status_code: int, detail: Optional[str] = None) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(detail or f"Backend answered HTTP {status_code}")

    def user_message(self, default: str) -> str:
        return self.detail or default
