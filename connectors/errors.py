from __future__ import annotations

from typing import Optional


class IntegrationError(Exception):
    """Base error for integration list/import failures.

    ``message`` is safe to return to the caller; ``detail`` carries provider
    response text for server-side logs only.
    """

    status_code: int = 500

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotConnected(IntegrationError):
    """No credential row, or the row is not CONNECTED, for (organization, provider)."""

    status_code = 400


class AuthorizationExpired(IntegrationError):
    """Token refresh failed or the provider rejected the token; the user must re-authorize."""

    status_code = 401


class UnsupportedInput(IntegrationError):
    status_code = 400


class ProviderError(IntegrationError):
    status_code = 500


class DocumentNotFound(IntegrationError):
    """The document to export does not exist or is not visible to the caller."""

    status_code = 404
