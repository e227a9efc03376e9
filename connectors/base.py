from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from connectors.catalog import Provider


@dataclass(frozen=True)
class IntegrationCredential:
    """Snapshot of one organization's connection to one provider.

    Writes never go through this object; the credential store applies targeted
    partial updates to the underlying row.
    """

    id: str
    organization_id: str
    provider: Provider
    status: str
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    synced_items_count: int = 0

    @property
    def is_connected(self) -> bool:
        return self.status == "CONNECTED"


@dataclass
class BrowseEntry:
    """Normalized descriptor of a remote file or folder, built fresh on every listing."""

    type: str  # folder | file
    id: str
    name: str
    path: Optional[str] = None
    size: Optional[int] = None
    modified_at: Optional[datetime] = None
    mime_type: Optional[str] = None
    url: Optional[str] = None


@dataclass
class FetchedContent:
    """Raw adapter output.

    Adapters that already produce HTML (Google Docs export, Notion blocks) set
    ``html``; the others hand back ``data`` for the normalizer.
    """

    name: str
    data: Optional[bytes] = None
    html: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class ExportedItem:
    """Where an exported document landed on the provider side."""

    id: str
    name: str
    path: Optional[str] = None
    url: Optional[str] = None
    size: Optional[int] = None


class Connector(Protocol):
    provider: Provider

    # OAuth helpers
    def build_authorize_url(self, *, client_id: str, redirect_uri: str, state: str) -> str: ...
    async def exchange_code_for_tokens_async(
        self,
        *,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
    ) -> dict: ...

    async def refresh_tokens_async(self, *, client_id: str, client_secret: str, refresh_token: str) -> dict: ...

    # Data plane
    async def list_entries(self, *, access_token: str, path: str = "") -> list[BrowseEntry]: ...
    async def fetch_content(self, *, access_token: str, identifier: str) -> FetchedContent: ...
    async def export_document(
        self,
        *,
        access_token: str,
        title: str,
        html: str,
        folder: Optional[str] = None,
        database_id: Optional[str] = None,
    ) -> ExportedItem: ...


def parse_timestamp(val: object) -> Optional[datetime]:
    """Parse a provider ISO8601 timestamp; unparseable values become None."""
    if val is None or isinstance(val, datetime):
        return val
    try:
        text = str(val)
        if text.endswith("Z"):
            text = text.replace("Z", "+00:00")
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def expires_at_from(expires_in: object, now: datetime) -> Optional[datetime]:
    """Absolute expiry for a token response's ``expires_in`` seconds; None when the field is absent.

    Raises ValueError when the provider sent something that is not a number of seconds.
    """
    if not expires_in:
        return None
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        raise ValueError(f"invalid expires_in: {expires_in!r}") from None
    return now + timedelta(seconds=seconds)
