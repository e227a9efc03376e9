from __future__ import annotations

from connectors.base import Connector
from connectors.catalog import IMPORT_PROVIDERS, Provider
from connectors.dropbox.connector import DropboxConnector
from connectors.errors import UnsupportedInput
from connectors.google_drive.connector import GoogleDriveConnector
from connectors.notion.connector import NotionConnector


def get_connector(provider: Provider) -> Connector:
    """Adapter for ``provider``. The provider set is closed, so this is a plain match."""
    match provider:
        case Provider.DROPBOX:
            return DropboxConnector()
        case Provider.GOOGLE_DRIVE:
            return GoogleDriveConnector()
        case Provider.NOTION:
            return NotionConnector()
        case _:
            raise UnsupportedInput(f"Unsupported provider: {provider.value}")


def list_connectors() -> list[str]:
    return sorted(p.value for p in IMPORT_PROVIDERS)
