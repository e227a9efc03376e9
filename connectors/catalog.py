from __future__ import annotations

import enum
from dataclasses import dataclass

from connectors.errors import UnsupportedInput


class Provider(str, enum.Enum):
    DROPBOX = "DROPBOX"
    GOOGLE_DRIVE = "GOOGLE_DRIVE"
    NOTION = "NOTION"
    DOCUSIGN = "DOCUSIGN"

    @property
    def slug(self) -> str:
        """URL form used in routes, e.g. ``google-drive``."""
        return self.value.lower().replace("_", "-")

    @classmethod
    def parse(cls, value: str | None) -> "Provider":
        """Accept ``GOOGLE_DRIVE``, ``google_drive`` or ``google-drive``."""
        key = (value or "").strip().upper().replace("-", "_")
        try:
            return cls(key)
        except ValueError:
            raise UnsupportedInput(f"Invalid provider. Supported: {', '.join(p.value for p in IMPORT_PROVIDERS)}")


@dataclass(frozen=True)
class CatalogEntry:
    name: str
    description: str
    category: str
    features: tuple[str, ...]
    # Settings prefix for <PREFIX>_CLIENT_ID / <PREFIX>_CLIENT_SECRET
    env_prefix: str
    supports_oauth: bool
    supports_import: bool


PROVIDER_CATALOG: dict[Provider, CatalogEntry] = {
    Provider.NOTION: CatalogEntry(
        name="Notion",
        description="Sync documents and collaborate with your team workspace",
        category="Productivity",
        features=("Two-way sync", "Auto-backup", "Real-time updates"),
        env_prefix="NOTION",
        supports_oauth=True,
        supports_import=True,
    ),
    Provider.GOOGLE_DRIVE: CatalogEntry(
        name="Google Drive",
        description="Store and access your legal documents in Google Drive",
        category="Cloud Storage",
        features=("Auto-backup", "Folder mapping", "Version control"),
        env_prefix="GOOGLE",
        supports_oauth=True,
        supports_import=True,
    ),
    Provider.DROPBOX: CatalogEntry(
        name="Dropbox",
        description="Automatically sync documents to your Dropbox account",
        category="Cloud Storage",
        features=("Auto-backup", "Smart sync", "Selective sync"),
        env_prefix="DROPBOX",
        supports_oauth=True,
        supports_import=True,
    ),
    Provider.DOCUSIGN: CatalogEntry(
        name="DocuSign",
        description="Send documents for e-signature and track signing progress",
        category="Productivity",
        features=("E-signatures", "Status tracking", "Auto-reminders"),
        env_prefix="DOCUSIGN",
        supports_oauth=False,
        supports_import=False,
    ),
}

IMPORT_PROVIDERS: tuple[Provider, ...] = tuple(p for p, c in PROVIDER_CATALOG.items() if c.supports_import)


def display_name(provider: Provider) -> str:
    return PROVIDER_CATALOG[provider].name


def require_importable(value: str | Provider) -> Provider:
    """Parse ``value`` and reject providers that have no import adapter."""
    provider = value if isinstance(value, Provider) else Provider.parse(value)
    if not PROVIDER_CATALOG[provider].supports_import:
        raise UnsupportedInput(f"Invalid provider. Supported: {', '.join(p.value for p in IMPORT_PROVIDERS)}")
    return provider
