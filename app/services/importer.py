from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

from app.services.base import IntegrationService
from connectors.base import BrowseEntry, FetchedContent, IntegrationCredential
from connectors.catalog import Provider, require_importable
from connectors.errors import IntegrationError, ProviderError
from core.concurrency import run_blocking
from infra.file_processing.normalize import derive_title, normalize_content

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_TYPE = "OTHER"
DRAFT = "DRAFT"


@dataclass
class ImportedContent:
    name: str
    content: str
    source_mime_type: Optional[str] = None
    source_name: Optional[str] = None


@dataclass
class DocumentRef:
    id: str
    title: str
    status: str


class IntegrationImporter(IntegrationService):
    """Browse and import files from an organization's connected providers.

    This is the single catch boundary for list/import: taxonomy errors pass
    through untouched and anything else is logged and reported as a generic
    ``ProviderError``.
    """

    async def list_remote_entries(
        self, organization_id: str, provider: Union[str, Provider], path: str = ""
    ) -> list[BrowseEntry]:
        p = require_importable(provider)
        try:
            _, token = await self._authorize(organization_id, p)
            return await self.connector_factory(p).list_entries(access_token=token, path=path)
        except IntegrationError:
            raise
        except Exception as e:
            logger.exception(f"Listing {p.value} entries failed for org {organization_id}: {e}")
            raise ProviderError("Failed to list files") from e

    async def import_remote_file(
        self,
        organization_id: str,
        provider: Union[str, Provider],
        identifier: str,
        *,
        create_document: bool,
        user_id: Optional[str] = None,
        document_type: Optional[str] = None,
    ) -> Union[ImportedContent, DocumentRef]:
        p = require_importable(provider)
        try:
            credential, token = await self._authorize(organization_id, p)
            fetched = await self.connector_factory(p).fetch_content(access_token=token, identifier=identifier)
            content = normalize_content(fetched)
        except IntegrationError:
            raise
        except Exception as e:
            logger.exception(f"Importing {p.value} file {identifier!r} failed for org {organization_id}: {e}")
            raise ProviderError("Failed to import file") from e

        title = derive_title(fetched.name)
        if not create_document:
            return ImportedContent(
                name=title,
                content=content,
                source_mime_type=fetched.mime_type,
                source_name=fetched.name,
            )

        # Only reached once fetch and normalize have both succeeded
        doc_id = await run_blocking(
            self._persist_import,
            credential,
            p,
            fetched,
            title=title,
            content=content,
            organization_id=organization_id,
            user_id=user_id,
            document_type=document_type or DEFAULT_DOCUMENT_TYPE,
        )
        logger.info(f"Imported {p.value} file {identifier!r} as document {doc_id} (org {organization_id})")
        return DocumentRef(id=doc_id, title=title, status=DRAFT)

    def _persist_import(
        self,
        credential: IntegrationCredential,
        provider: Provider,
        fetched: FetchedContent,
        *,
        title: str,
        content: str,
        organization_id: str,
        user_id: Optional[str],
        document_type: str,
    ) -> str:
        doc_id = self.documents.create(
            title=title,
            content=content,
            document_type=document_type,
            status=DRAFT,
            owner_id=user_id,
            organization_id=organization_id,
        )
        self.credentials.record_sync(credential.id, at=self.clock())
        self.audit.append(
            action="DOCUMENT_CREATED",
            action_label=f"Imported document from {provider.value}",
            entity_type="Document",
            entity_id=doc_id,
            entity_name=title,
            organization_id=organization_id,
            user_id=user_id,
            metadata={"source": provider.value, "originalFileName": fetched.name},
        )
        return doc_id
