from __future__ import annotations

import logging
from typing import Optional, Union

from app.services.base import IntegrationService
from connectors.base import ExportedItem, IntegrationCredential
from connectors.catalog import Provider, display_name, require_importable
from connectors.errors import DocumentNotFound, IntegrationError, ProviderError
from core.concurrency import run_blocking
from infra.db.stores import StoredDocument

logger = logging.getLogger(__name__)


class IntegrationExporter(IntegrationService):
    """Push stored documents to an organization's connected providers.

    Dropbox and Google Drive receive a DOCX rendering; Notion gets a new page.
    A connection whose token cannot be renewed is flagged ERROR so the UI asks
    for a reconnect.
    """

    async def export_document(
        self,
        organization_id: str,
        provider: Union[str, Provider],
        document_id: str,
        *,
        user_id: Optional[str] = None,
        folder: Optional[str] = None,
        database_id: Optional[str] = None,
    ) -> ExportedItem:
        p = require_importable(provider)
        credential, token = await self._authorize(organization_id, p, flag_expired=True)

        document = await run_blocking(
            self.documents.get, document_id, organization_id=organization_id, user_id=user_id
        )
        if document is None:
            raise DocumentNotFound("Document not found")

        try:
            item = await self.connector_factory(p).export_document(
                access_token=token,
                title=document.title,
                html=document.content,
                folder=folder,
                database_id=database_id,
            )
        except IntegrationError:
            raise
        except Exception as e:
            logger.exception(f"Exporting document {document_id} to {p.value} failed for org {organization_id}: {e}")
            raise ProviderError("Failed to export document") from e

        await run_blocking(self._record_export, credential, p, document, item, organization_id, user_id)
        logger.info(f"Exported document {document_id} to {p.value} as {item.id} (org {organization_id})")
        return item

    def _record_export(
        self,
        credential: IntegrationCredential,
        provider: Provider,
        document: StoredDocument,
        item: ExportedItem,
        organization_id: str,
        user_id: Optional[str],
    ) -> None:
        self.credentials.record_sync(credential.id, at=self.clock())
        details = {"externalId": item.id, "fileName": item.name, "path": item.path, "url": item.url}
        self.audit.append(
            action="DOCUMENT_EXPORTED",
            action_label=f"Exported document to {display_name(provider)}",
            entity_type="Document",
            entity_id=document.id,
            entity_name=document.title,
            organization_id=organization_id,
            user_id=user_id,
            metadata={"destination": provider.value, **{k: v for k, v in details.items() if v is not None}},
        )
