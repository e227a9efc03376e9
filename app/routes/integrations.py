from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.deps import Identity, get_exporter, get_identity, get_importer
from app.services.exporter import IntegrationExporter
from app.services.importer import DocumentRef, IntegrationImporter
from connectors.catalog import PROVIDER_CATALOG, Provider
from connectors.errors import NotConnected, UnsupportedInput
from infra.db.engine import get_session
from infra.db.stores import AuditLogStore, CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter()


class IntegrationOut(BaseModel):
    id: str
    provider: str
    name: str
    description: str
    category: str
    features: list[str]
    status: str
    supportsImport: bool
    connectedAt: Optional[datetime] = None
    lastSyncAt: Optional[datetime] = None
    lastSyncStatus: Optional[str] = None
    syncedItemsCount: int = 0
    externalEmail: Optional[str] = None
    settings: Optional[dict] = None


class CategoryOut(BaseModel):
    id: str
    name: str
    count: int


class StatsOut(BaseModel):
    connectedCount: int
    totalSyncedItems: int
    lastSyncTime: Optional[datetime] = None
    availableCount: int


class IntegrationsResponse(BaseModel):
    integrations: list[IntegrationOut]
    categories: list[CategoryOut]
    stats: StatsOut


@router.get("", response_model=IntegrationsResponse)
def list_integrations(
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
) -> IntegrationsResponse:
    """Provider catalog merged with this organization's stored connections."""
    rows = {
        row.provider: row
        for row in CredentialStore(db).list_for_organization(identity.organization_id)
        if row.status != "DISCONNECTED"
    }
    integrations: list[IntegrationOut] = []
    for provider, entry in PROVIDER_CATALOG.items():
        row = rows.get(provider.value)
        integrations.append(
            IntegrationOut(
                id=row.id if row else provider.value,
                provider=provider.value,
                name=entry.name,
                description=entry.description,
                category=entry.category,
                features=list(entry.features),
                status=row.status if row else "available",
                supportsImport=entry.supports_import,
                connectedAt=row.connected_at if row else None,
                lastSyncAt=row.last_sync_at if row else None,
                lastSyncStatus=row.last_sync_status if row else None,
                syncedItemsCount=(row.synced_items_count or 0) if row else 0,
                externalEmail=row.external_email if row else None,
                settings=row.settings if row else None,
            )
        )

    connected = [r for r in rows.values() if r.status == "CONNECTED"]
    sync_times = [r.last_sync_at for r in connected if r.last_sync_at is not None]
    categories = [
        CategoryOut(id="all", name="All Integrations", count=len(integrations)),
        CategoryOut(id="connected", name="Connected", count=len(connected)),
    ]
    for name in sorted({e.category for e in PROVIDER_CATALOG.values()}):
        categories.append(CategoryOut(id=name, name=name, count=sum(1 for i in integrations if i.category == name)))

    return IntegrationsResponse(
        integrations=integrations,
        categories=categories,
        stats=StatsOut(
            connectedCount=len(connected),
            totalSyncedItems=sum(r.synced_items_count or 0 for r in connected),
            lastSyncTime=max(sync_times) if sync_times else None,
            availableCount=len(integrations) - len(connected),
        ),
    )


class RemoteFile(BaseModel):
    type: str
    id: str
    name: str
    path: Optional[str] = None
    size: Optional[int] = None
    modified: Optional[datetime] = None
    mimeType: Optional[str] = None
    url: Optional[str] = None


class RemoteListing(BaseModel):
    files: list[RemoteFile]
    path: str


@router.get("/import", response_model=RemoteListing)
async def list_remote_files(
    provider: Optional[str] = Query(default=None),
    path: str = Query(default=""),
    identity: Identity = Depends(get_identity),
    importer: IntegrationImporter = Depends(get_importer),
) -> RemoteListing:
    entries = await importer.list_remote_entries(identity.organization_id, provider, path)
    return RemoteListing(
        files=[
            RemoteFile(
                type=e.type,
                id=e.id,
                name=e.name,
                path=e.path,
                size=e.size,
                modified=e.modified_at,
                mimeType=e.mime_type,
                url=e.url,
            )
            for e in entries
        ],
        path=path,
    )


class ImportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: Optional[str] = None
    file_id: Optional[str] = Field(default=None, alias="fileId")
    file_path: Optional[str] = Field(default=None, alias="filePath")
    document_type: str = Field(default="OTHER", alias="documentType")
    create_document: bool = Field(default=True, alias="createDocument")

    def identifier(self, provider: Provider) -> str:
        # Dropbox addresses files by path; the others by id
        if provider == Provider.DROPBOX:
            return self.file_path or self.file_id
        return self.file_id or self.file_path


@router.post("/import")
async def import_remote_file(
    body: ImportRequest,
    identity: Identity = Depends(get_identity),
    importer: IntegrationImporter = Depends(get_importer),
) -> dict:
    if not body.provider or not (body.file_id or body.file_path):
        raise UnsupportedInput("Provider and file ID or path required")
    provider = Provider.parse(body.provider)
    result = await importer.import_remote_file(
        identity.organization_id,
        provider,
        body.identifier(provider),
        create_document=body.create_document,
        user_id=identity.user_id,
        document_type=body.document_type,
    )
    if isinstance(result, DocumentRef):
        return {"success": True, "document": {"id": result.id, "title": result.title, "status": result.status}}
    return {"success": True, "title": result.name, "content": result.content, "provider": provider.value}


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: Optional[str] = Field(default=None, alias="documentId")
    folder_path: Optional[str] = Field(default=None, alias="folderPath")
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    parent_page_id: Optional[str] = Field(default=None, alias="parentPageId")
    database_id: Optional[str] = Field(default=None, alias="databaseId")

    def destination(self, provider: Provider) -> Optional[str]:
        # Dropbox folders are paths, Drive folders are ids, Notion pages nest under a parent page
        if provider == Provider.DROPBOX:
            return self.folder_path
        if provider == Provider.NOTION:
            return self.parent_page_id
        return self.folder_id


@router.post("/{provider}/export")
async def export_document(
    provider: str,
    body: ExportRequest,
    identity: Identity = Depends(get_identity),
    exporter: IntegrationExporter = Depends(get_exporter),
) -> dict:
    if not body.document_id:
        raise UnsupportedInput("Document ID required")
    p = Provider.parse(provider)
    item = await exporter.export_document(
        identity.organization_id,
        p,
        body.document_id,
        user_id=identity.user_id,
        folder=body.destination(p),
        database_id=body.database_id,
    )
    file = {"id": item.id, "name": item.name, "path": item.path, "url": item.url, "size": item.size}
    return {"success": True, "provider": p.value, "file": {k: v for k, v in file.items() if v is not None}}


class SyncStatusOut(BaseModel):
    provider: str
    status: str
    lastSyncAt: Optional[datetime] = None
    lastSyncStatus: Optional[str] = None
    syncedItemsCount: int = 0


@router.get("/{provider}/sync", response_model=SyncStatusOut)
def sync_status(
    provider: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
) -> SyncStatusOut:
    p = Provider.parse(provider)
    credential = CredentialStore(db).get(identity.organization_id, p)
    if credential is None or credential.status == "DISCONNECTED":
        raise NotConnected(f"{p.value} not connected")
    return SyncStatusOut(
        provider=p.value,
        status=credential.status,
        lastSyncAt=credential.last_sync_at,
        lastSyncStatus=credential.last_sync_status,
        syncedItemsCount=credential.synced_items_count,
    )


@router.delete("/{provider}")
def disconnect_integration(
    provider: str,
    identity: Identity = Depends(get_identity),
    db: Session = Depends(get_session),
) -> dict:
    p = Provider.parse(provider)
    integration_id = CredentialStore(db).disconnect(identity.organization_id, p)
    if integration_id is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    AuditLogStore(db).append(
        action="INTEGRATION_DISCONNECTED",
        action_label=f"Disconnected {PROVIDER_CATALOG[p].name}",
        entity_type="Integration",
        entity_id=integration_id,
        entity_name=PROVIDER_CATALOG[p].name,
        organization_id=identity.organization_id,
        user_id=identity.user_id,
        metadata={"provider": p.value},
    )
    logger.info(f"Disconnected {p.value} for org {identity.organization_id}")
    return {"success": True}
