from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import anyio
import pytest
from sqlalchemy import select

from app.services.exporter import IntegrationExporter
from app.services.importer import IntegrationImporter
from config.settings import settings
from connectors.base import ExportedItem
from connectors.catalog import Provider
from connectors.errors import (
    AuthorizationExpired,
    DocumentNotFound,
    NotConnected,
    ProviderError,
    UnsupportedInput,
)
from infra.db import models
from infra.db.stores import AuditLogStore, CredentialStore, DocumentStore

NOW = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


class ExportingConnector:
    def __init__(self, item: ExportedItem | None = None, error: Exception | None = None) -> None:
        self.item = item or ExportedItem(id="id:9", name="MSA.docx", path="/Exports/MSA.docx", size=2048)
        self.error = error
        self.calls: list[dict] = []

    async def export_document(self, *, access_token, title, html, folder=None, database_id=None):
        self.calls.append(
            {"token": access_token, "title": title, "html": html, "folder": folder, "database_id": database_id}
        )
        if self.error:
            raise self.error
        return self.item

    async def refresh_tokens_async(self, *, client_id, client_secret, refresh_token):
        raise AssertionError("refresh not expected")


def _exporter(db, connector) -> IntegrationExporter:
    return IntegrationExporter(
        CredentialStore(db),
        DocumentStore(db),
        AuditLogStore(db),
        connector_factory=lambda p: connector,
        clock=lambda: NOW,
    )


@pytest.fixture
def document(db):
    def _document(*, organization_id: str = "org_1", user_id: str = "user_1", title: str = "MSA") -> str:
        doc = models.Document(
            id=str(uuid.uuid4()),
            title=title,
            content="<h1>Master Services Agreement</h1><p>Terms</p>",
            document_type="CONTRACT",
            status="DRAFT",
            user_id=user_id,
            organization_id=organization_id,
        )
        db.add(doc)
        db.commit()
        return doc.id

    return _document


def test_export_document(db, connect, document, integration_row):
    integration_id = connect(Provider.DROPBOX, access_token="tok", expires_at=NOW + timedelta(hours=1))
    doc_id = document()
    connector = ExportingConnector()

    item = anyio.run(
        lambda: _exporter(db, connector).export_document(
            "org_1", "DROPBOX", doc_id, user_id="user_1", folder="/Clients/Acme"
        )
    )
    db.commit()

    assert item.id == "id:9"
    assert connector.calls == [
        {
            "token": "tok",
            "title": "MSA",
            "html": "<h1>Master Services Agreement</h1><p>Terms</p>",
            "folder": "/Clients/Acme",
            "database_id": None,
        }
    ]

    row = integration_row(integration_id)
    assert row.synced_items_count == 1
    assert row.last_sync_status == "success"
    assert row.last_sync_at.replace(tzinfo=timezone.utc) == NOW

    audits = db.execute(select(models.AuditLog)).scalars().all()
    assert [(a.action, a.action_label, a.entity_id) for a in audits] == [
        ("DOCUMENT_EXPORTED", "Exported document to Dropbox", doc_id)
    ]
    assert audits[0].event_metadata == {
        "destination": "DROPBOX",
        "externalId": "id:9",
        "fileName": "MSA.docx",
        "path": "/Exports/MSA.docx",
    }


def test_notion_export_passes_database(db, connect, document):
    connect(Provider.NOTION, expires_at=None)
    doc_id = document()
    connector = ExportingConnector(ExportedItem(id="page-1", name="MSA", url="https://notion.so/page-1"))
    anyio.run(
        lambda: _exporter(db, connector).export_document("org_1", Provider.NOTION, doc_id, database_id="db-7")
    )
    assert connector.calls[0]["database_id"] == "db-7"
    audit = db.execute(select(models.AuditLog)).scalar_one()
    assert audit.action_label == "Exported document to Notion"
    assert audit.event_metadata["url"] == "https://notion.so/page-1"


def test_owner_can_export_document_from_another_organization(db, connect, document):
    connect(Provider.DROPBOX, expires_at=NOW + timedelta(hours=1))
    doc_id = document(organization_id="org_2", user_id="user_1")
    connector = ExportingConnector()
    anyio.run(lambda: _exporter(db, connector).export_document("org_1", "DROPBOX", doc_id, user_id="user_1"))
    assert len(connector.calls) == 1


@pytest.mark.parametrize("user_id", [None, "user_3"])
def test_document_outside_organization_is_not_found(db, connect, document, user_id):
    connect(Provider.DROPBOX, expires_at=NOW + timedelta(hours=1))
    doc_id = document(organization_id="org_2", user_id="user_2")
    connector = ExportingConnector()
    with pytest.raises(DocumentNotFound) as exc:
        anyio.run(lambda: _exporter(db, connector).export_document("org_1", "DROPBOX", doc_id, user_id=user_id))
    assert exc.value.message == "Document not found"
    assert exc.value.status_code == 404
    assert connector.calls == []


def test_missing_document_is_not_found(db, connect):
    connect(Provider.DROPBOX, expires_at=NOW + timedelta(hours=1))
    with pytest.raises(DocumentNotFound):
        anyio.run(lambda: _exporter(db, ExportingConnector()).export_document("org_1", "DROPBOX", "nope"))


def test_not_connected(db, document):
    doc_id = document()
    with pytest.raises(NotConnected) as exc:
        anyio.run(lambda: _exporter(db, ExportingConnector()).export_document("org_1", "NOTION", doc_id))
    assert exc.value.message == "NOTION not connected"


def test_unsupported_destination(db, document):
    doc_id = document()
    with pytest.raises(UnsupportedInput):
        anyio.run(lambda: _exporter(db, ExportingConnector()).export_document("org_1", "DOCUSIGN", doc_id))


def test_expired_authorization_flags_connection(db, connect, document, integration_row, monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", None)
    integration_id = connect(Provider.GOOGLE_DRIVE, expires_at=NOW - timedelta(minutes=5))
    doc_id = document()
    connector = ExportingConnector()

    with pytest.raises(AuthorizationExpired) as exc:
        anyio.run(lambda: _exporter(db, connector).export_document("org_1", "GOOGLE_DRIVE", doc_id))
    # the request's own transaction is thrown away; the flag must survive it
    db.rollback()

    assert exc.value.message == "Google Drive authorization expired"
    row = integration_row(integration_id)
    assert row.status == "ERROR"
    assert row.last_sync_status == "error"
    assert row.synced_items_count == 0
    assert connector.calls == []
    assert CredentialStore(db).get("org_1", Provider.GOOGLE_DRIVE).is_connected is False


def test_import_does_not_flag_expired_connection(db, connect, integration_row, monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", None)
    integration_id = connect(Provider.GOOGLE_DRIVE, expires_at=NOW - timedelta(minutes=5))
    importer = IntegrationImporter(CredentialStore(db), DocumentStore(db), AuditLogStore(db), clock=lambda: NOW)
    with pytest.raises(AuthorizationExpired):
        anyio.run(importer.list_remote_entries, "org_1", "GOOGLE_DRIVE", "")
    assert integration_row(integration_id).status == "CONNECTED"


def test_unexpected_connector_error_becomes_provider_error(db, connect, document, integration_row):
    integration_id = connect(Provider.DROPBOX, expires_at=NOW + timedelta(hours=1))
    doc_id = document()
    connector = ExportingConnector(error=KeyError("path_display"))
    with pytest.raises(ProviderError) as exc:
        anyio.run(lambda: _exporter(db, connector).export_document("org_1", "DROPBOX", doc_id))
    assert exc.value.message == "Failed to export document"
    assert integration_row(integration_id).synced_items_count == 0
    assert db.execute(select(models.AuditLog)).first() is None


def test_provider_errors_pass_through(db, connect, document):
    connect(Provider.DROPBOX, expires_at=NOW + timedelta(hours=1))
    doc_id = document()
    connector = ExportingConnector(error=ProviderError("Failed to upload to Dropbox"))
    with pytest.raises(ProviderError) as exc:
        anyio.run(lambda: _exporter(db, connector).export_document("org_1", "DROPBOX", doc_id))
    assert exc.value.message == "Failed to upload to Dropbox"
