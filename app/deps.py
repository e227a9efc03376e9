from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from app.services.exporter import IntegrationExporter
from app.services.importer import IntegrationImporter
from infra.db.engine import get_session
from infra.db.stores import AuditLogStore, CredentialStore, DocumentStore


@dataclass(frozen=True)
class Identity:
    user_id: str
    organization_id: str


def get_identity(
    x_user_id: Optional[str] = Header(default=None),
    x_organization_id: Optional[str] = Header(default=None),
) -> Identity:
    """Caller identity as forwarded by the upstream identity provider."""
    if not x_user_id or not x_organization_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return Identity(user_id=x_user_id, organization_id=x_organization_id)


def get_importer(db: Session = Depends(get_session)) -> IntegrationImporter:
    return IntegrationImporter(CredentialStore(db), DocumentStore(db), AuditLogStore(db))


def get_exporter(db: Session = Depends(get_session)) -> IntegrationExporter:
    return IntegrationExporter(CredentialStore(db), DocumentStore(db), AuditLogStore(db))
