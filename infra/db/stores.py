from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from connectors.base import IntegrationCredential
from connectors.catalog import Provider
from infra.db import models

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # Treat timezone-naive as UTC (SQLite drops tzinfo)
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_credential(row: models.Integration) -> IntegrationCredential:
    return IntegrationCredential(
        id=row.id,
        organization_id=row.organization_id,
        provider=Provider(row.provider),
        status=row.status,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        token_expires_at=_aware(row.token_expires_at),
        last_sync_at=_aware(row.last_sync_at),
        last_sync_status=row.last_sync_status,
        synced_items_count=row.synced_items_count or 0,
    )


class CredentialStore:
    """Integration rows keyed by (organization_id, provider).

    Every write is a targeted UPDATE of the columns it owns, never a full-row
    overwrite, so token refreshes and sync-stat bumps do not clobber each other.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, organization_id: str, provider: Provider) -> Optional[IntegrationCredential]:
        row = self._row(organization_id, provider)
        return to_credential(row) if row is not None else None

    def _row(self, organization_id: str, provider: Provider) -> Optional[models.Integration]:
        stmt = select(models.Integration).where(
            models.Integration.organization_id == organization_id,
            models.Integration.provider == provider.value,
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_organization(self, organization_id: str) -> list[models.Integration]:
        stmt = select(models.Integration).where(models.Integration.organization_id == organization_id)
        return list(self.db.execute(stmt).scalars())

    def update_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        token_expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Persist a refreshed token and commit immediately.

        The refresh is committed on its own so a later failure in the same
        request does not throw away a token the provider has already issued.
        The refresh token is only written when the provider rotated it.
        """
        values: dict = {
            "access_token": access_token,
            "token_expires_at": token_expires_at,
            "updated_at": models.utcnow(),
        }
        if refresh_token:
            values["refresh_token"] = refresh_token
        self.db.execute(
            update(models.Integration).where(models.Integration.id == credential_id).values(**values)
        )
        self.db.commit()

    def mark_error(self, credential_id: str) -> None:
        """Flag a connection whose authorization can no longer be renewed; commits immediately.

        The caller's request fails right after this, so the flag is committed
        before that failure rolls the request back.
        """
        self.db.execute(
            update(models.Integration)
            .where(models.Integration.id == credential_id)
            .values(status="ERROR", last_sync_status="error", updated_at=models.utcnow())
        )
        self.db.commit()
        logger.warning(f"Integration {credential_id} marked ERROR; reconnect required")

    def record_sync(self, credential_id: str, *, at: datetime) -> None:
        self.db.execute(
            update(models.Integration)
            .where(models.Integration.id == credential_id)
            .values(
                synced_items_count=models.Integration.synced_items_count + 1,
                last_sync_at=at,
                last_sync_status="success",
                updated_at=models.utcnow(),
            )
        )

    def upsert_connected(
        self,
        *,
        organization_id: str,
        user_id: str,
        provider: Provider,
        name: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
        scope: Optional[str] = None,
        external_account_id: Optional[str] = None,
        external_email: Optional[str] = None,
        settings: Optional[dict] = None,
    ) -> str:
        """Create or reconnect the (organization, provider) row; returns its id."""
        now = models.utcnow()
        values = {
            "user_id": user_id,
            "name": name,
            "status": "CONNECTED",
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expires_at": token_expires_at,
            "scope": scope,
            "external_account_id": external_account_id,
            "external_email": external_email,
            "settings": settings,
            "connected_at": now,
            "updated_at": now,
        }
        row = self._row(organization_id, provider)
        if row is None:
            row = models.Integration(
                id=str(uuid.uuid4()),
                organization_id=organization_id,
                provider=provider.value,
                synced_items_count=0,
                **values,
            )
            self.db.add(row)
            self.db.flush()
            return row.id
        self.db.execute(update(models.Integration).where(models.Integration.id == row.id).values(**values))
        return row.id

    def disconnect(self, organization_id: str, provider: Provider) -> Optional[str]:
        """Mark the row DISCONNECTED and drop its tokens; returns the row id, or None if absent."""
        row = self._row(organization_id, provider)
        if row is None:
            return None
        self.db.execute(
            update(models.Integration)
            .where(models.Integration.id == row.id)
            .values(
                status="DISCONNECTED",
                access_token=None,
                refresh_token=None,
                token_expires_at=None,
                updated_at=models.utcnow(),
            )
        )
        return row.id


@dataclass(frozen=True)
class StoredDocument:
    id: str
    title: str
    content: str
    status: str
    document_type: str


class DocumentStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, document_id: str, *, organization_id: str, user_id: Optional[str] = None) -> Optional[StoredDocument]:
        """A document in the organization, or one the user owns; None when neither matches."""
        visible = models.Document.organization_id == organization_id
        if user_id:
            visible = or_(visible, models.Document.user_id == user_id)
        row = self.db.execute(
            select(models.Document).where(models.Document.id == document_id, visible)
        ).scalar_one_or_none()
        if row is None:
            return None
        return StoredDocument(
            id=row.id,
            title=row.title,
            content=row.content or "",
            status=row.status,
            document_type=row.document_type,
        )

    def create(
        self,
        *,
        title: str,
        content: str,
        document_type: str,
        status: str,
        owner_id: str,
        organization_id: str,
    ) -> str:
        doc = models.Document(
            id=str(uuid.uuid4()),
            title=title,
            content=content,
            document_type=document_type,
            status=status,
            visibility="PRIVATE",
            user_id=owner_id,
            organization_id=organization_id,
        )
        self.db.add(doc)
        self.db.flush()
        return doc.id


class AuditLogStore:
    """Append-only audit events, written in the caller's transaction."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def append(
        self,
        *,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        entity_name: str,
        organization_id: str,
        user_id: Optional[str],
        metadata: Optional[dict] = None,
        action_label: Optional[str] = None,
    ) -> None:
        self.db.add(
            models.AuditLog(
                id=str(uuid.uuid4()),
                action=action,
                action_label=action_label,
                entity_type=entity_type,
                entity_id=entity_id,
                entity_name=entity_name,
                organization_id=organization_id,
                user_id=user_id,
                event_metadata=metadata,
            )
        )
        logger.info(f"audit {action} {entity_type}:{entity_id} org={organization_id}")
