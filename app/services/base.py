from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from connectors.base import Connector, IntegrationCredential
from connectors.catalog import Provider, display_name
from connectors.errors import AuthorizationExpired, NotConnected
from connectors.registry import get_connector
from connectors.token_store import TokenStore
from core.concurrency import run_blocking
from infra.db.models import utcnow
from infra.db.stores import AuditLogStore, CredentialStore, DocumentStore


class IntegrationService:
    """Shared wiring for services acting on an organization's connected providers.

    Store calls are blocking SQLAlchemy work and always go through
    ``run_blocking``; only provider HTTP calls run on the event loop.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        documents: DocumentStore,
        audit: AuditLogStore,
        *,
        token_store: Optional[TokenStore] = None,
        connector_factory: Callable[[Provider], Connector] = get_connector,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.credentials = credentials
        self.documents = documents
        self.audit = audit
        self.connector_factory = connector_factory
        self.clock = clock
        self.token_store = token_store or TokenStore(
            credentials, clock=clock, connector_factory=connector_factory
        )

    async def _authorize(
        self, organization_id: str, provider: Provider, *, flag_expired: bool = False
    ) -> tuple[IntegrationCredential, str]:
        credential = await run_blocking(self.credentials.get, organization_id, provider)
        if credential is None or not credential.is_connected:
            raise NotConnected(f"{provider.value} not connected")
        token = await self.token_store.get_valid_access_token(credential)
        if not token:
            if flag_expired:
                await run_blocking(self.credentials.mark_error, credential.id)
            raise AuthorizationExpired(f"{display_name(provider)} authorization expired")
        return credential, token
