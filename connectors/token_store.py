from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Protocol

import httpx

from config.settings import settings
from connectors.base import Connector, IntegrationCredential, expires_at_from
from connectors.catalog import PROVIDER_CATALOG, Provider
from connectors.registry import get_connector
from core.concurrency import run_blocking
from infra.db.models import utcnow

logger = logging.getLogger(__name__)


class TokenWriter(Protocol):
    def update_tokens(
        self,
        credential_id: str,
        *,
        access_token: str,
        token_expires_at: Optional[datetime],
        refresh_token: Optional[str] = None,
    ) -> None: ...


class TokenStore:
    """Hands out usable access tokens, refreshing ones that are about to expire.

    Two requests refreshing the same credential at once both hit the provider
    and the last write wins; providers that rotate refresh tokens may then
    reject the loser's next refresh.
    """

    def __init__(
        self,
        credentials: TokenWriter,
        *,
        clock: Callable[[], datetime] = utcnow,
        connector_factory: Callable[[Provider], Connector] = get_connector,
    ) -> None:
        self.credentials = credentials
        self.clock = clock
        self.connector_factory = connector_factory

    def is_expired(self, credential: IntegrationCredential) -> bool:
        if credential.token_expires_at is None:
            return False
        margin = timedelta(minutes=settings.TOKEN_REFRESH_MARGIN_MINUTES)
        return credential.token_expires_at < self.clock() + margin

    async def get_valid_access_token(self, credential: IntegrationCredential) -> Optional[str]:
        """Return an access token for ``credential``, or None when a refresh was needed and failed."""
        if not self.is_expired(credential):
            return credential.access_token
        if not credential.refresh_token:
            # nothing to refresh with; let the provider decide
            return credential.access_token

        provider = credential.provider
        client_id, client_secret = settings.client_credentials(PROVIDER_CATALOG[provider].env_prefix)
        if not client_id or not client_secret:
            logger.error(f"Cannot refresh {provider.value} token: client credentials not configured")
            return None

        connector = self.connector_factory(provider)
        try:
            toks = await connector.refresh_tokens_async(
                client_id=client_id,
                client_secret=client_secret,
                refresh_token=credential.refresh_token,
            )
        except (httpx.HTTPError, ValueError) as e:
            # ValueError: token endpoint answered with a non-JSON body
            logger.error(f"Failed to refresh {provider.value} token for integration {credential.id}: {e}")
            return None

        access_token = toks.get("access_token")
        if not access_token:
            logger.error(f"{provider.value} refresh response had no access_token (integration {credential.id})")
            return None

        try:
            new_exp = expires_at_from(toks.get("expires_in"), self.clock())
        except ValueError as e:
            logger.error(f"{provider.value} refresh response unusable (integration {credential.id}): {e}")
            return None

        await run_blocking(
            self.credentials.update_tokens,
            credential.id,
            access_token=access_token,
            token_expires_at=new_exp,
            refresh_token=toks.get("refresh_token"),
        )
        logger.info(f"Refreshed {provider.value} token for integration {credential.id}")
        return access_token
