from __future__ import annotations

import logging

import httpx

from config.settings import settings
from connectors.errors import AuthorizationExpired, ProviderError

logger = logging.getLogger(__name__)


def build_client() -> httpx.AsyncClient:
    """Client for one request's worth of provider calls, with an explicit timeout."""
    return httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True)


def bearer(access_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {access_token}"}


def check_response(resp: httpx.Response, *, provider_name: str, failure: str) -> None:
    """Raise the taxonomy error for a non-success provider response.

    401 means the token was revoked or expired upstream; everything else is a
    generic provider failure whose body is only logged.
    """
    if resp.is_success:
        return
    body = resp.text
    if resp.status_code == 401:
        logger.warning(f"{provider_name} rejected access token: {body}")
        raise AuthorizationExpired(f"{provider_name} authorization expired", detail=body)
    logger.error(f"{provider_name} API error {resp.status_code}: {body}")
    raise ProviderError(failure, detail=body)
