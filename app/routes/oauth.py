from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.deps import Identity, get_identity
from config.settings import settings
from connectors.base import expires_at_from
from connectors.catalog import PROVIDER_CATALOG, Provider
from connectors.registry import get_connector
from core.concurrency import run_blocking
from core.redis import pop_oauth_state, save_oauth_state
from infra.db.engine import get_session
from infra.db.models import utcnow
from infra.db.stores import AuditLogStore, CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _oauth_provider(value: str) -> Provider:
    provider = Provider.parse(value)
    if not PROVIDER_CATALOG[provider].supports_oauth:
        raise HTTPException(status_code=400, detail=f"{PROVIDER_CATALOG[provider].name} does not support OAuth")
    return provider


def _client_credentials(provider: Provider) -> tuple[str, str]:
    prefix = PROVIDER_CATALOG[provider].env_prefix
    client_id, client_secret = settings.client_credentials(prefix)
    if not client_id or not client_secret:
        raise HTTPException(status_code=500, detail=f"{prefix} client credentials not configured")
    return client_id, client_secret


class AuthorizeResponse(BaseModel):
    redirect_url: str


@router.get("/{provider}/start", response_model=AuthorizeResponse)
def oauth_start(
    provider: str,
    desired_return_url: Optional[str] = Query(default=None),
    identity: Identity = Depends(get_identity),
) -> AuthorizeResponse:
    """Initiate the OAuth flow and return the provider authorization URL."""
    p = _oauth_provider(provider)
    client_id, _ = _client_credentials(p)
    state = str(uuid.uuid4())

    # The callback arrives without identity headers, so the caller rides along in the state
    save_oauth_state(
        state,
        {
            "provider": p.value,
            "organization_id": identity.organization_id,
            "user_id": identity.user_id,
            "desired_return_url": desired_return_url or "",
        },
    )

    url = get_connector(p).build_authorize_url(
        client_id=client_id,
        redirect_uri=settings.redirect_uri(p.slug),
        state=state,
    )
    return AuthorizeResponse(redirect_url=url)


class CallbackResponse(BaseModel):
    integration_id: str
    redirect_url: Optional[str] = None


@router.get("/{provider}/callback", response_model=CallbackResponse)
async def oauth_callback(
    provider: str,
    code: str,
    state: str,
    db: Session = Depends(get_session),
) -> CallbackResponse:
    p = _oauth_provider(provider)

    state_obj = await run_blocking(pop_oauth_state, state)
    if not state_obj or state_obj.get("provider") != p.value:
        raise HTTPException(status_code=400, detail="Invalid OAuth state")

    client_id, client_secret = _client_credentials(p)
    try:
        token_info = await get_connector(p).exchange_code_for_tokens_async(
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            redirect_uri=settings.redirect_uri(p.slug),
        )
    except httpx.HTTPStatusError as e:
        logger.error(f"{p.value} token exchange failed {e.response.status_code}: {e.response.text}")
        raise HTTPException(status_code=400, detail=f"Failed to connect {PROVIDER_CATALOG[p].name}")
    except httpx.HTTPError as e:
        logger.error(f"{p.value} token exchange transport error: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to connect {PROVIDER_CATALOG[p].name}")

    if not token_info.get("access_token"):
        raise HTTPException(status_code=400, detail=f"Failed to connect {PROVIDER_CATALOG[p].name}")

    try:
        expires_at = expires_at_from(token_info.get("expires_in"), utcnow())
    except ValueError as e:
        logger.error(f"{p.value} token exchange returned {e}")
        raise HTTPException(status_code=400, detail=f"Failed to connect {PROVIDER_CATALOG[p].name}")

    organization_id = state_obj["organization_id"]
    integration_id = await run_blocking(
        _store_connection, db, p, token_info, expires_at, organization_id, state_obj["user_id"]
    )
    logger.info(f"Connected {p.value} for org {organization_id}")

    return CallbackResponse(
        integration_id=integration_id,
        redirect_url=state_obj.get("desired_return_url") or None,
    )


def _store_connection(
    db: Session,
    p: Provider,
    token_info: dict[str, Any],
    expires_at: Optional[datetime],
    organization_id: str,
    user_id: str,
) -> str:
    workspace_name = token_info.get("workspace_name")
    extra = {k: token_info[k] for k in ("workspace_name", "workspace_icon") if token_info.get(k)}
    integration_id = CredentialStore(db).upsert_connected(
        organization_id=organization_id,
        user_id=user_id,
        provider=p,
        name=workspace_name or PROVIDER_CATALOG[p].name,
        access_token=token_info["access_token"],
        refresh_token=token_info.get("refresh_token"),
        token_expires_at=expires_at,
        scope=token_info.get("scope"),
        external_account_id=token_info.get("account_id") or token_info.get("workspace_id"),
        external_email=token_info.get("owner_email"),
        settings=extra or None,
    )
    AuditLogStore(db).append(
        action="INTEGRATION_CONNECTED",
        action_label=f"Connected {PROVIDER_CATALOG[p].name}",
        entity_type="Integration",
        entity_id=integration_id,
        entity_name=PROVIDER_CATALOG[p].name,
        organization_id=organization_id,
        user_id=user_id,
        metadata={"provider": p.value},
    )
    return integration_id
