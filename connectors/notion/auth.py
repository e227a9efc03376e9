from __future__ import annotations
from typing import Dict
from urllib.parse import urlencode

from connectors.http_client import build_client

AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"
TOKEN_URL = "https://api.notion.com/v1/oauth/token"


def build_authorize_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "owner": "user",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def _token_request(client_id: str, client_secret: str, body: dict) -> dict:
    # Notion authenticates the client with HTTP Basic instead of form fields
    async with build_client() as client:
        resp = await client.post(TOKEN_URL, json=body, auth=(client_id, client_secret))
        resp.raise_for_status()
        return resp.json()


async def exchange_code_for_tokens_async(
    *, client_id: str, client_secret: str, code: str, redirect_uri: str
) -> Dict:
    payload = await _token_request(
        client_id,
        client_secret,
        {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
    )
    owner_user = (payload.get("owner") or {}).get("user") or {}
    owner_email = (owner_user.get("person") or {}).get("email")
    return {
        "access_token": payload.get("access_token"),
        # Notion workspace tokens are long-lived; these are usually absent
        "refresh_token": payload.get("refresh_token"),
        "expires_in": payload.get("expires_in"),
        "workspace_id": payload.get("workspace_id"),
        "workspace_name": payload.get("workspace_name"),
        "workspace_icon": payload.get("workspace_icon"),
        "owner_email": owner_email,
    }


async def refresh_tokens_async(*, client_id: str, client_secret: str, refresh_token: str) -> Dict:
    payload = await _token_request(
        client_id,
        client_secret,
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
    )
    return {
        "access_token": payload.get("access_token"),
        "refresh_token": payload.get("refresh_token"),
        "expires_in": payload.get("expires_in"),
    }
