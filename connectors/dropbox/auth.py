from __future__ import annotations
from typing import Dict
from urllib.parse import urlencode

from connectors.http_client import build_client

AUTHORIZE_URL = "https://www.dropbox.com/oauth2/authorize"
TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
SCOPES = "files.content.read files.metadata.read"


def build_authorize_url(*, client_id: str, redirect_uri: str, state: str) -> str:
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        # offline access is what makes Dropbox issue a refresh token
        "token_access_type": "offline",
        "state": state,
        "scope": SCOPES,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code_for_tokens_async(
    *, client_id: str, client_secret: str, code: str, redirect_uri: str
) -> Dict:
    async with build_client() as client:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
            "redirect_uri": redirect_uri,
        }
        resp = await client.post(TOKEN_URL, data=data)
        resp.raise_for_status()
        payload = resp.json()
        return {
            "access_token": payload.get("access_token"),
            "refresh_token": payload.get("refresh_token"),
            "expires_in": payload.get("expires_in"),
            "scope": payload.get("scope"),
            "account_id": payload.get("account_id"),
        }


async def refresh_tokens_async(*, client_id: str, client_secret: str, refresh_token: str) -> Dict:
    async with build_client() as client:
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
            "client_secret": client_secret,
        }
        resp = await client.post(TOKEN_URL, data=data)
        resp.raise_for_status()
        payload = resp.json()
        return {
            "access_token": payload.get("access_token"),
            # Dropbox does not rotate refresh tokens, but honour one if sent
            "refresh_token": payload.get("refresh_token"),
            "expires_in": payload.get("expires_in"),
        }
