from __future__ import annotations

import json
import logging
from typing import Optional

from config.settings import settings
from connectors.base import BrowseEntry, ExportedItem, FetchedContent, parse_timestamp
from connectors.catalog import Provider
from connectors.dropbox import auth
from connectors.http_client import bearer, build_client, check_response
from infra.file_processing.render import render_export_file

logger = logging.getLogger(__name__)

API_BASE = "https://api.dropboxapi.com/2"
CONTENT_BASE = "https://content.dropboxapi.com/2"

SUPPORTED_EXTENSIONS = frozenset({"md", "txt", "html", "doc", "docx", "rtf"})
DEFAULT_NAME = "Imported Document"


def _extension(name: str) -> str:
    return name.rsplit(".", 1)[-1].lower() if "." in name else ""


class DropboxConnector:
    provider = Provider.DROPBOX
    display_name = "Dropbox"

    def build_authorize_url(self, *, client_id: str, redirect_uri: str, state: str) -> str:
        return auth.build_authorize_url(client_id=client_id, redirect_uri=redirect_uri, state=state)

    async def exchange_code_for_tokens_async(
        self,
        *,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str,
    ) -> dict:
        return await auth.exchange_code_for_tokens_async(
            client_id=client_id,
            client_secret=client_secret,
            code=code,
            redirect_uri=redirect_uri,
        )

    async def refresh_tokens_async(self, *, client_id: str, client_secret: str, refresh_token: str) -> dict:
        return await auth.refresh_tokens_async(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
        )

    async def list_entries(self, *, access_token: str, path: str = "") -> list[BrowseEntry]:
        """List one folder (non-recursive). Empty path is the Dropbox root.

        A "path" tagged error (missing folder) is an empty listing, not a failure.
        """
        body = {"path": path or "", "recursive": False, "include_deleted": False}
        async with build_client() as client:
            resp = await client.post(
                f"{API_BASE}/files/list_folder",
                headers={**bearer(access_token), "Content-Type": "application/json"},
                json=body,
            )
        if not resp.is_success and resp.status_code != 401 and _is_path_error(resp):
            logger.info(f"Dropbox path not found, returning empty listing: {path!r}")
            return []
        check_response(resp, provider_name=self.display_name, failure="Failed to list files")

        entries: list[BrowseEntry] = []
        for e in resp.json().get("entries", []):
            tag = e.get(".tag")
            name = e.get("name") or ""
            if tag == "file":
                if _extension(name) not in SUPPORTED_EXTENSIONS:
                    continue
            elif tag != "folder":
                continue
            entries.append(
                BrowseEntry(
                    type=tag,
                    id=str(e.get("id")),
                    name=name,
                    path=e.get("path_display"),
                    size=e.get("size"),
                    modified_at=parse_timestamp(e.get("client_modified")),
                )
            )
        return entries

    async def fetch_content(self, *, access_token: str, identifier: str) -> FetchedContent:
        """Download a file by path (or ``id:...``); the name comes from the API result header."""
        headers = {**bearer(access_token), "Dropbox-API-Arg": json.dumps({"path": identifier})}
        async with build_client() as client:
            resp = await client.post(f"{CONTENT_BASE}/files/download", headers=headers)
        check_response(resp, provider_name=self.display_name, failure="Failed to download file from Dropbox")
        name = _name_from_api_result(resp.headers.get("dropbox-api-result"))
        return FetchedContent(name=name, data=resp.content, mime_type=resp.headers.get("content-type"))

    async def upload_file(self, *, access_token: str, path: str, data: bytes) -> ExportedItem:
        """Upload ``data`` to ``path``. An existing file there is overwritten."""
        arg = {"path": path, "mode": "overwrite", "autorename": True, "mute": False}
        headers = {
            **bearer(access_token),
            "Content-Type": "application/octet-stream",
            "Dropbox-API-Arg": json.dumps(arg),
        }
        async with build_client() as client:
            resp = await client.post(f"{CONTENT_BASE}/files/upload", headers=headers, content=data)
        check_response(resp, provider_name=self.display_name, failure="Failed to upload to Dropbox")
        result = resp.json()
        return ExportedItem(
            id=str(result.get("id")),
            name=result.get("name") or path.rsplit("/", 1)[-1],
            path=result.get("path_display"),
            size=result.get("size"),
        )

    async def export_document(
        self,
        *,
        access_token: str,
        title: str,
        html: str,
        folder: Optional[str] = None,
        database_id: Optional[str] = None,
    ) -> ExportedItem:
        """Render the document as DOCX and upload it into ``folder`` (a Dropbox path)."""
        export = render_export_file(title, html)
        base = (folder or settings.DROPBOX_EXPORT_FOLDER).rstrip("/")
        return await self.upload_file(access_token=access_token, path=f"{base}/{export.name}", data=export.data)


def _is_path_error(resp) -> bool:
    try:
        payload = resp.json()
    except ValueError:
        return False
    error = payload.get("error") if isinstance(payload, dict) else None
    return isinstance(error, dict) and error.get(".tag") == "path"


def _name_from_api_result(raw: str | None) -> str:
    if not raw:
        return DEFAULT_NAME
    try:
        result = json.loads(raw)
    except ValueError:
        logger.warning("Malformed dropbox-api-result header, using default name")
        return DEFAULT_NAME
    if not isinstance(result, dict):
        return DEFAULT_NAME
    return result.get("name") or DEFAULT_NAME
