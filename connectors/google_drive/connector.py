from __future__ import annotations

import html
import json
import logging
import uuid
from typing import Any, Optional

from connectors.base import BrowseEntry, ExportedItem, FetchedContent, parse_timestamp
from connectors.catalog import Provider
from connectors.errors import UnsupportedInput
from connectors.google_drive import auth
from connectors.http_client import bearer, build_client, check_response
from infra.file_processing.render import render_export_file

logger = logging.getLogger(__name__)

API_BASE = "https://www.googleapis.com/drive/v3"
UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"

FOLDER_MIME = "application/vnd.google-apps.folder"
GOOGLE_DOC_MIME = "application/vnd.google-apps.document"
DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"
WORD_MIMES = frozenset({DOCX_MIME, DOC_MIME})

SUPPORTED_MIME_TYPES = frozenset(
    {
        FOLDER_MIME,
        GOOGLE_DOC_MIME,
        "text/plain",
        "text/markdown",
        "text/html",
        DOCX_MIME,
        DOC_MIME,
    }
)


def word_placeholder(name: str) -> str:
    safe = html.escape(name, quote=False)
    return (
        f"<p>Imported Word document: {safe}</p>"
        "<p>This document requires processing. Please paste the content manually.</p>"
    )


class GoogleDriveConnector:
    provider = Provider.GOOGLE_DRIVE
    display_name = "Google Drive"

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
        """List the children of folder ``path`` (a Drive folder id; empty means My Drive root)."""
        parent = (path or "root").replace("\\", "\\\\").replace("'", "\\'")
        params = {
            "q": f"trashed=false and '{parent}' in parents",
            "fields": "files(id,name,mimeType,size,modifiedTime)",
            "orderBy": "folder,name",
        }
        async with build_client() as client:
            resp = await client.get(f"{API_BASE}/files", headers=bearer(access_token), params=params)
        check_response(resp, provider_name=self.display_name, failure="Failed to list files from Google Drive")

        entries: list[BrowseEntry] = []
        for f in resp.json().get("files", []):
            mime = f.get("mimeType")
            if mime not in SUPPORTED_MIME_TYPES:
                continue
            size = f.get("size")
            entries.append(
                BrowseEntry(
                    type="folder" if mime == FOLDER_MIME else "file",
                    id=f.get("id"),
                    name=f.get("name") or "",
                    size=int(size) if size is not None else None,
                    modified_at=parse_timestamp(f.get("modifiedTime")),
                    mime_type=mime,
                )
            )
        return entries

    async def fetch_content(self, *, access_token: str, identifier: str) -> FetchedContent:
        headers = bearer(access_token)
        async with build_client() as client:
            meta_resp = await client.get(
                f"{API_BASE}/files/{identifier}", headers=headers, params={"fields": "name,mimeType"}
            )
            check_response(
                meta_resp, provider_name=self.display_name, failure="Failed to get file metadata from Google Drive"
            )
            metadata = meta_resp.json()
            name = metadata.get("name") or "Untitled"
            mime = metadata.get("mimeType") or ""

            if mime == GOOGLE_DOC_MIME:
                export = await client.get(
                    f"{API_BASE}/files/{identifier}/export", headers=headers, params={"mimeType": "text/html"}
                )
                check_response(export, provider_name=self.display_name, failure="Failed to export Google Doc")
                return FetchedContent(name=name, html=export.text, mime_type=mime)

            if mime.startswith("text/"):
                download = await client.get(
                    f"{API_BASE}/files/{identifier}", headers=headers, params={"alt": "media"}
                )
                check_response(
                    download, provider_name=self.display_name, failure="Failed to download file from Google Drive"
                )
                return FetchedContent(name=name, data=download.content, mime_type=mime)

            if mime in WORD_MIMES:
                export = await client.get(
                    f"{API_BASE}/files/{identifier}/export", headers=headers, params={"mimeType": "text/html"}
                )
                if export.is_success:
                    return FetchedContent(name=name, html=export.text, mime_type=mime)
                logger.info(f"Google Drive could not export Word file {identifier} ({export.status_code}), using placeholder")
                return FetchedContent(name=name, html=word_placeholder(name), mime_type=mime)

        raise UnsupportedInput(f"Unsupported file type: {mime}")

    async def upload_file(
        self,
        *,
        access_token: str,
        name: str,
        data: bytes,
        mime_type: str,
        folder_id: Optional[str] = None,
    ) -> ExportedItem:
        """Multipart upload of one file into ``folder_id`` (My Drive root when None)."""
        metadata: dict[str, Any] = {"name": name, "mimeType": mime_type}
        if folder_id:
            metadata["parents"] = [folder_id]
        boundary = f"docimport-{uuid.uuid4().hex}"
        headers = {**bearer(access_token), "Content-Type": f"multipart/related; boundary={boundary}"}
        params = {"uploadType": "multipart", "fields": "id,name,webViewLink,size"}
        async with build_client() as client:
            resp = await client.post(
                f"{UPLOAD_BASE}/files",
                headers=headers,
                params=params,
                content=multipart_related(boundary, metadata, data, mime_type),
            )
        check_response(resp, provider_name=self.display_name, failure="Failed to upload to Google Drive")
        result = resp.json()
        size = result.get("size")
        return ExportedItem(
            id=result.get("id"),
            name=result.get("name") or name,
            url=result.get("webViewLink"),
            size=int(size) if size is not None else None,
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
        """Render the document as DOCX and upload it into Drive folder ``folder``."""
        export = render_export_file(title, html)
        return await self.upload_file(
            access_token=access_token,
            name=export.name,
            data=export.data,
            mime_type=export.mime_type,
            folder_id=folder,
        )


def multipart_related(boundary: str, metadata: dict[str, Any], data: bytes, mime_type: str) -> bytes:
    """Body for Drive's ``uploadType=multipart``: JSON metadata part, then the media part."""
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type}\r\n\r\n"
    )
    return head.encode("utf-8") + data + f"\r\n--{boundary}--\r\n".encode("utf-8")
