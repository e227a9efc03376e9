from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from config.settings import settings
from connectors.base import BrowseEntry, ExportedItem, FetchedContent, parse_timestamp
from connectors.catalog import Provider
from connectors.http_client import bearer, build_client, check_response
from connectors.notion import auth
from infra.file_processing.normalize import blocks_to_html
from infra.file_processing.render import RICH_TEXT_MAX_CHARS, render_notion_blocks

logger = logging.getLogger(__name__)

API_BASE = "https://api.notion.com/v1"
SEARCH_PAGE_SIZE = 50
BLOCK_PAGE_SIZE = 100
# Notion accepts at most this many children per create or append call
CHILDREN_PER_REQUEST = 100
UNTITLED = "Untitled"


def page_title(page: dict[str, Any]) -> str:
    """Title of a page object; pages without a readable title are "Untitled"."""
    props = page.get("properties") or {}
    title_prop = props.get("title") or props.get("Name")
    if not isinstance(title_prop, dict) or "title" not in title_prop:
        # database rows may name their title property anything
        title_prop = next(
            (p for p in props.values() if isinstance(p, dict) and p.get("type") == "title"),
            None,
        )
    parts = (title_prop or {}).get("title") or []
    if parts and parts[0].get("plain_text"):
        return parts[0]["plain_text"]
    return UNTITLED


class NotionConnector:
    provider = Provider.NOTION
    display_name = "Notion"

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

    def _headers(self, access_token: str) -> dict[str, str]:
        return {**bearer(access_token), "Notion-Version": settings.NOTION_VERSION}

    async def list_entries(self, *, access_token: str, path: str = "") -> list[BrowseEntry]:
        """Search shared pages. Notion has no folder hierarchy here, so ``path`` is ignored."""
        body = {"filter": {"property": "object", "value": "page"}, "page_size": SEARCH_PAGE_SIZE}
        async with build_client() as client:
            resp = await client.post(f"{API_BASE}/search", headers=self._headers(access_token), json=body)
        check_response(resp, provider_name=self.display_name, failure="Failed to search Notion pages")

        return [
            BrowseEntry(
                type="file",
                id=page.get("id"),
                name=page_title(page),
                modified_at=parse_timestamp(page.get("last_edited_time")),
                url=page.get("url"),
            )
            for page in resp.json().get("results", [])
        ]

    async def fetch_content(self, *, access_token: str, identifier: str) -> FetchedContent:
        headers = self._headers(access_token)
        async with build_client() as client:
            page_resp = await client.get(f"{API_BASE}/pages/{identifier}", headers=headers)
            check_response(page_resp, provider_name=self.display_name, failure="Failed to get Notion page")
            name = page_title(page_resp.json())
            blocks = await self._child_blocks(client, headers, identifier)
        return FetchedContent(name=name, html=blocks_to_html(blocks))

    async def _child_blocks(self, client: httpx.AsyncClient, headers: dict, block_id: str) -> list[dict]:
        # Top-level children only; nested children (toggles, sub-lists) are not expanded.
        blocks: list[dict] = []
        cursor = None
        for _ in range(max(settings.NOTION_MAX_BLOCK_PAGES, 1)):
            params: dict[str, Any] = {"page_size": BLOCK_PAGE_SIZE}
            if cursor:
                params["start_cursor"] = cursor
            resp = await client.get(f"{API_BASE}/blocks/{block_id}/children", headers=headers, params=params)
            check_response(resp, provider_name=self.display_name, failure="Failed to get Notion page content")
            data = resp.json()
            blocks.extend(data.get("results", []))
            cursor = data.get("next_cursor")
            if not data.get("has_more") or not cursor:
                break
        else:
            logger.warning(
                f"Notion page {block_id} has more than {len(blocks)} blocks; content truncated"
            )
        return blocks

    async def create_page(
        self,
        *,
        access_token: str,
        title: str,
        blocks: list[dict[str, Any]],
        parent_page_id: Optional[str] = None,
        database_id: Optional[str] = None,
    ) -> ExportedItem:
        """Create a page under a database, a parent page or the workspace, in that order of preference."""
        title_text = [{"text": {"content": title[:RICH_TEXT_MAX_CHARS]}}]
        if database_id:
            parent: dict[str, Any] = {"database_id": database_id}
            properties: dict[str, Any] = {"Name": {"title": title_text}}
        else:
            parent = {"page_id": parent_page_id} if parent_page_id else {"workspace": True}
            properties = {"title": title_text}

        headers = self._headers(access_token)
        first, rest = blocks[:CHILDREN_PER_REQUEST], blocks[CHILDREN_PER_REQUEST:]
        async with build_client() as client:
            resp = await client.post(
                f"{API_BASE}/pages",
                headers=headers,
                json={"parent": parent, "properties": properties, "children": first},
            )
            check_response(resp, provider_name=self.display_name, failure="Failed to create page in Notion")
            page = resp.json()
            for start in range(0, len(rest), CHILDREN_PER_REQUEST):
                append = await client.patch(
                    f"{API_BASE}/blocks/{page['id']}/children",
                    headers=headers,
                    json={"children": rest[start:start + CHILDREN_PER_REQUEST]},
                )
                check_response(append, provider_name=self.display_name, failure="Failed to add Notion page content")
        return ExportedItem(id=page.get("id"), name=title, url=page.get("url"))

    async def export_document(
        self,
        *,
        access_token: str,
        title: str,
        html: str,
        folder: Optional[str] = None,
        database_id: Optional[str] = None,
    ) -> ExportedItem:
        """Create a Notion page from the document. ``folder`` is the parent page id."""
        return await self.create_page(
            access_token=access_token,
            title=title,
            blocks=render_notion_blocks(html),
            parent_page_id=folder,
            database_id=database_id,
        )
