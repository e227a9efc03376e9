# Rendering of stored HTML documents into what providers accept on export:
# a .docx file for the storage providers, a block list for Notion.

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from docx import Document as DocxDocument
from docx.shared import Pt

from infra.file_processing.normalize import DOCX_MIME

logger = logging.getLogger(__name__)

RICH_TEXT_MAX_CHARS = 2000
UNTITLED = "Untitled"

UNSAFE_FILE_CHARS = re.compile(r'[/\\?%*:|"<>]')
_WS = re.compile(r"\s+")

SKIP_TAGS = frozenset({"head", "style", "script", "meta", "link", "title"})
CONTAINER_TAGS = frozenset(
    {"html", "body", "div", "section", "article", "main", "aside", "header", "footer", "figure"}
)
BLOCK_TAGS = frozenset(
    {"h1", "h2", "h3", "h4", "h5", "h6", "p", "ul", "ol", "pre", "blockquote", "table", "hr"}
) | CONTAINER_TAGS

INLINE_MARKS = {
    "b": "bold",
    "strong": "bold",
    "i": "italic",
    "em": "italic",
    "u": "underline",
    "s": "strikethrough",
    "del": "strikethrough",
    "strike": "strikethrough",
    "code": "code",
}


@dataclass
class Segment:
    text: str
    marks: frozenset[str] = frozenset()
    href: Optional[str] = None


@dataclass
class Block:
    # heading | paragraph | bulleted | numbered | quote | code | divider | table
    kind: str
    segments: list[Segment] = field(default_factory=list)
    level: int = 0
    text: str = ""
    rows: list[list[str]] = field(default_factory=list)


@dataclass
class ExportFile:
    name: str
    data: bytes
    mime_type: str


def safe_file_name(title: str) -> str:
    cleaned = UNSAFE_FILE_CHARS.sub("-", title or "").strip()
    return cleaned or UNTITLED


# ---------------------------------------------------------------------------
# HTML -> blocks
# ---------------------------------------------------------------------------

def _walk_inline(
    nodes: Iterable[Any], marks: frozenset[str], href: Optional[str], out: list[Segment], *, skip_lists: bool
) -> None:
    for child in nodes:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            text = _WS.sub(" ", str(child))
            if text:
                out.append(Segment(text, marks, href))
            continue
        if not isinstance(child, Tag):
            continue
        name = child.name.lower()
        if name in SKIP_TAGS or (skip_lists and name in ("ul", "ol")):
            continue
        if name == "br":
            out.append(Segment("\n", marks, href))
            continue
        if name in BLOCK_TAGS and out:
            # block content flattened into one run of text keeps its line breaks
            out.append(Segment("\n", marks, href))
        child_marks, child_href = marks, href
        if name in INLINE_MARKS:
            child_marks = marks | {INLINE_MARKS[name]}
        elif name == "a" and child.get("href") and not child["href"].startswith("#"):
            child_href = child["href"]
        _walk_inline(child.children, child_marks, child_href, out, skip_lists=skip_lists)


def inline_segments(nodes: Iterable[Any], *, skip_lists: bool = False) -> list[Segment]:
    """Formatted text runs of ``nodes`` with whitespace collapsed and equal neighbours merged."""
    raw: list[Segment] = []
    _walk_inline(nodes, frozenset(), None, raw, skip_lists=skip_lists)

    merged: list[Segment] = []
    for seg in raw:
        text = seg.text
        if merged and merged[-1].text.endswith((" ", "\n")) and text.startswith(" "):
            text = text[1:]
        if not text:
            continue
        prev = merged[-1] if merged else None
        if prev is not None and prev.marks == seg.marks and prev.href == seg.href:
            prev.text += text
        else:
            merged.append(Segment(text, seg.marks, seg.href))

    while merged and not merged[0].text.strip():
        merged.pop(0)
    while merged and not merged[-1].text.strip():
        merged.pop()
    if merged:
        merged[0].text = merged[0].text.lstrip()
        merged[-1].text = merged[-1].text.rstrip()
    return merged


def _list_blocks(list_tag: Tag, depth: int, blocks: list[Block]) -> None:
    kind = "numbered" if list_tag.name.lower() == "ol" else "bulleted"
    for li in list_tag.find_all("li", recursive=False):
        segments = inline_segments(li.children, skip_lists=True)
        if segments:
            blocks.append(Block(kind, segments, level=depth))
        for nested in li.find_all(["ul", "ol"], recursive=False):
            _list_blocks(nested, depth + 1, blocks)


def _table_block(table: Tag) -> Optional[Block]:
    rows = []
    for tr in table.find_all("tr"):
        cells = [cell.get_text(" ", strip=True) for cell in tr.find_all(["td", "th"], recursive=False)]
        if cells:
            rows.append(cells)
    return Block("table", rows=rows) if rows else None


def _collect(nodes: Iterable[Any], blocks: list[Block]) -> None:
    pending: list[Any] = []

    def flush() -> None:
        segments = inline_segments(pending)
        if segments:
            blocks.append(Block("paragraph", segments))
        pending.clear()

    for child in nodes:
        if isinstance(child, Comment):
            continue
        name = child.name.lower() if isinstance(child, Tag) else None
        if name is None or name not in BLOCK_TAGS:
            if name not in SKIP_TAGS:
                pending.append(child)
            continue
        flush()
        if name in CONTAINER_TAGS:
            _collect(child.children, blocks)
        elif name[0] == "h" and name[1:].isdigit():
            segments = inline_segments(child.children)
            if segments:
                blocks.append(Block("heading", segments, level=int(name[1:])))
        elif name == "p":
            segments = inline_segments(child.children)
            if segments:
                blocks.append(Block("paragraph", segments))
        elif name in ("ul", "ol"):
            _list_blocks(child, 0, blocks)
        elif name == "blockquote":
            segments = inline_segments(child.children)
            if segments:
                blocks.append(Block("quote", segments))
        elif name == "pre":
            text = child.get_text()
            if text.strip():
                blocks.append(Block("code", text=text.strip("\n")))
        elif name == "table":
            table = _table_block(child)
            if table is not None:
                blocks.append(table)
        elif name == "hr":
            blocks.append(Block("divider"))
    flush()


def parse_blocks(html: str) -> list[Block]:
    """Flatten a stored HTML fragment into a list of renderable blocks."""
    soup = BeautifulSoup(html or "", "html.parser")
    blocks: list[Block] = []
    _collect(soup.children, blocks)
    return blocks


def html_to_text(html: str) -> str:
    return BeautifulSoup(html or "", "html.parser").get_text("\n", strip=True)


# ---------------------------------------------------------------------------
# DOCX
# ---------------------------------------------------------------------------

CODE_FONT = "Courier New"


def _add_runs(paragraph, segments: list[Segment]) -> None:
    for seg in segments:
        run = paragraph.add_run(seg.text)
        if "bold" in seg.marks:
            run.bold = True
        if "italic" in seg.marks:
            run.italic = True
        if "underline" in seg.marks:
            run.underline = True
        if "strikethrough" in seg.marks:
            run.font.strike = True
        if "code" in seg.marks:
            run.font.name = CODE_FONT


def _list_style(kind: str, level: int) -> str:
    base = "List Number" if kind == "numbered" else "List Bullet"
    # the default template ships levels 1-3
    return base if level == 0 else f"{base} {min(level + 1, 3)}"


def render_docx(title: str, html: str) -> bytes:
    """Word document with ``title`` as its Title paragraph followed by the rendered body."""
    document = DocxDocument()
    document.core_properties.title = title
    document.add_heading(title or UNTITLED, level=0)

    for block in parse_blocks(html):
        if block.kind == "heading":
            _add_runs(document.add_heading(level=min(block.level, 9)), block.segments)
        elif block.kind in ("bulleted", "numbered"):
            _add_runs(document.add_paragraph(style=_list_style(block.kind, block.level)), block.segments)
        elif block.kind == "quote":
            _add_runs(document.add_paragraph(style="Quote"), block.segments)
        elif block.kind == "code":
            run = document.add_paragraph().add_run(block.text)
            run.font.name = CODE_FONT
            run.font.size = Pt(10)
        elif block.kind == "divider":
            # python-docx has no rule element
            document.add_paragraph()
        elif block.kind == "table":
            width = max(len(row) for row in block.rows)
            table = document.add_table(rows=len(block.rows), cols=width)
            table.style = "Table Grid"
            for r, row in enumerate(block.rows):
                for c, text in enumerate(row):
                    table.cell(r, c).text = text
        else:
            _add_runs(document.add_paragraph(), block.segments)

    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def render_export_file(title: str, html: str) -> ExportFile:
    """The file uploaded to storage providers: DOCX, or plain text when DOCX rendering fails."""
    base = safe_file_name(title)
    try:
        return ExportFile(name=f"{base}.docx", data=render_docx(title, html), mime_type=DOCX_MIME)
    except Exception as exc:
        logger.warning(f"DOCX rendering failed for {title!r}, exporting plain text: {exc!r}")
        return ExportFile(name=f"{base}.txt", data=html_to_text(html).encode("utf-8"), mime_type="text/plain")


# ---------------------------------------------------------------------------
# Notion
# ---------------------------------------------------------------------------

NOTION_TEXT_BLOCKS = {
    "paragraph": "paragraph",
    "quote": "quote",
    "bulleted": "bulleted_list_item",
    "numbered": "numbered_list_item",
}


def _notion_block(btype: str, body: dict[str, Any]) -> dict[str, Any]:
    return {"object": "block", "type": btype, btype: body}


def notion_rich_text(segments: list[Segment]) -> list[dict[str, Any]]:
    """Notion rich text items; text longer than Notion's per-item limit is split."""
    items: list[dict[str, Any]] = []
    for seg in segments:
        text = seg.text
        while text:
            chunk, text = text[:RICH_TEXT_MAX_CHARS], text[RICH_TEXT_MAX_CHARS:]
            item: dict[str, Any] = {"type": "text", "text": {"content": chunk}}
            if seg.href:
                item["text"]["link"] = {"url": seg.href}
            if seg.marks:
                item["annotations"] = {mark: True for mark in sorted(seg.marks)}
            items.append(item)
    return items


def render_notion_blocks(html: str) -> list[dict[str, Any]]:
    """Notion block objects for a stored HTML fragment. Nested list items are flattened."""
    out: list[dict[str, Any]] = []
    for block in parse_blocks(html):
        if block.kind == "heading":
            btype = f"heading_{min(block.level, 3)}"
            out.append(_notion_block(btype, {"rich_text": notion_rich_text(block.segments)}))
        elif block.kind == "code":
            out.append(
                _notion_block("code", {"rich_text": notion_rich_text([Segment(block.text)]), "language": "plain text"})
            )
        elif block.kind == "divider":
            out.append(_notion_block("divider", {}))
        elif block.kind == "table":
            width = max(len(row) for row in block.rows)
            rows = [
                _notion_block(
                    "table_row",
                    {"cells": [notion_rich_text([Segment(text)]) for text in row + [""] * (width - len(row))]},
                )
                for row in block.rows
            ]
            out.append(
                _notion_block(
                    "table",
                    {"table_width": width, "has_column_header": False, "has_row_header": False, "children": rows},
                )
            )
        else:
            btype = NOTION_TEXT_BLOCKS[block.kind]
            out.append(_notion_block(btype, {"rich_text": notion_rich_text(block.segments)}))
    return out or [_notion_block("paragraph", {"rich_text": []})]
