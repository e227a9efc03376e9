# Conversion of provider-native content into the HTML fragment stored on documents.

from __future__ import annotations

import html
import io
import logging
import re
from typing import Any, Iterable, Optional

from docx import Document as DocxDocument
from docx.table import Table
from docx.text.hyperlink import Hyperlink
from docx.text.paragraph import Paragraph
from docx.text.run import Run

from connectors.base import FetchedContent

logger = logging.getLogger(__name__)

EMPTY_HTML = "<p></p>"
LEGACY_DOC_PLACEHOLDER = (
    "<p>This .doc file format is not fully supported. Please save as .docx and try again.</p>"
)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
DOC_MIME = "application/msword"

TITLE_EXTENSIONS = re.compile(r"\.(md|txt|html|htm|doc|docx|rtf)$", re.IGNORECASE)


def escape_text(text: str) -> str:
    """Escape ``&``, ``<`` and ``>``; quotes are left alone in text content."""
    return html.escape(text, quote=False)


UNTITLED = "Untitled"


def derive_title(name: str) -> str:
    """Strip exactly one trailing known document extension; a bare extension becomes "Untitled"."""
    title = TITLE_EXTENSIONS.sub("", name, count=1)
    return title if title.strip() else UNTITLED


# ---------------------------------------------------------------------------
# Plain text / markdown
# ---------------------------------------------------------------------------

_HEADING_LINE = re.compile(r"^(#{1,3}) (.+)$")
_BOLD = re.compile(r"\*\*(.+?)\*\*")
_ITALIC = re.compile(r"\*(.+?)\*")


def _inline_markdown(escaped: str) -> str:
    escaped = _BOLD.sub(r"<strong>\1</strong>", escaped)
    return _ITALIC.sub(r"<em>\1</em>", escaped)


def _text_paragraph(lines: list[str]) -> str:
    return "<p>" + "<br>".join(_inline_markdown(escape_text(line)) for line in lines) + "</p>"


def text_to_html(text: str) -> str:
    """Escape text and split it into paragraphs; light markdown (headings, bold, italic) is honoured."""
    blocks: list[str] = []
    normalized = text.replace("\r\n", "\n").strip()
    for para in re.split(r"\n\s*\n", normalized):
        if not para.strip():
            continue
        pending: list[str] = []
        for line in para.split("\n"):
            m = _HEADING_LINE.match(line)
            if not m:
                pending.append(line)
                continue
            if pending:
                blocks.append(_text_paragraph(pending))
                pending = []
            level = len(m.group(1))
            blocks.append(f"<h{level}>{_inline_markdown(escape_text(m.group(2)))}</h{level}>")
        if pending:
            blocks.append(_text_paragraph(pending))
    return "\n".join(blocks) or EMPTY_HTML


# ---------------------------------------------------------------------------
# Word documents
# ---------------------------------------------------------------------------

def _run_html(run: Run) -> str:
    text = escape_text(run.text or "")
    if not text:
        return ""
    if run.bold:
        text = f"<strong>{text}</strong>"
    if run.italic:
        text = f"<em>{text}</em>"
    if run.underline:
        text = f"<u>{text}</u>"
    if run.font.strike:
        text = f"<s>{text}</s>"
    return text


def _paragraph_inner(paragraph: Paragraph) -> str:
    pieces: list[str] = []
    for item in paragraph.iter_inner_content():
        if isinstance(item, Hyperlink):
            inner = "".join(_run_html(r) for r in item.runs)
            if inner and item.address:
                inner = f'<a href="{html.escape(item.address, quote=True)}">{inner}</a>'
            pieces.append(inner)
        else:
            pieces.append(_run_html(item))
    return "".join(pieces)


def _classify_paragraph(paragraph: Paragraph) -> tuple[Optional[str], str]:
    """Return (list tag or None, html) for one paragraph; html is empty for blank paragraphs."""
    inner = _paragraph_inner(paragraph)
    if not inner.strip():
        return None, ""
    style = paragraph.style.name if paragraph.style is not None else ""
    if style == "Title":
        return None, f"<h1>{inner}</h1>"
    heading = re.match(r"Heading (\d)", style or "")
    if heading:
        level = min(max(int(heading.group(1)), 1), 3)
        return None, f"<h{level}>{inner}</h{level}>"
    if style and style.startswith("List Number"):
        return "ol", f"<li>{inner}</li>"
    if style and style.startswith("List"):
        return "ul", f"<li>{inner}</li>"
    return None, f"<p>{inner}</p>"


def _table_html(table: Table) -> str:
    rows = []
    for row in table.rows:
        cells = "".join(f"<td>{escape_text(cell.text)}</td>" for cell in row.cells)
        rows.append(f"<tr>{cells}</tr>")
    return f"<table>{''.join(rows)}</table>"


def docx_to_html(data: bytes) -> str:
    """Convert a .docx body to HTML. Raises if the bytes are not a readable package."""
    document = DocxDocument(io.BytesIO(data))
    parts: list[str] = []
    list_tag: Optional[str] = None
    items: list[str] = []

    def flush_list() -> None:
        nonlocal list_tag, items
        if items:
            parts.append(f"<{list_tag}>{''.join(items)}</{list_tag}>")
        list_tag, items = None, []

    for block in document.iter_inner_content():
        if isinstance(block, Table):
            flush_list()
            parts.append(_table_html(block))
            continue
        tag, fragment = _classify_paragraph(block)
        if not fragment:
            continue
        if tag is None:
            flush_list()
            parts.append(fragment)
            continue
        if tag != list_tag:
            flush_list()
            list_tag = tag
        items.append(fragment)
    flush_list()
    return "\n".join(parts) or EMPTY_HTML


def legacy_doc_to_html(data: bytes) -> str:
    """Best-effort conversion for legacy binary .doc files.

    A conversion failure is not an import failure: the document is created with
    ``LEGACY_DOC_PLACEHOLDER`` as its body so the user can re-upload as .docx.
    """
    try:
        return docx_to_html(data)
    except Exception as exc:
        logger.warning(f"Legacy .doc conversion failed, using placeholder: {exc!r}")
        return LEGACY_DOC_PLACEHOLDER


# ---------------------------------------------------------------------------
# Notion block tree
# ---------------------------------------------------------------------------

# Nesting order is fixed: bold is innermost, code outermost; links wrap everything.
ANNOTATION_TAGS = (
    ("bold", "strong"),
    ("italic", "em"),
    ("strikethrough", "s"),
    ("underline", "u"),
    ("code", "code"),
)

BLOCK_WRAPPERS: dict[str, tuple[str, str]] = {
    "paragraph": ("<p>", "</p>"),
    "heading_1": ("<h1>", "</h1>"),
    "heading_2": ("<h2>", "</h2>"),
    "heading_3": ("<h3>", "</h3>"),
    # ordered vs unordered is not preserved; both render as <li> inside <ul>
    "bulleted_list_item": ("<li>", "</li>"),
    "numbered_list_item": ("<li>", "</li>"),
    "code": ("<pre><code>", "</code></pre>"),
    "quote": ("<blockquote>", "</blockquote>"),
    "to_do": ("<p>", "</p>"),
    "callout": ("<aside>", "</aside>"),
}
FALLBACK_WRAPPER = ("<p>", "</p>")

CHECKED_GLYPH = "☑"
UNCHECKED_GLYPH = "☐"
DEFAULT_CALLOUT_ICON = "\U0001F4A1"


def rich_text_to_html(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    out: list[str] = []
    for part in rich_text:
        if not isinstance(part, dict):
            continue
        text = escape_text(part.get("plain_text") or "")
        if not text:
            continue
        annotations = part.get("annotations") or {}
        for flag, tag in ANNOTATION_TAGS:
            if annotations.get(flag):
                text = f"<{tag}>{text}</{tag}>"
        href = part.get("href")
        if href:
            text = f'<a href="{html.escape(href, quote=True)}">{text}</a>'
        out.append(text)
    return "".join(out)


def block_to_html(block: dict[str, Any]) -> Optional[str]:
    """HTML for one block, or None when the block has nothing to render."""
    btype = block.get("type")
    data = block.get(btype) if btype else None
    if not isinstance(data, dict):
        return None
    if btype == "divider":
        return "<hr>"
    text = rich_text_to_html(data.get("rich_text"))
    if not text:
        return None
    if btype == "to_do":
        text = f"{CHECKED_GLYPH if data.get('checked') else UNCHECKED_GLYPH} {text}"
    elif btype == "callout":
        icon = (data.get("icon") or {}).get("emoji") or DEFAULT_CALLOUT_ICON
        text = f"{icon} {text}"
    open_tag, close_tag = BLOCK_WRAPPERS.get(btype, FALLBACK_WRAPPER)
    return f"{open_tag}{text}{close_tag}"


def _wrap_list_runs(parts: Iterable[str]) -> list[str]:
    merged: list[str] = []
    run: list[str] = []
    for part in parts:
        if part.startswith("<li>"):
            run.append(part)
            continue
        if run:
            merged.append("<ul>" + "\n".join(run) + "</ul>")
            run = []
        merged.append(part)
    if run:
        merged.append("<ul>" + "\n".join(run) + "</ul>")
    return merged


def blocks_to_html(blocks: Optional[Iterable[dict[str, Any]]]) -> str:
    parts = [fragment for block in (blocks or []) if (fragment := block_to_html(block))]
    return "\n".join(_wrap_list_runs(parts)) or EMPTY_HTML


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _source_kind(name: str, mime_type: Optional[str]) -> str:
    ext = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    if ext in ("docx", "doc"):
        return ext
    if ext in ("html", "htm"):
        return "html"
    if ext in ("md", "txt", "rtf"):
        return "text"
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime == DOCX_MIME:
        return "docx"
    if mime == DOC_MIME:
        return "doc"
    if mime == "text/html":
        return "html"
    return "text"


def normalize_content(fetched: FetchedContent) -> str:
    """Turn adapter output into the HTML fragment stored on a document (never empty)."""
    if fetched.html is not None:
        return fetched.html or EMPTY_HTML
    data = fetched.data or b""
    kind = _source_kind(fetched.name, fetched.mime_type)
    if kind == "docx":
        return docx_to_html(data)
    if kind == "doc":
        return legacy_doc_to_html(data)
    text = data.decode("utf-8", errors="replace")
    if kind == "html":
        return text or EMPTY_HTML
    return text_to_html(text)
