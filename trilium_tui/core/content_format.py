"""Format detection and lossy HTML <-> Markdown conversion for editing.

Trilium stores text notes as HTML. Editors work better with Markdown, so a
note detected as HTML is converted before it is written to the temp file
and converted back after the editor exits. The rules are plain regex
substitutions: headings, emphasis, code, links, lists, paragraphs and line
breaks. Anything else is stripped.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from enum import Enum

from ..models import Note


class ContentFormat(str, Enum):
    HTML = "html"
    MARKDOWN = "markdown"
    PLAIN_TEXT = "plain"


_EXTENSIONS = {
    ContentFormat.HTML: "html",
    ContentFormat.MARKDOWN: "md",
    ContentFormat.PLAIN_TEXT: "txt",
}

HTML_INDICATORS = (
    "<html>", "<body>", "<div>", "<p>", "<span>", "<h1>", "<h2>", "<h3>",
    "<strong>", "<em>", "<a href=", "<img", "<ul>", "<ol>", "<li>",
    "<table>", "<tr>", "<td>", "<th>", "<br>", "<br/>", "&nbsp;", "&amp;",
    "&lt;", "&gt;", "&quot;",
)

MARKDOWN_INDICATORS = (
    re.compile(r"^#+\s", re.M),  # headers
    re.compile(r"\*\*.+?\*\*"),
    re.compile(r"__.+?__"),
    re.compile(r"(?<!\*)\*(?!\*)[^*\n]+?\*(?!\*)"),
    re.compile(r"```"),
    re.compile(r"`[^`\n]+`"),
    re.compile(r"^[-*+]\s", re.M),
    re.compile(r"^\d+\.\s", re.M),
    re.compile(r"^\[[x ]\]", re.M),  # checkboxes
    re.compile(r"\[.+?\]\(.+?\)"),  # links
)


@dataclass(frozen=True)
class ConversionResult:
    """Content handed to the editor plus the format pair needed to save it."""

    content: str
    original_format: ContentFormat
    editing_format: ContentFormat


def extension_for(fmt: ContentFormat) -> str:
    return _EXTENSIONS[fmt]


def looks_like_html(content: str) -> bool:
    lowered = content.lower()
    return any(indicator in lowered for indicator in HTML_INDICATORS)


def looks_like_markdown(content: str) -> bool:
    return any(pattern.search(content) for pattern in MARKDOWN_INDICATORS)


def detect_format(note: Note, content: str) -> ContentFormat:
    """MIME type wins when it names a format; text notes are sniffed."""
    mime = (note.mime or "").lower()
    if "html" in mime:
        return ContentFormat.HTML
    if "markdown" in mime or mime.endswith("/md") or "x-md" in mime:
        return ContentFormat.MARKDOWN

    if note.type == "text":
        if looks_like_html(content):
            return ContentFormat.HTML
        if looks_like_markdown(content):
            return ContentFormat.MARKDOWN

    return ContentFormat.PLAIN_TEXT


# ---- HTML -> Markdown ----

_H_RE = re.compile(r"<h([1-6])[^>]*>(.*?)</h\1>", re.I | re.S)
_BOLD_RE = re.compile(r"<(strong|b)(?:\s[^>]*)?>(.*?)</\1>", re.I | re.S)
_ITALIC_RE = re.compile(r"<(em|i)(?:\s[^>]*)?>(.*?)</\1>", re.I | re.S)
_LINK_RE = re.compile(r"<a\s[^>]*?href=[\"']([^\"']*)[\"'][^>]*>(.*?)</a>", re.I | re.S)
_PRE_RE = re.compile(r"<pre[^>]*>\s*<code[^>]*>(.*?)</code>\s*</pre>", re.I | re.S)
_CODE_RE = re.compile(r"<code[^>]*>(.*?)</code>", re.I | re.S)
_UL_RE = re.compile(r"<ul[^>]*>(.*?)</ul>", re.I | re.S)
_OL_RE = re.compile(r"<ol[^>]*>(.*?)</ol>", re.I | re.S)
_LI_RE = re.compile(r"<li[^>]*>(.*?)</li>", re.I | re.S)
_P_RE = re.compile(r"<p(?:\s[^>]*)?>(.*?)</p>", re.I | re.S)
_BR_RE = re.compile(r"<br\s*/?>", re.I)
_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_RUN_RE = re.compile(r"\n{3,}")


def _ordered_items(match: re.Match) -> str:
    items = _LI_RE.findall(match.group(1))
    lines = [f"{n}. {item.strip()}" for n, item in enumerate(items, start=1)]
    return "\n" + "\n".join(lines) + "\n\n"


def _unordered_items(match: re.Match) -> str:
    items = _LI_RE.findall(match.group(1))
    return "\n" + "\n".join(f"- {item.strip()}" for item in items) + "\n\n"


def decode_entities(text: str) -> str:
    return html.unescape(text).replace("\xa0", " ")


def html_to_markdown(source: str) -> str:
    md = _PRE_RE.sub(lambda m: f"\n```\n{m.group(1).strip(chr(10))}\n```\n\n", source)
    md = _H_RE.sub(lambda m: f"\n{'#' * int(m.group(1))} {m.group(2).strip()}\n\n", md)
    md = _BOLD_RE.sub(r"**\2**", md)
    md = _ITALIC_RE.sub(r"*\2*", md)
    md = _LINK_RE.sub(r"[\2](\1)", md)
    md = _CODE_RE.sub(r"`\1`", md)
    md = _UL_RE.sub(_unordered_items, md)
    md = _OL_RE.sub(_ordered_items, md)
    md = _P_RE.sub(r"\1\n\n", md)
    md = _BR_RE.sub("\n", md)
    md = _TAG_RE.sub("", md)
    md = decode_entities(md)
    md = _BLANK_RUN_RE.sub("\n\n", md)
    return md.strip()


# ---- Markdown -> HTML ----

_FENCE_RE = re.compile(r"```[^\n]*\n(.*?)```", re.S)
_MD_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*$")
_MD_UL_RE = re.compile(r"^[-*+]\s+(.+)$")
_MD_OL_RE = re.compile(r"^\d+\.\s+(.+)$")
_MD_CODE_RE = re.compile(r"`([^`\n]+)`")
_MD_LINK_RE = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")
_MD_BOLD_RE = re.compile(r"\*\*(.+?)\*\*|__(.+?)__")
_MD_ITALIC_RE = re.compile(r"(?<![\w*])\*(?!\s)(.+?)(?<!\s)\*(?![\w*])|(?<![\w_])_(?!\s)(.+?)(?<!\s)_(?![\w_])")
_PLACEHOLDER = "\x00{}\x00"


def _inline(text: str) -> str:
    codes: list[str] = []

    def stash(match: re.Match) -> str:
        codes.append(f"<code>{html.escape(match.group(1), quote=False)}</code>")
        return _PLACEHOLDER.format(len(codes) - 1)

    out = _MD_CODE_RE.sub(stash, text)
    out = html.escape(out, quote=False)
    out = _MD_LINK_RE.sub(lambda m: f'<a href="{m.group(2).replace(chr(34), "&quot;")}">{m.group(1)}</a>', out)
    out = _MD_BOLD_RE.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", out)
    out = _MD_ITALIC_RE.sub(lambda m: f"<em>{m.group(1) or m.group(2)}</em>", out)
    for i, code in enumerate(codes):
        out = out.replace(_PLACEHOLDER.format(i), code)
    return out


def _block_to_html(block: str) -> list[str]:
    parts: list[str] = []
    paragraph: list[str] = []
    list_tag: str | None = None
    items: list[str] = []

    def flush_paragraph() -> None:
        if paragraph:
            parts.append("<p>" + "<br>".join(_inline(line) for line in paragraph) + "</p>")
            paragraph.clear()

    def flush_list() -> None:
        nonlocal list_tag
        if list_tag:
            parts.append(f"<{list_tag}>" + "".join(f"<li>{_inline(i)}</li>" for i in items) + f"</{list_tag}>")
            items.clear()
            list_tag = None

    for line in block.split("\n"):
        heading = _MD_HEADING_RE.match(line)
        ul = _MD_UL_RE.match(line)
        ol = _MD_OL_RE.match(line)
        if heading:
            flush_paragraph()
            flush_list()
            level = len(heading.group(1))
            parts.append(f"<h{level}>{_inline(heading.group(2))}</h{level}>")
        elif ul or ol:
            flush_paragraph()
            tag = "ul" if ul else "ol"
            if list_tag != tag:
                flush_list()
                list_tag = tag
            items.append((ul or ol).group(1))
        else:
            flush_list()
            paragraph.append(line)

    flush_paragraph()
    flush_list()
    return parts


def markdown_to_html(source: str) -> str:
    text = source.replace("\r\n", "\n")
    parts: list[str] = []
    pos = 0
    for fence in _FENCE_RE.finditer(text):
        parts.extend(_prose_to_html(text[pos : fence.start()]))
        code = html.escape(fence.group(1).rstrip("\n"), quote=False)
        parts.append(f"<pre><code>{code}</code></pre>")
        pos = fence.end()
    parts.extend(_prose_to_html(text[pos:]))
    return "".join(parts)


def _prose_to_html(text: str) -> list[str]:
    parts: list[str] = []
    for block in re.split(r"\n\s*\n", text):
        block = block.strip("\n")
        if block.strip():
            parts.extend(_block_to_html(block))
    return parts


# ---- editing round trip ----


def prepare_for_editing(note: Note, content: str) -> ConversionResult:
    """HTML is edited as Markdown; every other format passes through."""
    original = detect_format(note, content)
    if original is ContentFormat.HTML:
        return ConversionResult(html_to_markdown(content), original, ContentFormat.MARKDOWN)
    return ConversionResult(content, original, original)


def prepare_for_saving(conversion: ConversionResult, edited: str) -> str:
    if conversion.original_format is ContentFormat.HTML and conversion.editing_format is ContentFormat.MARKDOWN:
        return markdown_to_html(edited)
    return edited


_UNSAFE_FILENAME_RE = re.compile(r'[/\\:*?"<>|]')


def sanitize_filename(name: str, max_length: int = 100) -> str:
    """Make a note title safe to embed in a temp file name."""
    out = _UNSAFE_FILENAME_RE.sub("-", name)
    out = re.sub(r"\s+", "_", out)
    out = re.sub(r"-+", "-", out)
    out = out.strip("-")
    return out[:max_length]
