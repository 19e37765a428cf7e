"""Markup clean-up helpers used before any field extraction.

Generated content is requested as a restricted subset of HTML. Models still
wrap it in code fences, mix in markdown, or emit literal ``\\n`` sequences, so
the helpers below bring it back to a predictable shape and strip anything
executable.
"""
from __future__ import annotations

import html as html_lib
import re
from typing import List

MARKUP_SAFELIST = frozenset(
    {"h1", "h2", "h3", "p", "ul", "ol", "li", "table", "thead", "tbody", "tr", "td", "th", "strong", "em", "br", "hr"}
)

_FENCE_BLOCK = re.compile(r"^\s*```[\w-]*[ \t]*\n?(?P<body>.*?)\n?```\s*$", re.DOTALL)
_FENCE_MARKER = re.compile(r"```[\w-]*[ \t]*")

_EXECUTABLE_BLOCK = re.compile(r"<(script|style|iframe|object|embed)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_EXECUTABLE_OPEN = re.compile(r"<(script|style|iframe|object|embed)\b[^>]*/?>", re.IGNORECASE)
_JS_URL = re.compile(r"javascript\s*:", re.IGNORECASE)
_ANY_TAG = re.compile(r"<(/?)([a-zA-Z][a-zA-Z0-9]*)\b([^>]*)>")
_TAG = re.compile(r"<[^>]+>")

_TIME_DASH = re.compile(r"(\d{2}:\d{2})\s*—\s*")
_DASH_WORD = re.compile(r"—(?=[A-Za-z])")


def strip_fences(text: str) -> str:
    """Remove markdown code-fence wrappers (```html, ```json, ```)."""

    match = _FENCE_BLOCK.match(text)
    if match:
        return match.group("body").strip()
    if "```" in text:
        return _FENCE_MARKER.sub("", text).strip()
    return text.strip()


def _markdown_lists_to_html(text: str) -> str:
    lines = text.split("\n")
    fixed: List[str] = []
    in_list = False
    for line in lines:
        stripped = line.strip()
        if re.match(r"^[-*]\s+\S", stripped) and not stripped.startswith("<li"):
            if not in_list:
                fixed.append("<ul>")
                in_list = True
            fixed.append(f"<li>{stripped[1:].strip()}</li>")
            continue
        if in_list:
            fixed.append("</ul>")
            in_list = False
        fixed.append(line)
    if in_list:
        fixed.append("</ul>")
    return "\n".join(fixed)


def _markdown_table_rows(text: str) -> str:
    def _row(match: re.Match) -> str:
        cells = [cell.strip() for cell in match.group(1).split("|") if cell.strip()]
        if not cells or all(set(cell) <= set("-: ") for cell in cells):
            return ""
        return "<tr>" + "".join(f"<td>{cell}</td>" for cell in cells) + "</tr>"

    return re.sub(r"^\s*\|(.+)\|\s*$", _row, text, flags=re.MULTILINE)


def repair_formatting(text: str) -> str:
    """Normalize markdown-flavoured output into the HTML subset."""

    if not text:
        return ""
    text = text.replace("\\n", "\n")
    text = re.sub(r"^###\s+(.+)$", r"<h3>\1</h3>", text, flags=re.MULTILINE)
    text = re.sub(r"^##\s+(.+)$", r"<h2>\1</h2>", text, flags=re.MULTILINE)
    text = re.sub(r"^#\s+(.+)$", r"<h1>\1</h1>", text, flags=re.MULTILINE)
    text = _markdown_lists_to_html(text)
    if "<table" in text and "<tr" not in text:
        text = _markdown_table_rows(text)
    text = _DASH_WORD.sub(" — ", text)
    text = _TIME_DASH.sub(r"\1 — ", text)
    text = re.sub(r"(</ul>|</table>)(<h2>)", r"\1\n\n\2", text)
    text = re.sub(r"(</h2>)(<ul>)", r"\1\n\2", text)
    return text.strip()


def sanitize_markup(text: str) -> str:
    """Keep only :data:`MARKUP_SAFELIST` tags, stripped of attributes, and drop executable content."""

    if not text:
        return ""
    text = _EXECUTABLE_BLOCK.sub("", text)
    text = _EXECUTABLE_OPEN.sub("", text)

    def _filter_tag(match: re.Match) -> str:
        closing, name, _attrs = match.groups()
        if name.lower() not in MARKUP_SAFELIST:
            return ""
        return f"<{closing}{name}>"

    text = _ANY_TAG.sub(_filter_tag, text)
    return _JS_URL.sub("", text)


def escape_text(value: object) -> str:
    """Text made safe to place between tags."""
    return html_lib.escape(str(value), quote=False)


def strip_tags(text: str) -> str:
    """Plain text of a markup fragment with entities decoded."""

    without_tags = _TAG.sub(" ", text or "")
    return re.sub(r"\s+", " ", html_lib.unescape(without_tags)).strip()


def markup_to_text(text: str) -> str:
    """Like :func:`strip_tags` but keeps block boundaries as newlines."""

    text = re.sub(r"<br\s*/?>|</(?:p|li|h[1-3]|tr|ul|ol|table)>", "\n", text or "", flags=re.IGNORECASE)
    text = html_lib.unescape(_TAG.sub("", text))
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


__all__ = [
    "MARKUP_SAFELIST",
    "escape_text",
    "markup_to_text",
    "repair_formatting",
    "sanitize_markup",
    "strip_fences",
    "strip_tags",
]
