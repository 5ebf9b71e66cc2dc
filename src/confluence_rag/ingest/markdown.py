"""Convert storage-format XHTML into Markdown lines.

The extractor walks the parsed element tree depth first and renders every
element through a dispatch table keyed by tag name. Elements in the ``ac``
(macro) and ``ri`` (resource identifier) namespaces have their own tables.

Inline content (text, emphasis, links, status and date macros, user
references ...) is concatenated into a single line. Block content (paragraphs,
lists, tables, block macros ...) always starts a new line.
"""
from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

from .dates import format_date_line
from .entities import normalize_entities
from .headings import HeadingContext
from .people import UserDirectory

LOGGER = logging.getLogger(__name__)

AC_NAMESPACE = "http://atlassian.com/ac"
RI_NAMESPACE = "http://atlassian.com/ri"

_DOCUMENT_TEMPLATE = '<root xmlns:ac="{ac}" xmlns:ri="{ri}">{body}</root>'
_WHITESPACE_RE = re.compile(r"\s+")

HEADING_TAGS = {"h1": 1, "h2": 2, "h3": 3, "h4": 4, "h5": 5, "h6": 6}
LIST_TAGS = frozenset({"ul", "ol"})
BLOCK_TAGS = frozenset(
    {"p", "div", "ul", "ol", "li", "table", "blockquote", "hr", *HEADING_TAGS}
)
INLINE_MACRO_ELEMENTS = frozenset(
    {
        "link",
        "emoticon",
        "jira",
        "image",
        "parameter",
        "plain-text-link-body",
        "link-body",
        "inline-comment-marker",
    }
)
INLINE_MACROS = frozenset({"status", "date", "datetime", "jira", "link"})
ROADMAP_MACROS = frozenset({"roadmap", "roadmap-planner"})
ADMONITION_MACROS = frozenset({"info", "note", "tip", "warning", "error"})

ROADMAP_OMITTED = "[Roadmap macro omitted]"

Node = Union[str, ET.Element]
Handler = Callable[[ET.Element, Optional[ET.Element], int], List[str]]


@dataclass(slots=True)
class MarkdownExtractionResult:
    """Lines extracted from one document plus the parse outcome.

    ``headings`` holds the heading context in effect after each line.
    ``parse_error`` is set (and ``lines`` empty) when the markup could not be
    parsed, which distinguishes a broken page from an empty one.
    """

    lines: List[str] = field(default_factory=list)
    headings: List[HeadingContext] = field(default_factory=list)
    parse_error: Optional[str] = None

    @property
    def parse_failed(self) -> bool:
        return self.parse_error is not None


def _split_tag(tag: str) -> Tuple[str, str]:
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return namespace, local
    return "", tag


def _local_name(element: ET.Element) -> str:
    return _split_tag(element.tag)[1]


def _ac(name: str) -> str:
    return f"{{{AC_NAMESPACE}}}{name}"


def _ri(name: str) -> str:
    return f"{{{RI_NAMESPACE}}}{name}"


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _iter_nodes(element: ET.Element) -> Iterator[Node]:
    """Yield text and child elements of ``element`` in document order."""

    if element.text:
        yield element.text
    for child in element:
        yield child
        if child.tail:
            yield child.tail


def _find_child(element: ET.Element, local: str) -> Optional[ET.Element]:
    for child in element:
        if _local_name(child) == local:
            return child
    return None


def _parameter(element: ET.Element, name: str, tags: Tuple[str, ...] = ("parameter",)) -> Optional[str]:
    for child in element:
        if _local_name(child) in tags and child.get(_ac("name")) == name:
            return "".join(child.itertext())
    return None


def _macro_name(element: ET.Element) -> str:
    return element.get(_ac("name")) or "unknown"


def _text_without_parameters(element: ET.Element) -> str:
    parts: List[str] = []
    for node in _iter_nodes(element):
        if isinstance(node, str):
            parts.append(node)
        elif _local_name(node) != "parameter":
            parts.append("".join(node.itertext()))
    return "".join(parts)


def _prefix_lines(prefix: str, lines: List[str]) -> List[str]:
    prefixed: List[str] = []
    for line in lines:
        for part in line.split("\n"):
            if part.strip():
                prefixed.append(prefix + part.strip())
    return prefixed


def _code_block(language: Optional[str], text: Optional[str]) -> List[str]:
    body = (text or "").replace("\r", "")
    if not body.strip():
        return []
    return [f"```{(language or '').strip()}", *body.split("\n"), "```"]


def _row_line(cells: List[str]) -> str:
    return "| " + " | ".join(cells) + " |"


class MarkdownExtractor:
    """Render storage-format markup as Markdown lines.

    Instances hold no per-document state: heading context and list depth are
    threaded through the recursive calls, so one extractor can be shared by
    concurrent callers.
    """

    def __init__(self, user_directory: UserDirectory | None = None) -> None:
        self.user_directory = user_directory or UserDirectory()
        self._handlers: Dict[str, Handler] = {
            "p": self._paragraph,
            "div": self._paragraph,
            "em": partial(self._inline, "*", "*"),
            "i": partial(self._inline, "*", "*"),
            "u": partial(self._inline, "*", "*"),
            "strong": partial(self._inline, "**", "**"),
            "b": partial(self._inline, "**", "**"),
            "s": partial(self._inline, "~~", "~~"),
            "del": partial(self._inline, "~~", "~~"),
            "sup": partial(self._inline, "^", "^"),
            "sub": partial(self._inline, "~", "~"),
            "code": partial(self._inline, "`", "`"),
            "pre": partial(self._inline, "`", "`"),
            "time": self._time,
            "table": self._table,
            "ul": self._list,
            "ol": self._list,
            "li": self._standalone_item,
            "blockquote": self._blockquote,
            "hr": lambda element, parent, depth: ["---"],
            "br": lambda element, parent, depth: [""],
            "a": self._anchor,
            "span": self._span,
        }
        self._macro_handlers: Dict[str, Handler] = {
            "link": self._macro_link,
            "placeholder": self._placeholder,
            "jira": self._inline_jira,
            "emoticon": self._emoticon,
            "rich-text-body": lambda element, parent, depth: self._flow(element, depth),
            "plain-text-body": self._plain_text_body,
            "structured-macro": self._structured_macro,
            "parameter": lambda element, parent, depth: [],
        }
        self._reference_handlers: Dict[str, Handler] = {
            "shortcut": self._shortcut,
            "user": self._user,
            "page": self._page,
        }
        self._structured_handlers: Dict[str, Callable[[ET.Element, str, int], List[str]]] = {
            "status": self._status_macro,
            "date": self._date_macro,
            "datetime": self._date_macro,
            "roadmap": lambda element, name, depth: [ROADMAP_OMITTED],
            "roadmap-planner": lambda element, name, depth: [ROADMAP_OMITTED],
            "panel": self._panel_macro,
            "excerpt": self._excerpt_macro,
            "excerpt-include": self._excerpt_macro,
            "expand": self._expand_macro,
            "details": self._expand_macro,
            "link": lambda element, name, depth: self._flow(element, depth),
            "code": self._code_macro,
            "jira": self._jira_macro,
        }
        for name in ADMONITION_MACROS:
            self._structured_handlers[name] = self._admonition_macro

    # Public API ----------------------------------------------------------------
    def extract(self, markup: str) -> MarkdownExtractionResult:
        """Extract Markdown lines, reporting parse failures in the result."""

        if not markup or not markup.strip():
            return MarkdownExtractionResult()

        document = _DOCUMENT_TEMPLATE.format(
            ac=AC_NAMESPACE, ri=RI_NAMESPACE, body=normalize_entities(markup)
        )
        try:
            root = ET.fromstring(document)
        except ET.ParseError as error:
            LOGGER.warning("Failed to parse storage-format markup: %s", error)
            return MarkdownExtractionResult(parse_error=str(error))

        try:
            return self._render(root)
        except RecursionError:
            LOGGER.warning("Storage-format markup is nested too deeply to render")
            return MarkdownExtractionResult(parse_error="markup nesting exceeds the recursion limit")

    def extract_markdown(self, markup: str) -> List[str]:
        """Return the Markdown lines for ``markup``; empty when it cannot be parsed."""

        return self.extract(markup).lines

    def _render(self, root: ET.Element) -> MarkdownExtractionResult:
        result = MarkdownExtractionResult()
        context = HeadingContext()
        for node in _iter_nodes(root):
            if isinstance(node, str):
                if node.strip():
                    result.lines.append(node.strip())
                    result.headings.append(context)
                continue

            namespace, local = _split_tag(node.tag)
            if not namespace and local in HEADING_TAGS:
                heading_lines = [line for line in self._flow(node, 0) if line.strip()]
                if not heading_lines:
                    continue
                level = HEADING_TAGS[local]
                text = heading_lines[0].strip()
                context = context.enter(level, text)
                result.lines.append("#" * level + " " + text)
                result.headings.append(context)
                continue

            for line in self._element_lines(node, root, 0):
                if not line.strip():
                    continue
                result.lines.append(line.rstrip("\r\n"))
                result.headings.append(context)
        return result

    # Dispatch ------------------------------------------------------------------
    def _element_lines(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        namespace, local = _split_tag(element.tag)
        if namespace == AC_NAMESPACE:
            handler = self._macro_handlers.get(local)
        elif namespace == RI_NAMESPACE:
            handler = self._reference_handlers.get(local)
        else:
            handler = self._handlers.get(local)
        if handler is None:
            return self._flow(element, depth)
        return handler(element, parent, depth)

    def _is_block(self, element: ET.Element) -> bool:
        namespace, local = _split_tag(element.tag)
        if namespace == AC_NAMESPACE:
            if local == "structured-macro":
                return _macro_name(element) not in INLINE_MACROS
            return local not in INLINE_MACRO_ELEMENTS
        if namespace == RI_NAMESPACE:
            return False
        return local in BLOCK_TAGS

    def _flow(self, element: ET.Element, depth: int) -> List[str]:
        """Render the children of ``element``, joining inline runs into lines."""

        lines: List[str] = []
        buffer: List[str] = []

        def flush() -> None:
            text = _collapse("".join(buffer))
            buffer.clear()
            if text:
                lines.append(text)

        nodes = list(_iter_nodes(element))
        for index, node in enumerate(nodes):
            if isinstance(node, str):
                buffer.append(node)
                continue
            if self._is_block(node):
                flush()
                lines.extend(self._element_lines(node, element, depth))
                if _local_name(node) in LIST_TAGS and not self._next_is_list(nodes, index):
                    lines.append("")
            elif _local_name(node) == "br":
                buffer.append(" ")
            else:
                rendered = " ".join(self._element_lines(node, element, depth))
                # Macro and reference output is a separate word; HTML inline markup is not.
                if rendered and _split_tag(node.tag)[0]:
                    rendered = f" {rendered} "
                buffer.append(rendered)
        flush()
        return lines

    @staticmethod
    def _next_is_list(nodes: List[Node], index: int) -> bool:
        for node in nodes[index + 1 :]:
            if isinstance(node, str):
                if node.strip():
                    return False
                continue
            namespace, local = _split_tag(node.tag)
            return not namespace and local in LIST_TAGS
        return False

    def _flat_text(self, element: ET.Element, depth: int) -> str:
        if len(element) == 0:
            return (element.text or "").strip()
        return _collapse(" ".join(self._flow(element, depth)))

    # HTML elements -------------------------------------------------------------
    def _paragraph(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        return self._flow(element, depth) + [""]

    def _inline(
        self, prefix: str, suffix: str, element: ET.Element, parent: Optional[ET.Element], depth: int
    ) -> List[str]:
        content = self._flat_text(element, depth)
        if not content:
            return []
        return [f"{prefix}{content}{suffix}"]

    def _time(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        return [format_date_line(element.get("datetime"))]

    def _anchor(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        text_lines = [line for line in self._flow(element, depth) if line.strip()]
        href = element.get("href")
        if href is None:
            return text_lines
        return [f"[{' '.join(text_lines)}]({href})"]

    def _span(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        style = element.get("style") or ""
        if "text-decoration" in style and "line-through" in style:
            return self._inline("~~", "~~", element, parent, depth)
        return self._flow(element, depth)

    def _blockquote(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        return [
            "> " + line.replace("\n", "\n> ")
            for line in self._flow(element, depth)
            if line.strip()
        ]

    def _list(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        depth += 1
        indent = "  " * (depth - 1)
        ordered = _local_name(element) == "ol"
        lines: List[str] = []
        number = 1
        for item in element:
            namespace, local = _split_tag(item.tag)
            if namespace or local != "li":
                continue
            item_lines = [line for line in self._flow(item, depth) if line.strip()]
            if not item_lines:
                continue
            marker = f"{number}. " if ordered else "- "
            number += 1
            lines.append(f"{indent}{marker}{item_lines[0]}")
            lines.extend(item_lines[1:])
        return lines

    def _standalone_item(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        content = _collapse(" ".join(self._flow(element, depth)))
        if not content:
            return []
        return [f"- {content}"]

    # Tables --------------------------------------------------------------------
    def _table(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        thead = _find_child(element, "thead")
        tbody = _find_child(element, "tbody")
        tfoot = _find_child(element, "tfoot")

        header_rows: List[ET.Element] = []
        body_rows: List[ET.Element] = []
        if thead is not None:
            header_rows.extend(self._rows(thead))
        if tbody is not None:
            body_rows.extend(self._rows(tbody))
        if tfoot is not None:
            body_rows.extend(self._rows(tfoot))
        if thead is None and tbody is None and tfoot is None:
            body_rows.extend(self._rows(element))

        if not header_rows and body_rows and any(
            _local_name(cell) == "th" for cell in self._cells(body_rows[0])
        ):
            header_rows.append(body_rows.pop(0))

        if not header_rows and not body_rows:
            return []

        headers = [self._row_cells(row, depth) for row in header_rows]
        body = [self._row_cells(row, depth) for row in body_rows]
        if not headers:
            headers = [[f"Column {number}" for number in range(1, len(body[0]) + 1)]]

        lines = [_row_line(cells) for cells in headers]
        lines.append("|" + " --- |" * len(headers[0]))
        lines.extend(_row_line(cells) for cells in body)
        return lines

    @classmethod
    def _rows(cls, section: ET.Element) -> List[ET.Element]:
        # Rows without cells would render as a malformed "|  |" line.
        return [row for row in section if _split_tag(row.tag) == ("", "tr") and cls._cells(row)]

    @staticmethod
    def _cells(row: ET.Element) -> List[ET.Element]:
        return [cell for cell in row if _split_tag(cell.tag)[1] in ("th", "td") and not _split_tag(cell.tag)[0]]

    def _row_cells(self, row: ET.Element, depth: int) -> List[str]:
        return [self._cell_text(cell, depth) for cell in self._cells(row)]

    def _cell_text(self, cell: ET.Element, depth: int) -> str:
        parts = [
            part.strip()
            for line in self._flow(cell, depth)
            for part in line.split("\n")
            if part.strip()
        ]
        if len(parts) > 1:
            return "<br>".join(parts)
        return " ".join(parts)

    # Macro namespace -----------------------------------------------------------
    def _macro_link(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        anchor = element.get(_ac("anchor"))
        if anchor and anchor.strip():
            return []
        return self._flow(element, depth)

    def _placeholder(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        text = "".join(element.itertext()).strip()
        if not text:
            return []
        return [f"> Placeholder: {text}"]

    def _inline_jira(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        tags = ("parameter", "param")
        key = _parameter(element, "key", tags)
        if key and key.strip():
            return [f"Jira Issue: {key.strip()}"]
        jira_filter = _parameter(element, "filter", tags)
        if jira_filter and jira_filter.strip():
            return [f"Jira Filter: {jira_filter.strip()}"]
        return ["Jira reference"]

    def _emoticon(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        name = element.get(_ac("name"))
        if name and name.strip():
            return [f":{name.strip()}:"]
        return [":emoticon:"]

    def _plain_text_body(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        if (
            parent is not None
            and _split_tag(parent.tag) == (AC_NAMESPACE, "structured-macro")
            and _macro_name(parent) == "code"
        ):
            return _code_block(_parameter(parent, "language"), element.text)
        text = (element.text or "").strip()
        return [text] if text else []

    def _structured_macro(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        name = _macro_name(element)
        handler = self._structured_handlers.get(name)
        if handler is None:
            LOGGER.debug("Replacing unsupported structured macro %r with a placeholder", name)
            return [f"[Structured macro removed: {name}]"]
        return handler(element, name, depth)

    # Structured macros ---------------------------------------------------------
    def _body_lines(self, element: ET.Element, depth: int) -> List[str]:
        body = _find_child(element, "rich-text-body")
        return self._flow(body if body is not None else element, depth)

    def _status_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        title = _parameter(element, "title")
        if title is None or not title.strip():
            body = _find_child(element, "rich-text-body")
            title = "".join(body.itertext()) if body is not None else _text_without_parameters(element)
        text = _collapse(title)
        if not text:
            return []
        return [f"Status: {text[0].upper()}{text[1:]}"]

    def _date_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        return [format_date_line(_parameter(element, "date"))]

    def _admonition_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        return _prefix_lines(f"> **{name.upper()}:** ", self._body_lines(element, depth))

    def _panel_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        return _prefix_lines("> **Panel:** ", self._body_lines(element, depth))

    def _excerpt_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        return self._body_lines(element, depth)

    def _expand_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        title_element = _find_child(element, "title")
        if title_element is not None:
            title = "".join(title_element.itertext())
        else:
            title = _parameter(element, "title") or ""
        title = _collapse(title) or "Expand"
        lines = [f"> **Expand: {title}**"]
        lines.extend(
            "> " + line.strip().replace("\n", "\n> ")
            for line in self._body_lines(element, depth)
            if line.strip()
        )
        return lines

    def _code_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        body = _find_child(element, "plain-text-body")
        if body is None:
            return []
        return _code_block(_parameter(element, "language"), body.text)

    def _jira_macro(self, element: ET.Element, name: str, depth: int) -> List[str]:
        key = (_parameter(element, "key") or "").strip()
        if not key:
            return ["Jira reference"]
        title = (_parameter(element, "title") or "").strip()
        if title:
            return [f"Jira Issue: {key} - {title}"]
        return [f"Jira Issue: {key}"]

    # Resource identifier namespace ---------------------------------------------
    def _shortcut(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        if element.get(_ri("key")) != "jira":
            return []
        parameter = (element.get(_ri("parameter")) or "").strip()
        if parameter:
            return [f"Jira Issue: {parameter}"]
        return ["Jira reference"]

    def _user(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        account_id = element.get(_ri("account-id"))
        user_key = element.get(_ri("userkey"))
        display_name = self.user_directory.lookup(account_id) or self.user_directory.lookup(user_key)
        if display_name:
            return [f"User: {display_name}"]
        if account_id:
            return [f"User ID: {account_id}"]
        if user_key:
            return [f"User Key: {user_key}"]
        return []

    def _page(self, element: ET.Element, parent: Optional[ET.Element], depth: int) -> List[str]:
        title = element.get(_ri("content-title"))
        page_id = element.get(_ri("content-id"))
        if title and page_id:
            return [f'Link to: "{title}" (Page ID: {page_id})']
        if title:
            return [f'Link to: "{title}"']
        if page_id:
            return [f"Link to page ID: {page_id}"]
        return ["Page link"]


def extract_markdown(markup: str, user_directory: UserDirectory | None = None) -> List[str]:
    """Convenience wrapper around :meth:`MarkdownExtractor.extract_markdown`."""

    return MarkdownExtractor(user_directory).extract_markdown(markup)
