"""
Streaming HTML element rewriter.

``ElementRewriter`` walks markup with the tolerant tokenizer from
``html.parser`` and calls the handlers registered for a tag name once per
start tag, without building a document tree. Handlers change attributes
through an ``Element``; only start tags whose attributes actually changed
are re-serialized, every other character of the input is copied through
as it was received. Memory use is bounded by the tokenizer's unconsumed
tail rather than by the size of the document.
"""

import html
import logging
import re
from html.parser import HTMLParser
from typing import Callable, Dict, List, Optional, Tuple

from rewriting_proxy.proxy.url_codec import TargetDescriptor, rewrite_reference

logger = logging.getLogger("uvicorn.error")

_TAG_NAME = re.compile(r"<\s*([^\s/>]+)")

# (tag, attribute) pairs holding a URL
REWRITE_RULES: Tuple[Tuple[str, str], ...] = (
    ("a", "href"),
    ("img", "src"),
    ("link", "href"),
    ("script", "src"),
    ("form", "action"),
    ("base", "href"),
)


class Element:
    """A start tag as seen by an element handler."""

    def __init__(self, tag_name: str, attrs: List[Tuple[str, Optional[str]]]):
        self.tag_name = tag_name
        self._attrs = [list(attr) for attr in attrs]
        self.modified = False

    @property
    def attributes(self) -> List[Tuple[str, Optional[str]]]:
        return [(name, value) for name, value in self._attrs]

    def has_attribute(self, name: str) -> bool:
        name = name.lower()
        return any(attr[0] == name for attr in self._attrs)

    def get_attribute(self, name: str) -> Optional[str]:
        name = name.lower()
        for attr_name, value in self._attrs:
            if attr_name == name:
                return value
        return None

    def set_attribute(self, name: str, value: str) -> None:
        name = name.lower()
        for attr in self._attrs:
            if attr[0] == name:
                if attr[1] != value:
                    attr[1] = value
                    self.modified = True
                return
        self._attrs.append([name, value])
        self.modified = True

    def render(self, raw: str) -> str:
        """Serialize the tag, keeping the tag name spelling and self-closing form of ``raw``."""
        match = _TAG_NAME.match(raw)
        parts = ["<", match.group(1) if match else self.tag_name]
        for name, value in self._attrs:
            if value is None:
                parts.append(f" {name}")
            else:
                parts.append(f' {name}="{html.escape(value, quote=True)}"')
        parts.append("/>" if raw.rstrip().endswith("/>") else ">")
        return "".join(parts)


ElementHandler = Callable[[Element], None]


class ElementRewriter(HTMLParser):
    """
    Streaming start-tag visitor with per-tag-name callbacks.

    Usage::

        rewriter = ElementRewriter().on("a", handle_link)
        out = rewriter.feed(chunk)  # repeat per chunk
        out += rewriter.close()
    """

    def __init__(self):
        super().__init__(convert_charrefs=False)
        self._handlers: Dict[str, List[ElementHandler]] = {}
        self._output: List[str] = []
        # Text received but not yet discarded, and its stream offset
        self._buffer = ""
        self._buffer_start = 0
        self._received = 0
        # Everything before the cursor has been emitted or replaced
        self._cursor = 0
        self._lineno = 1
        self._line_start = 0
        # Set once the tokenizer fails; the rest of the stream is copied as is
        self._gave_up = False

    def on(self, tag_name: str, handler: ElementHandler) -> "ElementRewriter":
        self._handlers.setdefault(tag_name.lower(), []).append(handler)
        return self

    def feed(self, data: str) -> str:
        """Tokenize ``data`` and return the output that is final so far."""
        self._buffer += data
        self._received += len(data)
        if self._gave_up:
            self._emit_until(self._received)
        else:
            try:
                super().feed(data)
                # The tokenizer keeps an incomplete trailing construct in rawdata
                self._emit_until(self._received - len(self.rawdata))
            except AssertionError as e:
                self._give_up(e)
        self._discard_emitted()
        return self._drain()

    def close(self) -> str:
        """Flush the tokenizer and return the remaining output."""
        if not self._gave_up:
            try:
                super().close()
            except AssertionError as e:
                self._give_up(e)
        self._emit_until(self._received)
        self._discard_emitted()
        return self._drain()

    def parse_html_declaration(self, i):
        try:
            return super().parse_html_declaration(i)
        except AssertionError:
            # Unknown marked sections such as <![foo[ ... ]]> are skipped
            # like any other bogus comment
            return self.parse_bogus_comment(i)

    def _give_up(self, error: AssertionError) -> None:
        logger.warning(
            f"[Rewrite] Tokenizer stopped at offset {self._cursor}, "
            f"copying the rest unchanged: {error}"
        )
        self._gave_up = True
        self.rawdata = ""
        self._emit_until(self._received)

    def handle_starttag(self, tag, attrs):
        handlers = self._handlers.get(tag)
        if not handlers:
            return

        element = Element(tag, attrs)
        for handler in handlers:
            handler(element)
        if not element.modified:
            return

        raw = self.get_starttag_text()
        start = self._absolute_offset(*self.getpos())
        self._emit_until(start)
        self._output.append(element.render(raw))
        self._advance(self._slice(start, start + len(raw)))

    def _drain(self) -> str:
        out = "".join(self._output)
        self._output = []
        return out

    def _slice(self, start: int, end: int) -> str:
        return self._buffer[start - self._buffer_start:end - self._buffer_start]

    def _emit_until(self, position: int) -> None:
        if position <= self._cursor:
            return
        chunk = self._slice(self._cursor, position)
        self._output.append(chunk)
        self._advance(chunk)

    def _advance(self, chunk: str) -> None:
        newlines = chunk.count("\n")
        if newlines:
            self._lineno += newlines
            self._line_start = self._cursor + chunk.rfind("\n") + 1
        self._cursor += len(chunk)

    def _discard_emitted(self) -> None:
        self._buffer = self._buffer[self._cursor - self._buffer_start:]
        self._buffer_start = self._cursor

    def _absolute_offset(self, lineno: int, offset: int) -> int:
        """Map the tokenizer's (line, column) position to a stream offset."""
        line_start = self._line_start
        if lineno > self._lineno:
            index = self._cursor - self._buffer_start - 1
            for _ in range(lineno - self._lineno):
                index = self._buffer.index("\n", index + 1)
            line_start = self._buffer_start + index + 1
        return line_start + offset


def rewrite_refresh_content(content: Optional[str], target: TargetDescriptor) -> Optional[str]:
    """
    Rewrite a ``<seconds>;url=<url>`` meta refresh directive.

    Only the exact two-part shape is touched; anything else is returned as is.
    """
    if not content:
        return content
    parts = content.split(";")
    if len(parts) != 2:
        return content
    delay, url_part = parts
    url_part = url_part.strip()
    if not url_part.lower().startswith("url="):
        return content
    return f"{delay}; url={rewrite_reference(url_part[4:], target)}"


def _attribute_handler(attribute: str, target: TargetDescriptor) -> ElementHandler:
    def handler(element: Element) -> None:
        value = element.get_attribute(attribute)
        if value:
            element.set_attribute(attribute, rewrite_reference(value, target))

    return handler


def _meta_refresh_handler(target: TargetDescriptor) -> ElementHandler:
    def handler(element: Element) -> None:
        http_equiv = element.get_attribute("http-equiv")
        if not http_equiv or http_equiv.strip().lower() != "refresh":
            return
        content = element.get_attribute("content")
        rewritten = rewrite_refresh_content(content, target)
        if rewritten != content:
            element.set_attribute("content", rewritten)

    return handler


def build_element_rewriter(target: TargetDescriptor) -> ElementRewriter:
    """An ElementRewriter with the URL rewrite rules for ``target`` registered."""
    rewriter = ElementRewriter()
    for tag, attribute in REWRITE_RULES:
        rewriter.on(tag, _attribute_handler(attribute, target))
    rewriter.on("meta", _meta_refresh_handler(target))
    return rewriter


def rewrite_html(markup: str, target: TargetDescriptor) -> str:
    """Rewrite every URL-bearing attribute in ``markup`` into a proxy path."""
    rewriter = build_element_rewriter(target)
    rewritten = rewriter.feed(markup) + rewriter.close()
    logger.debug(f"[Rewrite] Element pass done for {target.url}")
    return rewritten
