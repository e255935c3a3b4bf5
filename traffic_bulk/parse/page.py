"""Rendered page snapshot shared by the extraction strategies."""
import re
from dataclasses import dataclass, field
from typing import Optional

from selectolax.parser import HTMLParser, Node

NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]

_WS_RE = re.compile(r"\s+")


def node_text(node: Optional[Node]) -> str:
    """Visible text of a node with text nodes joined by single spaces."""
    if node is None:
        return ""
    return _WS_RE.sub(" ", node.text(deep=True, separator=" ", strip=True)).strip()


@dataclass
class RenderedPage:
    """
    HTML captured from a browser after the results signalled readiness.

    ``ready`` is False when none of the readiness selectors ever matched, which
    lets the engine tell a timed-out page from a page with unparseable data.
    """

    url: str
    html: str
    ready: bool = True
    _tree: Optional[HTMLParser] = field(default=None, init=False, repr=False)
    _text: Optional[str] = field(default=None, init=False, repr=False)

    @property
    def tree(self) -> HTMLParser:
        """Parsed DOM (scripts kept; use ``text`` for visible content)."""
        if self._tree is None:
            self._tree = HTMLParser(self.html or "")
        return self._tree

    @property
    def text(self) -> str:
        """Visible body text, scripts and styles removed."""
        if self._text is None:
            parser = HTMLParser(self.html or "")
            parser.strip_tags(NON_CONTENT_TAGS)
            root = parser.body or parser.root
            self._text = node_text(root)
        return self._text

    @classmethod
    def fragment(cls, html: str, url: str = "") -> "RenderedPage":
        """Wrap a sub-tree (e.g. one result card) as its own page."""
        return cls(url=url, html=html, ready=True)
