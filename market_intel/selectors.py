"""
HTML selector strategies used by the content extractor.

A selector engine answers ``find_first`` / ``find_all`` for a CSS-style
selector over raw HTML. Comma-separated alternatives are tried in order
and the first alternative that matches anything wins.

Two engines ship:
- SoupSelector: BeautifulSoup + lxml, full CSS selector support.
- PatternSelector: a regex matcher over raw markup understanding tag,
  ``.class``, ``#id`` and ``[attr]`` / ``[attr="v"]`` / ``[attr*="v"]``.
  It does not model nesting: only the last compound of a descendant
  selector is matched and element text runs to the next closing tag.
"""

import html as html_lib
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

logger = logging.getLogger(__name__)


@dataclass
class MatchedElement:
    """Engine-neutral view of one matched element."""
    tag: str
    text: str = ""
    attrs: Dict[str, str] = field(default_factory=dict)

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attrs.get(name, default)


class SelectorEngine(Protocol):
    def find_first(self, html: str, selector: str) -> Optional[MatchedElement]:
        ...

    def find_all(self, html: str, selector: str) -> List[MatchedElement]:
        ...

    def text(self, html: str) -> str:
        ...


def split_alternatives(selector: str) -> List[str]:
    """Split a selector list on top-level commas (ignoring commas in [...] or quotes)."""
    parts = []
    depth = 0
    quote = None
    current = []
    for ch in selector:
        if quote:
            if ch == quote:
                quote = None
        elif ch in "\"'":
            quote = ch
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    parts.append("".join(current).strip())
    return [p for p in parts if p]


class SoupSelector:
    """BeautifulSoup-backed selector engine."""

    def __init__(self, parser: str = "lxml"):
        self.parser = parser
        self._last_html: Optional[str] = None
        self._last_soup: Optional[BeautifulSoup] = None

    def _soup(self, html: str) -> BeautifulSoup:
        # Extraction runs many selectors over the same page
        if self._last_soup is None or html is not self._last_html:
            self._last_soup = BeautifulSoup(html or "", self.parser)
            self._last_html = html
        return self._last_soup

    @staticmethod
    def _to_element(tag) -> MatchedElement:
        attrs = {}
        for name, value in tag.attrs.items():
            attrs[name] = " ".join(value) if isinstance(value, list) else str(value)
        return MatchedElement(tag=tag.name, text=tag.get_text(" ", strip=True), attrs=attrs)

    def find_all(self, html: str, selector: str) -> List[MatchedElement]:
        soup = self._soup(html)
        for alternative in split_alternatives(selector):
            try:
                found = soup.select(alternative)
            except SelectorSyntaxError:
                logger.debug(f"Invalid selector skipped: {alternative}")
                continue
            if found:
                return [self._to_element(tag) for tag in found]
        return []

    def find_first(self, html: str, selector: str) -> Optional[MatchedElement]:
        matches = self.find_all(html, selector)
        return matches[0] if matches else None

    def text(self, html: str) -> str:
        """Visible text of the whole document."""
        soup = self._soup(html)
        return WHITESPACE_PATTERN.sub(" ", soup.get_text(" ")).strip()


# ---------------------------------------------------------------------------
# Regex engine
# ---------------------------------------------------------------------------

OPEN_TAG_PATTERN = re.compile(r"<([a-zA-Z][a-zA-Z0-9-]*)(\s[^<>]*)?/?>")
ATTR_PATTERN = re.compile(
    r"""([a-zA-Z_:][-a-zA-Z0-9_:.]*)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+)))?"""
)
COMPOUND_PATTERN = re.compile(
    r"""^(?P<tag>[a-zA-Z][a-zA-Z0-9-]*|\*)?(?P<rest>(?:[.#][-\w]+|\[[^\]]+\])*)$"""
)
PART_PATTERN = re.compile(r"""([.#])([-\w]+)|\[\s*([-\w:]+)\s*(?:([*^$]?=)\s*["']?([^"'\]]*)["']?)?\s*\]""")
TAG_STRIP_PATTERN = re.compile(r"<[^>]+>")
WHITESPACE_PATTERN = re.compile(r"\s+")

VOID_TAGS = {"img", "br", "hr", "input", "meta", "link", "source", "area", "base", "col", "embed", "wbr"}


@dataclass
class _Compound:
    tag: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    element_id: Optional[str] = None
    attrs: List[tuple] = field(default_factory=list)  # (name, op, value)


def _parse_compound(selector: str) -> Optional[_Compound]:
    # Descendant selectors: only the rightmost compound is matched
    last = selector.split()[-1] if selector.split() else ""
    match = COMPOUND_PATTERN.match(last)
    if not match or not last:
        return None

    compound = _Compound()
    tag = match.group("tag")
    if tag and tag != "*":
        compound.tag = tag.lower()

    for part in PART_PATTERN.finditer(match.group("rest") or ""):
        kind, name, attr, op, value = part.groups()
        if kind == ".":
            compound.classes.append(name)
        elif kind == "#":
            compound.element_id = name
        elif attr:
            compound.attrs.append((attr.lower(), op, value))
    return compound


def _parse_attrs(raw: str) -> Dict[str, str]:
    attrs = {}
    for m in ATTR_PATTERN.finditer(raw or ""):
        name = m.group(1).lower()
        value = next((v for v in m.group(2, 3, 4) if v is not None), "")
        attrs[name] = html_lib.unescape(value)
    return attrs


def _matches(compound: _Compound, tag: str, attrs: Dict[str, str]) -> bool:
    if compound.tag and compound.tag != tag:
        return False
    class_attr = attrs.get("class", "")
    for cls in compound.classes:
        if cls not in class_attr:
            return False
    if compound.element_id and compound.element_id not in attrs.get("id", ""):
        return False
    for name, op, value in compound.attrs:
        if name not in attrs:
            return False
        actual = attrs[name]
        if op == "=" and actual != value:
            return False
        if op == "*=" and value not in actual:
            return False
        if op == "^=" and not actual.startswith(value):
            return False
        if op == "$=" and not actual.endswith(value):
            return False
    return True


class PatternSelector:
    """Regex selector engine over raw markup."""

    def find_all(self, html: str, selector: str) -> List[MatchedElement]:
        html = html or ""
        for alternative in split_alternatives(selector):
            compound = _parse_compound(alternative)
            if compound is None:
                logger.debug(f"Unsupported selector skipped: {alternative}")
                continue

            found = []
            for m in OPEN_TAG_PATTERN.finditer(html):
                tag = m.group(1).lower()
                attrs = _parse_attrs(m.group(2))
                if not _matches(compound, tag, attrs):
                    continue
                found.append(MatchedElement(tag=tag, text=self._text_after(html, tag, m.end()), attrs=attrs))

            if found:
                return found
        return []

    def find_first(self, html: str, selector: str) -> Optional[MatchedElement]:
        matches = self.find_all(html, selector)
        return matches[0] if matches else None

    def text(self, html: str) -> str:
        text = TAG_STRIP_PATTERN.sub(" ", html or "")
        return WHITESPACE_PATTERN.sub(" ", html_lib.unescape(text)).strip()

    @staticmethod
    def _text_after(html: str, tag: str, start: int) -> str:
        if tag in VOID_TAGS:
            return ""
        close = re.compile(f"</{re.escape(tag)}", re.IGNORECASE).search(html, start)
        inner = html[start:close.start()] if close else html[start:start + 500]
        text = TAG_STRIP_PATTERN.sub(" ", inner)
        return WHITESPACE_PATTERN.sub(" ", html_lib.unescape(text)).strip()
