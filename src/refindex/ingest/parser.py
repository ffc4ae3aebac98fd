"""HTML reference-page parser.

Turns one scripting-reference page into a SourceDocument. The page layout
it understands:

- ``div.content`` holds the page; its ``h1`` is the title and the first
  ``p`` after the ``h1`` names the construct ("class in UnityEngine").
- ``div.content > div.section`` holds the body. Its direct children are
  walked in order; a ``div.subsection`` with a direct ``h2``/``h3`` child
  starts a new named section, everything before the first one belongs to
  "Description". Blocks with class ``mb20`` (the inheritance/metadata
  strip) are skipped.
- Member tables (Properties, Public Methods, ...) are ``table`` rows whose
  first ``a`` is the member link and second ``td`` its summary.
- ``h2`` "Declaration" blocks are method overloads with a
  ``div.signature-CS`` signature, an ``h3`` "Description" and an ``h3``
  "Parameters" table.
- Code examples are ``pre.codeExampleCS``.

Missing optional parts yield empty collections; a page without a
``div.content`` or without a title raises ParseError.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import html2text
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from refindex.errors import ParseError
from refindex.ingest.document import (
    MEMBER_SECTIONS,
    CodeExample,
    DocumentationLink,
    LinkGroup,
    MethodOverload,
    ParameterInfo,
    SourceDocument,
)

DEFAULT_SECTION = "Description"

_KNOWN_CONSTRUCTS = {
    "class": "Class",
    "struct": "Struct",
    "enum": "Enum",
    "enumeration": "Enum",
    "interface": "Interface",
}

_EXCLUDED_SECTIONS = {s.lower() for s in (DEFAULT_SECTION, *MEMBER_SECTIONS)}


@dataclass
class _Section:
    name: str
    nodes: list[Tag | NavigableString] = field(default_factory=list)
    parts: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return "\n\n".join(p for p in self.parts if p).strip()


def _html_to_text(html: str) -> str:
    # HTML2Text instances are stateful parsers; one per call keeps threads apart.
    converter = html2text.HTML2Text()
    converter.ignore_links = True
    converter.ignore_images = True
    converter.ignore_emphasis = True
    converter.body_width = 0
    return converter.handle(html).strip()


def _clean(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return " ".join(text.split())


def _is_significant(node: object) -> bool:
    if isinstance(node, Comment):
        return False
    if isinstance(node, NavigableString):
        return bool(node.strip())
    return isinstance(node, Tag)


def _header_of(node: Tag | NavigableString) -> Tag | None:
    if isinstance(node, Tag) and node.name == "div" and "subsection" in (node.get("class") or []):
        return node.find(["h2", "h3"], recursive=False)
    return None


def _link(anchor: Tag, description: str = "") -> DocumentationLink:
    return DocumentationLink(
        title=_clean(anchor.get_text()),
        href=str(anchor.get("href", "")),
        description=description,
    )


class DocumentParser:
    """Parses reference pages with BeautifulSoup. Stateless and thread-safe."""

    def __init__(self, features: str = "html.parser") -> None:
        self.features = features

    def parse(self, path: Path | str) -> SourceDocument:
        """Parse the HTML file at *path*.

        Raises:
            ParseError: The file cannot be read or decoded, or the page has no
                content root or title.
        """
        try:
            html = Path(path).read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ParseError(str(path), str(exc)) from exc
        return self.parse_html(html, str(path))

    def parse_html(self, html: str, path: str = "") -> SourceDocument:
        """Parse an HTML string; *path* is recorded on the result and in errors."""
        soup = BeautifulSoup(html, self.features)
        content = soup.select_one("div.content")
        if content is None:
            raise ParseError(path, "no div.content element")
        heading = content.find("h1")
        title = _clean(heading.get_text()) if heading else ""
        if not title:
            raise ParseError(path, "page has no title")

        sections = self._extract_sections(content)
        overload_roots: list[Tag] = []
        overloads = self._extract_overloads(content, overload_roots)

        description = sections.get(DEFAULT_SECTION.lower())
        return SourceDocument(
            path=path,
            title=title,
            construct_type=self._construct_type(content, heading),
            description=description.content if description else "",
            inherits_from=self._link_following(soup, "Inherits from:"),
            implemented_in=self._link_following(soup, "Implemented in:"),
            interfaces=self._links_following(soup, "Implements interfaces:"),
            members={
                name: links
                for name in MEMBER_SECTIONS
                if (links := self._member_links(sections.get(name.lower())))
            },
            link_groups=self._link_groups(description),
            examples=self._section_examples(sections.values(), overload_roots),
            overloads=overloads,
            additional_sections={
                s.name: s.content
                for key, s in sections.items()
                if key not in _EXCLUDED_SECTIONS and s.content
            },
        )

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _extract_sections(self, content: Tag) -> dict[str, _Section]:
        """Split ``div.section`` children into sections keyed by lower-cased name.

        Repeated names (e.g. Properties under inherited members) are merged.
        """
        sections: dict[str, _Section] = {}
        root = content.select_one("div.section")
        if root is None:
            return sections

        current = _Section(DEFAULT_SECTION)
        for node in root.children:
            if not _is_significant(node):
                continue
            if isinstance(node, Tag) and "mb20" in (node.get("class") or []):
                continue

            header = _header_of(node)
            if header is not None:
                self._save(sections, current)
                current = _Section(_clean(header.get_text()) or "Untitled")

            current.nodes.append(node)
            if isinstance(node, NavigableString):
                current.parts.append(_clean(str(node)))
            elif header is not None:
                current.parts.append(
                    _html_to_text("".join(str(c) for c in node.children if c is not header))
                )
            else:
                current.parts.append(_html_to_text(str(node)))

        self._save(sections, current)
        return sections

    @staticmethod
    def _save(sections: dict[str, _Section], section: _Section) -> None:
        if not section.nodes or not section.content:
            return
        existing = sections.get(section.name.lower())
        if existing is None:
            sections[section.name.lower()] = section
        else:
            existing.nodes.extend(section.nodes)
            existing.parts.extend(section.parts)

    # ------------------------------------------------------------------
    # Header metadata
    # ------------------------------------------------------------------

    def _construct_type(self, content: Tag, heading: Tag | None) -> str:
        intro = heading.find_next_sibling("p") if heading is not None else None
        text = _clean(intro.get_text()) if intro is not None else ""
        if text:
            first = text.split(" ", 1)[0].lower()
            if first in _KNOWN_CONSTRUCTS:
                return _KNOWN_CONSTRUCTS[first]
            idx = text.find(" in ")
            return text[:idx].strip() if idx > 0 else text

        signature = content.select_one("div.signature-CS")
        if signature is not None:
            if self._declaration_headers(content):
                return "Method"
            sig_text = signature.get_text().strip()
            if sig_text.endswith(";") or "{" in sig_text:
                return "Property"
        return ""

    @staticmethod
    def _label_node(soup: BeautifulSoup, label: str) -> NavigableString | None:
        return soup.find(string=lambda s: s is not None and label in s)

    def _link_following(self, soup: BeautifulSoup, label: str) -> DocumentationLink | None:
        """Return the first element after the *label* text if it is a link."""
        node = self._label_node(soup, label)
        if node is None:
            return None
        sibling = node.find_next_sibling()
        if isinstance(sibling, Tag) and sibling.name == "a":
            return _link(sibling)
        return None

    def _links_following(self, soup: BeautifulSoup, label: str) -> list[DocumentationLink]:
        """Return the run of links after the *label* text, up to the first non-link element."""
        node = self._label_node(soup, label)
        if node is None:
            return []
        links: list[DocumentationLink] = []
        for sibling in node.next_siblings:
            if isinstance(sibling, Tag):
                if sibling.name != "a":
                    break
                links.append(_link(sibling))
        return links

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    @staticmethod
    def _member_links(section: _Section | None) -> list[DocumentationLink]:
        if section is None:
            return []
        table: Tag | None = None
        for node in section.nodes:
            if isinstance(node, Tag):
                table = node if node.name == "table" else node.find("table")
                if table is not None:
                    break
        if table is None:
            last = next((n for n in reversed(section.nodes) if isinstance(n, Tag)), None)
            table = last.find_next_sibling("table") if last is not None else None
        if table is None:
            return []

        links: list[DocumentationLink] = []
        for row in table.find_all("tr"):
            anchor = row.find("a")
            if anchor is None:
                continue
            cells = row.find_all("td")
            description = _clean(cells[1].get_text()) if len(cells) > 1 else ""
            links.append(_link(anchor, description))
        return links

    @staticmethod
    def _link_groups(section: _Section | None) -> list[LinkGroup]:
        if section is None:
            return []
        groups: list[LinkGroup] = []
        for node in section.nodes:
            if not isinstance(node, Tag):
                continue
            paragraphs = [node] if node.name == "p" else node.find_all("p")
            for paragraph in paragraphs:
                links = [
                    _link(a)
                    for a in paragraph.find_all("a")
                    if a.get("href") and not str(a.get("href")).startswith("#")
                ]
                if links:
                    groups.append(LinkGroup(context=_clean(paragraph.get_text()), links=links))
        return groups

    # ------------------------------------------------------------------
    # Overloads and examples
    # ------------------------------------------------------------------

    @staticmethod
    def _declaration_headers(content: Tag) -> list[Tag]:
        return [h for h in content.find_all("h2") if _clean(h.get_text()) == "Declaration"]

    def _extract_overloads(self, content: Tag, roots: list[Tag]) -> list[MethodOverload]:
        overloads: list[MethodOverload] = []
        for header in self._declaration_headers(content):
            method = header.parent
            signature = header.find_next_sibling("div", class_="signature-CS")
            roots.append(method)
            overloads.append(
                MethodOverload(
                    declaration=_clean(signature.get_text()) if signature else "",
                    description=self._overload_description(method),
                    parameters=self._parameters(method),
                    examples=[self._example(pre) for pre in method.select("pre.codeExampleCS")],
                )
            )
        return overloads

    @staticmethod
    def _overload_description(method: Tag) -> str:
        header = method.find(
            lambda t: t.name == "h3" and _clean(t.get_text()) == DEFAULT_SECTION
        )
        if header is None:
            return ""
        parts: list[str] = []
        for sibling in header.next_siblings:
            if not isinstance(sibling, Tag):
                continue
            if sibling.name in ("h2", "h3"):
                break
            is_block = sibling.name == "p" or (
                sibling.name == "div" and "subsection" not in (sibling.get("class") or [])
            )
            if is_block:
                parts.append(_clean(sibling.get_text()))
        return "\n".join(p for p in parts if p)

    @staticmethod
    def _parameters(method: Tag) -> list[ParameterInfo]:
        header = method.find(lambda t: t.name == "h3" and _clean(t.get_text()) == "Parameters")
        table = header.find_next_sibling("table") if header is not None else None
        if table is None:
            return []
        params: list[ParameterInfo] = []
        for row in table.find_all("tr"):
            cells = row.find_all("td", recursive=False)
            if len(cells) >= 2:
                params.append(
                    ParameterInfo(name=_clean(cells[0].get_text()), description=_clean(cells[1].get_text()))
                )
        return params

    def _section_examples(
        self, sections: Iterable[_Section], overload_roots: list[Tag]
    ) -> list[CodeExample]:
        """Examples under the page sections that do not belong to an overload block."""
        seen: set[int] = set()
        examples: list[CodeExample] = []
        for section in sections:
            for node in section.nodes:
                if not isinstance(node, Tag):
                    continue
                candidates = node.select("pre.codeExampleCS")
                if node.name == "pre" and "codeExampleCS" in (node.get("class") or []):
                    candidates.insert(0, node)
                for pre in candidates:
                    if id(pre) in seen or self._inside(pre, overload_roots):
                        continue
                    seen.add(id(pre))
                    examples.append(self._example(pre))
        return examples

    @staticmethod
    def _inside(node: Tag, roots: list[Tag]) -> bool:
        # Tag equality compares markup, so match overload blocks by identity.
        root_ids = {id(r) for r in roots}
        return any(id(parent) in root_ids for parent in node.parents)

    @staticmethod
    def _example(pre: Tag) -> CodeExample:
        description = ""
        for anchor in (pre.parent, pre):
            if anchor is None:
                continue
            previous = anchor.find_previous_sibling()
            if isinstance(previous, Tag) and previous.name == "p":
                description = _clean(previous.get_text())
                break
        return CodeExample(code=pre.get_text().strip(), description=description)
