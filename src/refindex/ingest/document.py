"""In-memory models produced by the parser and chunker. Never persisted directly."""

from __future__ import annotations

from dataclasses import dataclass, field

# Member-table sections, in the order they are chunked.
MEMBER_SECTIONS: tuple[str, ...] = (
    "Properties",
    "Public Methods",
    "Static Methods",
    "Messages",
    "Inherited Properties",
    "Inherited Public Methods",
    "Inherited Static Methods",
    "Inherited Operators",
)


@dataclass
class DocumentationLink:
    title: str
    href: str
    description: str = ""


@dataclass
class LinkGroup:
    """Links found in one description paragraph; *context* is the paragraph text."""

    context: str
    links: list[DocumentationLink] = field(default_factory=list)


@dataclass
class CodeExample:
    code: str
    description: str = ""
    language: str = "csharp"


@dataclass
class ParameterInfo:
    name: str
    description: str


@dataclass
class MethodOverload:
    declaration: str
    description: str = ""
    parameters: list[ParameterInfo] = field(default_factory=list)
    examples: list[CodeExample] = field(default_factory=list)


@dataclass
class SourceDocument:
    """Structured content extracted from one HTML reference page."""

    path: str
    title: str
    construct_type: str = ""
    description: str = ""
    inherits_from: DocumentationLink | None = None
    implemented_in: DocumentationLink | None = None
    interfaces: list[DocumentationLink] = field(default_factory=list)
    members: dict[str, list[DocumentationLink]] = field(default_factory=dict)
    link_groups: list[LinkGroup] = field(default_factory=list)
    examples: list[CodeExample] = field(default_factory=list)
    overloads: list[MethodOverload] = field(default_factory=list)
    additional_sections: dict[str, str] = field(default_factory=dict)

    def member_links(self, section: str) -> list[DocumentationLink]:
        return self.members.get(section, [])

    @property
    def has_content(self) -> bool:
        return bool(
            self.description
            or any(self.members.values())
            or self.examples
            or self.overloads
            or self.additional_sections
        )


@dataclass
class DocumentChunk:
    """One bounded piece of a section.

    ``start``/``end`` are offsets into the originating section text.
    """

    index: int
    title: str
    section: str
    text: str
    start: int
    end: int
    embedding: list[float] | None = None
