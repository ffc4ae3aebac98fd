"""Section-aware chunker for parsed reference pages.

Every named section of a SourceDocument is chunked on its own; chunk
indices run sequentially across the whole document. Prose is split at
sentence boundaries with a character overlap, code at line boundaries with
a line overlap. Offsets are positions in the section text a chunk came from.
"""

from __future__ import annotations

from typing import NamedTuple

from refindex.config import ChunkingCfg
from refindex.ingest.document import (
    MEMBER_SECTIONS,
    CodeExample,
    DocumentChunk,
    SourceDocument,
)

OVERVIEW_SECTION = "Overview"
EXAMPLES_SECTION = "Examples"
OVERLOAD_DESCRIPTION_SECTION = "MethodOverload.Description"
OVERLOAD_PARAMETER_SECTION = "MethodOverload.Parameter"

_SENTENCE_ENDS = ".!?"
_CODE_BREAKS = ("}", "};")


class Span(NamedTuple):
    text: str
    start: int
    end: int


def split_text(text: str, max_chars: int, overlap_chars: int) -> list[Span]:
    """Split prose into windows of at most *max_chars* characters.

    A window that does not reach the end of *text* is cut just after the
    last ``.``, ``!`` or ``?`` inside it, provided that lies after the
    window start; otherwise it is cut at *max_chars*. The next window starts
    ``overlap_chars`` before the cut, and always at least one character
    after the previous start.
    """
    if not text or not text.strip():
        return []
    if len(text) <= max_chars:
        return [Span(text, 0, len(text))]

    spans: list[Span] = []
    start = 0
    length = len(text)
    while start < length:
        end = min(start + max_chars, length)
        if end < length:
            boundary = max(text.rfind(ch, start, end) for ch in _SENTENCE_ENDS)
            if boundary > start:
                end = boundary + 1
        piece = text[start:end].strip()
        if piece:
            spans.append(Span(piece, start, end))
        if end >= length:
            break
        start = max(start + 1, end - overlap_chars)
    return spans


def split_code(
    code: str, max_chars: int, overlap_lines: int = 3, lookback_lines: int = 5
) -> list[Span]:
    """Split source code at line granularity.

    Lines are packed until the next one would exceed *max_chars*. If more
    code follows, the cut moves back (at most *lookback_lines* lines) to a
    blank line or a line that is only ``}`` / ``};``. Consecutive windows
    share *overlap_lines* whole lines.
    """
    if not code or not code.strip():
        return []
    if len(code) <= max_chars:
        return [Span(code, 0, len(code))]

    lines = code.split("\n")
    offsets = [0]
    for line in lines[:-1]:
        offsets.append(offsets[-1] + len(line) + 1)

    spans: list[Span] = []
    current = 0
    last = len(lines) - 1
    while current <= last:
        size = 0
        end_line = current
        for i in range(current, len(lines)):
            if size > 0 and size + len(lines[i]) + 1 > max_chars:
                break
            size += len(lines[i]) + 1
            end_line = i

        final_end = end_line
        if end_line < last:
            for i in range(end_line, max(current, end_line - lookback_lines), -1):
                stripped = lines[i].strip()
                if stripped in _CODE_BREAKS or not stripped:
                    final_end = i
                    break

        start_pos = offsets[current]
        end_pos = offsets[final_end] + len(lines[final_end])
        piece = "\n".join(lines[current : final_end + 1]).rstrip()
        if piece.strip() and end_pos > start_pos:
            spans.append(Span(piece, start_pos, end_pos))
        if final_end >= last:
            break
        current = max(current + 1, final_end + 1 - overlap_lines)
    return spans


class DocumentChunker:
    """Deterministic chunker: the same document always yields the same chunks.

    Token counting uses a chars-per-token approximation; no external
    tokenizer dependency is required.
    """

    def __init__(
        self,
        max_tokens: int = 250,
        chars_per_token: int = 4,
        overlap_tokens: int = 50,
        code_overlap_lines: int = 3,
        code_lookback_lines: int = 5,
    ) -> None:
        if max_tokens < 1 or chars_per_token < 1:
            raise ValueError("max_tokens and chars_per_token must be >= 1")
        if not 0 <= overlap_tokens < max_tokens:
            raise ValueError("overlap_tokens must be in [0, max_tokens)")
        self.chars_per_token = chars_per_token
        self.max_chars = max_tokens * chars_per_token
        self.overlap_chars = overlap_tokens * chars_per_token
        self.code_overlap_lines = code_overlap_lines
        self.code_lookback_lines = code_lookback_lines

    @classmethod
    def from_config(cls, cfg: ChunkingCfg) -> DocumentChunker:
        return cls(
            max_tokens=cfg.max_tokens,
            chars_per_token=cfg.chars_per_token,
            overlap_tokens=cfg.overlap_tokens,
            code_overlap_lines=cfg.code_overlap_lines,
            code_lookback_lines=cfg.code_lookback_lines,
        )

    def count_tokens(self, text: str) -> int:
        """Approximate token count at ``chars_per_token`` characters per token."""
        return max(1, len(text) // self.chars_per_token)

    def chunk(self, doc: SourceDocument) -> list[DocumentChunk]:
        """Return the ordered chunks of *doc*; empty if nothing is indexable."""
        chunks: list[DocumentChunk] = []

        self._add_text(chunks, doc.title, doc.description, OVERVIEW_SECTION)
        for section in MEMBER_SECTIONS:
            for link in doc.member_links(section):
                self._add_text(chunks, link.title, link.description, section)
        self._add_examples(chunks, EXAMPLES_SECTION, doc.examples)
        for overload in doc.overloads:
            self._add_text(
                chunks, overload.declaration, overload.description, OVERLOAD_DESCRIPTION_SECTION
            )
            self._add_examples(chunks, f"MethodOverload.{overload.declaration}", overload.examples)
            for param in overload.parameters:
                self._add_text(chunks, param.name, param.description, OVERLOAD_PARAMETER_SECTION)
        for name, text in doc.additional_sections.items():
            self._add_text(chunks, name, text, name)

        return chunks

    # ------------------------------------------------------------------
    # Section helpers
    # ------------------------------------------------------------------

    def _add_text(self, chunks: list[DocumentChunk], title: str, text: str, section: str) -> None:
        for span in split_text(text, self.max_chars, self.overlap_chars):
            chunks.append(
                DocumentChunk(
                    index=len(chunks),
                    title=title,
                    section=section,
                    text=span.text,
                    start=span.start,
                    end=span.end,
                )
            )

    def _add_examples(
        self, chunks: list[DocumentChunk], section: str, examples: list[CodeExample]
    ) -> None:
        for example in examples:
            description = example.description.strip()
            combined = f"{description}\n\n{example.code}" if description else example.code
            if not combined.strip():
                continue
            if len(combined) <= self.max_chars:
                spans = [Span(combined, 0, len(combined))]
            else:
                spans = split_code(
                    example.code,
                    self.max_chars,
                    self.code_overlap_lines,
                    self.code_lookback_lines,
                )
            for span in spans:
                chunks.append(
                    DocumentChunk(
                        index=len(chunks),
                        title=description,
                        section=section,
                        text=span.text,
                        start=span.start,
                        end=span.end,
                    )
                )
