"""
Chunker — splits raw text, code and regulation documents into bounded,
metadata-tagged Chunk objects ready for embedding.

Strategies:
  - FixedStrategy        → sliding window with overlap, exact coverage
  - SemanticStrategy     → paragraph packing (an oversize paragraph stays whole)
  - CodeStrategy         → top-level declarations + brace depth, size cutoff
  - RequirementStrategy  → one chunk per numbered / bolded section

Every strategy is deterministic: no randomness, no external calls.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Union

from pydantic import BaseModel, Field, model_validator

from compliance_swarm.models.enums import ContentType
from compliance_swarm.models.schemas import Chunk, ChunkMetadata

logger = logging.getLogger(__name__)

_PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
_DECLARATION = re.compile(
    r"^(?:export\s+)?(?:async\s+)?(?:def|class|function|const|let|var)\s+"
)
_SECTION_MARKER = re.compile(
    r"(?m)(?=^[ \t]*(?:\d+(?:\.\d+)*\.\s+|\*\*[A-Z][^*\n]*\*\*))"
)


# ── Strategy parameters ──────────────────────────────────


class FixedStrategy(BaseModel):
    size: int = Field(default=1000, gt=0)
    overlap: int = Field(default=200, ge=0)

    @model_validator(mode="after")
    def _overlap_smaller_than_size(self) -> "FixedStrategy":
        if self.overlap >= self.size:
            raise ValueError(f"overlap ({self.overlap}) must be smaller than size ({self.size})")
        return self


class SemanticStrategy(BaseModel):
    max_size: int = Field(default=1000, gt=0)


class CodeStrategy(BaseModel):
    max_size: int = Field(default=1500, gt=0)


class RequirementStrategy(BaseModel):
    code: str
    framework: str


Strategy = Union[FixedStrategy, SemanticStrategy, CodeStrategy, RequirementStrategy]


class DocumentMetadata(BaseModel):
    """Metadata describing the parent document being chunked."""

    source: str
    type: ContentType = ContentType.DOCUMENTATION
    framework: Optional[str] = None
    requirement_code: Optional[str] = None
    file_path: Optional[str] = None


# ── Public entry point ───────────────────────────────────


def chunk(content: str, metadata: DocumentMetadata, strategy: Strategy) -> list[Chunk]:
    """Split *content* according to *strategy* and tag every piece."""
    if isinstance(strategy, FixedStrategy):
        pieces = [(p, None) for p in split_fixed(content, strategy.size, strategy.overlap)]
    elif isinstance(strategy, SemanticStrategy):
        pieces = [(p, None) for p in split_semantic(content, strategy.max_size)]
    elif isinstance(strategy, CodeStrategy):
        pieces = split_code(content, strategy.max_size)
    elif isinstance(strategy, RequirementStrategy):
        return _requirement_chunks(content, metadata, strategy)
    else:
        raise TypeError(f"Unknown chunking strategy: {type(strategy).__name__}")

    total = len(pieces)
    chunks = [
        Chunk(
            id=f"{metadata.source}-chunk-{i}",
            content=text,
            metadata=ChunkMetadata(
                source=metadata.source,
                type=metadata.type,
                framework=metadata.framework,
                requirement_code=metadata.requirement_code,
                file_path=metadata.file_path,
                line_number=line,
                chunk_index=i,
                total_chunks=total,
            ),
        )
        for i, (text, line) in enumerate(pieces)
    ]
    logger.debug(
        f"[Chunker] {metadata.source}: {total} chunks via {type(strategy).__name__}"
    )
    return chunks


# ── Strategies ───────────────────────────────────────────


def split_fixed(text: str, size: int = 1000, overlap: int = 200) -> list[str]:
    """
    Sliding window.  Consecutive windows share exactly *overlap* characters,
    so dropping the first *overlap* characters of every window after the
    first and concatenating gives back *text* unchanged.
    """
    if overlap >= size:
        raise ValueError("overlap must be smaller than size")
    pieces: list[str] = []
    start = 0
    while start < len(text):
        end = min(start + size, len(text))
        pieces.append(text[start:end])
        if end == len(text):
            break
        start = end - overlap
    return pieces


def split_semantic(text: str, max_size: int = 1000) -> list[str]:
    """Greedily pack blank-line separated paragraphs up to *max_size*."""
    pieces: list[str] = []
    current = ""
    for paragraph in _PARAGRAPH_BREAK.split(text):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) > max_size:
            logger.debug(
                f"[Chunker] Paragraph of {len(paragraph)} chars exceeds max_size={max_size}; kept whole"
            )
        if current and len(current) + 2 + len(paragraph) > max_size:
            pieces.append(current)
            current = paragraph
        else:
            current = f"{current}\n\n{paragraph}" if current else paragraph
    if current:
        pieces.append(current)
    return pieces


def split_code(code: str, max_size: int = 1500) -> list[tuple[str, int]]:
    """
    Line-based split returning (content, first_line) pairs.

    A new chunk starts at every top-level declaration (brace depth 0) unless
    the current chunk is empty, and whenever the next line would push it
    past *max_size*.  A single line longer than *max_size* ends up
    alone in its own chunk.
    """
    pieces: list[tuple[str, int]] = []
    current: list[str] = []
    current_len = 0
    first_line = 1
    depth = 0

    def flush() -> None:
        body = "\n".join(current)
        if body.strip():
            pieces.append((body, first_line))

    for lineno, line in enumerate(code.split("\n"), start=1):
        line_len = len(line) + 1
        at_boundary = depth == 0 and _DECLARATION.match(line) is not None
        if current and (at_boundary or current_len + line_len > max_size):
            flush()
            current, current_len, first_line = [], 0, lineno
        current.append(line)
        current_len += line_len
        depth = max(depth + line.count("{") - line.count("}"), 0)

    if current:
        flush()
    return pieces


def split_requirement_sections(text: str) -> list[str]:
    """Split regulation text at numbered-section or **HEADING** markers."""
    return [s.strip() for s in _SECTION_MARKER.split(text) if s.strip()]


def _requirement_chunks(
    content: str, metadata: DocumentMetadata, strategy: RequirementStrategy
) -> list[Chunk]:
    sections = split_requirement_sections(content)
    total = len(sections)
    return [
        Chunk(
            id=f"{strategy.framework}-{strategy.code}-chunk-{i}",
            content=section,
            metadata=ChunkMetadata(
                source=metadata.source,
                type=ContentType.REQUIREMENT,
                framework=strategy.framework,
                requirement_code=strategy.code,
                file_path=metadata.file_path,
                chunk_index=i,
                total_chunks=total,
            ),
        )
        for i, section in enumerate(sections)
    ]
