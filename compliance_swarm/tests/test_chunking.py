"""
Tests: Chunker strategies.

Run with:
    pytest compliance_swarm/tests/test_chunking.py -v
"""

import pytest

from compliance_swarm.models.enums import ContentType
from compliance_swarm.rag.chunking import (
    CodeStrategy,
    DocumentMetadata,
    FixedStrategy,
    RequirementStrategy,
    SemanticStrategy,
    chunk,
    split_code,
    split_requirement_sections,
)


def _meta(source: str = "doc") -> DocumentMetadata:
    return DocumentMetadata(source=source, type=ContentType.DOCUMENTATION)


class TestFixedStrategy:
    def test_reconstructs_original_text(self):
        text = "".join(chr(ord("a") + i % 26) for i in range(2537))
        chunks = chunk(text, _meta(), FixedStrategy(size=500, overlap=120))

        rebuilt = chunks[0].content + "".join(c.content[120:] for c in chunks[1:])
        assert rebuilt == text

    def test_indices_are_dense_and_ids_follow_source(self):
        chunks = chunk("x" * 2300, _meta("readme"), FixedStrategy(size=1000, overlap=200))

        assert [c.metadata.chunk_index for c in chunks] == list(range(len(chunks)))
        assert all(c.metadata.total_chunks == len(chunks) for c in chunks)
        assert chunks[0].id == "readme-chunk-0"
        assert all(len(c.content) <= 1000 for c in chunks)

    def test_short_text_is_one_chunk(self):
        chunks = chunk("tiny", _meta(), FixedStrategy())
        assert len(chunks) == 1
        assert chunks[0].content == "tiny"

    def test_empty_text_has_no_chunks(self):
        assert chunk("", _meta(), FixedStrategy()) == []

    def test_overlap_must_be_smaller_than_size(self):
        with pytest.raises(ValueError):
            FixedStrategy(size=100, overlap=100)


class TestSemanticStrategy:
    def test_packs_paragraphs_up_to_max_size(self):
        text = "\n\n".join(["a" * 40, "b" * 40, "c" * 40])
        chunks = chunk(text, _meta(), SemanticStrategy(max_size=90))

        assert [c.content for c in chunks] == ["a" * 40 + "\n\n" + "b" * 40, "c" * 40]

    def test_oversize_paragraph_is_kept_whole(self):
        text = "short\n\n" + "z" * 300
        chunks = chunk(text, _meta(), SemanticStrategy(max_size=100))

        assert [c.content for c in chunks] == ["short", "z" * 300]


class TestCodeStrategy:
    SOURCE = "\n".join([
        "import os",
        "",
        "def first():",
        "    return 1",
        "",
        "def second():",
        "    return 2",
        "",
        "class Third {",
        "  function inner() {",
        "  }",
        "}",
    ])

    def test_splits_at_top_level_declarations_with_line_numbers(self):
        pieces = split_code(self.SOURCE, max_size=80)

        starts = [line for _, line in pieces]
        assert starts[0] == 1
        assert any(text.startswith("def second") for text, _ in pieces)
        assert starts == sorted(starts)

    def test_small_functions_get_their_own_chunks(self):
        pieces = split_code("def a():\n    return 1\n\ndef b():\n    return 2\n", max_size=1500)

        assert [(text.split("\n")[0], line) for text, line in pieces] == [("def a():", 1), ("def b():", 4)]

    def test_nested_declarations_do_not_split(self):
        pieces = split_code("class Outer {\n  function inner() {\n  }\n}\n", max_size=1500)

        assert len(pieces) == 1

    def test_chunk_carries_file_path_and_line(self):
        meta = DocumentMetadata(source="repo", type=ContentType.CODE, file_path="app.py")
        chunks = chunk(self.SOURCE, meta, CodeStrategy(max_size=80))

        assert all(c.metadata.file_path == "app.py" for c in chunks)
        assert chunks[0].metadata.line_number == 1
        assert "".join(c.content for c in chunks).replace("\n", "") == self.SOURCE.replace("\n", "")


class TestRequirementStrategy:
    def test_splits_numbered_and_bold_sections(self):
        text = "1. Scope\nApplies to all.\n2. Access\nUse MFA.\n**Logging**\nKeep logs."
        assert split_requirement_sections(text) == [
            "1. Scope\nApplies to all.",
            "2. Access\nUse MFA.",
            "**Logging**\nKeep logs.",
        ]

    def test_chunk_ids_and_metadata(self):
        chunks = chunk(
            "1. One\ntext\n2. Two\ntext",
            DocumentMetadata(source="SOC2-catalog"),
            RequirementStrategy(code="CC6.1", framework="SOC2"),
        )

        assert [c.id for c in chunks] == ["SOC2-CC6.1-chunk-0", "SOC2-CC6.1-chunk-1"]
        assert all(c.metadata.type == ContentType.REQUIREMENT for c in chunks)
        assert all(c.metadata.requirement_code == "CC6.1" for c in chunks)

    def test_text_without_markers_is_one_section(self):
        assert split_requirement_sections("CC6.1 Access\n\nDescription") == ["CC6.1 Access\n\nDescription"]
