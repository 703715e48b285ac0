"""Unit tests for the source-document reader."""

import asyncio

import pytest

from docsynth.core.errors import SourceExtractionFailure
from docsynth.strategies.parsers.source import OfficeSourceParser


# =============================================================================
# Office Source Parser Tests
# =============================================================================


class TestOfficeSourceParser:
    """Test suite for OfficeSourceParser."""

    @pytest.fixture
    def parser(self):
        """Create a parser with a small character cap."""
        return OfficeSourceParser(max_chars=1000)

    def test_supported_extensions(self, parser):
        """Test that office and text files are supported case-insensitively."""
        assert {".docx", ".xlsx", ".txt", ".csv"} <= parser.supported_extensions
        assert parser.supports_file("notes.TXT")
        assert not parser.supports_file("image.png")

    # =========================================================================
    # Text Extraction Tests
    # =========================================================================

    def test_docx_paragraphs_and_tables(self, parser, tmp_path, make_docx):
        """Test that paragraphs and tab-joined table rows are read in order."""
        path = make_docx(tmp_path / "src.docx", ["Data nilai", "", [["Name", "Score"], ["Budi", "85"]]])

        source = asyncio.run(parser.aload_text(path))

        assert source.content == "Data nilai\nName\tScore\nBudi\t85"
        assert source.metadata["source_file"] == "src.docx"
        assert source.metadata["truncated"] is False

    def test_xlsx_sheets(self, parser, tmp_path, make_xlsx):
        """Test that each sheet is introduced by a marker line."""
        path = make_xlsx(tmp_path / "src.xlsx", [["Name", "Score"], ["Budi", 85], [None, None]])

        source = asyncio.run(parser.aload_text(path))

        assert source.content.split("\n") == ["# Sheet: Sheet", "Name\tScore", "Budi\t85"]

    def test_text_file(self, parser, tmp_path):
        """Test that a plain text file is read as is."""
        path = tmp_path / "notes.txt"
        path.write_text("Budi mendapat nilai 85", encoding="utf-8")

        source = asyncio.run(parser.aload_text(path))

        assert source.content == "Budi mendapat nilai 85"
        assert source.source == str(path)

    def test_truncation(self, tmp_path):
        """Test that text over the cap is cut and flagged."""
        path = tmp_path / "long.txt"
        path.write_text("x" * 50, encoding="utf-8")

        source = asyncio.run(OfficeSourceParser(max_chars=10).aload_text(path))

        assert source.content == "x" * 10
        assert source.metadata["truncated"] is True

    # =========================================================================
    # Error Handling Tests
    # =========================================================================

    def test_missing_file(self, parser, tmp_path):
        """Test that a missing file raises SourceExtractionFailure."""
        with pytest.raises(SourceExtractionFailure):
            asyncio.run(parser.aload_text(tmp_path / "missing.docx"))

    def test_unsupported_type(self, parser, tmp_path):
        """Test that an unsupported extension raises SourceExtractionFailure."""
        path = tmp_path / "image.png"
        path.write_bytes(b"\x89PNG")

        with pytest.raises(SourceExtractionFailure):
            asyncio.run(parser.aload_text(path))

    def test_corrupt_docx_is_wrapped(self, parser, tmp_path):
        """Test that a corrupt document is wrapped in a non-retryable failure."""
        path = tmp_path / "broken.docx"
        path.write_bytes(b"not a zip archive")

        with pytest.raises(SourceExtractionFailure) as exc_info:
            asyncio.run(parser.aload_text(path))

        assert exc_info.value.retryable is False
        assert exc_info.value.__cause__ is not None
