"""Source-document reader.

Extracts reference text from the optional file attached to a generation
request: Word documents (paragraphs and tables in body order), Excel
workbooks (every sheet as tab-separated rows) and plain text files.
"""

import asyncio
import logging
from pathlib import Path

from docx import Document
from docx.table import Table
from docx.text.paragraph import Paragraph
from openpyxl import load_workbook

from docsynth.core.errors import SourceExtractionFailure
from docsynth.interfaces.parser import BaseSourceParser, SourceDocument

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".tsv", ".json"}


class OfficeSourceParser(BaseSourceParser):
    """Reads .docx, .xlsx and plain text sources into prompt-ready text."""

    def __init__(self, max_chars: int = 20000, encoding: str = "utf-8") -> None:
        """Initialize the reader.

        Args:
            max_chars: Extracted text beyond this length is cut off.
            encoding: Encoding used for plain text files.
        """
        self._max_chars = max_chars
        self._encoding = encoding

    async def aload_text(self, file_path: str | Path) -> SourceDocument:
        path = Path(file_path)
        if not path.is_file():
            raise SourceExtractionFailure(f"Source file not found: {path}")
        if not self.supports_file(path):
            raise SourceExtractionFailure(f"Unsupported source file type: {path.suffix}")

        logger.info(f"Extracting source document: {path.name}")

        try:
            content = await asyncio.to_thread(self._read, path)
        except SourceExtractionFailure:
            raise
        except Exception as e:
            logger.error(f"Failed to read source {path}: {e}")
            raise SourceExtractionFailure(f"Source extraction failed: {e}") from e

        truncated = len(content) > self._max_chars
        if truncated:
            logger.warning(f"Source text truncated from {len(content)} to {self._max_chars} characters")
            content = content[: self._max_chars]

        return SourceDocument(
            content=content,
            metadata={
                "parser": "office_source",
                "source_file": path.name,
                "truncated": truncated,
            },
            source=str(path),
        )

    def _read(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix == ".docx":
            return self._read_docx(path)
        if suffix == ".xlsx":
            return self._read_xlsx(path)
        return path.read_text(encoding=self._encoding)

    def _read_docx(self, path: Path) -> str:
        doc = Document(str(path))
        lines: list[str] = []
        for block in doc.iter_inner_content():
            if isinstance(block, Paragraph):
                if block.text.strip():
                    lines.append(block.text.strip())
            elif isinstance(block, Table):
                for row in block.rows:
                    lines.append("\t".join(cell.text.strip() for cell in row.cells))
        return "\n".join(lines)

    def _read_xlsx(self, path: Path) -> str:
        workbook = load_workbook(str(path), read_only=True, data_only=True)
        try:
            lines: list[str] = []
            for sheet in workbook.worksheets:
                lines.append(f"# Sheet: {sheet.title}")
                for row in sheet.iter_rows(values_only=True):
                    cells = ["" if value is None else str(value).strip() for value in row]
                    if any(cells):
                        lines.append("\t".join(cells))
            return "\n".join(lines)
        finally:
            workbook.close()

    @property
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""
        return {".docx", ".xlsx"} | TEXT_EXTENSIONS
