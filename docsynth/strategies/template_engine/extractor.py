"""Template structure extractor.

Reads Word templates with python-docx and Excel templates with openpyxl and
produces the ordered TemplateStructure the prompt and the assembler work on.
"""

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

from docx import Document
from docx.table import Table
from docx.text.paragraph import Paragraph
from openpyxl import load_workbook

from docsynth.core.errors import TemplateFileMissing
from docsynth.interfaces.template import BaseStructureExtractor
from docsynth.strategies.template_engine.models import (
    OutputKind,
    ParagraphElement,
    StructuralElement,
    StyleHint,
    TableElement,
    TemplateStructure,
)

logger = logging.getLogger(__name__)

HEADING_MIN_FONT_SIZE_PT = 14


class TemplateStructureExtractor(BaseStructureExtractor):
    """Extracts paragraphs, headings and tables from templates.

    Empty paragraphs are dropped before indexing, so indices count retained
    elements only.
    """

    def extract(self, file_path: str | Path, kind: OutputKind) -> TemplateStructure:
        path = Path(file_path)
        if not path.is_file():
            raise TemplateFileMissing(f"{kind.value.upper()} template file not found: {path}")

        match kind:
            case OutputKind.DOCX:
                structure = self._extract_docx(path)
            case OutputKind.XLSX:
                structure = self._extract_xlsx(path)
            case _:
                raise ValueError(f"Unsupported output kind: {kind}")

        logger.info(
            f"Template structure extracted from {path.name}: "
            f"{len(structure.paragraphs)} paragraphs, {len(structure.tables)} tables, "
            f"{len(structure.sheet_headers)} sheet headers"
        )
        logger.debug(f"Template structure:\n{json.dumps(self.describe(structure), indent=2, ensure_ascii=False)}")
        return structure

    def _extract_docx(self, path: Path) -> TemplateStructure:
        doc = Document(str(path))
        elements: list[StructuralElement] = []

        for block in doc.iter_inner_content():
            index = len(elements) + 1
            if isinstance(block, Paragraph):
                text = block.text
                if not text.strip():
                    continue
                elements.append(
                    ParagraphElement(index=index, text=text, style=self._detect_style(block))
                )
            elif isinstance(block, Table):
                elements.append(self._extract_table(block, index))

        return TemplateStructure(kind=OutputKind.DOCX, elements=tuple(elements))

    def _detect_style(self, paragraph: Paragraph) -> StyleHint:
        """Heading when any run is at least 14pt or bold."""
        for run in paragraph.runs:
            size = run.font.size
            if size is not None and size.pt >= HEADING_MIN_FONT_SIZE_PT:
                return StyleHint.HEADING
            if run.bold:
                return StyleHint.HEADING
        return StyleHint.NORMAL

    def _extract_table(self, table: Table, index: int) -> TableElement:
        rows = [tuple(cell.text.strip() for cell in row.cells) for row in table.rows]
        column_count = max((len(row) for row in rows), default=0)
        headers = rows[0] if rows else ()
        return TableElement(
            index=index,
            headers=headers,
            sample_rows=tuple(rows[1:]),
            column_count=column_count,
        )

    def _extract_xlsx(self, path: Path) -> TemplateStructure:
        workbook = load_workbook(str(path), read_only=True)
        try:
            sheet = workbook.active
            headers: list[str] = []
            for row in sheet.iter_rows(min_row=1, max_row=1, values_only=True):
                for value in row:
                    if value is None:
                        continue
                    text = str(value).strip()
                    if text:
                        headers.append(text)
        finally:
            workbook.close()

        logger.info(f"Excel template headers: {', '.join(headers)}")
        return TemplateStructure(kind=OutputKind.XLSX, sheet_headers=tuple(headers))

    @staticmethod
    def describe(structure: TemplateStructure) -> dict[str, Any]:
        """Return a JSON-safe view of a structure for logging and debugging."""
        elements = []
        for element in structure.elements:
            data = asdict(element)
            data["type"] = "paragraph" if isinstance(element, ParagraphElement) else "table"
            elements.append(data)
        return {
            "kind": structure.kind.value,
            "elements": elements,
            "sheet_headers": list(structure.sheet_headers),
        }

    @property
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""
        return {".docx", ".xlsx"}
