"""Document assembler.

Merges a template's structure with parsed generated content into a new
document. Placement is computed first as a pure AssemblyPlan and then
rendered with python-docx (Word) or written cell by cell with openpyxl
(Excel). Assembly never fails on count mismatches: missing content falls
back to the template, surplus content is appended.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from docx import Document
from docx.shared import Pt
from openpyxl import load_workbook

from docsynth.interfaces.template import BaseDocumentAssembler
from docsynth.strategies.template_engine.models import (
    AIContentBlock,
    OutputKind,
    ParagraphElement,
    SectionBlock,
    StyleHint,
    TableBlock,
    TableElement,
    TemplateStructure,
)

logger = logging.getLogger(__name__)

ORIGIN_AI = "ai"
ORIGIN_TEMPLATE = "template"
ORIGIN_APPENDED = "appended"

LITERAL_NEWLINE = "\\n"
DEFAULT_FONT_NAME = "Times New Roman"
HEADING_FONT_SIZE = Pt(14)
BODY_FONT_SIZE = Pt(12)
TABLE_STYLE = "Table Grid"

# Numbers without leading zeros and short enough to survive a float.
NUMERIC_CELL_PATTERN = re.compile(r"^-?(0|[1-9]\d{0,14})(\.\d+)?$")


@dataclass(frozen=True)
class PlannedParagraph:
    text: str
    style: StyleHint
    origin: str
    index: int


@dataclass(frozen=True)
class PlannedTable:
    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...]
    origin: str


PlannedItem = Union[PlannedParagraph, PlannedTable]


@dataclass(frozen=True)
class AssemblyPlan:
    """Ordered placement of every output paragraph and table."""

    items: tuple[PlannedItem, ...] = ()

    @property
    def paragraphs(self) -> list[PlannedParagraph]:
        return [i for i in self.items if isinstance(i, PlannedParagraph)]

    @property
    def tables(self) -> list[PlannedTable]:
        return [i for i in self.items if isinstance(i, PlannedTable)]

    def count(self, origin: str) -> int:
        return sum(1 for item in self.items if item.origin == origin)


@dataclass
class AssemblyReport:
    """What an assembly wrote and where."""

    output_path: Path
    plan: AssemblyPlan = field(default_factory=AssemblyPlan)
    rows_written: int = 0


def normalize_row(row: tuple[str, ...] | list[str], width: int) -> tuple[str, ...]:
    """Pad a row with empty cells or drop extra cells to match ``width``."""
    cells = tuple(str(cell) for cell in row[:width])
    return cells + ("",) * (width - len(cells))


def split_paragraphs(text: str) -> list[str]:
    """Split section text on literal ``\\n`` escapes and real newlines."""
    return [line.strip() for line in text.replace(LITERAL_NEWLINE, "\n").split("\n")]


def coerce_cell_value(value: str) -> str | int | float:
    """Store plain numbers as numbers, everything else as text."""
    if NUMERIC_CELL_PATTERN.match(value):
        return float(value) if "." in value else int(value)
    return value


class DocumentAssembler(BaseDocumentAssembler):
    """Builds output documents from template structure plus generated content."""

    def assemble(
        self,
        structure: TemplateStructure,
        blocks: list[AIContentBlock],
        template_path: str | Path,
        output_path: str | Path,
    ) -> AssemblyReport:
        match structure.kind:
            case OutputKind.DOCX:
                return self.assemble_docx(structure, blocks, output_path)
            case OutputKind.XLSX:
                return self.assemble_xlsx(template_path, blocks, output_path)
            case _:
                raise ValueError(f"Unsupported output kind: {structure.kind}")

    # =========================================================================
    # Placement
    # =========================================================================

    def plan(self, structure: TemplateStructure, blocks: list[AIContentBlock]) -> AssemblyPlan:
        """Place generated content onto the template structure.

        Paragraph elements take the section with their own index, tables take
        generated tables in parsed order. Sections whose index is not part of
        the template and tables left over are appended at the end.
        """
        sections: dict[int, SectionBlock] = {}
        ai_tables: list[TableBlock] = []
        for block in blocks:
            match block:
                case SectionBlock():
                    sections.setdefault(block.index, block)
                case TableBlock():
                    ai_tables.append(block)

        items: list[PlannedItem] = []
        table_cursor = 0

        for element in structure.elements:
            match element:
                case ParagraphElement():
                    section = sections.get(element.index)
                    if section is not None:
                        items.append(
                            PlannedParagraph(section.text, element.style, ORIGIN_AI, element.index)
                        )
                    else:
                        items.append(
                            PlannedParagraph(element.text, element.style, ORIGIN_TEMPLATE, element.index)
                        )
                case TableElement():
                    if table_cursor < len(ai_tables):
                        table = ai_tables[table_cursor]
                        table_cursor += 1
                        items.append(self._plan_table(table.headers, table.rows, ORIGIN_AI))
                    else:
                        items.append(
                            self._plan_table(element.headers, element.sample_rows, ORIGIN_TEMPLATE)
                        )

        template_indices = structure.element_indices
        for index in sorted(sections):
            if index in template_indices:
                continue
            items.append(
                PlannedParagraph(sections[index].text, StyleHint.NORMAL, ORIGIN_APPENDED, index)
            )

        for table in ai_tables[table_cursor:]:
            items.append(self._plan_table(table.headers, table.rows, ORIGIN_APPENDED))

        plan = AssemblyPlan(items=tuple(items))
        logger.info(
            f"Assembly plan: {plan.count(ORIGIN_AI)} from AI, "
            f"{plan.count(ORIGIN_TEMPLATE)} from template, "
            f"{plan.count(ORIGIN_APPENDED)} appended"
        )
        return plan

    @staticmethod
    def _plan_table(headers, rows, origin: str) -> PlannedTable:
        width = len(headers) or max((len(row) for row in rows), default=0)
        return PlannedTable(
            headers=tuple(headers),
            rows=tuple(normalize_row(row, width) for row in rows),
            origin=origin,
        )

    # =========================================================================
    # Word output
    # =========================================================================

    def assemble_docx(
        self,
        structure: TemplateStructure,
        blocks: list[AIContentBlock],
        output_path: str | Path,
    ) -> AssemblyReport:
        """Render a new Word document following the template structure."""
        plan = self.plan(structure, blocks)

        doc = Document()
        normal = doc.styles["Normal"]
        normal.font.name = DEFAULT_FONT_NAME
        normal.font.size = BODY_FONT_SIZE

        for item in plan.items:
            match item:
                case PlannedParagraph():
                    self._add_text(doc, item.text, item.style)
                case PlannedTable():
                    self._add_table(doc, item.headers, item.rows)

        path = Path(output_path)
        _save_atomically(path, doc.save)
        logger.info(f"Document generated: {path}")
        return AssemblyReport(output_path=path, plan=plan)

    def _add_text(self, doc, text: str, style: StyleHint) -> None:
        for line in split_paragraphs(text):
            paragraph = doc.add_paragraph()
            if not line:
                continue
            run = paragraph.add_run(line)
            if style == StyleHint.HEADING:
                run.bold = True
                run.font.size = HEADING_FONT_SIZE
                paragraph.paragraph_format.space_after = Pt(6)
            else:
                run.font.size = BODY_FONT_SIZE
                paragraph.paragraph_format.space_after = Pt(4)

    def _add_table(self, doc, headers: tuple[str, ...], rows: tuple[tuple[str, ...], ...]) -> None:
        width = len(headers) or max((len(row) for row in rows), default=0)
        if width == 0:
            logger.warning("Skipping table without columns")
            return

        table = doc.add_table(rows=0, cols=width)
        table.style = TABLE_STYLE

        if headers:
            header_cells = table.add_row().cells
            for cell, header in zip(header_cells, headers):
                run = cell.paragraphs[0].add_run(header)
                run.bold = True

        for row in rows:
            cells = table.add_row().cells
            for cell, value in zip(cells, row):
                cell.paragraphs[0].add_run(value)

    # =========================================================================
    # Excel output
    # =========================================================================

    def assemble_xlsx(
        self,
        template_path: str | Path,
        blocks: list[AIContentBlock],
        output_path: str | Path,
    ) -> AssemblyReport:
        """Write generated rows below the template's header row.

        Cells are set one by one, so formatting and any cell a short row does
        not reach keep their template values.
        """
        template = Path(template_path)
        path = Path(output_path)
        if path.resolve() == template.resolve():
            raise ValueError(f"Refusing to overwrite the template file: {template}")

        rows = [row for block in blocks if isinstance(block, TableBlock) for row in block.rows]

        workbook = load_workbook(str(template))
        sheet = workbook.active

        start_row = 2
        for row_offset, row in enumerate(rows):
            for col_offset, value in enumerate(row):
                sheet.cell(
                    row=start_row + row_offset,
                    column=1 + col_offset,
                    value=coerce_cell_value(value),
                )

        _save_atomically(path, workbook.save)
        logger.info(f"Excel generated: {path} ({len(rows)} rows)")
        return AssemblyReport(output_path=path, rows_written=len(rows))


def _save_atomically(path: Path, save) -> None:
    """Save through a temporary sibling so ``path`` never holds a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    partial = path.with_name(f".{path.name}.partial")
    try:
        save(str(partial))
        os.replace(partial, path)
    finally:
        if partial.exists():
            partial.unlink()
