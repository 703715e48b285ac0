"""Response parser for generation replies.

Turns raw model output back into content blocks. Malformed but non-empty
docx replies are never an error: without any recognizable tag the whole
reply becomes section 1.
"""

import csv
import logging
import re
import sys

from docsynth.core.errors import EmptyOutput, InsufficientRows
from docsynth.strategies.template_engine.models import (
    AIContentBlock,
    OutputKind,
    SectionBlock,
    TableBlock,
)

logger = logging.getLogger(__name__)

SECTION_PATTERN = re.compile(r"\[SECTION-(\d+)\](.*?)\[/SECTION-\1\]", re.DOTALL)
TABLE_PATTERN = re.compile(r"\[TABLE\](.*?)\[/TABLE\]", re.DOTALL)

COMMENT_PREFIXES = ("#", "//", "```")


def split_row(line: str) -> list[str]:
    """Split a row on tabs when present, else with quote-aware comma rules."""
    if "\t" in line:
        return [cell.strip() for cell in line.split("\t")]
    return [cell.strip() for cell in next(csv.reader([line]), [])]


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


class ResponseParser:
    """Parses replies in the docx (tagged) and xlsx (TSV) dialects."""

    def __init__(self, min_rows: int = 1) -> None:
        self._min_rows = min_rows

    def parse(self, text: str, kind: OutputKind) -> list[AIContentBlock]:
        """Parse a reply for the given output kind.

        Returns:
            Sections sorted by index followed by tables in appearance order
            (docx), or a single header-less TableBlock (xlsx).

        Raises:
            EmptyOutput: If nothing usable remains after filtering.
            InsufficientRows: If an xlsx reply has fewer rows than required.
        """
        match kind:
            case OutputKind.DOCX:
                return self.parse_sections(text)
            case OutputKind.XLSX:
                return [TableBlock(headers=(), rows=tuple(tuple(r) for r in self.parse_rows(text)))]
            case _:
                raise ValueError(f"Unsupported output kind: {kind}")

    def parse_sections(self, text: str) -> list[AIContentBlock]:
        text = _normalize(text or "").strip()
        if not text:
            raise EmptyOutput("AI output is empty.")

        sections: dict[int, SectionBlock] = {}
        for match in SECTION_PATTERN.finditer(text):
            index = int(match.group(1))
            if index in sections:
                logger.warning(f"Duplicate SECTION-{index} in AI output, keeping the first one")
                continue
            sections[index] = SectionBlock(index=index, text=match.group(2).strip())

        tables: list[TableBlock] = []
        for match in TABLE_PATTERN.finditer(text):
            rows = [
                split_row(line)
                for line in match.group(1).split("\n")
                if line.strip()
            ]
            if not rows:
                continue
            tables.append(
                TableBlock(headers=tuple(rows[0]), rows=tuple(tuple(row) for row in rows[1:]))
            )

        blocks: list[AIContentBlock] = [*sections.values(), *tables]

        if not blocks:
            logger.warning("No structured content found, using raw AI response")
            return [SectionBlock(index=1, text=text)]

        # Stable sort keeps tables in appearance order after every section.
        blocks.sort(key=lambda b: b.index if isinstance(b, SectionBlock) else sys.maxsize)
        logger.info(f"Parsed AI content: {len(sections)} sections, {len(tables)} tables")
        return blocks

    def parse_rows(self, text: str) -> list[list[str]]:
        # A leading tab is an empty first cell, so only spaces are trimmed on the left.
        lines = [line.rstrip().lstrip(" ") for line in _normalize(text or "").split("\n")]

        rows: list[list[str]] = []
        for line in lines:
            if not line or line.startswith(COMMENT_PREFIXES):
                continue
            row = split_row(line)
            if "\t" not in line and (not row or row[0] == ""):
                continue
            rows.append(row)

        if not rows:
            raise EmptyOutput("AI output contains no data rows.")
        if len(rows) < self._min_rows:
            raise InsufficientRows(
                f"AI output has {len(rows)} data rows, at least {self._min_rows} required."
            )

        logger.info(f"Parsed {len(rows)} spreadsheet rows")
        return rows
