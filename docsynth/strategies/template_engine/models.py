"""Template engine domain models.

Immutable value objects describing a template's structure and the content
blocks parsed out of a generation reply. Kept free of database and API
imports to avoid circular dependencies.
"""

import enum
from dataclasses import dataclass, field
from typing import Union


class OutputKind(str, enum.Enum):
    """Document family a template belongs to."""

    DOCX = "docx"
    XLSX = "xlsx"

    @property
    def extension(self) -> str:
        return f".{self.value}"

    @classmethod
    def from_filename(cls, filename: str) -> "OutputKind":
        """Infer the kind from a file extension.

        Raises:
            ValueError: If the extension is not .docx or .xlsx.
        """
        lowered = filename.lower()
        for kind in cls:
            if lowered.endswith(kind.extension):
                return kind
        raise ValueError(f"Unsupported template file: {filename}. Expected .docx or .xlsx")


class StyleHint(str, enum.Enum):
    """Formatting class of a paragraph."""

    HEADING = "heading"
    NORMAL = "normal"


@dataclass(frozen=True)
class ParagraphElement:
    """A non-empty paragraph of the template.

    Attributes:
        index: 1-based position among retained elements.
        text: The paragraph text as it appears in the template.
        style: Heading or normal.
    """

    index: int
    text: str
    style: StyleHint = StyleHint.NORMAL


@dataclass(frozen=True)
class TableElement:
    """A table of the template.

    Attributes:
        index: 1-based position among retained elements.
        headers: Cell texts of the first row.
        sample_rows: Cell texts of every following row.
        column_count: Widest row in the table, header included.
    """

    index: int
    headers: tuple[str, ...]
    sample_rows: tuple[tuple[str, ...], ...] = ()
    column_count: int = 0


StructuralElement = Union[ParagraphElement, TableElement]


@dataclass(frozen=True)
class TemplateStructure:
    """Ordered structural model of one template file.

    For spreadsheets ``elements`` is empty and ``sheet_headers`` holds the
    header row.
    """

    kind: OutputKind
    elements: tuple[StructuralElement, ...] = ()
    sheet_headers: tuple[str, ...] = ()

    @property
    def paragraphs(self) -> list[ParagraphElement]:
        return [e for e in self.elements if isinstance(e, ParagraphElement)]

    @property
    def tables(self) -> list[TableElement]:
        return [e for e in self.elements if isinstance(e, TableElement)]

    @property
    def element_indices(self) -> set[int]:
        return {e.index for e in self.elements}


@dataclass(frozen=True)
class SectionBlock:
    """Generated replacement for the paragraph with the same index."""

    index: int
    text: str


@dataclass(frozen=True)
class TableBlock:
    """Generated table, matched to template tables by position."""

    headers: tuple[str, ...]
    rows: tuple[tuple[str, ...], ...] = field(default_factory=tuple)


AIContentBlock = Union[SectionBlock, TableBlock]
