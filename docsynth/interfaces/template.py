"""Template extraction and assembly interfaces.

Defines abstract base classes for reading a template's structure and for
rebuilding a document from that structure plus generated content.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from docsynth.strategies.template_engine.models import (
        AIContentBlock,
        OutputKind,
        TemplateStructure,
    )


class BaseStructureExtractor(ABC):
    """Abstract base class for template structure extraction strategies."""

    @abstractmethod
    def extract(self, file_path: str | Path, kind: "OutputKind") -> "TemplateStructure":
        """Read a template file into an ordered, indexed structure.

        Args:
            file_path: Path to the template file.
            kind: Whether the file is a word-processor or spreadsheet template.

        Returns:
            The TemplateStructure of the file.

        Raises:
            TemplateFileMissing: If the file doesn't exist.
        """

    @property
    @abstractmethod
    def supported_extensions(self) -> set[str]:
        """Return supported file extensions."""


class BaseDocumentAssembler(ABC):
    """Abstract base class for document assembly strategies.

    Implementations must be total: any combination of structure and parsed
    content yields a document.
    """

    @abstractmethod
    def assemble(
        self,
        structure: "TemplateStructure",
        blocks: list["AIContentBlock"],
        template_path: str | Path,
        output_path: str | Path,
    ) -> Any:
        """Write the output document and return a report of what was placed.

        Args:
            structure: Structure extracted from the template.
            blocks: Parsed generated content.
            template_path: The template file (never modified).
            output_path: Where to save the new document.
        """
