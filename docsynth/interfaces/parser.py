"""Abstract base class for source-document readers.

A source document is an optional upload attached to a generation request.
Its text is handed to the prompt as reference data; readers for different
file families are interchangeable at runtime.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class SourceDocument:
    """Text extracted from a source document.

    Attributes:
        content: Plain text; tables are rendered as tab-separated lines.
        metadata: Reader-specific information (reader name, truncation...).
        source: The original file path.
    """

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    source: str = ""


class BaseSourceParser(ABC):
    """Abstract base class for source-document readers."""

    @abstractmethod
    async def aload_text(self, file_path: str | Path) -> SourceDocument:
        """Read a source document into text.

        Args:
            file_path: The path to the source document.

        Returns:
            The extracted SourceDocument.

        Raises:
            SourceExtractionFailure: If the file is missing, unsupported or
                cannot be read.
        """
        ...

    @property
    @abstractmethod
    def supported_extensions(self) -> set[str]:
        """Return the set of file extensions supported by this reader."""
        ...

    def supports_file(self, file_path: str | Path) -> bool:
        """Check if this reader supports the given file."""
        return Path(file_path).suffix.lower() in self.supported_extensions
