"""Abstract base classes for pipeline strategies."""

from docsynth.interfaces.generator import BaseAIClient
from docsynth.interfaces.parser import BaseSourceParser, SourceDocument
from docsynth.interfaces.template import BaseDocumentAssembler, BaseStructureExtractor

__all__ = [
    "BaseAIClient",
    "BaseSourceParser",
    "SourceDocument",
    "BaseStructureExtractor",
    "BaseDocumentAssembler",
]
