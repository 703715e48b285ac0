"""Source-document reader strategies."""

from docsynth.strategies.parsers.source import OfficeSourceParser

__all__ = ["OfficeSourceParser"]
