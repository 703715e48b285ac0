"""Concrete strategy implementations."""

from docsynth.strategies.generators import OpenAIChatClient
from docsynth.strategies.parsers import OfficeSourceParser
from docsynth.strategies.template_engine import (
    DocumentAssembler,
    PromptBuilder,
    ResponseParser,
    TemplateStructureExtractor,
)

__all__ = [
    "OpenAIChatClient",
    "OfficeSourceParser",
    "DocumentAssembler",
    "PromptBuilder",
    "ResponseParser",
    "TemplateStructureExtractor",
]
