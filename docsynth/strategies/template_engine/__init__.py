"""Template engine strategies.

Implements structure extraction, prompt building, reply parsing and
document assembly for Word and Excel templates.
"""

from docsynth.strategies.template_engine.assembler import DocumentAssembler
from docsynth.strategies.template_engine.extractor import TemplateStructureExtractor
from docsynth.strategies.template_engine.hints import HintRule, HintRuleTable
from docsynth.strategies.template_engine.prompt_builder import PromptBuilder
from docsynth.strategies.template_engine.response_parser import ResponseParser

__all__ = [
    "DocumentAssembler",
    "HintRule",
    "HintRuleTable",
    "PromptBuilder",
    "ResponseParser",
    "TemplateStructureExtractor",
]
