"""Text-generation client strategies."""

from docsynth.strategies.generators.openai import OpenAIChatClient

__all__ = ["OpenAIChatClient"]
