"""Component Factory for strategy instantiation.

The Factory Pattern allows the application to instantiate
different strategy implementations at runtime based on
configuration or environment variables.
"""

import logging

from docsynth.core.config import Settings, get_settings
from docsynth.interfaces.generator import BaseAIClient
from docsynth.interfaces.parser import BaseSourceParser
from docsynth.interfaces.template import BaseDocumentAssembler, BaseStructureExtractor
from docsynth.strategies.generators import OpenAIChatClient
from docsynth.strategies.parsers import OfficeSourceParser
from docsynth.strategies.template_engine import (
    DocumentAssembler,
    HintRuleTable,
    PromptBuilder,
    ResponseParser,
    TemplateStructureExtractor,
)

logger = logging.getLogger(__name__)


class ComponentFactory:
    """Factory for creating pipeline components based on configuration.

    Example:
        ```python
        settings = get_settings()
        factory = ComponentFactory(settings)

        extractor = factory.get_extractor()
        prompt_builder = factory.get_prompt_builder()
        ai_client = factory.get_ai_client()
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the factory with optional settings.

        Args:
            settings: Application settings. If None, uses global settings.
        """
        self._settings = settings or get_settings()
        self._ai_client_cache: BaseAIClient | None = None
        self._extractor_cache: BaseStructureExtractor | None = None
        self._prompt_builder_cache: PromptBuilder | None = None
        self._response_parser_cache: ResponseParser | None = None
        self._assembler_cache: BaseDocumentAssembler | None = None
        self._source_parser_cache: BaseSourceParser | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    def get_ai_client(self) -> BaseAIClient:
        """Get the text-generation client.

        The client is created even without credentials; the missing key
        surfaces as MissingCredential on the first call.
        """
        if self._ai_client_cache is None:
            logger.info(f"Instantiating AI client: {self._settings.llm_model or '<unset>'}")

            self._ai_client_cache = OpenAIChatClient(
                api_key=self._settings.llm_api_key,
                model=self._settings.llm_model,
                base_url=self._settings.llm_base_url,
                temperature=self._settings.llm_temperature,
                timeout=self._settings.llm_timeout_seconds,
                max_retries=self._settings.llm_max_retries,
            )

        return self._ai_client_cache

    def get_extractor(self) -> BaseStructureExtractor:
        if self._extractor_cache is None:
            self._extractor_cache = TemplateStructureExtractor()
        return self._extractor_cache

    def get_prompt_builder(self) -> PromptBuilder:
        """Get a prompt builder with the configured hint rules.

        Raises:
            FileNotFoundError: If ``hint_rules_path`` points to a missing file.
            ValueError: If the hint rules file is malformed.
        """
        if self._prompt_builder_cache is None:
            hint_rules = None
            if self._settings.hint_rules_path is not None:
                logger.info(f"Loading hint rules from {self._settings.hint_rules_path}")
                hint_rules = HintRuleTable.from_json(self._settings.hint_rules_path)

            self._prompt_builder_cache = PromptBuilder(hint_rules=hint_rules)

        return self._prompt_builder_cache

    def get_response_parser(self) -> ResponseParser:
        if self._response_parser_cache is None:
            self._response_parser_cache = ResponseParser(min_rows=self._settings.min_spreadsheet_rows)
        return self._response_parser_cache

    def get_assembler(self) -> BaseDocumentAssembler:
        if self._assembler_cache is None:
            self._assembler_cache = DocumentAssembler()
        return self._assembler_cache

    def get_source_parser(self) -> BaseSourceParser:
        if self._source_parser_cache is None:
            self._source_parser_cache = OfficeSourceParser(
                max_chars=self._settings.source_context_max_chars,
            )
        return self._source_parser_cache
