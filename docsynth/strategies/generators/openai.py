"""OpenAI-compatible text generator.

Uses the OpenAI SDK's chat-completions API, which OpenRouter and most
hosted model gateways also expose.
"""

import asyncio
import logging

from openai import AsyncOpenAI, OpenAIError

from docsynth.core.errors import EmptyResponse, MissingCredential, UpstreamError
from docsynth.interfaces.generator import BaseAIClient

logger = logging.getLogger(__name__)

PLACEHOLDER_KEYS = {"", "..."}


class OpenAIChatClient(BaseAIClient):
    """AI client backed by an OpenAI-compatible chat-completions endpoint.

    The SDK retries transient failures itself (``max_retries``); whatever
    still fails surfaces as UpstreamError. ``timeout`` bounds the whole
    call, SDK retries included, so a hung endpoint also ends as
    UpstreamError.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        temperature: float = 0.4,
        timeout: float = 60.0,
        max_retries: int = 2,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: API key of the endpoint.
            model: Model name to generate with.
            base_url: Optional custom base URL for the API.
            temperature: Sampling temperature.
            timeout: Deadline in seconds for one generate_text call.
            max_retries: Retries performed by the SDK before giving up.
        """
        self._api_key = (api_key or "").strip()
        self._model = (model or "").strip()
        self._base_url = base_url
        self._temperature = temperature
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: AsyncOpenAI | None = None

        if not self.is_configured:
            logger.warning("Text-generation endpoint is not configured (LLM_API_KEY / LLM_MODEL)")

    @property
    def is_configured(self) -> bool:
        return self._api_key not in PLACEHOLDER_KEYS and bool(self._model)

    def _get_client(self) -> AsyncOpenAI:
        if self._api_key in PLACEHOLDER_KEYS:
            raise MissingCredential("Missing LLM_API_KEY.")
        if not self._model:
            raise MissingCredential("Missing LLM_MODEL.")

        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=self._max_retries,
            )
        return self._client

    async def generate_text(self, prompt: str, max_output_tokens: int = 1024) -> str:
        client = self._get_client()

        logger.debug(f"Requesting generation from {self._model} ({len(prompt)} prompt chars)")

        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self._model,
                    messages=[{"role": "user", "content": prompt}],
                    max_tokens=max_output_tokens,
                    temperature=self._temperature,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Text-generation call exceeded {self._timeout:g}s")
            raise UpstreamError(f"Text-generation request timed out after {self._timeout:g}s") from e
        except OpenAIError as e:
            logger.error(f"Text-generation API error: {e}")
            raise UpstreamError(f"Text-generation request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not isinstance(content, str) or not content.strip():
            raise EmptyResponse("Text-generation response did not contain text.")

        logger.info(f"AI response received: {len(content)} chars")
        return content.strip()
