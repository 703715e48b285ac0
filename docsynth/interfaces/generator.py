"""Abstract base class for text-generation clients."""

from abc import ABC, abstractmethod


class BaseAIClient(ABC):
    """Sends a prompt to a text-generation endpoint and returns its text.

    Example:
        ```python
        client = factory.get_ai_client()
        text = await client.generate_text(prompt, max_output_tokens=4000)
        ```
    """

    @property
    def is_configured(self) -> bool:
        """Whether the client has what it needs to make calls."""
        return True

    @abstractmethod
    async def generate_text(self, prompt: str, max_output_tokens: int = 1024) -> str:
        """Generate text for a prompt.

        Args:
            prompt: The full prompt.
            max_output_tokens: Upper bound on generated tokens.

        Returns:
            The generated text, trimmed.

        Raises:
            MissingCredential: If the endpoint key or model is not configured.
            UpstreamError: If the call fails after the client's own retries.
            EmptyResponse: If the reply carries no text.
        """
        ...
