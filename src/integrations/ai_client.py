"""
LLM client used for landing page copy.

The generator only depends on the LLMClient protocol, so tests can pass
a fake client and production passes OpenAIClient.
"""

import logging
from typing import Optional, Protocol

from config.settings import AISettings, get_settings

logger = logging.getLogger(__name__)


class ContentGenerationError(Exception):
    """Raised when the LLM is unavailable or returns unusable content."""
    pass


class LLMClient(Protocol):
    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        ...


class OpenAIClient:
    """Chat completion client backed by openai.AsyncOpenAI."""

    def __init__(self, settings: Optional[AISettings] = None):
        self.settings = settings or get_settings().ai
        self._client = None

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.openai_api_key)

    @property
    def client(self):
        """Lazy-load OpenAI client."""
        if self._client is None:
            if not self.is_configured:
                raise ContentGenerationError("AI_OPENAI_API_KEY is not configured")
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self.settings.openai_api_key,
                timeout=self.settings.timeout,
            )
        return self._client

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        from openai import OpenAIError

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self.client.chat.completions.create(
                model=self.settings.model,
                messages=messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI request failed: {e}")
            raise ContentGenerationError(f"LLM request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ContentGenerationError("LLM returned an empty response")
        return content.strip()
