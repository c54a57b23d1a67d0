"""OpenAI-backed completion capability.

The pipeline only needs ``(prompt) -> response text``; this module builds one
from settings. Any other backend can be injected in its place.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import openai
import structlog

from sitecache.errors import CompletionError, ConfigurationError

if TYPE_CHECKING:
    from sitecache.config import AISettings
    from sitecache.protocols import CompletionFn

log = structlog.get_logger()


def build_openai_completion(
    settings: AISettings,
    *,
    model: str | None = None,
    temperature: float | None = None,
) -> CompletionFn:
    """Return an async completion function. Raises ConfigurationError without an API key."""
    if not settings.api_key:
        raise ConfigurationError(
            "AI configuration missing: no API key set.",
            suggestion="Set SITECACHE__AI__API_KEY or ai.api_key in sitecache.yaml.",
        )

    client = openai.AsyncOpenAI(api_key=settings.api_key, base_url=settings.base_url)
    model_name = model or settings.model
    temp = settings.temperature if temperature is None else temperature

    async def complete(prompt: str) -> str:
        try:
            response = await client.chat.completions.create(
                model=model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=temp,
                max_tokens=settings.max_tokens,
            )
        except openai.OpenAIError as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise CompletionError("Completion returned no text")

        if response.usage is not None:
            log.debug(
                "completion_usage",
                model=model_name,
                prompt_tokens=response.usage.prompt_tokens,
                completion_tokens=response.usage.completion_tokens,
            )
        return text

    return complete
