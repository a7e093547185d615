"""Async OpenAI client wrapper with retry & singleton semantics."""

from __future__ import annotations

import asyncio
import random
from typing import Any

import openai

from ..core.config import Config, config
from ..core.logger import log

__all__ = ["OpenAIClient", "get_openai_client"]

# Constant settings
_MAX_RETRIES = 4
_BASE_BACKOFF = 1.0  # seconds


class OpenAIClient:
    """Lightweight async wrapper around OpenAI chat completion API."""

    _instance: OpenAIClient | None = None

    @classmethod
    def instance(cls) -> OpenAIClient:
        """Return the shared instance built from the global config."""
        if cls._instance is None:
            cls._instance = cls.from_config(config)
        return cls._instance

    @classmethod
    def from_config(cls, cfg: Config) -> OpenAIClient:
        return cls(
            api_key=cfg.openai_api_key,
            model=cfg.openai_model,
            temperature=cfg.openai_temperature,
            max_tokens=cfg.openai_max_tokens,
        )

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o",
        temperature: float = 0.2,
        max_tokens: int = 2000,
        max_retries: int = _MAX_RETRIES,
        base_backoff: float = _BASE_BACKOFF,
    ) -> None:
        """Initialize the underlying async OpenAI client."""
        if not api_key:
            raise ValueError("OPENAI_API_KEY not configured")
        self._client = openai.AsyncOpenAI(api_key=api_key)

        self.model = model
        self.temperature = float(temperature)
        self.max_tokens = int(max_tokens)
        self.max_retries = max(1, max_retries)
        self.base_backoff = base_backoff

    # ---------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------
    async def chat(
        self,
        *,
        prompt: str | None = None,
        system_prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
        json_mode: bool = False,
    ) -> str:
        """Send chat completion request and return assistant reply.

        Args:
            prompt: Convenience user prompt string. Ignored if ``messages`` is provided.
            system_prompt: System prompt string (used if ``messages`` is ``None``).
            messages: Full message list to pass through; takes precedence over *prompt*.
            json_mode: Ask the model for a JSON object reply.
        """
        if messages is None:
            if prompt is None:
                raise ValueError("Either `messages` or `prompt` must be provided")

            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})

        extra: dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}

        for attempt in range(self.max_retries):
            try:
                response = await self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    **extra,
                )
                content = response.choices[0].message.content
                if content is None:
                    raise RuntimeError("OpenAI returned empty content")
                return content
            except (openai.APIError, openai.RateLimitError) as exc:
                if attempt == self.max_retries - 1:
                    log.error(f"OpenAI request failed after {attempt + 1} attempts: {exc}")
                    raise
                sleep_time = self.base_backoff * (2**attempt) + random.uniform(0, 0.5)  # noqa: S311
                log.warning(f"OpenAI error {exc}. Retrying in {sleep_time:.1f}s...")
                await asyncio.sleep(sleep_time)

        # Should not reach here
        raise RuntimeError("OpenAI chat completion failed after retries")


# Convenience getter
get_openai_client = OpenAIClient.instance
