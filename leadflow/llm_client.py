# leadflow/llm_client.py
"""Thin completion client over the OpenAI and Anthropic SDKs.

Only short single-sentence completions are requested, so the token budget
is kept small. Call counting lives in the pipeline's RunStatistics.
"""
from __future__ import annotations

import logging

from openai import OpenAI
from anthropic import Anthropic

from leadflow.config import settings

logger = logging.getLogger(__name__)


class LLMClient:
    SUPPORTED_PROVIDERS = ("openai", "anthropic")

    def __init__(
        self,
        provider: str,
        model: str,
        api_key: str,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ):
        if provider not in self.SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported LLM provider: {provider}. Use one of {self.SUPPORTED_PROVIDERS}")
        if not api_key:
            raise ValueError("API key required for LLM provider")

        self.provider = provider
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._api_key = api_key
        self._sdk = None

    @classmethod
    def from_settings(cls) -> "LLMClient":
        generation = settings.generation
        return cls(
            provider=generation.provider,
            model=generation.model,
            api_key=settings.llm_api_key(),
            max_tokens=generation.max_tokens,
            temperature=generation.temperature,
        )

    @property
    def sdk(self):
        """Provider SDK client, created on first use."""
        if self._sdk is None:
            sdk_class = OpenAI if self.provider == "openai" else Anthropic
            self._sdk = sdk_class(api_key=self._api_key)
        return self._sdk

    def generate(self, system_prompt: str, user_prompt: str) -> str:
        """Blocking completion; callers in async code run it in a thread."""
        logger.debug("%s completion with %s", self.provider, self.model)
        if self.provider == "openai":
            return self._complete_chat(system_prompt, user_prompt)
        return self._complete_messages(system_prompt, user_prompt)

    def _complete_chat(self, system_prompt: str, user_prompt: str) -> str:
        response = self.sdk.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        return response.choices[0].message.content or ""

    def _complete_messages(self, system_prompt: str, user_prompt: str) -> str:
        response = self.sdk.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )
        # text blocks only; tool-use blocks never appear without tools
        return "".join(block.text for block in response.content if hasattr(block, "text"))
