"""
Language model wrapper used to compose natural-language answers.
"""

from __future__ import annotations

import os
from typing import Any

import structlog
from google.genai import Client as GenAIClient

_DEFAULT_MODEL = "gemini-2.5-flash"

logger = structlog.get_logger(__name__)


class LanguageModel:
    """Single-turn text completion via Google GenAI."""

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.model = model or os.getenv("CRM_SEARCH_LLM_MODEL", _DEFAULT_MODEL)
        if client is not None:
            self._client = client
        else:
            resolved_key = api_key or os.getenv("GOOGLE_API_KEY")
            if resolved_key is None:
                raise ValueError(
                    "GOOGLE_API_KEY not found within the current environment: "
                    "please export it or provide it to the class constructor."
                )
            self._client = GenAIClient(api_key=resolved_key)

    def complete(
        self,
        *,
        system: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 1500,
    ) -> str:
        """Return the model's text answer for *prompt*."""
        response = self._client.models.generate_content(
            model=self.model,
            contents=prompt,
            config={
                "system_instruction": system,
                "temperature": temperature,
                "max_output_tokens": max_tokens,
            },
        )
        text = response.text
        if not text or not text.strip():
            raise RuntimeError("No response from language model")
        logger.debug("llm.completed", model=self.model, answer_chars=len(text))
        return text


def build_language_model() -> LanguageModel | None:
    """Return a configured model, or None when no API key is available."""
    try:
        return LanguageModel()
    except ValueError:
        logger.info("llm.not_configured")
        return None
