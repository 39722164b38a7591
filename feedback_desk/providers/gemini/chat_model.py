"""
Gemini chat model
=================

Google Gemini implementation of ChatModelPort using the google-genai SDK.
"""
from __future__ import annotations

import logging
from typing import Optional

from google import genai
from google.genai import types

from feedback_desk.core.ports.chat_model import ChatModelPort


logger = logging.getLogger(__name__)


class GeminiChatModel(ChatModelPort):
    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gemini-1.5-flash",
        *,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        system_prompt: Optional[str] = None,
    ) -> None:
        if not api_key:
            raise ValueError("Gemini API key not configured (providers.gemini.api_key)")
        self.model = model
        self._client = genai.Client(api_key=api_key)
        self._config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt,
        )
        logger.info("gemini.init model=%s", model)

    def generate(self, prompt: str) -> str:
        response = self._client.models.generate_content(model=self.model, contents=prompt, config=self._config)
        if not response.candidates:
            raise RuntimeError("Generation blocked by safety filters or no candidates returned.")
        return (response.text or "").strip()
