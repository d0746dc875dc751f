"""Gemini adapter for the LLM abstraction layer (google-genai SDK).

Structured calls pass the Pydantic schema as response_schema with a JSON
mime type, so the model's output is constrained server-side and only
validated here.
"""

import logging
from typing import Optional, Type

from google.genai import types as genai_types
from pydantic import BaseModel

from dramaforge.services.gemini_client import get_gemini_client
from dramaforge.services.llm.base import LLMAdapter, llm_retry, strip_code_fence

logger = logging.getLogger(__name__)


class GeminiAdapter(LLMAdapter):
    """Text generation on a Gemini model.

    api_key and base_url fall back to the text section of the settings
    when not given; the client itself is shared per credential pair.
    """

    def __init__(
        self,
        model_id: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> None:
        self._model_id = model_id
        self._api_key = api_key
        self._base_url = base_url

    async def _generate(self, prompt: str, config: genai_types.GenerateContentConfig) -> str:
        client = get_gemini_client(self._api_key, self._base_url)
        response = await client.aio.models.generate_content(
            model=self._model_id,
            contents=prompt,
            config=config,
        )
        return response.text or ""

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=schema,
            system_instruction=system_prompt or None,
        )

        @llm_retry(max_retries, f"Gemini {self._model_id} ({schema.__name__})")
        async def _call() -> BaseModel:
            logger.debug("generate_content model=%s schema=%s", self._model_id, schema.__name__)
            text = await self._generate(prompt, config)
            if not text:
                raise ValueError("Gemini returned no text for a structured request")
            return schema.model_validate_json(strip_code_fence(text))

        return await _call()

    async def generate_prose(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_output_tokens: Optional[int] = None,
        max_retries: int = 3,
    ) -> str:
        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            system_instruction=system_prompt or None,
            max_output_tokens=max_output_tokens,
        )

        @llm_retry(max_retries, f"Gemini {self._model_id} (prose)")
        async def _call() -> str:
            logger.debug("generate_content model=%s (prose)", self._model_id)
            return await self._generate(prompt, config)

        return await _call()
