"""Ollama adapter for the LLM abstraction layer.

Talks to a local server or Ollama Cloud through ollama.AsyncClient.
Structured output asks for format='json' and spells the expected schema
out in the system prompt; both deployments follow that more reliably
than a full JSON schema passed as format.
"""

import json
import logging
from typing import Optional, Type

from ollama import AsyncClient
from pydantic import BaseModel

from dramaforge.services.llm.base import LLMAdapter, llm_retry, strip_code_fence

logger = logging.getLogger(__name__)


def _schema_instruction(schema: Type[BaseModel]) -> str:
    """System prompt suffix describing the JSON object to return.

    Uses field aliases, since the script prompt speaks in camelCase keys
    (bigShots, visualFeatures, soraPrompt).
    """
    schema_json = json.dumps(schema.model_json_schema(by_alias=True), indent=2)
    return (
        "\n\nIMPORTANT: You MUST respond with a single JSON object (no markdown, "
        "no commentary, no code fences). The JSON must conform to this schema:\n"
        f"```json\n{schema_json}\n```\n"
        "Return ONLY the JSON object."
    )


def _messages(prompt: str, system_prompt: Optional[str]) -> list[dict]:
    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": prompt})
    return messages


class OllamaAdapter(LLMAdapter):
    """Text generation on an Ollama model, e.g. ``ollama/qwen2.5``."""

    def __init__(
        self,
        model_id: str,
        base_url: str = "http://localhost:11434",
        api_key: Optional[str] = None,
    ) -> None:
        self._ollama_model = model_id.removeprefix("ollama/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = AsyncClient(host=base_url, headers=headers)

    async def _chat(self, messages: list[dict], options: dict, **extra) -> str:
        response = await self._client.chat(
            model=self._ollama_model,
            messages=messages,
            options=options,
            stream=False,
            **extra,
        )
        return response.message.content or ""

    async def generate_text(
        self,
        prompt: str,
        schema: Type[BaseModel],
        *,
        temperature: float = 0.7,
        system_prompt: Optional[str] = None,
        max_retries: int = 3,
    ) -> BaseModel:
        system = (system_prompt or "") + _schema_instruction(schema)
        messages = _messages(prompt, system.lstrip())

        @llm_retry(max_retries, f"Ollama {self._ollama_model} ({schema.__name__})")
        async def _call() -> BaseModel:
            raw = await self._chat(messages, {"temperature": temperature}, format="json")
            return schema.model_validate_json(strip_code_fence(raw))

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
        options: dict = {"temperature": temperature}
        if max_output_tokens:
            # Ollama's name for the output token limit
            options["num_predict"] = max_output_tokens
        messages = _messages(prompt, system_prompt)

        @llm_retry(max_retries, f"Ollama {self._ollama_model} (prose)")
        async def _call() -> str:
            return await self._chat(messages, options)

        return await _call()
