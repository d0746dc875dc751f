"""Provider registry for LLM adapters.

Routes model IDs to the correct adapter implementation based on the model
ID prefix. Supports Gemini (default) and Ollama (ollama/ prefix).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from dramaforge.services.llm.base import LLMAdapter

if TYPE_CHECKING:
    from dramaforge.config import Settings

logger = logging.getLogger(__name__)


def _is_ollama_model(model_id: str) -> bool:
    """Return True if the model ID uses the ollama/ prefix."""
    return model_id.startswith("ollama/")


def get_adapter(
    model_id: str,
    cfg: Optional["Settings"] = None,
) -> LLMAdapter:
    """Return the appropriate LLM adapter for the given model ID.

    Routing logic:
    - "ollama/*"  → OllamaAdapter (cloud if cfg.ollama.use_cloud,
                    else localhost:11434 or custom endpoint)
    - anything else → GeminiAdapter

    Args:
        model_id: Model identifier string (e.g., "gemini-3-pro-preview",
                  "ollama/qwen2.5").
        cfg: Settings to read endpoints and keys from; defaults to the
             module singleton.

    Returns:
        Configured LLMAdapter instance ready for use.
    """
    if cfg is None:
        from dramaforge.config import settings as cfg

    if _is_ollama_model(model_id):
        from dramaforge.services.llm.ollama_adapter import OllamaAdapter

        if cfg.ollama.use_cloud:
            base_url = cfg.ollama.endpoint or "https://ollama.com"
            api_key = cfg.ollama.api_key
        else:
            base_url = cfg.ollama.endpoint or "http://localhost:11434"
            api_key = None

        logger.debug(
            "Routing %s to OllamaAdapter (base_url=%s, has_key=%s)",
            model_id,
            base_url,
            bool(api_key),
        )
        return OllamaAdapter(model_id=model_id, base_url=base_url, api_key=api_key)

    from dramaforge.services.llm.gemini_adapter import GeminiAdapter

    logger.debug("Routing %s to GeminiAdapter", model_id)
    return GeminiAdapter(
        model_id=model_id,
        api_key=cfg.text.api_key,
        base_url=cfg.text.base_url,
    )
