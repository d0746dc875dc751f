"""LLM provider abstraction layer.

Provides a unified async interface for structured and free-form text
generation across LLM providers (Gemini, Ollama).

Usage:
    from dramaforge.services.llm import get_adapter, LLMAdapter

    adapter = get_adapter("gemini-3-pro-preview")
    draft = await adapter.generate_text(prompt, ScriptDraft)

    adapter = get_adapter("ollama/qwen2.5", settings)
    story = await adapter.generate_prose(premise, temperature=0.85)
"""

from dramaforge.services.llm.base import LLMAdapter
from dramaforge.services.llm.registry import get_adapter

__all__ = ["LLMAdapter", "get_adapter"]
