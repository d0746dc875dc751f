"""Text generation port backed by the LLM adapter registry.

ScriptWriter is the TextGenerator used in production. Every operation is
one LLM call; adapter exceptions are wrapped in ProviderError so stage
handlers only need to know the port's error type.

Usage:
    writer = ScriptWriter()
    draft = await writer.synthesize_script(text, "Cyberpunk", "zh")
"""

import logging
from typing import Optional

from dramaforge.config import ConfigurationError, Settings
from dramaforge.orchestrator.cancellation import CancellationToken, RunCancelled, cancellable
from dramaforge.schemas.script import ScriptDraft
from dramaforge.services.llm import LLMAdapter, get_adapter
from dramaforge.services.ports import ProviderError, ProviderResponseError, TextGenerator
from dramaforge.services.prompts import (
    CONTINUE_STORY_PROMPT,
    NOVEL_EXPANSION_PROMPT,
    NOVEL_PREPROCESS_PROMPT,
    PROMPT_CONFIGURATION,
    SCRIPT_CONFIGURATION,
    SCRIPT_SYSTEM_PROMPT,
    VIDEO_PROMPT_OPTIMIZATION_PROMPT,
    language_name,
)

logger = logging.getLogger(__name__)


class ScriptWriter(TextGenerator):
    """TextGenerator that routes every call through one LLMAdapter."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        adapter: Optional[LLMAdapter] = None,
    ) -> None:
        if cfg is None:
            from dramaforge.config import settings as cfg
        self._cfg = cfg
        self._adapter = adapter

    @property
    def adapter(self) -> LLMAdapter:
        if self._adapter is None:
            self._adapter = get_adapter(self._cfg.text.model_id, self._cfg)
        return self._adapter

    async def _call(self, label: str, awaitable, token: Optional[CancellationToken]):
        """Await an adapter call, translating its failures to ProviderError."""
        try:
            return await cancellable(awaitable, token)
        except (RunCancelled, ConfigurationError, ProviderError):
            raise
        except Exception as exc:
            logger.error("Text provider error (%s): %s", label, exc)
            raise ProviderError(f"{label} failed: {exc}") from exc

    async def expand(
        self, premise: str, language: str, *, token: Optional[CancellationToken] = None
    ) -> str:
        """Write a story chapter from a premise.

        Raises:
            ProviderResponseError: If the model returned no text.
        """
        system = f"targetlang:{language_name(language)}\n{NOVEL_EXPANSION_PROMPT}"
        text = await self._call(
            "Story expansion",
            self.adapter.generate_prose(
                premise,
                system_prompt=system,
                temperature=self._cfg.text.expansion_temperature,
                max_output_tokens=self._cfg.text.max_output_tokens,
            ),
            token,
        )
        if not text.strip():
            raise ProviderResponseError("Story expansion returned no text")
        return text

    async def preprocess(
        self, raw_text: str, *, token: Optional[CancellationToken] = None
    ) -> str:
        """Clean up formatting; falls back to the input when the model returns nothing."""
        text = await self._call(
            "Text preprocessing",
            self.adapter.generate_prose(
                raw_text,
                system_prompt=NOVEL_PREPROCESS_PROMPT,
                temperature=self._cfg.text.preprocess_temperature,
                max_output_tokens=self._cfg.text.max_output_tokens,
            ),
            token,
        )
        return text or raw_text

    async def synthesize_script(
        self,
        text: str,
        style: str,
        language: str,
        *,
        token: Optional[CancellationToken] = None,
    ) -> ScriptDraft:
        system = SCRIPT_SYSTEM_PROMPT + SCRIPT_CONFIGURATION.format(
            language=language_name(language, default="Chinese"), style=style
        )
        draft = await self._call(
            "Script synthesis",
            self.adapter.generate_text(
                text,
                ScriptDraft,
                system_prompt=system,
                temperature=self._cfg.text.script_temperature,
            ),
            token,
        )
        logger.info(
            "Script synthesized: %d characters, %d scenes, %d sequences",
            len(draft.characters), len(draft.script), len(draft.big_shots),
        )
        return draft

    async def optimize_prompt(
        self,
        raw_prompt: str,
        style: str,
        language: str,
        *,
        token: Optional[CancellationToken] = None,
    ) -> str:
        """Rewrite a video prompt; returns raw_prompt when the provider fails.

        Only cancellation propagates; prompt optimization never fails an item.
        """
        system = VIDEO_PROMPT_OPTIMIZATION_PROMPT + PROMPT_CONFIGURATION.format(
            language=language_name(language), style=style
        )
        try:
            text = await self._call(
                "Prompt optimization",
                self.adapter.generate_prose(
                    f"Original Prompt: {raw_prompt}",
                    system_prompt=system,
                ),
                token,
            )
        except (ProviderError, ConfigurationError) as exc:
            logger.warning("Prompt optimization fell back to raw prompt: %s", exc)
            return raw_prompt
        return text.strip() or raw_prompt

    async def continue_story(
        self, text: str, *, token: Optional[CancellationToken] = None
    ) -> str:
        """Write a continuation of the last continue_story_context characters."""
        context = text[-self._cfg.pipeline.continue_story_context:]
        return await self._call(
            "Story continuation",
            self.adapter.generate_prose(
                context,
                system_prompt=CONTINUE_STORY_PROMPT,
                temperature=self._cfg.text.script_temperature,
            ),
            token,
        )
