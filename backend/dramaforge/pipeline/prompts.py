"""Prompt optimization stage: rewrite each video prompt into time-coded form."""

import logging
from typing import Optional

from dramaforge.orchestrator.batch import run_batch
from dramaforge.orchestrator.state import PROMPT_OPTIMIZATION
from dramaforge.pipeline.base import StageContext, StageResult, fold_batch_outcome
from dramaforge.schemas.project import Sequence

logger = logging.getLogger(__name__)

# Sent when the script left a sequence without a video prompt
DEFAULT_PROMPT = "Scene"


async def run_prompt_optimization(ctx: StageContext) -> StageResult:
    project = ctx.project
    pending = [s for s in project.sequences if not s.optimized_video_prompt]
    if not pending:
        return StageResult.success()

    async def _optimize(sequence: Sequence) -> str:
        return await ctx.ports.text.optimize_prompt(
            sequence.video_prompt or DEFAULT_PROMPT,
            project.style,
            project.language,
            token=ctx.token,
        )

    def _fold(sequence: Sequence, optimized: Optional[str], error: Optional[BaseException]) -> None:
        if error is None:
            ctx.update_sequence(
                sequence.id, lambda s: setattr(s, "optimized_video_prompt", optimized)
            )

    result = await run_batch(
        pending,
        _optimize,
        _fold,
        concurrency=ctx.settings.pipeline.prompt_concurrency,
        token=ctx.token,
        label=f"prompt optimization [{project.id}]",
    )
    return fold_batch_outcome(result, PROMPT_OPTIMIZATION, "prompts", verb="optimize")
