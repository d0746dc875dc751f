"""Video generation stage: one video per storyboarded sequence.

A sequence is only eligible once it has a storyboard image, which is sent
as the visual anchor. Provider status updates (e.g. "RUNNING (40%)") are
written to the sequence while its job is polled.
"""

import logging
from typing import Optional

from dramaforge.orchestrator.batch import run_batch
from dramaforge.orchestrator.state import VIDEO_GENERATION
from dramaforge.pipeline.base import StageContext, StageResult, fold_batch_outcome
from dramaforge.schemas.project import Sequence

logger = logging.getLogger(__name__)

STARTING = "Starting..."
COMPLETED = "Completed"


def video_prompt_for(sequence: Sequence) -> str:
    """Optimized prompt when present, else the raw one."""
    return sequence.optimized_video_prompt or sequence.video_prompt


def failure_status(error: BaseException) -> str:
    return f"Failed: {str(error) or 'Unknown error'}"


async def run_video_generation(ctx: StageContext) -> StageResult:
    project = ctx.project
    missing = [s for s in project.sequences if not s.video_url]
    pending = [s for s in missing if s.storyboard_image_url]

    skipped = len(missing) - len(pending)
    if skipped:
        logger.warning(
            "Project %s: %d sequence(s) have no storyboard image and were skipped",
            project.id, skipped,
        )
    if missing and not pending:
        return StageResult.fatal(
            f"Video generation failed: no storyboard images for {len(missing)} sequence(s)"
        )
    if not pending:
        return StageResult.success()

    def _mark_starting(group: list[Sequence]) -> None:
        for sequence in group:
            ctx.update_sequence(sequence.id, lambda s: setattr(s, "generation_status", STARTING))

    async def _generate(sequence: Sequence) -> str:
        def _on_progress(status: str) -> None:
            ctx.update_sequence(sequence.id, lambda s: setattr(s, "generation_status", status))

        return await ctx.ports.video.generate_video(
            video_prompt_for(sequence),
            project.style,
            project.language,
            sequence.storyboard_image_url,
            _on_progress,
            token=ctx.token,
        )

    def _fold(sequence: Sequence, url: Optional[str], error: Optional[BaseException]) -> None:
        def _apply(s: Sequence) -> None:
            if error is None:
                s.video_url = url
                s.generation_status = COMPLETED
            else:
                s.generation_status = failure_status(error)

        ctx.update_sequence(sequence.id, _apply)

    result = await run_batch(
        pending,
        _generate,
        _fold,
        concurrency=ctx.settings.pipeline.video_concurrency,
        token=ctx.token,
        before_group=_mark_starting,
        label=f"video generation [{project.id}]",
    )
    return fold_batch_outcome(result, VIDEO_GENERATION, "videos")
