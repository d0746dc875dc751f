"""Storyboard stage: one six-panel storyboard image per sequence.

Each sequence's involved characters are resolved against the cast; their
visual features go into the prompt and their portraits are sent as
reference images so characters stay consistent across sequences. The
first storyboard to land becomes the project cover when none is set.
"""

import logging
from typing import Optional

from dramaforge.orchestrator.batch import run_batch
from dramaforge.orchestrator.cancellation import CancellationToken
from dramaforge.orchestrator.state import STORYBOARDING
from dramaforge.pipeline.base import StageContext, StageResult, fold_batch_outcome
from dramaforge.schemas.project import Project, Sequence
from dramaforge.services.character_matching import (
    build_character_context,
    reference_urls,
    resolve_involved_characters,
)
from dramaforge.services.ports import ImageGenerator

logger = logging.getLogger(__name__)

GENERATING = "Generating Storyboard..."
FAILED = "Failed"


async def generate_storyboard_for(
    image: ImageGenerator,
    project: Project,
    sequence: Sequence,
    token: Optional[CancellationToken] = None,
) -> str:
    """Call the image port for one sequence using the project's cast."""
    involved = resolve_involved_characters(sequence.characters_involved, project.characters)
    return await image.generate_storyboard_image(
        sequence.storyboard_prompt,
        project.style,
        project.language,
        build_character_context(involved),
        reference_urls(involved),
        token=token,
    )


async def run_storyboarding(ctx: StageContext) -> StageResult:
    project = ctx.project
    pending = [s for s in project.sequences if not s.storyboard_image_url]
    if not pending:
        return StageResult.success()

    def _mark_generating(group: list[Sequence]) -> None:
        for sequence in group:
            ctx.update_sequence(sequence.id, lambda s: setattr(s, "generation_status", GENERATING))

    async def _generate(sequence: Sequence) -> str:
        return await generate_storyboard_for(ctx.ports.image, project, sequence, ctx.token)

    def _fold(sequence: Sequence, url: Optional[str], error: Optional[BaseException]) -> None:
        if error is not None:
            ctx.update_sequence(sequence.id, lambda s: setattr(s, "generation_status", FAILED))
            return

        def _apply(p: Project) -> None:
            target = p.find_sequence(sequence.id)
            if target is None:
                return
            target.storyboard_image_url = url
            target.generation_status = None
            if not p.cover_image:
                p.cover_image = url

        ctx.update(_apply)

    result = await run_batch(
        pending,
        _generate,
        _fold,
        concurrency=ctx.settings.pipeline.storyboard_concurrency,
        token=ctx.token,
        before_group=_mark_generating,
        label=f"storyboarding [{project.id}]",
    )
    return fold_batch_outcome(result, STORYBOARDING, "storyboards")
