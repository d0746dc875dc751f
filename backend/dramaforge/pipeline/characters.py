"""Character design stage: one three-view design sheet per character.

Characters that already have a portrait are skipped, so re-running the
stage only retries the ones that failed.
"""

import logging
from typing import Optional

from dramaforge.orchestrator.batch import run_batch
from dramaforge.orchestrator.state import CHARACTER_DESIGN
from dramaforge.pipeline.base import StageContext, StageResult, fold_batch_outcome
from dramaforge.schemas.project import Character

logger = logging.getLogger(__name__)

GENERATING = "Generating..."


async def run_character_design(ctx: StageContext) -> StageResult:
    project = ctx.project
    pending = [c for c in project.characters if not c.portrait_url]
    if not pending:
        logger.info("Project %s: all %d characters already designed", project.id, len(project.characters))
        return StageResult.success()

    def _mark_generating(group: list[Character]) -> None:
        for character in group:
            ctx.update_character(character.name, lambda c: setattr(c, "generation_status", GENERATING))

    async def _generate(character: Character) -> str:
        return await ctx.ports.image.generate_character_image(
            character,
            project.style,
            project.language,
            character.reference_image,
            token=ctx.token,
        )

    dropped: list[str] = []

    def _fold(character: Character, url: Optional[str], error: Optional[BaseException]) -> None:
        def _apply(c: Character) -> None:
            if error is None:
                c.portrait_url = url
            c.generation_status = None

        if ctx.update_character(character.name, _apply) is None and error is None and ctx.is_current():
            logger.warning(
                "Project %s: character %r renamed or removed mid-run, portrait discarded",
                project.id, character.name,
            )
            dropped.append(character.name)

    result = await run_batch(
        pending,
        _generate,
        _fold,
        concurrency=ctx.settings.pipeline.character_concurrency,
        token=ctx.token,
        before_group=_mark_generating,
        label=f"character design [{project.id}]",
    )
    if dropped:
        result.succeeded -= len(dropped)
        result.failed += len(dropped)
    return fold_batch_outcome(result, CHARACTER_DESIGN, "characters")
