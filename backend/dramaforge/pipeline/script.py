"""Script synthesis stage: one LLM call turns the story into a script.

The result replaces the project's analysis, characters, scenes and
sequences wholesale; every sequence gets a fresh unique id.
"""

import logging

from dramaforge.orchestrator.cancellation import RunCancelled
from dramaforge.pipeline.base import StageContext, StageResult
from dramaforge.schemas.project import Project
from dramaforge.services.ports import ProviderError

logger = logging.getLogger(__name__)


async def run_script_synthesis(ctx: StageContext) -> StageResult:
    project = ctx.project
    if not project.raw_text.strip():
        return StageResult.fatal("Script synthesis failed: source text is empty")

    try:
        draft = await ctx.ports.text.synthesize_script(
            project.raw_text, project.style, project.language, token=ctx.token
        )
    except RunCancelled:
        return StageResult.cancelled()
    except ProviderError as exc:
        return StageResult.fatal(str(exc))

    sequences = draft.to_sequences()
    if not sequences:
        return StageResult.fatal("Script synthesis failed: the model returned no sequences")

    analysis = draft.to_analysis()
    characters = draft.to_characters()
    script = draft.to_script()

    def _patch(p: Project) -> None:
        p.analysis = analysis
        p.characters = characters
        p.script = script
        p.sequences = sequences

    return StageResult.success(_patch)
