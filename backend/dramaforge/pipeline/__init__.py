"""Stage handlers for the six pipeline stages.

STAGE_HANDLERS maps each runnable status to its handler; the pipeline
controller dispatches through it.
"""

from dramaforge.orchestrator.state import (
    CHARACTER_DESIGN,
    PREPROCESSING,
    PROMPT_OPTIMIZATION,
    SCRIPT_SYNTHESIS,
    STORYBOARDING,
    VIDEO_GENERATION,
)
from dramaforge.pipeline.base import (
    StageContext,
    StageHandler,
    StageResult,
    fold_batch_outcome,
)
from dramaforge.pipeline.characters import run_character_design
from dramaforge.pipeline.preprocessing import run_preprocessing, split_segments
from dramaforge.pipeline.prompts import run_prompt_optimization
from dramaforge.pipeline.script import run_script_synthesis
from dramaforge.pipeline.storyboard import run_storyboarding
from dramaforge.pipeline.video_gen import run_video_generation

STAGE_HANDLERS: dict[str, StageHandler] = {
    PREPROCESSING: run_preprocessing,
    SCRIPT_SYNTHESIS: run_script_synthesis,
    CHARACTER_DESIGN: run_character_design,
    STORYBOARDING: run_storyboarding,
    PROMPT_OPTIMIZATION: run_prompt_optimization,
    VIDEO_GENERATION: run_video_generation,
}

__all__ = [
    "STAGE_HANDLERS",
    "StageContext",
    "StageHandler",
    "StageResult",
    "fold_batch_outcome",
    "split_segments",
]
