"""State machine constants and transition logic for the pipeline controller.

Defines the ordered stage machine a project moves through, the fixed
progress value reached when each stage completes, and the rules for
advancing and retrying.
"""

from typing import Optional

IDLE = "idle"
PREPROCESSING = "preprocessing"
SCRIPT_SYNTHESIS = "script_synthesis"
CHARACTER_DESIGN = "character_design"
STORYBOARDING = "storyboarding"
PROMPT_OPTIMIZATION = "prompt_optimization"
VIDEO_GENERATION = "video_generation"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"

# Pipeline states in execution order
PIPELINE_STATES = {
    IDLE: "Initial state after project creation",
    PREPROCESSING: "Expanding premise and splitting text into segments",
    SCRIPT_SYNTHESIS: "Adapting text into script, characters and sequences",
    CHARACTER_DESIGN: "Generating character design sheets",
    STORYBOARDING: "Generating six-panel storyboard images",
    PROMPT_OPTIMIZATION: "Rewriting video prompts into time-coded form",
    VIDEO_GENERATION: "Generating one video per sequence",
    COMPLETED: "Pipeline finished successfully",
    FAILED: "Stage failed; retry re-runs the failed stage",
    CANCELLED: "Run cancelled by operator",
}

# The six runnable stages, in order
STAGE_ORDER = (
    PREPROCESSING,
    SCRIPT_SYNTHESIS,
    CHARACTER_DESIGN,
    STORYBOARDING,
    PROMPT_OPTIMIZATION,
    VIDEO_GENERATION,
)

# Progress reached when each stage completes
STAGE_PROGRESS = {
    PREPROCESSING: 15,
    SCRIPT_SYNTHESIS: 40,
    CHARACTER_DESIGN: 60,
    STORYBOARDING: 80,
    PROMPT_OPTIMIZATION: 90,
    VIDEO_GENERATION: 100,
}

STAGE_LABELS = {
    PREPROCESSING: "Preprocessing",
    SCRIPT_SYNTHESIS: "Script synthesis",
    CHARACTER_DESIGN: "Character design",
    STORYBOARDING: "Storyboard generation",
    PROMPT_OPTIMIZATION: "Prompt optimization",
    VIDEO_GENERATION: "Video generation",
}

TERMINAL_STATES = {COMPLETED, FAILED, CANCELLED}

STEP_IDLE = "idle"
STEP_PROCESSING = "processing"
STEP_COMPLETED = "completed"


def is_stage(status: str) -> bool:
    """Return True if status names one of the six runnable stages."""
    return status in STAGE_PROGRESS


def is_terminal(status: str) -> bool:
    """Return True for completed, failed and cancelled."""
    return status in TERMINAL_STATES


def default_stage(status: str) -> str:
    """Resolve the stage run_stage should execute when none is given.

    Idle projects start at preprocessing; otherwise the current stage is
    re-run.

    Raises:
        ValueError: If status is terminal and no stage can be inferred.
    """
    if status == IDLE:
        return PREPROCESSING
    if is_stage(status):
        return status
    raise ValueError(f"No stage to run from status '{status}'; pass an explicit stage")


def next_stage(status: str) -> Optional[str]:
    """Return the stage following status, or None after video generation.

    Examples:
        >>> next_stage("idle")
        'preprocessing'
        >>> next_stage("storyboarding")
        'prompt_optimization'
        >>> next_stage("video_generation") is None
        True
    """
    if status == IDLE:
        return PREPROCESSING
    if status not in STAGE_ORDER:
        return None
    index = STAGE_ORDER.index(status)
    if index + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[index + 1]


def can_advance(status: str, step_state: str) -> bool:
    """Check whether advance() is allowed from the given project state.

    Advancing requires the current stage to have completed and the
    project not to be in a terminal state.
    """
    if is_terminal(status):
        return False
    if step_state != STEP_COMPLETED:
        return False
    return next_stage(status) is not None
