"""Stage machine helpers."""

import pytest

from dramaforge.orchestrator.state import (
    CANCELLED,
    CHARACTER_DESIGN,
    COMPLETED,
    FAILED,
    IDLE,
    PREPROCESSING,
    STAGE_ORDER,
    STAGE_PROGRESS,
    STEP_COMPLETED,
    STEP_PROCESSING,
    VIDEO_GENERATION,
    can_advance,
    default_stage,
    is_terminal,
    next_stage,
)


def test_progress_values_follow_stage_order():
    values = [STAGE_PROGRESS[stage] for stage in STAGE_ORDER]
    assert values == [15, 40, 60, 80, 90, 100]


def test_default_stage_starts_idle_projects_at_preprocessing():
    assert default_stage(IDLE) == PREPROCESSING
    assert default_stage(CHARACTER_DESIGN) == CHARACTER_DESIGN


@pytest.mark.parametrize("status", [COMPLETED, FAILED, CANCELLED])
def test_default_stage_rejects_terminal_states(status):
    with pytest.raises(ValueError):
        default_stage(status)


def test_next_stage_walks_the_pipeline():
    walked = []
    status = IDLE
    while (status := next_stage(status)) is not None:
        walked.append(status)
    assert tuple(walked) == STAGE_ORDER


def test_can_advance_requires_completed_step():
    assert can_advance(PREPROCESSING, STEP_COMPLETED)
    assert not can_advance(PREPROCESSING, STEP_PROCESSING)


@pytest.mark.parametrize("status", [COMPLETED, FAILED, CANCELLED, VIDEO_GENERATION])
def test_can_advance_false_at_the_end_or_when_terminal(status):
    assert not can_advance(status, STEP_COMPLETED)


def test_is_terminal():
    assert is_terminal(FAILED)
    assert not is_terminal(PREPROCESSING)
