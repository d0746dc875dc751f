"""Pipeline controller end to end, with in-memory generator fakes."""

import asyncio

import pytest

from conftest import (
    CAST,
    FakeImage,
    FakeText,
    cast,
    make_draft,
    seed_project,
    storyboarded_sequences,
    wait_until,
)
from dramaforge.config import ConfigurationError
from dramaforge.engine import DramaEngine
from dramaforge.orchestrator.pipeline import InvalidTransition, RunOutcome
from dramaforge.orchestrator.state import (
    CANCELLED,
    CHARACTER_DESIGN,
    COMPLETED,
    FAILED,
    PREPROCESSING,
    PROMPT_OPTIMIZATION,
    SCRIPT_SYNTHESIS,
    STEP_COMPLETED,
    STEP_IDLE,
    STORYBOARDING,
    VIDEO_GENERATION,
)


def _at(stage, progress, **fields):
    """Fields for a project whose `stage` just completed."""
    return {"status": stage, "step_state": STEP_COMPLETED, "progress": progress, **fields}


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_manual_project_runs_every_stage_in_order(engine, ports):
    project = engine.create_project("Heist", "Chapter 1. The vault opens.")
    progress = []

    assert await engine.run_stage(project.id) is RunOutcome.SUCCEEDED
    progress.append(engine.get_project(project.id).progress)
    for _ in range(5):
        assert await engine.advance(project.id) is RunOutcome.SUCCEEDED
        progress.append(engine.get_project(project.id).progress)

    stored = engine.get_project(project.id)
    assert progress == [15, 40, 60, 80, 90, 100]
    assert stored.status == COMPLETED
    assert stored.step_state == STEP_COMPLETED
    assert [c.portrait_url for c in stored.characters] == [
        f"https://img.test/{name}.png" for name in CAST
    ]
    assert all(s.optimized_video_prompt.startswith("[0-15s]") for s in stored.sequences)
    assert all(s.video_url for s in stored.sequences)
    assert {s.generation_status for s in stored.sequences} == {"Completed"}
    assert stored.cover_image in {s.storyboard_image_url for s in stored.sequences}
    assert len({s.id for s in stored.sequences}) == 5


@pytest.mark.asyncio
async def test_premise_to_character_design_with_one_failed_portrait(engine, ports):
    draft = make_draft()
    draft.characters.append(draft.characters[0].model_copy(update={"name": "Dan"}))
    ports.text.draft = draft
    ports.image.fail_characters = {"Cara"}
    project = engine.create_project("Idea", "A heist goes wrong", source_kind="premise")

    await engine.run_stage(project.id)
    stored = engine.get_project(project.id)
    assert [s.name for s in stored.segments] == ["Full Text"]

    await engine.advance(project.id)
    assert engine.get_project(project.id).progress == 40

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert stored.progress == 60
    assert stored.status == CHARACTER_DESIGN
    assert stored.step_state == STEP_COMPLETED
    assert [c.name for c in stored.characters if c.portrait_url] == ["Ann", "Bob", "Dan"]


@pytest.mark.asyncio
async def test_storyboards_get_involved_characters_as_context(engine, ports):
    project = seed_project(
        engine,
        characters=cast(),
        sequences=[s.model_copy(update={"storyboard_image_url": None}) for s in storyboarded_sequences(2)],
        **_at(CHARACTER_DESIGN, 60),
    )

    await engine.advance(project.id)

    prompt, context, references = ports.image.storyboard_calls[0]
    assert prompt == "Board 0"
    assert context == "Ann: Ann features"
    assert references == ["https://img.test/Ann.png"]


@pytest.mark.asyncio
async def test_stage_completed_is_emitted_after_success(engine):
    events = []
    engine.controller.subscribe(events.append)
    project = engine.create_project("Heist", "Chapter 1.")

    await engine.run_stage(project.id)

    assert [(e.project_id, e.stage, e.status) for e in events] == [
        (project.id, PREPROCESSING, PREPROCESSING)
    ]


# ---------------------------------------------------------------------------
# Failure policy
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_partial_failure_still_completes_and_leaves_items_pending(engine, ports):
    project = seed_project(engine, characters=cast(with_portraits=False), **_at(SCRIPT_SYNTHESIS, 40))
    ports.image.fail_characters = {"Bob"}

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert stored.status == CHARACTER_DESIGN
    assert stored.progress == 60
    assert stored.error is None
    assert stored.find_character("Bob").portrait_url is None
    assert stored.find_character("Ann").portrait_url == "https://img.test/Ann.png"

    ports.image.fail_characters = set()
    await engine.run_stage(project.id, CHARACTER_DESIGN)

    assert ports.image.character_calls == ["Ann", "Bob", "Cara", "Bob"]
    assert engine.get_project(project.id).find_character("Bob").portrait_url


@pytest.mark.asyncio
async def test_repeated_character_names_each_get_a_portrait(engine, ports):
    draft = make_draft()
    draft.characters.append(draft.characters[0].model_copy(update={"visual_features": "twin"}))
    ports.text.draft = draft
    project = seed_project(engine, raw_text="Chapter 1.", **_at(PREPROCESSING, 15))

    await engine.advance(project.id)
    await engine.advance(project.id)
    await engine.run_stage(project.id, CHARACTER_DESIGN)

    stored = engine.get_project(project.id)
    assert [(c.name, c.visual_features) for c in stored.characters][-1] == ("Ann (2)", "twin")
    assert all(c.portrait_url for c in stored.characters)
    assert ports.image.character_calls == ["Ann", "Bob", "Cara", "Ann (2)"]


class RenamingImage(FakeImage):
    """Renames the character it is drawing before the portrait comes back."""

    def __init__(self, engine: DramaEngine, project_id: str, name: str, new_name: str) -> None:
        super().__init__()
        self.rename = (engine, project_id, name, new_name)

    async def generate_character_image(self, character, *args, **kwargs):
        engine, project_id, name, new_name = self.rename
        if character.name == name:
            engine.edit_character(project_id, name, {"name": new_name})
        return await super().generate_character_image(character, *args, **kwargs)


@pytest.mark.asyncio
async def test_portrait_for_renamed_character_counts_as_failed(engine, ports, caplog):
    project = seed_project(engine, characters=cast(with_portraits=False), **_at(SCRIPT_SYNTHESIS, 40))
    ports.image = RenamingImage(engine, project.id, "Bob", "Robert")

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert stored.find_character("Robert").portrait_url is None
    assert stored.find_character("Ann").portrait_url == "https://img.test/Ann.png"
    assert "portrait discarded" in caplog.text


@pytest.mark.asyncio
async def test_only_renamed_characters_pending_fails_the_stage(engine, ports):
    characters = cast()
    characters[1].portrait_url = None
    project = seed_project(engine, characters=characters, **_at(SCRIPT_SYNTHESIS, 40))
    ports.image = RenamingImage(engine, project.id, "Bob", "Robert")

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.FAILED
    assert stored.error == "Character design failed: All 1 characters failed to generate"


@pytest.mark.asyncio
async def test_all_items_failing_fails_the_stage(engine, ports):
    project = seed_project(engine, characters=cast(with_portraits=False), **_at(SCRIPT_SYNTHESIS, 40))
    ports.image.fail_characters = set(CAST)

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.FAILED
    assert stored.status == FAILED
    assert stored.failed_stage == CHARACTER_DESIGN
    assert stored.error == "Character design failed: All 3 characters failed to generate"
    assert stored.step_state == STEP_IDLE
    assert stored.progress == 40
    assert all(c.generation_status is None for c in stored.characters)


@pytest.mark.asyncio
async def test_retry_reruns_the_failed_stage(engine, ports):
    project = seed_project(engine, characters=cast(with_portraits=False), **_at(SCRIPT_SYNTHESIS, 40))
    ports.image.fail_characters = set(CAST)
    await engine.advance(project.id)

    ports.image.fail_characters = set()
    outcome = await engine.retry(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert stored.status == CHARACTER_DESIGN
    assert stored.error is None
    assert stored.failed_stage is None
    assert stored.progress == 60


@pytest.mark.asyncio
async def test_retry_skips_characters_that_already_have_portraits(engine, ports):
    characters = cast()
    for character in characters[1:]:
        character.portrait_url = None
    project = seed_project(engine, characters=characters, **_at(SCRIPT_SYNTHESIS, 40))
    ports.image.fail_characters = {"Bob", "Cara"}
    assert await engine.advance(project.id) is RunOutcome.FAILED

    ports.image.fail_characters = set()
    outcome = await engine.retry(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert "Ann" not in ports.image.character_calls
    assert ports.image.character_calls == ["Bob", "Cara", "Bob", "Cara"]
    assert stored.find_character("Ann").portrait_url == "https://img.test/Ann.png"
    assert all(c.portrait_url for c in stored.characters)


@pytest.mark.asyncio
async def test_all_storyboards_failing_marks_each_sequence(engine, ports):
    sequences = [s.model_copy(update={"storyboard_image_url": None}) for s in storyboarded_sequences(2)]
    project = seed_project(engine, characters=cast(), sequences=sequences, **_at(CHARACTER_DESIGN, 60))
    ports.image.fail_storyboards = {"Board 0", "Board 1"}

    await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert stored.error == "Storyboard generation failed: All 2 storyboards failed to generate"
    assert [s.generation_status for s in stored.sequences] == ["Failed", "Failed"]
    assert stored.cover_image is None


@pytest.mark.asyncio
async def test_failed_video_records_reason_on_the_sequence(engine, ports):
    project = seed_project(
        engine, characters=cast(), sequences=storyboarded_sequences(3), **_at(PROMPT_OPTIMIZATION, 90)
    )
    ports.video.fail_prompts = {"[0-15s] Shot 1"}

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.SUCCEEDED
    assert stored.status == COMPLETED
    assert stored.progress == 100
    assert [s.generation_status for s in stored.sequences] == [
        "Completed",
        "Failed: Video generation failed: moderation",
        "Completed",
    ]
    assert stored.sequences[1].video_url is None


@pytest.mark.asyncio
async def test_video_stage_skips_sequences_without_storyboard(engine, ports):
    sequences = storyboarded_sequences(3)
    sequences[2].storyboard_image_url = None
    project = seed_project(engine, characters=cast(), sequences=sequences, **_at(PROMPT_OPTIMIZATION, 90))

    await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert len(ports.video.started) == 2
    assert stored.sequences[2].video_url is None
    assert stored.status == COMPLETED


@pytest.mark.asyncio
async def test_video_stage_fails_when_nothing_has_a_storyboard(engine, ports):
    sequences = [s.model_copy(update={"storyboard_image_url": None}) for s in storyboarded_sequences(2)]
    project = seed_project(engine, characters=cast(), sequences=sequences, **_at(PROMPT_OPTIMIZATION, 90))

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.FAILED
    assert stored.failed_stage == VIDEO_GENERATION
    assert "no storyboard images" in stored.error
    assert ports.video.started == []


@pytest.mark.asyncio
async def test_script_without_sequences_is_fatal(settings, ports):
    ports.text = FakeText(draft=make_draft(sequences=0))
    engine = DramaEngine(cfg=settings, ports=ports)
    project = seed_project(engine, raw_text="Some story", **_at(PREPROCESSING, 15))

    outcome = await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.FAILED
    assert stored.failed_stage == SCRIPT_SYNTHESIS
    assert stored.sequences == []


@pytest.mark.asyncio
async def test_provider_error_in_script_synthesis_is_recorded(engine, ports):
    ports.text.fail_script = True
    project = seed_project(engine, raw_text="Some story", **_at(PREPROCESSING, 15))

    await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert stored.status == FAILED
    assert stored.error == "Script synthesis failed: model overloaded"


@pytest.mark.asyncio
async def test_unexpected_handler_exception_becomes_a_stage_failure(engine):
    async def broken(ctx):
        raise RuntimeError("disk full")

    engine.controller.handlers[PREPROCESSING] = broken
    project = engine.create_project("Heist", "Chapter 1.")

    outcome = await engine.run_stage(project.id)

    stored = engine.get_project(project.id)
    assert outcome is RunOutcome.FAILED
    assert stored.error == "Preprocessing failed: RuntimeError: disk full"


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_advance_requires_a_completed_stage(engine):
    project = engine.create_project("Heist", "Chapter 1.")

    with pytest.raises(InvalidTransition):
        await engine.advance(project.id)


@pytest.mark.asyncio
async def test_retry_requires_a_failed_stage(engine):
    project = seed_project(engine, **_at(PREPROCESSING, 15))

    with pytest.raises(InvalidTransition):
        await engine.retry(project.id)


@pytest.mark.asyncio
async def test_missing_credentials_are_rejected_before_the_run(engine, settings):
    settings.video.api_key = None
    project = seed_project(
        engine, characters=cast(), sequences=storyboarded_sequences(1), **_at(PROMPT_OPTIMIZATION, 90)
    )

    with pytest.raises(ConfigurationError):
        await engine.advance(project.id)

    stored = engine.get_project(project.id)
    assert stored.status == PROMPT_OPTIMIZATION
    assert stored.step_state == STEP_COMPLETED


# ---------------------------------------------------------------------------
# Cancellation and supersession
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cancel_mid_video_stops_after_the_first_group(engine, ports):
    project = seed_project(
        engine, characters=cast(), sequences=storyboarded_sequences(5), **_at(PROMPT_OPTIMIZATION, 90)
    )
    ports.video.gate = asyncio.Event()

    engine.start_advance(project.id)
    await wait_until(lambda: len(ports.video.started) == 3)
    engine.cancel(project.id)
    await engine.wait_idle()

    stored = engine.get_project(project.id)
    assert len(ports.video.started) == 3
    assert stored.status == CANCELLED
    assert stored.step_state == STEP_COMPLETED
    assert stored.error is None
    assert stored.progress == 90
    assert all(s.video_url is None for s in stored.sequences)


@pytest.mark.asyncio
async def test_superseded_run_writes_nothing(engine, ports):
    sequences = [s.model_copy(update={"storyboard_image_url": None}) for s in storyboarded_sequences(3)]
    project = seed_project(engine, characters=cast(), sequences=sequences, **_at(CHARACTER_DESIGN, 60))
    ports.image.storyboard_gate = asyncio.Event()

    first = asyncio.create_task(engine.run_stage(project.id, STORYBOARDING))
    await wait_until(lambda: len(ports.image.storyboard_calls) == 3)
    second = await engine.run_stage(project.id, CHARACTER_DESIGN)
    ports.image.storyboard_gate.set()

    assert second is RunOutcome.SUCCEEDED
    assert await first is RunOutcome.SUPERSEDED
    stored = engine.get_project(project.id)
    assert stored.status == CHARACTER_DESIGN
    assert stored.progress == 60
    assert stored.cover_image is None
    assert all(s.storyboard_image_url is None for s in stored.sequences)


@pytest.mark.asyncio
async def test_deleting_a_running_project_discards_the_run(engine, ports):
    project = seed_project(
        engine, characters=cast(), sequences=storyboarded_sequences(2), **_at(PROMPT_OPTIMIZATION, 90)
    )
    ports.video.gate = asyncio.Event()

    run = asyncio.create_task(engine.advance(project.id))
    await wait_until(lambda: len(ports.video.started) == 2)
    engine.delete_project(project.id)

    assert await run is RunOutcome.CANCELLED
    assert not engine.store.exists(project.id)


# ---------------------------------------------------------------------------
# Auto mode
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_auto_mode_runs_to_completion(engine, ports):
    project = engine.create_project("Heist", "A thief steals the moon", mode="auto", source_kind="premise")

    await engine.wait_idle()

    stored = engine.get_project(project.id)
    assert stored.status == COMPLETED
    assert stored.progress == 100
    assert len(ports.video.started) == 5
    assert all(s.video_url for s in stored.sequences)


@pytest.mark.asyncio
async def test_auto_mode_stops_at_a_failed_stage(engine, ports):
    ports.image.fail_characters = set(CAST)
    project = engine.create_project("Heist", "Chapter 1.", mode="auto")

    await engine.wait_idle()

    stored = engine.get_project(project.id)
    assert stored.status == FAILED
    assert stored.failed_stage == CHARACTER_DESIGN
    assert ports.image.storyboard_calls == []
    assert ports.video.started == []


@pytest.mark.asyncio
async def test_manual_mode_does_not_auto_advance(engine, ports):
    project = engine.create_project("Heist", "Chapter 1.")

    await engine.run_stage(project.id)
    await engine.wait_idle()

    assert engine.get_project(project.id).status == PREPROCESSING
    assert "synthesize_script" not in ports.text.calls


@pytest.mark.asyncio
async def test_auto_mode_requires_every_provider(settings, ports):
    settings.image.api_key = None
    engine = DramaEngine(cfg=settings, ports=ports)

    with pytest.raises(ConfigurationError):
        engine.create_project("Heist", "Chapter 1.", mode="auto")

    assert engine.list_projects() == []
