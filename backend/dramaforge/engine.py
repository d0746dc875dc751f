"""Command facade over the store, the pipeline controller and the ports.

DramaEngine is what the API and CLI talk to: project lifecycle, stage
commands, manual edits of characters and sequences, and single-item
regeneration outside of any pipeline run.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from pydantic import ValidationError

from dramaforge.config import Settings, validate_credentials
from dramaforge.orchestrator.auto_advance import AutoAdvanceDriver
from dramaforge.orchestrator.cancellation import CancellationRegistry
from dramaforge.orchestrator.pipeline import (
    InvalidTransition,
    PipelineController,
    RunOutcome,
)
from dramaforge.orchestrator.state import IDLE, PREPROCESSING, STAGE_ORDER
from dramaforge.pipeline.storyboard import generate_storyboard_for
from dramaforge.pipeline.video_gen import video_prompt_for
from dramaforge.schemas.project import ArtStyle, Character, Project, Sequence
from dramaforge.services import build_ports
from dramaforge.services.character_matching import (
    rename_character_references,
    toggle_involved_character,
)
from dramaforge.services.ports import GenerationError, GeneratorPorts, ProviderError
from dramaforge.store import ProjectStore

logger = logging.getLogger(__name__)

REGENERATING = "Regenerating..."
GENERATING_STORYBOARD = "Generating Storyboard..."
REGENERATION_FAILED = "Regeneration Failed"
STARTING_VIDEO = "Starting Video Gen..."
VIDEO_COMPLETED = "Completed"

# Fields a user may change on an existing item
CHARACTER_FIELDS = {"name", "visual_features", "clothing", "voice", "portrait_url", "reference_image"}
SEQUENCE_FIELDS = {
    "included_dialogues",
    "environment_anchor",
    "storyboard_prompt",
    "storyboard_image_url",
    "characters_involved",
    "video_prompt",
    "optimized_video_prompt",
    "video_url",
}

NO_STORYBOARD_FOR_VIDEO = "A sequence needs a storyboard image before it can have a video"


class ItemNotFound(LookupError):
    """A character or sequence referenced by a command does not exist."""


class DramaEngine:
    """Entry point for every user command."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        ports: Optional[GeneratorPorts] = None,
        store: Optional[ProjectStore] = None,
        registry: Optional[CancellationRegistry] = None,
    ) -> None:
        if cfg is None:
            from dramaforge.config import settings as cfg
        self.settings = cfg
        self.store = store or ProjectStore()
        self.ports = ports or build_ports(cfg)
        self.controller = PipelineController(self.store, self.ports, cfg, registry)
        self.auto_advance = AutoAdvanceDriver(self.controller, cfg)
        self.auto_advance.attach()

    # -- projects --------------------------------------------------------------

    def create_project(
        self,
        name: str,
        content: str,
        style: str = ArtStyle.ANIMATION.value,
        language: str = "zh",
        mode: str = "manual",
        source_kind: str = "full_text",
    ) -> Project:
        """Create a project from a full text or a short premise.

        Auto-mode projects start preprocessing shortly after creation; this
        requires a running event loop.

        Raises:
            ConfigurationError: In auto mode, when any stage lacks credentials.
        """
        if mode == "auto":
            validate_credentials(self.settings, STAGE_ORDER)

        project = Project(
            name=name,
            style=style,
            language=language,
            mode=mode,
            source_kind=source_kind,
            raw_text=content if source_kind == "full_text" else "",
            original_premise=content if source_kind == "premise" else None,
        )
        self.store.add(project)
        logger.info("Project %s created (%s, %s mode)", project.id, source_kind, mode)

        if mode == "auto":
            self.controller.spawn(self._auto_start(project.id), name=f"auto-start-{project.id}")
        return project

    async def _auto_start(self, project_id: str) -> None:
        await asyncio.sleep(self.settings.pipeline.auto_start_delay)
        if not self.store.exists(project_id) or self.store.get(project_id).status != IDLE:
            return
        await self.controller.run_stage(project_id, PREPROCESSING)

    def get_project(self, project_id: str) -> Project:
        return self.store.get(project_id)

    def list_projects(self) -> list[Project]:
        return self.store.list()

    def snapshot(self) -> list[dict]:
        return self.store.snapshot()

    def subscribe(self, listener: Callable[[list[dict]], Any]) -> Callable[[], None]:
        """Receive the full serialized project list after every change."""
        return self.store.subscribe(listener)

    def delete_project(self, project_id: str) -> None:
        self.store.get(project_id)
        self.controller.registry.cancel(project_id)
        self.store.delete(project_id)
        logger.info("Project %s deleted", project_id)

    # -- stage commands --------------------------------------------------------

    def _checked(self, stage: str) -> str:
        validate_credentials(self.settings, [stage])
        return stage

    async def run_stage(self, project_id: str, stage: Optional[str] = None) -> RunOutcome:
        """Run a stage (default: the one matching the current status) and wait."""
        target = self._checked(self.controller.resolve_stage(project_id, stage))
        return await self.controller.run_stage(project_id, target)

    async def advance(self, project_id: str) -> RunOutcome:
        target = self._checked(self.controller.advance_target(project_id))
        return await self.controller.run_stage(project_id, target)

    async def retry(self, project_id: str) -> RunOutcome:
        target = self._checked(self.controller.retry_target(project_id))
        return await self.controller.run_stage(project_id, target)

    def start_stage(self, project_id: str, stage: Optional[str] = None) -> str:
        """Like run_stage, but returns at once with the stage now running."""
        target = self._checked(self.controller.resolve_stage(project_id, stage))
        self.controller.start_stage(project_id, target)
        return target

    def start_advance(self, project_id: str) -> str:
        target = self._checked(self.controller.advance_target(project_id))
        self.controller.start_stage(project_id, target)
        return target

    def start_retry(self, project_id: str) -> str:
        target = self._checked(self.controller.retry_target(project_id))
        self.controller.start_stage(project_id, target)
        return target

    def cancel(self, project_id: str) -> None:
        self.controller.cancel(project_id)

    async def wait_idle(self) -> None:
        await self.controller.wait_idle()

    async def close(self) -> None:
        """Stop background work and release HTTP clients."""
        self.auto_advance.detach()
        await self.controller.shutdown()
        for port in (self.ports.text, self.ports.image, self.ports.video):
            close = getattr(port, "close", None)
            if close is not None:
                await close()

    # -- source text -----------------------------------------------------------

    def edit_source_text(self, project_id: str, text: str) -> Project:
        return self.store.update(project_id, lambda p: setattr(p, "raw_text", text))

    async def continue_story(self, project_id: str) -> Project:
        """Append an LLM-written continuation to the source text.

        Raises:
            ValueError: If the project has no source text yet.
            GenerationError: If the text provider failed.
        """
        project = self.store.get(project_id)
        if not project.raw_text:
            raise ValueError("Project has no source text to continue")
        validate_credentials(self.settings, [PREPROCESSING])

        try:
            continuation = await self.ports.text.continue_story(project.raw_text)
        except ProviderError as e:
            raise GenerationError(f"Failed to expand story: {e}") from e

        updated = project.raw_text + "\n\n" + continuation
        return self.store.update(project_id, lambda p: setattr(p, "raw_text", updated))

    # -- characters ------------------------------------------------------------

    def add_character(self, project_id: str, character: Optional[Character] = None) -> Character:
        """Add a cast member; without one, a placeholder is added for editing."""
        project = self.store.get(project_id)
        if character is None:
            character = Character(
                name=f"New Character {len(project.characters) + 1}",
                visual_features="Description here...",
                clothing="Clothing here...",
                voice="Voice description...",
            )
        if project.find_character(character.name) is not None:
            raise ValueError(f"Character '{character.name}' already exists")

        self.store.update(project_id, lambda p: p.characters.append(character))
        return character

    def edit_character(self, project_id: str, original_name: str, updates: dict) -> Project:
        """Update a character; a rename is carried into every sequence.

        Raises:
            ItemNotFound: If no character is called original_name.
            ValueError: On unknown fields or a rename onto an existing name.
        """
        unknown = set(updates) - CHARACTER_FIELDS
        if unknown:
            raise ValueError(f"Unknown character fields: {', '.join(sorted(unknown))}")

        project = self.store.get(project_id)
        character = project.find_character(original_name)
        if character is None:
            raise ItemNotFound(f"Character '{original_name}' not found")
        try:
            edited = Character.model_validate({**character.model_dump(), **updates})
        except ValidationError as e:
            raise ValueError(str(e)) from e
        if edited.name != original_name and project.find_character(edited.name) is not None:
            raise ValueError(f"Character '{edited.name}' already exists")

        def _apply(p: Project) -> None:
            p.characters = [edited if c.name == original_name else c for c in p.characters]
            renamed = rename_character_references(p.sequences, original_name, edited.name)
            if renamed:
                logger.info(
                    "Project %s: renamed %r to %r in %d sequence(s)",
                    project_id, original_name, edited.name, renamed,
                )

        return self.store.update(project_id, _apply)

    def delete_character(self, project_id: str, name: str) -> Project:
        project = self.store.get(project_id)
        if project.find_character(name) is None:
            raise ItemNotFound(f"Character '{name}' not found")

        def _apply(p: Project) -> None:
            p.characters = [c for c in p.characters if c.name != name]

        return self.store.update(project_id, _apply)

    def set_reference_image(self, project_id: str, name: str, image: Optional[str]) -> Project:
        """Attach (or with None, clear) the user reference image of a character."""
        updated = self.store.update_character(
            project_id, name, lambda c: setattr(c, "reference_image", image)
        )
        if updated is None:
            raise ItemNotFound(f"Character '{name}' not found")
        return updated

    # -- sequences -------------------------------------------------------------

    def add_sequence(self, project_id: str, sequence: Optional[Sequence] = None) -> Sequence:
        if sequence is None:
            sequence = Sequence(
                included_dialogues=["New dialogue..."],
                storyboard_prompt="Describe scene here...",
                video_prompt="Video prompt here...",
            )
        elif sequence.video_url and not sequence.storyboard_image_url:
            raise ValueError(NO_STORYBOARD_FOR_VIDEO)
        self.store.update(project_id, lambda p: p.sequences.append(sequence))
        return sequence

    def edit_sequence(self, project_id: str, sequence_id: str, updates: dict) -> Project:
        """Apply user edits; removing the storyboard also removes the video.

        Raises:
            ValueError: For unknown fields, or a video on a sequence without
                a storyboard image.
        """
        unknown = set(updates) - SEQUENCE_FIELDS
        if unknown:
            raise ValueError(f"Unknown sequence fields: {', '.join(sorted(unknown))}")

        sequence = self._require_sequence(project_id, sequence_id)
        try:
            edited = Sequence.model_validate({**sequence.model_dump(), **updates})
        except ValidationError as e:
            raise ValueError(str(e)) from e
        if edited.video_url and not edited.storyboard_image_url:
            if "video_url" in updates:
                raise ValueError(NO_STORYBOARD_FOR_VIDEO)
            # the video was animated from the storyboard being removed
            edited.video_url = None

        def _apply(p: Project) -> None:
            p.sequences = [edited if s.id == sequence_id else s for s in p.sequences]

        return self.store.update(project_id, _apply)

    def toggle_sequence_character(self, project_id: str, sequence_id: str, name: str) -> Project:
        """Remove name from the sequence's involved characters, or add it."""
        updated = self.store.update_sequence(
            project_id,
            sequence_id,
            lambda s: setattr(
                s, "characters_involved", toggle_involved_character(s.characters_involved, name)
            ),
        )
        if updated is None:
            raise ItemNotFound(f"Sequence '{sequence_id}' not found")
        return updated

    def delete_sequence(self, project_id: str, sequence_id: str) -> Project:
        self._require_sequence(project_id, sequence_id)

        def _apply(p: Project) -> None:
            p.sequences = [s for s in p.sequences if s.id != sequence_id]

        return self.store.update(project_id, _apply)

    def _require_sequence(self, project_id: str, sequence_id: str) -> Sequence:
        sequence = self.store.get(project_id).find_sequence(sequence_id)
        if sequence is None:
            raise ItemNotFound(f"Sequence '{sequence_id}' not found")
        return sequence

    def _set_sequence_status(self, project_id: str, sequence_id: str, status: Optional[str]) -> None:
        self.store.update_sequence(
            project_id, sequence_id, lambda s: setattr(s, "generation_status", status)
        )

    # -- single-item regeneration ------------------------------------------------

    async def regenerate_single_character(self, project_id: str, name: str) -> str:
        """Redraw one character portrait; returns the new image URL.

        Raises:
            GenerationError: If the image provider failed.
        """
        project = self.store.get(project_id)
        character = project.find_character(name)
        if character is None:
            raise ItemNotFound(f"Character '{name}' not found")
        validate_credentials(self.settings, ["character_design"])

        self.store.update_character(
            project_id, name, lambda c: setattr(c, "generation_status", REGENERATING)
        )
        try:
            url = await self.ports.image.generate_character_image(
                character, project.style, project.language, character.reference_image
            )
        except ProviderError as e:
            self.store.update_character(
                project_id, name, lambda c: setattr(c, "generation_status", None)
            )
            logger.warning("Project %s: regenerating character %r failed: %s", project_id, name, e)
            raise GenerationError(f"Failed to regenerate character: {e}") from e

        def _apply(c: Character) -> None:
            c.portrait_url = url
            c.generation_status = None

        self.store.update_character(project_id, name, _apply)
        return url

    async def regenerate_single_sequence(self, project_id: str, sequence_id: str) -> str:
        """Redraw one storyboard; returns the new image URL.

        Raises:
            GenerationError: If the image provider failed.
        """
        project = self.store.get(project_id)
        sequence = self._require_sequence(project_id, sequence_id)
        validate_credentials(self.settings, ["storyboarding"])

        self._set_sequence_status(project_id, sequence_id, GENERATING_STORYBOARD)
        try:
            url = await generate_storyboard_for(self.ports.image, project, sequence)
        except ProviderError as e:
            self._set_sequence_status(project_id, sequence_id, REGENERATION_FAILED)
            logger.warning(
                "Project %s: regenerating storyboard %s failed: %s", project_id, sequence_id, e
            )
            raise GenerationError(f"Failed to regenerate storyboard: {e}") from e

        def _apply(s: Sequence) -> None:
            s.storyboard_image_url = url
            s.generation_status = None

        self.store.update_sequence(project_id, sequence_id, _apply)
        return url

    async def regenerate_single_video(self, project_id: str, sequence_id: str) -> str:
        """Re-render one sequence's video; returns the new video URL.

        Raises:
            InvalidTransition: If the sequence has no storyboard image yet.
            GenerationError: If the video provider failed.
        """
        project = self.store.get(project_id)
        sequence = self._require_sequence(project_id, sequence_id)
        if not sequence.storyboard_image_url:
            raise InvalidTransition(f"Sequence '{sequence_id}' has no storyboard image yet")
        validate_credentials(self.settings, ["video_generation"])

        self._set_sequence_status(project_id, sequence_id, STARTING_VIDEO)
        try:
            url = await self.ports.video.generate_video(
                video_prompt_for(sequence),
                project.style,
                project.language,
                sequence.storyboard_image_url,
                lambda status: self._set_sequence_status(project_id, sequence_id, status),
            )
        except ProviderError as e:
            self._set_sequence_status(project_id, sequence_id, f"Video Failed: {str(e) or 'Error'}")
            logger.warning("Project %s: regenerating video %s failed: %s", project_id, sequence_id, e)
            raise GenerationError(f"Failed to regenerate video: {e}") from e

        def _apply(s: Sequence) -> None:
            s.video_url = url
            s.generation_status = VIDEO_COMPLETED

        self.store.update_sequence(project_id, sequence_id, _apply)
        return url


