"""Pydantic models for projects and the items the pipeline generates.

A Project is the single source of truth the engine mutates; Characters
and Sequences are its per-item work units. Models are serialized in full
by ProjectStore.snapshot() for the storage layer.
"""

import time
import uuid
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field

from dramaforge.orchestrator.state import IDLE, STEP_IDLE


class ArtStyle(str, Enum):
    """Visual style presets offered at project creation."""

    ANIMATION = "Animation (2D)"
    REALISTIC = "Cinematic Realistic"
    CYBERPUNK = "Cyberpunk"
    WATERCOLOR = "Watercolor"
    PIXAR = "3D Cartoon"


Language = Literal["en", "zh", "ja", "ko"]
ProjectMode = Literal["auto", "manual"]
SourceKind = Literal["full_text", "premise"]
StepState = Literal["idle", "processing", "completed"]


def new_id(prefix: str = "") -> str:
    """Return a fresh unique identifier, optionally prefixed."""
    value = uuid.uuid4().hex
    return f"{prefix}_{value}" if prefix else value


class Segment(BaseModel):
    """A slice of the source text kept for traceability only."""

    id: str
    name: str
    content: str
    index: int
    start: int = 0
    end: int = 0


class ScriptAnalysis(BaseModel):
    core_plot: str = ""
    mood: str = ""


class DialogueLine(BaseModel):
    speaker: str = ""
    line: str = ""
    action: str = ""
    emotion: str = ""


class ScriptScene(BaseModel):
    location: str = ""
    time: str = ""
    environment: str = ""
    dialogue: list[DialogueLine] = Field(default_factory=list)


class Character(BaseModel):
    """A cast member; name is the natural key sequences refer to."""

    name: str
    visual_features: str = ""
    clothing: str = ""
    voice: str = ""
    portrait_url: Optional[str] = None
    reference_image: Optional[str] = None
    generation_status: Optional[str] = None


class Sequence(BaseModel):
    """A single shot: dialogue, storyboard image and generated video."""

    id: str = Field(default_factory=lambda: new_id("shot"))
    included_dialogues: list[str] = Field(default_factory=list)
    environment_anchor: Optional[str] = None
    storyboard_prompt: str = ""
    storyboard_image_url: Optional[str] = None
    characters_involved: list[str] = Field(default_factory=list)
    video_prompt: str = ""
    optimized_video_prompt: Optional[str] = None
    video_url: Optional[str] = None
    generation_status: Optional[str] = None


class Project(BaseModel):
    """A drama project moving through the stage machine."""

    id: str = Field(default_factory=new_id)
    name: str
    style: str = ArtStyle.ANIMATION.value
    language: Language = "zh"
    mode: ProjectMode = "manual"
    source_kind: SourceKind = "full_text"
    created_at: float = Field(default_factory=time.time)
    cover_image: Optional[str] = None

    status: str = IDLE
    step_state: StepState = STEP_IDLE
    progress: int = Field(default=0, ge=0, le=100)
    error: Optional[str] = None
    failed_stage: Optional[str] = None

    raw_text: str = ""
    original_premise: Optional[str] = None
    segments: list[Segment] = Field(default_factory=list)
    analysis: Optional[ScriptAnalysis] = None
    script: list[ScriptScene] = Field(default_factory=list)
    characters: list[Character] = Field(default_factory=list)
    sequences: list[Sequence] = Field(default_factory=list)

    def find_character(self, name: str) -> Optional[Character]:
        for character in self.characters:
            if character.name == name:
                return character
        return None

    def find_sequence(self, sequence_id: str) -> Optional[Sequence]:
        for sequence in self.sequences:
            if sequence.id == sequence_id:
                return sequence
        return None
