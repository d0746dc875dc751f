"""Pydantic schemas for script synthesis structured output.

These schemas define the structure the text LLM must return when adapting
a story into a short-drama script, enabling structured output constraints
via the response_schema parameter. Field names follow the JSON contract
given to the model; ScriptDraft.to_sequences() maps them onto the
project's Sequence model.
"""

from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from dramaforge.schemas.project import (
    Character,
    DialogueLine,
    ScriptAnalysis,
    ScriptScene,
    Sequence,
    new_id,
)


def _coerce_to_str(v: Any) -> str:
    """Coerce list/non-str values to comma-separated string.

    Some LLM providers (e.g. Ollama) return arrays for fields declared as
    string in the JSON schema.  This validator normalises them so Pydantic
    validation succeeds regardless of provider quirks.
    """
    if isinstance(v, list):
        return ", ".join(str(item) for item in v)
    if v is None:
        return ""
    return v


def _coerce_to_list(v: Any) -> list:
    """Wrap a bare string into a one-element list."""
    if v is None:
        return []
    if isinstance(v, str):
        return [v] if v.strip() else []
    return v


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]
CoercedList = Annotated[list[str], BeforeValidator(_coerce_to_list)]


class AnalysisSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    core_plot: CoercedStr = Field(default="", alias="corePlot", description="Brief plot summary")
    mood: CoercedStr = Field(default="", description="Overall mood, e.g. 'Depressive, Cyberpunk'")


class CharacterSchema(BaseModel):
    """Visual profile for one character, referenced by exact name in every shot."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(description="Character name, used verbatim in charactersInvolved")
    visual_features: CoercedStr = Field(
        default="", alias="visualFeatures", description="Appearance details"
    )
    clothing: CoercedStr = Field(default="", description="Fixed outfit")
    voice: CoercedStr = Field(default="", description="Voice description")


class DialogueSchema(BaseModel):
    speaker: CoercedStr = ""
    line: CoercedStr = Field(default="", description="Full dialogue")
    action: CoercedStr = Field(default="", description="Body language")
    emotion: CoercedStr = Field(default="", description="Micro-expression")


class SceneSchema(BaseModel):
    location: CoercedStr = ""
    time: CoercedStr = ""
    environment: CoercedStr = ""
    dialogue: list[DialogueSchema] = Field(default_factory=list)


class BigShotSchema(BaseModel):
    """One six-panel sequence: storyboard layout plus video prompt."""

    model_config = ConfigDict(populate_by_name=True)

    environment_anchor: CoercedStr = Field(
        default="",
        alias="environmentAnchor",
        description="Global style, camera type, lighting, physical features shared by all panels",
    )
    included_dialogues: CoercedList = Field(default_factory=list, alias="includedDialogues")
    characters_involved: CoercedList = Field(default_factory=list, alias="charactersInvolved")
    storyboard_prompt: CoercedStr = Field(
        default="",
        alias="storyboardPrompt",
        description="Six slot descriptions, each ending with a semicolon",
    )
    video_prompt: CoercedStr = Field(
        default="",
        alias="soraPrompt",
        description="A six-grid video generation prompt",
    )


class ScriptDraft(BaseModel):
    """Complete script synthesis output.

    Every scene in `script` must map to at least one entry in `bigShots`.
    """

    model_config = ConfigDict(populate_by_name=True)

    analysis: AnalysisSchema = Field(default_factory=AnalysisSchema)
    characters: list[CharacterSchema] = Field(default_factory=list)
    script: list[SceneSchema] = Field(default_factory=list)
    big_shots: list[BigShotSchema] = Field(default_factory=list, alias="bigShots")

    def to_analysis(self) -> ScriptAnalysis:
        return ScriptAnalysis(core_plot=self.analysis.core_plot, mood=self.analysis.mood)

    def to_characters(self) -> list[Character]:
        """Project characters, with repeated names suffixed " (2)", " (3)"...

        Character work is keyed by name, so every name must be unique.
        """
        characters = []
        taken: set[str] = set()
        for c in self.characters:
            name = c.name
            n = 2
            while name in taken:
                name = f"{c.name} ({n})"
                n += 1
            taken.add(name)
            characters.append(
                Character(
                    name=name,
                    visual_features=c.visual_features,
                    clothing=c.clothing,
                    voice=c.voice,
                )
            )
        return characters

    def to_script(self) -> list[ScriptScene]:
        return [
            ScriptScene(
                location=s.location,
                time=s.time,
                environment=s.environment,
                dialogue=[DialogueLine(**d.model_dump()) for d in s.dialogue],
            )
            for s in self.script
        ]

    def to_sequences(self) -> list[Sequence]:
        """Build Sequences, each with a fresh unique id."""
        return [
            Sequence(
                id=new_id("shot"),
                included_dialogues=list(shot.included_dialogues),
                environment_anchor=shot.environment_anchor or None,
                storyboard_prompt=shot.storyboard_prompt,
                characters_involved=list(shot.characters_involved),
                video_prompt=shot.video_prompt,
            )
            for shot in self.big_shots
        ]
