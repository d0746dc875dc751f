"""Pydantic schemas for project state and LLM structured output."""

from dramaforge.schemas.project import (
    ArtStyle,
    Character,
    Project,
    ScriptAnalysis,
    ScriptScene,
    Segment,
    Sequence,
)
from dramaforge.schemas.script import ScriptDraft

__all__ = [
    "ArtStyle",
    "Character",
    "Project",
    "ScriptAnalysis",
    "ScriptDraft",
    "ScriptScene",
    "Segment",
    "Sequence",
]
