"""Shared fixtures: settings with test credentials and in-memory generator fakes."""

import asyncio
from typing import Optional

import pytest

from dramaforge.config import Settings
from dramaforge.engine import DramaEngine
from dramaforge.orchestrator.cancellation import cancellable
from dramaforge.schemas.project import Character, Project, Sequence
from dramaforge.schemas.script import ScriptDraft
from dramaforge.services.ports import (
    GeneratorPorts,
    ImageGenerator,
    ProviderResponseError,
    TextGenerator,
    VideoGenerator,
)

CAST = ["Ann", "Bob", "Cara"]


def make_settings(**pipeline) -> Settings:
    """Settings with every provider configured and no artificial delays."""
    return Settings(
        text={"api_key": "test-text-key"},
        image={"api_key": "test-image-key", "base_url": "https://images.test"},
        video={
            "api_key": "test-video-key",
            "base_url": "https://video.test",
            "poll_interval": 0,
            "poll_max": 5,
        },
        pipeline={
            "auto_advance_delay": 0,
            "auto_start_delay": 0,
            "retry_max_attempts": 2,
            "retry_base_delay": 0,
            **pipeline,
        },
    )


def make_draft(sequences: int = 5) -> ScriptDraft:
    """A script with the three-person cast and `sequences` shots."""
    return ScriptDraft.model_validate(
        {
            "analysis": {"corePlot": "A heist goes wrong", "mood": "Tense"},
            "characters": [
                {"name": name, "visualFeatures": f"{name} features", "clothing": "coat", "voice": "low"}
                for name in CAST
            ],
            "script": [
                {
                    "location": "Warehouse",
                    "time": "Night",
                    "environment": "Rain",
                    "dialogue": [{"speaker": "Ann", "line": "Go.", "action": "nods", "emotion": "calm"}],
                }
            ],
            "bigShots": [
                {
                    "environmentAnchor": "Neon rain",
                    "includedDialogues": [f"Line {i}"],
                    "charactersInvolved": [CAST[i % len(CAST)]],
                    "storyboardPrompt": f"Board {i}",
                    "soraPrompt": f"Shot {i}",
                }
                for i in range(sequences)
            ],
        }
    )


class FakeText(TextGenerator):
    def __init__(self, draft: Optional[ScriptDraft] = None) -> None:
        self.draft = draft or make_draft()
        self.calls: list[str] = []
        self.fail_script = False

    async def preprocess(self, raw_text, *, token=None):
        self.calls.append("preprocess")
        return raw_text.strip()

    async def expand(self, premise, language, *, token=None):
        self.calls.append("expand")
        return f"Once upon a time: {premise}"

    async def synthesize_script(self, text, style, language, *, token=None):
        self.calls.append("synthesize_script")
        if self.fail_script:
            raise ProviderResponseError("Script synthesis failed: model overloaded")
        return self.draft

    async def optimize_prompt(self, raw_prompt, style, language, *, token=None):
        self.calls.append("optimize_prompt")
        return f"[0-15s] {raw_prompt}"

    async def continue_story(self, text, *, token=None):
        self.calls.append("continue_story")
        return "And then the lights went out."


class FakeImage(ImageGenerator):
    def __init__(self) -> None:
        self.character_calls: list[str] = []
        self.storyboard_calls: list[tuple] = []
        self.fail_characters: set[str] = set()
        self.fail_storyboards: set[str] = set()
        # When set, storyboard calls block on it and ignore cancellation
        self.storyboard_gate: Optional[asyncio.Event] = None

    async def generate_character_image(
        self, character, style, language, reference_image=None, *, token=None
    ):
        self.character_calls.append(character.name)
        if character.name in self.fail_characters:
            raise ProviderResponseError(f"Character generation failed: {character.name} rejected")
        return f"https://img.test/{character.name}.png"

    async def generate_storyboard_image(
        self, prompt, style, language, character_context, reference_image_urls, *, token=None
    ):
        self.storyboard_calls.append((prompt, character_context, list(reference_image_urls)))
        if self.storyboard_gate is not None:
            await self.storyboard_gate.wait()
        if prompt in self.fail_storyboards:
            raise ProviderResponseError("Storyboard generation failed: content policy")
        return f"https://img.test/{prompt.replace(' ', '-')}.png"


class FakeVideo(VideoGenerator):
    def __init__(self) -> None:
        self.started: list[str] = []
        self.fail_prompts: set[str] = set()
        # When set, video calls block on it until released or cancelled
        self.gate: Optional[asyncio.Event] = None

    async def generate_video(
        self, prompt, style, language, anchor_image=None, on_progress=None, *, token=None
    ):
        self.started.append(prompt)
        if on_progress is not None:
            on_progress("RUNNING (50%)")
        if self.gate is not None:
            await cancellable(self.gate.wait(), token)
        if prompt in self.fail_prompts:
            raise ProviderResponseError("Video generation failed: moderation")
        return f"https://video.test/{prompt.replace(' ', '-')}.mp4"


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def ports() -> GeneratorPorts:
    return GeneratorPorts(text=FakeText(), image=FakeImage(), video=FakeVideo())


@pytest.fixture
def engine(settings, ports) -> DramaEngine:
    return DramaEngine(cfg=settings, ports=ports)


def seed_project(engine: DramaEngine, **fields) -> Project:
    """Add a project directly in a given state (bypassing earlier stages)."""
    project = Project(name=fields.pop("name", "Seeded"), **fields)
    engine.store.add(project)
    return project


def cast(with_portraits: bool = True) -> list[Character]:
    return [
        Character(
            name=name,
            visual_features=f"{name} features",
            portrait_url=f"https://img.test/{name}.png" if with_portraits else None,
        )
        for name in CAST
    ]


def storyboarded_sequences(count: int = 5) -> list[Sequence]:
    return [
        Sequence(
            storyboard_prompt=f"Board {i}",
            storyboard_image_url=f"https://img.test/board-{i}.png",
            characters_involved=[CAST[i % len(CAST)]],
            video_prompt=f"Shot {i}",
            optimized_video_prompt=f"[0-15s] Shot {i}",
        )
        for i in range(count)
    ]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0)
