"""Generator ports: the abstract seams between the engine and providers.

Stage handlers only ever talk to these three interfaces. Concrete
implementations live next door (ScriptWriter, ImageClient, VideoClient)
and tests substitute in-memory fakes.

All methods are async and accept an optional CancellationToken; adapters
check it before and between network calls and raise RunCancelled once it
has fired.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Sequence

if TYPE_CHECKING:
    from dramaforge.orchestrator.cancellation import CancellationToken
    from dramaforge.schemas.project import Character
    from dramaforge.schemas.script import ScriptDraft

ProgressCallback = Callable[[str], None]


class ProviderError(RuntimeError):
    """A generation provider call failed (transport, HTTP or payload)."""


class GenerationTimeout(ProviderError):
    """The provider did not finish the job within the polling budget."""


class ProviderResponseError(ProviderError):
    """The provider answered, but with an error or an unusable payload."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GenerationError(RuntimeError):
    """A single-item regeneration requested by the operator failed."""


class TextGenerator(ABC):
    """Text LLM operations used by preprocessing, scripting and prompts."""

    @abstractmethod
    async def preprocess(
        self, raw_text: str, *, token: Optional["CancellationToken"] = None
    ) -> str:
        """Format-only cleanup of a raw text; never adds content."""

    @abstractmethod
    async def expand(
        self, premise: str, language: str, *, token: Optional["CancellationToken"] = None
    ) -> str:
        """Write a full story chapter from a short premise."""

    @abstractmethod
    async def synthesize_script(
        self,
        text: str,
        style: str,
        language: str,
        *,
        token: Optional["CancellationToken"] = None,
    ) -> "ScriptDraft":
        """Adapt a story into analysis, characters, scenes and sequences."""

    @abstractmethod
    async def optimize_prompt(
        self,
        raw_prompt: str,
        style: str,
        language: str,
        *,
        token: Optional["CancellationToken"] = None,
    ) -> str:
        """Rewrite a sequence's video prompt into the time-coded format."""

    @abstractmethod
    async def continue_story(
        self, text: str, *, token: Optional["CancellationToken"] = None
    ) -> str:
        """Write the next passage following the end of text."""


class ImageGenerator(ABC):
    """Character sheet and storyboard image generation."""

    @abstractmethod
    async def generate_character_image(
        self,
        character: "Character",
        style: str,
        language: str,
        reference_image: Optional[str] = None,
        *,
        token: Optional["CancellationToken"] = None,
    ) -> str:
        """Return the URL of a three-view design sheet for character."""

    @abstractmethod
    async def generate_storyboard_image(
        self,
        prompt: str,
        style: str,
        language: str,
        character_context: str,
        reference_image_urls: Sequence[str],
        *,
        token: Optional["CancellationToken"] = None,
    ) -> str:
        """Return the URL of a six-panel storyboard sheet."""


class VideoGenerator(ABC):
    """Long-running video generation (submit, then poll)."""

    @abstractmethod
    async def generate_video(
        self,
        prompt: str,
        style: str,
        language: str,
        anchor_image: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        *,
        token: Optional["CancellationToken"] = None,
    ) -> str:
        """Return the URL of the finished video.

        on_progress receives human-readable status strings such as
        "RUNNING (40%)" while the job is polled.
        """


@dataclass
class GeneratorPorts:
    """The three generator ports a pipeline run is wired to."""

    text: TextGenerator
    image: ImageGenerator
    video: VideoGenerator
