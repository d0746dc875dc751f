"""Generator port implementations for external generation providers.

Usage:
    from dramaforge.services import build_ports

    ports = build_ports()
    url = await ports.image.generate_character_image(character, style, "zh")
"""

from typing import Optional

from dramaforge.config import Settings
from dramaforge.services.ports import (
    GenerationError,
    GenerationTimeout,
    GeneratorPorts,
    ImageGenerator,
    ProviderError,
    ProviderResponseError,
    TextGenerator,
    VideoGenerator,
)


def build_ports(cfg: Optional[Settings] = None) -> GeneratorPorts:
    """Wire the production adapters for the given settings."""
    from dramaforge.services.image_client import ImageClient
    from dramaforge.services.text_service import ScriptWriter
    from dramaforge.services.video_client import VideoClient

    return GeneratorPorts(
        text=ScriptWriter(cfg),
        image=ImageClient(cfg),
        video=VideoClient(cfg),
    )


__all__ = [
    "GenerationError",
    "GenerationTimeout",
    "GeneratorPorts",
    "ImageGenerator",
    "ProviderError",
    "ProviderResponseError",
    "TextGenerator",
    "VideoGenerator",
    "build_ports",
]
