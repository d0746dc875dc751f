"""DramaForge - AI short-drama generation pipeline.

Turns a long-form text or a short premise into a finished short-drama
video through six ordered generation stages (preprocessing, script
synthesis, character design, storyboarding, prompt optimization, video
generation), each delegating to an external generation provider.

Call validate_dependencies() during application startup to fail fast on
missing provider credentials.
"""

import logging

from dramaforge.config import ConfigurationError, settings, validate_credentials
from dramaforge.orchestrator.state import STAGE_ORDER

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> None:
    """Validate that every generation provider has credentials configured.

    Raises:
        ConfigurationError: If any provider used by the pipeline lacks an API key.
    """
    try:
        validate_credentials(settings, STAGE_ORDER)
    except ConfigurationError:
        logger.error("Provider configuration incomplete")
        raise
    logger.info(
        "Providers configured: text=%s image=%s video=%s",
        settings.text.model_id, settings.image.model, settings.video.model,
    )
