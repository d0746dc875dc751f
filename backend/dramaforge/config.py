"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Iterable, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class ConfigurationError(RuntimeError):
    """Raised when a provider cannot be used because it is not configured.

    Surfaced before a run starts; not retryable without operator action.
    """


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        # Load from config.yaml in current directory
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class TextProviderConfig(BaseModel):
    """Text LLM used for expansion, script synthesis and prompt optimization.

    model_id is routed by the LLM registry: "ollama/*" goes to Ollama,
    anything else to Gemini.
    """

    model_id: str = "gemini-3-pro-preview"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    expansion_temperature: float = 0.85
    preprocess_temperature: float = 0.1
    script_temperature: float = 0.7
    max_output_tokens: int = 8192


class OllamaConfig(BaseModel):
    """Ollama endpoint settings (only used for ollama/* text models)."""

    endpoint: Optional[str] = None
    api_key: Optional[str] = None
    use_cloud: bool = False


class ImageProviderConfig(BaseModel):
    """OpenAI-style images API (character sheets and storyboards)."""

    api_key: Optional[str] = None
    base_url: str = "https://api.nanobanana.com"
    model: str = "nano-banana"
    size: str = "1024x1024"
    storyboard_aspect_ratio: str = "16:9"
    timeout_seconds: float = 180.0


class VideoProviderConfig(BaseModel):
    """Task-based video generation API (submit, then poll)."""

    api_key: Optional[str] = None
    base_url: str = "https://api.sora.com"
    model: str = "sora-2"
    aspect_ratio: str = "16:9"
    duration: str = "15"
    poll_interval: float = 5.0
    poll_max: int = 720
    timeout_seconds: float = 120.0


class PipelineConfig(BaseModel):
    """Pipeline execution parameters."""

    character_concurrency: int = Field(default=3, ge=1)
    storyboard_concurrency: int = Field(default=3, ge=1)
    prompt_concurrency: int = Field(default=5, ge=1)
    video_concurrency: int = Field(default=3, ge=1)
    segment_threshold: int = 20000
    segment_chunk_size: int = 15000
    segment_overlap: int = 500
    auto_advance_delay: float = 0.8
    auto_start_delay: float = 0.1
    preprocess_with_llm: bool = False
    continue_story_context: int = 15000
    retry_max_attempts: int = 5
    retry_base_delay: float = 2.0

    @field_validator("segment_overlap")
    @classmethod
    def overlap_below_chunk(cls, v, info):
        """Overlap must leave a positive window step."""
        chunk = info.data.get("segment_chunk_size", 15000)
        if v >= chunk:
            raise ValueError("segment_overlap must be smaller than segment_chunk_size")
        return v


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Keyword arguments
    2. Environment variables (prefix: DRAMAFORGE_, delimiter: __)
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="DRAMAFORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    text: TextProviderConfig = Field(default_factory=TextProviderConfig)
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    image: ImageProviderConfig = Field(default_factory=ImageProviderConfig)
    video: VideoProviderConfig = Field(default_factory=VideoProviderConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Init settings (programmatic overrides, used by tests)
        2. Environment variables
        3. YAML file
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
        )


# Which provider credentials each stage needs
_STAGE_PROVIDERS = {
    "preprocessing": "text",
    "script_synthesis": "text",
    "character_design": "image",
    "storyboarding": "image",
    "prompt_optimization": "text",
    "video_generation": "video",
}


def missing_credentials(cfg: "Settings", stages: Iterable[str]) -> list[str]:
    """Return the provider sections lacking an API key for the given stages.

    Ollama text models running locally need no key.
    """
    missing: list[str] = []
    for stage in stages:
        provider = _STAGE_PROVIDERS.get(stage)
        if provider is None or provider in missing:
            continue
        if provider == "text":
            if cfg.text.model_id.startswith("ollama/"):
                if cfg.ollama.use_cloud and not cfg.ollama.api_key:
                    missing.append(provider)
                continue
            if not cfg.text.api_key:
                missing.append(provider)
        elif not getattr(cfg, provider).api_key:
            missing.append(provider)
    return missing


def validate_credentials(cfg: "Settings", stages: Iterable[str]) -> None:
    """Fail fast when a stage would run against an unconfigured provider.

    Raises:
        ConfigurationError: naming the env variables to set.
    """
    missing = missing_credentials(cfg, stages)
    if missing:
        hints = ", ".join(f"DRAMAFORGE_{name.upper()}__API_KEY" for name in missing)
        raise ConfigurationError(
            f"Provider credentials missing for: {', '.join(missing)}. Set {hints}"
        )


# Singleton instance
settings = Settings()
