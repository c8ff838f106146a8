"""Unified configuration loaded from .riddlefeed.toml, env vars, and CLI flags.

Loading order: defaults → TOML file → env vars → CLI flags.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from riddlefeed.shared.retry import RetryPolicy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".riddlefeed.toml"
CONFIG_SEARCH_PATHS = [
    Path("."),
]
GLOBAL_CONFIG_PATH = Path.home() / ".config" / "riddlefeed" / "config.toml"

BACKENDS = ("gemini", "anthropic")


class StorageConfig(BaseModel):
    """[storage] section."""

    directory: str = "./.riddlefeed"

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


class GenerationConfig(BaseModel):
    """[generation] section."""

    backend: str = "gemini"
    model: str | None = None
    timeout: int = 60

    @field_validator("backend")
    @classmethod
    def _known_backend(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in BACKENDS:
            raise ValueError(f"backend must be one of {', '.join(BACKENDS)}")
        return value


class ImagesConfig(BaseModel):
    """[images] section."""

    model: str | None = None
    aspect_ratio: str = "1:1"
    timeout: int = 120


class RetryConfig(BaseModel):
    """[retry] section."""

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    max_jitter: float = Field(default=1.0, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_jitter=self.max_jitter,
        )


class FeedConfig(BaseModel):
    """[feed] section: batch sizes for the default prompts."""

    today_count: int = Field(default=5, ge=1)
    batch_count: int = Field(default=8, ge=1)


class RiddlefeedConfig(BaseModel):
    """Top-level configuration model."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    images: ImagesConfig = Field(default_factory=ImagesConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    feed: FeedConfig = Field(default_factory=FeedConfig)


def load_config(path: str | Path | None = None) -> RiddlefeedConfig:
    """Load configuration from a TOML file.

    Search order:
    1. Explicit path (if provided)
    2. .riddlefeed.toml in CWD
    3. ~/.config/riddlefeed/config.toml

    Then overlay environment variables.

    Args:
        path: Explicit path to a TOML file.

    Returns:
        Merged RiddlefeedConfig.
    """
    data: dict[str, object] = {}

    if path is not None:
        toml_path = Path(path)
        if toml_path.exists():
            data = _load_toml(toml_path)
        else:
            logger.warning("Config file not found: %s", toml_path)
    else:
        for search_dir in CONFIG_SEARCH_PATHS:
            candidate = search_dir / CONFIG_FILENAME
            if candidate.exists():
                data = _load_toml(candidate)
                logger.info("Loaded config from %s", candidate)
                break
        if not data and GLOBAL_CONFIG_PATH.exists():
            data = _load_toml(GLOBAL_CONFIG_PATH)
            logger.info("Loaded config from %s", GLOBAL_CONFIG_PATH)

    config = RiddlefeedConfig.model_validate(data) if data else RiddlefeedConfig()

    return _apply_env_vars(config)


def merge_cli_overrides(config: RiddlefeedConfig, **cli_kwargs: object) -> RiddlefeedConfig:
    """Overlay explicitly-set CLI flags onto the config.

    Only overrides values where the CLI flag was explicitly provided
    (i.e., not None).
    """
    data = config.model_dump()

    mapping: dict[str, tuple[str, str]] = {
        "storage_dir": ("storage", "directory"),
        "backend": ("generation", "backend"),
        "model": ("generation", "model"),
        "max_attempts": ("retry", "max_attempts"),
    }

    for key, value in cli_kwargs.items():
        if value is None or key not in mapping:
            continue
        section, field = mapping[key]
        data[section][field] = str(value) if isinstance(value, Path) else value

    return RiddlefeedConfig.model_validate(data)


def _load_toml(path: Path) -> dict[str, object]:
    """Load a TOML file and return the data dict."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}


def _apply_env_vars(config: RiddlefeedConfig) -> RiddlefeedConfig:
    """Apply environment variable overrides to config."""
    data = config.model_dump()

    env_mapping: dict[str, tuple[str, str]] = {
        "RIDDLEFEED_STORAGE_DIR": ("storage", "directory"),
        "RIDDLEFEED_BACKEND": ("generation", "backend"),
        "RIDDLEFEED_MODEL": ("generation", "model"),
        "RIDDLEFEED_IMAGE_MODEL": ("images", "model"),
    }

    for env_var, (section, field) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            data[section][field] = value

    # Numeric retry settings
    attempts_raw = os.environ.get("RIDDLEFEED_MAX_ATTEMPTS")
    if attempts_raw is not None:
        data["retry"]["max_attempts"] = int(attempts_raw)
    delay_raw = os.environ.get("RIDDLEFEED_BASE_DELAY")
    if delay_raw is not None:
        data["retry"]["base_delay"] = float(delay_raw)

    return RiddlefeedConfig.model_validate(data)
