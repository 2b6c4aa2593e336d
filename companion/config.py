"""
Quest Companion — companion/config.py
Runtime configuration loaded from TOML and validated by Pydantic.
=================================================================
Version:     0.1
Stack:       Python 3.11+ | Pydantic v2 | tomllib
Status:      Production-ready.

Config never blocks startup: a missing file yields the defaults, an
unreadable or invalid one yields the defaults plus a warning.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import tomllib
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from companion.progression import default_profile_path
from companion.watcher import (
    DEFAULT_PROJECTS_ROOT,
    NEWER_FILE_CHECK_POLLS,
    POLL_INTERVAL,
    QUEUE_CAPACITY,
    REPLAY_DELAY,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "companion.toml"

ACTIVITY_TIMEOUT: float = 60.0
AUTOSAVE_INTERVAL: float = 30.0


class CompanionConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    profile_path: Path = Field(default_factory=default_profile_path)
    projects_root: Path = DEFAULT_PROJECTS_ROOT

    # Event source
    poll_interval: float = Field(POLL_INTERVAL, gt=0)
    replay_delay: float = Field(REPLAY_DELAY, ge=0)
    queue_capacity: int = Field(QUEUE_CAPACITY, ge=1)
    newer_file_check_polls: int = Field(NEWER_FILE_CHECK_POLLS, ge=1)

    # Companion behaviour
    walk_mode: bool = False
    activity_timeout: float = Field(ACTIVITY_TIMEOUT, gt=0)
    autosave_interval: float = Field(AUTOSAVE_INTERVAL, gt=0)

    # Viewer
    log_level: str = "INFO"
    screen_width: int = Field(60, ge=40)
    screen_height: int = Field(24, ge=20)

    @field_validator("profile_path", "projects_root", mode="after")
    @classmethod
    def _expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @field_validator("log_level", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.upper()
            if value not in logging.getLevelNamesMapping():
                raise ValueError(f"Unknown log level: {value}")
        return value


def load_config(path: Optional[Path] = None) -> CompanionConfig:
    """Reads companion.toml (cwd by default). Never raises on bad input."""
    path = Path(path) if path is not None else Path.cwd() / CONFIG_FILENAME
    if not path.exists():
        return CompanionConfig()

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
        return CompanionConfig(**data)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as exc:
        logger.warning("Ignoring invalid config %s, using defaults: %s", path, exc)
        return CompanionConfig()
