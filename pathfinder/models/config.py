"""Configuration models for the scenario engine."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from pathfinder.errors import ConfigurationError

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; PathfinderBot/1.0)"


class TimeoutConfig(BaseModel):
    """Per-operation timeouts, all in milliseconds."""
    navigation: int = 30000
    visibility: int = 10000
    click: int = 5000
    wait_selector: int = 30000
    wait_delay: int = 3000


class BrowserConfig(BaseModel):
    headless: bool = True
    user_agent: str = DEFAULT_USER_AGENT


class StorageConfig(BaseModel):
    root_dir: str = ".pathfinder"
    bucket: str = "test-screenshots"
    create_bucket: bool = True


class DiffConfig(BaseModel):
    default_threshold: float = 0.1  # fraction of pixels, 0.1 == 10%
    pixel_sensitivity: float = 0.1
    include_antialiasing: bool = False
    alpha: float = 0.1

    @field_validator("default_threshold", "pixel_sensitivity", "alpha")
    @classmethod
    def check_unit_range(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v


class AIConfig(BaseModel):
    enabled: bool = False
    model: str = "claude-sonnet-4-5"
    max_tokens: int = 4096
    requests_per_minute: int = 20
    api_key: Optional[str] = None

    @field_validator("api_key", mode="before")
    @classmethod
    def resolve_env_key(cls, v: Optional[str]) -> Optional[str]:
        if isinstance(v, str) and v.startswith("env:"):
            env_var = v[4:]
            resolved = os.environ.get(env_var)
            if resolved is None:
                raise ValueError(f"Environment variable '{env_var}' not set")
            return resolved
        return v


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


class FrameworkConfig(BaseModel):
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    # Capture a step-{n}-{kind} screenshot after every successful step
    screenshot_on_every_step: bool = False

    # Named device profiles accepted wherever a viewport name is given
    viewport_presets: dict[str, tuple[int, int]] = Field(
        default_factory=lambda: {
            "mobile": (375, 667),
            "tablet": (768, 1024),
            "desktop": (1920, 1080),
        }
    )

    @classmethod
    def load(cls, path: str | Path) -> "FrameworkConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config {path}: {e}") from e

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(exclude={"ai": {"api_key"}}), f, indent=2)
