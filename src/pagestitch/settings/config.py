"""Configuration loader for pagestitch using Pydantic settings.

Config precedence (highest wins):
  1. CLI flags (where applicable)
  2. Environment variables (PAGESTITCH_* with __ for nesting)
  3. settings.local.toml
  4. settings.{env}.toml
  5. settings.default.toml
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pagestitch.models.capture import CaptureOptions, OutputFormat

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = Path(os.getenv("PAGESTITCH_PROJECT_ROOT", _THIS_DIR.parents[2]))
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR_NAME = "PAGESTITCH_ENV"
DEFAULT_ENV = "local"


def _resolve_env() -> str:
    return (os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()


def _load_toml(path: Path) -> dict[str, Any]:
    if path.is_file():
        with open(path, "rb") as f:
            return tomllib.load(f)
    return {}


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class CaptureSettings(BaseSettings):
    """Defaults for capture requests."""

    model_config = SettingsConfigDict(env_prefix="PAGESTITCH_CAPTURE__")

    scroll_delay_ms: int = 500
    include_frames: bool = True
    quality: float = Field(0.95, ge=0.0, le=1.0)
    output_format: OutputFormat = OutputFormat.PNG
    background_color: str = "#ffffff"
    scroll_duration_ms: int = 300
    image_timeout_ms: int = 2000
    stable_frames: int = 3
    max_stability_frames: int = 300

    def to_options(self, *, debug: bool = False, **overrides: Any) -> CaptureOptions:
        """Build ``CaptureOptions`` from these defaults plus explicit overrides."""
        values = self.model_dump()
        values["debug"] = debug
        values.update({k: v for k, v in overrides.items() if v is not None})
        return CaptureOptions(**values)


class BrowserSettings(BaseSettings):
    """Playwright browser settings."""

    model_config = SettingsConfigDict(env_prefix="PAGESTITCH_BROWSER__")

    headless: bool = True
    timeout_ms: int = 30_000
    wait_until: Literal["commit", "domcontentloaded", "load", "networkidle"] = "networkidle"
    viewport_width: int = 1280
    viewport_height: int = 800
    device_scale_factor: float = 1.0
    user_agent: str = ""


class OutputSettings(BaseSettings):
    """Where and how captures are written."""

    model_config = SettingsConfigDict(env_prefix="PAGESTITCH_OUTPUT__")

    output_dir: str = "data/captures"
    filename_template: str = "screenshot-{timestamp}"
    timestamp_format: Literal["iso", "simple", "readable"] = "iso"
    write_metadata: bool = True


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Root pagestitch settings with nested sections."""

    model_config = SettingsConfigDict(
        env_prefix="PAGESTITCH_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=_resolve_env)
    project_root: Path = Field(default=PROJECT_ROOT)
    debug: bool = False

    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    output: OutputSettings = Field(default_factory=OutputSettings)

    @model_validator(mode="before")
    @classmethod
    def _merge_toml_files(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Layer TOML config files before env var overrides."""
        defaults = _load_toml(CONFIG_DIR / "settings.default.toml")
        env_name = (values.get("env") or os.getenv(ENV_VAR_NAME) or DEFAULT_ENV).strip()
        env_overrides = _load_toml(CONFIG_DIR / f"settings.{env_name}.toml")
        local_overrides = _load_toml(CONFIG_DIR / "settings.local.toml")

        # Merge: defaults < env-specific < local < explicit values
        merged: dict[str, Any] = {}
        for layer in (defaults, env_overrides, local_overrides, values):
            for key, val in layer.items():
                if isinstance(val, dict) and isinstance(merged.get(key), dict):
                    merged[key] = {**merged[key], **val}
                else:
                    merged[key] = val
        return merged

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Normalize relative paths against project_root."""
        if not Path(self.output.output_dir).is_absolute():
            self.output.output_dir = str(self.project_root / self.output.output_dir)
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the singleton settings instance (cached)."""
    return Settings()
