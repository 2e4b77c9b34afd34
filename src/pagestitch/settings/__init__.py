"""pagestitch settings (pydantic-settings, layered TOML + env vars)."""

from pagestitch.settings.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
