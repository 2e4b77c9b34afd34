"""pagestitch — full-page web capture by viewport tiling and stitching."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("pagestitch")
except Exception:
    __version__ = "0.0.0"
