"""Filename generation from capture metadata.

Templates may use ``{timestamp}``, ``{date}``, ``{time}``, ``{title}`` and
``{domain}``.  Titles and domains are sanitized for filesystem use.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Literal
from urllib.parse import urlparse

from pagestitch.models.capture import CaptureMetadata, OutputFormat

TimestampFormat = Literal["iso", "simple", "readable"]

_UNSAFE_CHARS = re.compile(r'[<>:"/\\|?*]')
_WHITESPACE = re.compile(r"\s+")
_MAX_COMPONENT_LEN = 50

_EXTENSIONS = {
    OutputFormat.PNG: "png",
    OutputFormat.JPEG: "jpg",
    OutputFormat.WEBP: "webp",
}


def sanitize_filename(value: str) -> str:
    """Replace characters that are unsafe in filenames and cap the length."""
    cleaned = _UNSAFE_CHARS.sub("-", value)
    cleaned = _WHITESPACE.sub("-", cleaned)
    return cleaned[:_MAX_COMPONENT_LEN]


def format_timestamp(moment: datetime, fmt: TimestampFormat = "iso") -> str:
    """Render *moment* (converted to UTC) in one of the filename-safe styles.

    ``iso``      → ``2024-05-01T12-30-45``
    ``simple``   → ``20240501123045``
    ``readable`` → ``2024-05-01_12-30-45``
    """
    base = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    if fmt == "simple":
        return re.sub(r"[-:T]", "", base)
    if fmt == "readable":
        return base.replace("T", "_").replace(":", "-")
    return base.replace(":", "-")


def generate_filename(
    metadata: CaptureMetadata,
    template: str = "screenshot-{timestamp}",
    timestamp_format: TimestampFormat = "iso",
) -> str:
    """Build a filename (with extension) for a capture from *template*."""
    moment = _parse_timestamp(metadata.timestamp)
    analysis = metadata.analysis

    title = sanitize_filename(analysis.title or "untitled")
    domain = sanitize_filename(urlparse(analysis.url).hostname or "unknown")

    name = (
        template.replace("{timestamp}", format_timestamp(moment, timestamp_format))
        .replace("{date}", moment.astimezone(timezone.utc).strftime("%Y-%m-%d"))
        .replace("{time}", moment.astimezone(timezone.utc).strftime("%H-%M-%S"))
        .replace("{title}", title)
        .replace("{domain}", domain)
    )
    return f"{name}.{_EXTENSIONS[OutputFormat(metadata.output_format)]}"


def _parse_timestamp(value: str) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment
