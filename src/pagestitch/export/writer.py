"""Persist a ``CompositeResult``: the image, a JSON sidecar, and sub-captures."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from pagestitch.export.naming import TimestampFormat, generate_filename, sanitize_filename
from pagestitch.models.capture import CompositeResult

logger = logging.getLogger(__name__)


@dataclass
class SavedCapture:
    """Paths written for one capture."""

    image_path: Path
    metadata_path: Path | None = None
    sub_capture_paths: list[Path] = field(default_factory=list)


def save_result(
    result: CompositeResult,
    output_dir: Path,
    *,
    template: str = "screenshot-{timestamp}",
    timestamp_format: TimestampFormat = "iso",
    write_metadata: bool = True,
) -> SavedCapture:
    """Write *result* under *output_dir* and return the written paths.

    The image name comes from *template*; the metadata sidecar shares its
    stem with a ``.json`` suffix.  Region and frame sub-captures go to a
    ``<stem>_parts`` directory as PNG files.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    image_path = output_dir / generate_filename(result.metadata, template, timestamp_format)
    image_path.write_bytes(result.raster)
    saved = SavedCapture(image_path=image_path)

    if result.sub_captures:
        parts_dir = output_dir / f"{image_path.stem}_parts"
        parts_dir.mkdir(exist_ok=True)
        for idx, sub in enumerate(result.sub_captures):
            part = parts_dir / f"{idx:02d}-{sub.kind.value}-{sanitize_filename(sub.selector)}.png"
            part.write_bytes(sub.raster)
            saved.sub_capture_paths.append(part)

    if write_metadata:
        saved.metadata_path = image_path.with_suffix(".json")
        saved.metadata_path.write_text(result.to_json())

    logger.info("Saved capture %s (%d bytes)", image_path, len(result.raster))
    return saved
