"""Stitcher — composites ordered viewport captures into one image.

The canvas is exactly the page size and starts opaque (white by default)
so transparent page areas never leak into formats without alpha.
Captures are drawn in ascending section index; a later section overwrites
the strip it shares with the previous one, so the most recent sample of a
seam is the one kept.
"""

from __future__ import annotations

import io
import logging
from datetime import datetime, timezone
from typing import Iterable

from PIL import Image, ImageColor

from pagestitch.models.capture import (
    Capture,
    CaptureMetadata,
    CaptureOptions,
    CaptureType,
    CompositeResult,
    OutputFormat,
    SubCapture,
)
from pagestitch.models.page import PageAnalysis, Rect, Size

logger = logging.getLogger(__name__)

_PIL_FORMATS = {
    OutputFormat.PNG: "PNG",
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
}


def stitch(
    captures: Iterable[Capture],
    size: Size,
    options: CaptureOptions,
    *,
    pixel_ratio: float = 1.0,
) -> bytes:
    """Draw *captures* onto a ``size`` canvas and return the encoded image.

    Args:
        captures: Snapshots tagged with their sections (any order).
        size: Canvas size in CSS pixels, normally the page extent.
        options: Supplies background color, output format and quality.
        pixel_ratio: Device pixels per CSS pixel of the captured rasters.

    Returns:
        Encoded image bytes in ``options.output_format``.
    """
    background = ImageColor.getrgb(options.background_color)[:3]
    canvas = Image.new("RGB", (size.width, size.height), background)

    drawn = 0
    for capture in sorted(captures, key=lambda c: c.section.index):
        tile = _to_css_pixels(load_raster(capture.raster), pixel_ratio)
        canvas.paste(_flatten(tile, background), (capture.section.x, capture.section.y))
        drawn += 1

    logger.debug("Stitched %d capture(s) onto %dx%d canvas", drawn, size.width, size.height)
    return encode(canvas, options)


def crop_raster(raster: bytes, box: Rect, pixel_ratio: float = 1.0) -> bytes:
    """Crop a viewport raster to *box* (CSS pixels, viewport coordinates).

    The box is clipped to the raster bounds.  The result stays at device
    resolution and is encoded as PNG.
    """
    image = load_raster(raster)
    left = max(0, round(box.x * pixel_ratio))
    top = max(0, round(box.y * pixel_ratio))
    right = min(image.width, round(box.right * pixel_ratio))
    bottom = min(image.height, round(box.bottom * pixel_ratio))
    if right <= left or bottom <= top:
        raise ValueError(f"Crop box {box} lies outside the {image.width}x{image.height} raster")

    buf = io.BytesIO()
    image.crop((left, top, right, bottom)).save(buf, format="PNG")
    return buf.getvalue()


def encode(image: Image.Image, options: CaptureOptions) -> bytes:
    """Encode *image* in the requested format.

    ``quality`` (0–1) applies to lossy formats; PNG is lossless and ignores it.
    """
    fmt = _PIL_FORMATS[OutputFormat(options.output_format)]
    buf = io.BytesIO()
    if fmt == "PNG":
        image.save(buf, format=fmt, optimize=True)
    else:
        quality = max(1, min(100, round(options.quality * 100)))
        image.convert("RGB").save(buf, format=fmt, quality=quality)
    return buf.getvalue()


def load_raster(raster: bytes) -> Image.Image:
    """Decode raster bytes into an RGBA image."""
    with Image.open(io.BytesIO(raster)) as img:
        return img.convert("RGBA")


def compose_result(
    captures: list[Capture],
    analysis: PageAnalysis,
    options: CaptureOptions,
    *,
    strategy: str,
    session_id: str = "",
    sub_captures: list[SubCapture] | None = None,
) -> CompositeResult:
    """Build the final ``CompositeResult`` for a session.

    A ``viewport`` strategy returns its single capture unchanged; every
    other strategy is stitched onto a page-sized canvas.
    """
    subs = list(sub_captures or [])
    if strategy == "viewport":
        if len(captures) != 1:
            raise ValueError(f"viewport strategy expects exactly one capture, got {len(captures)}")
        raster = captures[0].raster
        capture_type = CaptureType.SINGLE
        output_format = OutputFormat.PNG
    else:
        raster = stitch(captures, analysis.page, options, pixel_ratio=analysis.pixel_ratio)
        capture_type = CaptureType.STITCHED
        output_format = OutputFormat(options.output_format)

    metadata = CaptureMetadata(
        session_id=session_id,
        capture_type=capture_type,
        strategy=strategy,
        section_count=len(captures),
        sub_capture_count=len(subs),
        output_format=output_format,
        timestamp=datetime.now(timezone.utc).isoformat(),
        analysis=analysis,
    )
    return CompositeResult(raster=raster, metadata=metadata, sub_captures=subs)


def _to_css_pixels(image: Image.Image, pixel_ratio: float) -> Image.Image:
    """Resample a device-resolution image down (or up) to CSS pixels."""
    if pixel_ratio == 1.0:
        return image
    width = max(1, round(image.width / pixel_ratio))
    height = max(1, round(image.height / pixel_ratio))
    return image.resize((width, height), Image.LANCZOS)


def _flatten(image: Image.Image, background: tuple[int, ...]) -> Image.Image:
    """Composite *image* over an opaque *background* so it replaces what it covers."""
    if image.mode != "RGBA":
        return image.convert("RGB")
    flat = Image.new("RGB", image.size, background)
    flat.paste(image, (0, 0), image)
    return flat
