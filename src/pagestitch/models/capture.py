"""Capture request, strategy, and result models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pagestitch.models.page import FrameInfo, PageAnalysis, Rect, Region

# ---------------------------------------------------------------------------
# Request options
# ---------------------------------------------------------------------------


class OutputFormat(str, Enum):
    """Encodings supported for the composite image."""

    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"


class CaptureOptions(BaseModel):
    """Per-request capture options."""

    scroll_delay_ms: int = Field(500, ge=0)
    include_frames: bool = False
    quality: float = Field(0.95, ge=0.0, le=1.0)
    debug: bool = False

    output_format: OutputFormat = OutputFormat.PNG
    background_color: str = "#ffffff"
    scroll_duration_ms: int = Field(300, ge=0)
    image_timeout_ms: int = Field(2000, ge=0)
    stable_frames: int = Field(3, ge=1)
    max_stability_frames: int = Field(300, ge=1)

    @field_validator("background_color")
    @classmethod
    def _check_color(cls, value: str) -> str:
        from PIL import ImageColor

        ImageColor.getrgb(value)  # raises ValueError on unknown colors
        return value


# ---------------------------------------------------------------------------
# Sections and strategies
# ---------------------------------------------------------------------------


class CaptureSection(BaseModel):
    """A viewport-sized rectangle in page coordinates; ``index`` is capture order."""

    model_config = ConfigDict(frozen=True)

    x: int = 0
    y: int = 0
    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)
    index: int = Field(0, ge=0)

    @property
    def rect(self) -> Rect:
        return Rect(x=self.x, y=self.y, width=self.width, height=self.height)


class ViewportStrategy(BaseModel):
    """The page fits in one viewport; capture it as is."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["viewport"] = "viewport"


class ScrollStrategy(BaseModel):
    """Tile the page into overlapping viewport sections."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["scroll"] = "scroll"
    sections: list[CaptureSection]
    # Advisory only: tiling is always vertical.
    axis: Literal["vertical", "horizontal"] = "vertical"


class ComplexStrategy(BaseModel):
    """Tile the page, then sub-capture scrollable regions and frames."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["complex"] = "complex"
    sections: list[CaptureSection]
    regions: list[Region] = Field(default_factory=list)
    frames: list[FrameInfo] = Field(default_factory=list)


CaptureStrategy = Annotated[
    Union[ViewportStrategy, ScrollStrategy, ComplexStrategy],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Raw captures
# ---------------------------------------------------------------------------


@dataclass
class Capture:
    """One raw viewport snapshot tagged with the section it belongs to."""

    raster: bytes
    section: CaptureSection
    captured_at_millis: int = 0


class SubCaptureKind(str, Enum):
    """Kinds of secondary capture taken for complex pages."""

    REGION = "region"
    FRAME = "frame"


@dataclass
class SubCapture:
    """Image of a scrollable region or an accessible frame.

    Region images span the region's full scroll height; frame images are the
    frame box as it appeared in the viewport.
    """

    kind: SubCaptureKind
    selector: str
    rect: Rect
    raster: bytes

    def to_dict(self) -> dict[str, Any]:
        """Serialize without the raster payload."""
        return {
            "kind": self.kind.value,
            "selector": self.selector,
            "rect": self.rect.model_dump(),
            "size_bytes": len(self.raster),
        }


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


class CaptureType(str, Enum):
    """Whether the composite is a raw single capture or a stitched image."""

    SINGLE = "single"
    STITCHED = "stitched"


class CaptureMetadata(BaseModel):
    """Metadata attached to a composite, consumed by export and naming code."""

    session_id: str = ""
    capture_type: CaptureType = CaptureType.SINGLE
    strategy: str = "viewport"
    section_count: int = 1
    sub_capture_count: int = 0
    output_format: OutputFormat = OutputFormat.PNG
    timestamp: str = ""
    analysis: PageAnalysis


@dataclass
class CompositeResult:
    """Final image of a capture session plus its metadata."""

    raster: bytes
    metadata: CaptureMetadata
    sub_captures: list[SubCapture] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize metadata and sub-capture descriptors (no raster bytes)."""
        return {
            "metadata": self.metadata.model_dump(mode="json"),
            "size_bytes": len(self.raster),
            "sub_captures": [s.to_dict() for s in self.sub_captures],
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)
