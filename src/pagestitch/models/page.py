"""Page geometry and analysis snapshot models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Size(BaseModel):
    """Width/height pair in CSS pixels."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)


class Rect(BaseModel):
    """Axis-aligned rectangle in CSS pixels."""

    model_config = ConfigDict(frozen=True)

    x: int = 0
    y: int = 0
    width: int = Field(0, ge=0)
    height: int = Field(0, ge=0)

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def offset(self, dx: int, dy: int) -> "Rect":
        """Return this rectangle translated by ``(dx, dy)``."""
        return Rect(x=self.x + dx, y=self.y + dy, width=self.width, height=self.height)

    def intersect(self, other: "Rect") -> "Rect | None":
        """Return the overlap with *other*, or ``None`` when they do not overlap."""
        left = max(self.x, other.x)
        top = max(self.y, other.y)
        right = min(self.right, other.right)
        bottom = min(self.bottom, other.bottom)
        if right <= left or bottom <= top:
            return None
        return Rect(x=left, y=top, width=right - left, height=bottom - top)


class ScrollOffset(BaseModel):
    """Current page scroll position and its maximum."""

    model_config = ConfigDict(frozen=True)

    x: int = 0
    y: int = 0
    max_x: int = 0
    max_y: int = 0


class Region(BaseModel):
    """An element with its own scrollable overflow (``overflow: auto|scroll``)."""

    model_config = ConfigDict(frozen=True)

    selector: str
    rect: Rect  # page coordinates of the border box
    client_width: int = 0
    client_height: int = 0
    scroll_width: int = 0
    scroll_height: int = 0

    @property
    def client_rect(self) -> Rect:
        """The visible scrollport in page coordinates."""
        return Rect(x=self.rect.x, y=self.rect.y, width=self.client_width, height=self.client_height)


class FrameInfo(BaseModel):
    """An embedded frame. Cross-origin frames are recorded but never captured."""

    model_config = ConfigDict(frozen=True)

    selector: str
    rect: Rect  # page coordinates
    accessible: bool = False
    src: str = ""


class FixedElementInfo(BaseModel):
    """An element with ``position: fixed``; repeats in every viewport snapshot."""

    model_config = ConfigDict(frozen=True)

    selector: str
    rect: Rect  # viewport coordinates


class PageAnalysis(BaseModel):
    """Immutable snapshot of page geometry taken at the start of a capture session."""

    model_config = ConfigDict(frozen=True)

    viewport: Size
    page: Size
    scroll: ScrollOffset = Field(default_factory=ScrollOffset)
    scrollable_regions: list[Region] = Field(default_factory=list)
    frames: list[FrameInfo] = Field(default_factory=list)
    fixed_elements: list[FixedElementInfo] = Field(default_factory=list)
    has_lazy_content: bool = False
    pixel_ratio: float = Field(1.0, gt=0)
    url: str = ""
    title: str = ""
