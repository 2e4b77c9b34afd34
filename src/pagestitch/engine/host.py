"""Host capability interfaces consumed by the engine.

Any environment that can answer geometry queries, scroll, and grab the
visible viewport (a Playwright page, a headless renderer, a test double)
can be captured by implementing these protocols.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pagestitch.models.page import FixedElementInfo, FrameInfo, Region


@dataclass
class PageMetrics:
    """Raw layout measurements reported by the host, in CSS pixels.

    The four extent pairs frequently disagree (inline vs. flex layouts,
    quirks mode, ``body`` margins); the analyzer takes their maximum.
    """

    viewport_width: int
    viewport_height: int
    document_scroll_width: int = 0
    document_scroll_height: int = 0
    body_scroll_width: int = 0
    body_scroll_height: int = 0
    document_offset_width: int = 0
    document_offset_height: int = 0
    body_offset_width: int = 0
    body_offset_height: int = 0
    scroll_x: int = 0
    scroll_y: int = 0
    pixel_ratio: float = 1.0
    url: str = ""
    title: str = ""


@dataclass
class ScrollCandidate:
    """An element whose content exceeds its client box, as reported by the host."""

    selector: str
    x: int
    y: int
    width: int
    height: int
    client_width: int
    client_height: int
    scroll_width: int
    scroll_height: int
    overflow: str = "visible"
    overflow_x: str = "visible"
    overflow_y: str = "visible"


@runtime_checkable
class PageInspector(Protocol):
    """Read-only geometry and structure queries against the live page."""

    async def measure(self) -> PageMetrics:
        """Return viewport, extent and scroll measurements."""
        ...

    async def list_scrollable_regions(self) -> list[ScrollCandidate]:
        """Return elements whose content overflows their client box, with overflow styles."""
        ...

    async def list_frames(self) -> list[FrameInfo]:
        """Return every embedded frame; ``accessible`` is decided by ``probe_frame``."""
        ...

    async def probe_frame(self, frame: FrameInfo) -> bool:
        """Return True if the frame's document can be read. May raise for cross-origin frames."""
        ...

    async def list_fixed_elements(self) -> list[FixedElementInfo]:
        """Return elements with ``position: fixed``."""
        ...

    async def has_lazy_images(self) -> bool:
        """Return True if the page carries deferred-loading image markup."""
        ...


@runtime_checkable
class PageDriver(Protocol):
    """Scroll and timing primitives used by the capture loop."""

    async def scroll_offset(self) -> tuple[int, int]:
        """Return the page's current ``(x, y)`` scroll offset."""
        ...

    async def scroll_to(self, x: int, y: int) -> None:
        """Jump the page scroll position to ``(x, y)``."""
        ...

    async def region_scroll_offset(self, region: Region) -> tuple[int, int]:
        """Return the ``(x, y)`` scroll offset of a scrollable region."""
        ...

    async def scroll_region_to(self, region: Region, x: int, y: int) -> None:
        """Jump a scrollable region's own scroll position to ``(x, y)``."""
        ...

    async def next_frame(self) -> None:
        """Suspend until the next animation frame."""
        ...

    async def pending_images(self) -> list[str]:
        """Return keys of images intersecting the viewport that have not finished loading."""
        ...


@runtime_checkable
class ViewportCapturer(Protocol):
    """Opaque single-viewport screen grab."""

    async def capture(self) -> bytes:
        """Return the currently visible viewport as an encoded lossless raster.

        Raises:
            CaptureUnavailableError: If the grab fails or is denied.
        """
        ...


@runtime_checkable
class PageHost(PageInspector, PageDriver, ViewportCapturer, Protocol):
    """A single page context offering every capability the engine needs."""
