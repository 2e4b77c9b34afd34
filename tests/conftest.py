"""pagestitch test configuration — shared fixtures and an in-memory page host."""

from __future__ import annotations

import asyncio
import io
from pathlib import Path
from typing import Iterable

import pytest
from PIL import Image

from pagestitch.engine.host import PageMetrics, ScrollCandidate
from pagestitch.exceptions import CaptureUnavailableError
from pagestitch.models.capture import CaptureOptions
from pagestitch.models.page import FixedElementInfo, FrameInfo, Region

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Synthetic page rendering
# ---------------------------------------------------------------------------


def row_color(y: int) -> tuple[int, int, int]:
    """Color of page row *y*: unique per row for pages shorter than 65536px."""
    return (y % 256, (y // 256) % 256, 200)


def render_page(width: int, height: int) -> Image.Image:
    """Render a page whose every row has a distinct solid color."""
    rows = b"".join(bytes(row_color(y)) * width for y in range(height))
    return Image.frombytes("RGB", (width, height), rows)


def png_bytes(image: Image.Image) -> bytes:
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return buf.getvalue()


def decode(raster: bytes) -> Image.Image:
    return Image.open(io.BytesIO(raster)).convert("RGB")


# ---------------------------------------------------------------------------
# Fake host
# ---------------------------------------------------------------------------


class FakeHost:
    """In-memory page implementing every engine host protocol.

    Viewport grabs are crops of a synthetic page at the current scroll
    offset, so stitched output can be checked pixel by pixel.
    """

    def __init__(
        self,
        *,
        viewport: tuple[int, int] = (800, 600),
        page: tuple[int, int] = (800, 1800),
        scroll: tuple[int, int] = (0, 0),
        pixel_ratio: float = 1.0,
        candidates: Iterable[ScrollCandidate] = (),
        frames: Iterable[FrameInfo] = (),
        cross_origin: Iterable[str] = (),
        fixed: Iterable[FixedElementInfo] = (),
        lazy: bool = False,
        fail_capture_at: int | None = None,
        failing_regions: Iterable[str] = (),
        images: dict[str, int | None] | None = None,
        url: str = "https://example.com/articles/long",
        title: str = "A long article",
    ) -> None:
        self.viewport_width, self.viewport_height = viewport
        self.page_width, self.page_height = page
        self.x, self.y = scroll
        self.pixel_ratio = pixel_ratio
        self.candidates = list(candidates)
        self.frames = list(frames)
        self.cross_origin = set(cross_origin)
        self.fixed = list(fixed)
        self.lazy = lazy
        self.fail_capture_at = fail_capture_at
        self.failing_regions = set(failing_regions)
        # key -> frames until loaded (None = never loads)
        self.images: dict[str, int | None] = dict(images or {})
        self.url = url
        self.title = title

        self.capture_count = 0
        self.captured_offsets: list[tuple[int, int]] = []
        self.scroll_calls: list[tuple[int, int]] = []
        self.frame_count = 0
        self.region_offsets: dict[str, tuple[int, int]] = {}
        self.region_scroll_calls: list[tuple[str, int, int]] = []
        self._page_image = render_page(self.page_width, self.page_height)

    @property
    def max_x(self) -> int:
        return max(0, self.page_width - self.viewport_width)

    @property
    def max_y(self) -> int:
        return max(0, self.page_height - self.viewport_height)

    # PageInspector -----------------------------------------------------

    async def measure(self) -> PageMetrics:
        return PageMetrics(
            viewport_width=self.viewport_width,
            viewport_height=self.viewport_height,
            document_scroll_width=self.page_width,
            document_scroll_height=self.page_height,
            body_scroll_width=self.page_width - 16,
            body_scroll_height=self.page_height - 16,
            document_offset_width=min(self.page_width, self.viewport_width),
            document_offset_height=min(self.page_height, self.viewport_height),
            body_offset_width=self.page_width - 16,
            body_offset_height=self.page_height - 16,
            scroll_x=self.x,
            scroll_y=self.y,
            pixel_ratio=self.pixel_ratio,
            url=self.url,
            title=self.title,
        )

    async def list_scrollable_regions(self) -> list[ScrollCandidate]:
        return list(self.candidates)

    async def list_frames(self) -> list[FrameInfo]:
        return list(self.frames)

    async def probe_frame(self, frame: FrameInfo) -> bool:
        if frame.selector in self.cross_origin:
            raise PermissionError("Blocked a frame from accessing a cross-origin frame")
        return True

    async def list_fixed_elements(self) -> list[FixedElementInfo]:
        return list(self.fixed)

    async def has_lazy_images(self) -> bool:
        return self.lazy

    # PageDriver --------------------------------------------------------

    async def scroll_offset(self) -> tuple[int, int]:
        return self.x, self.y

    async def scroll_to(self, x: int, y: int) -> None:
        self.x = min(max(x, 0), self.max_x)
        self.y = min(max(y, 0), self.max_y)
        self.scroll_calls.append((self.x, self.y))

    async def region_scroll_offset(self, region: Region) -> tuple[int, int]:
        if region.selector in self.failing_regions:
            raise RuntimeError(f"region detached: {region.selector}")
        return self.region_offsets.get(region.selector, (0, 0))

    async def scroll_region_to(self, region: Region, x: int, y: int) -> None:
        max_y = max(0, region.scroll_height - region.client_height)
        max_x = max(0, region.scroll_width - region.client_width)
        offset = (min(max(x, 0), max_x), min(max(y, 0), max_y))
        self.region_offsets[region.selector] = offset
        self.region_scroll_calls.append((region.selector, *offset))

    async def next_frame(self) -> None:
        self.frame_count += 1
        for key, remaining in self.images.items():
            if remaining:
                self.images[key] = remaining - 1
        await asyncio.sleep(0)

    async def pending_images(self) -> list[str]:
        return [key for key, remaining in self.images.items() if remaining is None or remaining > 0]

    # ViewportCapturer --------------------------------------------------

    async def capture(self) -> bytes:
        self.capture_count += 1
        if self.fail_capture_at is not None and self.capture_count == self.fail_capture_at:
            raise CaptureUnavailableError("capture denied")
        self.captured_offsets.append((self.x, self.y))

        shot = Image.new("RGB", (self.viewport_width, self.viewport_height), (255, 255, 255))
        shot.paste(
            self._page_image.crop((self.x, self.y, self.x + self.viewport_width, self.y + self.viewport_height)),
            (0, 0),
        )
        if self.pixel_ratio != 1.0:
            shot = shot.resize(
                (round(self.viewport_width * self.pixel_ratio), round(self.viewport_height * self.pixel_ratio))
            )
        return png_bytes(shot)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    """Run anyio-marked tests on asyncio, which the engine is built on."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from pagestitch.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def fast_options() -> CaptureOptions:
    """Options with no animation and no settle delay so loop tests run instantly."""
    return CaptureOptions(scroll_delay_ms=0, scroll_duration_ms=0, image_timeout_ms=50)


@pytest.fixture()
def make_host():
    """Factory for ``FakeHost`` instances."""
    return FakeHost


# ---------------------------------------------------------------------------
# Pytest markers
# ---------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that require a real browser or other external I/O")
    config.addinivalue_line("markers", "slow: marks tests that take more than a few seconds")
