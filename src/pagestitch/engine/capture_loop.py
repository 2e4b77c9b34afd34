"""Capture Loop — drives the scroll → stabilize → snapshot cycle.

Every step is strictly sequential: the page (and each region's) scroll
offset is shared mutable state, so no two captures may overlap.  The loop
suspends only at animation frames, stability polls, image-load polls and
the settle delay.

Main-section failures abort the run.  Region and frame sub-captures of
complex pages are best effort: a failure is logged, reported through
``on_sub_capture_failed``, and only that sub-capture is dropped.  The
page scroll offset recorded on entry is restored on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from pagestitch.engine.host import PageHost
from pagestitch.engine.planner import plan_extent
from pagestitch.engine.stitcher import crop_raster, stitch
from pagestitch.exceptions import (
    CaptureCancelledError,
    CaptureUnavailableError,
    FrameCaptureFailedError,
    PageStitchError,
    RegionCaptureFailedError,
    SubCaptureError,
    UnknownStrategyError,
)
from pagestitch.models.capture import (
    Capture,
    CaptureOptions,
    CaptureSection,
    ComplexStrategy,
    OutputFormat,
    ScrollStrategy,
    SubCapture,
    SubCaptureKind,
    ViewportStrategy,
)
from pagestitch.models.page import FrameInfo, PageAnalysis, Rect, Region, Size

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]
FailureCallback = Callable[[SubCaptureError], Awaitable[None]]
ReadOffset = Callable[[], Awaitable[tuple[int, int]]]
WriteOffset = Callable[[int, int], Awaitable[None]]


def ease_out_cubic(progress: float) -> float:
    """Cubic ease-out: fast start, gentle stop."""
    return 1 - (1 - progress) ** 3


class CancelToken:
    """Cooperative cancellation flag checked between capture steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        """Request cancellation; the loop stops at its next step boundary."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        """Raise ``CaptureCancelledError`` if cancellation was requested."""
        if self._cancelled:
            raise CaptureCancelledError("Capture cancelled")


@dataclass
class CaptureRun:
    """Everything one loop run produced, in capture order."""

    captures: list[Capture] = field(default_factory=list)
    sub_captures: list[SubCapture] = field(default_factory=list)
    failures: list[SubCaptureError] = field(default_factory=list)


class CaptureLoop:
    """Executes a capture strategy against a page host.

    Args:
        host: Page capabilities (inspection, scrolling, viewport grab).
        options: Timing, quality and output options for the request.
        on_progress: Awaited with ``(completed, total)`` after each main section.
        on_sub_capture_failed: Awaited with the error of each dropped sub-capture.
        cancel: Optional token checked before every step.
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        host: PageHost,
        options: CaptureOptions,
        *,
        on_progress: ProgressCallback | None = None,
        on_sub_capture_failed: FailureCallback | None = None,
        cancel: CancelToken | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._host = host
        self._options = options
        self._on_progress = on_progress
        self._on_sub_capture_failed = on_sub_capture_failed
        self._cancel = cancel or CancelToken()
        self._clock = clock
        self._log_level = logging.INFO if options.debug else logging.DEBUG

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(
        self,
        strategy: ViewportStrategy | ScrollStrategy | ComplexStrategy,
        analysis: PageAnalysis,
    ) -> CaptureRun:
        """Run *strategy* and return the captures in section order.

        Raises:
            CaptureUnavailableError: The viewport grab failed on a main section.
            CaptureCancelledError: The cancel token was triggered.
            UnknownStrategyError: *strategy* is not one of the known variants.
        """
        if isinstance(strategy, ViewportStrategy):
            return await self._run_viewport(analysis)
        if not isinstance(strategy, (ScrollStrategy, ComplexStrategy)):
            raise UnknownStrategyError(str(getattr(strategy, "kind", type(strategy).__name__)))

        run = CaptureRun()
        origin = await self._host.scroll_offset()
        try:
            run.captures = await self._capture_sections(strategy.sections)
            if isinstance(strategy, ComplexStrategy):
                await self._capture_sub_regions(strategy, analysis, run)
        finally:
            await self._restore_page(origin)
        return run

    # ------------------------------------------------------------------
    # Main sections
    # ------------------------------------------------------------------

    async def _run_viewport(self, analysis: PageAnalysis) -> CaptureRun:
        self._cancel.raise_if_cancelled()
        self._log("Capturing single viewport")
        viewport = analysis.viewport
        section = CaptureSection(x=0, y=0, width=viewport.width, height=viewport.height, index=0)
        raster = await self._grab()
        run = CaptureRun(captures=[Capture(raster=raster, section=section, captured_at_millis=_now_millis())])
        await self._report_progress(1, 1)
        return run

    async def _capture_sections(self, sections: list[CaptureSection]) -> list[Capture]:
        ordered = sorted(sections, key=lambda s: s.index)
        total = len(ordered)
        self._log("Capturing %d section(s)", total)

        captures: list[Capture] = []
        for section in ordered:
            self._cancel.raise_if_cancelled()
            await self._animate(self._host.scroll_offset, self._host.scroll_to, section.x, section.y)
            self._cancel.raise_if_cancelled()
            await self._wait_stable(self._host.scroll_offset)
            self._cancel.raise_if_cancelled()

            raster = await self._grab()
            captures.append(Capture(raster=raster, section=section, captured_at_millis=_now_millis()))
            self._log("Section %d/%d captured at y=%d", section.index + 1, total, section.y)
            await self._report_progress(len(captures), total)
        return captures

    # ------------------------------------------------------------------
    # Complex pages: regions and frames
    # ------------------------------------------------------------------

    async def _capture_sub_regions(self, strategy: ComplexStrategy, analysis: PageAnalysis, run: CaptureRun) -> None:
        for region in strategy.regions:
            try:
                run.sub_captures.append(await self._capture_region(region, analysis))
            except CaptureCancelledError:
                raise
            except Exception as exc:
                await self._record_failure(run, _as_sub_error(exc, RegionCaptureFailedError, region.selector))

        for frame in strategy.frames:
            if not frame.accessible:
                self._log("Skipping cross-origin frame %s", frame.selector)
                continue
            try:
                run.sub_captures.append(await self._capture_frame(frame, analysis))
            except CaptureCancelledError:
                raise
            except Exception as exc:
                await self._record_failure(run, _as_sub_error(exc, FrameCaptureFailedError, frame.selector))

    async def _capture_region(self, region: Region, analysis: PageAnalysis) -> SubCapture:
        """Scroll a region through its own extent and stitch the visible scrollport."""
        if region.client_width <= 0 or region.client_height <= 0:
            raise RegionCaptureFailedError(region.selector, "region has no visible scrollport")

        self._log("Capturing scrollable region %s", region.selector)

        # A scrollport taller than the viewport is only partly visible per grab.
        tile_height = min(region.client_height, analysis.viewport.height)
        tiles = plan_extent(Size(width=region.client_width, height=tile_height), region.scroll_height)
        max_region_y = max(0, region.scroll_height - region.client_height)
        read_region = lambda: self._host.region_scroll_offset(region)  # noqa: E731
        write_region = lambda x, y: self._host.scroll_region_to(region, x, y)  # noqa: E731

        origin = await read_region()
        captures: list[Capture] = []
        page_shift: int | None = None
        try:
            for tile in tiles:
                self._cancel.raise_if_cancelled()
                region_target = min(tile.y, max_region_y)
                # Rows past the region's scroll range sit lower in the scrollport;
                # the page scrolls to bring them into view.
                shift = tile.y - region_target
                if shift != page_shift:
                    await self._reveal(region.client_rect.offset(0, shift), analysis)
                    page_shift = shift
                await self._animate(read_region, write_region, 0, region_target)
                await self._wait_stable(read_region)
                self._cancel.raise_if_cancelled()

                raster = await self._grab()
                page_x, page_y = await self._host.scroll_offset()
                _, region_y = await read_region()
                scrollport = region.client_rect.offset(-page_x, -page_y)
                visible = scrollport.intersect(_viewport_rect(analysis))
                if visible is None:
                    raise RegionCaptureFailedError(region.selector, "region is outside the viewport")

                placed = CaptureSection(
                    x=visible.x - scrollport.x,
                    y=region_y + (visible.y - scrollport.y),
                    width=visible.width,
                    height=visible.height,
                    index=tile.index,
                )
                cropped = crop_raster(raster, visible, analysis.pixel_ratio)
                captures.append(Capture(raster=cropped, section=placed, captured_at_millis=_now_millis()))
        finally:
            await self._restore_region(region, origin)

        extent = Size(width=region.client_width, height=max(region.scroll_height, region.client_height))
        png = self._options.model_copy(update={"output_format": OutputFormat.PNG})
        raster = stitch(captures, extent, png, pixel_ratio=analysis.pixel_ratio)
        return SubCapture(
            kind=SubCaptureKind.REGION,
            selector=region.selector,
            rect=Rect(x=region.rect.x, y=region.rect.y, width=extent.width, height=extent.height),
            raster=raster,
        )

    async def _capture_frame(self, frame: FrameInfo, analysis: PageAnalysis) -> SubCapture:
        """Bring a frame into view and crop one viewport grab to its box."""
        self._log("Capturing frame %s", frame.selector)
        self._cancel.raise_if_cancelled()
        await self._reveal(frame.rect, analysis)
        self._cancel.raise_if_cancelled()

        raster = await self._grab()
        page_x, page_y = await self._host.scroll_offset()
        visible = frame.rect.offset(-page_x, -page_y).intersect(_viewport_rect(analysis))
        if visible is None:
            raise FrameCaptureFailedError(frame.selector, "frame is outside the viewport")

        return SubCapture(
            kind=SubCaptureKind.FRAME,
            selector=frame.selector,
            rect=frame.rect,
            raster=crop_raster(raster, visible, analysis.pixel_ratio),
        )

    async def _reveal(self, rect: Rect, analysis: PageAnalysis) -> None:
        """Scroll the page so *rect* starts at the top of the viewport (clamped) and settle."""
        x = 0 if rect.right <= analysis.viewport.width else min(max(rect.x, 0), analysis.scroll.max_x)
        y = min(max(rect.y, 0), analysis.scroll.max_y)
        await self._animate(self._host.scroll_offset, self._host.scroll_to, x, y)
        await self._wait_stable(self._host.scroll_offset)

    async def _record_failure(self, run: CaptureRun, error: SubCaptureError) -> None:
        logger.warning("%s", error)
        run.failures.append(error)
        if self._on_sub_capture_failed is not None:
            await self._on_sub_capture_failed(error)

    # ------------------------------------------------------------------
    # Scrolling and stability
    # ------------------------------------------------------------------

    async def _animate(self, read: ReadOffset, write: WriteOffset, x: int, y: int) -> None:
        """Scroll to ``(x, y)`` with a cubic ease-out, one step per animation frame."""
        start_x, start_y = await read()
        dx, dy = x - start_x, y - start_y
        duration = self._options.scroll_duration_ms / 1000
        if duration <= 0 or (dx == 0 and dy == 0):
            await write(x, y)
            return

        started = self._clock()
        while True:
            progress = min((self._clock() - started) / duration, 1.0)
            eased = ease_out_cubic(progress)
            await write(round(start_x + dx * eased), round(start_y + dy * eased))
            if progress >= 1.0:
                return
            await self._host.next_frame()

    async def _wait_stable(self, read: ReadOffset) -> None:
        """Wait for scroll to settle, visible images to load, then the settle delay."""
        await self._wait_scroll_settled(read)
        await self._wait_for_images()
        if self._options.scroll_delay_ms > 0:
            await asyncio.sleep(self._options.scroll_delay_ms / 1000)

    async def _wait_scroll_settled(self, read: ReadOffset) -> None:
        """Return once the offset is unchanged for ``stable_frames`` consecutive frames."""
        last = await read()
        stable = 0
        for _ in range(self._options.max_stability_frames):
            await self._host.next_frame()
            current = await read()
            if current == last:
                stable += 1
                if stable >= self._options.stable_frames:
                    return
            else:
                stable = 0
                last = current
        logger.warning(
            "Scroll offset still moving after %d frames; capturing anyway",
            self._options.max_stability_frames,
        )

    async def _wait_for_images(self) -> None:
        """Wait until each visible image has loaded or waited ``image_timeout_ms``."""
        timeout = self._options.image_timeout_ms / 1000
        first_seen: dict[str, float] = {}
        timed_out: set[str] = set()

        while True:
            pending = await self._host.pending_images()
            now = self._clock()
            waiting = False
            for key in pending:
                seen = first_seen.setdefault(key, now)
                if now - seen < timeout:
                    waiting = True
                elif key not in timed_out:
                    timed_out.add(key)
                    logger.debug("Image did not load within %dms: %s", self._options.image_timeout_ms, key)
            if not waiting:
                return
            await self._host.next_frame()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _grab(self) -> bytes:
        try:
            return await self._host.capture()
        except PageStitchError:
            raise
        except Exception as exc:
            raise CaptureUnavailableError(str(exc)) from exc

    async def _report_progress(self, completed: int, total: int) -> None:
        if self._on_progress is not None:
            await self._on_progress(completed, total)

    async def _restore_page(self, origin: tuple[int, int]) -> None:
        try:
            await self._host.scroll_to(*origin)
            self._log("Restored scroll position to %s", origin)
        except Exception as exc:
            logger.warning("Failed to restore scroll position %s (non-fatal): %s", origin, exc)

    async def _restore_region(self, region: Region, origin: tuple[int, int]) -> None:
        try:
            await self._host.scroll_region_to(region, *origin)
        except Exception as exc:
            logger.warning("Failed to restore scroll of %s (non-fatal): %s", region.selector, exc)

    def _log(self, msg: str, *args: object) -> None:
        logger.log(self._log_level, msg, *args)


def _viewport_rect(analysis: PageAnalysis) -> Rect:
    return Rect(x=0, y=0, width=analysis.viewport.width, height=analysis.viewport.height)


def _as_sub_error(exc: Exception, cls: type[SubCaptureError], selector: str) -> SubCaptureError:
    if isinstance(exc, SubCaptureError):
        return exc
    return cls(selector, str(exc) or type(exc).__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)
