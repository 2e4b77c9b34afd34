"""Unit tests for pagestitch.engine.capture_loop — scroll, settle, snapshot."""

from __future__ import annotations

import itertools
import logging
from unittest.mock import AsyncMock

import pytest

from conftest import FakeHost, decode, row_color
from pagestitch.engine.analyzer import analyze_page
from pagestitch.engine.capture_loop import CancelToken, CaptureLoop, ease_out_cubic
from pagestitch.engine.planner import plan_sections
from pagestitch.exceptions import (
    CaptureCancelledError,
    CaptureUnavailableError,
    RegionCaptureFailedError,
    UnknownStrategyError,
)
from pagestitch.models.capture import (
    CaptureOptions,
    CaptureSection,
    ComplexStrategy,
    ScrollStrategy,
    SubCaptureKind,
    ViewportStrategy,
)
from pagestitch.models.page import FrameInfo, Rect, Region


def _ticking_clock(step: float):
    ticks = itertools.count()
    return lambda: next(ticks) * step


def _single_section(y: int = 0) -> ScrollStrategy:
    return ScrollStrategy(sections=[CaptureSection(x=0, y=y, width=800, height=600, index=0)])


def _feed(selector: str = "#feed") -> Region:
    return Region(
        selector=selector,
        rect=Rect(x=100, y=700, width=300, height=200),
        client_width=300,
        client_height=200,
        scroll_width=300,
        scroll_height=500,
    )


class TestEaseOutCubic:
    def test_endpoints(self) -> None:
        assert ease_out_cubic(0.0) == 0.0
        assert ease_out_cubic(1.0) == 1.0

    def test_midpoint_is_past_half(self) -> None:
        assert ease_out_cubic(0.5) == pytest.approx(0.875)


class TestCancelToken:
    def test_raise_if_cancelled(self) -> None:
        token = CancelToken()
        token.raise_if_cancelled()
        token.cancel()
        assert token.cancelled is True
        with pytest.raises(CaptureCancelledError):
            token.raise_if_cancelled()


class TestViewportRun:
    """Tests for the single-viewport path."""

    @pytest.mark.anyio
    async def test_single_grab_without_scrolling(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(viewport=(1024, 768), page=(1000, 700))
        progress = AsyncMock()

        run = await CaptureLoop(host, fast_options, on_progress=progress).run(
            ViewportStrategy(), await analyze_page(host)
        )

        assert len(run.captures) == 1
        assert run.captures[0].section == CaptureSection(x=0, y=0, width=1024, height=768, index=0)
        assert host.capture_count == 1
        assert host.scroll_calls == []
        progress.assert_awaited_once_with(1, 1)

    @pytest.mark.anyio
    async def test_non_engine_capture_error_is_wrapped(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        host.capture = AsyncMock(side_effect=RuntimeError("tab closed"))

        with pytest.raises(CaptureUnavailableError, match="tab closed"):
            await CaptureLoop(host, fast_options).run(ViewportStrategy(), await analyze_page(host))


class TestScrollRun:
    """Tests for tiled capture of the main page."""

    @pytest.mark.anyio
    async def test_sections_captured_in_order(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(viewport=(800, 600), page=(800, 1800))
        analysis = await analyze_page(host)

        run = await CaptureLoop(host, fast_options).run(ScrollStrategy(sections=plan_sections(analysis)), analysis)

        assert host.captured_offsets == [(0, 0), (0, 540), (0, 1080), (0, 1200)]
        assert [c.section.index for c in run.captures] == [0, 1, 2, 3]
        assert decode(run.captures[2].raster).getpixel((0, 0)) == row_color(1080)

    @pytest.mark.anyio
    async def test_sections_sorted_by_index(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        strategy = ScrollStrategy(
            sections=[
                CaptureSection(y=540, width=800, height=600, index=1),
                CaptureSection(y=0, width=800, height=600, index=0),
            ]
        )

        await CaptureLoop(host, fast_options).run(strategy, await analyze_page(host))
        assert host.captured_offsets == [(0, 0), (0, 540)]

    @pytest.mark.anyio
    async def test_progress_after_each_section(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        analysis = await analyze_page(host)
        progress = AsyncMock()

        await CaptureLoop(host, fast_options, on_progress=progress).run(
            ScrollStrategy(sections=plan_sections(analysis)), analysis
        )

        assert [c.args for c in progress.await_args_list] == [(1, 4), (2, 4), (3, 4), (4, 4)]

    @pytest.mark.anyio
    async def test_scroll_restored_after_success(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(scroll=(0, 300))
        analysis = await analyze_page(host)

        await CaptureLoop(host, fast_options).run(ScrollStrategy(sections=plan_sections(analysis)), analysis)

        assert (host.x, host.y) == (0, 300)
        assert host.scroll_calls[-1] == (0, 300)

    @pytest.mark.anyio
    async def test_scroll_restored_after_failure(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(scroll=(0, 300), fail_capture_at=2)
        analysis = await analyze_page(host)

        with pytest.raises(CaptureUnavailableError):
            await CaptureLoop(host, fast_options).run(ScrollStrategy(sections=plan_sections(analysis)), analysis)

        assert (host.x, host.y) == (0, 300)
        assert host.captured_offsets == [(0, 0)]

    @pytest.mark.anyio
    async def test_restore_failure_is_not_fatal(self, fast_options: CaptureOptions, caplog) -> None:
        class StuckHost(FakeHost):
            async def scroll_to(self, x: int, y: int) -> None:
                if self.capture_count and (x, y) == (0, 300):
                    raise RuntimeError("page navigated away")
                await super().scroll_to(x, y)

        host = StuckHost(scroll=(0, 300))
        with caplog.at_level(logging.WARNING, logger="pagestitch.engine.capture_loop"):
            run = await CaptureLoop(host, fast_options).run(_single_section(), await analyze_page(host))

        assert len(run.captures) == 1
        assert "non-fatal" in caplog.text

    @pytest.mark.anyio
    async def test_eased_scroll_steps_once_per_frame(self) -> None:
        host = FakeHost()
        options = CaptureOptions(scroll_delay_ms=0, scroll_duration_ms=500, image_timeout_ms=0)
        loop = CaptureLoop(host, options, clock=_ticking_clock(0.125))

        await loop.run(_single_section(540), await analyze_page(host))

        # 25%, 50%, 75%, 100% of a 500ms animation, cubic ease-out, then restore.
        assert host.scroll_calls == [(0, 312), (0, 472), (0, 532), (0, 540), (0, 0)]
        assert host.captured_offsets == [(0, 540)]

    @pytest.mark.anyio
    async def test_waits_for_visible_images(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(images={"hero.jpg": 8})
        options = fast_options.model_copy(update={"image_timeout_ms": 10_000})

        await CaptureLoop(host, options).run(_single_section(), await analyze_page(host))

        assert host.images["hero.jpg"] == 0
        assert host.frame_count >= 8

    @pytest.mark.anyio
    async def test_image_wait_is_bounded(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(images={"broken.png": None})
        options = fast_options.model_copy(update={"image_timeout_ms": 50})

        run = await CaptureLoop(host, options, clock=_ticking_clock(0.01)).run(
            _single_section(), await analyze_page(host)
        )

        assert len(run.captures) == 1
        assert host.frame_count < 20

    @pytest.mark.anyio
    async def test_stability_wait_is_bounded(self, fast_options: CaptureOptions, caplog) -> None:
        class DriftingHost(FakeHost):
            async def scroll_offset(self) -> tuple[int, int]:
                return 0, self.frame_count

        host = DriftingHost()
        options = fast_options.model_copy(update={"max_stability_frames": 10})

        with caplog.at_level(logging.WARNING, logger="pagestitch.engine.capture_loop"):
            run = await CaptureLoop(host, options).run(_single_section(), await analyze_page(host))

        assert len(run.captures) == 1
        assert host.frame_count == 10
        assert "still moving" in caplog.text

    @pytest.mark.anyio
    async def test_cancel_between_sections(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(scroll=(0, 100))
        analysis = await analyze_page(host)
        token = CancelToken()

        async def cancel_after_first(completed: int, total: int) -> None:
            token.cancel()

        loop = CaptureLoop(host, fast_options, on_progress=cancel_after_first, cancel=token)
        with pytest.raises(CaptureCancelledError):
            await loop.run(ScrollStrategy(sections=plan_sections(analysis)), analysis)

        assert host.capture_count == 1
        assert (host.x, host.y) == (0, 100)

    @pytest.mark.anyio
    async def test_unknown_strategy(self, fast_options: CaptureOptions) -> None:
        class CarouselStrategy:
            kind = "carousel"

        host = FakeHost()
        with pytest.raises(UnknownStrategyError, match="carousel"):
            await CaptureLoop(host, fast_options).run(CarouselStrategy(), await analyze_page(host))
        assert host.capture_count == 0


class TestComplexRun:
    """Tests for region and frame sub-captures."""

    @pytest.mark.anyio
    async def test_region_tiled_through_its_scroll_extent(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        analysis = await analyze_page(host)
        strategy = ComplexStrategy(sections=plan_sections(analysis), regions=[_feed()])

        run = await CaptureLoop(host, fast_options).run(strategy, analysis)

        assert len(run.captures) == 4
        assert len(run.sub_captures) == 1
        sub = run.sub_captures[0]
        assert sub.kind == SubCaptureKind.REGION
        assert sub.selector == "#feed"
        assert sub.rect == Rect(x=100, y=700, width=300, height=500)

        image = decode(sub.raster)
        assert image.size == (300, 500)
        # The page was scrolled so the region sits at the top of the viewport.
        assert image.getpixel((10, 0)) == row_color(700)

        assert [y for _, _, y in host.region_scroll_calls] == [0, 180, 300, 0]
        assert host.region_offsets["#feed"] == (0, 0)
        assert (host.x, host.y) == (0, 0)

    @pytest.mark.anyio
    async def test_region_taller_than_viewport_has_no_gaps(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(viewport=(800, 600), page=(800, 2000))
        analysis = await analyze_page(host)
        tall = Region(
            selector="#log",
            rect=Rect(x=0, y=300, width=400, height=900),
            client_width=400,
            client_height=900,
            scroll_width=400,
            scroll_height=3000,
        )

        run = await CaptureLoop(host, fast_options).run(
            ComplexStrategy(sections=plan_sections(analysis), regions=[tall]), analysis
        )

        assert run.failures == []
        image = decode(run.sub_captures[0].raster)
        assert image.size == (400, 3000)
        blank = [y for y in range(image.height) if image.getpixel((10, y)) == (255, 255, 255)]
        assert blank == []
        assert image.getpixel((10, 0)) == row_color(300)
        # The bottom of the scrollport is reached by scrolling the page past the region top.
        assert image.getpixel((10, 2999)) == row_color(1199)
        assert host.region_offsets["#log"] == (0, 0)
        assert (host.x, host.y) == (0, 0)

    @pytest.mark.anyio
    async def test_region_failure_is_tolerated(self, fast_options: CaptureOptions) -> None:
        host = FakeHost(failing_regions={"#broken"})
        analysis = await analyze_page(host)
        strategy = ComplexStrategy(sections=plan_sections(analysis), regions=[_feed("#broken"), _feed()])
        failed = AsyncMock()

        run = await CaptureLoop(host, fast_options, on_sub_capture_failed=failed).run(strategy, analysis)

        assert len(run.captures) == 4
        assert [s.selector for s in run.sub_captures] == ["#feed"]
        assert len(run.failures) == 1
        error = failed.await_args.args[0]
        assert isinstance(error, RegionCaptureFailedError)
        assert error.selector == "#broken"
        assert "region detached" in error.reason

    @pytest.mark.anyio
    async def test_region_without_scrollport_fails_softly(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        analysis = await analyze_page(host)
        collapsed = Region(selector="#collapsed", rect=Rect(x=0, y=0, width=0, height=0), scroll_height=400)

        run = await CaptureLoop(host, fast_options).run(
            ComplexStrategy(sections=plan_sections(analysis), regions=[collapsed]), analysis
        )

        assert run.sub_captures == []
        assert run.failures[0].selector == "#collapsed"

    @pytest.mark.anyio
    async def test_frames_cropped_and_cross_origin_skipped(self, fast_options: CaptureOptions) -> None:
        host = FakeHost()
        analysis = await analyze_page(host)
        frames = [
            FrameInfo(selector="#embed", rect=Rect(x=0, y=1000, width=400, height=300), accessible=True),
            FrameInfo(selector="#ads", rect=Rect(x=0, y=300, width=300, height=250), accessible=False),
        ]

        run = await CaptureLoop(host, fast_options).run(
            ComplexStrategy(sections=plan_sections(analysis), frames=frames), analysis
        )

        assert [s.selector for s in run.sub_captures] == ["#embed"]
        assert run.failures == []
        image = decode(run.sub_captures[0].raster)
        assert image.size == (400, 300)
        assert image.getpixel((0, 0)) == row_color(1000)
        assert (host.x, host.y) == (0, 0)
