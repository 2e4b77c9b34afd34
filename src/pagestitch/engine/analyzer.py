"""Page Analyzer — turns host measurements into a ``PageAnalysis`` snapshot.

Runs one round of inspector queries with no waits and no side effects, so
the result is a pure function of the page's current layout state.
"""

from __future__ import annotations

import logging

from pagestitch.engine.host import PageInspector, PageMetrics, ScrollCandidate
from pagestitch.models.page import FrameInfo, PageAnalysis, Rect, Region, ScrollOffset, Size

logger = logging.getLogger(__name__)

_SCROLLING_OVERFLOW = frozenset({"auto", "scroll"})


async def analyze_page(inspector: PageInspector) -> PageAnalysis:
    """Inspect the live page and return its geometry snapshot.

    Args:
        inspector: Host capability answering geometry queries.

    Returns:
        Immutable ``PageAnalysis`` for the current session.
    """
    metrics = await inspector.measure()
    viewport = Size(width=max(0, metrics.viewport_width), height=max(0, metrics.viewport_height))
    page = page_extent(metrics)

    scroll = ScrollOffset(
        x=metrics.scroll_x,
        y=metrics.scroll_y,
        max_x=max(0, page.width - viewport.width),
        max_y=max(0, page.height - viewport.height),
    )

    candidates = await inspector.list_scrollable_regions()
    regions = [to_region(c) for c in candidates if is_scrollable_region(c)]
    frames = await _classify_frames(inspector)
    fixed = await inspector.list_fixed_elements()
    lazy = await inspector.has_lazy_images()

    analysis = PageAnalysis(
        viewport=viewport,
        page=page,
        scroll=scroll,
        scrollable_regions=regions,
        frames=frames,
        fixed_elements=fixed,
        has_lazy_content=lazy,
        pixel_ratio=metrics.pixel_ratio if metrics.pixel_ratio > 0 else 1.0,
        url=metrics.url,
        title=metrics.title,
    )
    logger.debug(
        "Analyzed %s: viewport=%dx%d page=%dx%d regions=%d frames=%d lazy=%s",
        analysis.url or "page",
        viewport.width,
        viewport.height,
        page.width,
        page.height,
        len(regions),
        len(frames),
        lazy,
    )
    return analysis


def page_extent(metrics: PageMetrics) -> Size:
    """Return the page size as the maximum across the reported box measurements."""
    width = max(
        metrics.document_scroll_width,
        metrics.body_scroll_width,
        metrics.document_offset_width,
        metrics.body_offset_width,
        0,
    )
    height = max(
        metrics.document_scroll_height,
        metrics.body_scroll_height,
        metrics.document_offset_height,
        metrics.body_offset_height,
        0,
    )
    return Size(width=width, height=height)


def is_scrollable_region(candidate: ScrollCandidate) -> bool:
    """An element scrolls on its own if its content overflows and its style lets it scroll."""
    overflows = (
        candidate.scroll_height > candidate.client_height or candidate.scroll_width > candidate.client_width
    )
    if not overflows:
        return False
    styles = {candidate.overflow, candidate.overflow_x, candidate.overflow_y}
    return bool(styles & _SCROLLING_OVERFLOW)


def to_region(candidate: ScrollCandidate) -> Region:
    """Convert a host candidate into a ``Region`` model."""
    return Region(
        selector=candidate.selector,
        rect=Rect(
            x=candidate.x,
            y=candidate.y,
            width=max(0, candidate.width),
            height=max(0, candidate.height),
        ),
        client_width=candidate.client_width,
        client_height=candidate.client_height,
        scroll_width=candidate.scroll_width,
        scroll_height=candidate.scroll_height,
    )


async def _classify_frames(inspector: PageInspector) -> list[FrameInfo]:
    """List frames and probe each one's readability.

    A failed probe means the frame is cross-origin.  This is a capability
    check, so it never raises.
    """
    try:
        frames = await inspector.list_frames()
    except Exception as exc:
        logger.debug("Frame listing failed, treating page as frameless: %s", exc)
        return []

    classified: list[FrameInfo] = []
    for frame in frames:
        try:
            accessible = bool(await inspector.probe_frame(frame))
        except Exception as exc:
            logger.debug("Frame %s is not readable: %s", frame.selector, exc)
            accessible = False
        classified.append(frame.model_copy(update={"accessible": accessible}))
    return classified
