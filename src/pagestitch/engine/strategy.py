"""Strategy Selector — picks how a page will be captured."""

from __future__ import annotations

from pagestitch.engine.planner import plan_sections
from pagestitch.models.capture import (
    CaptureOptions,
    CaptureStrategy,
    ComplexStrategy,
    ScrollStrategy,
    ViewportStrategy,
)
from pagestitch.models.page import PageAnalysis

# Slack that absorbs sub-pixel rounding on pages that barely scroll.
VIEWPORT_SLACK = 1.1
COMPLEX_REGION_THRESHOLD = 3
COMPLEX_FRAME_THRESHOLD = 2


def select_strategy(analysis: PageAnalysis, options: CaptureOptions) -> CaptureStrategy:
    """Map a page analysis and request options to a capture strategy.

    Decision order:
      1. Page fits the viewport (with 10% slack) on both axes: ``viewport``.
      2. More than 3 scrollable regions or more than 2 frames: ``complex``.
      3. Otherwise: ``scroll``.
    """
    viewport, page = analysis.viewport, analysis.page

    if page.height <= viewport.height * VIEWPORT_SLACK and page.width <= viewport.width * VIEWPORT_SLACK:
        return ViewportStrategy()

    regions = analysis.scrollable_regions
    frames = analysis.frames
    if len(regions) > COMPLEX_REGION_THRESHOLD or len(frames) > COMPLEX_FRAME_THRESHOLD:
        return ComplexStrategy(
            sections=plan_sections(analysis),
            regions=list(regions),
            frames=list(frames) if options.include_frames else [],
        )

    return ScrollStrategy(
        sections=plan_sections(analysis),
        axis="vertical" if page.height > page.width else "horizontal",
    )
