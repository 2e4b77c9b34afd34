"""Section Planner — tiles the page into overlapping viewport-sized sections."""

from __future__ import annotations

import math

from pagestitch.models.capture import CaptureSection
from pagestitch.models.page import PageAnalysis, Size

OVERLAP_FRACTION = 0.1


def plan_sections(analysis: PageAnalysis) -> list[CaptureSection]:
    """Return the ordered sections covering the page.

    Sections are full viewport width and tile vertically only; pages wider
    than the viewport are captured at viewport width.
    """
    return plan_extent(analysis.viewport, analysis.page.height)


def plan_extent(viewport: Size, extent: int) -> list[CaptureSection]:
    """Tile a vertical *extent* with sections of *viewport* size.

    Consecutive sections overlap by ``floor(viewport.height * 0.1)``.  The
    last section is clamped to ``extent - viewport.height`` so no section
    asks for a scroll past the bottom; its overlap with the previous one is
    therefore larger than the rest.
    """
    vh = viewport.height
    if extent <= vh or vh <= 0:
        return [CaptureSection(x=0, y=0, width=viewport.width, height=vh, index=0)]

    overlap = math.floor(vh * OVERLAP_FRACTION)
    stride = vh - overlap
    count = math.ceil(extent / stride)
    last_y = extent - vh

    return [
        CaptureSection(x=0, y=min(i * stride, last_y), width=viewport.width, height=vh, index=i)
        for i in range(count)
    ]
