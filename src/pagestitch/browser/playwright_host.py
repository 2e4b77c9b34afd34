"""Playwright implementation of the engine host protocols.

All page access goes through ``page.evaluate`` with small self-contained
scripts, plus ``page.screenshot`` for the viewport grab.  Elements are
addressed by a CSS path computed in the page, so nothing is written to
the DOM.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from playwright.async_api import Error as PlaywrightError

from pagestitch.engine.host import PageMetrics, ScrollCandidate
from pagestitch.exceptions import CaptureUnavailableError
from pagestitch.models.page import FixedElementInfo, FrameInfo, Rect, Region

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

# Shared helper: a stable CSS path for an element (id-anchored when possible).
_CSS_PATH = """
const cssPath = (el) => {
    const parts = [];
    while (el && el.nodeType === 1 && el !== document.documentElement) {
        if (el.id) { parts.unshift('#' + CSS.escape(el.id)); break; }
        let part = el.tagName.toLowerCase();
        const parent = el.parentElement;
        if (parent) {
            const same = Array.from(parent.children).filter(c => c.tagName === el.tagName);
            if (same.length > 1) part += `:nth-of-type(${same.indexOf(el) + 1})`;
        }
        parts.unshift(part);
        el = parent;
    }
    return parts.length ? parts.join(' > ') : 'html';
};
"""

_MEASURE_JS = """() => {
    const de = document.documentElement;
    const body = document.body || de;
    return {
        viewport_width: window.innerWidth,
        viewport_height: window.innerHeight,
        document_scroll_width: de.scrollWidth,
        document_scroll_height: de.scrollHeight,
        body_scroll_width: body.scrollWidth,
        body_scroll_height: body.scrollHeight,
        document_offset_width: de.offsetWidth,
        document_offset_height: de.offsetHeight,
        body_offset_width: body.offsetWidth,
        body_offset_height: body.offsetHeight,
        scroll_x: Math.round(window.pageXOffset || de.scrollLeft),
        scroll_y: Math.round(window.pageYOffset || de.scrollTop),
        pixel_ratio: window.devicePixelRatio || 1,
        url: window.location.href,
        title: document.title,
    };
}"""

_SCROLL_CANDIDATES_JS = (
    "() => {"
    + _CSS_PATH
    + """
    const out = [];
    for (const el of document.querySelectorAll('*')) {
        if (el === document.documentElement || el === document.body) continue;
        if (el.scrollHeight <= el.clientHeight && el.scrollWidth <= el.clientWidth) continue;
        const style = window.getComputedStyle(el);
        const r = el.getBoundingClientRect();
        out.push({
            selector: cssPath(el),
            x: Math.round(r.left + el.clientLeft + window.pageXOffset),
            y: Math.round(r.top + el.clientTop + window.pageYOffset),
            width: Math.round(r.width),
            height: Math.round(r.height),
            client_width: el.clientWidth,
            client_height: el.clientHeight,
            scroll_width: el.scrollWidth,
            scroll_height: el.scrollHeight,
            overflow: style.overflow,
            overflow_x: style.overflowX,
            overflow_y: style.overflowY,
        });
    }
    return out;
}"""
)

_FRAMES_JS = (
    "() => {"
    + _CSS_PATH
    + """
    return Array.from(document.querySelectorAll('iframe, frame')).map(f => {
        const r = f.getBoundingClientRect();
        return {
            selector: cssPath(f),
            x: Math.round(r.left + window.pageXOffset),
            y: Math.round(r.top + window.pageYOffset),
            width: Math.round(r.width),
            height: Math.round(r.height),
            src: f.src || '',
        };
    });
}"""
)

_PROBE_FRAME_JS = """(selector) => {
    const frame = document.querySelector(selector);
    if (!frame) throw new Error('frame not found: ' + selector);
    const doc = frame.contentDocument;
    return doc !== null && doc !== undefined;
}"""

_FIXED_JS = (
    "() => {"
    + _CSS_PATH
    + """
    const out = [];
    for (const el of document.querySelectorAll('*')) {
        if (window.getComputedStyle(el).position !== 'fixed') continue;
        const r = el.getBoundingClientRect();
        out.push({
            selector: cssPath(el),
            x: Math.round(r.left), y: Math.round(r.top),
            width: Math.round(r.width), height: Math.round(r.height),
        });
    }
    return out;
}"""
)

_LAZY_JS = """() => document.querySelector(
    'img[loading="lazy"], img[data-src], img[data-lazy]'
) !== null"""

_PENDING_IMAGES_JS = (
    "() => {"
    + _CSS_PATH
    + """
    return Array.from(document.images).filter(img => {
        if (img.complete) return false;
        const r = img.getBoundingClientRect();
        return r.top < window.innerHeight && r.bottom > 0 && r.left < window.innerWidth && r.right > 0;
    }).map(img => img.currentSrc || img.src || cssPath(img));
}"""
)

_SCROLL_OFFSET_JS = "() => [Math.round(window.pageXOffset), Math.round(window.pageYOffset)]"
_SCROLL_TO_JS = "([x, y]) => window.scrollTo({left: x, top: y, behavior: 'instant'})"
_REGION_OFFSET_JS = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) throw new Error('region not found: ' + selector);
    return [Math.round(el.scrollLeft), Math.round(el.scrollTop)];
}"""
_REGION_SCROLL_JS = """([selector, x, y]) => {
    const el = document.querySelector(selector);
    if (!el) throw new Error('region not found: ' + selector);
    el.scrollTo({left: x, top: y, behavior: 'instant'});
}"""
_NEXT_FRAME_JS = "() => new Promise(resolve => requestAnimationFrame(() => resolve()))"


class PlaywrightHost:
    """Adapts a Playwright ``Page`` to ``PageInspector``, ``PageDriver`` and ``ViewportCapturer``.

    Args:
        page: A navigated Playwright async ``Page``.
    """

    def __init__(self, page: Page) -> None:
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    # ------------------------------------------------------------------
    # PageInspector
    # ------------------------------------------------------------------

    async def measure(self) -> PageMetrics:
        data = await self._page.evaluate(_MEASURE_JS)
        return PageMetrics(**data)

    async def list_scrollable_regions(self) -> list[ScrollCandidate]:
        return [ScrollCandidate(**c) for c in await self._page.evaluate(_SCROLL_CANDIDATES_JS)]

    async def list_frames(self) -> list[FrameInfo]:
        frames = await self._page.evaluate(_FRAMES_JS)
        return [
            FrameInfo(
                selector=f["selector"],
                rect=Rect(x=f["x"], y=f["y"], width=max(0, f["width"]), height=max(0, f["height"])),
                src=f.get("src", ""),
            )
            for f in frames
        ]

    async def probe_frame(self, frame: FrameInfo) -> bool:
        return bool(await self._page.evaluate(_PROBE_FRAME_JS, frame.selector))

    async def list_fixed_elements(self) -> list[FixedElementInfo]:
        elements = await self._page.evaluate(_FIXED_JS)
        return [
            FixedElementInfo(
                selector=e["selector"],
                rect=Rect(x=e["x"], y=e["y"], width=max(0, e["width"]), height=max(0, e["height"])),
            )
            for e in elements
        ]

    async def has_lazy_images(self) -> bool:
        return bool(await self._page.evaluate(_LAZY_JS))

    # ------------------------------------------------------------------
    # PageDriver
    # ------------------------------------------------------------------

    async def scroll_offset(self) -> tuple[int, int]:
        x, y = await self._page.evaluate(_SCROLL_OFFSET_JS)
        return int(x), int(y)

    async def scroll_to(self, x: int, y: int) -> None:
        await self._page.evaluate(_SCROLL_TO_JS, [x, y])

    async def region_scroll_offset(self, region: Region) -> tuple[int, int]:
        x, y = await self._page.evaluate(_REGION_OFFSET_JS, region.selector)
        return int(x), int(y)

    async def scroll_region_to(self, region: Region, x: int, y: int) -> None:
        await self._page.evaluate(_REGION_SCROLL_JS, [region.selector, x, y])

    async def next_frame(self) -> None:
        await self._page.evaluate(_NEXT_FRAME_JS)

    async def pending_images(self) -> list[str]:
        return list(await self._page.evaluate(_PENDING_IMAGES_JS))

    # ------------------------------------------------------------------
    # ViewportCapturer
    # ------------------------------------------------------------------

    async def capture(self) -> bytes:
        try:
            return await self._page.screenshot(type="png", full_page=False)
        except PlaywrightError as exc:
            logger.error("Viewport screenshot failed: %s", exc)
            raise CaptureUnavailableError(str(exc)) from exc
