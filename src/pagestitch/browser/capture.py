"""Launch Chromium with Playwright, open a URL, and capture the full page."""

from __future__ import annotations

import logging

from pagestitch.browser.navigation import resilient_goto
from pagestitch.browser.playwright_host import PlaywrightHost
from pagestitch.engine.capture_loop import CancelToken
from pagestitch.engine.session import CaptureSession
from pagestitch.models.capture import CaptureOptions, CompositeResult
from pagestitch.monitoring.event_bus import EventBus
from pagestitch.settings.config import BrowserSettings

logger = logging.getLogger(__name__)


async def capture_url(
    url: str,
    options: CaptureOptions,
    *,
    browser_settings: BrowserSettings | None = None,
    events: EventBus | None = None,
    cancel: CancelToken | None = None,
) -> CompositeResult:
    """Navigate to *url* in headless Chromium and return its full-page composite.

    Requires ``playwright install chromium`` to have been run at least once.

    Args:
        url: The page to capture.
        options: Capture request options.
        browser_settings: Viewport, scale factor and navigation settings.
        events: Receives progress and lifecycle events.
        cancel: Token that aborts the capture at the next step.

    Returns:
        The session's ``CompositeResult``.
    """
    from playwright.async_api import async_playwright

    bs = browser_settings or BrowserSettings()

    async with async_playwright() as pw:
        browser = await pw.chromium.launch(headless=bs.headless)
        context_args: dict = {
            "viewport": {"width": bs.viewport_width, "height": bs.viewport_height},
            "device_scale_factor": bs.device_scale_factor,
        }
        if bs.user_agent:
            context_args["user_agent"] = bs.user_agent
        context = await browser.new_context(**context_args)
        page = await context.new_page()

        try:
            await resilient_goto(page, url, timeout_ms=bs.timeout_ms, wait_until=bs.wait_until)
            session = CaptureSession(PlaywrightHost(page), events=events)
            return await session.capture_full_page(options, cancel=cancel)
        except Exception as e:
            logger.error("Page capture failed for %s: %s", url, e)
            raise
        finally:
            await context.close()
            await browser.close()
