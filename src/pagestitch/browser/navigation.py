"""Resilient page navigation with automatic wait-strategy fallback.

Pages that keep a WebSocket or long-polling connection open never reach
``networkidle``.  ``resilient_goto`` tries the preferred wait strategy
first and falls back to ``load`` and then ``domcontentloaded`` on timeout.
"""

from __future__ import annotations

import logging
from typing import Literal

from playwright.async_api import Error as PlaywrightError, Page, Response, TimeoutError as PlaywrightTimeout

from pagestitch.exceptions import NavigationError

logger = logging.getLogger(__name__)

# Playwright error substrings that indicate non-retryable navigation failures.
_NON_RETRYABLE_ERRORS: tuple[str, ...] = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_CONNECTION_REFUSED",
    "ERR_CONNECTION_RESET",
    "ERR_CONNECTION_CLOSED",
    "ERR_SSL_PROTOCOL_ERROR",
    "ERR_CERT_AUTHORITY_INVALID",
    "ERR_CERT_COMMON_NAME_INVALID",
    "ERR_ADDRESS_UNREACHABLE",
    "ERR_FILE_NOT_FOUND",
)

WaitUntil = Literal["commit", "domcontentloaded", "load", "networkidle"]

_FALLBACK_STRATEGY: list[WaitUntil] = ["networkidle", "load", "domcontentloaded"]


async def resilient_goto(
    page: Page,
    url: str,
    *,
    timeout_ms: int = 30_000,
    wait_until: WaitUntil = "networkidle",
) -> Response | None:
    """Navigate to *url* with automatic wait-strategy fallback.

    Args:
        page: Playwright page instance.
        url: Target URL to navigate to.
        timeout_ms: Timeout per attempt in milliseconds.
        wait_until: Preferred initial wait strategy.

    Returns:
        The main-frame ``Response``, or ``None`` if the page produced none.

    Raises:
        NavigationError: On DNS, connection or TLS failures.
        PlaywrightTimeout: If every fallback strategy times out.
    """
    last_error: PlaywrightTimeout | None = None
    for strategy in _build_fallback_chain(wait_until):
        try:
            logger.debug("goto %s (wait_until=%s, timeout=%dms)", url, strategy, timeout_ms)
            return await page.goto(url, wait_until=strategy, timeout=timeout_ms)
        except PlaywrightError as exc:
            error_msg = str(exc)
            for pattern in _NON_RETRYABLE_ERRORS:
                if pattern in error_msg:
                    reason = pattern.replace("ERR_", "").replace("_", " ").lower()
                    logger.warning("Navigation to %s failed (non-retryable): %s", url, pattern)
                    raise NavigationError(url, reason) from exc
            if isinstance(exc, PlaywrightTimeout):
                logger.warning(
                    "Navigation to %s timed out with wait_until=%s, retrying with a weaker strategy",
                    url,
                    strategy,
                )
                last_error = exc
            else:
                raise

    raise last_error  # type: ignore[misc]


def _build_fallback_chain(preferred: WaitUntil) -> list[WaitUntil]:
    """Return the fallback chain starting from *preferred*.

    If *preferred* is in the default chain, returns from that point onward.
    Otherwise returns ``[preferred]`` followed by the full default chain.
    """
    if preferred in _FALLBACK_STRATEGY:
        idx = _FALLBACK_STRATEGY.index(preferred)
        return _FALLBACK_STRATEGY[idx:]
    return [preferred, *_FALLBACK_STRATEGY]
