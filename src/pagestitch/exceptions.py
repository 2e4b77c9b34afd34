"""pagestitch exception hierarchy."""

from __future__ import annotations


class PageStitchError(Exception):
    """Base exception for all pagestitch errors."""


class CaptureError(PageStitchError):
    """Base class for failures that abort a capture session."""


class CaptureInProgressError(CaptureError):
    """Raised when a capture is requested while another one is still running.

    The request is rejected, not queued.

    Attributes:
        session_id: Identifier of the session that is already active.
    """

    def __init__(self, session_id: str = "") -> None:
        self.session_id = session_id
        super().__init__(f"Capture already in progress (session {session_id or '?'})")


class CaptureUnavailableError(CaptureError):
    """Raised when the viewport-capture primitive fails or is denied."""

    def __init__(self, reason: str = "") -> None:
        self.reason = reason
        super().__init__(f"Viewport capture unavailable: {reason}" if reason else "Viewport capture unavailable")


class UnknownStrategyError(CaptureError):
    """Raised for a capture strategy outside the known variants."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"Unknown capture strategy: {kind}")


class CaptureCancelledError(CaptureError):
    """Raised when a capture session is cancelled through its ``CancelToken``."""


class SubCaptureError(PageStitchError):
    """Base class for soft failures of region and frame sub-captures.

    These never escape the capture loop; the failed sub-capture is omitted.
    """

    kind = "sub_capture"

    def __init__(self, selector: str, reason: str) -> None:
        self.selector = selector
        self.reason = reason
        super().__init__(f"{self.kind} capture failed for {selector!r}: {reason}")


class RegionCaptureFailedError(SubCaptureError):
    """A scrollable region could not be captured."""

    kind = "region"


class FrameCaptureFailedError(SubCaptureError):
    """An embedded frame could not be captured."""

    kind = "frame"


class NavigationError(PageStitchError):
    """Raised when the browser cannot reach the target URL at all."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Navigation to {url} failed: {reason}")
