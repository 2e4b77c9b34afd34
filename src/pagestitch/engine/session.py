"""Capture Session — one full-page capture request against one page context.

The caller owns a ``CaptureSession`` per page.  Its ``state`` is an
explicit state machine value instead of ambient flags; a second request
while the session is active is rejected immediately with
``CaptureInProgressError`` and never touches the page.
"""

from __future__ import annotations

import asyncio
import logging
from uuid import uuid4

from pagestitch.engine.analyzer import analyze_page
from pagestitch.engine.capture_loop import CancelToken, CaptureLoop
from pagestitch.engine.host import PageHost
from pagestitch.engine.stitcher import compose_result
from pagestitch.engine.strategy import select_strategy
from pagestitch.exceptions import CaptureCancelledError, CaptureInProgressError, SubCaptureError
from pagestitch.models.capture import CaptureOptions, CompositeResult
from pagestitch.models.states import ACTIVE_STATES, SessionState, can_transition
from pagestitch.monitoring.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)


class CaptureSession:
    """Orchestrates analysis, strategy selection, capture and stitching.

    Args:
        host: The page context to capture.
        events: Default event bus for progress and lifecycle events.
    """

    def __init__(self, host: PageHost, *, events: EventBus | None = None) -> None:
        self._host = host
        self._events = events
        self._state = SessionState.IDLE
        self._session_id = ""

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str:
        """ID of the current (or most recent) capture run."""
        return self._session_id

    @property
    def is_capturing(self) -> bool:
        return self._state in ACTIVE_STATES

    async def capture_full_page(
        self,
        options: CaptureOptions | None = None,
        *,
        events: EventBus | None = None,
        cancel: CancelToken | None = None,
    ) -> CompositeResult:
        """Capture the whole page and return the composite image.

        Args:
            options: Request options; defaults to ``CaptureOptions()``.
            events: Event bus for this run; falls back to the session default.
            cancel: Token that stops the run at its next step boundary.

        Returns:
            ``CompositeResult`` with the encoded image and metadata.

        Raises:
            CaptureInProgressError: Another capture is active on this session.
            CaptureUnavailableError: The viewport grab failed on a main section.
            CaptureCancelledError: *cancel* was triggered.
        """
        if self.is_capturing:
            raise CaptureInProgressError(self._session_id)

        # Claim the session before the first suspension point.
        self._session_id = uuid4().hex
        self._set_state(SessionState.ANALYZING)

        opts = options or CaptureOptions()
        bus = events or self._events or EventBus()
        session_id = self._session_id
        log_level = logging.INFO if opts.debug else logging.DEBUG

        async def emit(event_type: EventType, data: dict | None = None) -> None:
            await bus.emit(event_type, data, session_id=session_id)

        async def on_progress(completed: int, total: int) -> None:
            await emit(
                EventType.PROGRESS,
                {"progress": completed / total if total else 1.0, "completed": completed, "total": total},
            )

        async def on_sub_capture_failed(error: SubCaptureError) -> None:
            await emit(
                EventType.SUB_CAPTURE_FAILED,
                {"kind": error.kind, "selector": error.selector, "reason": error.reason},
            )

        try:
            await emit(EventType.SESSION_STARTED, {"options": opts.model_dump(mode="json")})

            analysis = await analyze_page(self._host)
            strategy = select_strategy(analysis, opts)
            logger.log(log_level, "Session %s: strategy=%s url=%s", session_id, strategy.kind, analysis.url)
            await emit(
                EventType.STRATEGY_SELECTED,
                {"strategy": strategy.kind, "sections": len(getattr(strategy, "sections", [])) or 1},
            )

            await self._advance(SessionState.CAPTURING, emit)
            loop = CaptureLoop(
                self._host,
                opts,
                on_progress=on_progress,
                on_sub_capture_failed=on_sub_capture_failed,
                cancel=cancel,
            )
            run = await loop.run(strategy, analysis)

            await self._advance(SessionState.STITCHING, emit)
            result = compose_result(
                run.captures,
                analysis,
                opts,
                strategy=strategy.kind,
                session_id=session_id,
                sub_captures=run.sub_captures,
            )
        except (CaptureCancelledError, asyncio.CancelledError):
            self._set_state(SessionState.CANCELLED)
            logger.info("Session %s cancelled", session_id)
            await asyncio.shield(emit(EventType.SESSION_CANCELLED))
            raise
        except Exception as exc:
            self._set_state(SessionState.FAILED)
            logger.error("Session %s failed: %s", session_id, exc)
            await emit(EventType.SESSION_FAILED, {"error": str(exc), "error_type": type(exc).__name__})
            raise

        self._set_state(SessionState.COMPLETED)
        await emit(
            EventType.SESSION_COMPLETED,
            {
                "capture_type": result.metadata.capture_type.value,
                "sections": result.metadata.section_count,
                "sub_captures": result.metadata.sub_capture_count,
            },
        )
        logger.log(log_level, "Session %s complete (%d bytes)", session_id, len(result.raster))
        return result

    async def _advance(self, new: SessionState, emit) -> None:
        old = self._state
        self._set_state(new)
        await emit(EventType.STATE_CHANGED, {"old_state": old.value, "new_state": new.value})

    def _set_state(self, new: SessionState) -> None:
        if not can_transition(self._state, new):
            raise RuntimeError(f"Invalid session transition {self._state.value} -> {new.value}")
        self._state = new


async def capture_full_page(
    host: PageHost,
    options: CaptureOptions | None = None,
    *,
    events: EventBus | None = None,
    cancel: CancelToken | None = None,
) -> CompositeResult:
    """One-shot convenience wrapper around a fresh ``CaptureSession``."""
    return await CaptureSession(host, events=events).capture_full_page(options, cancel=cancel)
