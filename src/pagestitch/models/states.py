"""Capture session state machine definitions."""

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle states of a capture session."""

    IDLE = "IDLE"
    ANALYZING = "ANALYZING"
    CAPTURING = "CAPTURING"
    STITCHING = "STITCHING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# States in which the session owns the page's scroll position
ACTIVE_STATES = {SessionState.ANALYZING, SessionState.CAPTURING, SessionState.STITCHING}

# Terminal states reachable from any active state
TERMINAL_STATES = {SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED}

# Normal state transitions (TERMINAL_STATES are always valid from ACTIVE_STATES)
STATE_TRANSITIONS: dict[SessionState, list[SessionState]] = {
    SessionState.IDLE: [SessionState.ANALYZING],
    SessionState.ANALYZING: [SessionState.CAPTURING],
    SessionState.CAPTURING: [SessionState.STITCHING],
    SessionState.STITCHING: [SessionState.COMPLETED],
    SessionState.COMPLETED: [SessionState.ANALYZING],
    SessionState.FAILED: [SessionState.ANALYZING],
    SessionState.CANCELLED: [SessionState.ANALYZING],
}


def can_transition(current: SessionState, new: SessionState) -> bool:
    """Return True if moving from *current* to *new* is allowed."""
    if current in ACTIVE_STATES and new in TERMINAL_STATES:
        return True
    return new in STATE_TRANSITIONS.get(current, [])
