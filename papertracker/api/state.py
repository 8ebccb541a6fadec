"""Application state shared by the HTTP routers."""

from typing import Optional

from fastapi import HTTPException

from papertracker.context import TrackerContext


# ============================================================================
# Global State
# ============================================================================


class AppState:
    """Mutable singleton holding the running tracker."""

    tracker: Optional[TrackerContext] = None


state = AppState()


def get_context() -> TrackerContext:
    """Return the running tracker, or fail with 503 outside the lifespan."""
    if state.tracker is None:
        raise HTTPException(status_code=503, detail="Tracker is not running")
    return state.tracker
