"""FastAPI application exposing the tracker to page observers."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from papertracker import __version__
from papertracker.api.routers import config as config_router
from papertracker.api.routers import debug as debug_router
from papertracker.api.routers import messages as messages_router
from papertracker.api.state import state
from papertracker.config import Settings
from papertracker.console import setup_logging
from papertracker.context import TrackerContext

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    context: Optional[TrackerContext] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Settings used to build a tracker at startup
        context: Ready-made tracker to serve instead (closed on shutdown)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Create the tracker on startup and close it on shutdown."""
        if context is not None:
            state.tracker = context
        else:
            current = settings or Settings.load()
            setup_logging(current.tracker.log_level)
            state.tracker = TrackerContext.create(current)
        logger.info("Paper tracker %s serving", __version__)
        try:
            yield
        finally:
            tracker, state.tracker = state.tracker, None
            if tracker is not None:
                await tracker.aclose()

    app = FastAPI(title="PaperTracker", version=__version__, lifespan=lifespan)
    app.include_router(messages_router.router)
    app.include_router(debug_router.router)
    app.include_router(config_router.router)
    return app


app = create_app()
