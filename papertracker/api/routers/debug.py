"""Read-only inspection routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from papertracker.api.state import get_context

router = APIRouter(prefix="/debug")


@router.get("/session")
async def current_session():
    session = get_context().debug.current_session()
    return JSONResponse(session.to_dict() if session else None)


@router.get("/paper")
async def current_paper():
    metadata = get_context().debug.current_paper()
    return JSONResponse(metadata.to_dict() if metadata else None)


@router.get("/sources")
async def sources():
    return JSONResponse([p.to_dict() for p in get_context().debug.sources()])


@router.get("/stats")
async def session_stats():
    return JSONResponse(get_context().debug.session_stats())
