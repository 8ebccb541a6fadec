"""Source pattern configuration routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from papertracker.api.state import get_context
from papertracker.errors import ValidationError
from papertracker.models.source import SourcePattern
from papertracker.sources.registry import validate_patterns

router = APIRouter(prefix="/config")


class SourcePatternPayload(BaseModel):
    """One source pattern as sent by the options page."""
    id: str
    name: str
    url_pattern: str
    id_regex: str


class SourcesPayload(BaseModel):
    """Request body replacing the whole source list."""
    source_patterns: list[SourcePatternPayload]


@router.get("/sources")
async def get_sources():
    """Return the configured source patterns in match order."""
    settings = get_context().settings
    return JSONResponse({"source_patterns": [p.to_dict() for p in settings.source_patterns]})


@router.put("/sources")
async def replace_sources(body: SourcesPayload):
    """Validate, persist and apply a new source list.

    Nothing is written when any pattern is invalid or ids repeat.
    """
    context = get_context()
    patterns = [SourcePattern(**p.model_dump()) for p in body.source_patterns]
    try:
        validate_patterns(patterns)
    except ValidationError as e:
        return JSONResponse({"error": str(e)}, status_code=422)

    context.settings.save_source_patterns(patterns)
    return JSONResponse(
        {
            "source_patterns": [p.to_dict() for p in context.settings.source_patterns],
            "active": len(context.registry),
        }
    )
