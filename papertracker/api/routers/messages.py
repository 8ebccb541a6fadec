"""Message endpoint: one request message in, one response out."""

from typing import Any

from fastapi import APIRouter, Body
from fastapi.responses import JSONResponse

from papertracker.api.state import get_context

router = APIRouter()


@router.post("/messages")
async def post_message(message: dict[str, Any] = Body(...)):
    """Dispatch a request message from a page observer or popup.

    Tracker errors come back as ``success: false`` with HTTP 200; the
    status code only signals transport problems.
    """
    response = await get_context().dispatch(message)
    return JSONResponse(response.to_dict())
