"""Request dispatch for page and UI events.

Every inbound event is a message dict with a ``type`` tag from a closed
set.  :class:`CommandDispatcher` routes it to one handler and always
answers with a :class:`Response`; tracker errors become failed responses
carrying the error's class name.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from papertracker.errors import NoMatchError, PaperTrackerError, ValidationError
from papertracker.models.paper import PaperMetadata

if TYPE_CHECKING:
    from papertracker.context import TrackerContext

logger = logging.getLogger(__name__)


class RequestType(str, Enum):
    CONTENT_SCRIPT_READY = "contentScriptReady"
    IDENTIFY_SOURCE = "identifySource"
    PAPER_METADATA = "paperMetadata"
    START_SESSION = "startSession"
    SESSION_HEARTBEAT = "sessionHeartbeat"
    END_SESSION = "endSession"
    GET_CURRENT_PAPER = "getCurrentPaper"
    UPDATE_RATING = "updateRating"
    SAVE_NOTES = "saveNotes"
    MANUAL_PAPER_LOG = "manualPaperLog"
    GET_SESSION_STATS = "getSessionStats"
    GET_SOURCES = "getSources"


@dataclass
class Response:
    """Outcome of one dispatched request."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "Response":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: PaperTrackerError) -> "Response":
        return cls(success=False, error=str(error), error_type=type(error).__name__)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "error_type": self.error_type,
        }


Handler = Callable[[dict[str, Any]], Awaitable[Any]]


def _param(message: dict[str, Any], *names: str, required: bool = True) -> Any:
    """Fetch the first present parameter among *names* (camel or snake case)."""
    for name in names:
        value = message.get(name)
        if value is not None and value != "":
            return value
    if required:
        raise ValidationError(f"Missing parameter '{names[0]}'")
    return None


def _metadata_param(message: dict[str, Any]) -> PaperMetadata:
    raw = _param(message, "metadata")
    if not isinstance(raw, dict):
        raise ValidationError("Parameter 'metadata' must be an object")
    return PaperMetadata.from_dict(raw)


class CommandDispatcher:
    """Routes request messages to tracker operations."""

    def __init__(self, context: "TrackerContext"):
        self.context = context
        self._handlers: dict[RequestType, Handler] = {
            RequestType.CONTENT_SCRIPT_READY: self._content_script_ready,
            RequestType.IDENTIFY_SOURCE: self._identify_source,
            RequestType.PAPER_METADATA: self._paper_metadata,
            RequestType.START_SESSION: self._start_session,
            RequestType.SESSION_HEARTBEAT: self._session_heartbeat,
            RequestType.END_SESSION: self._end_session,
            RequestType.GET_CURRENT_PAPER: self._get_current_paper,
            RequestType.UPDATE_RATING: self._update_rating,
            RequestType.SAVE_NOTES: self._save_notes,
            RequestType.MANUAL_PAPER_LOG: self._manual_paper_log,
            RequestType.GET_SESSION_STATS: self._get_session_stats,
            RequestType.GET_SOURCES: self._get_sources,
        }

    async def dispatch(self, message: dict[str, Any]) -> Response:
        """Handle one request message."""
        try:
            request_type = RequestType(message.get("type"))
        except ValueError:
            return Response.failure(ValidationError(f"Unknown request type: {message.get('type')!r}"))

        try:
            data = await self._handlers[request_type](message)
        except NoMatchError as e:
            logger.debug("%s: %s", request_type.value, e)
            return Response.failure(e)
        except PaperTrackerError as e:
            logger.warning("%s failed: %s", request_type.value, e)
            return Response.failure(e)
        return Response.ok(data)

    # ── Handlers ──────────────────────────────────────────────────────

    async def _content_script_ready(self, message: dict[str, Any]) -> None:
        logger.debug("Page observer ready: %s", message.get("url") or "<unknown page>")

    async def _identify_source(self, message: dict[str, Any]) -> dict[str, str]:
        resolved = self.context.identifier.require(_param(message, "url"))
        return {"sourceId": resolved.source_id, "paperId": resolved.paper_id}

    async def _paper_metadata(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        metadata = _metadata_param(message)
        logger.info("Received metadata for %s:%s", metadata.source_id, metadata.paper_id)
        paper = await self.context.sessions.handle_paper_metadata(metadata)
        return paper.to_dict() if paper else None

    async def _start_session(self, message: dict[str, Any]) -> dict[str, Any]:
        source_id = str(_param(message, "sourceId", "source_id"))
        paper_id = str(_param(message, "paperId", "paper_id"))
        sessions = self.context.sessions
        seed = (
            _metadata_param(message)
            if message.get("metadata")
            else sessions.get_paper_metadata(source_id, paper_id)
        )
        return (await sessions.start(source_id, paper_id, seed)).to_dict()

    async def _session_heartbeat(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        session = await self.context.sessions.heartbeat()
        return session.to_dict() if session else None

    async def _end_session(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        reason = _param(message, "reason", required=False) or "user_action"
        session = await self.context.sessions.end(str(reason))
        return session.to_dict() if session else None

    async def _get_current_paper(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        metadata = self.context.sessions.get_paper_metadata()
        return metadata.to_dict() if metadata else None

    async def _update_rating(self, message: dict[str, Any]) -> dict[str, Any]:
        metadata = await self.context.sessions.update_rating(_param(message, "rating"))
        return metadata.to_dict()

    async def _save_notes(self, message: dict[str, Any]) -> dict[str, Any]:
        notes = message.get("notes")
        if notes is None:
            raise ValidationError("Missing parameter 'notes'")
        metadata = await self.context.sessions.save_notes(str(notes))
        return metadata.to_dict()

    async def _manual_paper_log(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        metadata = _metadata_param(message)
        logger.info("Received manual paper log: %s:%s", metadata.source_id, metadata.paper_id)
        sessions = self.context.sessions
        sessions.store_paper_metadata(metadata)
        if sessions.records is None:
            return None
        paper = await sessions.records.get_or_create(metadata)
        return paper.to_dict()

    async def _get_session_stats(self, message: dict[str, Any]) -> dict[str, Any]:
        return self.context.sessions.get_session_stats()

    async def _get_sources(self, message: dict[str, Any]) -> list[dict[str, Any]]:
        registry = self.context.registry
        return [
            {**p.to_dict(), "user_defined": registry.is_user_defined(p.id)}
            for p in registry.list()
        ]
