"""Service layer."""

from papertracker.services.paper_service import PaperRecordCoordinator
from papertracker.services.session_service import SessionManager

__all__ = [
    "PaperRecordCoordinator",
    "SessionManager",
]
