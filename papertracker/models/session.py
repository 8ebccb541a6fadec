"""Reading session model."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class Session:
    """One continuous interval of a paper being read.

    Timestamps are epoch milliseconds from the session manager's clock.
    Only the session manager mutates a session; everyone else gets copies.
    """

    source_id: str
    paper_id: str
    started_at: float
    last_heartbeat_at: float
    ended_at: Optional[float] = None
    accumulated_active_ms: float = 0.0
    end_reason: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.paper_id)

    @property
    def state(self) -> SessionState:
        return SessionState.ACTIVE if self.ended_at is None else SessionState.ENDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "paper_id": self.paper_id,
            "state": self.state.value,
            "started_at": self.started_at,
            "last_heartbeat_at": self.last_heartbeat_at,
            "ended_at": self.ended_at,
            "accumulated_active_ms": self.accumulated_active_ms,
            "end_reason": self.end_reason,
        }
