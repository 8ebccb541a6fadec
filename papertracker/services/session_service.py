"""Reading session lifecycle.

One :class:`SessionManager` owns the single active session, the cache of
paper metadata seen by the tracker, and a queue of store writes that
failed and will be attempted again on the next heartbeat.

Heartbeats come from outside (the page observer's timer); the manager
never schedules anything itself.
"""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from papertracker.errors import PaperTrackerError, StateError
from papertracker.models.paper import PaperMetadata, Rating, StoredPaper, utc_now_iso
from papertracker.models.session import Session
from papertracker.services.paper_service import PaperRecordCoordinator

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
PaperKey = tuple[str, str]


def epoch_ms() -> float:
    return time.time() * 1000.0


def _copy_metadata(metadata: PaperMetadata) -> PaperMetadata:
    return replace(metadata, tags=set(metadata.tags))


@dataclass
class PendingWrite:
    """A store write waiting to be retried."""

    name: str
    key: PaperKey
    action: Callable[[], Awaitable[Any]]
    attempts: int = 0


class SessionManager:
    """Tracks which paper is being read and for how long."""

    def __init__(
        self,
        records: Optional[PaperRecordCoordinator] = None,
        max_gap_ms: float = 60_000.0,
        min_session_ms: float = 1_000.0,
        clock: Optional[Clock] = None,
        max_attempts: int = 5,
        max_cached_papers: int = 64,
    ):
        """Initialize session manager.

        Args:
            records: Record coordinator, or None to track without persisting
            max_gap_ms: Largest gap between heartbeats counted as reading
            min_session_ms: Sessions shorter than this are not persisted
            clock: Returns the current time in epoch milliseconds
            max_attempts: Tries before a queued write is dropped
            max_cached_papers: Metadata entries kept for papers other than
                the current one
        """
        self.records = records
        self.max_gap_ms = max_gap_ms
        self.min_session_ms = min_session_ms
        self.max_attempts = max_attempts
        self.max_cached_papers = max_cached_papers
        self._clock = clock or epoch_ms

        self._current: Optional[Session] = None
        self._last_ended: Optional[Session] = None
        self._metadata: OrderedDict[PaperKey, PaperMetadata] = OrderedDict()
        self._pending: list[PendingWrite] = []
        self._flushing = False

        self._completed_sessions = 0
        self._total_active_ms = 0.0

    # ── Lifecycle ─────────────────────────────────────────────────────

    async def start(
        self,
        source_id: str,
        paper_id: str,
        seed_metadata: Optional[PaperMetadata] = None,
    ) -> Session:
        """Start a session, ending the active one first.

        The new session is installed before the ended one is written to
        the store; a start arriving during that write supersedes it.
        """
        previous = self._detach("superseded")

        if seed_metadata is not None:
            self.store_paper_metadata(seed_metadata)

        now = self._clock()
        self._current = Session(
            source_id=source_id,
            paper_id=paper_id,
            started_at=now,
            last_heartbeat_at=now,
        )
        started = replace(self._current)
        logger.info("Started session for %s:%s", source_id, paper_id)

        if previous is not None:
            await self._finish(previous)
        return started

    async def heartbeat(self) -> Optional[Session]:
        """Accrue reading time for the active session.

        Also retries queued store writes. A heartbeat with no active
        session does nothing.
        """
        session = self._current
        if session is None:
            logger.debug("Heartbeat with no active session ignored")
            return None

        self._accrue(session, self._clock())
        await self.flush_pending()
        return replace(session) if session is self._current else None

    async def end(self, reason: str = "user_action") -> Optional[Session]:
        """End the active session and persist its reading time.

        Ending with no active session does nothing and returns None.
        """
        ended = self._detach(reason)
        if ended is None:
            return None
        await self._finish(ended)
        return ended

    def _detach(self, reason: str) -> Optional[Session]:
        """Finalize the active session and clear it, without awaiting."""
        session = self._current
        if session is None:
            return None

        now = self._clock()
        self._accrue(session, now)
        session.ended_at = now
        session.end_reason = reason
        self._current = None
        self._last_ended = session
        self._completed_sessions += 1
        self._total_active_ms += session.accumulated_active_ms
        logger.info(
            "Ended session for %s:%s (%s, %.0f ms active)",
            session.source_id,
            session.paper_id,
            reason,
            session.accumulated_active_ms,
        )
        return replace(session)

    async def _finish(self, ended: Session) -> None:
        await self.flush_pending()
        await self._persist_session(ended)

    def _accrue(self, session: Session, now: float) -> None:
        gap = max(0.0, now - session.last_heartbeat_at)
        session.accumulated_active_ms += min(gap, self.max_gap_ms)
        session.last_heartbeat_at = now

    # ── Queries ───────────────────────────────────────────────────────

    def get_current_session(self) -> Optional[Session]:
        return replace(self._current) if self._current else None

    def get_last_session(self) -> Optional[Session]:
        return replace(self._last_ended) if self._last_ended else None

    def get_paper_metadata(
        self,
        source_id: Optional[str] = None,
        paper_id: Optional[str] = None,
    ) -> Optional[PaperMetadata]:
        """Return cached metadata for a key, or for the current session.

        Never calls the store.
        """
        if source_id is None or paper_id is None:
            if self._current is None:
                return None
            key = self._current.key
        else:
            key = (source_id, paper_id)
        metadata = self._metadata.get(key)
        return _copy_metadata(metadata) if metadata else None

    def get_session_stats(self) -> dict[str, Any]:
        return {
            "completed_sessions": self._completed_sessions,
            "total_active_ms": self._total_active_ms,
            "pending_writes": len(self._pending),
            "current": self._current.to_dict() if self._current else None,
        }

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ── Metadata & annotations ────────────────────────────────────────

    def store_paper_metadata(self, metadata: PaperMetadata) -> None:
        self._cache(metadata.key, metadata)

    def _cache(self, key: PaperKey, metadata: PaperMetadata) -> None:
        """Cache a copy of *metadata*; the oldest other papers beyond
        ``max_cached_papers`` are evicted, the current one never is.
        """
        self._metadata[key] = _copy_metadata(metadata)
        self._metadata.move_to_end(key)

        current = self._current.key if self._current else None
        others = [k for k in self._metadata if k != current]
        for stale in others[: max(0, len(others) - self.max_cached_papers)]:
            del self._metadata[stale]

    async def handle_paper_metadata(self, metadata: PaperMetadata) -> Optional[StoredPaper]:
        """Cache *metadata* and make sure the paper has a stored record.

        The stored record replaces the cached copy only while its paper is
        still the current session's paper; a response that arrives after
        the user moved on is discarded.

        Raises:
            RemoteUnavailableError: If the store call fails (also queued)
        """
        self.store_paper_metadata(metadata)
        if self.records is None:
            return None

        issued_for = metadata.key
        try:
            paper = await self.records.get_or_create(metadata)
        except PaperTrackerError:
            self._queue_create(issued_for, metadata)
            raise

        current = self._current
        if current is None or current.key != issued_for:
            logger.debug(
                "Discarding stored record for %s:%s; current session has moved on",
                *issued_for,
            )
            return paper

        self._cache(issued_for, paper.metadata)
        return paper

    async def update_rating(self, rating: Any) -> PaperMetadata:
        """Rate the current session's paper."""
        session, metadata, records = self._require_annotatable()
        value = Rating.parse(rating)
        await records.get_or_create(metadata)
        await records.rate(session.source_id, session.paper_id, value)
        return self._apply_local(session.key, rating=value)

    async def save_notes(self, notes: str) -> PaperMetadata:
        """Attach notes to the current session's paper."""
        session, metadata, records = self._require_annotatable()
        await records.get_or_create(metadata)
        await records.save_notes(session.source_id, session.paper_id, notes)
        return self._apply_local(session.key, notes=notes)

    def _require_annotatable(self) -> tuple[Session, PaperMetadata, PaperRecordCoordinator]:
        if self.records is None:
            raise StateError("No record store configured")
        session = self._current
        if session is None:
            raise StateError("No current session")
        metadata = self._metadata.get(session.key)
        if metadata is None:
            raise StateError("No paper metadata available")
        return replace(session), _copy_metadata(metadata), self.records

    def _apply_local(self, key: PaperKey, **changes: Any) -> PaperMetadata:
        cached = self._metadata.get(key)
        if cached is None:
            raise StateError(f"No paper metadata cached for {key[0]}:{key[1]}")
        updated = replace(cached, tags=set(cached.tags), updated_at=utc_now_iso(), **changes)
        self._cache(key, updated)
        return _copy_metadata(updated)

    # ── Persistence & retry ───────────────────────────────────────────

    async def _persist_session(self, session: Session) -> None:
        if self.records is None:
            return
        if session.accumulated_active_ms < self.min_session_ms:
            logger.debug(
                "Session for %s:%s too short to record (%.0f ms)",
                session.source_id,
                session.paper_id,
                session.accumulated_active_ms,
            )
            return

        key = session.key
        seed = self._metadata.get(key)

        async def write() -> None:
            records = self._require_records()
            metadata = self._metadata.get(key) or seed
            if metadata is not None:
                await records.get_or_create(metadata)
            await records.log_reading_session(session)

        pending = PendingWrite(name="reading_session", key=key, action=write)
        try:
            await write()
        except PaperTrackerError as e:
            pending.attempts = 1
            self._pending.append(pending)
            logger.warning(
                "Could not record reading session for %s:%s, will retry: %s", *key, e
            )

    def _queue_create(self, key: PaperKey, metadata: PaperMetadata) -> None:
        if any(p.name == "create" and p.key == key for p in self._pending):
            return

        async def create() -> None:
            records = self._require_records()
            await records.get_or_create(self._metadata.get(key) or metadata)

        self._pending.append(PendingWrite(name="create", key=key, action=create, attempts=1))
        logger.warning("Record for %s:%s not stored yet, will retry", *key)

    def _require_records(self) -> PaperRecordCoordinator:
        if self.records is None:
            raise StateError("No record store configured")
        return self.records

    async def flush_pending(self) -> int:
        """Retry queued store writes.

        Returns:
            Number of writes that succeeded
        """
        if not self._pending or self.records is None or self._flushing:
            return 0

        self._flushing = True
        done = 0
        try:
            for pending in list(self._pending):
                try:
                    await pending.action()
                except PaperTrackerError as e:
                    pending.attempts += 1
                    if pending.attempts >= self.max_attempts:
                        self._pending.remove(pending)
                        logger.warning(
                            "Dropping %s write for %s:%s after %d attempts: %s",
                            pending.name,
                            *pending.key,
                            pending.attempts,
                            e,
                        )
                    continue
                self._pending.remove(pending)
                done += 1
        finally:
            self._flushing = False

        if done:
            logger.info("Flushed %d queued store writes", done)
        return done
