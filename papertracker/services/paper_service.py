"""Paper record coordination against the object store."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from papertracker.errors import RecordExistsError
from papertracker.models.paper import (
    Annotation,
    AnnotationKind,
    PaperMetadata,
    READING_SESSION_EVENT,
    Rating,
    StoredPaper,
    utc_now_iso,
)
from papertracker.models.session import Session
from papertracker.store.base import ObjectStore, StoredObject, make_key

logger = logging.getLogger(__name__)

SEED_ANNOTATIONS = "annotations"


class PaperRecordCoordinator:
    """Deduplicated paper records with append-only annotation history.

    Records are keyed by ``(source_id, paper_id)``.  Nothing here retries:
    store failures propagate to the caller.
    """

    def __init__(self, store: ObjectStore):
        """Initialize coordinator.

        Args:
            store: Object store client holding the durable records
        """
        self.store = store
        self._create_locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @staticmethod
    def _to_paper(obj: StoredObject) -> StoredPaper:
        """Materialize a stored object as a :class:`StoredPaper`."""
        metadata = PaperMetadata.from_dict(obj.data)
        history = [*(obj.data.get(SEED_ANNOTATIONS) or []), *obj.events]
        annotations = [Annotation.from_dict(e) for e in history if isinstance(e, dict)]
        paper = StoredPaper(key=obj.key, metadata=metadata, annotations=annotations)

        rating = paper.latest(AnnotationKind.RATING)
        if rating is not None:
            metadata.rating = Rating.parse(rating.value)
        notes = paper.latest(AnnotationKind.NOTES)
        if notes is not None:
            metadata.notes = notes.value
        if obj.updated_at:
            metadata.updated_at = obj.updated_at
        return paper

    async def get(self, source_id: str, paper_id: str) -> Optional[StoredPaper]:
        """Return the stored paper, or None if it has no record yet."""
        obj = await self.store.get(make_key(source_id, paper_id))
        return self._to_paper(obj) if obj else None

    async def get_or_create(self, metadata: PaperMetadata) -> StoredPaper:
        """Return the record for *metadata*'s key, creating it if needed.

        An existing record is returned as stored; *metadata* only seeds new
        records.  Concurrent calls for one key create a single record.
        """
        key = make_key(metadata.source_id, metadata.paper_id)
        async with self._create_lock(key):
            existing = await self.store.get(key)
            if existing is not None:
                logger.debug("Record %s already exists", key)
                return self._to_paper(existing)

            try:
                created = await self.store.create(key, self._seed(metadata))
            except RecordExistsError:
                # Another writer won the race; use its record.
                existing = await self.store.get(key)
                if existing is None:
                    raise
                return self._to_paper(existing)

            logger.info("Created record %s", key)
            return self._to_paper(created)

    @staticmethod
    def _seed(metadata: PaperMetadata) -> dict[str, Any]:
        """Initial object for a new record.

        A seed rating or notes value becomes the first entries of the
        annotation history, written together with the record itself.
        """
        seed = metadata.to_dict()
        # rating/notes live in annotations only
        seed["rating"] = Rating.NONE.value
        seed["notes"] = None

        now = utc_now_iso()
        history: list[Annotation] = []
        rating = Rating.parse(metadata.rating)
        if rating != Rating.NONE:
            history.append(Annotation(AnnotationKind.RATING, rating.value, now))
        if metadata.notes:
            history.append(Annotation(AnnotationKind.NOTES, metadata.notes, now))
        seed[SEED_ANNOTATIONS] = [a.to_dict() for a in history]
        return seed

    @asynccontextmanager
    async def _create_lock(self, key: str) -> AsyncIterator[None]:
        """Hold the create lock for *key*; dropped once nobody uses it."""
        lock, users = self._create_locks.get(key) or (asyncio.Lock(), 0)
        self._create_locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._create_locks[key]
            if users <= 1:
                del self._create_locks[key]
            else:
                self._create_locks[key] = (lock, users - 1)

    async def annotate(
        self,
        source_id: str,
        paper_id: str,
        kind: AnnotationKind,
        value: Any,
    ) -> StoredPaper:
        """Append an annotation event to an existing record.

        Raises:
            NotFoundError: If the record has not been created yet
            RemoteUnavailableError: If the store call fails
        """
        annotation = Annotation(kind=AnnotationKind(kind), value=value, timestamp=utc_now_iso())
        obj = await self.store.update(make_key(source_id, paper_id), annotation.to_dict())
        logger.debug("Appended %s annotation to %s:%s", annotation.kind.value, source_id, paper_id)
        return self._to_paper(obj)

    async def rate(self, source_id: str, paper_id: str, rating: Any) -> StoredPaper:
        """Record a rating for a paper."""
        return await self.annotate(
            source_id, paper_id, AnnotationKind.RATING, Rating.parse(rating).value
        )

    async def save_notes(self, source_id: str, paper_id: str, notes: str) -> StoredPaper:
        return await self.annotate(source_id, paper_id, AnnotationKind.NOTES, notes)

    async def log_reading_session(self, session: Session) -> StoredPaper:
        """Append a finished session's active reading time to its paper."""
        return await self.annotate(
            session.source_id,
            session.paper_id,
            AnnotationKind.CUSTOM,
            {
                "event": READING_SESSION_EVENT,
                "duration_ms": round(session.accumulated_active_ms),
                "started_at": session.started_at,
                "ended_at": session.ended_at,
                "reason": session.end_reason,
            },
        )

    async def close(self) -> None:
        await self.store.close()
