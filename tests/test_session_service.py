"""Tests for the reading session lifecycle."""

import asyncio

import pytest

from papertracker.errors import RemoteUnavailableError, StateError
from papertracker.models.paper import PaperMetadata, Rating
from papertracker.models.session import SessionState
from papertracker.services.paper_service import PaperRecordCoordinator
from papertracker.services.session_service import SessionManager
from papertracker.store.memory import MemoryObjectStore


class FlakyStore(MemoryObjectStore):
    """Memory store that fails while ``down`` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    def _check(self):
        if self.down:
            raise RemoteUnavailableError("store offline")

    async def get(self, key):
        self._check()
        return await super().get(key)

    async def create(self, key, initial):
        self._check()
        return await super().create(key, initial)

    async def update(self, key, event):
        self._check()
        return await super().update(key, event)


class GatedStore(MemoryObjectStore):
    """Memory store whose held operations wait until the gate opens."""

    def __init__(self, hold=()):
        super().__init__()
        self.hold = set(hold)
        self.gate = None

    async def _wait(self, name):
        if name in self.hold:
            if self.gate is None:
                self.gate = asyncio.Event()
            await self.gate.wait()

    async def get(self, key):
        await self._wait("get")
        return await super().get(key)

    async def update(self, key, event):
        await self._wait("update")
        return await super().update(key, event)

    def release(self):
        self.hold.clear()
        if self.gate is not None:
            self.gate.set()


def _metadata(paper_id: str = "2301.00001") -> PaperMetadata:
    return PaperMetadata(source_id="arxiv", paper_id=paper_id, title=f"Paper {paper_id}")


class TestLifecycle:
    """Tests for start, heartbeat and end."""

    def test_two_heartbeats_thirty_seconds_apart(self, sessions, clock):
        async def scenario():
            await sessions.start("arxiv", "2301.00001")
            clock.advance(30_000)
            await sessions.heartbeat()
            clock.advance(30_000)
            await sessions.heartbeat()
            return await sessions.end("navigation")

        ended = asyncio.run(scenario())

        assert ended.accumulated_active_ms == pytest.approx(60_000)
        assert ended.state == SessionState.ENDED
        assert ended.end_reason == "navigation"
        assert sessions.get_current_session() is None

    def test_n_heartbeats_accrue_n_minus_one_intervals(self, sessions, clock):
        async def scenario():
            await sessions.start("arxiv", "2301.00001")
            await sessions.heartbeat()
            for _ in range(9):
                clock.advance(5_000)
                await sessions.heartbeat()
            return sessions.get_current_session()

        session = asyncio.run(scenario())
        assert session.accumulated_active_ms == pytest.approx(9 * 5_000)

    def test_gap_capped_at_max_gap(self, records, clock):
        sessions = SessionManager(records=records, max_gap_ms=60_000, clock=clock)

        async def scenario():
            await sessions.start("arxiv", "2301.00001")
            clock.advance(10 * 60_000)
            return await sessions.heartbeat()

        session = asyncio.run(scenario())
        assert session.accumulated_active_ms == 60_000

    def test_start_while_active_ends_previous_first(self, sessions, clock):
        async def scenario():
            await sessions.start("arxiv", "A")
            clock.advance(2_000)
            return await sessions.start("arxiv", "B")

        current = asyncio.run(scenario())
        last = sessions.get_last_session()

        assert current.paper_id == "B"
        assert current.accumulated_active_ms == 0
        assert last.paper_id == "A"
        assert last.end_reason == "superseded"
        assert last.accumulated_active_ms == 2_000
        assert last.ended_at <= current.started_at

    def test_start_during_slow_end_is_not_overwritten(self, clock):
        store = GatedStore(hold={"update"})
        sessions = SessionManager(records=PaperRecordCoordinator(store), clock=clock)

        async def scenario():
            await sessions.start("arxiv", "X", _metadata("X"))
            clock.advance(5_000)
            # ending X blocks on the store write
            start_a = asyncio.create_task(sessions.start("arxiv", "A"))
            await asyncio.sleep(0)
            assert sessions.get_current_session().paper_id == "A"

            await sessions.start("arxiv", "B")
            store.release()
            await start_a
            return await sessions.records.get("arxiv", "X")

        paper = asyncio.run(scenario())
        stats = sessions.get_session_stats()

        assert sessions.get_current_session().paper_id == "B"
        assert stats["completed_sessions"] == 2
        assert stats["total_active_ms"] == 5_000
        assert sessions.get_last_session().paper_id == "A"
        assert paper.total_reading_ms() == 5_000

    def test_heartbeat_and_end_without_session_are_noops(self, sessions):
        assert asyncio.run(sessions.heartbeat()) is None
        assert asyncio.run(sessions.end("user_action")) is None
        assert sessions.get_session_stats()["completed_sessions"] == 0

    def test_returned_sessions_are_copies(self, sessions):
        session = asyncio.run(sessions.start("arxiv", "A"))
        session.accumulated_active_ms = 99_999
        assert sessions.get_current_session().accumulated_active_ms == 0

    def test_session_stats(self, sessions, clock):
        async def scenario():
            await sessions.start("arxiv", "A")
            clock.advance(4_000)
            await sessions.end("navigation")
            await sessions.start("arxiv", "B")

        asyncio.run(scenario())
        stats = sessions.get_session_stats()

        assert stats["completed_sessions"] == 1
        assert stats["total_active_ms"] == 4_000
        assert stats["current"]["paper_id"] == "B"


class TestPersistence:
    """Tests for reading-session annotations."""

    def test_end_records_reading_session(self, sessions, records, clock):
        async def scenario():
            await sessions.start("arxiv", "2301.00001", _metadata())
            clock.advance(3_000)
            await sessions.end("navigation")
            return await records.get("arxiv", "2301.00001")

        paper = asyncio.run(scenario())

        [entry] = paper.reading_sessions()
        assert entry["duration_ms"] == 3_000
        assert entry["reason"] == "navigation"
        assert paper.total_reading_ms() == 3_000

    def test_short_session_not_recorded(self, sessions, records, clock):
        async def scenario():
            await sessions.start("arxiv", "2301.00001", _metadata())
            clock.advance(200)
            await sessions.end("navigation")
            return await records.get("arxiv", "2301.00001")

        assert asyncio.run(scenario()) is None

    def test_without_store_nothing_is_persisted(self, clock):
        sessions = SessionManager(records=None, clock=clock)

        async def scenario():
            await sessions.start("arxiv", "A", _metadata("A"))
            clock.advance(5_000)
            return await sessions.end("navigation")

        assert asyncio.run(scenario()).accumulated_active_ms == 5_000
        assert sessions.pending_count == 0


class TestMetadataAndAnnotations:
    """Tests for metadata handling and the current-paper annotations."""

    def test_handle_metadata_for_current_paper_updates_cache(self, sessions, store):
        async def scenario():
            await sessions.start("arxiv", "2301.00001")
            return await sessions.handle_paper_metadata(_metadata())

        paper = asyncio.run(scenario())

        assert paper.key == "paper:arxiv:2301.00001"
        assert len(store) == 1
        assert sessions.get_paper_metadata().title == "Paper 2301.00001"

    def test_stale_store_response_is_discarded(self, sessions, records):
        async def scenario():
            await records.get_or_create(
                PaperMetadata(source_id="arxiv", paper_id="A", title="Stored title")
            )
            await sessions.start("arxiv", "B")
            # metadata for A arrives after the user moved on to B
            await sessions.handle_paper_metadata(
                PaperMetadata(source_id="arxiv", paper_id="A", title="Scraped title")
            )

        asyncio.run(scenario())

        # the stored record did not overwrite the cache for the old paper
        assert sessions.get_paper_metadata("arxiv", "A").title == "Scraped title"
        assert sessions.get_paper_metadata() is None

    def test_record_arriving_after_switch_leaves_new_paper_cached(self, clock):
        store = GatedStore()
        records = PaperRecordCoordinator(store)
        sessions = SessionManager(records=records, clock=clock)

        async def scenario():
            await records.get_or_create(
                PaperMetadata(source_id="arxiv", paper_id="A", title="Stored title")
            )
            await sessions.start("arxiv", "A")
            store.hold.add("get")
            lookup = asyncio.create_task(
                sessions.handle_paper_metadata(
                    PaperMetadata(source_id="arxiv", paper_id="A", title="Scraped title")
                )
            )
            await asyncio.sleep(0)

            await sessions.start("arxiv", "B", _metadata("B"))
            store.release()
            return await lookup

        paper = asyncio.run(scenario())

        assert paper.metadata.title == "Stored title"
        assert sessions.get_paper_metadata().paper_id == "B"
        assert sessions.get_paper_metadata().title == "Paper B"
        assert sessions.get_paper_metadata("arxiv", "A").title == "Scraped title"

    def test_metadata_cache_is_bounded(self, records, clock):
        sessions = SessionManager(records=records, clock=clock, max_cached_papers=2)

        async def scenario():
            await sessions.start("arxiv", "current", _metadata("current"))
            for paper_id in ("p1", "p2", "p3"):
                sessions.store_paper_metadata(_metadata(paper_id))

        asyncio.run(scenario())

        assert sessions.get_paper_metadata("arxiv", "p1") is None
        assert sessions.get_paper_metadata("arxiv", "p3").title == "Paper p3"
        assert sessions.get_paper_metadata().paper_id == "current"

    def test_update_rating_and_notes(self, sessions, records):
        async def scenario():
            await sessions.start("arxiv", "2301.00001", _metadata())
            rated = await sessions.update_rating("up")
            noted = await sessions.save_notes("worth a re-read")
            return rated, noted, await records.get("arxiv", "2301.00001")

        rated, noted, paper = asyncio.run(scenario())

        assert rated.rating == Rating.THUMBS_UP
        assert noted.notes == "worth a re-read"
        assert paper.metadata.rating == Rating.THUMBS_UP
        assert paper.metadata.notes == "worth a re-read"

    def test_rating_without_session_fails(self, sessions):
        with pytest.raises(StateError, match="No current session"):
            asyncio.run(sessions.update_rating("up"))

    def test_rating_without_metadata_fails(self, sessions):
        async def scenario():
            await sessions.start("arxiv", "A")
            await sessions.update_rating("up")

        with pytest.raises(StateError, match="No paper metadata"):
            asyncio.run(scenario())

    def test_rating_without_store_fails(self, clock):
        sessions = SessionManager(records=None, clock=clock)

        async def scenario():
            await sessions.start("arxiv", "A", _metadata("A"))
            await sessions.save_notes("x")

        with pytest.raises(StateError, match="No record store"):
            asyncio.run(scenario())


class TestRetry:
    """Tests for queued writes after store failures."""

    def test_failed_create_retried_on_heartbeat(self, clock):
        store = FlakyStore()
        sessions = SessionManager(records=PaperRecordCoordinator(store), clock=clock)

        async def scenario():
            await sessions.start("arxiv", "A")
            store.down = True
            with pytest.raises(RemoteUnavailableError):
                await sessions.handle_paper_metadata(_metadata("A"))
            assert sessions.pending_count == 1

            store.down = False
            clock.advance(1_000)
            await sessions.heartbeat()

        asyncio.run(scenario())

        assert sessions.pending_count == 0
        assert store.keys() == ["paper:arxiv:A"]

    def test_failed_session_write_retried_on_next_end(self, clock):
        store = FlakyStore()
        sessions = SessionManager(records=PaperRecordCoordinator(store), clock=clock)

        async def scenario():
            await sessions.start("arxiv", "A", _metadata("A"))
            clock.advance(5_000)
            store.down = True
            await sessions.end("navigation")
            assert sessions.pending_count == 1

            store.down = False
            await sessions.start("arxiv", "B", _metadata("B"))
            clock.advance(5_000)
            await sessions.end("navigation")
            return await sessions.records.get("arxiv", "A")

        paper = asyncio.run(scenario())

        assert sessions.pending_count == 0
        assert paper.total_reading_ms() == 5_000

    def test_write_dropped_after_max_attempts(self, clock):
        store = FlakyStore()
        sessions = SessionManager(
            records=PaperRecordCoordinator(store), clock=clock, max_attempts=3
        )

        async def scenario():
            await sessions.start("arxiv", "A")
            store.down = True
            with pytest.raises(RemoteUnavailableError):
                await sessions.handle_paper_metadata(_metadata("A"))
            for _ in range(5):
                clock.advance(100)
                await sessions.heartbeat()

        asyncio.run(scenario())
        assert sessions.pending_count == 0
        assert len(store) == 0
