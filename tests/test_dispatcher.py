"""Tests for request dispatch through a tracker context."""

import asyncio

import pytest

from papertracker.config import StoreConfig, TrackerConfig
from papertracker.errors import ValidationError
from papertracker.models.source import SourcePattern


def _run(context, message):
    return asyncio.run(context.dispatch(message))


class TestDispatch:
    """Tests for message routing and error mapping."""

    def test_identify_source(self, context):
        response = _run(context, {"type": "identifySource", "url": "https://arxiv.org/abs/2301.00001"})
        assert response.success
        assert response.data == {"sourceId": "arxiv", "paperId": "2301.00001"}

    def test_identify_untracked_page(self, context):
        response = _run(context, {"type": "identifySource", "url": "https://example.com/"})
        assert not response.success
        assert response.error_type == "NoMatchError"

    def test_content_script_ready(self, context):
        response = _run(context, {"type": "contentScriptReady", "url": "https://arxiv.org/abs/1"})
        assert response.success
        assert response.data is None

    def test_unknown_type(self, context):
        response = _run(context, {"type": "launchRockets"})
        assert not response.success
        assert response.error_type == "ValidationError"

    def test_missing_parameter(self, context):
        response = _run(context, {"type": "startSession", "sourceId": "arxiv"})
        assert response.error_type == "ValidationError"
        assert "paperId" in response.error

    def test_reading_flow(self, context, clock, store):
        async def scenario():
            await context.dispatch({"type": "startSession", "sourceId": "arxiv", "paperId": "2301.00001"})
            await context.dispatch(
                {
                    "type": "paperMetadata",
                    "metadata": {
                        "sourceId": "arxiv",
                        "paperId": "2301.00001",
                        "title": "A Paper",
                        "authors": ["A. One", "B. Two"],
                    },
                }
            )
            clock.advance(30_000)
            await context.dispatch({"type": "sessionHeartbeat"})
            rated = await context.dispatch({"type": "updateRating", "rating": "thumbsup"})
            current = await context.dispatch({"type": "getCurrentPaper"})
            clock.advance(30_000)
            ended = await context.dispatch({"type": "endSession", "reason": "navigation"})
            return rated, current, ended

        rated, current, ended = asyncio.run(scenario())

        assert rated.data["rating"] == "thumbsup"
        assert current.data["authors"] == "A. One, B. Two"
        assert ended.data["accumulated_active_ms"] == 60_000
        assert ended.data["state"] == "ended"
        assert store.keys() == ["paper:arxiv:2301.00001"]

    def test_rating_without_session_is_state_error(self, context):
        response = _run(context, {"type": "updateRating", "rating": "up"})
        assert response.error_type == "StateError"

    def test_bad_rating_is_validation_error(self, context):
        async def scenario():
            await context.dispatch(
                {
                    "type": "startSession",
                    "sourceId": "doi",
                    "paperId": "10.1/x",
                    "metadata": {"source_id": "doi", "paper_id": "10.1/x"},
                }
            )
            return await context.dispatch({"type": "updateRating", "rating": "meh"})

        assert asyncio.run(scenario()).error_type == "ValidationError"

    def test_manual_paper_log(self, context, store):
        response = _run(
            context,
            {
                "type": "manualPaperLog",
                "metadata": {"source_id": "doi", "paper_id": "10.1/x", "title": "Manual", "tags": "a, b"},
            },
        )
        assert response.success
        assert response.data["metadata"]["tags"] == ["a", "b"]
        assert len(store) == 1

    def test_get_sources_and_stats(self, context):
        sources = _run(context, {"type": "getSources"})
        stats = _run(context, {"type": "getSessionStats"})

        assert [s["id"] for s in sources.data] == ["arxiv", "doi", "paper"]
        assert stats.data["completed_sessions"] == 0


class TestConfigurationChanges:
    """The context follows settings updates."""

    def test_empty_pattern_list_untracks_everything(self, context, settings):
        settings.update(source_patterns=[])
        response = _run(context, {"type": "identifySource", "url": "https://arxiv.org/abs/2301.00001"})
        assert response.error_type == "NoMatchError"

    def test_new_patterns_applied(self, context, settings):
        settings.update(
            source_patterns=[SourcePattern("ex", "Example", r"example\.org/p/", r"/p/(\d+)")]
        )
        response = _run(context, {"type": "identifySource", "url": "https://example.org/p/12"})
        assert response.data == {"sourceId": "ex", "paperId": "12"}

    def test_tracker_settings_applied(self, context, settings):
        settings.update(tracker=TrackerConfig(max_gap_ms=10_000, min_session_ms=0))
        assert context.sessions.max_gap_ms == 10_000
        assert context.sessions.min_session_ms == 0

    def test_store_swap(self, context, settings):
        settings.update(store=StoreConfig(backend="none"))
        assert context.records is None

    def test_invalid_patterns_leave_settings_and_registry_in_sync(self, context, settings):
        before = [p.id for p in settings.source_patterns]

        with pytest.raises(ValidationError):
            settings.update(source_patterns=[SourcePattern("x", "Broken", "(", r"/(\d+)")])

        assert [p.id for p in settings.source_patterns] == before
        assert [p.id for p in context.registry.list()] == before
        response = _run(context, {"type": "identifySource", "url": "https://arxiv.org/abs/2301.00001"})
        assert response.data == {"sourceId": "arxiv", "paperId": "2301.00001"}
