"""Pytest configuration and fixtures."""

import asyncio
from pathlib import Path

import pytest

from papertracker.config import Settings, load_default_patterns
from papertracker.context import TrackerContext
from papertracker.models.source import SourcePattern
from papertracker.services.paper_service import PaperRecordCoordinator
from papertracker.services.session_service import SessionManager
from papertracker.sources.identifier import SourceIdentifier
from papertracker.sources.registry import PatternRegistry
from papertracker.store.memory import MemoryObjectStore

START_MS = 1_700_000_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch milliseconds."""

    def __init__(self, now: float = START_MS):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def default_patterns() -> list[SourcePattern]:
    """Packaged default source patterns (arxiv, doi, paper)."""
    return load_default_patterns()


@pytest.fixture
def registry(default_patterns) -> PatternRegistry:
    registry = PatternRegistry()
    registry.replace_all(default_patterns)
    return registry


@pytest.fixture
def identifier(registry) -> SourceIdentifier:
    return SourceIdentifier(registry)


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def records(store) -> PaperRecordCoordinator:
    return PaperRecordCoordinator(store)


@pytest.fixture
def sessions(records, clock) -> SessionManager:
    return SessionManager(records=records, clock=clock)


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    """Project root with a memory-backed store.yaml."""
    metadata_dir = tmp_path / ".metadata"
    metadata_dir.mkdir()
    (metadata_dir / "store.yaml").write_text("backend: memory\n", encoding="utf-8")
    return tmp_path


@pytest.fixture
def settings(base_dir, monkeypatch):
    """Fresh Settings singleton loaded from a temporary project root."""
    monkeypatch.delenv("PAPERTRACKER_GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("PAPERTRACKER_GITHUB_REPO", raising=False)
    Settings.reset()
    yield Settings.load(base_dir)
    Settings.reset()


@pytest.fixture
def context(settings, store, clock):
    """Tracker wired to the in-memory store and fake clock."""
    context = TrackerContext.create(settings, store=store, clock=clock)
    yield context
    asyncio.run(context.aclose())
