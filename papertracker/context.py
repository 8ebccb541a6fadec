"""Tracker context: wires registry, identifier, records and sessions.

A :class:`TrackerContext` is created once per process (CLI command or
server lifespan) and closed at the end.  It owns the session manager,
so "one active session" holds per context, and it listens to settings
changes so source patterns and the store follow the configuration.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from papertracker.config import Settings, StoreConfig
from papertracker.dispatcher import CommandDispatcher
from papertracker.models.paper import PaperMetadata
from papertracker.models.session import Session
from papertracker.models.source import SourcePattern
from papertracker.services.paper_service import PaperRecordCoordinator
from papertracker.services.session_service import Clock, SessionManager
from papertracker.sources.identifier import SourceIdentifier
from papertracker.sources.registry import PatternRegistry
from papertracker.store.base import ObjectStore
from papertracker.store.factory import create_store

logger = logging.getLogger(__name__)


@dataclass
class DebugView:
    """Read-only inspection of a running tracker."""

    context: "TrackerContext"

    def current_session(self) -> Optional[Session]:
        return self.context.sessions.get_current_session()

    def current_paper(self) -> Optional[PaperMetadata]:
        return self.context.sessions.get_paper_metadata()

    def sources(self) -> list[SourcePattern]:
        return self.context.registry.list()

    def session_stats(self) -> dict[str, Any]:
        return self.context.sessions.get_session_stats()


@dataclass
class TrackerContext:
    settings: Settings
    registry: PatternRegistry
    identifier: SourceIdentifier
    sessions: SessionManager
    dispatcher: CommandDispatcher = field(init=False)
    _unsubscribe: Optional[Callable[[], None]] = field(default=None, init=False, repr=False)
    _retired: list[PaperRecordCoordinator] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        self.dispatcher = CommandDispatcher(self)

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        store: Optional[ObjectStore] = None,
        builtins: Iterable[SourcePattern] = (),
        clock: Optional[Clock] = None,
    ) -> "TrackerContext":
        """Build a context from *settings* and subscribe to its changes.

        Args:
            settings: Application settings (loads the singleton if omitted)
            store: Object store to use instead of the configured backend
            builtins: Patterns that stay registered whatever the config says
            clock: Time source for sessions, in epoch milliseconds

        Raises:
            ValidationError: If configured source patterns are invalid
        """
        settings = settings or Settings.load()

        registry = PatternRegistry(builtins)
        registry.replace_all(settings.source_patterns)

        if store is None:
            store = create_store(settings.store)
        records = PaperRecordCoordinator(store) if store is not None else None

        sessions = SessionManager(
            records=records,
            max_gap_ms=settings.tracker.max_gap_ms,
            min_session_ms=settings.tracker.min_session_ms,
            clock=clock,
        )
        context = cls(
            settings=settings,
            registry=registry,
            identifier=SourceIdentifier(registry),
            sessions=sessions,
        )
        context._unsubscribe = settings.subscribe(context.on_settings_change)
        logger.info(
            "Tracker ready: %d sources, store=%s",
            len(registry),
            type(store).__name__ if store else "none",
        )
        return context

    @property
    def records(self) -> Optional[PaperRecordCoordinator]:
        return self.sessions.records

    @property
    def debug(self) -> DebugView:
        return DebugView(self)

    async def dispatch(self, message: dict[str, Any]):
        return await self.dispatcher.dispatch(message)

    # ── Configuration changes ─────────────────────────────────────────

    def on_settings_change(self, key: str, old: Any, new: Any) -> None:
        """React to a ``Settings.update`` notification.

        A rejected pattern list leaves the registry untouched and the
        ``ValidationError`` goes back to whoever changed the settings.
        """
        if key == "source_patterns":
            self.registry.replace_all(new or [])
            logger.info("Source patterns updated (%d active)", len(self.registry))
        elif key == "store":
            self._swap_store(new)
        elif key == "tracker":
            self.sessions.max_gap_ms = new.max_gap_ms
            self.sessions.min_session_ms = new.min_session_ms

    def _swap_store(self, config: StoreConfig) -> None:
        store = create_store(config)
        old = self.sessions.records
        self.sessions.records = PaperRecordCoordinator(store) if store is not None else None
        if old is not None:
            self._retired.append(old)
        logger.info("Record store reinitialized (%s)", config.backend)

    # ── Teardown ──────────────────────────────────────────────────────

    async def aclose(self) -> None:
        """End the active session, unsubscribe and close store clients."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self.sessions.end("shutdown")
        for records in [*self._retired, self.sessions.records]:
            if records is not None:
                await records.close()
        self._retired.clear()
