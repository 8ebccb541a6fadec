"""Command-line interface handlers."""

import argparse
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import uvicorn

from papertracker.config import Settings, load_default_patterns
from papertracker.console import ConsoleUI, setup_logging
from papertracker.context import TrackerContext
from papertracker.errors import PaperTrackerError, StateError
from papertracker.models.paper import PaperMetadata, Rating
from papertracker.models.source import SourcePattern
from papertracker.sources.identifier import SourceIdentifier
from papertracker.sources.registry import PatternRegistry, validate_patterns

T = TypeVar("T")


class PaperTrackerCLI:
    """CLI application for the paper tracker."""

    def __init__(self, settings: Optional[Settings] = None, ui: Optional[ConsoleUI] = None):
        """Initialize CLI with settings.

        Args:
            settings: Application settings (loads from .metadata if not provided)
            ui: Console output (a fresh Rich console if not provided)
        """
        self.settings = settings or Settings.load()
        self.ui = ui or ConsoleUI()

    def _run(self, action: Callable[[TrackerContext], Awaitable[T]]) -> T:
        """Run *action* against a fresh context and close it afterwards."""

        async def runner() -> T:
            context = TrackerContext.create(self.settings)
            try:
                return await action(context)
            finally:
                await context.aclose()

        return asyncio.run(runner())

    # ── Sources ───────────────────────────────────────────────────────

    def cmd_identify(self, url: str) -> bool:
        """Print which source and paper a URL belongs to."""
        identifier = SourceIdentifier(PatternRegistry(self.settings.source_patterns))
        resolved = identifier.identify(url)
        self.ui.identified(url, resolved)
        return resolved is not None

    def cmd_sources_list(self) -> None:
        self.ui.display_sources(self.settings.source_patterns)

    def cmd_sources_add(self, source_id: str, name: str, url_pattern: str, id_regex: str) -> None:
        """Add a source pattern, or replace the one with the same id."""
        pattern = SourcePattern(id=source_id, name=name, url_pattern=url_pattern, id_regex=id_regex)
        patterns = [p for p in self.settings.source_patterns if p.id != source_id]
        replaced = len(patterns) != len(self.settings.source_patterns)
        if replaced:
            # keep its position
            patterns = [pattern if p.id == source_id else p for p in self.settings.source_patterns]
        else:
            patterns.append(pattern)
        self._save_patterns(patterns)
        self.ui.success(f"{'Updated' if replaced else 'Added'} source {source_id}")

    def cmd_sources_remove(self, source_id: str) -> bool:
        patterns = [p for p in self.settings.source_patterns if p.id != source_id]
        if len(patterns) == len(self.settings.source_patterns):
            self.ui.warning(f"No source with ID {source_id}")
            return False
        self._save_patterns(patterns)
        self.ui.success(f"Removed source {source_id}")
        return True

    def cmd_sources_reset(self) -> None:
        """Restore the packaged default sources."""
        self._save_patterns(load_default_patterns())
        self.ui.success("Restored default sources")

    def _save_patterns(self, patterns: list[SourcePattern]) -> None:
        validate_patterns(patterns)
        self.settings.save_source_patterns(patterns)

    # ── Papers ────────────────────────────────────────────────────────

    def cmd_log(
        self,
        source_id: str,
        paper_id: str,
        title: str = "",
        authors: str = "",
        url: str = "",
        tags: Optional[list[str]] = None,
    ) -> None:
        """Log a paper by hand, creating its record if needed."""
        metadata = PaperMetadata(
            source_id=source_id,
            paper_id=paper_id,
            title=title,
            authors=authors,
            url=url,
            tags=set(tags or []),
        )

        async def action(context: TrackerContext):
            if context.records is None:
                return None
            return await context.records.get_or_create(metadata)

        paper = self._run(action)
        if paper is None:
            self.ui.warning("No record store configured; nothing was saved")
            return
        self.ui.success(f"Logged {paper.key}")
        self.ui.display_paper(paper)

    def cmd_show(self, source_id: str, paper_id: str) -> bool:
        async def action(context: TrackerContext):
            return await self._records(context).get(source_id, paper_id)

        paper = self._run(action)
        if paper is None:
            self.ui.warning(f"No record for {source_id}:{paper_id}")
            return False
        self.ui.display_paper(paper)
        return True

    def cmd_rate(self, source_id: str, paper_id: str, rating: str) -> None:
        """Record a rating on an existing paper."""
        value = Rating.parse(rating)

        async def action(context: TrackerContext):
            return await self._records(context).rate(source_id, paper_id, value)

        self._run(action)
        self.ui.success(f"Rated {source_id}:{paper_id} {value.value}")

    def cmd_note(self, source_id: str, paper_id: str, notes: str) -> None:
        async def action(context: TrackerContext):
            return await self._records(context).save_notes(source_id, paper_id, notes)

        self._run(action)
        self.ui.success(f"Saved notes for {source_id}:{paper_id}")

    @staticmethod
    def _records(context: TrackerContext):
        if context.records is None:
            raise StateError("No record store configured (see .metadata/store.yaml)")
        return context.records

    # ── Server ────────────────────────────────────────────────────────

    def cmd_serve(self, host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
        uvicorn.run(
            "papertracker.api.app:app",
            host=host,
            port=port,
            reload=reload,
            log_level=self.settings.tracker.log_level.lower(),
        )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog="papertracker",
        description="Track reading time, ratings and notes for research papers",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override log level from tracker.yaml (DEBUG, INFO, WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP message endpoint")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # identify command
    identify_parser = subparsers.add_parser("identify", help="Show which paper a URL belongs to")
    identify_parser.add_argument("url", help="Page URL")

    # sources command
    sources_parser = subparsers.add_parser("sources", help="Manage paper source patterns")
    sources_sub = sources_parser.add_subparsers(dest="sources_command", required=True)
    sources_sub.add_parser("list", help="List sources in match order")
    add_parser = sources_sub.add_parser("add", help="Add or replace a source")
    add_parser.add_argument("id", help="Unique source ID")
    add_parser.add_argument("--name", required=True, help="Display name")
    add_parser.add_argument("--url-pattern", required=True, help="Regex matching page URLs")
    add_parser.add_argument("--id-regex", required=True, help="Regex capturing the paper id")
    remove_parser = sources_sub.add_parser("remove", help="Remove a source")
    remove_parser.add_argument("id", help="Source ID")
    sources_sub.add_parser("reset", help="Restore the default sources")

    # log command
    log_parser = subparsers.add_parser("log", help="Log a paper manually")
    log_parser.add_argument("source_id")
    log_parser.add_argument("paper_id")
    log_parser.add_argument("--title", default="")
    log_parser.add_argument("--authors", default="")
    log_parser.add_argument("--url", default="")
    log_parser.add_argument("--tag", action="append", dest="tags", help="Tag (repeatable)")

    # show command
    show_parser = subparsers.add_parser("show", help="Show a stored paper and its history")
    show_parser.add_argument("source_id")
    show_parser.add_argument("paper_id")

    # rate command
    rate_parser = subparsers.add_parser("rate", help="Rate a stored paper")
    rate_parser.add_argument("source_id")
    rate_parser.add_argument("paper_id")
    rate_parser.add_argument("rating", help="up, down or none")

    # note command
    note_parser = subparsers.add_parser("note", help="Save notes on a stored paper")
    note_parser.add_argument("source_id")
    note_parser.add_argument("paper_id")
    note_parser.add_argument("notes")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for CLI.

    Returns:
        Process exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    cli = PaperTrackerCLI()
    setup_logging(args.log_level or cli.settings.tracker.log_level)

    try:
        if args.command == "serve":
            cli.cmd_serve(args.host, args.port, args.reload)
        elif args.command == "identify":
            return 0 if cli.cmd_identify(args.url) else 1
        elif args.command == "sources":
            if args.sources_command == "list":
                cli.cmd_sources_list()
            elif args.sources_command == "add":
                cli.cmd_sources_add(args.id, args.name, args.url_pattern, args.id_regex)
            elif args.sources_command == "remove":
                return 0 if cli.cmd_sources_remove(args.id) else 1
            elif args.sources_command == "reset":
                cli.cmd_sources_reset()
        elif args.command == "log":
            cli.cmd_log(args.source_id, args.paper_id, args.title, args.authors, args.url, args.tags)
        elif args.command == "show":
            return 0 if cli.cmd_show(args.source_id, args.paper_id) else 1
        elif args.command == "rate":
            cli.cmd_rate(args.source_id, args.paper_id, args.rating)
        elif args.command == "note":
            cli.cmd_note(args.source_id, args.paper_id, args.notes)
    except PaperTrackerError as e:
        cli.ui.error(str(e))
        return 1
    return 0


def run_cli() -> None:
    raise SystemExit(main())
