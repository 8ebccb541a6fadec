"""Console UI for terminal output using Rich."""

import logging
from datetime import datetime, timezone
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from papertracker.models.paper import StoredPaper
from papertracker.models.source import ResolvedSource, SourcePattern


def setup_logging(level: str = "INFO", console: Optional[Console] = None) -> None:
    """Route log records through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console or Console(stderr=True),
                rich_tracebacks=True,
                show_path=False,
            )
        ],
        force=True,
    )


def _format_ms(ms: float) -> str:
    seconds = int(ms // 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes:02d}m"
    return f"{minutes}m {seconds:02d}s"


def _format_epoch_ms(ms: Optional[float]) -> str:
    if ms is None:
        return "-"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


class ConsoleUI:
    """Rich-based console UI for paper display and notifications."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize console."""
        self.console = console or Console()

    def info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(message)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        self.console.print(f"[green]{message}[/green]")

    def warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        self.console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        """Print an error message in red."""
        self.console.print(f"[red]Error:[/red] {message}")

    def identified(self, url: str, resolved: Optional[ResolvedSource]) -> None:
        """Print the identification result for a URL."""
        if resolved is None:
            self.console.print(f"[yellow]Untracked page[/yellow]: {url}")
            return
        self.console.print(
            f"[bold]{resolved.source_id}[/bold] → [cyan]{resolved.paper_id}[/cyan]"
        )

    def display_sources(self, patterns: list[SourcePattern]) -> None:
        """Display source patterns in match order."""
        table = Table(title="Paper sources (match order)")
        table.add_column("#", justify="right")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("URL pattern", overflow="fold")
        table.add_column("ID regex", overflow="fold")

        for index, pattern in enumerate(patterns, 1):
            table.add_row(
                str(index),
                pattern.id,
                pattern.name,
                pattern.url_pattern,
                pattern.id_regex,
            )

        self.console.print(table)
        if not patterns:
            self.console.print("No sources registered; every page is untracked.")

    def display_paper(self, paper: StoredPaper) -> None:
        """Display a stored paper with its annotation history.

        Args:
            paper: Stored paper to display
        """
        meta = paper.metadata
        self.console.print(f"[bold]{meta.title or '(no title)'}[/bold]")
        self.console.print(f"{meta.source_id}:{meta.paper_id}  [dim]{paper.key}[/dim]")
        if meta.authors:
            self.console.print(f"Authors: {meta.authors}")
        if meta.url:
            self.console.print(f"Link: {meta.url}")
        if meta.tags:
            self.console.print(f"Tags: {', '.join(sorted(meta.tags))}")
        self.console.print(f"Rating: {meta.rating.value}")
        if meta.notes:
            self.console.print(f"Notes: {meta.notes}")

        sessions = paper.reading_sessions()
        if sessions:
            self.console.print(
                f"Read {len(sessions)} time(s), {_format_ms(paper.total_reading_ms())} in total"
            )

        table = Table(title="Annotations")
        table.add_column("Time", width=25)
        table.add_column("Kind")
        table.add_column("Value", overflow="fold")
        for annotation in paper.annotations:
            value = annotation.value
            if isinstance(value, dict) and value.get("event") == "reading_session":
                value = (
                    f"read {_format_ms(float(value.get('duration_ms', 0)))} "
                    f"from {_format_epoch_ms(value.get('started_at'))} ({value.get('reason')})"
                )
            table.add_row(annotation.timestamp, annotation.kind.value, str(value))

        if paper.annotations:
            self.console.print(table)
        else:
            self.console.print("No annotations yet.")
