"""Tests for the command-line interface."""

import pytest
from rich.console import Console

from papertracker.cli import PaperTrackerCLI, create_parser, main
from papertracker.config import Settings, load_source_patterns
from papertracker.console import ConsoleUI
from papertracker.errors import ValidationError


@pytest.fixture
def output():
    return Console(record=True, width=200)


@pytest.fixture
def cli(settings, output):
    return PaperTrackerCLI(settings=settings, ui=ConsoleUI(console=output))


@pytest.fixture
def sqlite_settings(base_dir):
    """Settings whose store persists between CLI commands."""
    (base_dir / ".metadata" / "store.yaml").write_text("backend: sqlite\n", encoding="utf-8")
    Settings.reset()
    yield Settings.load(base_dir)
    Settings.reset()


class TestParser:
    """Tests for argument parsing."""

    def test_log_with_tags(self):
        args = create_parser().parse_args(
            ["log", "arxiv", "2301.00001", "--title", "T", "--tag", "ml", "--tag", "nlp"]
        )
        assert args.command == "log"
        assert args.tags == ["ml", "nlp"]

    def test_sources_subcommand_required(self):
        with pytest.raises(SystemExit):
            create_parser().parse_args(["sources"])


class TestSourceCommands:
    """Tests for identify and sources commands."""

    def test_identify(self, cli, output):
        assert cli.cmd_identify("https://arxiv.org/abs/2301.00001") is True
        assert "2301.00001" in output.export_text()

    def test_identify_untracked(self, cli, output):
        assert cli.cmd_identify("https://example.com/") is False
        assert "Untracked page" in output.export_text()

    def test_sources_add_and_remove(self, cli, settings):
        cli.cmd_sources_add("ex", "Example", r"example\.org", r"/(\d+)")
        assert [p.id for p in load_source_patterns(settings.sources_path)][-1] == "ex"

        assert cli.cmd_sources_remove("ex") is True
        assert cli.cmd_sources_remove("ex") is False
        assert "ex" not in [p.id for p in settings.source_patterns]

    def test_sources_add_replaces_in_place(self, cli, settings):
        cli.cmd_sources_add("arxiv", "arXiv mirror", r"arxiv-mirror\.org", r"/(\d+)")
        assert [p.id for p in settings.source_patterns] == ["arxiv", "doi", "paper"]
        assert settings.source_patterns[0].name == "arXiv mirror"

    def test_sources_add_invalid_regex_not_saved(self, cli, settings):
        with pytest.raises(ValidationError):
            cli.cmd_sources_add("bad", "Bad", "(", "(x)")
        assert not settings.sources_path.exists()

    def test_sources_reset(self, cli, settings):
        cli.cmd_sources_remove("doi")
        cli.cmd_sources_reset()
        assert [p.id for p in settings.source_patterns] == ["arxiv", "doi", "paper"]


class TestPaperCommands:
    """Tests for log, show, rate and note against a SQLite store."""

    def test_log_rate_note_show(self, sqlite_settings, output):
        cli = PaperTrackerCLI(settings=sqlite_settings, ui=ConsoleUI(console=output))

        cli.cmd_log("arxiv", "2301.00001", title="A Paper", tags=["ml"])
        cli.cmd_rate("arxiv", "2301.00001", "up")
        cli.cmd_note("arxiv", "2301.00001", "read section 3 again")
        assert cli.cmd_show("arxiv", "2301.00001") is True

        text = output.export_text()
        assert "A Paper" in text
        assert "Rating: thumbsup" in text
        assert "read section 3 again" in text

    def test_show_missing(self, sqlite_settings, output):
        cli = PaperTrackerCLI(settings=sqlite_settings, ui=ConsoleUI(console=output))
        assert cli.cmd_show("arxiv", "nope") is False

    def test_main_reports_errors(self, sqlite_settings, monkeypatch):
        monkeypatch.setattr("papertracker.cli.setup_logging", lambda level: None)
        assert main(["rate", "arxiv", "missing", "up"]) == 1
        assert main(["rate", "arxiv", "missing", "sideways"]) == 1
