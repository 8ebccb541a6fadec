"""Configuration management.

``Settings`` is a **metaclass-based singleton**: the first call to
``Settings.load()`` creates the instance; every later call returns
the same object.  Use ``update()`` to change values at runtime, or
``reload()`` to re-read everything from disk.

All user-editable configuration lives under ``.metadata/``:

* ``sources.yaml``  – paper source patterns (URL matcher + id regex)
* ``store.yaml``    – record store backend and credentials
* ``tracker.yaml``  – session tuning and log level

On first run, missing files are copied from ``.metadata.example/``.

Components that must react to configuration changes register a
listener with ``Settings.subscribe()``; ``update()`` calls it with
``(key, old, new)`` for every field whose value changed.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from papertracker.models.source import SourcePattern, optional_pattern

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Any, Any], None]

STORE_BACKENDS = ("sqlite", "github", "memory", "none")


# ---------------------------------------------------------------------------
# Config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StoreConfig:
    """Record store backend selection and credentials."""

    backend: str = "sqlite"
    db_path: Path = Path("papers.db")
    github_token: str = ""
    github_repo: str = ""


@dataclass(frozen=True)
class TrackerConfig:
    """Session tuning."""

    max_gap_ms: float = 60_000.0
    min_session_ms: float = 1_000.0
    log_level: str = "INFO"


# ---------------------------------------------------------------------------
# Singleton metaclass
# ---------------------------------------------------------------------------

class _SettingsMeta(type):
    """Metaclass that enforces a process-wide singleton for *Settings*.

    * First ``Settings(...)`` creates and caches the instance.
    * Later ``Settings(...)`` calls return the cached instance (args ignored).
    """

    _instances: dict[type, Any] = {}

    def __call__(cls, *args: Any, **kwargs: Any) -> Any:
        if cls not in cls._instances:
            cls._instances[cls] = super().__call__(*args, **kwargs)
        return cls._instances[cls]


# ---------------------------------------------------------------------------
# Settings dataclass (singleton)
# ---------------------------------------------------------------------------

@dataclass
class Settings(metaclass=_SettingsMeta):
    """Application settings: a singleton with change notification.

    Usage::

        settings = Settings.load()                   # first call → create
        settings.subscribe(on_change)                # (key, old, new)
        settings.update(source_patterns=[...])       # notifies listeners
        settings = Settings.reload()                 # re-read from disk
    """

    metadata_dir: Path = Path(".metadata")
    source_patterns: list[SourcePattern] = field(default_factory=list)
    store: StoreConfig = field(default_factory=StoreConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)

    _listeners: list[ChangeListener] = field(default_factory=list, repr=False, compare=False)

    # ── Paths ─────────────────────────────────────────────────────────

    @property
    def sources_path(self) -> Path:
        return self.metadata_dir / "sources.yaml"

    @property
    def store_path(self) -> Path:
        return self.metadata_dir / "store.yaml"

    @property
    def tracker_path(self) -> Path:
        return self.metadata_dir / "tracker.yaml"

    # ── Runtime helpers ───────────────────────────────────────────────

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener* for change notifications.

        Returns:
            A callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **kwargs: Any) -> None:
        """Mutate settings fields at runtime and notify listeners.

        If a listener rejects a change, every field is restored, listeners
        that already accepted are told about the reversal, and the error
        propagates.

        >>> Settings.load().update(source_patterns=[])
        """
        changes: list[tuple[str, Any, Any]] = []
        for key, value in kwargs.items():
            if key.startswith("_") or not hasattr(self, key):
                raise AttributeError(f"Settings has no field '{key}'")
            old = getattr(self, key)
            if old == value:
                continue
            changes.append((key, old, value))

        for key, _, new in changes:
            setattr(self, key, new)

        notified: list[tuple[ChangeListener, str, Any, Any]] = []
        try:
            for key, old, new in changes:
                for listener in list(self._listeners):
                    listener(key, old, new)
                    notified.append((listener, key, old, new))
        except Exception:
            for key, old, _ in changes:
                setattr(self, key, old)
            for listener, key, old, new in reversed(notified):
                listener(key, new, old)
            raise

    def save_source_patterns(self, patterns: list[SourcePattern]) -> None:
        """Apply *patterns* and persist them to ``sources.yaml``."""
        self.update(source_patterns=list(patterns))
        save_source_patterns(self.sources_path, patterns)

    def save_store_config(self, store: StoreConfig) -> None:
        """Apply *store* and persist it to ``store.yaml``."""
        self.update(store=store)
        save_store_config(self.store_path, store)

    # ── Factory / lifecycle ───────────────────────────────────────────

    @classmethod
    def load(cls, base_dir: Optional[Path] = None) -> "Settings":
        """Load or return the singleton Settings instance.

        On first call the singleton is created; subsequent calls return
        the cached instance.  Pass *base_dir* to override the project
        root (defaults to the repository root one level above ``papertracker/``).
        """
        if cls in _SettingsMeta._instances:
            return _SettingsMeta._instances[cls]  # type: ignore[return-value]

        if base_dir is None:
            base_dir = Path(__file__).resolve().parent.parent

        metadata_dir = base_dir / ".metadata"
        cls._ensure_default_files(base_dir, metadata_dir)

        return cls(
            metadata_dir=metadata_dir,
            source_patterns=load_source_patterns(metadata_dir / "sources.yaml"),
            store=_load_store_config(metadata_dir / "store.yaml", base_dir),
            tracker=_load_tracker_config(metadata_dir / "tracker.yaml"),
        )

    @classmethod
    def reload(cls, base_dir: Optional[Path] = None) -> "Settings":
        """Discard the current singleton and re-load from disk."""
        cls.reset()
        return cls.load(base_dir)

    @classmethod
    def reset(cls) -> None:
        """Discard the singleton so the next ``load()`` re-creates it."""
        _SettingsMeta._instances.pop(cls, None)

    # ── Private ───────────────────────────────────────────────────────

    @staticmethod
    def _ensure_default_files(base_dir: Path, metadata_dir: Path) -> None:
        """Copy ``.metadata.example/`` templates when real files are missing."""
        metadata_dir.mkdir(parents=True, exist_ok=True)

        example_dir = base_dir / ".metadata.example"
        if not example_dir.exists():
            return

        for example_file in example_dir.iterdir():
            if example_file.is_file():
                target = metadata_dir / example_file.name
                if not target.exists():
                    shutil.copy2(example_file, target)
                    logger.info("Created .metadata/%s from template", example_file.name)


# ---------------------------------------------------------------------------
# YAML loaders
# ---------------------------------------------------------------------------

def _read_yaml(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)


def load_default_patterns() -> list[SourcePattern]:
    """Load the packaged default source patterns.

    This is **application data** (ships with the package), not user config.
    """
    registry_path = Path(__file__).resolve().parent / "data" / "default_sources.yaml"
    data = _read_yaml(registry_path)
    return _parse_patterns(data.get("source_patterns") or [])


def _parse_patterns(raw_patterns: Any) -> list[SourcePattern]:
    patterns: list[SourcePattern] = []
    for entry in raw_patterns or []:
        pattern = optional_pattern(entry)
        if pattern is None:
            logger.warning("Ignoring malformed source pattern entry: %r", entry)
            continue
        patterns.append(pattern)
    return patterns


def load_source_patterns(path: Path) -> list[SourcePattern]:
    """Load source patterns from ``sources.yaml``.

    Falls back to the packaged defaults when the file or its
    ``source_patterns`` key is missing.  An explicit empty list is kept:
    it means the user removed every source.  Field and regex validation
    happens in the pattern registry, not here.
    """
    if not path.exists():
        return load_default_patterns()
    try:
        data = _read_yaml(path)
    except yaml.YAMLError as e:
        logger.error("Cannot parse %s: %s; using default sources", path, e)
        return load_default_patterns()
    if not isinstance(data, dict) or data.get("source_patterns") is None:
        return load_default_patterns()
    return _parse_patterns(data["source_patterns"])


def save_source_patterns(path: Path, patterns: list[SourcePattern]) -> None:
    """Persist source patterns to ``sources.yaml``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("# Paper source patterns\n")
        f.write("# url_pattern: regex a URL must match; id_regex: regex whose group is the paper id\n\n")
        yaml.dump(
            {"source_patterns": [p.to_dict() for p in patterns]},
            f,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )


def _load_store_config(path: Path, base_dir: Path) -> StoreConfig:
    """Load store backend settings from ``store.yaml`` plus environment.

    ``PAPERTRACKER_GITHUB_TOKEN`` and ``PAPERTRACKER_GITHUB_REPO`` override
    the file so tokens need not be written to disk.
    """
    data: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = _read_yaml(path)
            if isinstance(loaded, dict):
                data = loaded
        except yaml.YAMLError as e:
            logger.error("Cannot parse %s: %s; using default store settings", path, e)

    backend = str(data.get("backend") or "sqlite").lower()
    if backend not in STORE_BACKENDS:
        logger.warning("Unknown store backend %r, falling back to sqlite", backend)
        backend = "sqlite"

    db_path = Path(data.get("db_path") or "papers.db")
    if not db_path.is_absolute():
        db_path = base_dir / db_path

    return StoreConfig(
        backend=backend,
        db_path=db_path,
        github_token=os.environ.get("PAPERTRACKER_GITHUB_TOKEN") or str(data.get("github_token") or ""),
        github_repo=os.environ.get("PAPERTRACKER_GITHUB_REPO") or str(data.get("github_repo") or ""),
    )


def save_store_config(path: Path, store: StoreConfig) -> None:
    """Persist store settings to ``store.yaml``."""
    data: dict[str, Any] = {
        "backend": store.backend,
        "db_path": str(store.db_path),
        "github_repo": store.github_repo,
        "github_token": store.github_token,
    }
    with open(path, "w", encoding="utf-8") as f:
        f.write("# Record store backend: sqlite | github | memory | none\n")
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


def _load_tracker_config(path: Path) -> TrackerConfig:
    """Load session tuning from ``tracker.yaml``."""
    if not path.exists():
        return TrackerConfig()
    try:
        data = _read_yaml(path)
    except yaml.YAMLError as e:
        logger.error("Cannot parse %s: %s; using default tracker settings", path, e)
        return TrackerConfig()
    if not isinstance(data, dict):
        return TrackerConfig()

    defaults = TrackerConfig()
    try:
        return TrackerConfig(
            max_gap_ms=float(data.get("max_gap_ms", defaults.max_gap_ms)),
            min_session_ms=float(data.get("min_session_ms", defaults.min_session_ms)),
            log_level=str(data.get("log_level", defaults.log_level)).upper(),
        )
    except (TypeError, ValueError) as e:
        logger.warning("Invalid value in %s (%s); using defaults", path, e)
        return defaults
