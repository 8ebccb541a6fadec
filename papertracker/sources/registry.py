"""Source pattern registry.

Patterns live in two layers:

* **built-ins** – fixed at construction, always present;
* **user patterns** – added, replaced or swapped wholesale at runtime.

A user pattern whose id equals a built-in id shadows that built-in in
place.  Which ids are user-defined is answered by the user layer itself,
so a ``replace_all`` swaps storage and membership in one assignment.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import urlparse

from papertracker.errors import ValidationError
from papertracker.models.source import SourcePattern

logger = logging.getLogger(__name__)


def _pick_group(match: re.Match) -> Optional[str]:
    """Return the paper id carried by *match*.

    A named group ``id`` wins; otherwise the last capture group that
    took part in the match.  Returns None when the pattern has no groups
    or none of them captured text.
    """
    named = match.groupdict().get("id")
    if named:
        return named
    for value in reversed(match.groups()):
        if value:
            return value
    return None


def _last_path_segment(url: str) -> Optional[str]:
    path = urlparse(url).path
    segments = [s for s in path.split("/") if s]
    return segments[-1] if segments else None


@dataclass(frozen=True)
class SourceIntegration:
    """A source backed by a single :class:`SourcePattern` value."""

    pattern: SourcePattern
    url_re: re.Pattern
    id_re: re.Pattern

    @classmethod
    def from_pattern(cls, pattern: SourcePattern) -> "SourceIntegration":
        """Validate and compile *pattern*.

        Raises:
            ValidationError: On a missing field or an unparseable regex
        """
        for field_name in ("id", "name", "url_pattern", "id_regex"):
            if not getattr(pattern, field_name).strip():
                raise ValidationError(
                    f"Source pattern {pattern.id or '<unnamed>'!r} is missing '{field_name}'"
                )
        try:
            url_re = re.compile(pattern.url_pattern, re.IGNORECASE)
            id_re = re.compile(pattern.id_regex, re.IGNORECASE)
        except re.error as e:
            raise ValidationError(
                f"Invalid regular expression in source {pattern.id!r}: {e}"
            ) from e
        return cls(pattern=pattern, url_re=url_re, id_re=id_re)

    @property
    def id(self) -> str:
        return self.pattern.id

    @property
    def name(self) -> str:
        return self.pattern.name

    def matches(self, url: str) -> bool:
        return self.url_re.search(url) is not None

    def extract_paper_id(self, url: str) -> Optional[str]:
        """Extract the paper id from a URL this source matches.

        Order of attempts:

        1. the id regex's capture group;
        2. the URL pattern's own capture group, when the id regex does not
           match or has no group;
        3. the last non-empty path segment of the URL.
        """
        match = self.id_re.search(url)
        if match:
            paper_id = _pick_group(match)
            if paper_id:
                return paper_id

        logger.debug("Id regex of %s gave no capture for %s, using fallback", self.id, url)
        url_match = self.url_re.search(url)
        if url_match:
            paper_id = _pick_group(url_match)
            if paper_id:
                return paper_id

        return _last_path_segment(url)


def validate_patterns(patterns: Iterable[SourcePattern]) -> list[SourceIntegration]:
    """Compile a batch of patterns, rejecting bad fields and duplicate ids.

    Raises:
        ValidationError: On the first invalid or duplicated pattern
    """
    compiled: list[SourceIntegration] = []
    seen: set[str] = set()
    for pattern in patterns:
        integration = SourceIntegration.from_pattern(pattern)
        if integration.id in seen:
            raise ValidationError(
                f"Duplicate source ID: {integration.id}. Each source must have a unique ID."
            )
        seen.add(integration.id)
        compiled.append(integration)
    return compiled


class PatternRegistry:
    """Ordered registry of source integrations."""

    def __init__(self, builtins: Iterable[SourcePattern] = ()):
        self._builtins: dict[str, SourceIntegration] = {
            integration.id: integration for integration in validate_patterns(builtins)
        }
        self._user: dict[str, SourceIntegration] = {}

    # ── Mutation ──────────────────────────────────────────────────────

    def register(self, pattern: SourcePattern) -> SourceIntegration:
        """Add a user pattern, replacing any user pattern with the same id."""
        integration = SourceIntegration.from_pattern(pattern)
        replaced = integration.id in self._user
        # Rebuilding the dict keeps the old slot for a replaced id.
        updated = dict(self._user)
        updated[integration.id] = integration
        self._user = updated
        logger.debug(
            "%s source pattern %s", "Replaced" if replaced else "Registered", integration.id
        )
        return integration

    def unregister(self, source_id: str) -> bool:
        """Remove a user pattern. Built-ins cannot be removed.

        Returns:
            True if a user pattern was removed
        """
        if source_id not in self._user:
            return False
        self._user = {k: v for k, v in self._user.items() if k != source_id}
        logger.debug("Removed source pattern %s", source_id)
        return True

    def replace_all(self, patterns: Iterable[SourcePattern]) -> None:
        """Atomically swap the whole user pattern set.

        Every pattern is validated before anything changes; on error the
        registry keeps its previous contents.
        """
        compiled = validate_patterns(patterns)
        self._user = {integration.id: integration for integration in compiled}
        logger.info("Loaded %d source patterns", len(compiled))

    # ── Queries ───────────────────────────────────────────────────────

    def integrations(self) -> list[SourceIntegration]:
        """Active integrations in match order."""
        user = self._user
        ordered = [user.get(sid, builtin) for sid, builtin in self._builtins.items()]
        ordered.extend(i for sid, i in user.items() if sid not in self._builtins)
        return ordered

    def get(self, source_id: str) -> Optional[SourcePattern]:
        integration = self._user.get(source_id) or self._builtins.get(source_id)
        return integration.pattern if integration else None

    def user_ids(self) -> list[str]:
        return list(self._user)

    def is_user_defined(self, source_id: str) -> bool:
        return source_id in self._user

    def __len__(self) -> int:
        return len(self.integrations())

    # Kept last: inside the class body this name shadows the builtin.
    def list(self) -> list[SourcePattern]:
        return [integration.pattern for integration in self.integrations()]
