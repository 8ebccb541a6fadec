"""URL → (source, paper id) identification."""

import logging
from typing import Optional

from papertracker.errors import NoMatchError
from papertracker.models.source import ResolvedSource
from papertracker.sources.registry import PatternRegistry

logger = logging.getLogger(__name__)


class SourceIdentifier:
    """Resolve URLs against a :class:`PatternRegistry`.

    First match wins: patterns are tried in registry order and the first
    one whose URL pattern matches, and that yields an id, decides.
    """

    def __init__(self, registry: PatternRegistry):
        self.registry = registry

    def identify(self, url: str) -> Optional[ResolvedSource]:
        """Return the source and paper id for *url*, or None if untracked."""
        url = (url or "").strip()
        if not url:
            return None

        for integration in self.registry.integrations():
            if not integration.matches(url):
                continue
            paper_id = integration.extract_paper_id(url)
            if paper_id:
                return ResolvedSource(source_id=integration.id, paper_id=paper_id)
            logger.debug("Source %s matched %s but gave no paper id", integration.id, url)

        logger.debug("No matching source pattern for %s", url)
        return None

    def require(self, url: str) -> ResolvedSource:
        """Like :meth:`identify` but raise for untracked pages.

        Raises:
            NoMatchError: If no pattern matches *url*
        """
        resolved = self.identify(url)
        if resolved is None:
            raise NoMatchError(f"No matching source pattern for URL: {url}")
        return resolved
