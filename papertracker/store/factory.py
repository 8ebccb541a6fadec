"""Build an object store from configuration."""

import logging
from typing import Optional

from papertracker.config import StoreConfig
from papertracker.store.base import ObjectStore
from papertracker.store.github import GitHubIssueStore
from papertracker.store.memory import MemoryObjectStore
from papertracker.store.sqlite import SqliteObjectStore

logger = logging.getLogger(__name__)


def create_store(config: StoreConfig) -> Optional[ObjectStore]:
    """Factory function to create the configured object store.

    Returns None for ``backend: none`` and for a ``github`` backend
    without credentials, so the tracker still runs without persistence.

    Raises:
        ValidationError: If the GitHub repository string is malformed
    """
    if config.backend == "none":
        return None
    if config.backend == "memory":
        return MemoryObjectStore()
    if config.backend == "github":
        if not config.github_token or not config.github_repo:
            logger.warning(
                "GitHub store selected but token or repository is missing; "
                "papers will not be persisted"
            )
            return None
        return GitHubIssueStore(token=config.github_token, repo=config.github_repo)

    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    return SqliteObjectStore(config.db_path)
