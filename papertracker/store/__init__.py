"""Object store backends."""

from papertracker.store.base import ObjectStore, StoredObject, make_key
from papertracker.store.factory import create_store
from papertracker.store.github import GitHubIssueStore
from papertracker.store.memory import MemoryObjectStore
from papertracker.store.sqlite import SqliteObjectStore

__all__ = [
    "GitHubIssueStore",
    "MemoryObjectStore",
    "ObjectStore",
    "SqliteObjectStore",
    "StoredObject",
    "create_store",
    "make_key",
]
