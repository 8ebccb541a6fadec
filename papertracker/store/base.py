"""Object store interface used by the paper record coordinator.

A store keeps JSON objects under string keys.  Objects are created once
and afterwards only grow by appended events; nothing is overwritten.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional

KEY_PREFIX = "paper"


def make_key(source_id: str, paper_id: str) -> str:
    """Serialize a ``(source_id, paper_id)`` pair to a stable store key."""
    return f"{KEY_PREFIX}:{source_id}:{paper_id}"


@dataclass
class StoredObject:
    """A stored object: initial value plus its appended events."""

    key: str
    data: dict[str, Any]
    events: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


class ObjectStore(ABC):
    """Asynchronous key/object service with append-only updates.

    Implementations raise :class:`~papertracker.errors.RemoteUnavailableError`
    when the backend cannot be reached, :class:`~papertracker.errors.RecordExistsError`
    from :meth:`create` on an existing key and
    :class:`~papertracker.errors.NotFoundError` from :meth:`update` on a
    missing key.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[StoredObject]:
        """Return the object under *key*, or None if absent."""

    @abstractmethod
    async def create(self, key: str, initial: dict[str, Any]) -> StoredObject:
        """Create a new object under *key* seeded with *initial*."""

    @abstractmethod
    async def update(self, key: str, event: dict[str, Any]) -> StoredObject:
        """Append *event* to the object under *key* and return it."""

    async def close(self) -> None:
        """Release backend resources."""
