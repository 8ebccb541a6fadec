"""In-process object store."""

import copy
from typing import Any, Optional

from papertracker.errors import NotFoundError, RecordExistsError
from papertracker.models.paper import utc_now_iso
from papertracker.store.base import ObjectStore, StoredObject


class MemoryObjectStore(ObjectStore):
    """Dict-backed store. Returns deep copies so callers cannot mutate it."""

    def __init__(self):
        self._objects: dict[str, StoredObject] = {}

    async def get(self, key: str) -> Optional[StoredObject]:
        obj = self._objects.get(key)
        return copy.deepcopy(obj) if obj else None

    async def create(self, key: str, initial: dict[str, Any]) -> StoredObject:
        if key in self._objects:
            raise RecordExistsError(f"Object already exists: {key}")
        now = utc_now_iso()
        obj = StoredObject(
            key=key,
            data=copy.deepcopy(initial),
            created_at=now,
            updated_at=now,
        )
        self._objects[key] = obj
        return copy.deepcopy(obj)

    async def update(self, key: str, event: dict[str, Any]) -> StoredObject:
        obj = self._objects.get(key)
        if obj is None:
            raise NotFoundError(f"No stored object for {key}")
        obj.events.append(copy.deepcopy(event))
        obj.updated_at = utc_now_iso()
        return copy.deepcopy(obj)

    def __len__(self) -> int:
        return len(self._objects)

    def keys(self) -> list[str]:
        return list(self._objects)
