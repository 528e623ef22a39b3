"""
Abstract base class for key-value store backends.

The weight and buffer adapters only need namespaced ``get``/``put`` with
server-side timestamps. Writes are unconditional overwrites (last write
wins); callers are expected to serialize turns per user.
"""

import copy
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any


Namespace = tuple[str, ...]


# Custom exceptions
class StorageError(Exception):
    """Base exception for storage errors."""

    pass


@dataclass
class StoreItem:
    """A stored value with its timestamps."""

    value: dict[str, Any]
    created_at: datetime
    updated_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseStore(ABC):
    """
    Abstract namespaced key-value store.

    Values are JSON-compatible dictionaries.
    """

    @abstractmethod
    async def get(self, namespace: Namespace, key: str) -> StoreItem | None:
        """
        Read a value.

        Args:
            namespace: Path of namespace segments, e.g. ("rmm", user_id, "weights")
            key: Key within the namespace

        Returns:
            The stored item, or None if nothing was written
        """
        pass

    @abstractmethod
    async def put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> None:
        """Write a value, replacing any previous one."""
        pass


class InMemoryStore(BaseStore):
    """Process-local store, useful for tests and single-process agents."""

    def __init__(self):
        self._data: dict[tuple[Namespace, str], StoreItem] = {}

    async def get(self, namespace: Namespace, key: str) -> StoreItem | None:
        item = self._data.get((tuple(namespace), key))
        if item is None:
            return None
        return StoreItem(
            value=copy.deepcopy(item.value),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    async def put(self, namespace: Namespace, key: str, value: dict[str, Any]) -> None:
        now = utcnow()
        existing = self._data.get((tuple(namespace), key))
        self._data[(tuple(namespace), key)] = StoreItem(
            value=copy.deepcopy(value),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
