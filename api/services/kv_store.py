# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Key-value store abstraction with atomic conditional writes.

Every component of the integrity engine persists through this interface. The
only concurrency primitives the engine relies on are set_if_absent and
compare_and_set; backends must make each of them atomic per key.
"""

import os
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOCK_STRIPES = 64


class StoreError(Exception):
    """Base class for key-value store failures."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the backing store cannot be reached or refuses an operation."""
    pass


class StoreContentionError(StoreError):
    """Raised when a conditional write keeps losing to concurrent writers."""
    pass


@dataclass(frozen=True)
class VersionedValue:
    """Stored value together with its write version (starts at 1)."""
    value: str
    version: int


class KeyValueStore(ABC):
    """Versioned key-value store plus append-only lists and counters."""

    backend_name = "abstract"

    @abstractmethod
    def get(self, key: str) -> Optional[VersionedValue]:
        """Read a value and its version, None if absent."""

    @abstractmethod
    def set_if_absent(self, key: str, value: str) -> bool:
        """Create the key at version 1. False if it already exists."""

    @abstractmethod
    def compare_and_set(self, key: str, value: str, expected_version: Optional[int]) -> bool:
        """
        Replace the value if the stored version matches.

        expected_version=None means the key must not exist yet. On success the
        version is incremented (or set to 1 on creation).
        """

    @abstractmethod
    def delete_if_version(self, key: str, expected_version: int) -> bool:
        """Delete the key if the stored version matches."""

    @abstractmethod
    def append(self, key: str, value: str) -> int:
        """Append to a list; returns the new list length."""

    @abstractmethod
    def read_list(self, key: str) -> List[str]:
        """Read a whole list in insertion order (empty if absent)."""

    @abstractmethod
    def list_length(self, key: str) -> int:
        pass

    @abstractmethod
    def increment(self, key: str, amount: int = 1) -> int:
        """Atomically add to a counter; returns the new value."""

    @abstractmethod
    def read_counter(self, key: str) -> int:
        pass

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def health_check(self) -> Dict[str, Any]:
        return {'status': 'healthy', 'backend': self.backend_name}

    def close(self) -> None:
        pass


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store for development and tests.

    Keys are guarded by a fixed pool of striped locks, so operations on
    different keys rarely contend while operations on one key are serialized.
    """

    backend_name = "memory"

    def __init__(self, lock_stripes: int = DEFAULT_LOCK_STRIPES):
        if lock_stripes < 1:
            raise ValueError("lock_stripes must be at least 1")
        self._locks = [threading.Lock() for _ in range(lock_stripes)]
        self._values: Dict[str, VersionedValue] = {}
        self._lists: Dict[str, List[str]] = {}
        self._counters: Dict[str, int] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def get(self, key: str) -> Optional[VersionedValue]:
        with self._lock_for(key):
            return self._values.get(key)

    def set_if_absent(self, key: str, value: str) -> bool:
        with self._lock_for(key):
            if key in self._values:
                return False
            self._values[key] = VersionedValue(value=value, version=1)
            return True

    def compare_and_set(self, key: str, value: str, expected_version: Optional[int]) -> bool:
        with self._lock_for(key):
            current = self._values.get(key)
            if expected_version is None:
                if current is not None:
                    return False
                self._values[key] = VersionedValue(value=value, version=1)
                return True
            if current is None or current.version != expected_version:
                return False
            self._values[key] = VersionedValue(value=value, version=current.version + 1)
            return True

    def delete_if_version(self, key: str, expected_version: int) -> bool:
        with self._lock_for(key):
            current = self._values.get(key)
            if current is None or current.version != expected_version:
                return False
            del self._values[key]
            return True

    def append(self, key: str, value: str) -> int:
        with self._lock_for(key):
            items = self._lists.setdefault(key, [])
            items.append(value)
            return len(items)

    def read_list(self, key: str) -> List[str]:
        with self._lock_for(key):
            return list(self._lists.get(key, []))

    def list_length(self, key: str) -> int:
        with self._lock_for(key):
            return len(self._lists.get(key, []))

    def increment(self, key: str, amount: int = 1) -> int:
        with self._lock_for(key):
            self._counters[key] = self._counters.get(key, 0) + amount
            return self._counters[key]

    def read_counter(self, key: str) -> int:
        with self._lock_for(key):
            return self._counters.get(key, 0)

    def health_check(self) -> Dict[str, Any]:
        return {
            'status': 'healthy',
            'backend': self.backend_name,
            'keys': len(self._values),
            'lists': len(self._lists)
        }


def create_store(backend: Optional[str] = None) -> KeyValueStore:
    """
    Create the configured store.

    Args:
        backend: memory, redis or mongodb (defaults to STORE_BACKEND)

    Raises:
        ValueError: On an unknown backend name
    """
    backend = (backend or os.getenv('STORE_BACKEND', 'memory')).strip().lower()

    if backend == 'memory':
        store = InMemoryKeyValueStore()
    elif backend == 'redis':
        from services.redis import RedisKeyValueStore
        store = RedisKeyValueStore()
    elif backend in ('mongodb', 'mongo'):
        from services.mongodb import MongoKeyValueStore
        store = MongoKeyValueStore()
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")

    logger.info(f"Key-value store created: {store.backend_name}")
    return store
