# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Services package - Storage backends, engine components and external integrations.
"""

from .kv_store import (
    KeyValueStore,
    InMemoryKeyValueStore,
    StoreError,
    StoreUnavailableError,
    StoreContentionError,
    VersionedValue,
    create_store
)
from .engine import IntegrityEngine, EngineConfig, OperationTimeoutError

__all__ = [
    "KeyValueStore",
    "InMemoryKeyValueStore",
    "StoreError",
    "StoreUnavailableError",
    "StoreContentionError",
    "VersionedValue",
    "create_store",
    "IntegrityEngine",
    "EngineConfig",
    "OperationTimeoutError"
]
