# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
MongoDB-backed key-value store with connection pooling.

Versioned values live in one collection keyed by _id; conditional writes use
the unique _id index (insert) and version-filtered updates, both of which are
atomic per document. Lists are stored one document per item so long ledgers
never approach the document size limit.
"""

import os
import logging
from typing import Any, Dict, List, Optional

from pymongo import MongoClient, ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    ConnectionFailure,
    ServerSelectionTimeoutError,
    DuplicateKeyError,
    PyMongoError
)
from opentelemetry import trace

from services.kv_store import KeyValueStore, StoreUnavailableError, VersionedValue

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

VALUES_COLLECTION = "kv_values"
LIST_ITEMS_COLLECTION = "kv_list_items"
COUNTERS_COLLECTION = "kv_counters"


class MongoKeyValueStore(KeyValueStore):
    """Key-value store on MongoDB with lazy, pooled connections."""

    backend_name = "mongodb"

    def __init__(self, connection_string: str = None, database_name: str = None,
                 key_prefix: Optional[str] = None, client: Optional[MongoClient] = None):
        """Initialize the MongoDB store with connection pooling."""
        self.connection_string = connection_string or os.getenv(
            'MONGODB_URI',
            'mongodb://localhost:27017/relief_integrity'
        )
        self.database_name = database_name or os.getenv('MONGODB_DATABASE', 'relief_integrity')
        self.key_prefix = key_prefix if key_prefix is not None else os.getenv("STORE_KEY_PREFIX", "relief")
        self._client: Optional[MongoClient] = client
        self._database: Optional[Database] = None
        self._indexes_ready = False

        # Connection pool settings
        self.max_pool_size = int(os.getenv('MONGODB_MAX_POOL_SIZE', '10'))
        self.min_pool_size = int(os.getenv('MONGODB_MIN_POOL_SIZE', '1'))
        self.max_idle_time_ms = int(os.getenv('MONGODB_MAX_IDLE_TIME_MS', '30000'))
        self.server_selection_timeout_ms = int(os.getenv('MONGODB_SERVER_SELECTION_TIMEOUT_MS', '5000'))

        logger.info(f"MongoDB store initialized for database: {self.database_name}")

    @property
    def client(self) -> MongoClient:
        """Get MongoDB client with connection pooling."""
        if self._client is None:
            try:
                self._client = MongoClient(
                    self.connection_string,
                    maxPoolSize=self.max_pool_size,
                    minPoolSize=self.min_pool_size,
                    maxIdleTimeMS=self.max_idle_time_ms,
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                    retryWrites=True,
                    retryReads=True
                )
                # Test connection
                self._client.admin.command('ping')
                logger.info("MongoDB connection established successfully")
            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                logger.error(f"Failed to connect to MongoDB: {e}")
                self._client = None
                raise StoreUnavailableError(f"MongoDB connection failed: {e}") from e

        return self._client

    @property
    def database(self) -> Database:
        if self._database is None:
            self._database = self.client[self.database_name]
        return self._database

    def get_collection(self, collection_name: str) -> Collection:
        if not self._indexes_ready:
            self.create_indexes()
        return self.database[collection_name]

    def create_indexes(self) -> None:
        """Create the list-item index used for ordered reads and counts."""
        try:
            self._indexes_ready = True
            items = self.database[LIST_ITEMS_COLLECTION]
            items.create_index([("key", ASCENDING), ("_id", ASCENDING)])
            logger.info("MongoDB indexes created successfully")
        except PyMongoError as e:
            self._indexes_ready = False
            logger.error(f"Failed to create MongoDB indexes: {e}")
            raise StoreUnavailableError(f"MongoDB index creation failed: {e}") from e

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def _handle_mongo_error(self, operation: str, key: str, error: Exception) -> None:
        logger.error(f"MongoDB {operation} failed for key {key}: {error}")
        raise StoreUnavailableError(f"MongoDB {operation} failed: {error}") from error

    def get(self, key: str) -> Optional[VersionedValue]:
        with tracer.start_as_current_span("mongodb.get") as span:
            span.set_attribute("mongodb.key", key)
            try:
                doc = self.get_collection(VALUES_COLLECTION).find_one({"_id": self._key(key)})
            except PyMongoError as e:
                self._handle_mongo_error("get", key, e)
            if doc is None:
                return None
            return VersionedValue(value=doc["value"], version=int(doc["version"]))

    def set_if_absent(self, key: str, value: str) -> bool:
        with tracer.start_as_current_span("mongodb.set_if_absent") as span:
            span.set_attribute("mongodb.key", key)
            try:
                self.get_collection(VALUES_COLLECTION).insert_one(
                    {"_id": self._key(key), "value": value, "version": 1}
                )
                return True
            except DuplicateKeyError:
                return False
            except PyMongoError as e:
                self._handle_mongo_error("set_if_absent", key, e)

    def compare_and_set(self, key: str, value: str, expected_version: Optional[int]) -> bool:
        if expected_version is None:
            return self.set_if_absent(key, value)

        with tracer.start_as_current_span("mongodb.compare_and_set") as span:
            span.set_attributes({"mongodb.key": key, "mongodb.expected_version": expected_version})
            try:
                result = self.get_collection(VALUES_COLLECTION).update_one(
                    {"_id": self._key(key), "version": expected_version},
                    {"$set": {"value": value}, "$inc": {"version": 1}}
                )
            except PyMongoError as e:
                self._handle_mongo_error("compare_and_set", key, e)
            return result.modified_count == 1

    def delete_if_version(self, key: str, expected_version: int) -> bool:
        try:
            result = self.get_collection(VALUES_COLLECTION).delete_one(
                {"_id": self._key(key), "version": expected_version}
            )
        except PyMongoError as e:
            self._handle_mongo_error("delete_if_version", key, e)
        return result.deleted_count == 1

    def append(self, key: str, value: str) -> int:
        with tracer.start_as_current_span("mongodb.append") as span:
            span.set_attribute("mongodb.key", key)
            try:
                items = self.get_collection(LIST_ITEMS_COLLECTION)
                items.insert_one({"key": self._key(key), "value": value})
                return items.count_documents({"key": self._key(key)})
            except PyMongoError as e:
                self._handle_mongo_error("append", key, e)

    def read_list(self, key: str) -> List[str]:
        try:
            cursor = self.get_collection(LIST_ITEMS_COLLECTION).find(
                {"key": self._key(key)}, {"value": 1}
            ).sort("_id", ASCENDING)
            return [doc["value"] for doc in cursor]
        except PyMongoError as e:
            self._handle_mongo_error("read_list", key, e)

    def list_length(self, key: str) -> int:
        try:
            return self.get_collection(LIST_ITEMS_COLLECTION).count_documents({"key": self._key(key)})
        except PyMongoError as e:
            self._handle_mongo_error("list_length", key, e)

    def increment(self, key: str, amount: int = 1) -> int:
        try:
            doc = self.get_collection(COUNTERS_COLLECTION).find_one_and_update(
                {"_id": self._key(key)},
                {"$inc": {"value": amount}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            self._handle_mongo_error("increment", key, e)
        return int(doc["value"])

    def read_counter(self, key: str) -> int:
        try:
            doc = self.get_collection(COUNTERS_COLLECTION).find_one({"_id": self._key(key)})
        except PyMongoError as e:
            self._handle_mongo_error("read_counter", key, e)
        return int(doc["value"]) if doc else 0

    def health_check(self) -> Dict[str, Any]:
        """Check MongoDB connection health."""
        try:
            result = self.client.admin.command('ping')
            server_info = self.client.server_info()
            return {
                'status': 'healthy',
                'backend': self.backend_name,
                'ping': result.get('ok') == 1,
                'version': server_info.get('version'),
                'database': self.database_name,
                'connection_pool_size': self.max_pool_size
            }
        except (PyMongoError, StoreUnavailableError) as e:
            logger.error(f"MongoDB health check failed: {e}")
            return {
                'status': 'unhealthy',
                'backend': self.backend_name,
                'error': str(e),
                'database': self.database_name
            }

    def close(self) -> None:
        """Close MongoDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            logger.info("MongoDB connection closed")
