# SPDX-License-Identifier: Apache-2.0

"""
Household registration record store.

Source of truth for "does this identifier exist and is it active". Records
are keyed by identifier, with a lookup-key alias so either reference resolves
to the same record. Records are never deleted once their registration has
committed; the only mutation is the active flag.
"""

import logging
from typing import Dict, Optional

from opentelemetry import trace

from domain.identifiers import REFERENCE_IDENTIFIER, REFERENCE_LOOKUP_KEY, classify_reference
from models.base import utc_now
from models.entities import RegistrationRecord
from services.kv_store import KeyValueStore, StoreContentionError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MAX_UPDATE_ROUNDS = 16


class HouseholdRegistry:
    """Registration records over the key-value store."""

    RECORD_PREFIX = "household"
    ALIAS_PREFIX = "household-key"
    TOTAL_COUNTER = "stats:households:total"
    ACTIVE_COUNTER = "stats:households:active"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _record_key(self, identifier: str) -> str:
        return f"{self.RECORD_PREFIX}:{identifier}"

    def _alias_key(self, lookup_key: str) -> str:
        return f"{self.ALIAS_PREFIX}:{lookup_key}"

    def create(self, record: RegistrationRecord) -> bool:
        """
        Persist a new record.

        The existence check and the write are one atomic step, so a race
        between collision resolution and persistence can never overwrite an
        existing household.

        Returns:
            False if the identifier already exists
        """
        with tracer.start_as_current_span("registry.create") as span:
            span.set_attribute("household.lookup_key", record.lookup_key)
            if not self.store.set_if_absent(self._record_key(record.identifier), record.to_document()):
                span.set_attribute("registry.result", "exists")
                return False

            if not self.store.set_if_absent(self._alias_key(record.lookup_key), record.identifier):
                logger.error(
                    "Lookup key alias already present for a new identifier",
                    extra={"extra_fields": {"lookup_key": record.lookup_key}}
                )
            span.set_attribute("registry.result", "created")
            return True

    def confirm(self, record: RegistrationRecord) -> None:
        """Count a record whose registration has fully committed."""
        self.store.increment(self.TOTAL_COUNTER)
        if record.active:
            self.store.increment(self.ACTIVE_COUNTER)

    def discard(self, record: RegistrationRecord) -> bool:
        """Remove a record whose registration never committed (rollback only)."""
        removed = False
        current = self.store.get(self._record_key(record.identifier))
        if current is not None and RegistrationRecord.from_document(current.value).identity_hash == record.identity_hash:
            removed = self.store.delete_if_version(self._record_key(record.identifier), current.version)

        alias = self.store.get(self._alias_key(record.lookup_key))
        if alias is not None and alias.value == record.identifier and removed:
            self.store.delete_if_version(self._alias_key(record.lookup_key), alias.version)
        return removed

    def exists(self, identifier: str) -> bool:
        return self.store.exists(self._record_key(identifier))

    def resolve_identifier(self, reference: str) -> Optional[str]:
        """Map an identifier or lookup key to an identifier."""
        kind = classify_reference(reference)
        if kind == REFERENCE_IDENTIFIER:
            return reference
        if kind == REFERENCE_LOOKUP_KEY:
            alias = self.store.get(self._alias_key(reference))
            return alias.value if alias is not None else None
        return None

    def get(self, reference: str) -> Optional[RegistrationRecord]:
        """
        Fetch a record by identifier or lookup key.

        Returns:
            The record, or None if the reference is unknown or malformed
        """
        identifier = self.resolve_identifier(reference)
        if identifier is None:
            return None
        current = self.store.get(self._record_key(identifier))
        if current is None:
            return None
        return RegistrationRecord.from_document(current.value)

    def deactivate(self, identifier: str) -> bool:
        """Mark a household inactive. False if the identifier is unknown."""
        return self._set_active(identifier, False)

    def activate(self, identifier: str) -> bool:
        """Mark a household active again. False if the identifier is unknown."""
        return self._set_active(identifier, True)

    def _set_active(self, identifier: str, active: bool) -> bool:
        key = self._record_key(identifier)
        for _ in range(MAX_UPDATE_ROUNDS):
            current = self.store.get(key)
            if current is None:
                return False

            record = RegistrationRecord.from_document(current.value)
            if record.active == active:
                return True

            updated = record.with_active(active, utc_now())
            if self.store.compare_and_set(key, updated.to_document(), current.version):
                self.store.increment(self.ACTIVE_COUNTER, 1 if active else -1)
                logger.info(
                    f"Household {'activated' if active else 'deactivated'}",
                    extra={"extra_fields": {"lookup_key": record.lookup_key}}
                )
                return True

        raise StoreContentionError(f"Could not update household after {MAX_UPDATE_ROUNDS} attempts")

    def counts(self) -> Dict[str, int]:
        return {
            'total': self.store.read_counter(self.TOTAL_COUNTER),
            'active': self.store.read_counter(self.ACTIVE_COUNTER)
        }
