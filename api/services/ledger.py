# SPDX-License-Identifier: Apache-2.0

"""
Append-only distribution ledger.

Each household has one event list (full history) and one versioned head per
aid category holding the most recent confirmed event. The head makes the
"most recent per category" query O(1) and is the compare-and-append point
that serializes check-then-append for a {household, category} pair.
"""

import logging
from dataclasses import dataclass
from itertools import islice
from typing import Dict, Iterator, List, Optional

from opentelemetry import trace

from domain.distributions import validate_event
from models.entities import DistributionEvent
from models.enums import AidCategory
from services.kv_store import KeyValueStore, StoreContentionError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MAX_HEAD_ROUNDS = 32


class LedgerValidationError(ValueError):
    """Raised when a malformed event is offered to the ledger."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


@dataclass(frozen=True)
class LedgerHead:
    """Most recent confirmed event of a category and the head's version."""
    event: DistributionEvent
    version: int


class DistributionHistory:
    """
    Lazy, restartable view of a household's events, most recent first.

    Nothing is read until iteration starts; every new iteration re-reads the
    ledger, so the view always reflects the current history.
    """

    def __init__(self, store: KeyValueStore, key: str, category: Optional[AidCategory] = None):
        self._store = store
        self._key = key
        self._category = category

    def __iter__(self) -> Iterator[DistributionEvent]:
        events = [DistributionEvent.from_document(doc) for doc in self._store.read_list(self._key)]
        # Ties on timestamp fall back to insertion order, newest first
        ordered = sorted(enumerate(events), key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        for _, event in ordered:
            if self._category is None or event.category == self._category:
                yield event

    def page(self, offset: int = 0, limit: int = 50) -> List[DistributionEvent]:
        return list(islice(self, offset, offset + limit))

    def first(self) -> Optional[DistributionEvent]:
        return next(iter(self), None)

    def count(self) -> int:
        if self._category is None:
            return self._store.list_length(self._key)
        return sum(1 for _ in self)


class DistributionLedger:
    """Distribution events over the key-value store."""

    EVENTS_PREFIX = "ledger:events"
    HEAD_PREFIX = "ledger:latest"
    TOTAL_COUNTER = "stats:distributions:total"
    CATEGORY_COUNTER_PREFIX = "stats:distributions"
    AGENT_COUNTER_PREFIX = "stats:agents"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def _events_key(self, lookup_key: str) -> str:
        return f"{self.EVENTS_PREFIX}:{lookup_key}"

    def _head_key(self, lookup_key: str, category: AidCategory) -> str:
        return f"{self.HEAD_PREFIX}:{lookup_key}:{category.value}"

    def _validate(self, event: DistributionEvent) -> None:
        errors = validate_event(event)
        if errors:
            raise LedgerValidationError(errors)

    def _write_event(self, event: DistributionEvent) -> str:
        self.store.append(self._events_key(event.lookup_key), event.to_document())
        self.store.increment(self.TOTAL_COUNTER)
        self.store.increment(f"{self.CATEGORY_COUNTER_PREFIX}:{event.category.value}")
        self.store.increment(f"{self.AGENT_COUNTER_PREFIX}:{event.agent_reference}")
        return event.event_id

    def latest_entry(self, lookup_key: str, category: AidCategory) -> Optional[LedgerHead]:
        """Most recent confirmed event of a category, with the head version."""
        category = AidCategory.parse(category)
        current = self.store.get(self._head_key(lookup_key, category))
        if current is None:
            return None
        return LedgerHead(event=DistributionEvent.from_document(current.value), version=current.version)

    def latest(self, lookup_key: str, category: AidCategory) -> Optional[DistributionEvent]:
        entry = self.latest_entry(lookup_key, category)
        return entry.event if entry is not None else None

    def latest_per_category(self, lookup_key: str) -> Dict[AidCategory, DistributionEvent]:
        latest = {}
        for category in AidCategory:
            event = self.latest(lookup_key, category)
            if event is not None:
                latest[category] = event
        return latest

    def append(self, event: DistributionEvent) -> str:
        """
        Append an event unconditionally.

        Eligibility is the caller's business; this only rejects malformed
        events. A confirmed event becomes the category head unless the head
        already holds a later one. Unconfirmed events go to history only.

        Raises:
            LedgerValidationError: If the event is malformed
        """
        self._validate(event)

        with tracer.start_as_current_span("ledger.append") as span:
            span.set_attributes({
                "distribution.category": event.category.value,
                "distribution.confirmed": event.confirmed
            })
            if event.confirmed:
                self._advance_head(event)
            return self._write_event(event)

    def _advance_head(self, event: DistributionEvent) -> None:
        key = self._head_key(event.lookup_key, event.category)
        for _ in range(MAX_HEAD_ROUNDS):
            current = self.store.get(key)
            expected = None
            if current is not None:
                head = DistributionEvent.from_document(current.value)
                if head.timestamp > event.timestamp:
                    return
                expected = current.version
            if self.store.compare_and_set(key, event.to_document(), expected):
                return
        raise StoreContentionError(f"Ledger head kept changing after {MAX_HEAD_ROUNDS} attempts")

    def append_if_head(self, event: DistributionEvent, expected_version: Optional[int]) -> Optional[str]:
        """
        Compare-and-append: append only if the category head is unchanged.

        The head is swapped first and the event is then added to history, so
        two writers that both saw the same head cannot both append.

        Args:
            event: Confirmed event to append
            expected_version: Head version the caller evaluated (None if no head)

        Returns:
            The event id, or None if another writer moved the head first

        Raises:
            LedgerValidationError: If the event is malformed or unconfirmed
        """
        self._validate(event)
        if not event.confirmed:
            raise LedgerValidationError(["Only confirmed events can advance the category head"])

        with tracer.start_as_current_span("ledger.append_if_head") as span:
            span.set_attribute("distribution.category", event.category.value)
            key = self._head_key(event.lookup_key, event.category)
            if not self.store.compare_and_set(key, event.to_document(), expected_version):
                span.set_attribute("ledger.result", "conflict")
                return None
            span.set_attribute("ledger.result", "appended")
            return self._write_event(event)

    def history(self, lookup_key: str, category: Optional[AidCategory] = None) -> DistributionHistory:
        """Events of a household, most recent first, optionally one category."""
        if category is not None:
            category = AidCategory.parse(category)
        return DistributionHistory(self.store, self._events_key(lookup_key), category)

    def statistics(self) -> Dict[str, object]:
        return {
            'total': self.store.read_counter(self.TOTAL_COUNTER),
            'by_category': {
                c.value: self.store.read_counter(f"{self.CATEGORY_COUNTER_PREFIX}:{c.value}")
                for c in AidCategory
            }
        }

    def agent_count(self, agent_reference: str) -> int:
        return self.store.read_counter(f"{self.AGENT_COUNTER_PREFIX}:{agent_reference}")
