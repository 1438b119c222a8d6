# SPDX-License-Identifier: Apache-2.0

"""
Duplicate identity index.

Maps a verified identity hash to the identifier issued for it. A registration
first reserves the identity slot (atomic create), then commits the issued
identifier into it. At most one reservation per identity can exist, so two
concurrent registrations of the same person cannot both succeed.
"""

import time
import uuid
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from opentelemetry import trace

from domain.identifiers import lookup_key
from models.base import utc_now
from models.entities import IdentityReservation
from models.enums import ReservationState
from services.kv_store import KeyValueStore

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

DEFAULT_RESERVATION_TTL = timedelta(seconds=30)
DEFAULT_WAIT_TIMEOUT = timedelta(seconds=5)
DEFAULT_POLL_INTERVAL = 0.05


class ReservationLostError(Exception):
    """Raised when a reservation no longer belongs to the caller."""
    pass


@dataclass(frozen=True)
class Reservation:
    """Handle proving ownership of an identity slot."""
    identity_hash: str
    token: str


@dataclass
class ReservationOutcome:
    """Result of a reservation attempt."""
    reserved: bool
    reservation: Optional[Reservation] = None
    existing: Optional[IdentityReservation] = None
    in_progress: bool = False


class DuplicateIdentityIndex:
    """Reserve/commit/release protocol over the key-value store."""

    KEY_PREFIX = "identity"

    def __init__(
        self,
        store: KeyValueStore,
        reservation_ttl: timedelta = DEFAULT_RESERVATION_TTL,
        wait_timeout: timedelta = DEFAULT_WAIT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.reservation_ttl = reservation_ttl
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def _key(self, identity_hash: str) -> str:
        # Keys show up in logs and spans; never expose the identity hash itself
        digest = hashlib.sha256(identity_hash.encode('utf-8')).hexdigest()
        return f"{self.KEY_PREFIX}:{digest}"

    def lookup(self, identity_hash: str) -> Optional[IdentityReservation]:
        """Read the index entry for an identity, committed or not."""
        current = self.store.get(self._key(identity_hash))
        if current is None:
            return None
        return IdentityReservation.from_document(current.value)

    def is_registered(self, identity_hash: str) -> bool:
        entry = self.lookup(identity_hash)
        return entry is not None and entry.is_committed()

    def reserve(self, identity_hash: str, deadline: Optional[float] = None) -> ReservationOutcome:
        """
        Claim the identity slot.

        A committed entry means the identity is already registered. A pending
        entry from another writer is polled until it commits, disappears or
        the wait budget runs out. A pending entry older than the reservation
        TTL belongs to a crashed writer and is taken over.

        Args:
            identity_hash: Verified identity hash
            deadline: Optional time.monotonic() bound on waiting

        Returns:
            ReservationOutcome carrying a Reservation when the slot was claimed
        """
        key = self._key(identity_hash)
        token = uuid.uuid4().hex
        wait_until = time.monotonic() + self.wait_timeout.total_seconds()
        if deadline is not None:
            wait_until = min(wait_until, deadline)

        with tracer.start_as_current_span("identity_index.reserve") as span:
            polls = 0
            while True:
                entry = IdentityReservation(identity_hash=identity_hash, token=token, reserved_at=self._clock())
                if self.store.set_if_absent(key, entry.to_document()):
                    span.set_attributes({"identity_index.result": "reserved", "identity_index.polls": polls})
                    return ReservationOutcome(reserved=True, reservation=Reservation(identity_hash, token))

                current = self.store.get(key)
                if current is None:
                    # Released between our create and read
                    continue

                existing = IdentityReservation.from_document(current.value)
                if existing.is_committed():
                    span.set_attributes({"identity_index.result": "duplicate", "identity_index.polls": polls})
                    return ReservationOutcome(reserved=False, existing=existing)

                if existing.is_stale(self._clock(), self.reservation_ttl):
                    if self.store.compare_and_set(key, entry.to_document(), current.version):
                        logger.warning(
                            "Took over stale identity reservation",
                            extra={"extra_fields": {"reserved_at": existing.reserved_at.isoformat()}}
                        )
                        span.set_attribute("identity_index.result", "takeover")
                        return ReservationOutcome(reserved=True, reservation=Reservation(identity_hash, token))
                    continue

                if time.monotonic() >= wait_until:
                    span.set_attributes({"identity_index.result": "in_progress", "identity_index.polls": polls})
                    return ReservationOutcome(reserved=False, existing=existing, in_progress=True)

                polls += 1
                self._sleep(self.poll_interval)

    def commit(self, reservation: Reservation, identifier: str) -> IdentityReservation:
        """
        Bind the issued identifier to a reservation held by the caller.

        Raises:
            ReservationLostError: If the reservation was released, taken over
                or already committed
        """
        key = self._key(reservation.identity_hash)
        current = self.store.get(key)
        if current is None:
            raise ReservationLostError("Reservation no longer exists")

        existing = IdentityReservation.from_document(current.value)
        if existing.token != reservation.token or existing.is_committed():
            raise ReservationLostError("Reservation is held by another registration")

        committed = existing.model_copy(update={
            "state": ReservationState.COMMITTED,
            "identifier": identifier,
            "lookup_key": lookup_key(identifier),
            "committed_at": self._clock()
        })
        if not self.store.compare_and_set(key, committed.to_document(), current.version):
            raise ReservationLostError("Reservation changed while committing")
        return committed

    def release(self, reservation: Reservation) -> bool:
        """Drop an uncommitted reservation held by the caller."""
        key = self._key(reservation.identity_hash)
        current = self.store.get(key)
        if current is None:
            return False

        existing = IdentityReservation.from_document(current.value)
        if existing.token != reservation.token or existing.is_committed():
            return False
        return self.store.delete_if_version(key, current.version)
