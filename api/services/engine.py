# SPDX-License-Identifier: Apache-2.0

"""
Identity & distribution integrity engine.

Orchestrates the registration workflow (reserve identity, resolve a free
identifier, persist the record, commit the identity mapping) and the
distribution workflow (confirm the household, evaluate eligibility, append
the event). Business failures come back as typed OperationResult errors;
only infrastructure failures are raised, and a registration that fails after
its reservation is rolled back before the exception propagates.
"""

import os
import time
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.distributions import event_view, validate_category, validate_distribution, validate_reference
from domain.eligibility import CooldownPolicy, EligibilityResult
from domain.errors import (
    DuplicateError,
    EngineError,
    NotEligibleError,
    NotFoundError,
    OperationResult,
    ValidationError,
)
from domain.households import (
    build_registration_record,
    public_household_view,
    validate_disclosed_attributes,
    validate_registration,
)
from models.base import ensure_utc, utc_now
from models.entities import DistributionEvent, RegistrationRecord
from models.enums import AidCategory
from services.anchoring import AnchoringService, AnchorResult, create_anchoring_service
from services.collision import DEFAULT_MAX_ATTEMPTS, CollisionResolver
from services.eligibility import EligibilityEvaluator
from services.identity_index import DuplicateIdentityIndex, Reservation
from services.kv_store import KeyValueStore, StoreContentionError, StoreError, create_store
from services.ledger import DistributionLedger
from services.registry import HouseholdRegistry

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MAX_DISTRIBUTION_ROUNDS = 32
MAX_HISTORY_PAGE_SIZE = 100


class OperationTimeoutError(Exception):
    """Raised when a caller-supplied timeout expires mid-operation."""
    pass


@dataclass
class EngineConfig:
    """Tunables of the engine."""
    max_collision_attempts: int = DEFAULT_MAX_ATTEMPTS
    reservation_ttl: timedelta = timedelta(seconds=30)
    reservation_wait: timedelta = timedelta(seconds=5)
    cooldown_policy: CooldownPolicy = field(default_factory=CooldownPolicy.defaults)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            max_collision_attempts=int(os.getenv('URID_MAX_COLLISION_ATTEMPTS', str(DEFAULT_MAX_ATTEMPTS))),
            reservation_ttl=timedelta(seconds=float(os.getenv('RESERVATION_TTL_SECONDS', '30'))),
            reservation_wait=timedelta(seconds=float(os.getenv('RESERVATION_WAIT_SECONDS', '5'))),
            cooldown_policy=CooldownPolicy.from_env()
        )


@dataclass
class RegistrationOutcome:
    """A committed registration."""
    record: RegistrationRecord
    attempts: int
    anchor: Optional[AnchorResult] = None
    qr_code: Optional[bytes] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def identifier(self) -> str:
        return self.record.identifier

    @property
    def lookup_key(self) -> str:
        return self.record.lookup_key

    def to_dict(self) -> Dict[str, Any]:
        return {
            'identifier': self.identifier,
            'lookup_key': self.lookup_key,
            'attempts': self.attempts,
            'household': public_household_view(self.record),
            'anchor': self.anchor.to_dict() if self.anchor else None,
            'warnings': list(self.warnings)
        }


@dataclass
class DistributionOutcome:
    """A recorded distribution."""
    event: DistributionEvent
    anchor: Optional[AnchorResult] = None

    @property
    def event_id(self) -> str:
        return self.event.event_id

    def to_dict(self) -> Dict[str, Any]:
        data = event_view(self.event)
        data['anchor'] = self.anchor.to_dict() if self.anchor else None
        return data


@dataclass
class HistoryPage:
    """One page of a household's distribution history."""
    events: List[DistributionEvent]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.events) < self.total


class IntegrityEngine:
    """The four exposed operations plus their administrative companions."""

    def __init__(
        self,
        store: KeyValueStore,
        config: Optional[EngineConfig] = None,
        anchoring: Optional[AnchoringService] = None,
        qr_encoder: Optional[Callable[[str], bytes]] = None,
        clock: Callable[[], datetime] = utc_now,
        seed_source: Callable[[], int] = time.time_ns,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.store = store
        self.config = config or EngineConfig()
        self.anchoring = anchoring or AnchoringService()
        self.qr_encoder = qr_encoder
        self._clock = clock

        self.registry = HouseholdRegistry(store)
        self.identity_index = DuplicateIdentityIndex(
            store,
            reservation_ttl=self.config.reservation_ttl,
            wait_timeout=self.config.reservation_wait,
            clock=clock,
            sleep=sleep
        )
        self.resolver = CollisionResolver(
            self.registry,
            max_attempts=self.config.max_collision_attempts,
            seed_source=seed_source
        )
        self.ledger = DistributionLedger(store)
        self.evaluator = EligibilityEvaluator(self.ledger, self.config.cooldown_policy, clock=clock)

    @classmethod
    def from_env(cls, store: Optional[KeyValueStore] = None) -> "IntegrityEngine":
        """Build an engine from STORE_BACKEND, engine tunables and anchoring settings."""
        return cls(
            store=store or create_store(),
            config=EngineConfig.from_env(),
            anchoring=create_anchoring_service()
        )

    # Registration

    def register_household(
        self,
        identity_hash: str,
        location: str,
        household_size: int,
        contact: str,
        timeout: Optional[float] = None,
        attributes: Optional[Dict[str, Any]] = None
    ) -> OperationResult[RegistrationOutcome]:
        """
        Register a household for a verified identity.

        Args:
            identity_hash: Verified identity hash from the identity verifier
            location: Household location
            household_size: Number of household members (1..20)
            contact: Contact reference
            timeout: Optional overall deadline in seconds
            attributes: Optional disclosed-attributes bundle from the verifier

        Returns:
            OperationResult with a RegistrationOutcome, or DuplicateError,
            ValidationError or CollisionExhausted

        Raises:
            OperationTimeoutError: If the timeout expired before commit
            StoreError: On store failures (after rollback)
        """
        with tracer.start_as_current_span("engine.register_household") as span:
            validation = validate_registration(identity_hash, location, household_size, contact)
            errors = validation.errors + validate_disclosed_attributes(attributes)
            if errors:
                span.set_attribute("registration.result", "invalid")
                return OperationResult.fail(ValidationError(message="Invalid registration request", errors=errors))

            deadline = time.monotonic() + timeout if timeout is not None else None
            reserved = self.identity_index.reserve(identity_hash, deadline=deadline)

            if not reserved.reserved:
                existing = reserved.existing
                span.set_attributes({
                    "registration.result": "duplicate",
                    "registration.in_progress": reserved.in_progress
                })
                logger.info(
                    "Duplicate registration rejected",
                    extra={"extra_fields": {
                        "in_progress": reserved.in_progress,
                        "lookup_key": existing.lookup_key if existing else None
                    }}
                )
                message = ("Identity registration is already in progress" if reserved.in_progress
                           else "Identity is already registered")
                return OperationResult.fail(DuplicateError(
                    message=message,
                    existing_identifier=existing.identifier if existing else None,
                    existing_lookup_key=existing.lookup_key if existing else None,
                    in_progress=reserved.in_progress
                ))

            record, attempts = self._persist_and_commit(
                reserved.reservation, identity_hash, location, household_size, contact, deadline
            )
            if record is None:
                span.set_attribute("registration.result", "collision_exhausted")
                return OperationResult.fail(self.resolver.exhausted())

            self._confirm(record)
            span.set_attributes({"registration.result": "registered", "registration.attempts": attempts})
            logger.info(
                "Household registered",
                extra={"extra_fields": {
                    "lookup_key": record.lookup_key,
                    "household_size": record.household_size,
                    "attempts": attempts,
                    "warnings": validation.warnings
                }}
            )

            return OperationResult.ok(RegistrationOutcome(
                record=record,
                attempts=attempts,
                anchor=self._anchor_registration(record),
                qr_code=self._encode_qr(record.identifier),
                warnings=validation.warnings
            ))

    def _persist_and_commit(
        self,
        reservation: Reservation,
        identity_hash: str,
        location: str,
        household_size: int,
        contact: str,
        deadline: Optional[float]
    ):
        """Persist a record under a free identifier and commit the identity mapping."""
        record = None
        attempts = 0
        try:
            for identifier, attempts in self.resolver.candidates(identity_hash, location, household_size):
                self._check_deadline(deadline)
                candidate = build_registration_record(
                    identifier, identity_hash, location, household_size, contact, self._clock()
                )
                if self.registry.create(candidate):
                    record = candidate
                    break
                logger.warning("Identifier taken between resolution and persistence", extra={
                    "extra_fields": {"attempt": attempts}
                })

            if record is None:
                self.identity_index.release(reservation)
                return None, attempts

            self._check_deadline(deadline)
            self.identity_index.commit(reservation, record.identifier)
            return record, attempts

        except Exception as e:
            self._rollback(reservation, record, e)
            raise

    def _confirm(self, record: RegistrationRecord) -> None:
        """Bump registry counters for a committed record; the registration stands if this fails."""
        try:
            self.registry.confirm(record)
        except StoreError as e:
            logger.error(
                "Registry counters not updated for committed registration",
                extra={"extra_fields": {"lookup_key": record.lookup_key, "error": str(e)}},
                exc_info=True
            )

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            raise OperationTimeoutError("Registration timed out before commit")

    def _rollback(self, reservation: Reservation, record: Optional[RegistrationRecord], cause: Exception) -> None:
        """Undo an uncommitted registration; the original failure still propagates."""
        logger.warning(
            "Rolling back registration",
            extra={"extra_fields": {"error": str(cause), "error_type": type(cause).__name__}}
        )
        try:
            entry = self.identity_index.lookup(reservation.identity_hash)
            if record is not None and entry is not None and entry.is_committed() \
                    and entry.identifier == record.identifier:
                # The commit landed before the failure was reported
                logger.warning("Registration committed despite error; keeping record")
                self._confirm(record)
                return
            if record is not None:
                self.registry.discard(record)
            self.identity_index.release(reservation)
        except StoreError as rollback_error:
            logger.error(
                "Registration rollback failed",
                extra={"extra_fields": {"error": str(rollback_error)}},
                exc_info=True
            )

    def _anchor_registration(self, record: RegistrationRecord) -> Optional[AnchorResult]:
        if not self.anchoring.enabled:
            return None
        result = self.anchoring.anchor_registration(record)
        if not result.success:
            logger.warning("Registration anchoring failed", extra={
                "extra_fields": {"lookup_key": record.lookup_key, "error": result.error}
            })
        return result

    def _encode_qr(self, identifier: str) -> Optional[bytes]:
        if self.qr_encoder is None:
            return None
        try:
            return self.qr_encoder(identifier)
        except Exception:
            logger.exception("QR encoding failed")
            return None

    # Households

    def _resolve_household(self, reference: str, require_active: bool) -> Union[RegistrationRecord, EngineError]:
        errors = validate_reference(reference)
        if errors:
            return ValidationError(message="Invalid household reference", errors=errors)

        record = self.registry.get(reference)
        if record is None:
            return NotFoundError(message="Household not found", reference=reference)
        if require_active and not record.is_active():
            return NotFoundError(message="Household is not active", reference=reference)
        return record

    def lookup_household(self, reference: str) -> OperationResult[RegistrationRecord]:
        """Fetch a household by identifier or lookup key (inactive ones included)."""
        with tracer.start_as_current_span("engine.lookup_household"):
            resolved = self._resolve_household(reference, require_active=False)
            if isinstance(resolved, EngineError):
                return OperationResult.fail(resolved)
            return OperationResult.ok(resolved)

    def deactivate_household(self, reference: str) -> OperationResult[RegistrationRecord]:
        return self._set_household_active(reference, False)

    def reactivate_household(self, reference: str) -> OperationResult[RegistrationRecord]:
        return self._set_household_active(reference, True)

    def _set_household_active(self, reference: str, active: bool) -> OperationResult[RegistrationRecord]:
        resolved = self._resolve_household(reference, require_active=False)
        if isinstance(resolved, EngineError):
            return OperationResult.fail(resolved)

        changed = self.registry.activate(resolved.identifier) if active else self.registry.deactivate(resolved.identifier)
        if not changed:
            return OperationResult.fail(NotFoundError(message="Household not found", reference=reference))
        return OperationResult.ok(self.registry.get(resolved.identifier))

    # Distributions

    def record_distribution(
        self,
        reference: str,
        category: Union[AidCategory, str],
        quantity: int,
        location: str,
        agent_reference: str,
        now: Optional[datetime] = None
    ) -> OperationResult[DistributionOutcome]:
        """
        Record a distribution if the household is eligible for the category.

        The eligibility check and the append are one compare-and-append on the
        category head: if a concurrent distribution lands first, eligibility
        is evaluated again against it.

        Returns:
            OperationResult with a DistributionOutcome, or NotEligibleError,
            NotFoundError or ValidationError

        Raises:
            StoreContentionError: If the category head never settles
        """
        with tracer.start_as_current_span("engine.record_distribution") as span:
            # Validated and stored values are the same stripped strings
            if isinstance(location, str):
                location = location.strip()
            if isinstance(agent_reference, str):
                agent_reference = agent_reference.strip()

            validation = validate_distribution(reference, category, quantity, location, agent_reference)
            if not validation.is_valid:
                span.set_attribute("distribution.result", "invalid")
                return OperationResult.fail(ValidationError(message="Invalid distribution request", errors=validation.errors))

            category = AidCategory.parse(category)
            span.set_attribute("distribution.category", category.value)

            resolved = self._resolve_household(reference, require_active=True)
            if isinstance(resolved, EngineError):
                span.set_attribute("distribution.result", "not_found")
                return OperationResult.fail(resolved)

            now = ensure_utc(now) if now is not None else self._clock()

            for round_number in range(MAX_DISTRIBUTION_ROUNDS):
                head = self.ledger.latest_entry(resolved.lookup_key, category)
                eligibility = self.evaluator.evaluate_head(head, category, now)
                if not eligibility.eligible:
                    span.set_attribute("distribution.result", "not_eligible")
                    return OperationResult.fail(self._not_eligible(eligibility))

                event = DistributionEvent(
                    lookup_key=resolved.lookup_key,
                    agent_reference=agent_reference,
                    category=category,
                    quantity=quantity,
                    location=location,
                    timestamp=now
                )
                event_id = self.ledger.append_if_head(event, head.version if head else None)
                if event_id is not None:
                    span.set_attributes({"distribution.result": "recorded", "distribution.rounds": round_number + 1})
                    logger.info(
                        "Distribution recorded",
                        extra={"extra_fields": {
                            "event_id": event_id,
                            "lookup_key": resolved.lookup_key,
                            "category": category.value,
                            "quantity": quantity
                        }}
                    )
                    return OperationResult.ok(DistributionOutcome(
                        event=event,
                        anchor=self._anchor_distribution(event)
                    ))

                logger.debug("Category head moved, re-evaluating eligibility")

            span.set_status(Status(StatusCode.ERROR, "distribution contention"))
            raise StoreContentionError(f"Distribution not recorded after {MAX_DISTRIBUTION_ROUNDS} rounds")

    def _not_eligible(self, eligibility: EligibilityResult) -> NotEligibleError:
        return NotEligibleError(
            message=f"Household is not eligible for {eligibility.category.value} yet",
            category=eligibility.category.value,
            cooldown_remaining=eligibility.cooldown_remaining,
            next_eligible_at=eligibility.next_eligible_at,
            last_event=eligibility.last_event
        )

    def _anchor_distribution(self, event: DistributionEvent) -> Optional[AnchorResult]:
        if not self.anchoring.enabled:
            return None
        result = self.anchoring.anchor_distribution(event)
        if not result.success:
            logger.warning("Distribution anchoring failed", extra={
                "extra_fields": {"event_id": event.event_id, "error": result.error}
            })
        return result

    def check_eligibility(
        self,
        reference: str,
        category: Union[AidCategory, str],
        now: Optional[datetime] = None
    ) -> OperationResult[EligibilityResult]:
        """Eligibility of an active household for one category."""
        errors = validate_category(category)
        if errors:
            return OperationResult.fail(ValidationError(message="Invalid aid category", errors=errors))

        resolved = self._resolve_household(reference, require_active=True)
        if isinstance(resolved, EngineError):
            return OperationResult.fail(resolved)

        now = ensure_utc(now) if now is not None else None
        return OperationResult.ok(self.evaluator.check(resolved.lookup_key, AidCategory.parse(category), now))

    def eligibility_summary(
        self,
        reference: str,
        now: Optional[datetime] = None
    ) -> OperationResult[Dict[AidCategory, EligibilityResult]]:
        """Eligibility of an active household for every category."""
        resolved = self._resolve_household(reference, require_active=True)
        if isinstance(resolved, EngineError):
            return OperationResult.fail(resolved)

        now = ensure_utc(now) if now is not None else None
        return OperationResult.ok(self.evaluator.summary(resolved.lookup_key, now))

    def distribution_history(
        self,
        reference: str,
        category: Optional[Union[AidCategory, str]] = None,
        limit: int = 50,
        offset: int = 0
    ) -> OperationResult[HistoryPage]:
        """A page of a household's distributions, most recent first."""
        errors = []
        if category is not None:
            errors.extend(validate_category(category))
        if limit < 1 or limit > MAX_HISTORY_PAGE_SIZE:
            errors.append(f"Limit must be between 1 and {MAX_HISTORY_PAGE_SIZE}")
        if offset < 0:
            errors.append("Offset cannot be negative")
        if errors:
            return OperationResult.fail(ValidationError(message="Invalid history request", errors=errors))

        resolved = self._resolve_household(reference, require_active=False)
        if isinstance(resolved, EngineError):
            return OperationResult.fail(resolved)

        history = self.ledger.history(resolved.lookup_key, AidCategory.parse(category) if category else None)
        return OperationResult.ok(HistoryPage(
            events=history.page(offset, limit),
            total=history.count(),
            limit=limit,
            offset=offset
        ))

    # Statistics and health

    def statistics(self) -> Dict[str, Any]:
        households = self.registry.counts()
        return {
            'households': households['total'],
            'active_households': households['active'],
            'distributions': self.ledger.statistics()
        }

    def agent_statistics(self, agent_reference: str) -> Dict[str, Any]:
        return {
            'agent_reference': agent_reference,
            'distributions': self.ledger.agent_count(agent_reference)
        }

    def health_check(self) -> Dict[str, Any]:
        store_health = self.store.health_check()
        anchoring_healthy = self.anchoring.health_check() if self.anchoring.enabled else None
        status = 'healthy' if store_health.get('status') == 'healthy' else 'unhealthy'
        if status == 'healthy' and anchoring_healthy is False:
            status = 'degraded'
        return {
            'status': status,
            'store': store_health,
            'anchoring': {
                'enabled': self.anchoring.enabled,
                'healthy': anchoring_healthy
            }
        }
