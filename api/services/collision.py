# SPDX-License-Identifier: Apache-2.0

"""
Bounded identifier collision resolution.

Identifier collisions are astronomically unlikely but must be handled
deterministically: a derived identifier that already exists is never reused,
and the search stops after a fixed attempt budget.
"""

import time
import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Tuple, Union

from opentelemetry import trace

from domain.errors import CollisionExhausted
from domain.identifiers import derive_identifier, lookup_key, validate_identifier_format

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 16
DEFAULT_MAX_ATTEMPTS = 8


@dataclass(frozen=True)
class Resolution:
    """A free identifier and the number of derivations it took."""
    identifier: str
    attempts: int


class CollisionResolver:
    """Derives identifiers until one is free in the household registry."""

    def __init__(self, registry, max_attempts: int = DEFAULT_MAX_ATTEMPTS,
                 seed_source: Callable[[], int] = time.time_ns):
        """
        Args:
            registry: Anything with exists(identifier) -> bool
            max_attempts: Attempt budget (1..16)
            seed_source: Source of the time-based disambiguation seed
        """
        if not MIN_ATTEMPTS <= max_attempts <= MAX_ATTEMPTS:
            raise ValueError(f"max_attempts must be between {MIN_ATTEMPTS} and {MAX_ATTEMPTS}")
        self.registry = registry
        self.max_attempts = max_attempts
        self._seed_source = seed_source

    def candidates(self, identity_hash: str, location: str, household_size: int) -> Iterator[Tuple[str, int]]:
        """
        Lazily yield (identifier, attempt) pairs not present in the registry.

        All candidates share one attempt budget, so a caller that loses a race
        when persisting a candidate spends budget rather than looping.
        """
        seed = self._seed_source()
        for attempt in range(self.max_attempts):
            candidate = derive_identifier(identity_hash, location, household_size, seed + attempt)

            if not validate_identifier_format(candidate):
                logger.error(f"Derived identifier failed format validation on attempt {attempt + 1}")
                continue

            if self.registry.exists(candidate):
                logger.warning(
                    "Identifier collision detected",
                    extra={"extra_fields": {
                        "attempt": attempt + 1,
                        "lookup_key_prefix": lookup_key(candidate)[:10]
                    }}
                )
                continue

            yield candidate, attempt + 1

    def resolve(self, identity_hash: str, location: str, household_size: int) -> Union[Resolution, CollisionExhausted]:
        """Return the first free identifier, or CollisionExhausted."""
        with tracer.start_as_current_span("collision.resolve") as span:
            span.set_attribute("collision.max_attempts", self.max_attempts)
            for identifier, attempts in self.candidates(identity_hash, location, household_size):
                span.set_attribute("collision.attempts", attempts)
                return Resolution(identifier=identifier, attempts=attempts)

            span.set_attribute("collision.exhausted", True)
            return self.exhausted()

    def exhausted(self) -> CollisionExhausted:
        logger.error(f"Identifier collision budget exhausted after {self.max_attempts} attempts")
        return CollisionExhausted(
            message=f"Could not derive a unique identifier after {self.max_attempts} attempts",
            attempts=self.max_attempts
        )
