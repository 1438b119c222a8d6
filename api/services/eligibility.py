# SPDX-License-Identifier: Apache-2.0

"""
Ledger-backed eligibility evaluation.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from opentelemetry import trace

from domain.eligibility import CooldownPolicy, EligibilityResult, evaluate_eligibility
from models.base import utc_now
from models.enums import AidCategory
from services.ledger import DistributionLedger, LedgerHead

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class EligibilityEvaluator:
    """Applies the cooldown policy to the latest event of each category."""

    def __init__(self, ledger: DistributionLedger, policy: Optional[CooldownPolicy] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.ledger = ledger
        self.policy = policy or CooldownPolicy.defaults()
        self._clock = clock

    def evaluate_head(self, head: Optional[LedgerHead], category: AidCategory, now: datetime) -> EligibilityResult:
        return evaluate_eligibility(head.event if head else None, category, now, self.policy)

    def check(self, lookup_key: str, category: AidCategory, now: Optional[datetime] = None) -> EligibilityResult:
        """
        Decide whether a household may receive a category now.

        Args:
            lookup_key: Household lookup key
            category: Aid category
            now: Evaluation time (defaults to the clock)
        """
        category = AidCategory.parse(category)
        now = now or self._clock()

        with tracer.start_as_current_span("eligibility.check") as span:
            span.set_attribute("distribution.category", category.value)
            result = self.evaluate_head(self.ledger.latest_entry(lookup_key, category), category, now)
            span.set_attributes({
                "eligibility.eligible": result.eligible,
                "eligibility.cooldown_remaining_seconds": int(result.cooldown_remaining.total_seconds())
            })
            return result

    def summary(self, lookup_key: str, now: Optional[datetime] = None) -> Dict[AidCategory, EligibilityResult]:
        """Eligibility for every category at one instant."""
        now = now or self._clock()
        return {category: self.check(lookup_key, category, now) for category in AidCategory}
