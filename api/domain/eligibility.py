# SPDX-License-Identifier: Apache-2.0

"""
Cooldown policy and the eligibility rule.

Pure functions: given the most recent confirmed distribution of a category
and the current time, decide whether a household may receive that category
again. The ledger lookup lives in services.eligibility.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional

import yaml

from models.base import ensure_utc
from models.entities import DistributionEvent
from models.enums import AidCategory

# Default cooldown per aid category
DEFAULT_COOLDOWNS: Dict[AidCategory, timedelta] = {
    AidCategory.FOOD: timedelta(hours=24),
    AidCategory.MEDICAL: timedelta(hours=1),
    AidCategory.SHELTER: timedelta(days=7),
    AidCategory.CLOTHING: timedelta(days=30),
    AidCategory.WATER: timedelta(hours=12),
    AidCategory.CASH: timedelta(days=30),
}


class CooldownConfigurationError(ValueError):
    """Raised when a cooldown table is incomplete or invalid."""
    pass


@dataclass(frozen=True)
class CooldownPolicy:
    """Per-category cooldown table. Every category must have a period."""
    periods: Mapping[AidCategory, timedelta]

    def __post_init__(self):
        missing = [c.value for c in AidCategory if c not in self.periods]
        if missing:
            raise CooldownConfigurationError(f"Missing cooldown for categories: {', '.join(missing)}")
        for category, period in self.periods.items():
            if not isinstance(category, AidCategory):
                raise CooldownConfigurationError(f"Unknown aid category in cooldown table: {category!r}")
            if period < timedelta(0):
                raise CooldownConfigurationError(f"Cooldown for {category.value} cannot be negative")

    def period_for(self, category: AidCategory) -> timedelta:
        return self.periods[AidCategory.parse(category)]

    def to_dict(self) -> Dict[str, int]:
        return {c.value: int(self.periods[c].total_seconds()) for c in AidCategory}

    @classmethod
    def defaults(cls) -> "CooldownPolicy":
        return cls(periods=dict(DEFAULT_COOLDOWNS))

    @classmethod
    def from_mapping(cls, seconds_by_category: Mapping[str, Any], base: Optional["CooldownPolicy"] = None) -> "CooldownPolicy":
        """
        Build a policy from {category: seconds}, filling gaps from base (or defaults).

        Raises:
            CooldownConfigurationError: On unknown categories or bad values
        """
        periods = dict((base or cls.defaults()).periods)
        for name, seconds in seconds_by_category.items():
            try:
                category = AidCategory.parse(name)
                periods[category] = timedelta(seconds=float(seconds))
            except (TypeError, ValueError) as e:
                raise CooldownConfigurationError(f"Invalid cooldown entry {name}={seconds!r}: {e}")
        return cls(periods=periods)

    @classmethod
    def from_yaml(cls, path: str) -> "CooldownPolicy":
        """Load `cooldowns: {FOOD: 86400, ...}` from a YAML file."""
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
        cooldowns = data.get('cooldowns', data)
        if not isinstance(cooldowns, dict):
            raise CooldownConfigurationError(f"Cooldown file {path} must contain a mapping")
        return cls.from_mapping(cooldowns)

    @classmethod
    def from_env(cls) -> "CooldownPolicy":
        """
        Build the policy from the environment.

        COOLDOWN_CONFIG_PATH points to a YAML file; COOLDOWN_<CATEGORY>_SECONDS
        variables override individual categories on top of it.
        """
        config_path = os.getenv('COOLDOWN_CONFIG_PATH')
        policy = cls.from_yaml(config_path) if config_path else cls.defaults()

        overrides = {}
        for category in AidCategory:
            value = os.getenv(f'COOLDOWN_{category.value}_SECONDS')
            if value is not None:
                overrides[category.value] = value

        return cls.from_mapping(overrides, base=policy) if overrides else policy


@dataclass
class EligibilityResult:
    """Outcome of an eligibility check for one category."""
    eligible: bool
    category: AidCategory
    cooldown_remaining: timedelta
    last_event: Optional[DistributionEvent] = None
    next_eligible_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        last = None
        if self.last_event is not None:
            last = {
                'event_id': self.last_event.event_id,
                'timestamp': self.last_event.timestamp.isoformat(),
                'quantity': self.last_event.quantity,
                'location': self.last_event.location
            }
        return {
            'eligible': self.eligible,
            'category': self.category.value,
            'cooldown_remaining_seconds': int(self.cooldown_remaining.total_seconds()),
            'next_eligible_at': self.next_eligible_at.isoformat() if self.next_eligible_at else None,
            'last_distribution': last
        }


def evaluate_eligibility(
    last_event: Optional[DistributionEvent],
    category: AidCategory,
    now: datetime,
    policy: CooldownPolicy
) -> EligibilityResult:
    """
    Decide eligibility from the most recent distribution of a category.

    Args:
        last_event: Most recent distribution of the category, if any
        category: Aid category being requested
        now: Evaluation time
        policy: Cooldown table

    Returns:
        EligibilityResult; eligible once elapsed >= cooldown
    """
    category = AidCategory.parse(category)

    if last_event is None or not last_event.confirmed:
        return EligibilityResult(eligible=True, category=category, cooldown_remaining=timedelta(0))

    cooldown = policy.period_for(category)
    next_eligible_at = last_event.timestamp + cooldown
    elapsed = ensure_utc(now) - last_event.timestamp

    if elapsed >= cooldown:
        return EligibilityResult(
            eligible=True,
            category=category,
            cooldown_remaining=timedelta(0),
            last_event=last_event,
            next_eligible_at=next_eligible_at
        )

    return EligibilityResult(
        eligible=False,
        category=category,
        cooldown_remaining=cooldown - elapsed,
        last_event=last_event,
        next_eligible_at=next_eligible_at
    )
