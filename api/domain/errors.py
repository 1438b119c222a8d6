# SPDX-License-Identifier: Apache-2.0

"""
Typed business outcomes of the integrity engine.

These are values, not exceptions: duplicates, cooldowns, unknown households and
malformed input are expected outcomes of normal operation and are returned to
the caller inside an OperationResult. Infrastructure failures are the only
thing the engine raises.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, ClassVar, Dict, Generic, List, Optional, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class EngineError:
    """Base class for typed business failures."""
    code: ClassVar[str] = "ENGINE_ERROR"
    retryable: ClassVar[bool] = False

    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


@dataclass(frozen=True)
class ValidationError(EngineError):
    """Malformed input; always caller-fixable."""
    code: ClassVar[str] = "VALIDATION_ERROR"

    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = list(self.errors)
        return data


@dataclass(frozen=True)
class DuplicateError(EngineError):
    """The verified identity is already registered (or being registered)."""
    code: ClassVar[str] = "DUPLICATE_IDENTITY"

    existing_identifier: Optional[str] = None
    existing_lookup_key: Optional[str] = None
    in_progress: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "existing_identifier": self.existing_identifier,
            "existing_lookup_key": self.existing_lookup_key,
            "in_progress": self.in_progress
        })
        return data


@dataclass(frozen=True)
class CollisionExhausted(EngineError):
    """Every identifier candidate within the attempt budget was taken."""
    code: ClassVar[str] = "COLLISION_EXHAUSTED"
    retryable: ClassVar[bool] = True

    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        return data


@dataclass(frozen=True)
class NotEligibleError(EngineError):
    """The category cooldown has not elapsed yet."""
    code: ClassVar[str] = "NOT_ELIGIBLE"

    category: Optional[str] = None
    cooldown_remaining: timedelta = timedelta(0)
    next_eligible_at: Optional[datetime] = None
    last_event: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({
            "category": self.category,
            "cooldown_remaining_seconds": int(self.cooldown_remaining.total_seconds()),
            "next_eligible_at": self.next_eligible_at.isoformat() if self.next_eligible_at else None
        })
        return data


@dataclass(frozen=True)
class NotFoundError(EngineError):
    """Unknown or inactive household reference."""
    code: ClassVar[str] = "NOT_FOUND"

    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reference"] = self.reference
        return data


@dataclass
class OperationResult(Generic[T]):
    """Result of an engine operation: a value on success, a typed error otherwise."""
    success: bool
    value: Optional[T] = None
    error: Optional[EngineError] = None

    @classmethod
    def ok(cls, value: T) -> "OperationResult[T]":
        return cls(success=True, value=value)

    @classmethod
    def fail(cls, error: EngineError) -> "OperationResult[T]":
        return cls(success=False, error=error)
