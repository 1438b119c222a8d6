# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Core entity models for the relief integrity platform.
"""

from datetime import datetime, timedelta
from typing import Optional
from pydantic import Field, field_validator, model_validator
from .base import BaseEntity, generate_object_id, utc_now, ensure_utc
from .enums import AidCategory, ReservationState
from domain.identifiers import (
    lookup_key as derive_lookup_key,
    validate_identifier_format,
    validate_lookup_key_format,
)

# Registration and distribution limits
MIN_HOUSEHOLD_SIZE = 1
MAX_HOUSEHOLD_SIZE = 20
MIN_QUANTITY = 1
MAX_QUANTITY = 1_000_000
MAX_LOCATION_LENGTH = 200


class RegistrationRecord(BaseEntity):
    """Registered household, keyed by its URID."""

    identifier: str = Field(..., description="16-character household identifier (URID)")
    lookup_key: str = Field(..., description="One-way hash of the identifier")
    identity_hash: str = Field(..., description="Verified identity hash supplied by the verifier")
    household_size: int = Field(..., ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE, description="Household members")
    location: str = Field(..., min_length=1, description="Normalized location")
    contact_reference: str = Field(..., min_length=1, description="Contact reference for the household")
    registered_at: datetime = Field(default_factory=utc_now, description="Registration timestamp")
    active: bool = Field(default=True, description="Whether the household may receive aid")
    deactivated_at: Optional[datetime] = Field(None, description="Last deactivation timestamp")

    @field_validator('identifier')
    @classmethod
    def validate_identifier(cls, v):
        """Validate identifier format."""
        if not validate_identifier_format(v):
            raise ValueError('Identifier must be 16 uppercase hexadecimal characters')
        return v

    @field_validator('registered_at', 'deactivated_at')
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v) if v is not None else v

    @model_validator(mode='after')
    def validate_lookup_key(self):
        """The lookup key must be derived from the identifier."""
        if self.lookup_key != derive_lookup_key(self.identifier):
            raise ValueError('Lookup key does not match identifier')
        return self

    def is_active(self) -> bool:
        """Check if the household can receive aid."""
        return self.active

    def with_active(self, active: bool, at: Optional[datetime] = None) -> "RegistrationRecord":
        """Return a copy with the active flag toggled."""
        updates = {"active": active}
        if not active:
            updates["deactivated_at"] = at or utc_now()
        return self.model_copy(update=updates)


class DistributionEvent(BaseEntity):
    """A single aid hand-out recorded against a household lookup key."""

    event_id: str = Field(default_factory=generate_object_id, description="Event identifier")
    lookup_key: str = Field(..., description="Household lookup key")
    agent_reference: str = Field(..., min_length=1, max_length=200, description="Issuing agent reference")
    category: AidCategory = Field(..., description="Aid category")
    quantity: int = Field(..., ge=MIN_QUANTITY, le=MAX_QUANTITY, description="Units distributed")
    location: str = Field(..., min_length=1, max_length=MAX_LOCATION_LENGTH, description="Distribution location")
    timestamp: datetime = Field(default_factory=utc_now, description="Distribution time")
    confirmed: bool = Field(default=True, description="Whether the event counts toward cooldowns")

    @field_validator('lookup_key')
    @classmethod
    def validate_lookup_key(cls, v):
        """Validate lookup key format."""
        if not validate_lookup_key_format(v):
            raise ValueError('Lookup key must be 0x followed by 64 lowercase hex characters')
        return v

    @field_validator('category', mode='before')
    @classmethod
    def parse_category(cls, v):
        return AidCategory.parse(v)

    @field_validator('location', 'agent_reference')
    @classmethod
    def validate_not_blank(cls, v):
        if not v.strip():
            raise ValueError('Value cannot be empty')
        return v.strip()

    @field_validator('timestamp')
    @classmethod
    def normalize_timestamp(cls, v):
        return ensure_utc(v)


class IdentityReservation(BaseEntity):
    """Entry of the duplicate identity index."""

    identity_hash: str = Field(..., description="Verified identity hash")
    state: ReservationState = Field(default=ReservationState.RESERVED, description="Reservation state")
    token: str = Field(..., description="Token proving ownership of the reservation")
    reserved_at: datetime = Field(default_factory=utc_now, description="Reservation timestamp")
    identifier: Optional[str] = Field(None, description="Issued identifier once committed")
    lookup_key: Optional[str] = Field(None, description="Issued lookup key once committed")
    committed_at: Optional[datetime] = Field(None, description="Commit timestamp")

    @field_validator('reserved_at', 'committed_at')
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v) if v is not None else v

    @model_validator(mode='after')
    def validate_committed_fields(self):
        """A committed entry must name the issued identifier."""
        if self.state == ReservationState.COMMITTED and not self.identifier:
            raise ValueError('Committed reservation requires an identifier')
        return self

    def is_committed(self) -> bool:
        return self.state == ReservationState.COMMITTED

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        """A pending reservation older than the TTL belongs to a crashed writer."""
        if self.is_committed():
            return False
        return ensure_utc(now) - self.reserved_at >= ttl
