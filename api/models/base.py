# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Base entity models with common configuration and timestamp helpers.
"""

from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from bson import ObjectId


def generate_object_id() -> str:
    """Generate a new ObjectId as string."""
    return str(ObjectId())


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseEntity(BaseModel):
    """Base entity with the shared pydantic configuration for stored documents."""

    model_config = ConfigDict(
        # Allow population by field name or alias
        populate_by_name=True,
        # Validate assignment
        validate_assignment=True,
    )

    schema_version: int = Field(default=1, description="Schema version for migrations")

    def to_document(self) -> str:
        """Serialize the entity for the key-value store."""
        return self.model_dump_json()

    @classmethod
    def from_document(cls, document: str):
        """Rebuild an entity from its stored JSON form."""
        return cls.model_validate_json(document)
