# SPDX-License-Identifier: Apache-2.0

"""
Distribution domain logic: input validation and event shaping.
"""

from typing import Any, Dict, List

from domain.households import ValidationResult
from domain.identifiers import classify_reference
from models.entities import MAX_LOCATION_LENGTH, MAX_QUANTITY, MIN_QUANTITY, DistributionEvent
from models.enums import AidCategory

MAX_AGENT_REFERENCE_LENGTH = 200


def validate_reference(reference: Any) -> List[str]:
    """A household reference must be an identifier or a lookup key."""
    if not reference:
        return ["Household identifier or lookup key is required"]
    if classify_reference(reference) is None:
        return ["Invalid identifier or lookup key format"]
    return []


def validate_category(category: Any) -> List[str]:
    try:
        AidCategory.parse(category)
        return []
    except ValueError as e:
        return [str(e)]


def validate_distribution(
    reference: Any,
    category: Any,
    quantity: Any,
    location: Any,
    agent_reference: Any
) -> ValidationResult:
    """
    Validate a distribution request.

    Returns:
        ValidationResult with validation status and errors
    """
    errors = validate_reference(reference) + validate_category(category)

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        errors.append("Quantity must be an integer")
    elif quantity < MIN_QUANTITY or quantity > MAX_QUANTITY:
        errors.append(f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY:,}")

    if not isinstance(location, str) or not location.strip():
        errors.append("Location cannot be empty")
    elif len(location.strip()) > MAX_LOCATION_LENGTH:
        errors.append(f"Location cannot exceed {MAX_LOCATION_LENGTH} characters")

    if not isinstance(agent_reference, str) or not agent_reference.strip():
        errors.append("Issuing agent reference is required")
    elif len(agent_reference.strip()) > MAX_AGENT_REFERENCE_LENGTH:
        errors.append(f"Issuing agent reference cannot exceed {MAX_AGENT_REFERENCE_LENGTH} characters")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors)


def validate_event(event: DistributionEvent) -> List[str]:
    """Re-check an already constructed event before it enters the ledger."""
    errors = []
    if event.quantity < MIN_QUANTITY or event.quantity > MAX_QUANTITY:
        errors.append(f"Quantity must be between {MIN_QUANTITY} and {MAX_QUANTITY:,}")
    if not event.location.strip():
        errors.append("Location cannot be empty")
    if not isinstance(event.category, AidCategory):
        errors.append(f"Unknown aid category: {event.category!r}")
    return errors


def event_view(event: DistributionEvent) -> Dict[str, Any]:
    """Shape a distribution event for callers."""
    return {
        'event_id': event.event_id,
        'lookup_key': event.lookup_key,
        'agent_reference': event.agent_reference,
        'category': event.category.value,
        'quantity': event.quantity,
        'location': event.location,
        'timestamp': event.timestamp.isoformat(),
        'confirmed': event.confirmed
    }
