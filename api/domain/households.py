# SPDX-License-Identifier: Apache-2.0

"""
Household registration domain logic.

Pure validation and record construction for the registration workflow.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from domain.identifiers import lookup_key, mask_contact, normalize_location
from models.entities import MAX_HOUSEHOLD_SIZE, MIN_HOUSEHOLD_SIZE, RegistrationRecord

_IDENTITY_HASH_PATTERN = re.compile(r'^[A-Za-z0-9_:.\-]{8,256}$')
MAX_CONTACT_LENGTH = 100


@dataclass
class ValidationResult:
    """Result of input validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str] = field(default_factory=list)


def validate_identity_hash(identity_hash: Any) -> List[str]:
    """Validate the verifier-supplied identity hash."""
    if not isinstance(identity_hash, str) or not identity_hash.strip():
        return ["Verified identity hash is required"]
    if not _IDENTITY_HASH_PATTERN.match(identity_hash):
        return ["Verified identity hash has an invalid format"]
    return []


def validate_registration(
    identity_hash: Any,
    location: Any,
    household_size: Any,
    contact: Any
) -> ValidationResult:
    """
    Validate a household registration request.

    Args:
        identity_hash: Verified identity hash
        location: Household location
        household_size: Number of household members
        contact: Contact reference

    Returns:
        ValidationResult with validation status and errors
    """
    errors = validate_identity_hash(identity_hash)
    warnings = []

    if not isinstance(location, str) or not location.strip():
        errors.append("Location is required")
    elif not normalize_location(location):
        errors.append("Location must contain at least one letter or digit")

    if isinstance(household_size, bool) or not isinstance(household_size, int):
        errors.append("Household size must be an integer")
    elif household_size < MIN_HOUSEHOLD_SIZE or household_size > MAX_HOUSEHOLD_SIZE:
        errors.append(f"Household size must be between {MIN_HOUSEHOLD_SIZE} and {MAX_HOUSEHOLD_SIZE}")

    if not isinstance(contact, str) or not contact.strip():
        errors.append("Contact reference is required")
    elif len(contact.strip()) > MAX_CONTACT_LENGTH:
        errors.append(f"Contact reference cannot exceed {MAX_CONTACT_LENGTH} characters")

    if isinstance(location, str) and len(normalize_location(location)) < len(re.sub(r'[^a-z0-9]', '', location.lower())):
        warnings.append("Location was truncated for identifier derivation")

    return ValidationResult(is_valid=len(errors) == 0, errors=errors, warnings=warnings)


def validate_disclosed_attributes(attributes: Optional[Dict[str, Any]]) -> List[str]:
    """
    Check the verifier's disclosed-attributes bundle.

    The head of household must be an adult; nationality must be disclosed.
    """
    if attributes is None:
        return []
    errors = []
    if not attributes.get('nationality'):
        errors.append("Disclosed attributes must include nationality")
    if attributes.get('minimum_age') is not True:
        errors.append("Head of household must meet the minimum age requirement")
    return errors


def build_registration_record(
    identifier: str,
    identity_hash: str,
    location: str,
    household_size: int,
    contact: str,
    registered_at: datetime
) -> RegistrationRecord:
    """Build the record persisted for a newly issued identifier."""
    return RegistrationRecord(
        identifier=identifier,
        lookup_key=lookup_key(identifier),
        identity_hash=identity_hash,
        household_size=household_size,
        location=normalize_location(location),
        contact_reference=contact.strip(),
        registered_at=registered_at
    )


def public_household_view(record: RegistrationRecord) -> Dict[str, Any]:
    """
    Shape a record for callers and dashboards.

    The identity hash is never exposed and the contact is masked.
    """
    return {
        'identifier': record.identifier,
        'lookup_key': record.lookup_key,
        'household_size': record.household_size,
        'location': record.location,
        'contact': mask_contact(record.contact_reference),
        'registered_at': record.registered_at.isoformat(),
        'active': record.active,
        'deactivated_at': record.deactivated_at.isoformat() if record.deactivated_at else None
    }
