# SPDX-License-Identifier: Apache-2.0

"""
Household identifier (URID) derivation and validation.

This module contains pure functions only: identifier derivation, lookup key
hashing and format checks. Nothing here touches storage, so any identifier can
be recomputed for verification without a lookup.
"""

import hashlib
import re
from typing import Optional, Union

IDENTIFIER_LENGTH = 16
LOOKUP_KEY_PREFIX = "0x"
LOOKUP_KEY_LENGTH = 66
MAX_NORMALIZED_LOCATION_LENGTH = 20

REFERENCE_IDENTIFIER = "identifier"
REFERENCE_LOOKUP_KEY = "lookup_key"

_IDENTIFIER_PATTERN = re.compile(r'^[A-F0-9]{16}$')
_LOOKUP_KEY_PATTERN = re.compile(r'^0x[a-f0-9]{64}$')
_LOCATION_STRIP_PATTERN = re.compile(r'[^a-z0-9]')


def normalize_location(location: str) -> str:
    """
    Normalize a location string for consistent identifier derivation.

    "New Delhi", "NEW DELHI" and " new-delhi " all normalize to "newdelhi".

    Args:
        location: Free-form location

    Returns:
        Lower-case alphanumeric location, at most 20 characters
    """
    return _LOCATION_STRIP_PATTERN.sub('', location.lower().strip())[:MAX_NORMALIZED_LOCATION_LENGTH]


def derive_identifier(
    identity_hash: str,
    location: str,
    household_size: int,
    disambiguator: Union[int, str]
) -> str:
    """
    Derive a household identifier.

    Deterministic: the same inputs always yield the same identifier. The
    disambiguator is the only varying input and is supplied by the collision
    resolver.

    Args:
        identity_hash: Verified identity hash
        location: Household location (normalized here)
        household_size: Number of household members
        disambiguator: Varying salt (time seed plus attempt counter)

    Returns:
        16-character uppercase hexadecimal identifier
    """
    material = f"{identity_hash}-{normalize_location(location)}-{household_size}-{disambiguator}"
    digest = hashlib.sha256(material.encode('utf-8')).hexdigest()
    return digest[:IDENTIFIER_LENGTH].upper()


def validate_identifier_format(candidate) -> bool:
    """Check identifier length and character set."""
    return isinstance(candidate, str) and bool(_IDENTIFIER_PATTERN.match(candidate))


def validate_lookup_key_format(candidate) -> bool:
    """Check lookup key prefix, length and character set."""
    return isinstance(candidate, str) and bool(_LOOKUP_KEY_PATTERN.match(candidate))


def lookup_key(identifier: str) -> str:
    """
    Compute the externally shareable lookup key of an identifier.

    Raises:
        ValueError: If the identifier is malformed
    """
    if not validate_identifier_format(identifier):
        raise ValueError(f"Invalid identifier format: {identifier!r}")
    return LOOKUP_KEY_PREFIX + hashlib.sha256(identifier.encode('utf-8')).hexdigest()


def classify_reference(reference) -> Optional[str]:
    """
    Tell whether a household reference is an identifier or a lookup key.

    Returns:
        REFERENCE_IDENTIFIER, REFERENCE_LOOKUP_KEY, or None if neither
    """
    if validate_identifier_format(reference):
        return REFERENCE_IDENTIFIER
    if validate_lookup_key_format(reference):
        return REFERENCE_LOOKUP_KEY
    return None


def to_lookup_key(reference: str) -> Optional[str]:
    """Resolve an identifier or lookup key to a lookup key (None if malformed)."""
    kind = classify_reference(reference)
    if kind == REFERENCE_IDENTIFIER:
        return lookup_key(reference)
    if kind == REFERENCE_LOOKUP_KEY:
        return reference
    return None


def mask_contact(contact: str) -> str:
    """Mask contact information for logs and responses."""
    if len(contact) <= 4:
        return '***'
    return f"{contact[:2]}{'*' * (len(contact) - 4)}{contact[-2:]}"

