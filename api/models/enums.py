# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Enumeration types for the relief integrity platform.
"""

from enum import Enum


class AidCategory(str, Enum):
    """Aid categories; each one carries its own cooldown window."""
    FOOD = "FOOD"
    MEDICAL = "MEDICAL"
    SHELTER = "SHELTER"
    CLOTHING = "CLOTHING"
    WATER = "WATER"
    CASH = "CASH"

    @classmethod
    def parse(cls, value) -> "AidCategory":
        """
        Parse a category from user input (case-insensitive).

        Raises:
            ValueError: If the value is not a known category
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid aid category: {value!r}")
        try:
            return cls(value.strip().upper())
        except ValueError:
            allowed = ", ".join(c.value for c in cls)
            raise ValueError(f"Invalid aid category '{value}'. Must be one of: {allowed}")


class ReservationState(str, Enum):
    """Lifecycle of an identity slot in the duplicate index."""
    RESERVED = "reserved"
    COMMITTED = "committed"
