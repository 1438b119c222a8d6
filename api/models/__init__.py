# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Models package - Pydantic schemas and data models for the relief integrity API.
"""

# Base models
from .base import BaseEntity

# Enumerations
from .enums import AidCategory, ReservationState

# Core entities
from .entities import RegistrationRecord, DistributionEvent, IdentityReservation

# Request models
from .requests import (
    CredentialSubject,
    IdentityProof,
    HouseholdDetails,
    RegisterHouseholdRequest,
    RecordDistributionRequest,
    HistoryQuery,
    EligibilityQuery
)

# Response models
from .responses import (
    HalLink,
    HalResponse,
    AnchorResponse,
    HouseholdResponse,
    RegistrationResponse,
    DistributionResponse,
    EligibilityResponse,
    StatisticsResponse,
    HealthCheckResponse,
    ErrorResponse,
    ValidationErrorResponse
)

__all__ = [
    # Base models
    "BaseEntity",

    # Enumerations
    "AidCategory",
    "ReservationState",

    # Core entities
    "RegistrationRecord",
    "DistributionEvent",
    "IdentityReservation",

    # Request models
    "CredentialSubject",
    "IdentityProof",
    "HouseholdDetails",
    "RegisterHouseholdRequest",
    "RecordDistributionRequest",
    "HistoryQuery",
    "EligibilityQuery",

    # Response models
    "HalLink",
    "HalResponse",
    "AnchorResponse",
    "HouseholdResponse",
    "RegistrationResponse",
    "DistributionResponse",
    "EligibilityResponse",
    "StatisticsResponse",
    "HealthCheckResponse",
    "ErrorResponse",
    "ValidationErrorResponse"
]
