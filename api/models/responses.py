# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Response models for API endpoints with HAL support.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime


class HalLink(BaseModel):
    """HAL link representation."""

    href: str = Field(..., description="Link URL")
    method: Optional[str] = Field(None, description="HTTP method")
    type: Optional[str] = Field(None, description="Content type")
    title: Optional[str] = Field(None, description="Link title")
    templated: Optional[bool] = Field(None, description="Whether URL is templated")


class HalResponse(BaseModel):
    """Base HAL response with links."""

    model_config = ConfigDict(populate_by_name=True)

    links: Dict[str, HalLink] = Field(default_factory=dict, alias="_links", description="HAL links")


class AnchorResponse(BaseModel):
    """Anchoring outcome of an engine commit."""

    anchored: bool = Field(..., description="Whether the event reached the anchoring service")
    reference: Optional[str] = Field(None, description="External anchor reference")
    error: Optional[str] = Field(None, description="Anchoring error, if any")


class HouseholdResponse(HalResponse):
    """Household record (identity hash omitted, contact masked)."""

    identifier: str = Field(..., description="Household identifier (URID)")
    lookup_key: str = Field(..., description="Shareable lookup key")
    household_size: int = Field(..., description="Household members")
    location: str = Field(..., description="Normalized location")
    contact: str = Field(..., description="Masked contact reference")
    registered_at: datetime = Field(..., description="Registration timestamp")
    active: bool = Field(..., description="Whether the household may receive aid")
    deactivated_at: Optional[datetime] = Field(None, description="Last deactivation timestamp")


class RegistrationResponse(HalResponse):
    """Result of a successful registration."""

    identifier: str = Field(..., description="Issued household identifier")
    lookup_key: str = Field(..., description="Issued lookup key")
    attempts: int = Field(..., description="Identifier derivations needed")
    household: HouseholdResponse
    anchor: Optional[AnchorResponse] = None
    qr_code: Optional[str] = Field(None, description="Base64 QR image of the identifier")
    warnings: List[str] = Field(default_factory=list, description="Non-fatal adjustments made to the input")


class DistributionResponse(HalResponse):
    """A recorded distribution event."""

    event_id: str = Field(..., description="Event identifier")
    lookup_key: str = Field(..., description="Household lookup key")
    agent_reference: str = Field(..., description="Issuing agent reference")
    category: str = Field(..., description="Aid category")
    quantity: int = Field(..., description="Units distributed")
    location: str = Field(..., description="Distribution location")
    timestamp: datetime = Field(..., description="Distribution time")
    confirmed: bool = Field(..., description="Counts toward cooldowns")
    anchor: Optional[AnchorResponse] = None


class EligibilityResponse(HalResponse):
    """Eligibility of a household for one category."""

    eligible: bool
    category: str
    cooldown_remaining_seconds: int
    next_eligible_at: Optional[datetime] = None
    last_distribution: Optional[Dict[str, Any]] = None


class StatisticsResponse(HalResponse):
    """Registry and ledger totals."""

    households: int
    active_households: int
    distributions: Dict[str, Any]


class HealthCheckResponse(HalResponse):
    """Health check response model."""

    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="API version")
    dependencies: Dict[str, Any] = Field(default_factory=dict, description="Dependency health status")


class ErrorResponse(BaseModel):
    """RFC 7807 error response model."""

    type: str = Field(..., description="Error type URI")
    title: str = Field(..., description="Error title")
    status: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Error detail")
    instance: str = Field(..., description="Request instance URI")
    code: Optional[str] = Field(None, description="Engine error code")


class ValidationErrorResponse(ErrorResponse):
    """Validation error response with field details."""

    errors: List[Dict[str, Any]] = Field(default_factory=list, description="Validation errors")
