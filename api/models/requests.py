# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request models for API endpoints.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator

from .entities import MAX_HOUSEHOLD_SIZE, MAX_LOCATION_LENGTH, MAX_QUANTITY, MIN_HOUSEHOLD_SIZE, MIN_QUANTITY
from .enums import AidCategory


class CredentialSubject(BaseModel):
    """Attributes disclosed by the identity verifier."""

    nationality: Optional[str] = Field(None, max_length=100, description="Disclosed nationality")
    minimum_age: bool = Field(False, description="Whether the holder meets the minimum age")


class IdentityProof(BaseModel):
    """Verified identity proof produced by the identity verifier."""

    hashed_identifier: str = Field(..., min_length=8, max_length=256, description="Verified identity hash")
    credential_subject: CredentialSubject = Field(..., description="Disclosed attributes")


class HouseholdDetails(BaseModel):
    """Household metadata captured at registration."""

    location: str = Field(..., min_length=1, max_length=MAX_LOCATION_LENGTH, description="Household location")
    household_size: int = Field(..., ge=MIN_HOUSEHOLD_SIZE, le=MAX_HOUSEHOLD_SIZE, description="Household members")
    contact: str = Field(..., min_length=1, max_length=100, description="Contact reference")


class RegisterHouseholdRequest(BaseModel):
    """Request model for household registration."""

    identity_proof: IdentityProof
    household: HouseholdDetails

    def disclosed_attributes(self) -> Dict[str, Any]:
        return self.identity_proof.credential_subject.model_dump()


class RecordDistributionRequest(BaseModel):
    """Request model for recording a distribution."""

    reference: str = Field(..., min_length=1, description="Household identifier or lookup key")
    category: AidCategory = Field(..., description="Aid category")
    quantity: int = Field(..., ge=MIN_QUANTITY, le=MAX_QUANTITY, description="Units distributed")
    location: str = Field(..., min_length=1, max_length=MAX_LOCATION_LENGTH, description="Distribution location")
    agent_reference: str = Field(..., min_length=1, max_length=200, description="Issuing agent reference")

    @field_validator('category', mode='before')
    @classmethod
    def parse_category(cls, v):
        return AidCategory.parse(v)


class HistoryQuery(BaseModel):
    """Query parameters for distribution history."""

    category: Optional[AidCategory] = Field(None, description="Only this aid category")
    page: int = Field(1, ge=1, description="Page number")
    page_size: int = Field(20, ge=1, le=100, description="Items per page")

    @field_validator('category', mode='before')
    @classmethod
    def parse_category(cls, v):
        return AidCategory.parse(v) if v else None


class EligibilityQuery(BaseModel):
    """Query parameters for eligibility checks."""

    reference: str = Field(..., min_length=1, description="Household identifier or lookup key")
    category: Optional[AidCategory] = Field(None, description="Aid category (all categories if omitted)")

    @field_validator('category', mode='before')
    @classmethod
    def parse_category(cls, v):
        return AidCategory.parse(v) if v else None
