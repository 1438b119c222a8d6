# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Unit tests for Pydantic models.
"""

import pytest
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from domain.identifiers import lookup_key
from models.entities import DistributionEvent, IdentityReservation, RegistrationRecord
from models.enums import AidCategory, ReservationState
from models.requests import EligibilityQuery, HistoryQuery, RecordDistributionRequest, RegisterHouseholdRequest

IDENTIFIER = "A1B2C3D4E5F60718"


def make_record(**overrides):
    data = {
        "identifier": IDENTIFIER,
        "lookup_key": lookup_key(IDENTIFIER),
        "identity_hash": "0xverified-identity",
        "household_size": 4,
        "location": "newdelhi",
        "contact_reference": "+91-98765-43210"
    }
    data.update(overrides)
    return RegistrationRecord(**data)


class TestAidCategory:
    """Test category parsing."""

    def test_parse_is_case_insensitive(self):
        assert AidCategory.parse("food") == AidCategory.FOOD
        assert AidCategory.parse(" Medical ") == AidCategory.MEDICAL

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError, match="Must be one of"):
            AidCategory.parse("TOYS")

    def test_parse_rejects_non_string(self):
        with pytest.raises(ValueError):
            AidCategory.parse(3)


class TestRegistrationRecord:
    """Test RegistrationRecord model validation."""

    def test_valid_record(self):
        record = make_record()

        assert record.is_active()
        assert record.registered_at.tzinfo is not None

    def test_identifier_format(self):
        with pytest.raises(ValidationError):
            make_record(identifier="a1b2c3d4e5f60718", lookup_key=lookup_key(IDENTIFIER))

    def test_lookup_key_must_match_identifier(self):
        with pytest.raises(ValidationError, match="Lookup key does not match"):
            make_record(lookup_key="0x" + "0" * 64)

    def test_household_size_bounds(self):
        with pytest.raises(ValidationError):
            make_record(household_size=0)
        with pytest.raises(ValidationError):
            make_record(household_size=21)

    def test_with_active_sets_deactivation_time(self):
        at = datetime(2024, 1, 1, tzinfo=timezone.utc)

        inactive = make_record().with_active(False, at)

        assert not inactive.is_active()
        assert inactive.deactivated_at == at

    def test_document_round_trip_keeps_timezone(self):
        record = make_record(registered_at=datetime(2024, 1, 1, 12, 0))

        restored = RegistrationRecord.from_document(record.to_document())

        assert restored == record
        assert restored.registered_at.tzinfo is not None


class TestDistributionEvent:
    """Test DistributionEvent model validation."""

    def test_valid_event(self):
        event = DistributionEvent(
            lookup_key=lookup_key(IDENTIFIER),
            agent_reference=" agent-7 ",
            category="water",
            quantity=10,
            location="Camp 3"
        )

        assert event.category == AidCategory.WATER
        assert event.agent_reference == "agent-7"
        assert event.confirmed is True
        assert event.event_id

    def test_rejects_malformed_lookup_key(self):
        with pytest.raises(ValidationError, match="Lookup key"):
            DistributionEvent(lookup_key=IDENTIFIER, agent_reference="a", category="FOOD", quantity=1, location="x")

    @pytest.mark.parametrize("quantity", [0, 1_000_001])
    def test_quantity_bounds(self, quantity):
        with pytest.raises(ValidationError):
            DistributionEvent(
                lookup_key=lookup_key(IDENTIFIER), agent_reference="a", category="FOOD",
                quantity=quantity, location="x"
            )

    def test_blank_location_rejected(self):
        with pytest.raises(ValidationError):
            DistributionEvent(
                lookup_key=lookup_key(IDENTIFIER), agent_reference="a", category="FOOD",
                quantity=1, location="   "
            )


class TestIdentityReservation:
    """Test duplicate index entries."""

    def test_committed_requires_identifier(self):
        with pytest.raises(ValidationError):
            IdentityReservation(identity_hash="h" * 10, token="t", state=ReservationState.COMMITTED)

    def test_staleness(self):
        reserved_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entry = IdentityReservation(identity_hash="h" * 10, token="t", reserved_at=reserved_at)

        assert not entry.is_stale(reserved_at + timedelta(seconds=29), timedelta(seconds=30))
        assert entry.is_stale(reserved_at + timedelta(seconds=30), timedelta(seconds=30))

    def test_committed_entry_never_stale(self):
        reserved_at = datetime(2024, 1, 1, tzinfo=timezone.utc)
        entry = IdentityReservation(
            identity_hash="h" * 10, token="t", reserved_at=reserved_at,
            state=ReservationState.COMMITTED, identifier=IDENTIFIER
        )

        assert not entry.is_stale(reserved_at + timedelta(days=1), timedelta(seconds=30))


class TestRequestModels:
    """Test API request models."""

    def test_register_request(self, registration_payload):
        request = RegisterHouseholdRequest(**registration_payload)

        assert request.household.household_size == 4
        assert request.disclosed_attributes() == {"nationality": "IND", "minimum_age": True}

    def test_register_request_requires_credential_subject(self, registration_payload):
        del registration_payload["identity_proof"]["credential_subject"]

        with pytest.raises(ValidationError):
            RegisterHouseholdRequest(**registration_payload)

    def test_distribution_request_parses_category(self):
        request = RecordDistributionRequest(
            reference=IDENTIFIER, category="shelter", quantity=1, location="Camp", agent_reference="agent-1"
        )

        assert request.category == AidCategory.SHELTER
        assert request.timestamp is None

    def test_distribution_request_rejects_unknown_category(self):
        with pytest.raises(ValidationError):
            RecordDistributionRequest(
                reference=IDENTIFIER, category="toys", quantity=1, location="Camp", agent_reference="agent-1"
            )

    def test_history_query_defaults(self):
        query = HistoryQuery()

        assert query.page == 1
        assert query.page_size == 20
        assert query.category is None

    def test_history_query_page_size_limit(self):
        with pytest.raises(ValidationError):
            HistoryQuery(page_size=101)

    def test_eligibility_query_empty_category(self):
        assert EligibilityQuery(reference=IDENTIFIER, category="").category is None
