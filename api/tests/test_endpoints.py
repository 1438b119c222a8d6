# SPDX-License-Identifier: Apache-2.0

"""
HTTP endpoint tests through the Flask test client.
"""

import base64
from datetime import timedelta
import pytest
from unittest.mock import patch

from domain.identifiers import lookup_key
from models.responses import (
    DistributionResponse,
    EligibilityResponse,
    ErrorResponse,
    HouseholdResponse,
    RegistrationResponse,
    ValidationErrorResponse,
)
from services.engine import OperationTimeoutError
from services.kv_store import StoreUnavailableError

from conftest import START_TIME, make_identity_hash

UNKNOWN_KEY = lookup_key("0F0F0F0F0F0F0F0F")


def distribution_payload(reference, category="FOOD", quantity=10):
    return {
        "reference": reference,
        "category": category,
        "quantity": quantity,
        "location": "Camp 4",
        "agent_reference": "agent-01"
    }


class TestRegisterEndpoint:

    def test_register_household(self, client, registration_payload):
        response = client.post('/api/households/register', json=registration_payload)

        assert response.status_code == 201
        data = response.get_json()
        assert len(data['identifier']) == 16
        assert data['lookup_key'] == lookup_key(data['identifier'])
        assert response.headers['Location'] == f"/api/households/{data['lookup_key']}"
        assert data['_links']['self']['href'].endswith(data['lookup_key'])
        assert data['household']['_links']['eligibility']
        assert data['qr_code'] is None
        assert data['warnings'] == []
        # The identity hash is never returned
        assert registration_payload['identity_proof']['hashed_identifier'] not in response.get_data(as_text=True)

    def test_duplicate_registration(self, client, registration_payload):
        first = client.post('/api/households/register', json=registration_payload).get_json()

        response = client.post('/api/households/register', json=registration_payload)

        assert response.status_code == 409
        data = response.get_json()
        assert data['type'].endswith('/duplicate-identity')
        assert data['code'] == 'DUPLICATE_IDENTITY'
        assert data['existing_lookup_key'] == first['lookup_key']
        assert data['in_progress'] is False
        assert data['_links']['existing']['href'].endswith(first['lookup_key'])
        assert 'Retry-After' not in response.headers

    def test_invalid_household_size(self, client, registration_payload):
        registration_payload['household']['household_size'] = 0

        response = client.post('/api/households/register', json=registration_payload)

        assert response.status_code == 400
        data = response.get_json()
        assert data['type'].endswith('/validation-error')
        assert data['errors'][0]['field'] == 'household.household_size'
        assert 'input' not in data['errors'][0]

    def test_underage_head_of_household(self, client, registration_payload):
        registration_payload['identity_proof']['credential_subject']['minimum_age'] = False

        response = client.post('/api/households/register', json=registration_payload)

        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'request'

    def test_response_contract(self, client, registration_payload):
        data = client.post('/api/households/register', json=registration_payload).get_json()

        registration = RegistrationResponse.model_validate(data)

        assert registration.household.active is True
        assert 'record-distribution' in registration.household.links
        assert registration.anchor is None

    def test_requires_json(self, client):
        response = client.post('/api/households/register', data="identity", content_type='text/plain')

        assert response.status_code == 400
        assert response.get_json()['errors'][0]['field'] == 'content-type'

    def test_qr_code_is_base64(self, app, client, registration_payload):
        app.engine.qr_encoder = lambda identifier: f"QR:{identifier}".encode()

        data = client.post('/api/households/register', json=registration_payload).get_json()

        assert base64.b64decode(data['qr_code']).decode() == f"QR:{data['identifier']}"

    def test_timeout_maps_to_504(self, app, client, registration_payload):
        with patch.object(app.engine, 'register_household', side_effect=OperationTimeoutError("late")):
            response = client.post('/api/households/register', json=registration_payload)

        assert response.status_code == 504
        assert response.get_json()['type'].endswith('/operation-timeout')


class TestHouseholdEndpoints:

    def test_get_by_lookup_key_and_identifier(self, client, registered):
        by_key = client.get(f'/api/households/{registered.lookup_key}')
        by_identifier = client.get(f'/api/households/{registered.identifier}')

        assert by_key.status_code == 200
        assert by_key.get_json()['identifier'] == registered.identifier
        assert by_identifier.get_json()['lookup_key'] == registered.lookup_key
        assert by_key.get_json()['contact'] != "+91-98765-43210"
        assert HouseholdResponse.model_validate(by_key.get_json()).household_size == 4

    def test_unknown_household(self, client):
        response = client.get(f'/api/households/{UNKNOWN_KEY}')

        assert response.status_code == 404
        problem = ErrorResponse.model_validate(response.get_json())
        assert problem.code == 'NOT_FOUND'
        assert problem.instance == f'/api/households/{UNKNOWN_KEY}'

    def test_malformed_reference(self, client):
        response = client.get('/api/households/not-a-reference')

        assert response.status_code == 400
        problem = ValidationErrorResponse.model_validate(response.get_json())
        assert problem.errors[0]['message'] == "Invalid identifier or lookup key format"

    def test_deactivate_and_activate(self, client, registered):
        response = client.post(f'/api/households/{registered.lookup_key}/deactivate')

        assert response.status_code == 200
        data = response.get_json()
        assert data['active'] is False
        assert 'activate' in data['_links']
        assert 'record-distribution' not in data['_links']

        refused = client.post('/api/distributions', json=distribution_payload(registered.lookup_key))
        assert refused.status_code == 404

        response = client.post(f'/api/households/{registered.lookup_key}/activate')
        assert response.get_json()['active'] is True

    def test_distribution_history(self, client, registered, clock):
        for category in ("FOOD", "WATER", "MEDICAL"):
            client.post('/api/distributions', json=distribution_payload(registered.lookup_key, category))
            clock.advance(minutes=1)

        response = client.get(f'/api/households/{registered.lookup_key}/distributions?page_size=2')

        assert response.status_code == 200
        data = response.get_json()
        assert data['total'] == 3
        assert data['total_pages'] == 2
        assert [d['category'] for d in data['_embedded']['distributions']] == ["MEDICAL", "WATER"]
        assert 'page=2' in data['_links']['next']['href']

        filtered = client.get(f'/api/households/{registered.identifier}/distributions?category=water').get_json()
        assert filtered['total'] == 1
        assert 'category=WATER' in filtered['_links']['self']['href']

    def test_history_query_validation(self, client, registered):
        response = client.get(f'/api/households/{registered.lookup_key}/distributions?page=0')

        assert response.status_code == 400


class TestDistributionEndpoints:

    def test_record_distribution(self, client, registered):
        response = client.post('/api/distributions', json=distribution_payload(registered.lookup_key))

        assert response.status_code == 201
        data = response.get_json()
        assert data['category'] == "FOOD"
        assert data['quantity'] == 10
        assert data['_links']['household']['href'].endswith(registered.lookup_key)
        event = DistributionResponse.model_validate(data)
        assert event.confirmed is True
        assert event.anchor is None

    def test_cooldown_refusal(self, client, registered, clock):
        client.post('/api/distributions', json=distribution_payload(registered.lookup_key))
        clock.advance(hours=1)

        response = client.post('/api/distributions', json=distribution_payload(registered.identifier))

        assert response.status_code == 409
        data = response.get_json()
        assert data['code'] == 'NOT_ELIGIBLE'
        assert data['cooldown_remaining_seconds'] == 23 * 3600
        assert response.headers['Retry-After'] == str(23 * 3600)

    def test_client_timestamp_cannot_shift_cooldown(self, client, registered):
        first = distribution_payload(registered.lookup_key)
        first['timestamp'] = (START_TIME - timedelta(days=2)).isoformat()
        response = client.post('/api/distributions', json=first)

        assert response.status_code == 201
        assert response.get_json()['timestamp'] == START_TIME.isoformat()

        second = distribution_payload(registered.lookup_key)
        second['timestamp'] = (START_TIME + timedelta(hours=24)).isoformat()
        response = client.post('/api/distributions', json=second)

        assert response.status_code == 409
        assert response.get_json()['cooldown_remaining_seconds'] == 24 * 3600

    def test_zero_quantity(self, client, registered):
        response = client.post('/api/distributions', json=distribution_payload(registered.lookup_key, quantity=0))

        assert response.status_code == 400

    def test_unknown_category(self, client, registered):
        response = client.post('/api/distributions', json=distribution_payload(registered.lookup_key, "FUEL"))

        assert response.status_code == 400

    def test_unknown_household(self, client):
        response = client.post('/api/distributions', json=distribution_payload(UNKNOWN_KEY))

        assert response.status_code == 404

    def test_store_unavailable(self, app, client, registered):
        with patch.object(app.engine, 'record_distribution', side_effect=StoreUnavailableError("down")):
            response = client.post('/api/distributions', json=distribution_payload(registered.lookup_key))

        assert response.status_code == 503
        assert response.get_json()['type'].endswith('/store-unavailable')
        assert response.headers['Retry-After'] == '1'

    def test_eligibility_single_category(self, client, registered):
        client.post('/api/distributions', json=distribution_payload(registered.lookup_key, "SHELTER"))

        response = client.get(f'/api/distributions/eligibility?reference={registered.lookup_key}&category=shelter')

        assert response.status_code == 200
        data = response.get_json()
        assert data['eligible'] is False
        assert data['cooldown_remaining_seconds'] == 7 * 24 * 3600
        assert 'record-distribution' not in data['_links']
        eligibility = EligibilityResponse.model_validate(data)
        assert eligibility.last_distribution['location'] == "Camp 4"

    def test_eligibility_summary(self, client, registered):
        client.post('/api/distributions', json=distribution_payload(registered.lookup_key, "CASH"))

        response = client.get(f'/api/distributions/eligibility?reference={registered.identifier}')

        assert response.status_code == 200
        categories = response.get_json()['_embedded']['categories']
        assert len(categories) == 6
        ineligible = [c['category'] for c in categories if not c['eligible']]
        assert ineligible == ["CASH"]

    def test_eligibility_requires_reference(self, client):
        response = client.get('/api/distributions/eligibility')

        assert response.status_code == 400

    def test_agent_statistics(self, client, registered):
        client.post('/api/distributions', json=distribution_payload(registered.lookup_key))

        response = client.get('/api/distributions/agents/agent-01/stats')

        assert response.get_json()['distributions'] == 1


class TestOperationalEndpoints:

    def test_health(self, client):
        response = client.get('/api/healthz')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['dependencies']['store']['backend'] == 'memory'
        assert data['_links']['self']['href'].endswith('/api/healthz')

    def test_health_unhealthy_store(self, app, client):
        with patch.object(app.engine.store, 'health_check', return_value={'status': 'unhealthy'}):
            response = client.get('/api/healthz')

        assert response.status_code == 503

    def test_statistics(self, client, registered):
        data = client.get('/api/stats').get_json()

        assert data['households'] == 1
        assert data['distributions']['total'] == 0

    def test_request_id_is_echoed(self, client):
        response = client.get('/api/stats', headers={'X-Request-Id': 'req-123'})

        assert response.headers['X-Request-Id'] == 'req-123'

    def test_unknown_route(self, client):
        response = client.get('/api/unknown')

        assert response.status_code == 404
        assert response.get_json()['type'].endswith('/resource-not-found')


@pytest.mark.parametrize("size", [1, 20])
def test_household_size_bounds_accepted(client, registration_payload, size):
    registration_payload['identity_proof']['hashed_identifier'] = make_identity_hash()
    registration_payload['household']['household_size'] = size

    assert client.post('/api/households/register', json=registration_payload).status_code == 201
