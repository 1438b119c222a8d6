# SPDX-License-Identifier: Apache-2.0

"""
Household registration endpoints.

Registration consumes a verified identity proof; every other endpoint
addresses a household by identifier or lookup key. Responses never contain
the identity hash, and contacts are masked.
"""

import base64
import logging

from flask import Blueprint, current_app, jsonify
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.households import public_household_view
from domain.distributions import event_view
from domain.identifiers import to_lookup_key
from middleware.error_handler import engine_error_response
from middleware.validation import validate_json, validate_query
from models.requests import HistoryQuery, RegisterHouseholdRequest

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

households_bp = Blueprint('households', __name__, url_prefix='/api/households')


def _error(result, span):
    span.set_status(Status(StatusCode.ERROR, result.error.code))
    span.set_attribute("engine.error", result.error.code)
    body, status, headers = engine_error_response(result.error, current_app.hal_formatter)
    return jsonify(body), status, headers


@households_bp.post('/register')
@validate_json(RegisterHouseholdRequest)
def register_household(body: RegisterHouseholdRequest):
    """
    Register a household for a verified identity.

    Returns 201 with the issued identifier and lookup key, 409 when the
    identity is already registered (or mid-registration), 503 when no free
    identifier could be derived.
    """
    with tracer.start_as_current_span("households.register") as span:
        result = current_app.engine.register_household(
            identity_hash=body.identity_proof.hashed_identifier,
            location=body.household.location,
            household_size=body.household.household_size,
            contact=body.household.contact,
            timeout=current_app.config.get('REGISTRATION_TIMEOUT_SECONDS'),
            attributes=body.disclosed_attributes()
        )
        if not result.success:
            return _error(result, span)

        outcome = result.value
        data = outcome.to_dict()
        data['qr_code'] = base64.b64encode(outcome.qr_code).decode('ascii') if outcome.qr_code else None

        span.set_attributes({"household.attempts": outcome.attempts})
        span.set_status(Status(StatusCode.OK))
        response = jsonify(current_app.hal_formatter.format_registration(data))
        response.headers['Location'] = f"/api/households/{outcome.lookup_key}"
        return response, 201


@households_bp.get('/<reference>')
def get_household(reference: str):
    """Fetch a household by identifier or lookup key."""
    with tracer.start_as_current_span("households.get") as span:
        result = current_app.engine.lookup_household(reference)
        if not result.success:
            return _error(result, span)
        return jsonify(current_app.hal_formatter.format_household(public_household_view(result.value))), 200


@households_bp.post('/<reference>/deactivate')
def deactivate_household(reference: str):
    """Stop a household from receiving aid; its history is kept."""
    with tracer.start_as_current_span("households.deactivate") as span:
        result = current_app.engine.deactivate_household(reference)
        if not result.success:
            return _error(result, span)
        logger.info("Household deactivated", extra={"extra_fields": {"lookup_key": result.value.lookup_key}})
        return jsonify(current_app.hal_formatter.format_household(public_household_view(result.value))), 200


@households_bp.post('/<reference>/activate')
def activate_household(reference: str):
    with tracer.start_as_current_span("households.activate") as span:
        result = current_app.engine.reactivate_household(reference)
        if not result.success:
            return _error(result, span)
        logger.info("Household reactivated", extra={"extra_fields": {"lookup_key": result.value.lookup_key}})
        return jsonify(current_app.hal_formatter.format_household(public_household_view(result.value))), 200


@households_bp.get('/<reference>/distributions')
@validate_query(HistoryQuery)
def list_distributions(query: HistoryQuery, reference: str):
    """Distribution history of a household, most recent first."""
    with tracer.start_as_current_span("households.distributions") as span:
        category = query.category.value if query.category else None
        result = current_app.engine.distribution_history(
            reference,
            category=category,
            limit=query.page_size,
            offset=(query.page - 1) * query.page_size
        )
        if not result.success:
            return _error(result, span)

        page = result.value
        lookup_key = to_lookup_key(reference)
        span.set_attributes({"history.total": page.total, "history.page": query.page})
        return jsonify(current_app.hal_formatter.format_distribution_history(
            [event_view(event) for event in page.events],
            page.total,
            query.page,
            query.page_size,
            lookup_key,
            category
        )), 200
