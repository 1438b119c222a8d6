# SPDX-License-Identifier: Apache-2.0

"""
Distribution endpoints: record an aid hand-out and check eligibility.
"""

import logging

from flask import Blueprint, current_app, jsonify
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from domain.identifiers import to_lookup_key
from middleware.error_handler import engine_error_response
from middleware.validation import validate_json, validate_query
from models.enums import AidCategory
from models.requests import EligibilityQuery, RecordDistributionRequest

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

distributions_bp = Blueprint('distributions', __name__, url_prefix='/api/distributions')


def _error(result, span):
    span.set_status(Status(StatusCode.ERROR, result.error.code))
    span.set_attribute("engine.error", result.error.code)
    body, status, headers = engine_error_response(result.error, current_app.hal_formatter)
    return jsonify(body), status, headers


@distributions_bp.post('')
@validate_json(RecordDistributionRequest)
def record_distribution(body: RecordDistributionRequest):
    """
    Record a distribution.

    The eligibility check and the ledger append happen atomically; a
    household inside its cooldown gets 409 with the remaining time. The
    distribution time is always the server clock.
    """
    with tracer.start_as_current_span("distributions.record") as span:
        span.set_attribute("distribution.category", body.category.value)
        result = current_app.engine.record_distribution(
            reference=body.reference,
            category=body.category,
            quantity=body.quantity,
            location=body.location,
            agent_reference=body.agent_reference
        )
        if not result.success:
            return _error(result, span)

        span.set_status(Status(StatusCode.OK))
        return jsonify(current_app.hal_formatter.format_distribution(result.value.to_dict())), 201


@distributions_bp.get('/eligibility')
@validate_query(EligibilityQuery)
def check_eligibility(query: EligibilityQuery):
    """Eligibility for one category, or for every category when none is given."""
    with tracer.start_as_current_span("distributions.eligibility") as span:
        engine = current_app.engine
        lookup_key = to_lookup_key(query.reference)

        if query.category is not None:
            span.set_attribute("distribution.category", query.category.value)
            result = engine.check_eligibility(query.reference, query.category)
            if not result.success:
                return _error(result, span)
            return jsonify(current_app.hal_formatter.format_eligibility(result.value.to_dict(), lookup_key)), 200

        result = engine.eligibility_summary(query.reference)
        if not result.success:
            return _error(result, span)
        summary = [result.value[category].to_dict() for category in AidCategory]
        return jsonify(current_app.hal_formatter.format_eligibility_summary(summary, lookup_key)), 200


@distributions_bp.get('/agents/<agent_reference>/stats')
def agent_statistics(agent_reference: str):
    """Number of distributions recorded by one issuing agent."""
    stats = current_app.engine.agent_statistics(agent_reference)
    links = {'self': current_app.hal_formatter.builder.link_builder.build_self_link(
        f"/api/distributions/agents/{agent_reference}/stats"
    )}
    return jsonify(current_app.hal_formatter.builder.build_resource_response(stats, links)), 200
