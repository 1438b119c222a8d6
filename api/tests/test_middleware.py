# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Tests for middleware functionality.
"""

import json
import logging
import pytest
import sys
from datetime import timedelta
from unittest.mock import Mock
from flask import Flask
from pydantic import BaseModel

from domain.errors import (
    CollisionExhausted,
    DuplicateError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from middleware.error_handler import ErrorHandlerMiddleware, engine_error_response
from middleware.validation import ValidationMiddleware, validate_json
from observability.config import StructuredFormatter
from services.hal import HalFormatter
from services.identity_index import ReservationLostError
from services.kv_store import StoreContentionError


class TestValidationMiddleware:
    """Test validation middleware functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        self.validation_middleware = ValidationMiddleware("https://api.example.com")

    def test_format_validation_errors_omits_input(self):
        """Submitted values never appear in formatted errors."""
        errors = [
            {
                "loc": ("identity_proof", "hashed_identifier"),
                "msg": "String should have at least 8 characters",
                "type": "string_too_short",
                "input": "0xabc"
            },
            {
                "loc": (),
                "msg": "Input should be a valid dictionary",
                "type": "dict_type",
                "input": []
            }
        ]
        validation_error = Mock()
        validation_error.errors.return_value = errors

        result = self.validation_middleware.format_validation_errors(validation_error)

        assert result[0]["field"] == "identity_proof.hashed_identifier"
        assert result[1]["field"] == "body"
        assert all("input" not in error for error in result)

    def test_validate_json_body_success(self):
        class TestModel(BaseModel):
            location: str
            household_size: int

        with self.app.test_request_context(
            '/test',
            method='POST',
            json={"location": "Delhi", "household_size": 3}
        ):
            @self.validation_middleware.validate_json_body(TestModel)
            def test_route(validated_data):
                assert validated_data.household_size == 3
                return {"success": True}

            assert test_route() == {"success": True}

    def test_validate_json_body_not_an_object(self):
        class TestModel(BaseModel):
            location: str

        with self.app.test_request_context('/test', method='POST', json=["Delhi"]):
            @self.validation_middleware.validate_json_body(TestModel)
            def test_route(validated_data):
                return {"success": True}

            response, status_code = test_route()
            assert status_code == 400
            assert response.get_json()["errors"][0]["type"] == "json_error"

    def test_validate_query_params_error(self):
        class QueryModel(BaseModel):
            page: int

        with self.app.test_request_context('/test?page=first'):
            @self.validation_middleware.validate_query_params(QueryModel)
            def test_route(validated_params):
                return {"success": True}

            response, status_code = test_route()
            assert status_code == 400
            assert response.get_json()["errors"][0]["field"] == "page"

    def test_module_decorator_uses_application_middleware(self):
        class TestModel(BaseModel):
            location: str

        self.app.validation_middleware = self.validation_middleware

        @validate_json(TestModel)
        def test_route(validated_data):
            return {"location": validated_data.location}

        with self.app.test_request_context('/test', method='POST', json={"location": "Pune"}):
            assert test_route() == {"location": "Pune"}


class TestEngineErrorResponse:
    """Typed engine errors map to RFC 7807 responses."""

    def setup_method(self):
        self.app = Flask(__name__)
        self.formatter = HalFormatter("https://api.example.com")

    def render(self, error):
        with self.app.test_request_context('/api/distributions', method='POST'):
            return engine_error_response(error, self.formatter)

    def test_validation_error(self):
        body, status, headers = self.render(ValidationError(message="Invalid", errors=["Quantity must be positive"]))

        assert status == 400
        assert body["errors"] == [{"field": "request", "message": "Quantity must be positive", "type": "value_error"}]
        assert headers == {}

    def test_not_found(self):
        body, status, _ = self.render(NotFoundError(message="Household not found", reference="x"))

        assert status == 404
        assert body["code"] == "NOT_FOUND"
        assert body["instance"] == "/api/distributions"

    def test_duplicate_in_progress_sets_retry_after(self):
        body, status, headers = self.render(DuplicateError(message="In progress", in_progress=True))

        assert status == 409
        assert body["in_progress"] is True
        assert headers == {"Retry-After": "1"}
        assert "existing" not in body["_links"]

    def test_not_eligible(self):
        error = NotEligibleError(message="Not yet", category="FOOD", cooldown_remaining=timedelta(minutes=90))

        body, status, headers = self.render(error)

        assert status == 409
        assert body["type"].endswith("/not-eligible")
        assert body["cooldown_remaining_seconds"] == 5400
        assert headers["Retry-After"] == "5400"

    def test_not_eligible_retry_after_is_at_least_one_second(self):
        error = NotEligibleError(message="Not yet", category="FOOD", cooldown_remaining=timedelta(milliseconds=300))

        _, _, headers = self.render(error)

        assert headers["Retry-After"] == "1"

    def test_collision_exhausted(self):
        body, status, headers = self.render(CollisionExhausted(message="Exhausted", attempts=8))

        assert status == 503
        assert body["type"].endswith("/collision-exhausted")
        assert body["attempts"] == 8
        assert headers["Retry-After"] == "1"


class TestErrorHandlerMiddleware:
    """Test error handler middleware functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.app = Flask(__name__)
        self.error_handler = ErrorHandlerMiddleware(self.app, "https://api.example.com")

        @self.app.route('/contention')
        def contention():
            raise StoreContentionError("head kept moving")

        @self.app.route('/lost')
        def lost():
            raise ReservationLostError("taken over")

        @self.app.route('/boom')
        def boom():
            raise RuntimeError("unexpected")

        self.client = self.app.test_client()

    def test_store_contention_is_retryable(self):
        response = self.client.get('/contention')

        assert response.status_code == 503
        assert response.headers['Retry-After'] == '1'
        # The internal message stays in the logs
        assert "head kept moving" not in response.get_data(as_text=True)

    def test_reservation_lost(self):
        response = self.client.get('/lost')

        assert response.status_code == 503
        assert response.get_json()['type'].endswith('/registration-interrupted')

    def test_unexpected_error(self):
        response = self.client.get('/boom')

        assert response.status_code == 500
        assert response.get_json()['type'].endswith('/internal-server-error')

    def test_unexpected_error_detail_hidden_in_production(self):
        self.app.config['ENV'] = 'production'

        response = self.client.get('/boom')

        assert response.get_json()['detail'] == "An unexpected error occurred"

    def test_method_not_allowed(self):
        response = self.client.post('/boom')

        assert response.status_code == 405
        assert response.get_json()['type'].endswith('/method-not-allowed')


class TestStructuredFormatter:

    def test_json_output_with_extra_fields(self):
        record = logging.LogRecord("services.engine", logging.INFO, __file__, 10, "Household registered", None, None)
        record.extra_fields = {"lookup_key": "0xabc", "attempts": 1}

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["message"] == "Household registered"
        assert entry["level"] == "INFO"
        assert entry["service"] == "relief-integrity-api"
        assert entry["lookup_key"] == "0xabc"
        assert "trace_id" not in entry

    def test_exception_is_rendered(self):
        try:
            raise ValueError("bad cooldown")
        except ValueError:
            exc_info = sys.exc_info()
        record = logging.LogRecord("domain", logging.ERROR, __file__, 1, "failed", None, exc_info)

        entry = json.loads(StructuredFormatter().format(record))

        assert "bad cooldown" in entry["exception"]


@pytest.mark.parametrize("status", [400, 404])
def test_client_errors_use_problem_format(status):
    app = Flask(__name__)
    ErrorHandlerMiddleware(app, "https://api.example.com")

    @app.route('/fail')
    def fail():
        from flask import abort
        abort(status)

    body = app.test_client().get('/fail').get_json()

    assert body['status'] == status
    assert '_links' in body
