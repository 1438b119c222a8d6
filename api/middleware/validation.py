# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Request validation middleware using Pydantic models.
Provides automatic request body validation and error formatting.

Submitted values are never echoed back in validation errors: request bodies
carry identity proofs and contact references.
"""

from functools import wraps
from flask import current_app, request, jsonify
from typing import Optional, Type, Callable, Dict, Any, List
from pydantic import BaseModel, ValidationError
from opentelemetry import trace
import logging

from services.hal import HalFormatter

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)


class ValidationMiddleware:
    """Middleware for request validation using Pydantic models."""

    def __init__(self, base_url: str):
        self.hal_formatter = HalFormatter(base_url)

    def format_validation_errors(self, validation_error: ValidationError) -> List[Dict[str, Any]]:
        """
        Format Pydantic validation errors for API response.

        Args:
            validation_error: Pydantic ValidationError

        Returns:
            List of formatted error dictionaries
        """
        return [
            {
                "field": ".".join(str(loc) for loc in error["loc"]) or "body",
                "message": error["msg"],
                "type": error["type"]
            }
            for error in validation_error.errors()
        ]

    def _invalid(self, detail: str, errors: List[Dict[str, Any]]):
        return jsonify(self.hal_formatter.format_validation_error(detail, request.path, errors)), 400

    def parse_json_body(self, model_class: Type[BaseModel]):
        """
        Validate the JSON body of the current request.

        Returns:
            Tuple of (model instance, None) or (None, error response)
        """
        with tracer.start_as_current_span("validation.validate_json_body") as span:
            span.set_attributes({
                "validation.model": model_class.__name__,
                "http.method": request.method,
                "http.path": request.path
            })

            if not request.is_json:
                span.set_attribute("validation.result", "invalid_content_type")
                return None, self._invalid(
                    "Request must have Content-Type: application/json",
                    [{"field": "content-type", "message": "Expected application/json", "type": "content_type_error"}]
                )

            json_data = request.get_json(silent=True)
            if not isinstance(json_data, dict):
                span.set_attribute("validation.result", "invalid_json")
                return None, self._invalid(
                    "Invalid JSON in request body",
                    [{"field": "body", "message": "Expected a JSON object", "type": "json_error"}]
                )

            try:
                validated = model_class.model_validate(json_data)
            except ValidationError as e:
                span.set_attribute("validation.result", "validation_error")
                validation_errors = self.format_validation_errors(e)
                logger.warning(
                    "Request validation failed",
                    extra={"extra_fields": {
                        "model": model_class.__name__,
                        "path": request.path,
                        "method": request.method,
                        "error_fields": [error["field"] for error in validation_errors]
                    }}
                )
                return None, self._invalid(
                    f"Request validation failed for {model_class.__name__}",
                    validation_errors
                )

            span.set_attribute("validation.result", "success")
            return validated, None

    def parse_query_params(self, model_class: Type[BaseModel]):
        """
        Validate the query string of the current request.

        Returns:
            Tuple of (model instance, None) or (None, error response)
        """
        with tracer.start_as_current_span("validation.validate_query_params") as span:
            span.set_attributes({
                "validation.model": model_class.__name__,
                "http.method": request.method,
                "http.path": request.path
            })

            query_data = request.args.to_dict()
            for key in request.args.keys():
                values = request.args.getlist(key)
                if len(values) > 1:
                    query_data[key] = values

            try:
                validated = model_class.model_validate(query_data)
            except ValidationError as e:
                span.set_attribute("validation.result", "validation_error")
                validation_errors = self.format_validation_errors(e)
                logger.warning(
                    "Query parameter validation failed",
                    extra={"extra_fields": {
                        "model": model_class.__name__,
                        "path": request.path,
                        "method": request.method,
                        "error_fields": [error["field"] for error in validation_errors]
                    }}
                )
                return None, self._invalid(
                    f"Query parameter validation failed for {model_class.__name__}",
                    validation_errors
                )

            span.set_attribute("validation.result", "success")
            return validated, None

    def validate_json_body(self, model_class: Type[BaseModel]) -> Callable:
        """Decorator passing the validated JSON body as the first argument."""
        def decorator(f: Callable) -> Callable:
            @wraps(f)
            def decorated_function(*args, **kwargs):
                validated, error_response = self.parse_json_body(model_class)
                if error_response is not None:
                    return error_response
                return f(validated, *args, **kwargs)
            return decorated_function
        return decorator

    def validate_query_params(self, model_class: Type[BaseModel]) -> Callable:
        """Decorator passing the validated query parameters as the first argument."""
        def decorator(f: Callable) -> Callable:
            @wraps(f)
            def decorated_function(*args, **kwargs):
                validated, error_response = self.parse_query_params(model_class)
                if error_response is not None:
                    return error_response
                return f(validated, *args, **kwargs)
            return decorated_function
        return decorator


def _middleware(validation_middleware: Optional[ValidationMiddleware]) -> ValidationMiddleware:
    return validation_middleware or current_app.validation_middleware


def validate_json(model_class: Type[BaseModel], validation_middleware: Optional[ValidationMiddleware] = None) -> Callable:
    """
    Convenience decorator for JSON body validation.

    Without an explicit middleware the application's validation_middleware is
    used, resolved per request so blueprints can be declared before the app.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            validated, error_response = _middleware(validation_middleware).parse_json_body(model_class)
            if error_response is not None:
                return error_response
            return f(validated, *args, **kwargs)
        return decorated_function
    return decorator


def validate_query(model_class: Type[BaseModel], validation_middleware: Optional[ValidationMiddleware] = None) -> Callable:
    """Convenience decorator for query parameter validation."""
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(*args, **kwargs):
            validated, error_response = _middleware(validation_middleware).parse_query_params(model_class)
            if error_response is not None:
                return error_response
            return f(validated, *args, **kwargs)
        return decorated_function
    return decorator
