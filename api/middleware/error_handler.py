# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
Error handling middleware with structured HAL responses.

Typed engine errors (returned, never raised) are rendered by
engine_error_response; infrastructure exceptions raised by the engine are
mapped to 503/504 by handlers registered on the Flask application.
"""

from flask import Flask, request
from werkzeug.exceptions import HTTPException
from typing import Dict, Any, Tuple
from opentelemetry import trace
import logging

from domain.errors import (
    CollisionExhausted,
    DuplicateError,
    EngineError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from services.engine import OperationTimeoutError
from services.hal import HalFormatter
from services.identity_index import ReservationLostError
from services.kv_store import StoreContentionError, StoreUnavailableError

tracer = trace.get_tracer(__name__)
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1

ErrorResponse = Tuple[Dict[str, Any], int, Dict[str, str]]


def engine_error_response(error: EngineError, hal_formatter: HalFormatter) -> ErrorResponse:
    """
    Render a typed engine error as an RFC 7807 response.

    Returns:
        Tuple of (error response dict, status code, headers)
    """
    instance = request.path
    details = error.to_dict()

    if isinstance(error, ValidationError):
        errors = [{"field": "request", "message": message, "type": "value_error"} for message in error.errors]
        return hal_formatter.format_validation_error(error.message, instance, errors), 400, {}

    if isinstance(error, NotFoundError):
        response = hal_formatter.format_not_found_error(error.message, instance)
        response['code'] = error.code
        return response, 404, {}

    if isinstance(error, DuplicateError):
        extra = {
            'code': error.code,
            'existing_lookup_key': error.existing_lookup_key,
            'in_progress': error.in_progress
        }
        headers = {'Retry-After': str(RETRY_AFTER_SECONDS)} if error.in_progress else {}
        return hal_formatter.format_duplicate_error(error.message, instance, extra), 409, headers

    if isinstance(error, NotEligibleError):
        extra = {
            'code': error.code,
            'category': details['category'],
            'cooldown_remaining_seconds': details['cooldown_remaining_seconds'],
            'next_eligible_at': details['next_eligible_at']
        }
        headers = {'Retry-After': str(max(details['cooldown_remaining_seconds'], 1))}
        return hal_formatter.format_not_eligible_error(error.message, instance, extra), 409, headers

    if isinstance(error, CollisionExhausted):
        response = hal_formatter.format_unavailable_error(
            "collision-exhausted",
            "Identifier Space Exhausted",
            error.message,
            instance,
            extra={'code': error.code, 'attempts': error.attempts}
        )
        return response, 503, {'Retry-After': str(RETRY_AFTER_SECONDS)}

    response = hal_formatter.format_server_error(error.message, instance)
    response['code'] = error.code
    return response, 500, {}


class ErrorHandlerMiddleware:
    """Centralized error handling middleware with HAL response formatting."""

    def __init__(self, app: Flask, base_url: str):
        self.app = app
        self.hal_formatter = HalFormatter(base_url)
        self.register_error_handlers()

    def register_error_handlers(self):
        """Register error handlers with Flask application."""

        @self.app.errorhandler(HTTPException)
        def handle_http_exception(error: HTTPException):
            titles = {
                400: ("bad-request", "Bad Request"),
                404: ("resource-not-found", "Resource Not Found"),
                405: ("method-not-allowed", "Method Not Allowed"),
                415: ("unsupported-media-type", "Unsupported Media Type")
            }
            error_type, title = titles.get(error.code, ("http-error", error.name))
            if error.code is not None and error.code >= 500:
                return self.handle_server_error(error, error_type, title)
            return self.handle_client_error(error, error_type, title)

        @self.app.errorhandler(StoreUnavailableError)
        def handle_store_unavailable(error):
            return self.handle_infrastructure_error(
                error, 503, "store-unavailable", "Storage Unavailable",
                "The registry store is unavailable; retry the request"
            )

        @self.app.errorhandler(StoreContentionError)
        def handle_store_contention(error):
            return self.handle_infrastructure_error(
                error, 503, "store-contention", "Storage Contention",
                "The request conflicted with concurrent updates; retry the request"
            )

        @self.app.errorhandler(ReservationLostError)
        def handle_reservation_lost(error):
            return self.handle_infrastructure_error(
                error, 503, "registration-interrupted", "Registration Interrupted",
                "The registration was interrupted and rolled back; retry the request"
            )

        @self.app.errorhandler(OperationTimeoutError)
        def handle_operation_timeout(error):
            return self.handle_infrastructure_error(
                error, 504, "operation-timeout", "Operation Timeout",
                "The operation did not complete in time and was rolled back"
            )

        @self.app.errorhandler(Exception)
        def handle_generic_exception(error):
            return self.handle_unexpected_error(error)

    def handle_client_error(
        self,
        error: HTTPException,
        error_type: str,
        title: str
    ) -> Tuple[Dict[str, Any], int]:
        """
        Handle client errors (4xx status codes).

        Args:
            error: HTTP exception
            error_type: Error type identifier
            title: Error title

        Returns:
            Tuple of (error response dict, status code)
        """
        with tracer.start_as_current_span("error_handler.client_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": error.code,
                "http.method": request.method,
                "http.path": request.path
            })

            detail = str(error.description) if error.description else title

            logger.warning(
                f"Client error: {title}",
                extra={"extra_fields": {
                    "error_type": error_type,
                    "status_code": error.code,
                    "path": request.path,
                    "method": request.method
                }}
            )

            if error_type == "resource-not-found":
                error_response = self.hal_formatter.format_not_found_error(detail, request.path)
            else:
                error_response = self.hal_formatter.builder.build_error_response(
                    error_type,
                    title,
                    error.code,
                    detail,
                    request.path
                )

            return error_response, error.code

    def handle_server_error(
        self,
        error: HTTPException,
        error_type: str,
        title: str
    ) -> Tuple[Dict[str, Any], int]:
        """Handle server errors (5xx status codes)."""
        with tracer.start_as_current_span("error_handler.server_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": error.code,
                "http.method": request.method,
                "http.path": request.path
            })

            logger.error(
                f"Server error: {title}",
                extra={"extra_fields": {
                    "error_type": error_type,
                    "status_code": error.code,
                    "path": request.path,
                    "method": request.method
                }}
            )

            # Don't expose internal error details in production
            detail = str(error.description) if error.description else title
            if self.app.config.get('ENV') == 'production':
                detail = "An internal server error occurred"

            error_response = self.hal_formatter.builder.build_error_response(
                error_type, title, error.code, detail, request.path
            )
            return error_response, error.code

    def handle_infrastructure_error(
        self,
        error: Exception,
        status: int,
        error_type: str,
        title: str,
        detail: str
    ) -> Tuple[Dict[str, Any], int, Dict[str, str]]:
        """
        Handle retryable infrastructure failures raised by the engine.

        The client gets a stable message; the underlying error goes to the
        logs and the active span only.
        """
        with tracer.start_as_current_span("error_handler.infrastructure_error") as span:
            span.set_attributes({
                "error.type": error_type,
                "error.status": status,
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Infrastructure error: {title}",
                extra={"extra_fields": {
                    "error_type": error_type,
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "status_code": status,
                    "path": request.path,
                    "method": request.method
                }}
            )

            if status == 504:
                error_response = self.hal_formatter.format_timeout_error(detail, request.path)
            else:
                error_response = self.hal_formatter.format_unavailable_error(error_type, title, detail, request.path)
            return error_response, status, {'Retry-After': str(RETRY_AFTER_SECONDS)}

    def handle_unexpected_error(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """
        Handle unexpected exceptions not caught by specific handlers.

        Args:
            error: Unexpected exception

        Returns:
            Tuple of (error response dict, status code)
        """
        with tracer.start_as_current_span("error_handler.unexpected_error") as span:
            span.set_attributes({
                "error.type": "unexpected-error",
                "error.class": error.__class__.__name__,
                "http.method": request.method,
                "http.path": request.path
            })
            span.record_exception(error)

            logger.error(
                f"Unexpected error: {error.__class__.__name__}",
                extra={"extra_fields": {
                    "error_type": "unexpected-error",
                    "error_class": error.__class__.__name__,
                    "error_message": str(error),
                    "path": request.path,
                    "method": request.method
                }},
                exc_info=error
            )

            # Don't expose internal error details
            detail = "An unexpected error occurred"
            if self.app.config.get('ENV') != 'production':
                detail = f"{error.__class__.__name__}: {str(error)}"

            error_response = self.hal_formatter.format_server_error(detail, request.path)

            return error_response, 500
