"""
Observability Middleware

Instruments every HTTP request with OpenTelemetry and emits one structured
log line per request. Request bodies and query strings are never logged:
they may carry identity proofs or contact references.
"""

import time
import uuid
import logging
from flask import Flask, request, g
from opentelemetry import trace
from opentelemetry.instrumentation.flask import FlaskInstrumentor

QUIET_PATHS = ('/api/healthz',)


def add_observability_middleware(app: Flask):
    """Add OpenTelemetry instrumentation and request logging to Flask app."""

    FlaskInstrumentor().instrument_app(app)

    logger = logging.getLogger(__name__)

    @app.before_request
    def before_request():
        g.start_time = time.monotonic()
        g.request_id = request.headers.get('X-Request-Id') or str(uuid.uuid4())
        g.trace_id = None

        span = trace.get_current_span()
        if span.is_recording():
            g.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attributes({
                "http.method": request.method,
                "http.route": request.url_rule.rule if request.url_rule else request.path,
                "http.host": request.host,
                "relief.request_id": g.request_id
            })

    @app.after_request
    def after_request(response):
        duration_ms = round((time.monotonic() - g.get('start_time', time.monotonic())) * 1000, 2)

        span = trace.get_current_span()
        if span.is_recording():
            span.set_attributes({
                "http.status_code": response.status_code,
                "http.duration_ms": duration_ms
            })

        level = logging.DEBUG if request.path in QUIET_PATHS else logging.INFO
        logger.log(
            level,
            "HTTP request completed",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "route": request.url_rule.rule if request.url_rule else None,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": g.get('request_id'),
                    "trace_id": g.get('trace_id')
                }
            }
        )

        if g.get('request_id'):
            response.headers['X-Request-Id'] = g.request_id
        if g.get('trace_id'):
            response.headers['X-Trace-Id'] = g.trace_id

        return response
