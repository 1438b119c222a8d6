"""
Relief Integrity API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support around the
identity & distribution integrity engine: household registration, aid
distribution recording and eligibility checks.
"""

import os
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag
from observability.config import setup_observability
from observability.middleware import add_observability_middleware

from middleware.error_handler import ErrorHandlerMiddleware
from middleware.validation import ValidationMiddleware
from models.responses import HealthCheckResponse, StatisticsResponse
from services.engine import IntegrityEngine
from services.hal import create_hal_formatter
from services.health import HealthCheckService

API_VERSION = "1.0.0"

info = Info(
    title="Relief Integrity API",
    version=API_VERSION,
    description="Duplicate-free household registration and cooldown-enforced aid distribution"
)

health_tag = Tag(name="Health", description="System health and status")
stats_tag = Tag(name="Statistics", description="Registry and ledger totals")


def create_app(engine: IntegrityEngine = None) -> OpenAPI:
    """
    Build the application.

    Args:
        engine: Engine to serve; built from the environment when omitted
    """
    setup_observability()

    app = OpenAPI(__name__, info=info)

    add_observability_middleware(app)

    # Environment configuration
    app.config['ENVIRONMENT'] = os.getenv('ENVIRONMENT', 'development')
    app.config['ENV'] = app.config['ENVIRONMENT']
    app.config['DEBUG'] = app.config['ENVIRONMENT'] == 'development'
    app.config['BASE_URL'] = os.getenv('BASE_URL', 'http://localhost:5000')

    timeout = os.getenv('REGISTRATION_TIMEOUT_SECONDS')
    app.config['REGISTRATION_TIMEOUT_SECONDS'] = float(timeout) if timeout else None

    # Engine and collaborators
    engine = engine or IntegrityEngine.from_env()
    health_service = HealthCheckService(engine, API_VERSION)

    hal_formatter = create_hal_formatter(app.config['BASE_URL'])
    validation_middleware = ValidationMiddleware(app.config['BASE_URL'])
    ErrorHandlerMiddleware(app, app.config['BASE_URL'])

    # Make services available to routes
    app.engine = engine
    app.health_service = health_service
    app.hal_formatter = hal_formatter
    app.validation_middleware = validation_middleware

    from routes.households import households_bp
    from routes.distributions import distributions_bp

    app.register_blueprint(households_bp)
    app.register_blueprint(distributions_bp)

    @app.get('/api/healthz', tags=[health_tag], summary="Dependency health",
             responses={200: HealthCheckResponse, 503: HealthCheckResponse})
    def health_check():
        """Health of the store and anchoring broker; 503 when the store is down."""
        health_data = health_service.get_comprehensive_health()
        status_code = 503 if health_data["status"] == "unhealthy" else 200

        health_response = hal_formatter.builder.build_resource_response(
            health_data,
            {'self': hal_formatter.builder.link_builder.build_self_link('/api/healthz')}
        )
        return jsonify(health_response), status_code

    @app.get('/api/stats', tags=[stats_tag], summary="Registry and ledger totals",
             responses={200: StatisticsResponse})
    def statistics():
        return jsonify(hal_formatter.format_statistics(engine.statistics())), 200

    return app


app = create_app()


if __name__ == '__main__':
    # Development server
    app.run(
        host='0.0.0.0',
        port=int(os.getenv('PORT', 5000)),
        debug=app.config['DEBUG']
    )
