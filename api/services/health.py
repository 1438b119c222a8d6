"""
Health Check Service

Reports the health of the integrity engine's dependencies (the key-value
store and the optional anchoring broker) together with basic host metrics.
"""

import os
import time
import psutil
from typing import Dict, Any
from opentelemetry import trace

from models.base import utc_now
from services.engine import IntegrityEngine

tracer = trace.get_tracer(__name__)

SERVICE_NAME = "relief-integrity-api"


class HealthCheckService:
    """Service for system health monitoring."""

    def __init__(self, engine: IntegrityEngine, service_version: str = "1.0.0"):
        self.engine = engine
        self.service_version = service_version

    def get_comprehensive_health(self) -> Dict[str, Any]:
        """Get health status including dependencies and host metrics."""
        with tracer.start_as_current_span("health.comprehensive_check") as span:
            start_time = time.monotonic()

            engine_health = self.engine.health_check()
            response_time_ms = round((time.monotonic() - start_time) * 1000, 2)

            health_data = {
                "status": engine_health["status"],
                "service": SERVICE_NAME,
                "version": self.service_version,
                "environment": os.getenv('ENVIRONMENT', 'development'),
                "timestamp": utc_now().isoformat(),
                "response_time_ms": response_time_ms,
                "dependencies": {
                    "store": engine_health["store"],
                    "anchoring": engine_health["anchoring"]
                },
                "system_metrics": self._get_system_metrics(),
                "configuration": self._get_configuration_status()
            }

            span.set_attributes({
                "health.overall_status": engine_health["status"],
                "health.response_time_ms": response_time_ms,
                "health.store_status": engine_health["store"].get("status", "unknown"),
                "health.store_backend": engine_health["store"].get("backend", "unknown")
            })

            return health_data

    def _get_system_metrics(self) -> Dict[str, Any]:
        """Get basic system performance metrics."""
        try:
            memory = psutil.virtual_memory()
            disk = psutil.disk_usage('/')
            process = psutil.Process(os.getpid())

            return {
                "cpu_percent": psutil.cpu_percent(interval=None),
                "memory": {
                    "used_mb": round(memory.used / 1024 / 1024, 2),
                    "total_mb": round(memory.total / 1024 / 1024, 2),
                    "percent": memory.percent
                },
                "disk": {
                    "used_gb": round(disk.used / 1024 / 1024 / 1024, 2),
                    "total_gb": round(disk.total / 1024 / 1024 / 1024, 2),
                    "percent": round((disk.used / disk.total) * 100, 2)
                },
                "process": {
                    "uptime_seconds": round(time.time() - process.create_time(), 2),
                    "threads": process.num_threads()
                },
                "load_average": list(os.getloadavg()) if hasattr(os, 'getloadavg') else None
            }
        except (psutil.Error, OSError) as e:
            return {
                "error": f"Failed to collect system metrics: {str(e)}"
            }

    def _get_configuration_status(self) -> Dict[str, Any]:
        config = self.engine.config
        return {
            "store_backend": self.engine.store.backend_name,
            "anchoring_enabled": self.engine.anchoring.enabled,
            "max_collision_attempts": config.max_collision_attempts,
            "reservation_ttl_seconds": config.reservation_ttl.total_seconds(),
            "cooldowns_seconds": config.cooldown_policy.to_dict(),
            "otel_enabled": os.getenv('OTEL_ENABLED', 'true').lower() == 'true'
        }
