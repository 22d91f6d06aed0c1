"""
Health and readiness endpoints for the storefront service.

Response shape follows the "Health Check Response Format for HTTP APIs"
draft used by the load balancer and Kubernetes probes.
"""

import logging
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import psutil
import redis
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("orders", "order_items", "site_settings")

# (fail below, warn below)
DISK_FREE_GB_LIMITS = (1, 5)
MEMORY_AVAILABLE_MB_LIMITS = (100, 500)


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def _now() -> str:
    return datetime.utcnow().isoformat() + "Z"


def check_result(
    status_val: HealthStatus,
    component: str,
    output: Optional[str] = None,
    observed: Optional[float] = None,
    unit: Optional[str] = None,
) -> Dict[str, Any]:
    result: Dict[str, Any] = {"status": status_val, "componentType": component}
    if output is not None:
        result["output"] = output
    if observed is not None:
        result["observedValue"] = f"{observed:.2f}"
        result["observedUnit"] = unit
    result["time"] = _now()
    return result


def _threshold_status(value: float, limits) -> HealthStatus:
    fail_below, warn_below = limits
    if value < fail_below:
        return HealthStatus.FAIL
    if value < warn_below:
        return HealthStatus.WARN
    return HealthStatus.PASS


class ServiceHealth:
    """
    Probes for the storefront API.

    The datastore is optional for this service (without it orders run in
    "number only" mode), so a missing engine is reported as WARN rather
    than FAIL. Missing gateway credentials fail the startup probe because
    online payments cannot work without them.
    """

    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        environment: str = "development",
        engine_provider: Optional[Callable[[], Optional[Engine]]] = None,
        redis_url: str = "",
        gateway_configured: Callable[[], bool] = lambda: True,
    ):
        self.service_name = service_name
        self.version = version
        self.environment = environment
        self.engine_provider = engine_provider or (lambda: None)
        self.redis_url = redis_url
        self.gateway_configured = gateway_configured
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            """Liveness for load balancers"""
            return {
                "success": True,
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "environment": self.environment,
                "timestamp": _now(),
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            """Dependency checks; 503 when any check fails"""
            checks = self.perform_readiness_checks()
            overall = self.calculate_overall_status(checks)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK,
                content={
                    "status": overall,
                    "version": self.version,
                    "serviceId": self.service_name,
                    "checks": checks,
                    "timestamp": _now(),
                },
            )

        @router.get("/health/startup")
        def startup() -> Any:
            """Schema present and gateway credentials loaded"""
            checks = self.perform_startup_checks()
            if self.calculate_overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks},
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": round(time.time() - self.start_time, 1),
                "checks_performed": self.checks_performed,
                "memory_rss_bytes": process.memory_info().rss,
                "num_threads": process.num_threads(),
                "timestamp": _now(),
            }

        return router

    def perform_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {"database:connectivity": self._check_database()}
        if self.redis_url:
            checks["cache:connectivity"] = self._check_redis()
        checks["storage:disk_space"] = self._check_disk_space()
        checks["system:memory"] = self._check_memory()
        return checks

    def perform_startup_checks(self) -> Dict[str, Dict[str, Any]]:
        return {
            "database:schema": self._check_schema(),
            "config:payment_gateway": self._check_gateway_config(),
        }

    def _check_database(self) -> Dict[str, Any]:
        engine = self.engine_provider()
        if engine is None:
            return check_result(HealthStatus.WARN, "datastore", "DATABASE_URL not configured; orders are not persisted")
        start = time.perf_counter()
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return check_result(HealthStatus.FAIL, "datastore", str(e))
        return check_result(HealthStatus.PASS, "datastore", observed=(time.perf_counter() - start) * 1000, unit="ms")

    def _check_redis(self) -> Dict[str, Any]:
        start = time.perf_counter()
        try:
            redis.from_url(self.redis_url, socket_connect_timeout=1).ping()
        except redis.RedisError as e:
            # rate limiting falls back to in-process counters
            return check_result(HealthStatus.WARN, "cache", str(e))
        return check_result(HealthStatus.PASS, "cache", observed=(time.perf_counter() - start) * 1000, unit="ms")

    def _check_disk_space(self) -> Dict[str, Any]:
        free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        return check_result(_threshold_status(free_gb, DISK_FREE_GB_LIMITS), "system", observed=free_gb, unit="GB")

    def _check_memory(self) -> Dict[str, Any]:
        available_mb = psutil.virtual_memory().available / (1024 ** 2)
        return check_result(
            _threshold_status(available_mb, MEMORY_AVAILABLE_MB_LIMITS), "system", observed=available_mb, unit="MB"
        )

    def _check_schema(self) -> Dict[str, Any]:
        """Order tables must exist before checkout is accepted"""
        engine = self.engine_provider()
        if engine is None:
            return check_result(HealthStatus.WARN, "datastore", "DATABASE_URL not configured")
        try:
            existing = set(inspect(engine).get_table_names())
        except SQLAlchemyError as e:
            return check_result(HealthStatus.FAIL, "datastore", str(e))
        missing = [t for t in REQUIRED_TABLES if t not in existing]
        if missing:
            return check_result(HealthStatus.FAIL, "datastore", f"Missing tables: {', '.join(missing)}")
        return check_result(HealthStatus.PASS, "datastore")

    def _check_gateway_config(self) -> Dict[str, Any]:
        if not self.gateway_configured():
            return check_result(
                HealthStatus.FAIL,
                "configuration",
                "Missing environment variables: RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET",
            )
        return check_result(HealthStatus.PASS, "configuration")

    @staticmethod
    def calculate_overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
