"""
Health check and monitoring endpoints.
"""
import time
from collections import Counter
from typing import Any, Dict

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from countries_api_server.config import settings
from countries_api_server.database import engine
from countries_api_server.gateway import utcnow
from countries_api_server.logging_config import get_logger

router = APIRouter(prefix="/api/v1", tags=["health"])
logger = get_logger("health")


class Metrics:
    """Request counters kept in process memory since startup"""

    def __init__(self):
        self.start_time = time.monotonic()
        self.status_counts: Counter = Counter()

    @property
    def request_count(self) -> int:
        return sum(self.status_counts.values())

    def record_request(self, status_code: int):
        self.status_counts[status_code] += 1

    def to_dict(self) -> Dict[str, Any]:
        uptime = time.monotonic() - self.start_time
        total = self.request_count
        return {
            "uptime_seconds": round(uptime, 2),
            "uptime_human": format_duration(uptime),
            "requests": {
                "total": total,
                "rate_per_second": round(total / uptime, 2) if uptime > 0 else 0,
                "unauthorized": self.status_counts[401],
                "server_errors": sum(c for s, c in self.status_counts.items() if s >= 500),
            },
        }


def format_duration(seconds: float) -> str:
    """Render a duration as e.g. ``2d 3h 4m 5s``, dropping leading zero units"""
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    parts = [(days, "d"), (hours, "h"), (minutes, "m")]
    while parts and parts[0][0] == 0:
        parts.pop(0)
    return " ".join(f"{value}{unit}" for value, unit in parts + [(secs, "s")])


metrics = Metrics()


def check_database() -> Dict[str, Any]:
    """Run ``SELECT 1`` and report how long it took"""
    started = time.perf_counter()
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).scalar()
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return {"status": "unhealthy", "error": str(e)}

    return {
        "status": "healthy",
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
    }


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 if service is running.
    """
    return {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "service": settings.app_name,
    }


@router.get("/ready")
def readiness_check():
    """
    Readiness check endpoint.
    Returns 200 only if the database answers.
    """
    checks = {"database": check_database()}
    is_ready = all(check.get("status") == "healthy" for check in checks.values())

    if not is_ready:
        logger.warning("readiness_check_failed", checks=checks)

    return JSONResponse(
        content={
            "ready": is_ready,
            "timestamp": utcnow().isoformat(),
            "checks": checks,
        },
        status_code=200 if is_ready else 503,
    )


@router.get("/metrics")
async def get_metrics():
    """Basic operational metrics: uptime and request counts."""
    return {
        "timestamp": utcnow().isoformat(),
        "metrics": metrics.to_dict(),
    }


@router.get("/version")
async def get_version():
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "features": {
            "uniform_auth_errors": settings.uniform_auth_errors,
            "cors": settings.cors_enabled,
        },
    }
