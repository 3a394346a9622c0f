"""
Monitoring for the coach API: health checks and Sentry error tracking.
"""

import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

logger = logging.getLogger(__name__)


def init_sentry(dsn: Optional[str], environment: str = "development",
                traces_sample_rate: float = 0.1) -> bool:
    """Start Sentry error tracking when a DSN is configured."""
    if not dsn:
        logger.info("✗ SENTRY_DSN not set (error tracking disabled)")
        return False
    sentry_sdk.init(
        dsn=dsn,
        integrations=[FastApiIntegration()],
        traces_sample_rate=traces_sample_rate,
        environment=environment,
    )
    logger.info("✓ Sentry error tracking initialized")
    return True


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class HealthCheck:
    """Health check status aggregator."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.start_time = clock()
        self.checks: Dict[str, Dict[str, Any]] = {}

    def register(self, name: str, check_fn, critical: bool = False):
        """Register a health check function.

        Args:
            name: Check name (e.g., 'supabase', 'ai_provider', 'redis')
            check_fn: Async or sync function returning (is_healthy: bool, details: dict)
            critical: If True, a failure makes the whole service unhealthy
        """
        self.checks[name] = {"fn": check_fn, "critical": critical}

    async def run_all(self) -> Dict[str, Any]:
        """Run every check.

        Returns:
            {"status": healthy|degraded|unhealthy, "uptime_seconds", "timestamp", "services"}
        """
        results: Dict[str, Any] = {}
        critical_failed = False
        degraded = False

        for name, check in self.checks.items():
            try:
                outcome = check["fn"]()
                if inspect.isawaitable(outcome):
                    outcome = await outcome
                healthy, details = outcome
                results[name] = {"healthy": healthy, "details": details, "checked_at": _now()}
            except Exception as e:
                healthy = False
                results[name] = {"healthy": False, "error": str(e), "checked_at": _now()}
                logger.warning(f"Health check {name} failed: {e}")

            if not healthy:
                if check["critical"]:
                    critical_failed = True
                else:
                    degraded = True

        if critical_failed:
            status = "unhealthy"
        elif degraded:
            status = "degraded"
        else:
            status = "healthy"

        return {
            "status": status,
            "uptime_seconds": self._clock() - self.start_time,
            "timestamp": _now(),
            "services": results,
        }
