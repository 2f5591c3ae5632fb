"""
=============================================================================
HEALTH CHECK HANDLER
=============================================================================

A ready-made listener that reports whether the server is up and what it is
serving. Monitoring agents call it like any other route:

    client.request("server-1", 7777, "/health", "GET")

=============================================================================
RESPONSE FORMAT
=============================================================================

    Healthy (status 200):
    {
        "status": "healthy",
        "uptime_seconds": 3600,
        "listeners": 4,
        "routes": [["GET", "/ping"], ["GET", "/health"], ...],
        "checks": {"sensor": {"status": "healthy", "message": "OK"}}
    }

    Unhealthy (status 503): same shape, "status": "unhealthy".

"checks" is present only when checks were added.

=============================================================================
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, TYPE_CHECKING

from ..message.registry import ListenerEntry
from ..message.status_codes import Status

if TYPE_CHECKING:
    from ..message.request import Request
    from ..message.response import Response
    from ..server import Server


logger = logging.getLogger(__name__)


@dataclass
class HealthStatus:
    """
    Result of one health check.

        def check_sensor():
            if sensor.responding():
                return HealthStatus(healthy=True)
            return HealthStatus(healthy=False, message="No reading for 30s")
    """

    healthy: bool
    message: str = "OK"
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "message": self.message,
            **self.details,
        }


HealthCheck = Callable[[], HealthStatus]


class HealthHandler:
    """
    Health check listener.

    Usage:
        health = HealthHandler(server)
        health.add_check("sensor", check_sensor)
        health.register()                 # GET /health

    Args:
        server: The server to report on.
        include_routes: Include the (method, route) table in the reply.
    """

    def __init__(self, server: "Server", include_routes: bool = True):
        self.server = server
        self.include_routes = include_routes
        self._checks: Dict[str, HealthCheck] = {}
        self._start_time = time.time()

    def add_check(self, name: str, check: HealthCheck) -> "HealthHandler":
        """Add a named check. Returns self for chaining."""
        self._checks[name] = check
        return self

    def register(self, route: str = "/health", method: str = "GET") -> ListenerEntry:
        """Register ``handle`` on the server."""
        return self.server.on(route, method, self.handle)

    def handle(self, request: "Request", response: "Response") -> None:
        results = {}
        all_healthy = True

        for name, check in self._checks.items():
            try:
                status = check()
                results[name] = status.to_dict()
                if not status.healthy:
                    all_healthy = False
            except Exception as e:
                logger.warning(f"Health check {name!r} raised: {e}")
                results[name] = {"status": "unhealthy", "error": str(e)}
                all_healthy = False

        registry = self.server.registry
        payload: Dict[str, Any] = {
            "status": "healthy" if all_healthy else "unhealthy",
            "uptime_seconds": int(time.time() - self._start_time),
            "listeners": len(registry),
        }
        if self.include_routes:
            payload["routes"] = [list(pair) for pair in registry.routes()]
        if results:
            payload["checks"] = results

        status = Status.OK if all_healthy else Status.SERVICE_UNAVAILABLE
        with_status = response.set_status(status)
        if with_status is not False:
            with_status.send(payload)
