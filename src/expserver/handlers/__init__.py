"""
Ready-made listeners.

    HealthHandler   status, uptime and route table (GET /health)
"""

from .health import HealthHandler, HealthStatus

__all__ = ["HealthHandler", "HealthStatus"]
