"""
=============================================================================
MIDDLEWARE
=============================================================================

Cross-cutting concerns that apply to every message, registered with
``server.use``:

    ┌─────────────────────────────────────────────────────────────────────┐
    │   inbound (before routing)          outbound (before each send)     │
    ├─────────────────────────────────────────────────────────────────────┤
    │   LoggingMiddleware   stamp id       log line, request-id header    │
    │   CodecMiddleware     decode         encode headers/arguments       │
    │   RateLimitMiddleware token bucket   -                              │
    └─────────────────────────────────────────────────────────────────────┘

Per-route pipelines (``server.on(route, method, *stages)``) are built from
the same module: see ``Chain`` in ``base.py``.

=============================================================================
"""

from .base import (
    Chain,
    FunctionMiddleware,
    Middleware,
    MiddlewareStack,
    function_middleware,
)
from .logging import LoggingMiddleware
from .rate_limit import RateLimitMiddleware

__all__ = [
    # Base classes
    "Middleware",
    "FunctionMiddleware",
    "MiddlewareStack",
    "Chain",
    "function_middleware",

    # Built-in middleware
    "LoggingMiddleware",
    "RateLimitMiddleware",
]
