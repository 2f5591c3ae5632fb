"""
=============================================================================
LOGGING MIDDLEWARE
=============================================================================

Access log for the message server: one line per response sent.

=============================================================================
HOW IT HOOKS IN
=============================================================================

Global middleware sees every message twice:

    inbound(req, res)    stamp request id + start time on req.context
          │
          ▼
    ... routing, chain, handler calls res.send(...) ...
          │
          ▼
    outbound(res)        build RequestLog, emit it, tag res.headers

Register it before the codec. Outbound hooks run in registration order, so
the request id is added to the headers before the codec encodes them, and
the log line (built at send time) still sees the decoded method:

    server.use(LoggingMiddleware())
    server.use(CodecMiddleware())

=============================================================================
LOG FORMATS
=============================================================================

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ client-1:7777 d=3 [18/Oct/2026:10:55:36 +0000] "GET /ping" 200 1.2ms│
    └─────────────────────────────────────────────────────────────────────┘

    JSON (for log aggregators):
    {"request_id": "a1b2c3d4", "method": "GET", "route": "/ping",
     "address": "client-1", "port": 7777, "distance": 3, "status": 200,
     "duration_ms": 1.2, "timestamp": "..."}

A response sent without ``set_status`` is logged with status "-".

=============================================================================
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, TYPE_CHECKING

from .base import Middleware, MiddlewareResult

if TYPE_CHECKING:
    from ..message.request import Request
    from ..message.response import Response


# Namespaced so deployments can route access logs separately:
#   logging.getLogger("expserver.access").addHandler(file_handler)
logger = logging.getLogger("expserver.access")

REQUEST_ID_KEY = "request_id"
START_TIME_KEY = "started_at"


@dataclass
class RequestLog:
    """Structured log entry for one request/response pair."""

    request_id: str
    method: str
    route: str
    address: str
    port: int
    distance: float
    status: Optional[int]
    duration_ms: float
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "route": self.route,
            "address": self.address,
            "port": self.port,
            "distance": self.distance,
            "status": self.status,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        status = "-" if self.status is None else str(int(self.status))
        return (
            f'{self.address}:{self.port} d={self.distance} [{self.timestamp}] '
            f'"{self.method} {self.route}" {status} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware.

    Args:
        log_format: "text" or "json".
        include_request_id: Put the request id into response headers
                            (``request-id``) when headers are a mapping.
        log_level: Level for successful requests. Error statuses (>= 400)
                   are logged at WARNING.
        skip_routes: Routes not to log (e.g. ["/health"]).
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_routes: Optional[list] = None,
    ):
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_routes = set(skip_routes or [])

    def inbound(self, request: "Request", response: "Response") -> MiddlewareResult:
        # 8 hex chars is plenty to correlate lines within one server's log
        request.context.setdefault(REQUEST_ID_KEY, uuid.uuid4().hex[:8])
        request.context.setdefault(START_TIME_KEY, time.time())
        return True, None

    def outbound(self, response: "Response") -> None:
        request = response.request
        request_id = request.context.get(REQUEST_ID_KEY, "-")
        started = request.context.get(START_TIME_KEY, time.time())

        if self.include_request_id and isinstance(response.headers, dict):
            response.headers["request-id"] = request_id

        if request.route in self.skip_routes:
            return

        entry = RequestLog(
            request_id=request_id,
            method=request.method or "-",
            route=request.route,
            address=request.agent.address,
            port=request.agent.port,
            distance=request.agent.distance,
            status=response.status,
            duration_ms=(time.time() - started) * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        level = self.log_level
        if response.status is not None and int(response.status) >= 400:
            level = max(level, logging.WARNING)

        if self.log_format == "json":
            logger.log(level, json.dumps(entry.to_dict()))
        else:
            logger.log(level, entry.to_text())
