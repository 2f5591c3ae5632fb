"""
=============================================================================
EXPSERVER - Express-style Request Routing over a Message Network
=============================================================================

This package puts an Express-like programming model (routes, methods,
middleware chains, request/response objects) on top of a datagram-style
message network where every message is addressed by (address, port).

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      EXPSERVER ARCHITECTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. TRANSPORT                                                      │
    │      - Pluggable network: in-process loopback or ZeroMQ             │
    │      - Cancellable blocking receive                                 │
    │                                                                      │
    │   2. LISTENER REGISTRY                                              │
    │      - Exact (route, method) matching                               │
    │      - Persistent (on) and one-shot (once) listeners                │
    │                                                                      │
    │   3. MIDDLEWARE                                                     │
    │      - Global middleware with inbound and outbound hooks            │
    │      - Per-listener chains with next() continuation passing         │
    │                                                                      │
    │   4. REQUEST / RESPONSE                                             │
    │      - At-most-once send                                            │
    │      - Status sent as its own message ahead of the response         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    expserver/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m expserver)
    ├── server.py            # Server: registration, run loop, dispatch
    ├── client.py            # Client: send a request, collect the reply
    ├── codec.py             # JSON payload codec + codec middleware
    ├── config.py            # ServerConfig dataclass
    ├── core/                # Message network
    │   ├── transport.py     # Transport / EventSource contracts
    │   ├── loopback.py      # In-process network
    │   └── zmq_transport.py # ZeroMQ network
    ├── message/             # Request/response model
    │   ├── request.py       # Request, Agent
    │   ├── response.py      # Response (at-most-once send)
    │   ├── registry.py      # Listener registry + resolution
    │   └── status_codes.py  # Status enum
    ├── middleware/          # Middleware components
    │   ├── base.py          # Middleware ABC, stack, handler chains
    │   ├── logging.py       # Access log
    │   └── rate_limit.py    # Token bucket rate limiting
    └── handlers/
        └── health.py        # Health check listener

=============================================================================
QUICK START
=============================================================================

    from expserver import Server, ServerConfig, CodecMiddleware
    from expserver.middleware import LoggingMiddleware

    server = Server(ServerConfig(port=7777))
    server.use(LoggingMiddleware())
    server.use(CodecMiddleware())

    @server.route("/ping", "GET")
    def ping(req, res):
        res.send({"pong": True})

    def authenticate(req, res, next):
        if req.get_header("token") != "s3cret":
            res.set_status(401).send({"error": "Unauthorized"})
            return
        next()

    def create_user(req, res):
        res.set_status(201).send({"name": req.body["name"]})

    server.on("/users", "POST", authenticate, create_user)

    server.listen()

=============================================================================
"""

__version__ = "1.0.0"

from .server import DispatchInvariantError, Server, create_server
from .config import ServerConfig
from .client import Client, Reply
from .codec import CodecError, CodecMiddleware, JSONCodec
from .message import Request, Response, Status

__all__ = [
    "Server",
    "ServerConfig",
    "DispatchInvariantError",
    "create_server",
    "Client",
    "Reply",
    "CodecMiddleware",
    "CodecError",
    "JSONCodec",
    "Request",
    "Response",
    "Status",
    "__version__",
]
