"""
=============================================================================
MESSAGE SERVER
=============================================================================

Express-style request routing on top of a message network.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      SERVER ARCHITECTURE                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │                        ┌─────────────────┐                          │
    │                        │     Server      │                          │
    │                        │ (run loop +     │                          │
    │                        │  dispatch)      │                          │
    │                        └────────┬────────┘                          │
    │                                 │                                    │
    │            ┌────────────────────┼────────────────────┐              │
    │            │                    │                    │              │
    │            ▼                    ▼                    ▼              │
    │    ┌──────────────┐    ┌──────────────┐    ┌──────────────┐        │
    │    │  Transport   │    │  Middleware  │    │   Listener   │        │
    │    │ EventSource  │    │    Stack     │    │   Registry   │        │
    │    │ (network)    │    │ (use)        │    │ (on / once)  │        │
    │    └──────────────┘    └──────────────┘    └──────────────┘        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
REQUEST FLOW
=============================================================================

    1. PULL
       └── EventSource yields (address, port, distance, route, headers, body)

    2. BUILD
       └── Request snapshot + paired Response (sent=False)

    3. GLOBAL MIDDLEWARE (every entry, in order)
       └── (False, msg) → status 500, {"error": msg or "An error occurred."}

    4. ROUTE CHECK
       └── unknown route → status 400, {"error": "Route does not exist."}

    5. METHOD RESOLUTION
       └── failure → status 400, {"error": "No method provided" | "No listener ..."}

    6. CHAIN
       └── once-listener removed first, then stages run via next()

Steps 3 to 5 do not short-circuit each other. Each failing step tries to
reply; the Response accepts only the first send, so the client sees the
first error and the later attempts are no-ops.

=============================================================================
STATE MACHINE
=============================================================================

    Stopped ──listen(port)──► Listening ──stop() / Cancelled──► Stopped

One message is dispatched per loop iteration, on the thread that called
``listen``. ``stop()`` may be called from a handler or from another thread;
it clears the flag and cancels the event source so a blocked wait returns.

=============================================================================
"""

import logging
import threading
from typing import Any, Callable, Optional, Tuple

from .config import ServerConfig
from .core.transport import Cancelled, EventSource, InboundMessage, Transport
from .message.registry import ListenerEntry, ListenerRegistry, Stage
from .message.request import Request
from .message.response import Response
from .message.status_codes import Status
from .middleware.base import Chain, Middleware, MiddlewareStack


logger = logging.getLogger(__name__)


# =============================================================================
# ERROR MESSAGES SENT TO CLIENTS
# =============================================================================

MIDDLEWARE_ERROR = "An error occurred."
ROUTE_NOT_FOUND = "Route does not exist."
HANDLER_ERROR = "Internal server error."


class DispatchInvariantError(RuntimeError):
    """
    Resolution reported success but produced no listener.

    This is a bug in the registry, not a client error, so it is never turned
    into a reply: it propagates out of ``dispatch`` and ``listen``.
    """


def build_transport(config: ServerConfig) -> Transport:
    """
    Create the transport named by ``config.transport``.

    The ZeroMQ backend is imported lazily so that loopback-only users do
    not need a working libzmq. The loopback backend attaches to the shared
    ``LoopbackNetwork.instance()``.
    """
    if config.transport == "zmq":
        from .core.zmq_transport import ZMQTransport

        return ZMQTransport(
            address=config.address,
            bind=config.bind,
            send_timeout_ms=config.send_timeout_ms,
        )

    if config.transport == "loopback":
        from .core.loopback import LoopbackNetwork

        return LoopbackNetwork.instance().transport(config.address)

    raise ValueError(f"Unknown transport: {config.transport!r}")


class Server:
    """
    Request-routing server.

    =========================================================================
    USAGE
    =========================================================================

        server = Server(ServerConfig(port=7777))

        server.use(LoggingMiddleware())
        server.use(CodecMiddleware())

        @server.route("/ping", "GET")
        def ping(req, res):
            res.send({"pong": True})

        def require_token(req, res, next):
            if req.get_header("token") != "s3cret":
                res.set_status(401).send({"error": "Unauthorized"})
                return
            next()

        server.on("/admin/reset", "POST", require_token, reset_handler)
        server.once("/setup", "POST", first_boot)

        server.listen()          # blocks until stop()

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        transport: Optional[Transport] = None,
        events: Optional[EventSource] = None,
    ):
        """
        Args:
            config: Server configuration. Defaults are used if omitted.
            transport: Network to send on. Built from ``config.transport``
                       if omitted (and then closed when ``listen`` exits).
            events: Source of inbound messages. Defaults to
                    ``transport.events()``.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._owns_transport = transport is None
        self.transport: Transport = transport or build_transport(self.config)
        self.events: EventSource = events or self.transport.events()

        self._registry = ListenerRegistry()
        self._middleware = MiddlewareStack()

        self._listening = False
        self._port: Optional[int] = None
        self._state_lock = threading.Lock()

        self.dispatched_count = 0

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, middleware: Any) -> "Server":
        """
        Add global middleware.

        Args:
            middleware: A ``Middleware`` instance, or a function
                        ``fn(req, res) -> (continue, message)``.

        Returns:
            Self for method chaining.
        """
        self._middleware.add(middleware)
        return self

    def on(self, route: str, method: str, *handlers: Stage) -> ListenerEntry:
        """
        Register a listener.

        Args:
            route: Exact route to match.
            method: Exact method to match.
            *handlers: Chain stages. Every stage but the last should accept
                       ``(req, res, next)``.

        Returns:
            The registry entry (pass it to ``off`` to unregister).

        Raises:
            ValueError: If no handlers are given.
        """
        return self._register(route, method, handlers, once=False)

    def once(self, route: str, method: str, *handlers: Stage) -> ListenerEntry:
        """Like ``on``, but the listener is removed the first time it runs."""
        return self._register(route, method, handlers, once=True)

    def off(self, entry: ListenerEntry) -> bool:
        """Unregister a listener. Returns False if it was already gone."""
        return self._registry.remove(entry)

    def route(self, route: str, method: str, once: bool = False) -> Callable[[Stage], Stage]:
        """
        Decorator form of ``on`` / ``once`` for single-stage listeners.

            @server.route("/ping", "GET")
            def ping(req, res):
                res.send({"pong": True})
        """
        def decorator(handler: Stage) -> Stage:
            self._register(route, method, (handler,), once=once)
            return handler
        return decorator

    def _register(
        self,
        route: str,
        method: str,
        handlers: Tuple[Stage, ...],
        once: bool,
    ) -> ListenerEntry:
        if not handlers:
            raise ValueError(f"no handlers given for {method} {route}")
        chain = Chain(handlers)
        return self._registry.register(route, method, chain.stages, once=once)

    @property
    def registry(self) -> ListenerRegistry:
        return self._registry

    @property
    def middleware(self) -> MiddlewareStack:
        return self._middleware

    def middleware_snapshot(self) -> Tuple[Middleware, ...]:
        """Global middleware at this moment, in registration order."""
        return self._middleware.snapshot()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def port(self) -> Optional[int]:
        return self._port

    def listen(self, port: Optional[int] = None) -> "Server":
        """
        Run the server loop (blocking).

        Returns when ``stop()`` is called or the event source is cancelled.

        Args:
            port: Port to open. Defaults to ``config.port``.

        Returns:
            Self.

        Raises:
            TransportPortError: If the port cannot be opened.
            DispatchInvariantError: On a registry resolution bug.
        """
        port = port if port is not None else self.config.port

        with self._state_lock:
            if self._listening:
                raise RuntimeError(f"server is already listening on {self._port}")
            self._listening = True
            self._port = port

        self._setup_logging()
        self.events.reset()
        logger.info(
            f"{self.config.server_name} listening on {self.transport.address}:{port} "
            f"({len(self._registry)} listeners, {len(self._middleware)} middleware)"
        )
        if self._registry:
            logger.debug("Registered listeners:\n" + self._registry.describe())

        try:
            self._run(port)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._listening = False
            logger.info(f"Server on port {port} stopped ({self.dispatched_count} messages dispatched)")
            if self._owns_transport:
                self.close()

        return self

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        logging.getLogger("expserver").setLevel(level)

    def _run(self, port: int) -> None:
        while self._listening:
            self.transport.open(port)

            try:
                message = self.events.pull(timeout=self.config.poll_timeout)
            except Cancelled:
                logger.debug("Event source cancelled")
                break

            if message is None:
                continue

            self.dispatch(message)

    def stop(self) -> None:
        """
        Request loop termination.

        Takes effect at the next message boundary, or immediately if the
        loop is blocked waiting for a message.
        """
        if not self._listening:
            return
        logger.info("Stopping server...")
        self._listening = False
        self.events.cancel()

    def close(self) -> None:
        """Release the transport."""
        self.stop()
        self.transport.close()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def dispatch(self, message: InboundMessage) -> Optional[Response]:
        """
        Run one dispatch cycle for an inbound message.

        Returns:
            The Response used for the cycle, or None if the message was not
            a request.

        Raises:
            DispatchInvariantError: On a registry resolution bug.
        """
        if not message.is_request:
            logger.warning(
                f"Dropping message from {message.address}:{message.port}: "
                f"expected (route, headers, body), got {len(message.args)} argument(s)"
            )
            return None

        route, headers, body = message.as_request()
        request = Request.new(
            self, message.address, message.port, message.distance, route, headers, body
        )
        response = Response.new(self, request)
        self.dispatched_count += 1

        self.handle(request, response)
        return response

    def handle(self, request: Request, response: Response) -> None:
        """Dispatch an already-built request/response pair."""
        # ─────────────────────────────────────────────────────────────────
        # GLOBAL MIDDLEWARE
        # ─────────────────────────────────────────────────────────────────
        def reject(middleware: Middleware, message: Optional[str]) -> None:
            logger.debug(f"{middleware.name} rejected {request.route}: {message}")
            self._reply_error(response, Status.INTERNAL_SERVER_ERROR, message or MIDDLEWARE_ERROR)

        self._middleware.run_inbound(request, response, reject)

        # ─────────────────────────────────────────────────────────────────
        # ROUTE / METHOD VALIDATION
        # ─────────────────────────────────────────────────────────────────
        if not self._registry.validate_route(request.route):
            self._reply_error(response, Status.BAD_REQUEST, ROUTE_NOT_FOUND)

        ok, resolved = self._registry.resolve(request.headers, request.route)
        if not ok:
            self._reply_error(response, Status.BAD_REQUEST, resolved)
            return

        if not isinstance(resolved, ListenerEntry):
            raise DispatchInvariantError("Unknown error occurred.")

        # ─────────────────────────────────────────────────────────────────
        # LISTENER CHAIN
        # ─────────────────────────────────────────────────────────────────
        entry = resolved
        if entry.once:
            self._registry.remove(entry)

        try:
            Chain(entry.chain).run(request, response)
        except Exception:
            logger.exception(f"Handler error on {entry.method} {entry.route}")
            if not response.sent:
                self._reply_error(response, Status.INTERNAL_SERVER_ERROR, HANDLER_ERROR)

    def _reply_error(self, response: Response, status: int, message: str) -> bool:
        """
        Send ``status`` then ``{"error": message}``.

        No-op (returns False) once the response has been sent.
        """
        with_status = response.set_status(status)
        if with_status is False:
            return False
        return with_status.send({"error": message})

    def __repr__(self) -> str:
        state = "listening" if self._listening else "stopped"
        return f"<Server {self.transport.address}:{self._port} {state} listeners={len(self._registry)}>"


def create_server(
    config: Optional[ServerConfig] = None,
    transport: Optional[Transport] = None,
) -> Server:
    """
    Factory for server instances.

        app = create_server(ServerConfig(port=9000))

        @app.route("/", "GET")
        def index(req, res):
            res.send({"hello": "world"})

        app.listen()
    """
    return Server(config, transport=transport)
