"""
=============================================================================
LOOPBACK TRANSPORT
=============================================================================

An in-process message network. Every ``LoopbackTransport`` attached to the
same ``LoopbackNetwork`` can reach every other one by address and port.

    network = LoopbackNetwork()
    server_side = network.transport("server")
    client_side = network.transport("client")

    server_side.open(7777)
    client_side.open(7777)

    client_side.send("server", 7777, "/ping", {"method": "GET"}, None)
    message = server_side.events().pull(timeout=1.0)
    # message.address == "client", message.args == ("/ping", {...}, None)

Used by the test suite and by anything that wants to embed a server and its
clients in one process. Arguments are delivered as-is (no serialization),
so structured values only reach the far side un-encoded if no codec
middleware is installed.

=============================================================================
"""

import itertools
import logging
import threading
import time
from collections import deque
from typing import Any, Deque, Dict, Optional, Set, Tuple

from .transport import (
    Cancelled,
    EventSource,
    InboundMessage,
    Transport,
    TransportPortError,
)


logger = logging.getLogger(__name__)

_anonymous = itertools.count(1)
_instance_lock = threading.Lock()


class LoopbackEventSource(EventSource):
    """Condition-variable backed inbox of one loopback transport."""

    def __init__(self):
        self._inbox: Deque[InboundMessage] = deque()
        self._cond = threading.Condition()
        self._cancelled = False

    def deliver(self, message: InboundMessage) -> None:
        with self._cond:
            self._inbox.append(message)
            self._cond.notify_all()

    def pull(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._cancelled:
                    raise Cancelled("event source cancelled")
                if self._inbox:
                    return self._inbox.popleft()
                if deadline is None:
                    self._cond.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                self._cond.wait(remaining)

    def cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def reset(self) -> None:
        with self._cond:
            self._cancelled = False

    def __len__(self) -> int:
        with self._cond:
            return len(self._inbox)


class LoopbackTransport(Transport):
    """One node on a ``LoopbackNetwork``."""

    def __init__(self, network: "LoopbackNetwork", address: str):
        self._network = network
        self._address = address
        self._ports: Set[int] = set()
        self._events = LoopbackEventSource()

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_open(self) -> bool:
        return bool(self._ports)

    @property
    def ports(self) -> Set[int]:
        return set(self._ports)

    def open(self, port: int) -> None:
        if port in self._ports:
            return
        self._network._attach(self, port)
        self._ports.add(port)
        logger.debug(f"{self._address} opened port {port}")

    def close(self) -> None:
        for port in list(self._ports):
            self._network._detach(self, port)
        self._ports.clear()

    def send(self, address: str, port: int, *args: Any) -> bool:
        reply_port = min(self._ports) if self._ports else port
        return self._network._deliver(self._address, reply_port, address, port, args)

    def events(self) -> LoopbackEventSource:
        return self._events

    def __repr__(self) -> str:
        return f"LoopbackTransport({self._address!r}, ports={sorted(self._ports)})"


class LoopbackNetwork:
    """
    Registry of loopback transports keyed by (address, port).

    ``LoopbackNetwork.instance()`` is the process-wide network. A server
    built from ``ServerConfig(transport="loopback")`` attaches to it, so
    clients reach that server through the same instance:

        server = Server(ServerConfig(address="server", transport="loopback"))
        client = Client(LoopbackNetwork.instance().transport("client-1"))

    Args:
        distance: Distance metric reported with every delivered message.
    """

    _instance: Optional["LoopbackNetwork"] = None

    def __init__(self, distance: float = 0):
        self.distance = distance
        self._endpoints: Dict[Tuple[str, int], LoopbackTransport] = {}
        self._lock = threading.Lock()
        self.sent_count = 0
        self.dropped_count = 0

    @classmethod
    def instance(cls) -> "LoopbackNetwork":
        """The shared process-wide network, created on first use."""
        with _instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def transport(self, address: Optional[str] = None) -> LoopbackTransport:
        """Create a transport on this network. Anonymous nodes get "node-N"."""
        return LoopbackTransport(self, address or f"node-{next(_anonymous)}")

    def _attach(self, transport: LoopbackTransport, port: int) -> None:
        key = (transport.address, port)
        with self._lock:
            owner = self._endpoints.get(key)
            if owner is not None and owner is not transport:
                raise TransportPortError(
                    f"{transport.address}:{port} is already open", port=port
                )
            self._endpoints[key] = transport

    def _detach(self, transport: LoopbackTransport, port: int) -> None:
        key = (transport.address, port)
        with self._lock:
            if self._endpoints.get(key) is transport:
                del self._endpoints[key]

    def _deliver(
        self,
        sender: str,
        reply_port: int,
        address: str,
        port: int,
        args: Tuple[Any, ...],
    ) -> bool:
        with self._lock:
            target = self._endpoints.get((address, port))
            if target is None:
                self.dropped_count += 1
            else:
                self.sent_count += 1

        if target is None:
            logger.debug(f"No endpoint at {address}:{port}, dropping message from {sender}")
            return False

        target.events().deliver(
            InboundMessage(
                address=sender,
                port=reply_port,
                distance=self.distance,
                args=tuple(args),
            )
        )
        return True
