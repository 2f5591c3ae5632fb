"""
=============================================================================
REQUEST
=============================================================================

A Request is the server-side snapshot of one inbound message.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    InboundMessage              Request                    Handler chain
    from event source ──build──► dataclass ──dispatch──►   stage(req, res, next)
         │                         │
    ("client-1", 7777, 3,     Request(
     "/ping",                    agent=Agent("client-1", 7777, 3),
     '{"method": "GET"}',        route="/ping",
     'null')                     headers='{"method": "GET"}',   ← raw until the
                                 body='null')                     codec decodes it

One Request is built per inbound message and dropped once dispatch returns.
Nothing in the framework mutates it after construction except the codec
middleware, which replaces raw ``headers``/``body`` payloads with their
decoded values on the first pass through the chain.

``server``, ``agent`` and ``route`` identify the message and are read-only
once the Request is built. ``headers``, ``body`` and ``context`` stay writable.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from ..server import Server


_READ_ONLY = frozenset({"server", "agent", "route"})


@dataclass(frozen=True)
class Agent:
    """
    Sender metadata.

    Attributes:
        address:  Sender's network identifier (reply destination).
        port:     Sender's port (reply destination).
        distance: Signal distance/metric reported by the network.
    """

    address: str
    port: int
    distance: float = 0


@dataclass
class Request:
    """
    One inbound message plus sender metadata.

    Attributes:
        server:  The server dispatching this request (non-owning).
        agent:   Who sent it.
        route:   Route string, matched exactly against the registry.
        headers: Decoded mapping, or the raw payload before decoding.
        body:    Decoded value, or the raw payload before decoding.
        context: Scratch space for middleware during this dispatch
                 (request ids, timings, auth results, ...).
    """

    server: Optional["Server"]
    agent: Agent
    route: str
    headers: Any = None
    body: Any = None
    context: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __setattr__(self, name: str, value: Any) -> None:
        # Set once by __init__, then fixed.
        if name in _READ_ONLY and name in self.__dict__:
            raise AttributeError(f"Request.{name} is read-only")
        super().__setattr__(name, value)

    @classmethod
    def new(
        cls,
        server: Optional["Server"],
        address: str,
        port: int,
        distance: float,
        route: str,
        headers: Any,
        body: Any,
    ) -> "Request":
        """Build a request from the fields of one inbound message."""
        return cls(
            server=server,
            agent=Agent(address=address, port=port, distance=distance),
            route=route,
            headers=headers,
            body=body,
        )

    @property
    def method(self) -> Optional[str]:
        """
        The ``method`` header, or None.

        Raw (undecoded) headers have no method: only a mapping can carry one.
        """
        if isinstance(self.headers, Mapping):
            return self.headers.get("method")
        return None

    @property
    def is_decoded(self) -> bool:
        """False while headers or body are still raw wire payloads."""
        return not isinstance(self.headers, (str, bytes)) and not isinstance(
            self.body, (str, bytes)
        )

    def get_header(self, name: str, default: Any = None) -> Any:
        """Look up a header, tolerating raw headers."""
        if isinstance(self.headers, Mapping):
            return self.headers.get(name, default)
        return default
