"""
=============================================================================
TRANSPORT BOUNDARY
=============================================================================

The server never touches sockets directly. It talks to two small
collaborators:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      TRANSPORT BOUNDARY                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Server run loop                                                   │
    │        │                    ▲                                        │
    │        │ open(port)         │ pull() -> InboundMessage              │
    │        │ send(addr, port,   │           (or Cancelled)              │
    │        │      kind, ...)    │                                        │
    │        ▼                    │                                        │
    │   ┌──────────────┐    ┌──────────────┐                              │
    │   │  Transport   │    │ EventSource  │                              │
    │   │ (send side)  │    │ (recv side)  │                              │
    │   └──────┬───────┘    └──────▲───────┘                              │
    │          │                   │                                       │
    │          ▼                   │                                       │
    │      ═══════════ message network (loopback, ZeroMQ) ═══════════     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A message on the network is addressed by (address, port) and carries an
ordered tuple of arguments. The receiver also learns the sender's address,
the port it was sent to, and a distance metric (signal strength on radio
style networks, always 0 on wired ones).

Delivery is best effort: no retries, no ordering across calls. A failed
send is reported by returning False, never by raising.

=============================================================================
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple


# =============================================================================
# MESSAGE KINDS
# =============================================================================
# First argument of every outbound message the server emits.

RESPONSE_KIND = "expServerResponse"
STATUS_KIND = "expServerStatus"


# =============================================================================
# EXCEPTIONS
# =============================================================================

class TransportError(Exception):
    """Base class for all transport-layer errors."""


class TransportPortError(TransportError):
    """The requested port could not be opened."""

    def __init__(self, message: str, port: Optional[int] = None):
        super().__init__(message)
        self.port = port


class TransportSendError(TransportError):
    """The transport refused to send (no route to the destination, queue full)."""


class TransportTimeout(TransportError):
    """No message arrived within the allowed time."""


class Cancelled(TransportError):
    """
    Raised by ``EventSource.pull`` after ``cancel()`` was called.

    The run loop treats this as the signal to leave the Listening state.
    """


# =============================================================================
# INBOUND MESSAGE
# =============================================================================

@dataclass
class InboundMessage:
    """
    One message pulled from the network.

    Attributes:
        address:  Sender's network identifier.
        port:     Sender's port. Replies are sent to (address, port).
        distance: Signal distance/metric reported by the network.
        args:     Message arguments. For a request these are
                  (route, headers, body).
    """

    address: str
    port: int
    distance: float = 0
    args: Tuple[Any, ...] = field(default_factory=tuple)

    @property
    def is_request(self) -> bool:
        """A request needs at least a route, headers and body."""
        return len(self.args) >= 3

    def as_request(self) -> Tuple[Any, Any, Any]:
        """
        Split the arguments into (route, headers, body).

        Raises:
            ValueError: If the message has fewer than three arguments.
        """
        if not self.is_request:
            raise ValueError(
                f"expected (route, headers, body), got {len(self.args)} argument(s)"
            )
        route, headers, body = self.args[:3]
        return route, headers, body


# =============================================================================
# CONTRACTS
# =============================================================================

class Transport(ABC):
    """
    Send side of the message network.

    Implementations must make ``open`` idempotent: the run loop calls it on
    every iteration.
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """This node's own network identifier."""

    @abstractmethod
    def open(self, port: int) -> None:
        """
        Start receiving on ``port``. Calling it again for an open port is a
        no-op.

        Raises:
            TransportPortError: If the port cannot be opened.
        """

    @abstractmethod
    def close(self) -> None:
        """Stop receiving and release resources."""

    @abstractmethod
    def send(self, address: str, port: int, *args: Any) -> bool:
        """
        Send ``args`` to ``(address, port)``.

        The receiver sees this node's ``address`` and its reply port: the
        port this transport has open, or ``port`` itself when none is.

        Returns:
            True if the network accepted the message, False otherwise.
        """

    @abstractmethod
    def events(self) -> "EventSource":
        """The event source delivering messages received by this transport."""

    @property
    def is_open(self) -> bool:
        return False


class EventSource(ABC):
    """Receive side of the message network."""

    @abstractmethod
    def pull(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        """
        Block until the next inbound message.

        Args:
            timeout: Seconds to wait. None waits forever.

        Returns:
            The message, or None if the timeout expired.

        Raises:
            Cancelled: If ``cancel()`` was called while waiting (or before).
        """

    @abstractmethod
    def cancel(self) -> None:
        """
        Wake a blocked ``pull`` so that it raises ``Cancelled``.

        The cancellation stays pending until ``reset()``; a ``pull`` issued
        after ``cancel()`` raises immediately.
        """

    def reset(self) -> None:
        """Clear a pending cancellation. Called when a run loop starts."""
