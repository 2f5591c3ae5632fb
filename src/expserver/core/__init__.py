"""
=============================================================================
TRANSPORTS
=============================================================================

    transport.py      Transport / EventSource contracts, InboundMessage,
                      message kinds, transport errors
    loopback.py       In-process network (tests, embedding)
    zmq_transport.py  ZeroMQ over TCP

``zmq_transport`` is not imported here so that the package imports without
libzmq when only the loopback network is used.

=============================================================================
"""

from .transport import (
    RESPONSE_KIND,
    STATUS_KIND,
    Cancelled,
    EventSource,
    InboundMessage,
    Transport,
    TransportError,
    TransportPortError,
    TransportSendError,
    TransportTimeout,
)
from .loopback import LoopbackNetwork, LoopbackTransport

__all__ = [
    "RESPONSE_KIND",
    "STATUS_KIND",
    "Cancelled",
    "EventSource",
    "InboundMessage",
    "Transport",
    "TransportError",
    "TransportPortError",
    "TransportSendError",
    "TransportTimeout",
    "LoopbackNetwork",
    "LoopbackTransport",
]
