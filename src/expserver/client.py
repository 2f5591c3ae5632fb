"""
=============================================================================
CLIENT
=============================================================================

The other half of a conversation with a server: send one request, wait for
its reply.

=============================================================================
WHAT COMES BACK
=============================================================================

    client                                         server
      │  (route, headers, body) ───────────────────► │
      │                                              │ set_status(400)
      │ ◄─────────── ("expServerStatus", headers, 400)
      │                                              │ send({...})
      │ ◄─────────── ("expServerResponse", headers, '{"error": ...}')
      ▼
    Reply(status=400, headers={...}, args=({"error": ...},))

Status messages are optional and may repeat; the last one wins. The
response message ends the exchange. Messages from other senders that
arrive while waiting are skipped.

Headers and response arguments are decoded with the codec when they are
strings. Values that do not decode are kept as they arrived.

=============================================================================
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .codec import CodecError, JSONCodec, PayloadCodec
from .core.transport import (
    EventSource,
    RESPONSE_KIND,
    STATUS_KIND,
    Transport,
    TransportSendError,
    TransportTimeout,
)


logger = logging.getLogger(__name__)


@dataclass
class Reply:
    """
    What a server sent back for one request.

    Attributes:
        status:  Last status received, or None if the server sent none.
        headers: Response headers (decoded when possible).
        args:    Response arguments after the headers (decoded when possible).
    """

    status: Optional[int] = None
    headers: Any = field(default_factory=dict)
    args: Tuple[Any, ...] = ()

    @property
    def body(self) -> Any:
        """First response argument, or None."""
        return self.args[0] if self.args else None

    @property
    def ok(self) -> bool:
        return self.status is None or 200 <= int(self.status) < 300


class Client:
    """
    Request/reply helper over a transport.

    Usage:
        network = LoopbackNetwork()
        client = Client(network.transport("client-1"))

        reply = client.request("server-1", 7777, "/ping", "GET")
        reply.body      # {"pong": True}

    Over ZeroMQ a client on the same host as the server needs its own
    port to receive replies on:

        client = Client(ZMQTransport("127.0.0.1"), port=7778)

    Args:
        transport: Network to send on.
        events: Where replies arrive. Defaults to ``transport.events()``.
        codec: Encodes headers/body, decodes replies. Defaults to JSON.
        port: Port to open for replies. Defaults to the destination port.
    """

    def __init__(
        self,
        transport: Transport,
        events: Optional[EventSource] = None,
        codec: Optional[PayloadCodec] = None,
        port: Optional[int] = None,
    ):
        self.transport = transport
        self.events = events or transport.events()
        self.codec = codec or JSONCodec()
        self.port = port

    def request(
        self,
        address: str,
        port: int,
        route: str,
        method: str,
        body: Any = None,
        headers: Optional[Dict[str, Any]] = None,
        timeout: float = 5.0,
    ) -> Reply:
        """
        Send a request and wait for the response message.

        Args:
            address: Server address.
            port: Server port.
            route: Route to call.
            method: Method header.
            body: Request body (encoded with the codec).
            headers: Extra headers. ``method`` is always set.
            timeout: Seconds to wait for the response message.

        Returns:
            The Reply.

        Raises:
            TransportSendError: If the transport refused the request.
            TransportTimeout: If no response message arrives in time.
        """
        if not self.transport.is_open:
            self.transport.open(self.port if self.port is not None else port)

        outgoing_headers = dict(headers or {})
        outgoing_headers["method"] = method

        sent = self.transport.send(
            address,
            port,
            route,
            self.codec.encode(outgoing_headers),
            self.codec.encode(body),
        )
        if not sent:
            raise TransportSendError(f"could not send {method} {route} to {address}:{port}")

        return self._await_reply(address, route, timeout)

    def _await_reply(self, address: str, route: str, timeout: float) -> Reply:
        reply = Reply()
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportTimeout(f"no response from {address} for {route} within {timeout}s")

            message = self.events.pull(timeout=remaining)
            if message is None:
                continue

            if message.address != address or not message.args:
                logger.debug(f"Skipping unrelated message from {message.address}:{message.port}")
                continue

            kind, rest = message.args[0], message.args[1:]

            if kind == STATUS_KIND and len(rest) >= 2:
                reply.headers = self._decode(rest[0])
                reply.status = rest[1]
            elif kind == RESPONSE_KIND:
                if rest:
                    reply.headers = self._decode(rest[0])
                reply.args = tuple(self._decode(arg) for arg in rest[1:])
                return reply
            else:
                logger.debug(f"Skipping {kind!r} message from {address}")

    def _decode(self, value: Any) -> Any:
        if not isinstance(value, (str, bytes)):
            return value
        try:
            return self.codec.decode(value)
        except CodecError:
            return value

    def close(self) -> None:
        self.transport.close()
