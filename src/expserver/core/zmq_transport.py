"""
=============================================================================
ZEROMQ TRANSPORT
=============================================================================

Runs the message network over ZeroMQ so servers and clients can live in
different processes or on different hosts.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                       SOCKET LAYOUT                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   node A                                  node B                    │
    │   ┌───────────────────┐                   ┌───────────────────┐     │
    │   │ PUSH (per dest) ──┼── tcp://B:port ──►│ PULL bound :port  │     │
    │   │                   │                   │                   │     │
    │   │ PULL bound :port ◄┼── tcp://A:port ───┼── PUSH (per dest) │     │
    │   └───────────────────┘                   └───────────────────┘     │
    │                                                                      │
    │   Each PULL socket shares a poller with an inproc PAIR socket;      │
    │   cancel() writes to the PAIR to wake a blocked pull().             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
FRAMING
=============================================================================

    frame 0   sender address     (utf-8)
    frame 1   sender reply port  (ascii decimal)
    frame 2+  one JSON document per message argument

JSON per frame keeps scalar types intact (a status of 400 arrives as an
int, a missing body as None). Headers and bodies are normally already
strings by the time they get here because the codec middleware encodes
them first.

Sends never block: a destination whose queue is full makes ``send`` return
False. Set ``send_timeout_ms`` to wait that long instead.

=============================================================================
"""

import itertools
import json
import logging
import socket as pysocket
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import zmq

from .transport import (
    Cancelled,
    EventSource,
    InboundMessage,
    Transport,
    TransportPortError,
)


logger = logging.getLogger(__name__)

_instances = itertools.count(1)


def to_frames(address: str, reply_port: int, args: Sequence[Any]) -> List[bytes]:
    """
    Encode one message as multipart frames.

    Raises:
        TypeError: If an argument is not JSON serializable.
    """
    frames = [address.encode("utf-8"), str(reply_port).encode("ascii")]
    for arg in args:
        frames.append(json.dumps(arg).encode("utf-8"))
    return frames


def from_frames(parts: Sequence[bytes], distance: float = 0) -> InboundMessage:
    """
    Decode multipart frames into an ``InboundMessage``.

    Raises:
        ValueError: If the frames are not a well-formed message.
    """
    if len(parts) < 2:
        raise ValueError(f"expected at least 2 frames, got {len(parts)}")

    address = parts[0].decode("utf-8")
    port = int(parts[1])
    args = tuple(json.loads(part) for part in parts[2:])
    return InboundMessage(address=address, port=port, distance=distance, args=args)


class ZMQEventSource(EventSource):
    """Polls the owning transport's PULL socket and a cancellation PAIR."""

    def __init__(self, transport: "ZMQTransport"):
        self._transport = transport
        self._cancelled = threading.Event()
        self._generations = itertools.count(1)
        self._signal_rx: Optional[zmq.Socket] = None
        self._signal_tx: Optional[zmq.Socket] = None
        self._open_signals()

    def _open_signals(self) -> None:
        """
        Create the cancel signal pair.

        Called again after ``close()``. Each pair gets a fresh inproc
        endpoint so it never races the teardown of the previous one.
        """
        context = self._transport.context
        internal = (
            f"inproc://expserver.events:{self._transport.instance}:{next(self._generations)}"
        )
        self._signal_rx = context.socket(zmq.PAIR)
        self._signal_rx.setsockopt(zmq.LINGER, 0)
        self._signal_rx.bind(internal)
        self._signal_tx = context.socket(zmq.PAIR)
        self._signal_tx.setsockopt(zmq.LINGER, 0)
        self._signal_tx.connect(internal)

    @property
    def closed(self) -> bool:
        return self._signal_rx is None

    def ensure_open(self) -> None:
        if self._signal_rx is None:
            self._open_signals()

    def pull(self, timeout: Optional[float] = None) -> Optional[InboundMessage]:
        if self._cancelled.is_set():
            raise Cancelled("event source cancelled")
        self.ensure_open()

        poller = zmq.Poller()
        poller.register(self._signal_rx, zmq.POLLIN)
        receiver = self._transport._receiver
        if receiver is not None:
            poller.register(receiver, zmq.POLLIN)

        wait_ms = None if timeout is None else int(timeout * 1000)
        events = dict(poller.poll(wait_ms))

        if self._signal_rx in events:
            self._drain_signals()
            raise Cancelled("event source cancelled")

        if receiver is None or receiver not in events:
            return None

        parts = receiver.recv_multipart()
        try:
            return from_frames(parts, distance=self._transport.distance)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping malformed message ({len(parts)} frames): {e}")
            return None

    def cancel(self) -> None:
        self._cancelled.set()
        # Closed sources have no poller to wake; the flag is checked on pull.
        if self._signal_tx is not None:
            self._signal_tx.send(b"")

    def reset(self) -> None:
        self._cancelled.clear()
        self.ensure_open()
        self._drain_signals()

    def _drain_signals(self) -> None:
        while True:
            try:
                self._signal_rx.recv(flags=zmq.NOBLOCK)
            except zmq.Again:
                return

    def close(self) -> None:
        if self._signal_rx is None:
            return
        self._signal_tx.close()
        self._signal_rx.close()
        self._signal_tx = None
        self._signal_rx = None


class ZMQTransport(Transport):
    """
    ZeroMQ-backed node.

    Args:
        address:         Identifier other nodes use to reach this one.
                         Defaults to the fully qualified host name.
        bind:            Interface the PULL socket binds to ("*" = all).
        distance:        Distance reported for every received message.
        send_timeout_ms: 0 = never block on send; > 0 = block up to this long.
        context:         ZeroMQ context. Defaults to the process-wide instance.
    """

    def __init__(
        self,
        address: Optional[str] = None,
        bind: str = "*",
        distance: float = 0,
        send_timeout_ms: int = 0,
        context: Optional[zmq.Context] = None,
    ):
        self._address = address or pysocket.getfqdn()
        self.bind = bind
        self.distance = distance
        self.send_timeout_ms = send_timeout_ms
        self.context = context or zmq.Context.instance()
        self.instance = next(_instances)

        self._port: Optional[int] = None
        self._receiver: Optional[zmq.Socket] = None
        self._senders: Dict[Tuple[str, int], zmq.Socket] = {}
        self._lock = threading.Lock()
        self._events = ZMQEventSource(self)

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_open(self) -> bool:
        return self._receiver is not None

    @property
    def port(self) -> Optional[int]:
        return self._port

    def open(self, port: int) -> None:
        if self._receiver is not None:
            if port != self._port:
                logger.warning(
                    f"Transport already open on {self._port}, ignoring open({port})"
                )
            return

        self._events.ensure_open()
        receiver = self.context.socket(zmq.PULL)
        receiver.setsockopt(zmq.LINGER, 0)
        try:
            receiver.bind(f"tcp://{self.bind}:{port}")
        except zmq.ZMQError as e:
            receiver.close()
            raise TransportPortError(f"port unavailable: {port} ({e})", port=port) from e

        self._receiver = receiver
        self._port = port
        logger.debug(f"Bound tcp://{self.bind}:{port} as {self._address}")

    def close(self) -> None:
        with self._lock:
            for sender in self._senders.values():
                sender.close()
            self._senders.clear()
        if self._receiver is not None:
            self._receiver.close()
            self._receiver = None
            self._port = None
        self._events.close()

    def send(self, address: str, port: int, *args: Any) -> bool:
        reply_port = self._port if self._port is not None else port
        try:
            frames = to_frames(self._address, reply_port, args)
        except TypeError as e:
            logger.error(f"Cannot encode message for {address}:{port}: {e}")
            return False

        flags = 0 if self.send_timeout_ms > 0 else zmq.NOBLOCK
        with self._lock:
            sender = self._sender(address, port)
            try:
                sender.send_multipart(frames, flags=flags)
            except zmq.Again:
                logger.warning(f"Send queue to {address}:{port} is full, message dropped")
                return False
            except zmq.ZMQError as e:
                logger.error(f"Send to {address}:{port} failed: {e}")
                return False
        return True

    def events(self) -> ZMQEventSource:
        return self._events

    def _sender(self, address: str, port: int) -> zmq.Socket:
        key = (address, int(port))
        sender = self._senders.get(key)
        if sender is None:
            sender = self.context.socket(zmq.PUSH)
            sender.setsockopt(zmq.LINGER, 0)
            if self.send_timeout_ms > 0:
                sender.setsockopt(zmq.SNDTIMEO, self.send_timeout_ms)
            sender.connect(f"tcp://{address}:{port}")
            self._senders[key] = sender
        return sender

    def __repr__(self) -> str:
        return f"ZMQTransport({self._address!r}, port={self._port})"
