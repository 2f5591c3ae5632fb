"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Any, Generator, List, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from expserver import Server, ServerConfig
from expserver.core.loopback import LoopbackEventSource, LoopbackNetwork
from expserver.core.transport import (
    RESPONSE_KIND,
    STATUS_KIND,
    InboundMessage,
    Transport,
)


class RecordingTransport(Transport):
    """Transport that records every send instead of delivering it."""

    def __init__(self, address: str = "server", accept: bool = True):
        self._address = address
        self.accept = accept
        self.opened: List[int] = []
        self.closed = False
        self.sent: List[Tuple[str, int, Tuple[Any, ...]]] = []
        self._events = LoopbackEventSource()

    @property
    def address(self) -> str:
        return self._address

    @property
    def is_open(self) -> bool:
        return bool(self.opened) and not self.closed

    def open(self, port: int) -> None:
        if port not in self.opened:
            self.opened.append(port)

    def close(self) -> None:
        self.closed = True

    def send(self, address: str, port: int, *args: Any) -> bool:
        self.sent.append((address, port, args))
        return self.accept

    def events(self) -> LoopbackEventSource:
        return self._events

    # Helpers for assertions

    def of_kind(self, kind: str) -> List[Tuple[Any, ...]]:
        """Arguments (after the kind) of every message of ``kind``."""
        return [args[1:] for _addr, _port, args in self.sent if args and args[0] == kind]

    @property
    def statuses(self) -> List[Any]:
        return [rest[1] for rest in self.of_kind(STATUS_KIND)]

    @property
    def responses(self) -> List[Tuple[Any, ...]]:
        """Response arguments after the headers."""
        return [rest[1:] for rest in self.of_kind(RESPONSE_KIND)]


def make_message(
    route: str = "/ping",
    headers: Any = None,
    body: Any = None,
    address: str = "client-1",
    port: int = 7000,
    distance: float = 0,
) -> InboundMessage:
    """Inbound request as a transport would deliver it."""
    if headers is None:
        headers = {"method": "GET"}
    return InboundMessage(address=address, port=port, distance=distance, args=(route, headers, body))


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        address="server",
        port=7777,
        transport="loopback",
        poll_timeout=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def recorder() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def server(config: ServerConfig, recorder: RecordingTransport) -> Server:
    """Server whose replies are captured by ``recorder``."""
    return Server(config, transport=recorder)


@pytest.fixture
def network() -> LoopbackNetwork:
    return LoopbackNetwork()


@pytest.fixture
def free_port() -> int:
    """Get a free TCP port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class RunningServer:
    """Runs ``server.listen`` in a background thread."""

    def __init__(self, server: Server, port: int):
        self.server = server
        self.port = port
        self.error: BaseException = None
        self._thread: threading.Thread = None

    def start(self) -> "RunningServer":
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

        for _ in range(100):  # 5 seconds max
            if self.server.listening and self.server.transport.is_open:
                return self
            time.sleep(0.05)
        raise RuntimeError("Server failed to start")

    def _run(self) -> None:
        try:
            self.server.listen(self.port)
        except BaseException as e:
            self.error = e

    def stop(self) -> None:
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


@pytest.fixture
def loopback_server(
    config: ServerConfig,
    network: LoopbackNetwork,
) -> Generator[Server, None, None]:
    """Server attached to ``network`` as "server" (not yet listening)."""
    server = Server(config, transport=network.transport("server"))
    yield server
    server.stop()
