"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for the message server.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m expserver serve --port 9000                      │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── EXP_PORT=9000 python -m expserver serve                    │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Validate eagerly: ``Server`` calls ``validate()`` in its constructor so a
bad port or an unknown transport fails at startup, not on the first message.

=============================================================================
"""

import logging
import os
from dataclasses import dataclass


TRANSPORTS = ("zmq", "loopback")
LOG_FORMATS = ("text", "json")


@dataclass
class ServerConfig:
    """
    Configuration for a message server.

    Development:
        ServerConfig(transport="loopback", log_level="DEBUG")

    Networked:
        ServerConfig(address="10.0.0.5", port=7777, transport="zmq")
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    address: str = "127.0.0.1"
    """
    This node's identifier on the network. Clients send to it, and it is
    stamped on every outgoing message as the reply address.
    """

    port: int = 7777
    """Port ``listen()`` opens when called without one."""

    transport: str = "zmq"
    """
    Message network backend.
    - "zmq"      - ZeroMQ over TCP (separate processes/hosts)
    - "loopback" - in-process network (tests, embedding)
    """

    bind: str = "*"
    """Interface the ZeroMQ receive socket binds to."""

    send_timeout_ms: int = 0
    """
    ZeroMQ only. 0 = never block when a destination's queue is full (the
    send just fails). > 0 = wait up to this many milliseconds.
    """

    # ─────────────────────────────────────────────────────────────────────
    # RUN LOOP
    # ─────────────────────────────────────────────────────────────────────

    poll_timeout: float = 1.0
    """
    Seconds the run loop waits for a message before re-checking its
    listening flag. ``stop()`` also cancels the wait directly, so this only
    bounds how long a stop requested by some other means can lag.
    """

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""

    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    # ─────────────────────────────────────────────────────────────────────
    # IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "expserver/1.0"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

            EXP_ADDRESS       Node address         (default: 127.0.0.1)
            EXP_PORT          Listen port          (default: 7777)
            EXP_TRANSPORT     zmq | loopback       (default: zmq)
            EXP_BIND          ZeroMQ bind address  (default: *)
            EXP_POLL_TIMEOUT  Seconds              (default: 1.0)
            EXP_LOG_LEVEL     Logging level        (default: INFO)
            EXP_LOG_FORMAT    text | json          (default: text)
        """
        return cls(
            address=os.getenv("EXP_ADDRESS", "127.0.0.1"),
            port=int(os.getenv("EXP_PORT", "7777")),
            transport=os.getenv("EXP_TRANSPORT", "zmq"),
            bind=os.getenv("EXP_BIND", "*"),
            poll_timeout=float(os.getenv("EXP_POLL_TIMEOUT", "1.0")),
            log_level=os.getenv("EXP_LOG_LEVEL", "INFO"),
            log_format=os.getenv("EXP_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: With a message naming the offending field.
        """
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 1-65535.")

        if self.transport not in TRANSPORTS:
            raise ValueError(
                f"Unknown transport: {self.transport!r}. Expected one of {', '.join(TRANSPORTS)}."
            )

        if self.poll_timeout <= 0:
            raise ValueError(f"poll_timeout must be > 0, got {self.poll_timeout}")

        if self.send_timeout_ms < 0:
            raise ValueError(f"send_timeout_ms must be >= 0, got {self.send_timeout_ms}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log_level: {self.log_level!r}")

        if not self.address:
            raise ValueError("address must not be empty")
