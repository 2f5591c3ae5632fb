"""
Unit tests for the in-process loopback network.
"""

import threading
import time

import pytest

from expserver.core.loopback import LoopbackNetwork
from expserver.core.transport import Cancelled, TransportPortError


class TestLoopbackNetwork:

    def test_deliver_between_nodes(self, network):
        server = network.transport("server")
        client = network.transport("client")
        server.open(7777)
        client.open(7000)

        assert client.send("server", 7777, "/ping", {"method": "GET"}, None) is True

        message = server.events().pull(timeout=1.0)
        assert message.address == "client"
        assert message.port == 7000
        assert message.args == ("/ping", {"method": "GET"}, None)

    def test_reply_port_defaults_to_destination(self, network):
        server = network.transport("server")
        client = network.transport("client")
        server.open(7777)

        client.send("server", 7777, "x")

        assert server.events().pull(timeout=1.0).port == 7777

    def test_send_to_nobody_fails(self, network):
        client = network.transport("client")

        assert client.send("nobody", 1, "x") is False
        assert network.dropped_count == 1

    def test_distance_is_reported(self):
        network = LoopbackNetwork(distance=12.5)
        server = network.transport("server")
        server.open(1)

        network.transport("client").send("server", 1, "x")

        assert server.events().pull(timeout=1.0).distance == 12.5

    def test_port_conflict(self, network):
        network.transport("server").open(7777)

        with pytest.raises(TransportPortError) as exc_info:
            network.transport("server").open(7777)

        assert exc_info.value.port == 7777

    def test_open_is_idempotent(self, network):
        server = network.transport("server")
        server.open(7777)
        server.open(7777)

        assert server.ports == {7777}

    def test_close_detaches(self, network):
        server = network.transport("server")
        server.open(7777)
        server.close()

        assert server.is_open is False
        assert network.transport("client").send("server", 7777, "x") is False

    def test_anonymous_addresses_are_unique(self, network):
        assert network.transport().address != network.transport().address


class TestLoopbackEventSource:

    def test_pull_timeout_returns_none(self, network):
        events = network.transport("server").events()

        assert events.pull(timeout=0.01) is None

    def test_cancel_wakes_blocked_pull(self, network):
        events = network.transport("server").events()
        errors = []

        def wait():
            try:
                events.pull()
            except Cancelled as e:
                errors.append(e)

        thread = threading.Thread(target=wait)
        thread.start()
        time.sleep(0.05)
        events.cancel()
        thread.join(timeout=2.0)

        assert not thread.is_alive()
        assert len(errors) == 1

    def test_cancel_is_sticky_until_reset(self, network):
        events = network.transport("server").events()
        events.cancel()

        with pytest.raises(Cancelled):
            events.pull(timeout=0.01)
        with pytest.raises(Cancelled):
            events.pull(timeout=0.01)

        events.reset()
        assert events.pull(timeout=0.01) is None

    def test_messages_arrive_in_order(self, network):
        server = network.transport("server")
        server.open(1)
        client = network.transport("client")
        for i in range(3):
            client.send("server", 1, i)

        assert len(server.events()) == 3
        assert [server.events().pull(timeout=0.1).args[0] for _ in range(3)] == [0, 1, 2]
