"""
Tests for the command-line entry point.
"""

import json

import pytest

from expserver.__main__ import build_demo_server, build_parser, main
from expserver.config import ServerConfig

from conftest import RecordingTransport, make_message


@pytest.fixture
def demo():
    server = build_demo_server(ServerConfig(address="server", transport="loopback", log_level="WARNING"))
    server.transport = RecordingTransport()
    return server


class TestParser:

    def test_serve_arguments(self):
        args = build_parser().parse_args(["serve", "--port", "9000", "--log-format", "json"])

        assert args.command == "serve"
        assert args.port == 9000
        assert args.log_format == "json"

    def test_request_arguments(self):
        args = build_parser().parse_args(["request", "/echo", "--method", "POST", "--body", '{"x": 1}'])

        assert args.route == "/echo"
        assert args.method == "POST"
        assert args.body == '{"x": 1}'
        assert args.timeout == 5.0

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_invalid_port_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["serve", "--port", "70000"])

        assert exc_info.value.code == 2


class TestDemoServer:

    def test_routes(self, demo):
        assert demo.registry.routes() == [("GET", "/ping"), ("POST", "/echo"), ("GET", "/health")]

    def test_ping(self, demo):
        demo.dispatch(make_message("/ping", '{"method":"GET"}', None))

        assert json.loads(demo.transport.responses[0][0]) == {"pong": True}

    def test_echo(self, demo):
        demo.dispatch(make_message("/echo", '{"method":"POST"}', '{"x":1}', address="client-4"))

        assert json.loads(demo.transport.responses[0][0]) == {"echo": {"x": 1}, "from": "client-4"}

    def test_health(self, demo):
        demo.dispatch(make_message("/health", '{"method":"GET"}', None))

        assert demo.transport.statuses == [200]
        assert json.loads(demo.transport.responses[0][0])["status"] == "healthy"
