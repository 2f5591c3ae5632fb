"""
=============================================================================
EXPSERVER CLI ENTRY POINT
=============================================================================

    # Run the demo server (ZeroMQ, 127.0.0.1:7777)
    python -m expserver serve

    # Custom address and port, JSON access log
    python -m expserver serve --address 10.0.0.5 --port 9000 --log-format json

    # Talk to it
    python -m expserver request /ping
    python -m expserver request /echo --method POST --body '{"hello": "world"}'

Defaults come from the environment (see ``ServerConfig.from_env``);
command-line flags override them.

=============================================================================
"""

import argparse
import json
import logging
import sys

from . import __version__
from .client import Client
from .codec import CodecMiddleware
from .config import LOG_FORMATS, ServerConfig
from .core.transport import TransportError
from .handlers import HealthHandler
from .middleware import LoggingMiddleware
from .server import Server


def build_demo_server(config: ServerConfig) -> Server:
    """Server with logging, codec, /ping, /health and /echo."""
    server = Server(config)

    server.use(LoggingMiddleware(log_format=config.log_format))
    server.use(CodecMiddleware())

    @server.route("/ping", "GET")
    def ping(req, res):
        res.send({"pong": True})

    @server.route("/echo", "POST")
    def echo(req, res):
        res.send({"echo": req.body, "from": req.agent.address})

    HealthHandler(server).register("/health")
    return server


def _serve(args: argparse.Namespace, config: ServerConfig) -> int:
    server = build_demo_server(config)
    try:
        server.listen(config.port)
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


def _request(args: argparse.Namespace, config: ServerConfig) -> int:
    from .core.zmq_transport import ZMQTransport

    try:
        body = json.loads(args.body) if args.body is not None else None
    except json.JSONDecodeError as e:
        print(f"Error: --body is not valid JSON: {e}", file=sys.stderr)
        return 2

    transport = ZMQTransport(address=args.reply_address, bind=config.bind)
    client = Client(transport, port=args.reply_port)
    try:
        reply = client.request(
            config.address,
            config.port,
            args.route,
            args.method,
            body=body,
            timeout=args.timeout,
        )
    except TransportError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()

    print(json.dumps({"status": reply.status, "headers": reply.headers, "body": reply.body}, indent=2))
    return 0 if reply.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="expserver",
        description="Express-style request routing over a message network",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  expserver serve                              # 127.0.0.1:7777 over ZeroMQ
  expserver serve --port 9000 --log-format json
  expserver request /ping
  expserver request /echo --method POST --body '{"x": 1}'
        """,
    )
    parser.add_argument("--version", "-v", action="version", version=f"expserver {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    # ─────────────────────────────────────────────────────────────────────
    # SERVE
    # ─────────────────────────────────────────────────────────────────────

    serve = sub.add_parser("serve", help="Run the demo server")
    serve.add_argument("--address", "-a", help="Node address (default: EXP_ADDRESS or 127.0.0.1)")
    serve.add_argument("--port", "-p", type=int, help="Port to listen on (default: EXP_PORT or 7777)")
    serve.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: EXP_LOG_LEVEL or INFO)",
    )
    serve.add_argument("--log-format", choices=LOG_FORMATS, help="Access log format")
    serve.set_defaults(handler=_serve)

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST
    # ─────────────────────────────────────────────────────────────────────

    request = sub.add_parser("request", help="Send one request and print the reply")
    request.add_argument("route", help="Route to call, e.g. /ping")
    request.add_argument("--method", "-m", default="GET", help="Method header (default: GET)")
    request.add_argument("--body", "-b", help="JSON request body")
    request.add_argument("--address", "-a", help="Server address")
    request.add_argument("--port", "-p", type=int, help="Server port")
    request.add_argument("--reply-address", default="127.0.0.1", help="This client's address")
    request.add_argument("--reply-port", type=int, default=7778, help="Port to receive the reply on")
    request.add_argument("--timeout", "-t", type=float, default=5.0, help="Seconds to wait")
    request.set_defaults(handler=_request)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = ServerConfig.from_env()
    if args.address:
        config.address = args.address
    if args.port:
        config.port = args.port
    if getattr(args, "log_level", None):
        config.log_level = args.log_level
    if getattr(args, "log_format", None):
        config.log_format = args.log_format

    try:
        config.validate()
    except ValueError as e:
        parser.error(str(e))

    if args.command == "request":
        logging.basicConfig(level=logging.WARNING)

    return args.handler(args, config)


if __name__ == "__main__":
    sys.exit(main())
