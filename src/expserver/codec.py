"""
=============================================================================
PAYLOAD CODEC
=============================================================================

Headers and bodies cross the network as opaque string payloads. The codec
turns them into structured values on the way in and back into strings on
the way out.

The codec is not hardwired into the server. Install it as a global middleware,
after any middleware that edits response headers (outbound hooks run in
registration order and the codec must see the final headers):

    server = Server()
    server.use(CodecMiddleware())          # JSON by default

    @server.route("/users", "POST")
    def create_user(req, res):
        # req.headers and req.body are already dicts here
        res.send({"created": req.body["name"]})   # encoded on the way out

or, for one listener only, as the first stage of its chain:

    codec = CodecMiddleware()
    server.on("/raw", "POST", codec.stage, handle_raw)

(``stage`` only decodes. Encoding still needs the middleware's outbound
hook, so a chain-only install sends structured values un-encoded.)

=============================================================================
WHAT GETS ENCODED
=============================================================================

    inbound   headers, body   str/bytes  → decoded value   (once)
                              anything else passes through

    outbound  headers         dict/list  → str
              send(...) args  dict/list  → str
                              anything else passes through unencoded

=============================================================================
"""

from abc import ABC, abstractmethod
import json
import logging
from typing import Any, Optional, TYPE_CHECKING

from .middleware.base import Continuation, Middleware, MiddlewareResult

if TYPE_CHECKING:
    from .message.request import Request
    from .message.response import Response


logger = logging.getLogger(__name__)


class CodecError(ValueError):
    """A payload could not be decoded (or a value could not be encoded)."""

    def __init__(self, message: str, payload: Any = None):
        super().__init__(message)
        self.payload = payload


class PayloadCodec(ABC):
    """Converts structured values to and from string payloads."""

    #: Short name used in logs and config.
    name = "codec"

    @abstractmethod
    def encode(self, value: Any) -> str:
        """Serialize ``value``. Raises CodecError on failure."""

    @abstractmethod
    def decode(self, payload: Any) -> Any:
        """Deserialize ``payload``. Raises CodecError on failure."""


class JSONCodec(PayloadCodec):
    """
    JSON payloads.

    An empty payload decodes to None, matching a request that was sent
    without a body.
    """

    name = "json"

    def __init__(self, sort_keys: bool = False):
        self.sort_keys = sort_keys

    def encode(self, value: Any) -> str:
        try:
            return json.dumps(value, sort_keys=self.sort_keys, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise CodecError(f"cannot encode {type(value).__name__}: {e}", value) from e

    def decode(self, payload: Any) -> Any:
        if payload is None:
            return None
        if isinstance(payload, bytes):
            try:
                payload = payload.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CodecError(f"payload is not valid UTF-8: {e.reason}", payload) from e
        if payload == "":
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise CodecError(f"invalid JSON payload: {e.msg}", payload) from e


def _is_raw(value: Any) -> bool:
    return isinstance(value, (str, bytes))


def _is_structured(value: Any) -> bool:
    return isinstance(value, (dict, list))


class CodecMiddleware(Middleware):
    """
    Codec adapter as a global middleware.

    Args:
        codec: Payload codec. Defaults to ``JSONCodec()``.
    """

    def __init__(self, codec: Optional[PayloadCodec] = None):
        self.codec = codec or JSONCodec()

    @property
    def name(self) -> str:
        return f"CodecMiddleware({self.codec.name})"

    # =========================================================================
    # INBOUND
    # =========================================================================

    def decode_request(self, request: "Request") -> None:
        """
        Decode raw headers and body in place.

        Values that are already structured are left alone, so running the
        codec twice (global middleware plus a chain stage) is harmless.

        Raises:
            CodecError: If a raw payload cannot be decoded.
        """
        if _is_raw(request.headers):
            request.headers = self.codec.decode(request.headers)
            if request.headers is None:
                request.headers = {}
        if _is_raw(request.body):
            request.body = self.codec.decode(request.body)

    def inbound(self, request: "Request", response: "Response") -> MiddlewareResult:
        try:
            self.decode_request(request)
        except CodecError as e:
            logger.warning(f"Undecodable request on {request.route} from {request.agent.address}: {e}")
            return False, f"Malformed payload: {e}"
        return True, None

    def stage(self, request: "Request", response: "Response", next: Optional[Continuation] = None) -> None:
        """
        Chain-stage form: decode, then continue.

        A malformed payload is answered with 400 and the chain stops.
        """
        try:
            self.decode_request(request)
        except CodecError as e:
            status = response.set_status(400)
            if status is not False:
                status.send({"error": f"Malformed payload: {e}"})
            return
        if next is not None:
            next()

    # =========================================================================
    # OUTBOUND
    # =========================================================================

    def outbound(self, response: "Response") -> None:
        if _is_structured(response.headers):
            response.headers = self.codec.encode(response.headers)

        response.outgoing = tuple(
            self.codec.encode(arg) if _is_structured(arg) else arg
            for arg in response.outgoing
        )
