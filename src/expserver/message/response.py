"""
=============================================================================
RESPONSE
=============================================================================

A Response is the single-use reply channel paired with one Request.

=============================================================================
AT-MOST-ONCE SEND
=============================================================================

    Response(sent=False)
         │
         │ set_status(400)  ──► "expServerStatus" message   (repeatable)
         │ set_headers({...})
         │
         ▼
    send({"error": ...}) ──► outbound middleware hooks ──► "expServerResponse"
         │
         ▼
    Response(sent=<transport result>)
         │
         │ send(...)        ──► False, nothing transmitted
         │ set_status(...)  ──► False, nothing transmitted

``sent`` takes the transport's verdict: a send the network refused leaves
``sent`` False, so a later ``send`` can try again. Once a send succeeds the
Response is closed for good.

Status travels in its own message, ahead of the response message. That is
why ``set_status`` returns ``self`` for chaining but does not close the
Response:

    res.set_status(Status.CREATED).send({"id": 7})

After a successful send ``set_status`` returns False, so chained calls must
check the result before continuing (the dispatch engine does).

=============================================================================
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union, TYPE_CHECKING

from ..core.transport import RESPONSE_KIND, STATUS_KIND
from .request import Request

if TYPE_CHECKING:
    from ..server import Server


logger = logging.getLogger(__name__)


@dataclass
class Response:
    """
    Mutable reply paired 1:1 with a Request.

    Attributes:
        server:   The server that owns the transport and middleware.
        request:  The request being answered.
        sent:     True once a send succeeded.
        headers:  Headers transmitted with status and response messages.
        status:   Last status passed to ``set_status`` (None if never set).
        outgoing: Arguments of the pending or completed send. Outbound
                  middleware may rewrite them (the codec encodes them).
    """

    server: Optional["Server"]
    request: Request
    sent: bool = False
    headers: Any = field(default_factory=dict)
    status: Optional[int] = None
    outgoing: Tuple[Any, ...] = ()

    @classmethod
    def new(cls, server: Optional["Server"], request: Request) -> "Response":
        return cls(server=server, request=request)

    # =========================================================================
    # SENDING
    # =========================================================================

    def send(self, *payload: Any) -> bool:
        """
        Send the response message.

        Runs every global middleware's outbound hook first (in registration
        order). A hook that raises is logged and skipped so that one broken
        middleware cannot block delivery.

        Args:
            *payload: Response arguments. Usually a single value.

        Returns:
            The transport's verdict, or False if already sent.
        """
        if self.sent:
            return False

        self.outgoing = payload

        server = self.server
        if server is not None:
            for middleware in server.middleware_snapshot():
                try:
                    middleware.outbound(self)
                except Exception:
                    logger.exception(
                        f"Outbound middleware {middleware.name} failed for {self.request.route}"
                    )

        self.sent = self._transmit(RESPONSE_KIND, self.headers, *self.outgoing)
        return self.sent

    def set_status(self, status: int) -> Union["Response", bool]:
        """
        Send a status message ahead of the response.

        Args:
            status: Status value (``Status`` member or plain int).

        Returns:
            Self for chaining, or False if the response was already sent.
        """
        if self.sent:
            return False

        self.status = status
        self._transmit(STATUS_KIND, self.headers, status)
        return self

    def set_headers(self, headers: Any) -> "Response":
        """Replace the response headers. Returns self for chaining."""
        self.headers = headers
        return self

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _transmit(self, kind: str, *args: Any) -> bool:
        if self.server is None:
            logger.warning(f"Response for {self.request.route} has no server, dropping {kind}")
            return False

        agent = self.request.agent
        return self.server.transport.send(agent.address, agent.port, kind, *args)
