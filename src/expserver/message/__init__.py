"""
=============================================================================
MESSAGE LAYER
=============================================================================

Request and Response objects, the listener registry that maps
(route, method) to handler chains, and status codes.

=============================================================================
"""

from .registry import NO_LISTENER, NO_METHOD, ListenerEntry, ListenerRegistry
from .request import Agent, Request
from .response import Response
from .status_codes import Status

__all__ = [
    "Agent",
    "Request",
    "Response",
    "ListenerEntry",
    "ListenerRegistry",
    "NO_METHOD",
    "NO_LISTENER",
    "Status",
]
