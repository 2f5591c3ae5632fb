"""
=============================================================================
STATUS CODES
=============================================================================

Status values carried by "expServerStatus" messages.

Status messages ride beside the response message rather than inside it, so
the value is just a number on the wire. The codes reuse the familiar HTTP
numbering because clients already know how to read them:

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  2xx   │ SUCCESS: the handler did what was asked                   │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  4xx   │ CLIENT ERROR: unknown route, missing or unknown method    │
    │        │                                                           │
    │        │ 400 Bad Request   - sent by the dispatch engine for every │
    │        │                     protocol-shape error                  │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  5xx   │ SERVER ERROR: a global middleware rejected the message    │
    │        │               or a handler raised                         │
    └────────┴───────────────────────────────────────────────────────────┘

Only the subset the framework and its bundled handlers actually use is
defined. Handlers may still pass any integer to ``Response.set_status``.

=============================================================================
"""

from enum import IntEnum


class Status(IntEnum):
    """
    Status codes and reason phrases.

    IntEnum members compare equal to plain integers, so a client that
    receives ``400`` over the wire can test ``status == Status.BAD_REQUEST``.

        >>> Status.BAD_REQUEST == 400
        True
        >>> Status.BAD_REQUEST.phrase
        'Bad Request'
    """

    # 2xx SUCCESS
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400               # Missing method, unknown route or method
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    TOO_MANY_REQUESTS = 429

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500     # Middleware rejection or handler failure
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503

    @property
    def phrase(self) -> str:
        """Human-readable reason phrase for this status."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_client_error(self) -> bool:
        return 400 <= self < 500

    @property
    def is_server_error(self) -> bool:
        return 500 <= self < 600

    @property
    def is_error(self) -> bool:
        """True for 4xx and 5xx."""
        return self >= 400


_STATUS_PHRASES = {
    Status.OK: "OK",
    Status.CREATED: "Created",
    Status.ACCEPTED: "Accepted",
    Status.NO_CONTENT: "No Content",
    Status.BAD_REQUEST: "Bad Request",
    Status.UNAUTHORIZED: "Unauthorized",
    Status.FORBIDDEN: "Forbidden",
    Status.NOT_FOUND: "Not Found",
    Status.CONFLICT: "Conflict",
    Status.UNPROCESSABLE_ENTITY: "Unprocessable Entity",
    Status.TOO_MANY_REQUESTS: "Too Many Requests",
    Status.INTERNAL_SERVER_ERROR: "Internal Server Error",
    Status.NOT_IMPLEMENTED: "Not Implemented",
    Status.SERVICE_UNAVAILABLE: "Service Unavailable",
}


def get_phrase(status: int) -> str:
    """
    Reason phrase for any integer status, including codes not in the enum.

    Args:
        status: Status value as received or set by a handler.

    Returns:
        The phrase, or "Unknown" for codes outside the enum.
    """
    try:
        return Status(status).phrase
    except ValueError:
        return "Unknown"
