"""
=============================================================================
LISTENER REGISTRY
=============================================================================

Maps (route, method) pairs to handler chains.

=============================================================================
RESOLUTION FLOW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        RESOLUTION FLOW                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Inbound request                                                    │
    │   route="/users", headers={"method": "POST"}                         │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌─────────────────────────────────────────────────────────────┐   │
    │   │  REGISTRY  (registration order)                              │   │
    │   │  ┌────────────────────────────────────────────────────────┐ │   │
    │   │  │ #1  /health   GET   [health]                           │ │   │
    │   │  │ #2  /users    GET   [auth, list_users]                 │ │   │
    │   │  │ #3  /users    POST  [auth, create_user]  ← MATCH!      │ │   │
    │   │  │ #4  /users    POST  [create_user_v2]     (shadowed)    │ │   │
    │   │  └────────────────────────────────────────────────────────┘ │   │
    │   └─────────────────────────────────────────────────────────────┘   │
    │        │                                                             │
    │        ▼                                                             │
    │   (True, <ListenerEntry #3>)                                         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Routes and methods are matched as exact strings. There are no parameters
or wildcards: "/users" and "/users/" are different routes.

=============================================================================
ENTRY IDENTITY
=============================================================================

Every entry gets a stable id when it is registered. Once-listeners remove
themselves by that id, never by list position, so removing entry #2 does
not shift which entry a later removal of #3 hits.

=============================================================================
INTERVIEW QUESTIONS ABOUT REGISTRIES
=============================================================================

Q: "Why not a dict keyed by (route, method)?"
A: "Duplicates are legal and registration order decides the winner.
   A list keeps both properties for free; lookups are O(n) in the
   number of listeners, which stays small for this kind of server."

Q: "What happens if a handler registers a listener mid-dispatch?"
A: "Resolution finished before the chain started, and lookups hand out
   copies, so the new listener is only visible to the next message."

=============================================================================
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Mapping, Sequence, Tuple, Union


logger = logging.getLogger(__name__)


# =============================================================================
# ERROR MESSAGES
# =============================================================================
# These strings travel to the client verbatim inside {"error": ...}.

NO_METHOD = "No method provided"
NO_LISTENER = "No listener exists for this route and method"


# A stage takes (request, response) or (request, response, next).
Stage = Callable[..., Any]


_entry_ids = itertools.count(1)


@dataclass
class ListenerEntry:
    """
    One registered listener.

    Attributes:
        route:  Exact-match route string.
        method: Exact-match method string.
        chain:  Ordered handler stages forming one middleware pipeline.
        once:   Remove this entry the first time it is invoked.
        id:     Stable identity used for removal.
    """

    route: str
    method: str
    chain: Tuple[Stage, ...]
    once: bool = False
    id: int = field(default_factory=lambda: next(_entry_ids))

    def __repr__(self) -> str:
        kind = "once" if self.once else "on"
        return f"<ListenerEntry #{self.id} {kind} {self.method} {self.route} stages={len(self.chain)}>"


class ListenerRegistry:
    """
    Ordered collection of listener entries.

    Usage:
        registry = ListenerRegistry()
        registry.register("/ping", "GET", [pong])

        ok, entry = registry.resolve({"method": "GET"}, "/ping")
        # ok is True, entry.chain == (pong,)

        ok, message = registry.resolve({}, "/ping")
        # ok is False, message == "No method provided"
    """

    def __init__(self):
        self._entries: List[ListenerEntry] = []

    # =========================================================================
    # MUTATION
    # =========================================================================

    def register(
        self,
        route: str,
        method: str,
        chain: Sequence[Stage],
        once: bool = False,
    ) -> ListenerEntry:
        """
        Append a listener.

        No validation is applied to route or method; any string, including
        the empty string, is accepted.

        Args:
            route: Route to listen on.
            method: Method to listen for.
            chain: Handler stages, run in order.
            once: Remove the entry on first invocation.

        Returns:
            The new entry (keep it to remove the listener later).
        """
        entry = ListenerEntry(route=route, method=method, chain=tuple(chain), once=once)
        self._entries.append(entry)
        logger.debug(f"Registered {entry!r}")
        return entry

    def remove(self, entry: Union[ListenerEntry, int]) -> bool:
        """
        Remove a listener by identity.

        Args:
            entry: The entry returned by ``register``, or its id.

        Returns:
            True if the entry was present, False otherwise.
        """
        entry_id = entry if isinstance(entry, int) else entry.id
        for index, candidate in enumerate(self._entries):
            if candidate.id == entry_id:
                del self._entries[index]
                logger.debug(f"Removed {candidate!r}")
                return True
        return False

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def validate_route(self, route: str) -> bool:
        """True iff any entry listens on ``route``, whatever its method."""
        return any(entry.route == route for entry in self._entries)

    def listeners_for_route(self, route: str) -> List[ListenerEntry]:
        """
        All entries on ``route``, in registration order.

        Returns a new list; later registry changes do not affect it.
        """
        return [entry for entry in self._entries if entry.route == route]

    def resolve(
        self,
        headers: Any,
        route: str,
    ) -> Tuple[bool, Union[ListenerEntry, str]]:
        """
        Find the listener for a request.

        Steps:
            1. No ``method`` in headers     → (False, "No method provided")
            2. Filter entries by route
            3. First entry with that method → (True, entry)
            4. Otherwise                    → (False, "No listener exists ...")

        Headers that are not a mapping (a raw payload nobody decoded) carry
        no method.

        Args:
            headers: Request headers.
            route: Request route.

        Returns:
            (ok, entry) on success, (ok, error message) on failure.
        """
        method = headers.get("method") if isinstance(headers, Mapping) else None
        if method is None:
            return False, NO_METHOD

        for entry in self.listeners_for_route(route):
            if entry.method == method:
                return True, entry

        return False, NO_LISTENER

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    def routes(self) -> List[Tuple[str, str]]:
        """(method, route) pairs in registration order, duplicates included."""
        return [(entry.method, entry.route) for entry in self._entries]

    def describe(self) -> str:
        """
        Human-readable table of listeners.

        Example:
              GET      /health
              POST     /echo         (once, 2 stages)
        """
        lines = []
        for entry in self._entries:
            extras = []
            if entry.once:
                extras.append("once")
            if len(entry.chain) > 1:
                extras.append(f"{len(entry.chain)} stages")
            suffix = f"  ({', '.join(extras)})" if extras else ""
            lines.append(f"  {entry.method:8} {entry.route}{suffix}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ListenerEntry]:
        return iter(list(self._entries))

    def __contains__(self, entry: object) -> bool:
        return isinstance(entry, ListenerEntry) and any(
            candidate.id == entry.id for candidate in self._entries
        )
