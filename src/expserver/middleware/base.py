"""
=============================================================================
MIDDLEWARE AND HANDLER CHAINS
=============================================================================

Two kinds of pipeline run for every inbound message:

1. GLOBAL MIDDLEWARE (``server.use``)
   A flat list. Every entry runs for every message, before routing, and
   again (outbound hook) right before each response goes out.

2. LISTENER CHAINS (``server.on`` / ``server.once``)
   The stages registered for one (route, method). They run only when that
   listener is resolved, and they pass control along explicitly.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      ONE DISPATCH CYCLE                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Request/Response                                                   │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌──────────┐  ┌──────────┐  ┌──────────┐                           │
    │   │ Logging  │  │  Codec   │  │   Rate   │   global: inbound(req,res)│
    │   │ inbound  │─►│ inbound  │─►│  Limit   │   each returns            │
    │   └──────────┘  └──────────┘  └──────────┘   (continue, message)     │
    │        │   a (False, msg) result sends 500, the rest still run      │
    │        ▼                                                             │
    │   route / method resolution  (400 on failure)                        │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌──────────┐ next() ┌──────────┐ next() ┌──────────┐               │
    │   │  auth    │───────►│ validate │───────►│ handler  │  chain stages │
    │   └──────────┘        └──────────┘        └──────────┘               │
    │                                                │ res.send(...)      │
    │                                                ▼                     │
    │                              global: outbound(res), then transport  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CONTINUATION PASSING
=============================================================================

A chain stage is called as ``stage(req, res, next)``. Calling ``next()``
runs the following stage; not calling it stops the chain there, which is
how an auth stage rejects a request:

    def require_token(req, res, next):
        if req.get_header("token") != SECRET:
            res.set_status(401).send({"error": "Unauthorized"})
            return                       # chain stops here
        next()

A stage written as ``stage(req, res)`` can only be terminal: it is called
without a continuation. A chain of one stage is always called terminally.

The cursor behind ``next`` is shared by the whole chain invocation, and
``next`` is not guarded: calling it twice from one stage runs the next two
stages.

=============================================================================
INTERVIEW QUESTIONS ABOUT MIDDLEWARE
=============================================================================

Q: "Why does a failing global middleware not stop routing?"
A: "Each stage of the engine is independent and reports its own error.
   The Response allows only one successful send, so whichever stage
   reports first wins and every later report is a silent no-op."

Q: "Why return (continue, message) instead of raising?"
A: "Rejections are expected control flow, not bugs. Exceptions are
   still caught, logged, and turned into the same 500 reply."

=============================================================================
"""

from abc import ABC, abstractmethod
import inspect
import logging
from typing import Any, Callable, Iterator, List, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from ..message.request import Request
    from ..message.response import Response


logger = logging.getLogger(__name__)


# =============================================================================
# TYPE ALIASES
# =============================================================================

# (continue, message). continue=False makes the engine reply 500 with message.
MiddlewareResult = Tuple[bool, Optional[str]]

# next(): advance to the following chain stage.
Continuation = Callable[[], None]

# stage(req, res) or stage(req, res, next)
Stage = Callable[..., Any]


def normalize_result(result: Any) -> MiddlewareResult:
    """
    Coerce whatever an inbound hook returned into (continue, message).

        None             → (True, None)
        True / False     → (True, None) / (False, None)
        (False, "nope")  → (False, "nope")
    """
    if result is None:
        return True, None
    if isinstance(result, tuple):
        if not result:
            return True, None
        message = result[1] if len(result) > 1 else None
        return bool(result[0]), message
    return bool(result), None


# =============================================================================
# GLOBAL MIDDLEWARE
# =============================================================================

class Middleware(ABC):
    """
    Base class for global middleware.

    =========================================================================
    THE MIDDLEWARE CONTRACT
    =========================================================================

        class AuditMiddleware(Middleware):
            def inbound(self, request, response):
                # Runs for every message, before routing.
                if request.agent.address in BANNED:
                    return False, "Sender is banned"   # 500 to the client
                return True, None

            def outbound(self, response):
                # Runs right before every response message is sent.
                # May rewrite response.headers / response.outgoing.
                response.headers["audited"] = True

    ``outbound`` is optional. Exceptions raised by ``outbound`` are logged
    and ignored so that delivery still happens.

    =========================================================================
    """

    @abstractmethod
    def inbound(self, request: "Request", response: "Response") -> MiddlewareResult:
        """
        Inspect an inbound request.

        Returns:
            (True, None) to accept, (False, message) to reply 500.
        """

    def outbound(self, response: "Response") -> None:
        """Hook run before a response message is transmitted."""

    def __call__(self, request: "Request", response: "Response") -> MiddlewareResult:
        return self.inbound(request, response)

    @property
    def name(self) -> str:
        """Middleware name for logging."""
        return self.__class__.__name__


class FunctionMiddleware(Middleware):
    """
    Wraps plain functions as middleware.

    Usage:
        server.use(lambda req, res: (req.agent.distance < 64, "Too far away"))

        def stamp(res):
            res.headers["served-by"] = "node-7"

        server.use(FunctionMiddleware(check_origin, outbound=stamp))
    """

    def __init__(
        self,
        func: Callable[["Request", "Response"], Any],
        outbound: Optional[Callable[["Response"], Any]] = None,
        name: Optional[str] = None,
    ):
        self._func = func
        self._outbound = outbound
        self._name = name or getattr(func, "__name__", type(func).__name__)

    def inbound(self, request: "Request", response: "Response") -> MiddlewareResult:
        return normalize_result(self._func(request, response))

    def outbound(self, response: "Response") -> None:
        if self._outbound is not None:
            self._outbound(response)

    @property
    def name(self) -> str:
        return self._name


def function_middleware(func: Callable[["Request", "Response"], Any]) -> FunctionMiddleware:
    """
    Decorator form of ``FunctionMiddleware``.

        @function_middleware
        def only_nearby(req, res):
            if req.agent.distance > 64:
                return False, "Too far away"
            return True, None

        server.use(only_nearby)
    """
    return FunctionMiddleware(func)


def as_middleware(candidate: Any) -> Middleware:
    """
    Accept a Middleware instance or a plain callable.

    Raises:
        TypeError: If ``candidate`` is neither.
    """
    if isinstance(candidate, Middleware):
        return candidate
    if callable(candidate):
        return FunctionMiddleware(candidate)
    raise TypeError(f"middleware must be callable, got {type(candidate).__name__}")


class MiddlewareStack:
    """
    Ordered list of global middleware.

    The stack is iterated through snapshots so that middleware added while a
    message is being dispatched only applies to later messages.
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Any) -> Middleware:
        """Append middleware (instance or callable). Returns the instance."""
        wrapped = as_middleware(middleware)
        self._middleware.append(wrapped)
        logger.debug(f"Added middleware: {wrapped.name}")
        return wrapped

    def snapshot(self) -> Tuple[Middleware, ...]:
        return tuple(self._middleware)

    def run_inbound(
        self,
        request: "Request",
        response: "Response",
        on_reject: Callable[[Middleware, Optional[str]], None],
    ) -> int:
        """
        Run every inbound hook, in order, without short-circuiting.

        ``on_reject`` is called immediately for each middleware that returns
        continue=False (or raises). Later middleware still runs.

        Returns:
            The number of rejections.
        """
        rejections = 0
        for middleware in self.snapshot():
            try:
                proceed, message = normalize_result(middleware.inbound(request, response))
            except Exception as e:
                logger.exception(f"Middleware {middleware.name} raised on {request.route}")
                proceed, message = False, str(e) or None

            if not proceed:
                rejections += 1
                on_reject(middleware, message)
        return rejections

    def __len__(self) -> int:
        return len(self._middleware)

    def __iter__(self) -> Iterator[Middleware]:
        return iter(self.snapshot())


# =============================================================================
# LISTENER CHAINS
# =============================================================================

def _continuation_arity(stage: Stage) -> Tuple[bool, bool]:
    """
    Inspect a stage's signature.

    Returns:
        (accepts, requires): whether a third positional argument (the
        continuation) can be passed, and whether it must be.
    """
    try:
        signature = inspect.signature(stage)
    except (TypeError, ValueError):
        # Builtins and some C callables hide their signature.
        return True, False

    positional = 0
    required = 0
    for param in signature.parameters.values():
        if param.kind == param.VAR_POSITIONAL:
            return True, required > 2
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            positional += 1
            if param.default is param.empty:
                required += 1
    return positional >= 3, required >= 3


class Chain:
    """
    Continuation-passing runner for one listener's stages.

    =========================================================================
    HOW ``next`` WORKS
    =========================================================================

        stages = [auth, validate, handler]

        run(req, res)
          cursor=0  auth(req, res, next)
                      next() → cursor=1  validate(req, res, next)
                                           next() → cursor=2  handler(req, res, next)
                                                                next() → cursor=3  (end, no-op)

    A stage that does not call ``next`` ends the chain. A stage that only
    takes (req, res) is called without ``next`` and also ends it.

    =========================================================================
    """

    def __init__(self, stages: Sequence[Stage]):
        if not stages:
            raise ValueError("a chain needs at least one stage")
        for stage in stages:
            if not callable(stage):
                raise TypeError(f"chain stage must be callable, got {type(stage).__name__}")
        self.stages: Tuple[Stage, ...] = tuple(stages)
        self._arity = [_continuation_arity(stage) for stage in self.stages]

    def run(self, request: "Request", response: "Response") -> None:
        """Invoke the chain once for a request/response pair."""
        stages = self.stages

        if len(stages) == 1:
            _accepts, requires = self._arity[0]
            if requires:
                stages[0](request, response, _noop)
            else:
                stages[0](request, response)
            return

        cursor = 0

        def next_stage() -> None:
            nonlocal cursor
            cursor += 1
            if cursor < len(stages):
                self._invoke(cursor, request, response, next_stage)

        self._invoke(0, request, response, next_stage)

    def _invoke(
        self,
        index: int,
        request: "Request",
        response: "Response",
        continuation: Continuation,
    ) -> None:
        accepts, _requires = self._arity[index]
        if accepts:
            self.stages[index](request, response, continuation)
        else:
            self.stages[index](request, response)

    def __len__(self) -> int:
        return len(self.stages)

    def __repr__(self) -> str:
        names = ", ".join(getattr(stage, "__name__", repr(stage)) for stage in self.stages)
        return f"Chain([{names}])"


def _noop() -> None:
    """Continuation handed to the last stage: there is nothing after it."""
