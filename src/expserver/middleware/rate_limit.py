"""
=============================================================================
RATE LIMITING MIDDLEWARE
=============================================================================

Per-sender rate limiting with the Token Bucket algorithm.

=============================================================================
TOKEN BUCKET
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          TOKEN BUCKET                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │        refill: tokens_per_second                                    │
    │                 │                                                    │
    │                 ▼                                                    │
    │            ┌─────────┐                                               │
    │            │ ● ● ● ● │  capacity: burst_size                         │
    │            │ ● ● ●   │                                               │
    │            └────┬────┘                                               │
    │                 │ one token per message                              │
    │                 ▼                                                    │
    │        token available → continue                                   │
    │        bucket empty    → (False, "Rate limit exceeded ...")          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Buckets are keyed by sender address by default. A rejected message is
reported like any other middleware rejection: the engine replies 500 with
the message, and routing still runs (the reply slot is already used, so the
handler's own send is a no-op).

=============================================================================
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, TYPE_CHECKING

from .base import Middleware, MiddlewareResult

if TYPE_CHECKING:
    from ..message.request import Request
    from ..message.response import Response


logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """
    Token Bucket rate limiter.

    Config: max_tokens=10, tokens_per_second=1

        t=0:  bucket=10/10  message → allowed (bucket=9)
        ...
        t=0:  bucket=0/10   message → REJECTED
        t=5:  bucket=5/10   (5 seconds passed, 5 tokens added)
    """

    max_tokens: float
    tokens_per_second: float
    tokens: float = field(default=-1.0)
    last_update: float = field(default_factory=time.monotonic)

    def __post_init__(self):
        if self.tokens < 0:
            self.tokens = self.max_tokens

    def consume(self, tokens: float = 1.0) -> bool:
        """Take ``tokens`` if available. Returns False when the bucket is short."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens -= tokens
            return True
        return False

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_update
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.tokens_per_second)
        self.last_update = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self.tokens

    def time_until_available(self, tokens: float = 1.0) -> float:
        """Seconds until ``tokens`` can be consumed (0 if already possible)."""
        self._refill()
        if self.tokens >= tokens:
            return 0.0
        return (tokens - self.tokens) / self.tokens_per_second


class RateLimitMiddleware(Middleware):
    """
    Rate limiting middleware.

    Usage:
        # 5 messages/sec per sender, bursts of 10
        server.use(RateLimitMiddleware(requests_per_second=5, burst_size=10))

        # Limit per (sender, route) instead
        server.use(RateLimitMiddleware(
            key_func=lambda req: f"{req.agent.address}:{req.route}",
        ))

    Args:
        requests_per_second: Sustained rate.
        burst_size: Bucket capacity.
        key_func: Maps a request to its bucket key. Defaults to sender address.
        bucket_ttl: Idle buckets older than this (seconds) are dropped.
    """

    def __init__(
        self,
        requests_per_second: float = 10.0,
        burst_size: int = 20,
        key_func: Optional[Callable[["Request"], str]] = None,
        bucket_ttl: float = 300.0,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be > 0")
        if burst_size < 1:
            raise ValueError("burst_size must be >= 1")

        self.requests_per_second = requests_per_second
        self.burst_size = burst_size
        self.key_func = key_func or self._default_key_func
        self.bucket_ttl = bucket_ttl

        self._buckets: Dict[str, TokenBucket] = {}
        self._last_cleanup = time.monotonic()

    @staticmethod
    def _default_key_func(request: "Request") -> str:
        return request.agent.address

    def inbound(self, request: "Request", response: "Response") -> MiddlewareResult:
        key = self.key_func(request)
        bucket = self._get_bucket(key)

        if bucket.consume():
            return True, None

        retry_after = int(bucket.time_until_available()) + 1
        logger.info(f"Rate limited {key} on {request.route}")
        return False, f"Rate limit exceeded. Try again in {retry_after} seconds."

    def _get_bucket(self, key: str) -> TokenBucket:
        now = time.monotonic()
        if now - self._last_cleanup > self.bucket_ttl:
            self._cleanup(now)

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(
                max_tokens=self.burst_size,
                tokens_per_second=self.requests_per_second,
            )
            self._buckets[key] = bucket
        return bucket

    def _cleanup(self, now: float) -> None:
        expired = [
            key for key, bucket in self._buckets.items()
            if now - bucket.last_update > self.bucket_ttl
        ]
        for key in expired:
            del self._buckets[key]
        self._last_cleanup = now

    def reset(self, key: Optional[str] = None) -> None:
        """Forget one sender's bucket, or all of them."""
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)
