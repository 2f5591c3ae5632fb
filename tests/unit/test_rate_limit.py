"""
Unit tests for rate limiting.
"""

import time

import pytest

from expserver.middleware.rate_limit import RateLimitMiddleware, TokenBucket

from conftest import make_message


class TestTokenBucket:

    def test_starts_full(self):
        bucket = TokenBucket(max_tokens=3, tokens_per_second=1)

        assert bucket.available_tokens == pytest.approx(3, abs=0.1)

    def test_consume_until_empty(self):
        bucket = TokenBucket(max_tokens=2, tokens_per_second=0.001)

        assert bucket.consume() is True
        assert bucket.consume() is True
        assert bucket.consume() is False

    def test_refill_over_time(self):
        bucket = TokenBucket(max_tokens=1, tokens_per_second=1000)
        bucket.consume()

        time.sleep(0.01)

        assert bucket.consume() is True

    def test_never_exceeds_capacity(self):
        bucket = TokenBucket(max_tokens=2, tokens_per_second=1000)
        time.sleep(0.01)

        assert bucket.available_tokens == 2

    def test_time_until_available(self):
        bucket = TokenBucket(max_tokens=1, tokens_per_second=0.5)

        assert bucket.time_until_available() == 0.0
        bucket.consume()
        assert bucket.time_until_available() == pytest.approx(2.0, abs=0.1)


class TestRateLimitMiddleware:

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            RateLimitMiddleware(requests_per_second=0)
        with pytest.raises(ValueError):
            RateLimitMiddleware(burst_size=0)

    def test_over_limit_replies_500(self, server, recorder):
        server.use(RateLimitMiddleware(requests_per_second=0.001, burst_size=2))
        server.on("/ping", "GET", lambda req, res: res.send("pong"))

        for _ in range(3):
            server.dispatch(make_message("/ping"))

        assert recorder.responses[:2] == [("pong",), ("pong",)]
        assert recorder.statuses == [500]
        error = recorder.responses[2][0]["error"]
        assert error.startswith("Rate limit exceeded. Try again in ")
        assert error.endswith(" seconds.")

    def test_buckets_are_per_sender(self, server, recorder):
        server.use(RateLimitMiddleware(requests_per_second=0.001, burst_size=1))
        server.on("/ping", "GET", lambda req, res: res.send("pong"))

        server.dispatch(make_message("/ping", address="client-1"))
        server.dispatch(make_message("/ping", address="client-2"))

        assert recorder.responses == [("pong",), ("pong",)]

    def test_custom_key(self, server, recorder):
        server.use(RateLimitMiddleware(
            requests_per_second=0.001,
            burst_size=1,
            key_func=lambda req: req.route,
        ))
        server.on("/a", "GET", lambda req, res: res.send("a"))
        server.on("/b", "GET", lambda req, res: res.send("b"))

        server.dispatch(make_message("/a", address="client-1"))
        server.dispatch(make_message("/a", address="client-2"))
        server.dispatch(make_message("/b", address="client-1"))

        assert recorder.statuses == [500]
        assert recorder.responses[2] == ("b",)

    def test_reset(self, server, recorder):
        limiter = RateLimitMiddleware(requests_per_second=0.001, burst_size=1)
        server.use(limiter)
        server.on("/ping", "GET", lambda req, res: res.send("pong"))

        server.dispatch(make_message("/ping"))
        limiter.reset("client-1")
        server.dispatch(make_message("/ping"))

        assert recorder.statuses == []
        assert recorder.responses == [("pong",), ("pong",)]
