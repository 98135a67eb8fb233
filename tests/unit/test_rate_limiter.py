"""Tests for the fixed-window rate limiter."""

from __future__ import annotations

import asyncio

import pytest

from chatrelay.runtime.rate_limiter import (
    UNKNOWN_CLIENT,
    FixedWindowRateLimiter,
    client_identifier,
)


class TestCheck:
    def test_exactly_limit_admissions_per_window(self, clock):
        limiter = FixedWindowRateLimiter(limit=10, window_seconds=60, clock=clock)
        results = [limiter.check("1.2.3.4") for _ in range(10)]
        assert all(r.success for r in results)
        assert [r.remaining for r in results] == list(range(9, -1, -1))

        rejected = limiter.check("1.2.3.4")
        assert rejected.success is False
        assert rejected.remaining == 0
        assert rejected.retry_after is not None
        assert rejected.retry_after > 0

    def test_window_elapse_resets_counter(self, clock):
        limiter = FixedWindowRateLimiter(limit=10, window_seconds=60, clock=clock)
        for _ in range(11):
            limiter.check("c")
        clock.advance(60)
        results = [limiter.check("c") for _ in range(10)]
        assert all(r.success for r in results)
        assert limiter.check("c").success is False

    def test_retry_after_counts_down(self, clock):
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
        limiter.check("c")
        clock.advance(45.5)
        assert limiter.check("c").retry_after == 15

    def test_keys_are_independent(self, clock):
        limiter = FixedWindowRateLimiter(limit=1, clock=clock)
        assert limiter.check("a").success
        assert limiter.check("b").success
        assert not limiter.check("a").success

    def test_disabled_always_admits(self, clock):
        limiter = FixedWindowRateLimiter(limit=1, enabled=False, clock=clock)
        assert all(limiter.check("a").success for _ in range(5))
        assert len(limiter) == 0

    def test_headers(self, clock):
        limiter = FixedWindowRateLimiter(limit=1, window_seconds=60, clock=clock)
        ok = limiter.check("a").headers()
        assert ok["X-RateLimit-Limit"] == "1"
        assert ok["X-RateLimit-Remaining"] == "0"
        assert ok["X-RateLimit-Reset"] == str(int(clock.now + 60))
        assert "Retry-After" not in ok
        assert limiter.check("a").headers()["Retry-After"] == "60"


class TestSweep:
    def test_sweep_removes_only_expired(self, clock):
        limiter = FixedWindowRateLimiter(window_seconds=60, clock=clock)
        limiter.check("old")
        clock.advance(30)
        limiter.check("new")
        clock.advance(30)
        assert limiter.sweep() == 1
        assert len(limiter) == 1

    @pytest.mark.asyncio
    async def test_background_sweeper_runs(self, clock):
        limiter = FixedWindowRateLimiter(
            window_seconds=1, sweep_interval_seconds=0.01, clock=clock
        )
        limiter.check("a")
        clock.advance(2)
        limiter.start()
        try:
            for _ in range(100):
                if len(limiter) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await limiter.stop()
        assert len(limiter) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        limiter = FixedWindowRateLimiter()
        await limiter.stop()


class TestClientIdentifier:
    def test_forwarded_for_first_entry(self):
        headers = {"x-forwarded-for": " 10.0.0.1 , 10.0.0.2", "x-real-ip": "9.9.9.9"}
        assert client_identifier(headers) == "10.0.0.1"

    def test_falls_back_to_real_ip(self):
        assert client_identifier({"x-real-ip": "9.9.9.9"}) == "9.9.9.9"

    def test_falls_back_to_client_ip(self):
        assert client_identifier({"x-client-ip": "8.8.8.8"}) == "8.8.8.8"

    def test_unknown_bucket(self):
        assert client_identifier({}) == UNKNOWN_CLIENT
        assert client_identifier({"x-forwarded-for": ""}) == UNKNOWN_CLIENT
