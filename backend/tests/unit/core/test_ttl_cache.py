"""Unit tests for TimeBoxedCache, driven by an injected clock."""

import pytest

from agenda.core.ttl_cache import TimeBoxedCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestExpiry:
    def test_value_is_served_until_ttl_elapses(self, clock):
        cache = TimeBoxedCache(60, clock=clock)
        cache.set("k", "v")

        clock.advance(59.9)
        assert cache.get("k") == "v"

        clock.advance(0.1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_zero_ttl_never_serves(self, clock):
        cache = TimeBoxedCache(0, clock=clock)
        cache.set("k", "v")
        assert cache.get("k") is None

    def test_negative_ttl_is_rejected(self):
        with pytest.raises(ValueError):
            TimeBoxedCache(-1)


class TestGetOrLoad:
    def test_loader_runs_once_within_ttl(self, clock):
        cache = TimeBoxedCache(300, clock=clock)
        calls = []

        def loader():
            calls.append(1)
            return {"template": "Olá {{name}}"}

        first = cache.get_or_load("settings", loader)
        clock.advance(120)
        second = cache.get_or_load("settings", loader)

        assert first == second
        assert len(calls) == 1

    def test_loader_runs_again_after_expiry(self, clock):
        cache = TimeBoxedCache(300, clock=clock)
        values = iter(["old", "new"])

        assert cache.get_or_load("k", lambda: next(values)) == "old"
        clock.advance(301)
        assert cache.get_or_load("k", lambda: next(values)) == "new"

    def test_loader_error_is_not_cached(self, clock):
        cache = TimeBoxedCache(300, clock=clock)

        def broken():
            raise RuntimeError("catalog down")

        with pytest.raises(RuntimeError):
            cache.get_or_load("k", broken)
        assert cache.get_or_load("k", lambda: "ok") == "ok"


class TestInvalidate:
    def test_single_key(self, clock):
        cache = TimeBoxedCache(300, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate("a")

        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_everything(self, clock):
        cache = TimeBoxedCache(300, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)

        cache.invalidate()

        assert len(cache) == 0
