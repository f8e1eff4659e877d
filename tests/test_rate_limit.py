"""
Rate limit tracker tests.
"""
from __future__ import annotations

from screepsapi.adapters.rate_limit import (
    GLOBAL,
    EndpointClass,
    RateLimitPeriod,
    RateLimitRecord,
    RateLimitTracker,
    endpoint_name,
)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_endpoint_name_camel_cases_path():
    assert endpoint_name("/api/user/memory-segment") == "userMemorySegment"
    assert endpoint_name("/api/game/market/orders-index") == "gameMarketOrdersIndex"
    assert endpoint_name("/api/user/code?branch=default") == "userCode"


def test_classify_known_endpoint():
    tracker = RateLimitTracker()

    assert tracker.classify("get", "/api/user/memory") == EndpointClass("GET", "userMemory")
    assert tracker.classify("POST", "/api/user/console") == EndpointClass("POST", "userConsole")


def test_classify_unknown_endpoint_is_global():
    tracker = RateLimitTracker()

    assert tracker.classify("GET", "/api/version") == GLOBAL
    # Same path, method without its own quota
    assert tracker.classify("POST", "/api/game/room-terrain") == GLOBAL


def test_default_limits():
    tracker = RateLimitTracker()

    terrain = tracker.get(EndpointClass("GET", "gameRoomTerrain"))
    assert terrain.limit == 360
    assert terrain.period == RateLimitPeriod.HOUR
    assert terrain.remaining == 360

    assert tracker.global_limit.limit == 120
    assert tracker.global_limit.period == RateLimitPeriod.MINUTE


def test_update_keeps_unspecified_fields():
    tracker = RateLimitTracker()
    key = EndpointClass("GET", "userCode")

    tracker.update(key, remaining=10)
    record = tracker.update(key, reset=1234)

    assert record.limit == 60
    assert record.remaining == 10
    assert record.reset == 1234


def test_update_unknown_class_updates_global():
    tracker = RateLimitTracker()

    record = tracker.update(EndpointClass("GET", "nope"), limit=100, remaining=1)

    assert record is tracker.global_limit
    assert tracker.global_limit.remaining == 1


def test_update_from_headers():
    clock = FakeClock()
    tracker = RateLimitTracker(clock=clock)
    headers = {
        "x-ratelimit-limit": "1440",
        "x-ratelimit-remaining": "1000",
        "x-ratelimit-reset": str(int(clock.now) + 30),
    }

    record = tracker.update_from_headers("GET", "/api/user/memory", headers)

    assert record is tracker.for_request("GET", "/api/user/memory")
    assert record.remaining == 1000
    assert record.seconds_until_reset == 30
    assert not record.exhausted


def test_update_from_headers_without_rate_limit_headers():
    tracker = RateLimitTracker()

    assert tracker.update_from_headers("GET", "/api/version", {"content-type": "x"}) is None
    assert tracker.update_from_headers("GET", "/api/version", None) is None
    assert tracker.global_limit.remaining == 120


def test_bad_header_values_ignored():
    tracker = RateLimitTracker()

    tracker.update_from_headers(
        "GET", "/api/version", {"x-ratelimit-limit": "abc", "x-ratelimit-remaining": "5"}
    )

    assert tracker.global_limit.limit == 120
    assert tracker.global_limit.remaining == 5


def test_exhausted_until_reset():
    clock = FakeClock()
    record = RateLimitRecord(limit=60, period=RateLimitPeriod.HOUR, remaining=0,
                             reset=int(clock.now) + 10, clock=clock)

    assert record.exhausted
    clock.now += 11
    assert not record.exhausted


def test_snapshot():
    tracker = RateLimitTracker()
    tracker.update(GLOBAL, remaining=7)

    snapshot = tracker.snapshot()

    assert snapshot["* global"]["remaining"] == 7
    assert snapshot["POST userConsole"]["limit"] == 360
