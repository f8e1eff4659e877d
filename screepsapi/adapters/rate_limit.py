"""
Rate limit bookkeeping.

Quota state per endpoint class, fed from ``x-ratelimit-*`` response
headers. Nothing here throttles; the HTTP retry policy and callers consult
the tracker.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, NamedTuple, Optional

logger = logging.getLogger(__name__)


class RateLimitPeriod(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


class EndpointClass(NamedTuple):
    """Quota bucket key: HTTP method plus camelCased endpoint name."""

    method: str
    name: str


GLOBAL = EndpointClass("*", "global")


@dataclass
class RateLimitRecord:
    """Quota state for one endpoint class."""

    limit: int
    period: RateLimitPeriod
    remaining: int = -1
    reset: int = 0  # epoch seconds
    clock: Callable[[], float] = field(default=time.time, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.remaining < 0:
            self.remaining = self.limit

    @property
    def seconds_until_reset(self) -> int:
        return self.reset - int(self.clock())

    @property
    def exhausted(self) -> bool:
        return self.remaining <= 0 and self.seconds_until_reset > 0


# Known high-traffic endpoints with their own quota
_KNOWN_LIMITS: Dict[EndpointClass, tuple] = {
    EndpointClass("GET", "gameRoomTerrain"): (360, RateLimitPeriod.HOUR),
    EndpointClass("GET", "userCode"): (60, RateLimitPeriod.HOUR),
    EndpointClass("GET", "userMemory"): (1440, RateLimitPeriod.DAY),
    EndpointClass("GET", "userMemorySegment"): (360, RateLimitPeriod.HOUR),
    EndpointClass("GET", "gameMarketOrdersIndex"): (60, RateLimitPeriod.HOUR),
    EndpointClass("GET", "gameMarketOrders"): (60, RateLimitPeriod.HOUR),
    EndpointClass("GET", "gameMarketMyOrders"): (60, RateLimitPeriod.HOUR),
    EndpointClass("GET", "gameMarketStats"): (60, RateLimitPeriod.HOUR),
    EndpointClass("GET", "userMoneyHistory"): (60, RateLimitPeriod.HOUR),
    EndpointClass("POST", "userConsole"): (360, RateLimitPeriod.HOUR),
    EndpointClass("POST", "gameMapStats"): (60, RateLimitPeriod.HOUR),
    EndpointClass("POST", "userCode"): (240, RateLimitPeriod.DAY),
    EndpointClass("POST", "userSetActiveBranch"): (240, RateLimitPeriod.DAY),
    EndpointClass("POST", "userMemory"): (240, RateLimitPeriod.DAY),
    EndpointClass("POST", "userMemorySegment"): (60, RateLimitPeriod.HOUR),
}

_SEPARATOR_RE = re.compile(r"[/-](.)")


def endpoint_name(path: str) -> str:
    """``/api/user/memory-segment`` -> ``userMemorySegment``."""
    path = path.split("?", 1)[0].replace("/api/", "", 1)
    return _SEPARATOR_RE.sub(lambda m: m.group(1).upper(), path)


class RateLimitTracker:
    """Per endpoint class quota records plus a shared global record."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._records: Dict[EndpointClass, RateLimitRecord] = {
            key: RateLimitRecord(limit=limit, period=period, clock=clock)
            for key, (limit, period) in _KNOWN_LIMITS.items()
        }
        self._records[GLOBAL] = RateLimitRecord(
            limit=120, period=RateLimitPeriod.MINUTE, clock=clock
        )

    @property
    def global_limit(self) -> RateLimitRecord:
        return self._records[GLOBAL]

    def classify(self, method: str, path: str) -> EndpointClass:
        """Map a request to its quota bucket; unknown endpoints share GLOBAL."""
        key = EndpointClass(method.upper(), endpoint_name(path))
        return key if key in self._records else GLOBAL

    def update(
        self,
        endpoint_class: EndpointClass,
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        reset: Optional[int] = None,
    ) -> RateLimitRecord:
        """Store values reported by the server; None leaves a field as is."""
        record = self._records.get(endpoint_class, self.global_limit)
        if limit is not None:
            record.limit = limit
        if remaining is not None:
            record.remaining = remaining
        if reset is not None:
            record.reset = reset

        label = "global" if record is self.global_limit else " ".join(endpoint_class)
        logger.debug(
            "[RateLimit] %s %s/%s reset in %ss",
            label,
            record.remaining,
            record.limit,
            record.seconds_until_reset,
        )
        return record

    def update_from_headers(self, method: str, path: str, headers) -> Optional[RateLimitRecord]:
        """
        Update from ``x-ratelimit-limit/remaining/reset`` headers.

        Returns:
            The updated record, or None when the response carried no
            rate-limit headers.
        """
        limit = _header_int(headers, "x-ratelimit-limit")
        remaining = _header_int(headers, "x-ratelimit-remaining")
        reset = _header_int(headers, "x-ratelimit-reset")
        if limit is None and remaining is None and reset is None:
            return None
        return self.update(self.classify(method, path), limit, remaining, reset)

    def get(self, endpoint_class: EndpointClass) -> RateLimitRecord:
        return self._records.get(endpoint_class, self.global_limit)

    def for_request(self, method: str, path: str) -> RateLimitRecord:
        return self.get(self.classify(method, path))

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        return {
            " ".join(key): {
                "limit": record.limit,
                "remaining": record.remaining,
                "reset": record.reset,
            }
            for key, record in self._records.items()
        }


def _header_int(headers, name: str) -> Optional[int]:
    if not headers:
        return None
    value = headers.get(name)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("[RateLimit] Ignoring non-numeric %s header: %r", name, value)
        return None
