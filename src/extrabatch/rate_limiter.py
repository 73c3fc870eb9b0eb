"""Token-bucket rate limiting for Sheets API calls.

One bucket per call class (``read`` and ``write``). Callers wait for tokens
instead of failing; a remote 429 can additionally put the limiter into a
throttled mode with halved refill rates for a fixed window.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

CallClass = Literal["read", "write"]

DEFAULT_READS_PER_MINUTE = 300
DEFAULT_WRITES_PER_MINUTE = 60


@dataclass
class TokenBucket:
    """Refillable permit count. ``0 <= tokens <= capacity`` always holds."""

    capacity: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = max(now - self.last_refill, 0.0)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, count: float) -> None:
        self.tokens = max(self.tokens - count, 0.0)


class RateLimiter:
    """Read/write token buckets with adaptive throttling.

    Acquires against one bucket are serialized through an asyncio.Lock, which
    hands out waiters in FIFO order, so token arithmetic is never interleaved.
    """

    def __init__(
        self,
        reads_per_minute: int = DEFAULT_READS_PER_MINUTE,
        writes_per_minute: int = DEFAULT_WRITES_PER_MINUTE,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._clock = clock
        self._sleep = sleep
        self._base_rates: dict[str, float] = {
            "read": reads_per_minute / 60,
            "write": writes_per_minute / 60,
        }
        self._base_capacities: dict[str, float] = {
            "read": float(reads_per_minute),
            "write": float(writes_per_minute),
        }
        now = clock()
        self._buckets: dict[str, TokenBucket] = {
            name: TokenBucket(
                capacity=self._base_capacities[name],
                refill_rate=rate,
                tokens=self._base_capacities[name],
                last_refill=now,
            )
            for name, rate in self._base_rates.items()
        }
        self._locks: dict[str, asyncio.Lock] = {
            name: asyncio.Lock() for name in self._buckets
        }
        self._throttled_until: float | None = None

    def bucket(self, call_class: CallClass) -> TokenBucket:
        """The bucket for a call class (for inspection)."""
        try:
            return self._buckets[call_class]
        except KeyError:
            raise ValueError(f"Unknown call class: {call_class!r}") from None

    def base_rate(self, call_class: CallClass) -> float:
        """Unthrottled refill rate in tokens per second."""
        return self._base_rates[call_class]

    async def acquire(self, call_class: CallClass, count: int = 1) -> None:
        """Take ``count`` tokens, sleeping once for the exact shortfall."""
        bucket = self.bucket(call_class)
        if self._throttled_until is not None and not self.is_throttled():
            self.restore_normal_limits()

        async with self._locks[call_class]:
            bucket.refill(self._clock())
            if bucket.tokens < count:
                wait_seconds = (count - bucket.tokens) / bucket.refill_rate
                logger.debug(
                    "Rate limit wait",
                    extra={
                        "call_class": call_class,
                        "count": count,
                        "wait_ms": round(wait_seconds * 1000),
                    },
                )
                await self._sleep(wait_seconds)
                bucket.refill(self._clock())
            bucket.consume(count)

    def throttle(self, duration_ms: int) -> None:
        """Degrade both buckets for ``duration_ms`` after a remote 429.

        Refill rates are halved and capacity shrinks to one second's worth
        of the normal rate.
        """
        now = self._clock()
        for name, bucket in self._buckets.items():
            bucket.refill(now)
            bucket.refill_rate = self._base_rates[name] / 2
            bucket.capacity = self._base_rates[name]
            bucket.tokens = min(bucket.tokens, bucket.capacity)
        self._throttled_until = now + duration_ms / 1000
        logger.warning("Rate limiter throttled", extra={"duration_ms": duration_ms})

    def restore_normal_limits(self) -> None:
        """Return both buckets to their baseline rate and capacity."""
        now = self._clock()
        for name, bucket in self._buckets.items():
            bucket.refill(now)
            bucket.refill_rate = self._base_rates[name]
            bucket.capacity = self._base_capacities[name]
        if self._throttled_until is not None:
            logger.info("Rate limiter restored to normal limits")
        self._throttled_until = None

    def is_throttled(self) -> bool:
        if self._throttled_until is None:
            return False
        return self._clock() < self._throttled_until
