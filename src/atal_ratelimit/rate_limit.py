from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable


class InvalidLimiterConfig(ValueError):
    pass


@dataclass
class _Bucket:
    tokens: float
    last_refill: float


@dataclass(frozen=True)
class LimiterConfig:
    max_tokens: int
    refill_rate_per_sec: float

    def __post_init__(self) -> None:
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int):
            raise InvalidLimiterConfig(f"max_tokens must be an integer, got {self.max_tokens!r}")
        if self.max_tokens <= 0:
            raise InvalidLimiterConfig(f"max_tokens must be > 0, got {self.max_tokens}")
        rate = float(self.refill_rate_per_sec)
        if not math.isfinite(rate) or rate <= 0.0:
            raise InvalidLimiterConfig(f"refill_rate_per_sec must be > 0, got {self.refill_rate_per_sec!r}")

    @staticmethod
    def per_window(max_tokens: int, window_seconds: float) -> "LimiterConfig":
        """Config allowing ``max_tokens`` requests per ``window_seconds`` sustained."""
        window = float(window_seconds)
        if not math.isfinite(window) or window <= 0.0:
            raise InvalidLimiterConfig(f"window_seconds must be > 0, got {window_seconds!r}")
        return LimiterConfig(max_tokens=max_tokens, refill_rate_per_sec=max_tokens / window)

    @property
    def full_refill_seconds(self) -> float:
        return self.max_tokens / self.refill_rate_per_sec


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after_ms: int = 0


class TokenBucketLimiter:
    """In-memory token bucket keyed by opaque, case-sensitive strings.

    Buckets are created on first use holding ``max_tokens - 1`` tokens (the
    creating request pays for itself) and refilled lazily on every check.
    State is per-process: separate workers never see each other's buckets.
    """

    def __init__(self, config: LimiterConfig, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._capacity = float(config.max_tokens)
        self._rate = float(config.refill_rate_per_sec)
        self._clock = clock
        self._buckets: dict[str, _Bucket] = {}
        self._lock = threading.Lock()

    @property
    def config(self) -> LimiterConfig:
        return self._config

    def is_allowed(self, key: str) -> bool:
        return self.check(key).allowed

    def check(self, key: str) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=self._capacity - 1.0, last_refill=now)
                self._buckets[key] = bucket
                return RateLimitDecision(allowed=True, remaining=math.floor(bucket.tokens))

            # Elapsed can only be negative with a misbehaving clock; never drain on it.
            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(self._capacity, bucket.tokens + elapsed * self._rate)
            bucket.last_refill = now

            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return RateLimitDecision(allowed=True, remaining=math.floor(bucket.tokens))

            deficit = 1.0 - bucket.tokens
            retry_after_ms = int((deficit / self._rate) * 1000.0) + 1
            return RateLimitDecision(allowed=False, remaining=0, retry_after_ms=retry_after_ms)

    def get_remaining_tokens(self, key: str) -> int:
        # Snapshot as of the last check; deliberately no refill on read.
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return self._config.max_tokens
            return math.floor(bucket.tokens)

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._buckets.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __len__(self) -> int:
        return self.size()

    def evict_idle(self, *, idle_multiplier: float = 1.0) -> int:
        """Drop buckets idle long enough to be full again.

        A bucket untouched for ``full_refill_seconds`` behaves exactly like a
        missing one on its next check, so removing it changes no decision.
        """
        max_idle = max(1.0, float(idle_multiplier)) * self._config.full_refill_seconds
        with self._lock:
            now = self._clock()
            stale = [key for key, bucket in self._buckets.items() if now - bucket.last_refill >= max_idle]
            for key in stale:
                del self._buckets[key]
        return len(stale)
