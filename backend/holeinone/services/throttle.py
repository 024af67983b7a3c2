"""Advisory throttling: attempt counters and resend cooldowns.

Both guards only shape UX and cut needless traffic (e.g. hammering "resend
link"). They are never an authorization control: a token is valid or not
regardless of what is recorded here.

State lives behind a small key-value port so the same code runs against a
process-local dict in dev/tests and Redis when several API workers share it.
"""
from __future__ import annotations
import json
import math
import time
from dataclasses import dataclass
from typing import Callable, Protocol

import structlog
from fastapi import Request
from redis import Redis

from holeinone.config import settings

log = structlog.get_logger()

Clock = Callable[[], float]


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None: ...
    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store. Expired keys are dropped on read and swept on write."""

    def __init__(self, clock: Clock = time.time, sweep_interval: float = 60.0):
        self._clock = clock
        self._data: dict[str, tuple[str, float | None]] = {}
        self._sweep_interval = sweep_interval
        self._next_sweep = clock() + sweep_interval

    def __len__(self) -> int:
        return len(self._data)

    def _sweep(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at is not None and now >= expires_at]
        for key in expired:
            del self._data[key]
        self._next_sweep = now + self._sweep_interval

    def get(self, key: str) -> str | None:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            self._data.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        expires_at = now + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class RedisStore:
    def __init__(self, client: Redis):
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> str | None:
        return self._r.get(key)

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        if ttl_seconds:
            self._r.set(key, value, px=max(1, int(ttl_seconds * 1000)))
        else:
            self._r.set(key, value)

    def delete(self, key: str) -> None:
        self._r.delete(key)


class RateLimiter:
    """Fixed-window attempt counter keyed by an identifier (email, IP...)."""

    def __init__(self, store: KeyValueStore, clock: Clock = time.time, namespace: str = "ratelimit:"):
        self._store = store
        self._clock = clock
        self._ns = namespace

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self, identifier: str) -> dict | None:
        raw = self._store.get(self._ns + identifier)
        if raw is None:
            return None
        entry = json.loads(raw)
        if self._now_ms() > entry["reset_time"]:
            return None
        return entry

    def _save(self, identifier: str, entry: dict) -> None:
        ttl = max(0.001, (entry["reset_time"] - self._now_ms()) / 1000)
        self._store.set(self._ns + identifier, json.dumps(entry), ttl_seconds=ttl)

    def is_rate_limited(self, identifier: str, max_attempts: int, window_ms: int) -> bool:
        """Count this attempt; True once `max_attempts` were already made in the window."""
        entry = self._load(identifier)
        if entry is None:
            self._save(identifier, {"count": 1, "reset_time": self._now_ms() + window_ms})
            return False
        if entry["count"] >= max_attempts:
            log.info("rate_limited", identifier=identifier, count=entry["count"])
            return True
        entry["count"] += 1
        self._save(identifier, entry)
        return False

    def remaining_attempts(self, identifier: str, max_attempts: int) -> int:
        entry = self._load(identifier)
        if entry is None:
            return max_attempts
        return max(0, max_attempts - entry["count"])

    def time_until_reset_ms(self, identifier: str) -> int:
        entry = self._load(identifier)
        if entry is None:
            return 0
        return max(0, entry["reset_time"] - self._now_ms())

    def clear(self, identifier: str) -> None:
        self._store.delete(self._ns + identifier)

    def headers(self, identifier: str, max_attempts: int) -> dict[str, str]:
        reset_ms = self.time_until_reset_ms(identifier)
        return {
            "X-RateLimit-Limit": str(max_attempts),
            "X-RateLimit-Remaining": str(self.remaining_attempts(identifier, max_attempts)),
            "X-RateLimit-Reset": str(math.ceil(reset_ms / 1000)) if reset_ms > 0 else "0",
        }


@dataclass(frozen=True)
class CooldownState:
    is_active: bool
    remaining_seconds: int
    ends_at: float | None  # epoch seconds


class CooldownStore:
    """Minimum spacing between repeated actions, independent of the attempt counter."""

    def __init__(self, store: KeyValueStore, clock: Clock = time.time, default_seconds: int = 60,
                 namespace: str = "cooldown:"):
        self._store = store
        self._clock = clock
        self._default = default_seconds
        self._ns = namespace

    def start_cooldown(self, identifier: str, seconds: int | None = None) -> CooldownState:
        seconds = self._default if seconds is None else seconds
        ends_at = self._clock() + seconds
        self._store.set(self._ns + identifier, repr(ends_at), ttl_seconds=seconds)
        log.info("cooldown_started", identifier=identifier, seconds=seconds)
        return CooldownState(is_active=seconds > 0, remaining_seconds=max(0, seconds), ends_at=ends_at)

    def state(self, identifier: str) -> CooldownState:
        raw = self._store.get(self._ns + identifier)
        if raw is None:
            return CooldownState(False, 0, None)
        ends_at = float(raw)
        now = self._clock()
        if now >= ends_at:
            self._store.delete(self._ns + identifier)
            return CooldownState(False, 0, None)
        return CooldownState(True, max(0, math.ceil(ends_at - now)), ends_at)

    def is_cooldown_active(self, identifier: str) -> bool:
        return self.state(identifier).is_active

    def get_remaining_seconds(self, identifier: str) -> int:
        return self.state(identifier).remaining_seconds

    def clear_cooldown(self, identifier: str) -> None:
        self._store.delete(self._ns + identifier)


@dataclass
class Throttle:
    """Throttling context handed to the endpoints that need it."""
    limiter: RateLimiter
    cooldowns: CooldownStore


def build_throttle(backend: str, redis_url: str, cooldown_seconds: int, clock: Clock = time.time) -> Throttle:
    store: KeyValueStore
    if backend == "redis":
        store = RedisStore.from_url(redis_url)
    else:
        store = MemoryStore(clock)
    return Throttle(
        limiter=RateLimiter(store, clock),
        cooldowns=CooldownStore(store, clock, default_seconds=cooldown_seconds),
    )


def get_throttle(request: Request) -> Throttle:
    # Built once in the app lifespan; built lazily when the lifespan did not run
    throttle = getattr(request.app.state, "throttle", None)
    if throttle is None:
        throttle = build_throttle(settings.rate_limit_backend, settings.redis_url, settings.resend_cooldown_seconds)
        request.app.state.throttle = throttle
    return throttle
