# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Sliding-window rate limiter keyed by caller identity.

This module implements per-identity rate limiting with limits at minute,
hour, and day granularity. Send history is kept in a
:class:`~mail_gate.history.HistoryStore`, so with the SQLite backend the
limits survive service restarts.

Every read-modify-write on one identity's history runs under a lock
selected by hashing the identity over a fixed pool of ``asyncio.Lock``
shards, so memory stays bounded and unrelated identities rarely contend.

To handle concurrent requests correctly, the limiter also tracks
"in-flight" sends in memory. ``reserve()`` counts the reservation against
the limits before the message is delivered, so two requests racing for the
last slot cannot both pass.

Example:
    Gating one send attempt::

        limiter = RateLimiter(store, RateLimitConfig(per_minute=1))
        decision = await limiter.reserve(identity)
        if not decision.allowed:
            return {"error": "rate_limit_exceeded", "retryAfter": decision.retry_after}
        recorded = False
        try:
            await send_message(msg)
            recorded = True
            await limiter.record(identity)
        finally:
            if not recorded:
                await limiter.release(identity)
"""

from __future__ import annotations

import asyncio
import time
import zlib

from .config_loader import RateLimitConfig
from .errors import StorageUnavailableError
from .history import HistoryStore, MemoryHistoryStore
from .logger import get_logger
from .models import RateDecision, UsageSnapshot

logger = get_logger("rate_limit")

MINUTE = 60
HOUR = 3600
DAY = 86400
RETENTION_SECONDS = DAY


class RateLimiter:
    """Per-identity sliding-window rate limiter.

    Enforces send rate limits at three granularities, evaluated narrowest
    first so the caller gets the tightest retry hint:
    - Per minute
    - Per hour
    - Per day

    Attributes:
        store: The HistoryStore holding accepted sends.
        config: The thresholds in force.
    """

    def __init__(
        self,
        store: HistoryStore | None = None,
        config: RateLimitConfig | None = None,
        lock_shards: int = 256,
    ):
        """Initialize the rate limiter.

        Args:
            store: History backend. Defaults to an in-process store.
            config: Window thresholds. Defaults to 1/min, 3/hour, 5/day.
            lock_shards: Number of locks identities are spread over.
        """
        if lock_shards <= 0:
            raise ValueError(f"lock_shards must be positive, got {lock_shards!r}")
        self.store = store if store is not None else MemoryHistoryStore()
        self.config = config if config is not None else RateLimitConfig()
        self._in_flight: dict[str, int] = {}
        self._locks = tuple(asyncio.Lock() for _ in range(lock_shards))

    @property
    def windows(self) -> tuple[tuple[str, int, int], ...]:
        """(name, seconds, limit) for each window, narrowest first."""
        return (
            ("minute", MINUTE, self.config.per_minute),
            ("hour", HOUR, self.config.per_hour),
            ("day", DAY, self.config.per_day),
        )

    def _lock_for(self, identity: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(identity.encode("utf-8")) % len(self._locks)]

    async def _counts(self, identity: str, now: int) -> dict[str, int]:
        """Prune entries past retention, then count recorded sends per window."""
        try:
            removed = await self.store.prune(identity, now - RETENTION_SECONDS)
            if removed:
                logger.debug("Pruned %d expired sends for %s", removed, identity)
            return {
                name: await self.store.count_since(identity, now - seconds)
                for name, seconds, _ in self.windows
            }
        except StorageUnavailableError:
            if not self.config.fail_open:
                raise
            logger.warning("History unavailable for %s, failing open with empty history", identity)
            return {name: 0 for name, _, _ in self.windows}

    def _evaluate(self, identity: str, counts: dict[str, int]) -> RateDecision:
        in_flight = self._in_flight.get(identity, 0)
        for name, seconds, limit in self.windows:
            count = counts[name] + in_flight
            if count >= limit:
                logger.warning(
                    "Rate limit (%s) hit for %s: %d >= %d (in_flight=%d)",
                    name, identity, count, limit, in_flight,
                )
                return RateDecision(
                    allowed=False,
                    reason=f"Limit of {limit} emails per {name} exceeded",
                    retry_after=seconds,
                    window=name,
                )
        return RateDecision(allowed=True)

    async def check(self, identity: str) -> RateDecision:
        """Check whether ``identity`` may send another email now.

        Prunes history older than 24 hours, then counts the sends inside
        each window plus any in-flight reservations. The first window whose
        count reaches its limit determines the answer.

        Args:
            identity: Caller identity (network address).

        Returns:
            RateDecision with ``allowed=False``, a reason naming the window
            and its limit, and ``retry_after`` set to the window length when
            a limit is reached; ``allowed=True`` otherwise.

        Raises:
            StorageUnavailableError: History could not be read and
                ``fail_open`` is disabled.
        """
        async with self._lock_for(identity):
            counts = await self._counts(identity, int(time.time()))
            return self._evaluate(identity, counts)

    async def reserve(self, identity: str) -> RateDecision:
        """Check limits and, when allowed, hold an in-flight slot.

        The caller MUST follow an allowed reservation with either
        :meth:`record` (delivery accepted) or :meth:`release` (delivery
        failed or message rejected).
        """
        async with self._lock_for(identity):
            counts = await self._counts(identity, int(time.time()))
            decision = self._evaluate(identity, counts)
            if decision.allowed:
                self._in_flight[identity] = self._in_flight.get(identity, 0) + 1
            return decision

    async def release(self, identity: str) -> None:
        """Release an in-flight slot without recording a send.

        Never suspends, so it also completes inside a cancelled task.
        """
        self._drop_slot(identity)

    async def record(self, identity: str) -> None:
        """Record an accepted send for ``identity`` at the current time.

        Must only be called after the message has been accepted for
        delivery. The in-flight slot taken by :meth:`reserve`, if any, is
        given back before the first suspension point.

        Raises:
            StorageUnavailableError: The history store rejected the write.
                Writes never fail open.
        """
        self._drop_slot(identity)
        async with self._lock_for(identity):
            await self.store.append(identity, int(time.time()))

    async def try_acquire(self, identity: str) -> RateDecision:
        """Check limits and record the send in one atomic step.

        For callers with no separate delivery step: when allowed, the send
        is appended to the history before the lock is released.
        """
        async with self._lock_for(identity):
            now = int(time.time())
            decision = self._evaluate(identity, await self._counts(identity, now))
            if decision.allowed:
                await self.store.append(identity, now)
            return decision

    async def stats(self, identity: str) -> UsageSnapshot:
        """Return send counts and remaining quota for each window.

        Counts only recorded sends; remaining quota is
        ``max(0, limit - count)``. An identity with no history reports zero
        counts and full quota.
        """
        async with self._lock_for(identity):
            counts = await self._counts(identity, int(time.time()))
        limits = {name: limit for name, _, limit in self.windows}
        return UsageSnapshot(
            identity=identity,
            sent_last_minute=counts["minute"],
            sent_last_hour=counts["hour"],
            sent_last_day=counts["day"],
            remaining_minute=max(0, limits["minute"] - counts["minute"]),
            remaining_hour=max(0, limits["hour"] - counts["hour"]),
            remaining_day=max(0, limits["day"] - counts["day"]),
        )

    def in_flight(self, identity: str) -> int:
        """Number of reservations currently held by ``identity``."""
        return self._in_flight.get(identity, 0)

    def _drop_slot(self, identity: str) -> None:
        held = self._in_flight.get(identity, 0)
        if held > 1:
            self._in_flight[identity] = held - 1
        elif held == 1:
            del self._in_flight[identity]


__all__ = ["DAY", "HOUR", "MINUTE", "RETENTION_SECONDS", "RateLimiter"]
