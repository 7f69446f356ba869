"""Fixed-window request rate limiting with temporary blocks.

Decisions are made against in-process counters, so a check never waits on
the network. Counters and blocks are flushed to Redis on a best-effort basis
and restored on startup; a crash loses at most one flush interval of counts.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

WINDOW_SECONDS = {
    "minute": 60,
    "ten_minutes": 600,
    "hour": 3600,
}

# Prune expired counters once the map grows past this many entries
PRUNE_THRESHOLD = 10000


@dataclass(frozen=True)
class RateLimitRule:
    """Limit for one route.

    Exceeding `limit` within a window rejects the request. When the count in
    a window reaches `block_threshold`, the key is additionally blocked for
    `block_seconds` regardless of window boundaries.
    """

    limit: int
    window: str = "minute"
    block_threshold: int | None = None
    block_seconds: int = 0
    block_reason: str = "Too many requests. Try again later."

    def __post_init__(self):
        if self.window not in WINDOW_SECONDS:
            raise ValueError(f"Unknown window '{self.window}', expected one of {list(WINDOW_SECONDS)}")
        if self.limit <= 0:
            raise ValueError("limit must be positive")

    @property
    def window_seconds(self) -> int:
        return WINDOW_SECONDS[self.window]


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check. `reset` is seconds until retry makes sense."""

    allowed: bool
    remaining: int
    reset: int
    limit: int
    reason: str | None = None


DEFAULT_RULES: dict[str, RateLimitRule] = {
    "upload": RateLimitRule(limit=10, window="hour"),
    "query": RateLimitRule(
        limit=30,
        window="minute",
        block_threshold=60,
        block_seconds=600,
        block_reason="Too many queries. Try again in a few minutes.",
    ),
}


class WindowRateLimiter:
    """Per-route, per-client fixed-window limiter."""

    def __init__(
        self,
        rules: dict[str, RateLimitRule] | None = None,
        redis: Redis | None = None,
        clock: Callable[[], float] = time.time,
        key_prefix: str = "ratelimit",
    ):
        self.rules = dict(DEFAULT_RULES if rules is None else rules)
        self.redis = redis
        self._clock = clock
        self.key_prefix = key_prefix

        # (route, key, window_start) -> count
        self._counters: dict[tuple[str, str, int], int] = {}
        # (route, key) -> (block_until, reason)
        self._blocks: dict[tuple[str, str], tuple[int, str]] = {}
        self._dirty_counters: set[tuple[str, str, int]] = set()
        self._dirty_blocks: set[tuple[str, str]] = set()
        self._flush_task: asyncio.Task | None = None

    def _now(self) -> int:
        return int(self._clock())

    def check(self, route: str, key: str) -> RateLimitDecision:
        """Count one request and decide whether it may proceed.

        Raises:
            KeyError: If no rule is configured for `route`
        """
        rule = self.rules[route]
        now = self._now()

        block = self._blocks.get((route, key))
        if block is not None:
            block_until, reason = block
            if block_until > now:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    reset=block_until - now,
                    limit=rule.limit,
                    reason=reason,
                )
            del self._blocks[(route, key)]
            self._dirty_blocks.discard((route, key))

        window = rule.window_seconds
        window_start = now - now % window
        counter_key = (route, key, window_start)
        count = self._counters.get(counter_key, 0) + 1
        self._counters[counter_key] = count
        self._dirty_counters.add(counter_key)

        if len(self._counters) > PRUNE_THRESHOLD:
            self._prune(now)

        reset = window_start + window - now
        if count > rule.limit:
            if rule.block_threshold is not None and count >= rule.block_threshold and rule.block_seconds > 0:
                self._blocks[(route, key)] = (now + rule.block_seconds, rule.block_reason)
                self._dirty_blocks.add((route, key))
                logger.warning(
                    f"[RateLimiter] Blocking {key} on '{route}' for {rule.block_seconds}s "
                    f"after {count} requests"
                )
            return RateLimitDecision(
                allowed=False,
                remaining=0,
                reset=reset,
                limit=rule.limit,
                reason="Too many requests",
            )

        return RateLimitDecision(
            allowed=True,
            remaining=max(0, rule.limit - count),
            reset=reset,
            limit=rule.limit,
        )

    def _prune(self, now: int) -> None:
        for counter_key in list(self._counters):
            route, _, window_start = counter_key
            window = self.rules[route].window_seconds if route in self.rules else 0
            if window_start + window <= now:
                del self._counters[counter_key]
                self._dirty_counters.discard(counter_key)
        for block_key, (block_until, _) in list(self._blocks.items()):
            if block_until <= now:
                del self._blocks[block_key]
                self._dirty_blocks.discard(block_key)

    # ------------------------------------------------------------------
    # Redis persistence (best effort)
    # ------------------------------------------------------------------

    def _counter_redis_key(self, route: str, key: str, window_start: int) -> str:
        return f"{self.key_prefix}:count:{route}:{key}:{window_start}"

    def _block_redis_key(self, route: str, key: str) -> str:
        return f"{self.key_prefix}:block:{route}:{key}"

    async def flush(self) -> bool:
        """Write changed counters and blocks to Redis.

        Returns:
            True on success, False if there is no Redis or the write failed
        """
        if self.redis is None:
            return False

        now = self._now()
        self._prune(now)
        counters = [k for k in self._dirty_counters if k in self._counters]
        blocks = [k for k in self._dirty_blocks if k in self._blocks]
        if not counters and not blocks:
            return True

        try:
            pipe = self.redis.pipeline()
            for route, key, window_start in counters:
                value = {
                    "route": route,
                    "key": key,
                    "window_start": window_start,
                    "count": self._counters[(route, key, window_start)],
                }
                ttl = window_start + self.rules[route].window_seconds - now
                pipe.set(self._counter_redis_key(route, key, window_start), json.dumps(value), ex=max(1, ttl))
            for route, key in blocks:
                block_until, reason = self._blocks[(route, key)]
                value = {"route": route, "key": key, "until": block_until, "reason": reason}
                pipe.set(self._block_redis_key(route, key), json.dumps(value), ex=max(1, block_until - now))
            await pipe.execute()
        except (RedisError, OSError) as e:
            logger.warning(f"[RateLimiter] Flush to Redis failed, will retry: {e}")
            return False

        self._dirty_counters.difference_update(counters)
        self._dirty_blocks.difference_update(blocks)
        logger.debug(f"[RateLimiter] Flushed {len(counters)} counters and {len(blocks)} blocks")
        return True

    async def restore(self) -> int:
        """Load unexpired counters and blocks from Redis.

        Returns:
            Number of entries restored (0 if Redis is unavailable)
        """
        if self.redis is None:
            return 0

        now = self._now()
        restored = 0
        try:
            async for redis_key in self.redis.scan_iter(match=f"{self.key_prefix}:*"):
                raw = await self.redis.get(redis_key)
                if raw is None:
                    continue
                try:
                    value = json.loads(raw)
                    route, key = value["route"], value["key"]
                    if "until" in value:
                        if int(value["until"]) > now:
                            self._blocks[(route, key)] = (int(value["until"]), value.get("reason") or "")
                            restored += 1
                    elif route in self.rules:
                        window_start = int(value["window_start"])
                        if window_start + self.rules[route].window_seconds > now:
                            counter_key = (route, key, window_start)
                            self._counters[counter_key] = max(
                                self._counters.get(counter_key, 0), int(value["count"])
                            )
                            restored += 1
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning(f"[RateLimiter] Skipping malformed entry {redis_key!r}: {e}")
        except (RedisError, OSError) as e:
            logger.warning(f"[RateLimiter] Could not restore state from Redis: {e}")
            return restored

        logger.info(f"[RateLimiter] Restored {restored} rate limit entries")
        return restored

    def start(self, interval: float) -> None:
        """Start the periodic background flush."""
        if self.redis is None or self._flush_task is not None:
            return
        self._flush_task = asyncio.create_task(self._flush_loop(interval))

    async def _flush_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.flush()

    async def stop(self) -> None:
        """Stop the background flush and write a final snapshot."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.flush()
