"""
Token bucket rate limiting with a bounded, idle-evicting bucket registry.

Buckets refill lazily when they are consumed from, so no background task is
needed. The registry is split into shards, each guarded by its own lock, so
unrelated clients never wait on each other. Bucket state lives only in
process memory; a restart resets every bucket.
"""

import math
import time

from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from types import MappingProxyType
from typing import Callable, List, Mapping, NamedTuple

from utils.logger import get_logger


logger = get_logger(__name__)


class RateLimitCategory(str, Enum):
    """Endpoint categories, each with its own bucket per client."""

    AUTH = "AUTH"
    API = "API"
    NOTES_CREATE = "NOTES_CREATE"
    NOTES_UPDATE = "NOTES_UPDATE"


class RefillStrategy(str, Enum):
    """How elapsed time turns into tokens.

    GREEDY adds `elapsed / period * refill_tokens` continuously.
    INTERVAL adds `refill_tokens` once per whole elapsed period.
    """

    GREEDY = "greedy"
    INTERVAL = "interval"


@dataclass(frozen=True)
class BucketPolicy:
    """Fixed shape of the buckets created for one category."""

    capacity: int
    refill_tokens: int
    refill_period: float  # seconds
    strategy: RefillStrategy = RefillStrategy.INTERVAL

    def __post_init__(self):
        if self.capacity <= 0 or self.refill_tokens <= 0 or self.refill_period <= 0:
            raise ValueError("capacity, refill_tokens and refill_period must be positive")


DEFAULT_POLICIES: Mapping[RateLimitCategory, BucketPolicy] = MappingProxyType(
    {
        RateLimitCategory.AUTH: BucketPolicy(capacity=5, refill_tokens=5, refill_period=60),
        RateLimitCategory.API: BucketPolicy(capacity=100, refill_tokens=100, refill_period=60),
        RateLimitCategory.NOTES_CREATE: BucketPolicy(capacity=20, refill_tokens=20, refill_period=60),
        RateLimitCategory.NOTES_UPDATE: BucketPolicy(capacity=30, refill_tokens=30, refill_period=60),
    }
)


class RateLimitKey(NamedTuple):
    """Cache key: who is calling, and which kind of endpoint."""

    client_id: str
    category: RateLimitCategory

    def __str__(self) -> str:
        return f"{self.client_id}:{self.category.value}"


@dataclass(frozen=True)
class ConsumptionProbe:
    """Outcome of a consumption attempt."""

    consumed: bool
    remaining_tokens: int
    retry_after_seconds: int = 0


class TokenBucket:
    """
    Token Bucket implementation for rate limiting.

    The token bucket algorithm allows bursts while maintaining an average rate.
    Tokens are added as time passes, and each request consumes one token.
    """

    def __init__(self, policy: BucketPolicy, clock: Callable[[], float] = time.monotonic):
        """
        Initialize a token bucket at full capacity.

        Args:
            policy: Capacity and refill settings for this bucket
            clock: Monotonic time source in seconds
        """
        self.policy = policy
        self.capacity = policy.capacity
        self.tokens = float(policy.capacity)
        self._clock = clock
        self.last_refill = clock()
        self.lock = Lock()

    def _refill(self, now: float) -> None:
        """
        Refill the bucket with tokens based on elapsed time, capped at capacity.
        """
        elapsed = now - self.last_refill
        if elapsed <= 0:
            return

        if self.policy.strategy == RefillStrategy.GREEDY:
            tokens_to_add = elapsed / self.policy.refill_period * self.policy.refill_tokens
            self.tokens = min(self.capacity, self.tokens + tokens_to_add)
            self.last_refill = now
            return

        periods = int(elapsed // self.policy.refill_period)
        if periods:
            self.tokens = min(self.capacity, self.tokens + periods * self.policy.refill_tokens)
            self.last_refill += periods * self.policy.refill_period

    def _seconds_until_available(self, now: float, deficit: float) -> int:
        """Whole seconds until `deficit` more tokens have been refilled (at least 1)."""
        if self.policy.strategy == RefillStrategy.GREEDY:
            wait = deficit / self.policy.refill_tokens * self.policy.refill_period
        else:
            periods = math.ceil(deficit / self.policy.refill_tokens)
            wait = periods * self.policy.refill_period - (now - self.last_refill)

        return max(1, math.ceil(wait))

    def try_consume(self, cost: int = 1) -> ConsumptionProbe:
        """
        Attempt to consume `cost` tokens from the bucket.

        Args:
            cost: Number of tokens to consume (default: 1)

        Raises:
            ValueError: If `cost` is negative or larger than the bucket capacity

        Returns:
            ConsumptionProbe with the remaining tokens, or the retry-after estimate
        """
        if cost < 0:
            raise ValueError("cost must not be negative")
        if cost > self.capacity:
            raise ValueError("cost exceeds bucket capacity")

        with self.lock:
            now = self._clock()
            self._refill(now)

            if self.tokens >= cost:
                self.tokens -= cost
                return ConsumptionProbe(consumed=True, remaining_tokens=int(self.tokens))

            return ConsumptionProbe(
                consumed=False,
                remaining_tokens=int(self.tokens),
                retry_after_seconds=self._seconds_until_available(now, cost - self.tokens),
            )

    def get_available_tokens(self) -> float:
        """
        Get the current number of available tokens.
        """
        with self.lock:
            self._refill(self._clock())
            return self.tokens


@dataclass
class _Entry:
    bucket: TokenBucket
    last_access: float


class _Shard:
    """One lock and one recency-ordered map; least recently used entries come first."""

    def __init__(self):
        self.lock = Lock()
        self.entries: "OrderedDict[RateLimitKey, _Entry]" = OrderedDict()


class RateLimitRegistry:
    """
    Hands out one token bucket per `RateLimitKey`, creating it on first use.

    Entries that are not accessed for `idle_timeout` seconds are dropped, and
    the total number of entries is bounded by `max_entries`: when a shard is
    full its least recently used entry is evicted, even if it is not idle yet.
    An evicted bucket is recreated at full capacity on its next use.
    """

    def __init__(
        self,
        policies: Mapping[RateLimitCategory, BucketPolicy] = DEFAULT_POLICIES,
        idle_timeout: float = 600.0,
        max_entries: int = 100_000,
        shard_count: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ):
        missing = [category.value for category in RateLimitCategory if category not in policies]
        if missing:
            raise ValueError(f"No rate limit policy for categories: {', '.join(missing)}")
        if idle_timeout <= 0 or max_entries <= 0 or shard_count <= 0:
            raise ValueError("idle_timeout, max_entries and shard_count must be positive")

        self.policies = MappingProxyType(dict(policies))
        self.idle_timeout = idle_timeout
        self.max_entries = max_entries
        self._clock = clock
        self._shard_capacity = max(1, math.ceil(max_entries / shard_count))
        self._shards: List[_Shard] = [_Shard() for _ in range(shard_count)]

        logger.info(
            f"Rate limit registry initialized: max entries {max_entries}, "
            f"idle timeout {idle_timeout:.0f}s, {shard_count} shards"
        )

    def _shard_for(self, key: RateLimitKey) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _evict_idle(self, shard: _Shard, now: float) -> int:
        """Drop idle entries from the front of `shard`. Caller holds the shard lock."""
        evicted = 0
        while shard.entries:
            key, entry = next(iter(shard.entries.items()))
            if now - entry.last_access < self.idle_timeout:
                break
            del shard.entries[key]
            evicted += 1
        return evicted

    def _acquire_locked(self, shard: _Shard, key: RateLimitKey, now: float) -> TokenBucket:
        """Find or create the bucket for `key`. Caller holds the shard lock."""
        self._evict_idle(shard, now)

        entry = shard.entries.get(key)
        if entry is not None:
            entry.last_access = now
            shard.entries.move_to_end(key)
            return entry.bucket

        entry = _Entry(bucket=TokenBucket(self.policies[key.category], clock=self._clock), last_access=now)
        shard.entries[key] = entry
        logger.debug(f"Created new token bucket for {key}")

        while len(shard.entries) > self._shard_capacity:
            evicted_key, _ = shard.entries.popitem(last=False)
            logger.debug(f"Evicted token bucket for {evicted_key} (registry full)")

        return entry.bucket

    def acquire(self, key: RateLimitKey) -> TokenBucket:
        """
        Get the live bucket for `key`, creating a full one if none exists.

        Creation is atomic per key: concurrent callers always get the same bucket.
        """
        shard = self._shard_for(key)
        with shard.lock:
            return self._acquire_locked(shard, key, self._clock())

    def try_consume(self, key: RateLimitKey, cost: int = 1) -> ConsumptionProbe:
        """
        Consume `cost` tokens from the bucket for `key`.

        The shard lock is held until the consumption completes, so the bucket
        cannot be evicted and replaced between lookup and consumption.
        """
        shard = self._shard_for(key)
        with shard.lock:
            return self._acquire_locked(shard, key, self._clock()).try_consume(cost)

    def purge_idle(self) -> int:
        """
        Remove idle buckets from every shard.

        Returns:
            Number of buckets removed
        """
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += self._evict_idle(shard, now)

        if removed:
            logger.info(f"Cleaned up {removed} inactive token buckets")
        return removed

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.entries)
        return total

    def __contains__(self, key: RateLimitKey) -> bool:
        shard = self._shard_for(key)
        with shard.lock:
            entry = shard.entries.get(key)
            return entry is not None and self._clock() - entry.last_access < self.idle_timeout
