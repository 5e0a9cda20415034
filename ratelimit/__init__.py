"""Token bucket rate limiting.

Each (tier, identity) pair owns a bucket holding up to ``capacity`` tokens,
refilled at ``rate`` tokens per second. A request takes one token. The
refill-and-take step is a single atomic operation of the bucket store, so
concurrent requests can never spend the same token twice.

Limiters fail open: when the bucket store is unavailable, requests are
allowed and the failure is logged.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import asyncpg
from fastapi import Depends, Request, Response
from pydantic import BaseModel

from auth import get_optional_user
from config.lib.load_settings_conf import RATE_LIMIT_TIERS
from errors import RateLimitedError
from models import Principal

logger = logging.getLogger(__name__)


class RateLimitResult(BaseModel):
    allowed: bool
    tokens_left: float
    reset_time: Optional[int] = None


class BucketStore(ABC):
    """Holds bucket state; take() must be atomic per key."""

    @abstractmethod
    async def take(
        self,
        key: str,
        rate: float,
        capacity: float,
        now: float,
        requested: int = 1
    ) -> Tuple[bool, float]:
        """Refill the bucket for the elapsed time and try to take tokens.

        Returns:
            (allowed, tokens left after the attempt)
        """
        ...


def refill(tokens: float, last_refill: float, rate: float, capacity: float, now: float) -> float:
    """Tokens in a bucket after refilling from last_refill to now."""
    return min(capacity, tokens + max(0.0, now - last_refill) * rate)


class MemoryBucketStore(BucketStore):
    """Bucket state in process memory, for single-instance deployments.

    A bucket that has refilled to capacity holds the same state as a missing
    one, so such buckets are swept out every ``sweep_interval`` seconds.
    """

    def __init__(self, sweep_interval: float = 60.0) -> None:
        self._lock = asyncio.Lock()
        # key -> (tokens, last_refill, time at which the bucket is full again)
        self._buckets: Dict[str, Tuple[float, float, float]] = {}
        self.sweep_interval = sweep_interval
        self._last_sweep: Optional[float] = None

    def evict_full(self, now: float) -> int:
        """Drop buckets that are back at capacity by now."""
        full = [key for key, (_, _, full_at) in self._buckets.items() if full_at <= now]
        for key in full:
            del self._buckets[key]
        if full:
            logger.debug(f"Evicted {len(full)} idle rate limit buckets")
        return len(full)

    async def take(self, key, rate, capacity, now, requested=1):
        async with self._lock:
            if self._last_sweep is None:
                self._last_sweep = now
            elif now - self._last_sweep >= self.sweep_interval:
                self.evict_full(now)
                self._last_sweep = now

            tokens, last_refill, _ = self._buckets.get(key, (capacity, now, now))
            filled = refill(tokens, last_refill, rate, capacity, now)
            allowed = filled >= requested
            left = filled - requested if allowed else filled
            full_at = now + (capacity - left) / rate if rate > 0 else math.inf
            self._buckets[key] = (left, now, full_at)
            return allowed, left


class PostgresBucketStore(BucketStore):
    """Bucket state in the rate_limit_buckets table, shared by all workers.

    The refill, the take and the write happen in one upsert statement.
    """

    TAKE_SQL = '''
        INSERT INTO rate_limit_buckets AS b (bucket_key, tokens, last_refill, last_allowed, updated_at)
        VALUES (
            $1,
            CASE WHEN $3::float8 >= $5::float8 THEN $3::float8 - $5::float8 ELSE $3::float8 END,
            $4::float8,
            $3::float8 >= $5::float8,
            now()
        )
        ON CONFLICT (bucket_key) DO UPDATE SET
            last_allowed = LEAST($3::float8, b.tokens + GREATEST(0, $4::float8 - b.last_refill) * $2::float8) >= $5::float8,
            tokens = CASE
                WHEN LEAST($3::float8, b.tokens + GREATEST(0, $4::float8 - b.last_refill) * $2::float8) >= $5::float8
                THEN LEAST($3::float8, b.tokens + GREATEST(0, $4::float8 - b.last_refill) * $2::float8) - $5::float8
                ELSE LEAST($3::float8, b.tokens + GREATEST(0, $4::float8 - b.last_refill) * $2::float8)
            END,
            last_refill = $4::float8,
            updated_at = now()
        RETURNING last_allowed, tokens
    '''

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def take(self, key, rate, capacity, now, requested=1):
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                self.TAKE_SQL,
                key, float(rate), float(capacity), float(now), float(requested)
            )
        return row['last_allowed'], row['tokens']


class TokenBucketLimiter:
    """Rate limiter for one tier."""

    def __init__(
        self,
        rate: float,
        capacity: float,
        key_prefix: str,
        store: Optional[BucketStore] = None,
        clock: Callable[[], float] = time.time
    ):
        """Initialize the limiter.

        Args:
            rate: Tokens added per second
            capacity: Maximum tokens (burst size)
            key_prefix: Namespace for this tier's buckets
            store: Bucket store; defaults to an in-memory store
            clock: Source of the current time in seconds
        """
        self.rate = float(rate)
        self.capacity = float(capacity)
        self.key_prefix = key_prefix
        self.store = store or MemoryBucketStore()
        self.clock = clock

    def reset_time(self, now: float) -> int:
        """Epoch second by which an empty bucket is full again."""
        return int(now) + math.floor(self.capacity / self.rate)

    async def check(self, identifier: str, requested: int = 1) -> RateLimitResult:
        now = self.clock()
        try:
            allowed, left = await self.store.take(
                f"{self.key_prefix}:{identifier}",
                self.rate,
                self.capacity,
                now,
                requested
            )
        except Exception as e:
            logger.error(f"Rate limiter {self.key_prefix} failed for {identifier}, allowing request: {e}")
            return RateLimitResult(allowed=True, tokens_left=self.capacity)

        return RateLimitResult(allowed=allowed, tokens_left=left, reset_time=self.reset_time(now))


def build_limiters(settings: Dict, store: Optional[BucketStore] = None) -> Dict[str, TokenBucketLimiter]:
    """Create one limiter per tier from rate_limit_<tier>_rate/_capacity settings."""
    store = store or MemoryBucketStore()
    return {
        tier: TokenBucketLimiter(
            rate=settings[f'rate_limit_{tier}_rate'],
            capacity=settings[f'rate_limit_{tier}_capacity'],
            key_prefix=f"rate_limit:{tier}",
            store=store
        )
        for tier in RATE_LIMIT_TIERS
    }


def client_identifier(request: Request, user: Optional[Principal] = None) -> str:
    """Caller identity: forwarded or peer address plus user id."""
    ip = (
        request.headers.get('x-forwarded-for')
        or request.headers.get('x-real-ip')
        or (request.client.host if request.client else None)
        or 'unknown'
    )
    return f"{ip.split(',')[0].strip()}:{user.user_id if user else 'anonymous'}"


def rate_limit(tier: str = 'general'):
    """FastAPI dependency enforcing the limiter of a tier.

    Limiters are read from ``app.state.rate_limiters``; an app without them
    is not limited.
    """
    if tier not in RATE_LIMIT_TIERS:
        raise ValueError(f"Unknown rate limit tier: {tier}")

    async def dependency(
        request: Request,
        response: Response,
        user: Optional[Principal] = Depends(get_optional_user)
    ) -> None:
        limiters = getattr(request.app.state, 'rate_limiters', None)
        if not limiters:
            return

        limiter = limiters[tier]
        result = await limiter.check(client_identifier(request, user))

        response.headers['X-RateLimit-Limit'] = str(int(limiter.rate))
        response.headers['X-RateLimit-Remaining'] = str(int(result.tokens_left))
        if result.reset_time is not None:
            response.headers['X-RateLimit-Reset'] = str(result.reset_time)

        if not result.allowed:
            logger.warning(f"Rate limit {tier} exceeded for {client_identifier(request, user)}")
            raise RateLimitedError(
                "Rate limit exceeded. Please try again later.",
                reset_time=result.reset_time
            )

    return dependency


__all__ = [
    'RateLimitResult',
    'BucketStore',
    'MemoryBucketStore',
    'PostgresBucketStore',
    'TokenBucketLimiter',
    'refill',
    'build_limiters',
    'client_identifier',
    'rate_limit',
]
