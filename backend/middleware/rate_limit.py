"""Rate limiting middleware and utilities.

Implements per-IP sliding window rate limiting for the auth endpoints and the
rest of the API.

SECURITY NOTES:
- In-memory rate limiter is lost on restart. For production with multiple
  instances, use Redis by setting REDIS_URL in environment.
- X-Forwarded-For header is only trusted when TRUSTED_PROXIES is configured.
  This prevents IP spoofing attacks.
- Limits are keyed by client IP, not by account. Brute force against one
  account from many addresses is not throttled here.
"""

import asyncio
import ipaddress
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from config import AppMode, get_settings
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from services.errors import RateLimitedError

logger = logging.getLogger(__name__)
settings = get_settings()

EXEMPT_PATHS = frozenset({"/", "/health", "/docs", "/redoc", "/openapi.json"})
AUTH_PATHS = frozenset({"/auth/register", "/auth/login"})
REFRESH_PATH = "/auth/refresh"


class RateLimiterBackend(ABC):
    """Abstract base class for rate limiter storage backends."""

    @abstractmethod
    async def is_allowed(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int, int]:
        """
        Check if request is allowed and record it if so.

        Returns (is_allowed, remaining, reset_after) where reset_after is the
        number of seconds until the oldest request in the window expires.
        """

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Reset rate limit for a specific key."""

    @abstractmethod
    async def clear(self) -> None:
        """Forget every tracked key."""


class InMemoryRateLimiterBackend(RateLimiterBackend):
    """
    In-memory rate limiter backend using sliding window algorithm.

    WARNING - NOT PROCESS-SAFE:
    Each worker process has its own independent counters, so with N workers
    the effective limit becomes N * configured_limit. Set REDIS_URL for
    deployments with more than one worker.

    MEMORY MANAGEMENT:
    When the number of tracked keys exceeds MAX_KEYS, the least recently used
    keys are evicted.
    """

    MAX_KEYS = 10000

    def __init__(self):
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._last_access: Dict[str, float] = {}  # Track last access time for LRU
        self._lock = asyncio.Lock()
        self._cleanup_interval = 60
        self._last_cleanup = time.time()

    async def is_allowed(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int, int]:
        current_time = time.time()
        window_start = current_time - window_seconds

        async with self._lock:
            if current_time - self._last_cleanup > self._cleanup_interval:
                self._cleanup(window_start)
                self._last_cleanup = current_time

            if len(self._requests) >= self.MAX_KEYS and key not in self._requests:
                self._evict_lru()

            self._last_access[key] = current_time

            request_times = self._requests[key]
            request_times[:] = [t for t in request_times if t > window_start]

            if len(request_times) >= max_requests:
                reset_after = int(request_times[0] + window_seconds - current_time) + 1
                return False, 0, max(1, reset_after)

            request_times.append(current_time)
            remaining = max_requests - len(request_times)
            reset_after = int(request_times[0] + window_seconds - current_time) + 1
            return True, remaining, max(1, reset_after)

    def _evict_lru(self) -> None:
        """Evict least recently used keys to make room for new ones."""
        if not self._last_access:
            return

        # Evict 10% of keys or at least 100 keys to reduce eviction frequency
        num_to_evict = max(100, len(self._requests) // 10)
        sorted_keys = sorted(self._last_access.items(), key=lambda x: x[1])
        keys_to_evict = [k for k, _ in sorted_keys[:num_to_evict]]

        for key in keys_to_evict:
            self._requests.pop(key, None)
            self._last_access.pop(key, None)

        logger.debug("Rate limiter LRU eviction: removed %d keys", len(keys_to_evict))

    def _cleanup(self, cutoff_time: float) -> None:
        keys_to_remove = []
        for key, timestamps in self._requests.items():
            timestamps[:] = [t for t in timestamps if t > cutoff_time]
            if not timestamps:
                keys_to_remove.append(key)
        for key in keys_to_remove:
            del self._requests[key]
            self._last_access.pop(key, None)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._requests.pop(key, None)
            self._last_access.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._requests.clear()
            self._last_access.clear()


class RedisRateLimiterBackend(RateLimiterBackend):
    """
    Redis-based rate limiter backend for production use.

    Shared by every worker and survives restarts. Uses one sorted set per key
    with request timestamps as scores.
    """

    KEY_PREFIX = "ratelimit:"

    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._redis = None
        self._initialized = False

    async def _get_redis(self):
        """Lazy initialization of Redis connection."""
        if not self._initialized:
            import redis.asyncio as redis

            try:
                self._redis = redis.from_url(
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._redis.ping()
                self._initialized = True
                logger.info("Redis rate limiter backend initialized successfully")
            except Exception as e:
                logger.error("Failed to connect to Redis: %s", e)
                raise
        return self._redis

    async def is_allowed(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int, int]:
        redis = await self._get_redis()
        current_time = time.time()
        window_start = current_time - window_seconds
        redis_key = f"{self.KEY_PREFIX}{key}"

        pipe = redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, window_start)
        pipe.zcard(redis_key)
        results = await pipe.execute()
        current_count = results[1]

        allowed = current_count < max_requests
        if allowed:
            # Unique member so concurrent requests in the same instant all count
            await redis.zadd(redis_key, {f"{current_time}:{uuid4().hex}": current_time})
            await redis.expire(redis_key, window_seconds + 1)

        oldest_entries = await redis.zrange(redis_key, 0, 0, withscores=True)
        oldest_time = oldest_entries[0][1] if oldest_entries else current_time
        reset_after = max(1, int(oldest_time + window_seconds - current_time) + 1)

        if not allowed:
            return False, 0, reset_after
        return True, max_requests - current_count - 1, reset_after

    async def reset(self, key: str) -> None:
        redis = await self._get_redis()
        await redis.delete(f"{self.KEY_PREFIX}{key}")

    async def clear(self) -> None:
        redis = await self._get_redis()
        async for redis_key in redis.scan_iter(match=f"{self.KEY_PREFIX}*"):
            await redis.delete(redis_key)


class RateLimiter:
    """
    Sliding window rate limiter.

    Tracks requests per key within a time window. Uses Redis when REDIS_URL
    is configured, in-memory storage otherwise.
    """

    def __init__(self, backend: Optional[RateLimiterBackend] = None):
        if backend:
            self._backend = backend
        elif settings.REDIS_URL:
            logger.info("Using Redis rate limiter backend")
            self._backend = RedisRateLimiterBackend(settings.REDIS_URL)
        else:
            message = (
                "Using in-memory rate limiter. Rate limits will be lost on restart. "
                "Set REDIS_URL for production use with multiple instances."
            )
            if settings.APP_MODE == AppMode.DEV:
                logger.debug(message)
            else:
                logger.warning(message)
            self._backend = InMemoryRateLimiterBackend()

    @property
    def backend(self) -> RateLimiterBackend:
        return self._backend

    async def is_allowed(
        self,
        key: str,
        max_requests: int,
        window_seconds: int,
    ) -> Tuple[bool, int, int]:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Unique identifier (bucket and client IP)
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds

        Returns:
            Tuple of (is_allowed, remaining_requests, reset_after_seconds)
        """
        return await self._backend.is_allowed(key, max_requests, window_seconds)

    async def reset(self, key: str) -> None:
        """Reset rate limit for a specific key."""
        await self._backend.reset(key)

    async def clear(self) -> None:
        """Reset every key."""
        await self._backend.clear()


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def _parse_trusted_proxies() -> List[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    """
    Parse trusted proxy configuration from settings.

    Returns list of IP networks that are trusted to set X-Forwarded-For headers.
    """
    trusted_proxies_str = settings.TRUSTED_PROXIES
    # SECURITY: Do NOT trust X-Forwarded-* by default.
    proxy_strings = (
        [p.strip() for p in trusted_proxies_str.split(",") if p.strip()]
        if trusted_proxies_str
        else []
    )

    networks = []
    for proxy in proxy_strings:
        try:
            networks.append(ipaddress.ip_network(proxy, strict=False))
        except ValueError as e:
            logger.warning("Invalid trusted proxy network '%s': %s", proxy, e)

    return networks


def _is_ip_trusted(ip: str, trusted_networks: List) -> bool:
    """Check if an IP address is in any of the trusted networks."""
    try:
        ip_addr = ipaddress.ip_address(ip)
        return any(ip_addr in network for network in trusted_networks)
    except ValueError:
        return False


def get_client_ip(request: Request) -> str:
    """
    Securely extract client IP address from request.

    SECURITY: Only trusts X-Forwarded-For header when the request comes from
    a configured trusted proxy. Walks the header from right to left and
    returns the first address that is not itself a trusted proxy, so
    entries an attacker prepends are never used.
    """
    trusted_networks = _parse_trusted_proxies()

    direct_ip = request.client.host if request.client else None
    if not direct_ip:
        return "unknown"

    if not _is_ip_trusted(direct_ip, trusted_networks):
        return direct_ip

    forwarded_for = request.headers.get("X-Forwarded-For")

    if not forwarded_for:
        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            ip = real_ip.strip()
            try:
                ipaddress.ip_address(ip)
                return ip
            except ValueError:
                logger.warning("Invalid X-Real-IP header: %s", real_ip)
                return direct_ip
        return direct_ip

    ips = [ip.strip() for ip in forwarded_for.split(",")]

    for ip in reversed(ips):
        try:
            ipaddress.ip_address(ip)
        except ValueError:
            logger.warning("Invalid IP in X-Forwarded-For: %s", ip)
            continue

        if not _is_ip_trusted(ip, trusted_networks):
            return ip

    # All IPs in the chain are trusted proxies, use the leftmost (original)
    if ips:
        try:
            ipaddress.ip_address(ips[0])
            return ips[0]
        except ValueError:
            pass

    return direct_ip


@dataclass(frozen=True)
class Bucket:
    name: str
    max_requests: int
    message: str


def resolve_bucket(path: str) -> Optional[Bucket]:
    """Pick the rate limit bucket for a path, or None if the path is exempt."""
    if path in EXEMPT_PATHS:
        return None
    if path in AUTH_PATHS:
        return Bucket("auth", settings.RATE_LIMIT_AUTH, "Too many authentication attempts")
    if path == REFRESH_PATH:
        return Bucket("refresh", settings.RATE_LIMIT_REFRESH, "Too many token refresh attempts")
    return Bucket("api", settings.RATE_LIMIT_API, "Too many API requests")


def _limit_headers(limit: int, remaining: int, reset_after: int) -> Dict[str, str]:
    return {
        "RateLimit-Limit": str(limit),
        "RateLimit-Remaining": str(remaining),
        "RateLimit-Reset": str(reset_after),
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(remaining),
        "X-RateLimit-Reset": str(int(time.time()) + reset_after),
    }


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Middleware for per-IP rate limiting.

    Buckets (all share RATE_LIMIT_WINDOW):
    - /auth/register and /auth/login: one shared auth counter
    - /auth/refresh: refresh counter
    - everything else except health and docs: general API counter
    """

    def __init__(self, app, rate_limiter: Optional[RateLimiter] = None):
        super().__init__(app)
        self.rate_limiter = rate_limiter or get_rate_limiter()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not settings.RATE_LIMIT_ENABLED or request.method == "OPTIONS":
            return await call_next(request)

        path = request.url.path
        bucket = resolve_bucket(path)
        if bucket is None:
            return await call_next(request)

        client_ip = get_client_ip(request)
        limit_key = f"{bucket.name}:{client_ip}"
        window = settings.RATE_LIMIT_WINDOW

        is_allowed, remaining, reset_after = await self.rate_limiter.is_allowed(
            limit_key, bucket.max_requests, window
        )
        headers = _limit_headers(bucket.max_requests, remaining, reset_after)

        if not is_allowed:
            logger.warning(
                "Rate limit exceeded for %s (path=%s, ip=%s)", limit_key, path, client_ip
            )
            error = RateLimitedError(bucket.message, retry_after=reset_after)
            headers["Retry-After"] = str(reset_after)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error.to_dict(),
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
