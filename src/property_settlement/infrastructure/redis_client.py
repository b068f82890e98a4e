"""Redis client for request idempotency keys.

Offer creation and settlement requests may carry an ``Idempotency-Key``
header. The first request to claim a key wins; a replay inside the TTL is
rejected with DuplicateOperationError before any ledger call is made.

Redis is optional: when it cannot be reached at startup the client stays
unset, ``redis_available()`` is False and requests are served without
deduplication.

Usage:
    from property_settlement.infrastructure.redis_client import claim_idempotency

    if not await claim_idempotency("offers.create", key):
        raise DuplicateOperationError(key)
"""

from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from property_settlement.config import get_settings
from property_settlement.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

_CONNECT_TIMEOUT_SECONDS = 2.0


async def init_redis(url: str | None = None) -> aioredis.Redis | None:
    """Connect and ping; leaves the client unset if Redis is unreachable."""
    global _redis_client
    url = url or get_settings().redis_url
    client = aioredis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=_CONNECT_TIMEOUT_SECONDS,
        socket_timeout=_CONNECT_TIMEOUT_SECONDS,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        logger.warning("redis.unavailable", url=url, error=str(exc))
        return None
    _redis_client = client
    logger.info("redis.connected", url=url)
    return client


def get_redis() -> aioredis.Redis:
    if _redis_client is None:
        raise RuntimeError("Redis is not connected")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def redis_status() -> str:
    """``healthy``, ``disabled`` (never connected) or ``unhealthy: <error>``."""
    if _redis_client is None:
        return "disabled"
    try:
        await _redis_client.ping()
    except (RedisError, OSError) as exc:
        logger.error("redis.ping_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _idempotency_key(scope: str, key: str) -> str:
    return f"idempotency:{scope}:{key}"


async def claim_idempotency(scope: str, key: str, value: str = "1") -> bool:
    """Atomically claim an idempotency key with a TTL.

    Returns True if this caller claimed the key, False if it was already used.
    """
    settings = get_settings()
    claimed = await get_redis().set(
        _idempotency_key(scope, key),
        value,
        ex=settings.redis_idempotency_ttl_seconds,
        nx=True,
    )
    return bool(claimed)


async def release_idempotency(scope: str, key: str) -> None:
    """Release a claimed key so a request that failed before the ledger can be retried."""
    await get_redis().delete(_idempotency_key(scope, key))
