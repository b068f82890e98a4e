"""Tests for the Redis idempotency helpers against an in-memory fake client."""

from __future__ import annotations

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from property_settlement.infrastructure import redis_client


class FakeRedis:
    """Implements the few commands the helpers use."""

    def __init__(self, fail_ping: bool = False) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.fail_ping = fail_ping
        self.closed = False

    async def ping(self) -> bool:
        if self.fail_ping:
            raise RedisConnectionError("connection refused")
        return True

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def fake(monkeypatch: pytest.MonkeyPatch) -> FakeRedis:
    client = FakeRedis()
    monkeypatch.setattr(redis_client, "_redis_client", client)
    return client


@pytest.mark.asyncio
class TestIdempotencyKeys:
    async def test_first_claim_wins(self, fake: FakeRedis) -> None:
        assert await redis_client.claim_idempotency("offers.create", "k1") is True
        assert await redis_client.claim_idempotency("offers.create", "k1") is False
        assert "idempotency:offers.create:k1" in fake.store
        assert fake.ttls["idempotency:offers.create:k1"] == 86400

    async def test_scopes_are_separate(self, fake: FakeRedis) -> None:
        assert await redis_client.claim_idempotency("offers.create", "k1")
        assert await redis_client.claim_idempotency("settlements.execute", "k1")

    async def test_release_allows_reclaim(self, fake: FakeRedis) -> None:
        await redis_client.claim_idempotency("offers.create", "k1")
        await redis_client.release_idempotency("offers.create", "k1")
        assert await redis_client.claim_idempotency("offers.create", "k1") is True


@pytest.mark.asyncio
class TestStatus:
    async def test_disabled_when_not_connected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(redis_client, "_redis_client", None)
        assert redis_client.redis_available() is False
        assert await redis_client.redis_status() == "disabled"

    async def test_healthy(self, fake: FakeRedis) -> None:
        assert redis_client.redis_available() is True
        assert await redis_client.redis_status() == "healthy"

    async def test_unhealthy_when_ping_fails(self, fake: FakeRedis) -> None:
        fake.fail_ping = True
        assert (await redis_client.redis_status()).startswith("unhealthy")

    async def test_init_leaves_client_unset_when_unreachable(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        broken = FakeRedis(fail_ping=True)
        monkeypatch.setattr(redis_client, "_redis_client", None)
        monkeypatch.setattr(redis_client.aioredis, "from_url", lambda url, **kwargs: broken)

        assert await redis_client.init_redis("redis://nowhere:6379/0") is None
        assert redis_client.redis_available() is False
        assert broken.closed is True
