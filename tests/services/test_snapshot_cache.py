from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace

import pytest

from guidepass.economy.credits.rules import create_ledger
from guidepass.economy.entitlements.resolver import build_snapshot
from guidepass.economy.entitlements.types import OwnedItems, SubscriptionKind, SubscriptionStatus
from guidepass.services import snapshot_cache
from guidepass.services.snapshot_cache import SnapshotCache, cache_key, create_snapshot_cache
from tests.ledger_helpers import NOW_UTC, FakeRedis


def _snapshot():
    return build_snapshot(
        SubscriptionStatus(
            active=True,
            kind=SubscriptionKind.PREMIUM_YEARLY,
            expires_at=NOW_UTC + timedelta(days=30),
        ),
        create_ledger(trial_available=1, trial_used=1, purchased_available=3, purchased_used=2),
        OwnedItems(
            attractions=frozenset({"arch_1", "arch_2"}),
            packages=frozenset({"com.nuolo.package.architecture"}),
            unlocked_attractions=frozenset({"colosseum"}),
        ),
        now_utc=NOW_UTC,
    )


@pytest.mark.asyncio
async def test_snapshot_survives_cache_round_trip() -> None:
    redis = FakeRedis()
    cache = SnapshotCache(redis)
    snapshot = _snapshot()

    await cache.save("user-1", snapshot)

    assert await cache.load("user-1") == snapshot
    assert cache_key("user-1") == "guidepass:entitlements:user-1"
    assert redis.expirations == {}


@pytest.mark.asyncio
async def test_save_overwrites_previous_snapshot_wholesale() -> None:
    cache = SnapshotCache(FakeRedis())
    await cache.save("user-1", _snapshot())

    replacement = build_snapshot(SubscriptionStatus(), create_ledger(trial_available=2), OwnedItems(), now_utc=NOW_UTC)
    await cache.save("user-1", replacement)

    loaded = await cache.load("user-1")
    assert loaded == replacement
    assert loaded.owned_attractions == frozenset()


@pytest.mark.asyncio
async def test_ttl_is_applied_when_configured() -> None:
    redis = FakeRedis()
    cache = SnapshotCache(redis, ttl_seconds=600)

    await cache.save("user-1", _snapshot())

    assert redis.expirations == {"guidepass:entitlements:user-1": 600}


@pytest.mark.asyncio
async def test_corrupt_payload_is_a_cache_miss() -> None:
    redis = FakeRedis()
    redis.values[cache_key("user-1")] = "{not json"
    cache = SnapshotCache(redis)

    assert await cache.load("user-1") is None


@pytest.mark.asyncio
async def test_missing_key_and_clear() -> None:
    redis = FakeRedis()
    cache = SnapshotCache(redis)

    assert await cache.load("user-1") is None
    await cache.save("user-1", _snapshot())
    await cache.clear("user-1")
    assert await cache.load("user-1") is None


def test_create_snapshot_cache_uses_configured_redis(monkeypatch) -> None:
    captured: dict[str, object] = {}
    redis = FakeRedis()

    def _from_url(url: str, **kwargs):
        captured["url"] = url
        captured["kwargs"] = kwargs
        return redis

    monkeypatch.setattr(snapshot_cache.Redis, "from_url", _from_url)

    cache = create_snapshot_cache(
        SimpleNamespace(redis_url="redis://cache:6379/2", snapshot_cache_ttl_seconds=900)
    )

    assert isinstance(cache, SnapshotCache)
    assert captured == {"url": "redis://cache:6379/2", "kwargs": {"decode_responses": True}}
    assert cache._ttl_seconds == 900
