from __future__ import annotations

from datetime import datetime

import structlog
from pydantic import BaseModel, ValidationError
from redis.asyncio import Redis

from guidepass.core.config import Settings, get_settings
from guidepass.economy.credits.rules import create_ledger
from guidepass.economy.entitlements.types import (
    EntitlementSnapshot,
    SubscriptionKind,
    SubscriptionStatus,
)

logger = structlog.get_logger(__name__)

CACHE_KEY_PREFIX = "guidepass:entitlements"


class CachedBucket(BaseModel):
    available: int = 0
    used: int = 0


class CachedSnapshot(BaseModel):
    has_unlimited_access: bool
    trial: CachedBucket
    purchased: CachedBucket
    owned_attractions: list[str] = []
    owned_packages: list[str] = []
    unlocked_attractions: list[str] = []
    subscription_active: bool = False
    subscription_kind: SubscriptionKind = SubscriptionKind.NONE
    subscription_expires_at: datetime | None = None
    refreshed_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, snapshot: EntitlementSnapshot) -> CachedSnapshot:
        return cls(
            has_unlimited_access=snapshot.has_unlimited_access,
            trial=CachedBucket(
                available=snapshot.ledger.trial.available,
                used=snapshot.ledger.trial.used,
            ),
            purchased=CachedBucket(
                available=snapshot.ledger.purchased.available,
                used=snapshot.ledger.purchased.used,
            ),
            owned_attractions=sorted(snapshot.owned_attractions),
            owned_packages=sorted(snapshot.owned_packages),
            unlocked_attractions=sorted(snapshot.unlocked_attractions),
            subscription_active=snapshot.subscription.active,
            subscription_kind=snapshot.subscription.kind,
            subscription_expires_at=snapshot.subscription.expires_at,
            refreshed_at=snapshot.refreshed_at,
        )

    def to_snapshot(self) -> EntitlementSnapshot:
        return EntitlementSnapshot(
            has_unlimited_access=self.has_unlimited_access,
            ledger=create_ledger(
                trial_available=self.trial.available,
                trial_used=self.trial.used,
                purchased_available=self.purchased.available,
                purchased_used=self.purchased.used,
            ),
            owned_attractions=frozenset(self.owned_attractions),
            owned_packages=frozenset(self.owned_packages),
            unlocked_attractions=frozenset(self.unlocked_attractions),
            subscription=SubscriptionStatus(
                active=self.subscription_active,
                kind=self.subscription_kind,
                expires_at=self.subscription_expires_at,
            ),
            refreshed_at=self.refreshed_at,
        )


def cache_key(user_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{user_id}"


class SnapshotCache:
    """Last known snapshot per user, replaced wholesale on every remote read."""

    def __init__(self, redis: Redis, *, ttl_seconds: int = 0) -> None:
        self._redis = redis
        self._ttl_seconds = max(0, int(ttl_seconds))

    async def save(self, user_id: str, snapshot: EntitlementSnapshot) -> None:
        payload = CachedSnapshot.from_snapshot(snapshot).model_dump_json()
        if self._ttl_seconds > 0:
            await self._redis.set(cache_key(user_id), payload, ex=self._ttl_seconds)
        else:
            await self._redis.set(cache_key(user_id), payload)

    async def load(self, user_id: str) -> EntitlementSnapshot | None:
        raw = await self._redis.get(cache_key(user_id))
        if raw is None:
            return None

        try:
            return CachedSnapshot.model_validate_json(raw).to_snapshot()
        except ValidationError:
            logger.warning("entitlement_cache_corrupt", user_id=user_id)
            return None

    async def clear(self, user_id: str) -> None:
        await self._redis.delete(cache_key(user_id))


def create_snapshot_cache(settings: Settings | None = None) -> SnapshotCache:
    settings = settings or get_settings()
    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    return SnapshotCache(redis, ttl_seconds=settings.snapshot_cache_ttl_seconds)
