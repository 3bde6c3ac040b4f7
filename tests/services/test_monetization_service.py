from __future__ import annotations

from datetime import timedelta

import pytest

from guidepass.economy.credits.rules import create_ledger
from guidepass.economy.entitlements.types import AccessReason, SubscriptionKind, SubscriptionStatus
from guidepass.economy.purchases.errors import (
    AlreadyOwnedError,
    PurchaseFailedError,
    StoreUnavailableError,
    UserCancelledError,
)
from guidepass.economy.purchases.types import PurchaseOutcome, PurchaseState, RestoreOutcome
from guidepass.economy.usage.types import UsageRecordStatus
from guidepass.services.monetization import MonetizationService
from guidepass.services.snapshot_cache import SnapshotCache
from tests.ledger_helpers import NOW_UTC, FakePurchaseProvider, FakeRedis, InMemoryEntitlementStore, make_event


def _service(
    store: InMemoryEntitlementStore | None = None,
    provider: FakePurchaseProvider | None = None,
    cache: SnapshotCache | None = None,
) -> tuple[MonetizationService, InMemoryEntitlementStore, FakePurchaseProvider]:
    store = store or InMemoryEntitlementStore()
    provider = provider or FakePurchaseProvider()
    service = MonetizationService(
        "user-1",
        store=store,
        provider=provider,
        cache=cache,
        clock=lambda: NOW_UTC,
    )
    return service, store, provider


@pytest.mark.asyncio
async def test_connect_is_idempotent_and_disconnect_unsubscribes() -> None:
    service, _, provider = _service()

    await service.connect()
    await service.connect()

    assert provider.connect_calls == 1
    assert len(provider.listeners) == 1
    assert service.bus.handler_count == 1

    await service.disconnect()
    await service.disconnect()

    assert service.is_connected is False
    assert provider.listeners == []
    assert service.bus.handler_count == 0


@pytest.mark.asyncio
async def test_connect_failure_surfaces_store_unavailable() -> None:
    provider = FakePurchaseProvider()
    provider.connect_error = OSError("no billing client")
    service, _, _ = _service(provider=provider)

    with pytest.raises(StoreUnavailableError):
        await service.connect()
    assert service.is_connected is False


@pytest.mark.asyncio
async def test_free_user_consumes_trial_then_is_blocked() -> None:
    service, store, _ = _service()

    for attraction_id in ("colosseum", "pantheon"):
        decision = await service.resolve_access(attraction_id)
        assert decision.reason == AccessReason.FREE_REMAINING
        result = await service.record_usage_if_needed(attraction_id, decision)
        assert result.status == UsageRecordStatus.RECORDED

    blocked = await service.resolve_access("trevi")
    assert blocked.has_access is False
    assert blocked.reason == AccessReason.BLOCKED

    revisit = await service.resolve_access("colosseum")
    assert revisit.reason == AccessReason.OWNED
    assert store.ledger_for("user-1").used_total == 2


@pytest.mark.asyncio
async def test_unlimited_user_never_records_usage() -> None:
    store = InMemoryEntitlementStore()
    store.subscriptions["user-1"] = SubscriptionStatus(
        active=True,
        kind=SubscriptionKind.UNLIMITED_MONTHLY,
        expires_at=NOW_UTC + timedelta(days=3),
    )
    service, _, _ = _service(store=store)

    result = await service.record_usage_if_needed("colosseum")

    assert result is None
    assert "user-1" not in store.credits


@pytest.mark.asyncio
async def test_optimistic_usage_is_visible_until_authoritative_refresh() -> None:
    store = InMemoryEntitlementStore()
    store.write_error = ConnectionError("offline")
    service, _, _ = _service(store=store)

    result = await service.record_usage_if_needed("colosseum")
    assert result.status == UsageRecordStatus.FAILED

    optimistic = await service._current_snapshot()
    assert optimistic.ledger.available_total == 1
    assert "colosseum" in optimistic.unlocked_attractions

    refreshed = await service.get_entitlement_snapshot()
    assert refreshed.ledger.available_total == 2
    assert "colosseum" not in refreshed.unlocked_attractions


@pytest.mark.asyncio
async def test_remote_read_failure_falls_back_to_cache_then_default() -> None:
    redis = FakeRedis()
    store = InMemoryEntitlementStore()
    store.credits["user-1"] = (create_ledger(trial_used=2, purchased_available=7), 1)
    service, _, _ = _service(store=store, cache=SnapshotCache(redis))

    await service.get_entitlement_snapshot()
    store.read_error = ConnectionError("offline")

    fresh_service, _, _ = _service(store=store, cache=SnapshotCache(redis))
    cached = await fresh_service.get_entitlement_snapshot()
    assert cached.ledger.purchased.available == 7

    uncached_service, _, _ = _service(store=store)
    default = await uncached_service.get_entitlement_snapshot()
    assert default.ledger.trial.available == 2
    assert default.has_unlimited_access is False


@pytest.mark.asyncio
async def test_purchase_credits_package_and_refreshes_snapshot() -> None:
    service, store, provider = _service()
    provider.next_purchase = make_event("nuolo_basic_package", "tx-1")

    result = await service.purchase("nuolo_basic_package")

    assert result.outcome == PurchaseOutcome.PURCHASED
    assert result.is_error is False
    snapshot = await service._current_snapshot()
    assert snapshot.ledger.purchased.available == 5
    assert (await service.resolve_access("colosseum")).reason == AccessReason.PACK


@pytest.mark.asyncio
async def test_push_delivered_purchase_is_reconciled() -> None:
    service, store, provider = _service()
    await service.connect()

    await provider.emit(make_event("nuolo_unlimited_monthly", "tx-push"))

    assert store.subscriptions["user-1"].active is True
    assert (await service.resolve_access("colosseum")).reason == AccessReason.UNLIMITED


@pytest.mark.asyncio
async def test_cancelled_purchase_is_not_an_error() -> None:
    service, _, provider = _service()
    provider.purchase_error = UserCancelledError()

    result = await service.purchase("nuolo_basic_package")

    assert result.outcome == PurchaseOutcome.CANCELLED
    assert result.is_error is False
    assert result.error_code is None


@pytest.mark.asyncio
async def test_already_owned_runs_restore_and_counts_as_success() -> None:
    service, store, provider = _service()
    provider.purchase_error = AlreadyOwnedError()
    provider.available = [make_event("nuolo_lifetime", "tx-old")]

    result = await service.purchase("nuolo_lifetime")

    assert result.outcome == PurchaseOutcome.ALREADY_OWNED
    assert result.is_error is False
    assert result.restore.outcome == RestoreOutcome.RESTORED
    assert store.subscriptions["user-1"].kind == SubscriptionKind.LIFETIME


@pytest.mark.asyncio
async def test_provider_rejection_is_retryable_failure() -> None:
    service, _, provider = _service()
    provider.purchase_error = PurchaseFailedError("declined")

    result = await service.purchase("nuolo_basic_package")

    assert result.outcome == PurchaseOutcome.FAILED
    assert result.retryable is True
    assert result.error_code == "purchase_failed"


@pytest.mark.asyncio
async def test_purchase_store_unavailable_on_connect() -> None:
    provider = FakePurchaseProvider()
    provider.connect_error = StoreUnavailableError()
    service, _, _ = _service(provider=provider)

    result = await service.purchase("nuolo_basic_package")

    assert result.outcome == PurchaseOutcome.STORE_UNAVAILABLE
    assert result.retryable is True


@pytest.mark.asyncio
async def test_pending_purchase_does_not_touch_ledger() -> None:
    service, store, provider = _service()
    provider.next_purchase = make_event("nuolo_basic_package", "tx-1", state=PurchaseState.PENDING)

    result = await service.purchase("nuolo_basic_package")

    assert result.outcome == PurchaseOutcome.PENDING
    assert store.apply_calls == 0


@pytest.mark.asyncio
async def test_unknown_product_fails_before_provider_round_trip() -> None:
    service, _, provider = _service()

    result = await service.purchase("mystery_box")

    assert result.outcome == PurchaseOutcome.FAILED
    assert result.error_code == "product_not_found"
    assert provider.connect_calls == 0


@pytest.mark.asyncio
async def test_restore_distinguishes_empty_from_error() -> None:
    service, _, provider = _service()

    empty = await service.restore()
    provider.list_error = StoreUnavailableError()
    failed = await service.restore()

    assert empty.outcome == RestoreOutcome.EMPTY
    assert failed.outcome == RestoreOutcome.ERROR
    assert failed.retryable is True


@pytest.mark.asyncio
async def test_refund_usage_returns_credit() -> None:
    service, store, _ = _service()
    await service.record_usage_if_needed("colosseum")

    result = await service.refund_usage("colosseum")

    assert result.status == UsageRecordStatus.REFUNDED
    assert store.ledger_for("user-1").available_total == 2
    assert (await service._current_snapshot()).ledger.available_total == 2


@pytest.mark.asyncio
async def test_reset_usage_clears_unlocked_attractions_from_snapshot() -> None:
    service, store, _ = _service()
    await service.record_usage_if_needed("colosseum")
    await service.record_usage_if_needed("pantheon")

    result = await service.reset_usage()
    snapshot = await service._current_snapshot()

    assert result.status == UsageRecordStatus.RESET
    assert result.released_attractions == 2
    assert snapshot.unlocked_attractions == frozenset()
    assert snapshot.ledger.available_total == 2


@pytest.mark.asyncio
async def test_provider_error_listener_does_not_raise() -> None:
    service, store, provider = _service()
    await service.connect()

    await provider.emit_error(UserCancelledError())
    await provider.emit_error(PurchaseFailedError("billing glitch"))

    assert service.is_connected is True
    assert store.apply_calls == 0
