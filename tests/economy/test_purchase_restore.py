from __future__ import annotations

import pytest

from guidepass.economy.purchases.errors import StoreUnavailableError
from guidepass.economy.purchases.pipeline import PurchaseReconciler
from guidepass.economy.purchases.restore import restore_purchases
from guidepass.economy.purchases.types import RestoreOutcome
from tests.ledger_helpers import NOW_UTC, FakePurchaseProvider, InMemoryEntitlementStore, make_event


@pytest.mark.asyncio
async def test_restore_with_no_purchases_is_empty_not_error() -> None:
    store = InMemoryEntitlementStore()
    provider = FakePurchaseProvider()

    result = await restore_purchases(provider, PurchaseReconciler(store, provider), "user-1", now_utc=NOW_UTC)

    assert result.outcome == RestoreOutcome.EMPTY
    assert result.retryable is False
    assert result.error_code is None


@pytest.mark.asyncio
async def test_restore_store_unavailable_is_retryable_error() -> None:
    store = InMemoryEntitlementStore()
    provider = FakePurchaseProvider()
    provider.list_error = StoreUnavailableError("billing unavailable")

    result = await restore_purchases(provider, PurchaseReconciler(store, provider), "user-1", now_utc=NOW_UTC)

    assert result.outcome == RestoreOutcome.ERROR
    assert result.retryable is True
    assert result.error_code == "store_unavailable"


@pytest.mark.asyncio
async def test_restore_replays_every_item_and_is_safe_to_repeat() -> None:
    store = InMemoryEntitlementStore()
    provider = FakePurchaseProvider()
    provider.available = [
        make_event("nuolo_basic_package", "tx-1"),
        make_event("nuolo_unlimited_monthly", "tx-2"),
        make_event("com.nuolo.package.city_highlights", "tx-3"),
    ]
    reconciler = PurchaseReconciler(store, provider)

    first = await restore_purchases(provider, reconciler, "user-1", now_utc=NOW_UTC)
    second = await restore_purchases(provider, reconciler, "user-1", now_utc=NOW_UTC)

    assert first.outcome == RestoreOutcome.RESTORED
    assert first.restored_count == 3
    assert second.outcome == RestoreOutcome.RESTORED
    assert all(result.idempotent_replay for result in second.results)
    assert store.ledger_for("user-1").purchased.available == 5
    assert store.owned["user-1"] == {"attraction_1", "attraction_2"}
    assert store.subscriptions["user-1"].active is True
