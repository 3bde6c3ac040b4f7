from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from guidepass.db.repo.analytics_repo import AnalyticsRepo
from guidepass.db.repo.purchase_records_repo import PurchaseRecordsRepo
from guidepass.db.session import SessionLocal
from guidepass.economy.entitlements.types import SubscriptionKind
from guidepass.economy.purchases.catalog import classify_product
from guidepass.economy.purchases.pipeline import build_purchase_record
from guidepass.economy.usage.service import UsageRecorder
from guidepass.economy.usage.types import UsageRecordStatus
from guidepass.services.ledger_store import SqlEntitlementStore
from tests.ledger_helpers import NOW_UTC, make_event


def _store() -> SqlEntitlementStore:
    return SqlEntitlementStore(SessionLocal, base_free_allowance=2)


async def _apply(store: SqlEntitlementStore, product_id: str, transaction_id: str, **kwargs) -> bool:
    event = make_event(product_id, transaction_id, **kwargs)
    record = build_purchase_record("user-1", event, classify_product(product_id))
    return await store.apply_purchase(record, now_utc=NOW_UTC)


async def _count_events(event_type: str) -> int:
    async with SessionLocal() as session:
        return await AnalyticsRepo.count_by_type_for_user(session, user_id="user-1", event_type=event_type)


@pytest.mark.asyncio
async def test_new_user_reads_seeded_allowance_without_row() -> None:
    loaded = await _store().get_credits_and_owned_items("user-1")

    assert loaded.version is None
    assert loaded.ledger.trial.available == 2
    assert loaded.ledger.purchased.available == 0
    assert loaded.owned.unlocked_attractions == frozenset()


@pytest.mark.asyncio
async def test_usage_is_recorded_once_per_attraction() -> None:
    store = _store()
    recorder = UsageRecorder(store)

    first = await recorder.record_usage("user-1", "colosseum", now_utc=NOW_UTC)
    second = await recorder.record_usage("user-1", "colosseum", now_utc=NOW_UTC)

    assert first.status == UsageRecordStatus.RECORDED
    assert second.status == UsageRecordStatus.ALREADY_RECORDED

    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.version == 0
    assert loaded.ledger.trial.used == 1
    assert loaded.owned.unlocked_attractions == frozenset({"colosseum"})
    assert await _count_events("credits_consumed") == 1
    async with SessionLocal() as session:
        references = await AnalyticsRepo.list_references(
            session,
            user_id="user-1",
            event_type="credits_consumed",
        )
    assert references == ["colosseum"]


@pytest.mark.asyncio
async def test_concurrent_usage_for_distinct_attractions_is_serialized_by_version() -> None:
    store = _store()
    recorder = UsageRecorder(store, max_write_attempts=5)

    results = await asyncio.gather(
        recorder.record_usage("user-1", "colosseum", now_utc=NOW_UTC),
        recorder.record_usage("user-1", "pantheon", now_utc=NOW_UTC),
    )

    assert {result.status for result in results} == {UsageRecordStatus.RECORDED}
    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.ledger.used_total == 2
    assert loaded.ledger.available_total == 0


@pytest.mark.asyncio
async def test_refund_releases_usage_and_returns_credit() -> None:
    store = _store()
    recorder = UsageRecorder(store)
    await recorder.record_usage("user-1", "colosseum", now_utc=NOW_UTC)

    refunded = await recorder.refund_usage("user-1", "colosseum", now_utc=NOW_UTC)
    missing = await recorder.refund_usage("user-1", "colosseum", now_utc=NOW_UTC)

    assert refunded.status == UsageRecordStatus.REFUNDED
    assert missing.status == UsageRecordStatus.NOT_RECORDED
    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.ledger.available_total == 2
    assert loaded.owned.unlocked_attractions == frozenset()


@pytest.mark.asyncio
async def test_reset_deletes_usage_rows_and_restores_allowance() -> None:
    store = _store()
    recorder = UsageRecorder(store)
    await recorder.record_usage("user-1", "colosseum", now_utc=NOW_UTC)
    await recorder.record_usage("user-1", "pantheon", now_utc=NOW_UTC)

    result = await recorder.reset_usage("user-1", now_utc=NOW_UTC)

    assert result.status == UsageRecordStatus.RESET
    assert result.released_attractions == 2
    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.version == 2
    assert loaded.ledger.trial.available == 2
    assert loaded.ledger.used_total == 0
    assert loaded.owned.unlocked_attractions == frozenset()
    assert await _count_events("usage_reset") == 1


@pytest.mark.asyncio
async def test_package_purchase_is_credited_once() -> None:
    store = _store()

    assert await _apply(store, "nuolo_basic_package", "tx-1") is True
    assert await _apply(store, "nuolo_basic_package", "tx-1") is False

    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.ledger.purchased.available == 5
    assert loaded.ledger.trial.available == 2
    assert loaded.owned.packages == frozenset({"nuolo_basic_package"})
    assert await _count_events("purchase_credited") == 1

    async with SessionLocal() as session:
        row = await PurchaseRecordsRepo.get_by_transaction_id(session, "tx-1")
    assert row is not None
    assert row.credit_amount == 5
    assert row.platform == "ios"


@pytest.mark.asyncio
async def test_package_purchase_grants_onto_existing_ledger() -> None:
    store = _store()
    await UsageRecorder(store).record_usage("user-1", "colosseum", now_utc=NOW_UTC)

    await _apply(store, "nuolo_standard_package", "tx-2")

    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.version == 1
    assert loaded.ledger.trial.used == 1
    assert loaded.ledger.purchased.available == 20


@pytest.mark.asyncio
async def test_subscription_keeps_later_expiry() -> None:
    store = _store()

    await _apply(store, "nuolo_premium_yearly", "tx-yearly")
    await _apply(store, "nuolo_premium_monthly", "tx-monthly", timestamp=NOW_UTC + timedelta(days=1))

    status = await store.get_subscription_status("user-1")
    assert status.active is True
    assert status.kind == SubscriptionKind.PREMIUM_YEARLY
    assert status.is_active_at(NOW_UTC + timedelta(days=200)) is True


@pytest.mark.asyncio
async def test_legacy_pack_unlocks_its_attractions() -> None:
    store = _store()

    await _apply(store, "com.nuolo.package.museums", "tx-legacy")
    await _apply(store, "attraction_trevi", "tx-single")

    loaded = await store.get_credits_and_owned_items("user-1")
    assert loaded.owned.attractions == frozenset({"museum_1", "museum_2", "trevi"})
    assert "com.nuolo.package.museums" in loaded.owned.packages
    assert loaded.ledger.purchased.available == 0
