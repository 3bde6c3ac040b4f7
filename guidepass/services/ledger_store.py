from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from guidepass.core.analytics_events import EVENT_SOURCE_SYSTEM, emit_analytics_event
from guidepass.db.models.user_credits import UserCredits
from guidepass.db.repo.attraction_usage_repo import AttractionUsageRepo
from guidepass.db.repo.owned_attractions_repo import OwnedAttractionsRepo
from guidepass.db.repo.purchase_records_repo import PurchaseRecordsRepo
from guidepass.db.repo.subscriptions_repo import SubscriptionsRepo
from guidepass.db.repo.user_credits_repo import UserCreditsRepo
from guidepass.economy.credits.constants import BASE_FREE_ALLOWANCE
from guidepass.economy.credits.rules import create_ledger, grant
from guidepass.economy.credits.types import CreditPool, CreditsLedger
from guidepass.economy.entitlements.types import OwnedItems, SubscriptionKind, SubscriptionStatus
from guidepass.economy.interfaces import CreditsAndOwnedItems, UsageWriteStatus
from guidepass.economy.purchases.catalog import ProductKind, get_product
from guidepass.economy.purchases.types import PurchaseRecord

logger = structlog.get_logger(__name__)


class _WriteConflict(Exception):
    pass


def _ledger_from_model(credits: UserCredits) -> CreditsLedger:
    return create_ledger(
        trial_available=credits.trial_available,
        trial_used=credits.trial_used,
        purchased_available=credits.purchased_available,
        purchased_used=credits.purchased_used,
    )


def _ledger_values(ledger: CreditsLedger) -> dict[str, int]:
    return {
        "trial_available": ledger.trial.available,
        "trial_used": ledger.trial.used,
        "purchased_available": ledger.purchased.available,
        "purchased_used": ledger.purchased.used,
    }


class SqlEntitlementStore:
    """Postgres-backed remote ledger; each write runs in its own transaction."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        base_free_allowance: int = BASE_FREE_ALLOWANCE,
    ) -> None:
        self._session_factory = session_factory
        self._base_free_allowance = base_free_allowance

    async def _seed_ledger(self, session: AsyncSession, user_id: str) -> CreditsLedger:
        purchased = await PurchaseRecordsRepo.sum_package_credits(session, user_id=user_id)
        return create_ledger(
            trial_available=self._base_free_allowance,
            purchased_available=purchased,
        )

    async def get_subscription_status(self, user_id: str) -> SubscriptionStatus:
        async with self._session_factory() as session:
            subscription = await SubscriptionsRepo.get_by_user_id(session, user_id)
        if subscription is None:
            return SubscriptionStatus()
        return SubscriptionStatus(
            active=subscription.is_active,
            kind=SubscriptionKind(subscription.kind),
            expires_at=subscription.expires_at,
        )

    async def get_credits_and_owned_items(self, user_id: str) -> CreditsAndOwnedItems:
        async with self._session_factory() as session:
            credits = await UserCreditsRepo.get_by_user_id(session, user_id)
            if credits is None:
                ledger = await self._seed_ledger(session, user_id)
                version = None
            else:
                ledger = _ledger_from_model(credits)
                version = credits.version

            owned = OwnedItems(
                attractions=frozenset(
                    await OwnedAttractionsRepo.list_attraction_ids(session, user_id=user_id)
                ),
                packages=frozenset(
                    await PurchaseRecordsRepo.list_package_product_ids(session, user_id=user_id)
                ),
                unlocked_attractions=frozenset(
                    await AttractionUsageRepo.list_attraction_ids(session, user_id=user_id)
                ),
            )
        return CreditsAndOwnedItems(ledger=ledger, owned=owned, version=version)

    async def _write_ledger(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> None:
        if expected_version is None:
            written = await UserCreditsRepo.try_create(
                session,
                user_id=user_id,
                now_utc=now_utc,
                **_ledger_values(ledger),
            )
        else:
            written = await UserCreditsRepo.compare_and_set(
                session,
                user_id=user_id,
                expected_version=expected_version,
                now_utc=now_utc,
                **_ledger_values(ledger),
            )
        if not written:
            raise _WriteConflict

    async def upsert_usage(
        self,
        user_id: str,
        *,
        attraction_id: str,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus:
        try:
            async with self._session_factory.begin() as session:
                created = await AttractionUsageRepo.try_create(
                    session,
                    user_id=user_id,
                    attraction_id=attraction_id,
                    used_at=now_utc,
                )
                if not created:
                    return UsageWriteStatus.DUPLICATE

                await self._write_ledger(
                    session,
                    user_id=user_id,
                    ledger=ledger,
                    expected_version=expected_version,
                    now_utc=now_utc,
                )
                await emit_analytics_event(
                    session,
                    event_type="credits_consumed",
                    source=EVENT_SOURCE_SYSTEM,
                    happened_at=now_utc,
                    user_id=user_id,
                    reference=attraction_id,
                    payload={
                        "available_total": ledger.available_total,
                        "used_total": ledger.used_total,
                    },
                )
        except _WriteConflict:
            return UsageWriteStatus.CONFLICT
        return UsageWriteStatus.WRITTEN

    async def release_usage(
        self,
        user_id: str,
        *,
        attraction_id: str,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus:
        if expected_version is None:
            return UsageWriteStatus.MISSING

        try:
            async with self._session_factory.begin() as session:
                deleted = await AttractionUsageRepo.delete(
                    session,
                    user_id=user_id,
                    attraction_id=attraction_id,
                )
                if not deleted:
                    return UsageWriteStatus.MISSING

                await self._write_ledger(
                    session,
                    user_id=user_id,
                    ledger=ledger,
                    expected_version=expected_version,
                    now_utc=now_utc,
                )
                await emit_analytics_event(
                    session,
                    event_type="credits_refunded",
                    source=EVENT_SOURCE_SYSTEM,
                    happened_at=now_utc,
                    user_id=user_id,
                    reference=attraction_id,
                    payload={
                        "available_total": ledger.available_total,
                        "used_total": ledger.used_total,
                    },
                )
        except _WriteConflict:
            return UsageWriteStatus.CONFLICT
        return UsageWriteStatus.WRITTEN

    async def reset_usage(
        self,
        user_id: str,
        *,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus:
        if expected_version is None:
            return UsageWriteStatus.MISSING

        try:
            async with self._session_factory.begin() as session:
                released = await AttractionUsageRepo.delete_all_for_user(session, user_id=user_id)
                await self._write_ledger(
                    session,
                    user_id=user_id,
                    ledger=ledger,
                    expected_version=expected_version,
                    now_utc=now_utc,
                )
                await emit_analytics_event(
                    session,
                    event_type="usage_reset",
                    source=EVENT_SOURCE_SYSTEM,
                    happened_at=now_utc,
                    user_id=user_id,
                    payload={
                        "released_attractions": released,
                        "available_total": ledger.available_total,
                    },
                )
        except _WriteConflict:
            return UsageWriteStatus.CONFLICT
        return UsageWriteStatus.WRITTEN

    async def apply_purchase(self, record: PurchaseRecord, *, now_utc: datetime) -> bool:
        async with self._session_factory.begin() as session:
            inserted = await PurchaseRecordsRepo.insert_if_absent(session, record=record)
            if not inserted:
                return False

            if record.product_kind == ProductKind.SUBSCRIPTION:
                await self._apply_subscription(session, record=record, now_utc=now_utc)
            elif record.product_kind == ProductKind.CONSUMABLE_PACKAGE:
                await self._apply_package(session, record=record, now_utc=now_utc)
            else:
                for attraction_id in record.attraction_ids:
                    await OwnedAttractionsRepo.add_if_absent(
                        session,
                        user_id=record.user_id,
                        attraction_id=attraction_id,
                        source_product_id=record.product_id,
                        source_transaction_id=record.transaction_id,
                        acquired_at=record.purchased_at,
                    )

            await emit_analytics_event(
                session,
                event_type="purchase_credited",
                source=EVENT_SOURCE_SYSTEM,
                happened_at=now_utc,
                user_id=record.user_id,
                reference=record.transaction_id,
                payload={
                    "product_id": record.product_id,
                    "product_kind": record.product_kind.value,
                    "platform": record.platform,
                    "credit_amount": record.credit_amount,
                },
            )
        return True

    async def _apply_subscription(
        self,
        session: AsyncSession,
        *,
        record: PurchaseRecord,
        now_utc: datetime,
    ) -> None:
        product = get_product(record.product_id)
        kind = product.subscription_kind if product is not None else SubscriptionKind.UNLIMITED_MONTHLY
        updated = await SubscriptionsRepo.upsert(
            session,
            user_id=record.user_id,
            kind=kind.value,
            expires_at=record.expires_at,
            product_id=record.product_id,
            transaction_id=record.transaction_id,
            platform=record.platform,
            now_utc=now_utc,
        )
        if not updated:
            logger.info(
                "subscription_upsert_kept_longer_expiry",
                user_id=record.user_id,
                product_id=record.product_id,
                transaction_id=record.transaction_id,
            )

    async def _apply_package(
        self,
        session: AsyncSession,
        *,
        record: PurchaseRecord,
        now_utc: datetime,
    ) -> None:
        credits = await UserCreditsRepo.get_by_user_id_for_update(session, record.user_id)
        if credits is None:
            # The seed sums every package record, including the one just inserted.
            ledger = await self._seed_ledger(session, record.user_id)
            created = await UserCreditsRepo.try_create(
                session,
                user_id=record.user_id,
                now_utc=now_utc,
                **_ledger_values(ledger),
            )
            if created:
                return
            credits = await UserCreditsRepo.get_by_user_id_for_update(session, record.user_id)
            if credits is None:
                raise RuntimeError("user_credits row vanished during purchase apply")

        ledger = grant(_ledger_from_model(credits), CreditPool.PURCHASED, record.credit_amount)
        credits.purchased_available = ledger.purchased.available
        credits.updated_at = now_utc
        credits.version += 1
