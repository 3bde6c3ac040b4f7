from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from guidepass.economy.credits.constants import BASE_FREE_ALLOWANCE
from guidepass.economy.credits.rules import consume, create_ledger
from guidepass.economy.credits.types import RefundTarget
from guidepass.economy.entitlements.resolver import build_snapshot, resolve_snapshot_access
from guidepass.economy.entitlements.types import (
    AccessDecision,
    EntitlementSnapshot,
    OwnedItems,
    SubscriptionStatus,
)
from guidepass.economy.interfaces import EntitlementStore, PurchaseProvider
from guidepass.economy.purchases.catalog import classify_product
from guidepass.economy.purchases.errors import (
    AlreadyOwnedError,
    ProductNotFoundError,
    PurchaseFailedError,
    StoreUnavailableError,
    UserCancelledError,
)
from guidepass.economy.purchases.pipeline import PurchaseReconciler
from guidepass.economy.purchases.restore import restore_purchases
from guidepass.economy.purchases.types import (
    PurchaseEvent,
    PurchaseOutcome,
    PurchaseResult,
    PurchaseState,
    RestoreOutcome,
    RestoreResult,
)
from guidepass.economy.usage.service import UsageRecorder
from guidepass.economy.usage.types import UsageRecordResult, UsageRecordStatus, UsageResetResult
from guidepass.services.event_bus import LedgerChanged, LedgerEventBus
from guidepass.services.snapshot_cache import SnapshotCache

logger = structlog.get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MonetizationService:
    """Per-user entry point for access checks, usage, purchases and restore.

    Ledger changes reach this object only through the ``LedgerEventBus``; it
    re-reads the snapshot on every change instead of reacting to raw provider
    callbacks.
    """

    def __init__(
        self,
        user_id: str,
        *,
        store: EntitlementStore,
        provider: PurchaseProvider,
        cache: SnapshotCache | None = None,
        bus: LedgerEventBus | None = None,
        base_free_allowance: int = BASE_FREE_ALLOWANCE,
        refund_target: RefundTarget = RefundTarget.PURCHASED_FIRST,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.user_id = user_id
        self._store = store
        self._provider = provider
        self._cache = cache
        self._bus = bus or LedgerEventBus()
        self._base_free_allowance = base_free_allowance
        self._refund_target = refund_target
        self._clock = clock

        self._reconciler = PurchaseReconciler(store, provider, self._bus)
        self._recorder = UsageRecorder(store, self._bus)

        self._lock = asyncio.Lock()
        self._connected = False
        self._unsubscribe_provider: Callable[[], None] | None = None
        self._unsubscribe_bus: Callable[[], None] | None = None

        self._snapshot: EntitlementSnapshot | None = None
        self._optimistic_usage: set[str] = set()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def bus(self) -> LedgerEventBus:
        return self._bus

    async def connect(self) -> None:
        async with self._lock:
            if self._connected:
                return

            try:
                await self._provider.connect()
            except StoreUnavailableError:
                logger.warning("purchase_provider_connect_failed", user_id=self.user_id)
                raise
            except Exception as exc:
                logger.warning(
                    "purchase_provider_connect_failed",
                    user_id=self.user_id,
                    error_type=type(exc).__name__,
                )
                raise StoreUnavailableError(str(exc)) from exc

            self._unsubscribe_provider = self._provider.subscribe(
                self._on_provider_purchase,
                self._on_provider_error,
            )
            self._unsubscribe_bus = self._bus.subscribe(self._on_ledger_changed)
            self._connected = True
            logger.info("monetization_connected", user_id=self.user_id)

    async def disconnect(self) -> None:
        async with self._lock:
            if not self._connected:
                return

            if self._unsubscribe_provider is not None:
                self._unsubscribe_provider()
                self._unsubscribe_provider = None
            if self._unsubscribe_bus is not None:
                self._unsubscribe_bus()
                self._unsubscribe_bus = None

            self._connected = False
            await self._provider.disconnect()
            logger.info("monetization_disconnected", user_id=self.user_id)

    def _default_snapshot(self) -> EntitlementSnapshot:
        return build_snapshot(
            SubscriptionStatus(),
            create_ledger(trial_available=self._base_free_allowance),
            OwnedItems(),
            now_utc=self._clock(),
        )

    def _with_optimistic_usage(self, snapshot: EntitlementSnapshot) -> EntitlementSnapshot:
        pending = self._optimistic_usage - snapshot.unlocked_attractions
        if not pending or snapshot.has_unlimited_access:
            return snapshot

        consumed = consume(snapshot.ledger, len(pending))
        return EntitlementSnapshot(
            has_unlimited_access=snapshot.has_unlimited_access,
            ledger=consumed.ledger,
            owned_attractions=snapshot.owned_attractions,
            owned_packages=snapshot.owned_packages,
            unlocked_attractions=snapshot.unlocked_attractions | pending,
            subscription=snapshot.subscription,
            refreshed_at=snapshot.refreshed_at,
        )

    async def refresh(self) -> EntitlementSnapshot:
        now_utc = self._clock()
        subscription = await self._store.get_subscription_status(self.user_id)
        credits = await self._store.get_credits_and_owned_items(self.user_id)
        snapshot = build_snapshot(subscription, credits.ledger, credits.owned, now_utc=now_utc)

        self._snapshot = snapshot
        self._optimistic_usage.clear()

        if self._cache is not None:
            try:
                await self._cache.save(self.user_id, snapshot)
            except Exception as exc:
                logger.warning(
                    "entitlement_cache_write_failed",
                    user_id=self.user_id,
                    error_type=type(exc).__name__,
                )
        return snapshot

    async def load_cached_snapshot(self) -> EntitlementSnapshot | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.load(self.user_id)
        except Exception as exc:
            logger.warning(
                "entitlement_cache_read_failed",
                user_id=self.user_id,
                error_type=type(exc).__name__,
            )
            return None

    async def get_entitlement_snapshot(self) -> EntitlementSnapshot:
        try:
            snapshot = await self.refresh()
        except Exception as exc:
            logger.warning(
                "entitlement_remote_read_failed",
                user_id=self.user_id,
                error_type=type(exc).__name__,
            )
            snapshot = self._snapshot or await self.load_cached_snapshot() or self._default_snapshot()
        return self._with_optimistic_usage(snapshot)

    async def _current_snapshot(self) -> EntitlementSnapshot:
        if self._snapshot is None:
            return await self.get_entitlement_snapshot()
        return self._with_optimistic_usage(self._snapshot)

    async def resolve_access(self, attraction_id: str) -> AccessDecision:
        snapshot = await self._current_snapshot()
        decision = resolve_snapshot_access(
            snapshot,
            attraction_id,
            now_utc=self._clock(),
            base_free_allowance=self._base_free_allowance,
        )
        logger.info(
            "access_resolved",
            user_id=self.user_id,
            attraction_id=attraction_id,
            has_access=decision.has_access,
            reason=decision.reason.value,
        )
        return decision

    async def record_usage_if_needed(
        self,
        attraction_id: str,
        decision: AccessDecision | None = None,
    ) -> UsageRecordResult | None:
        if decision is None:
            decision = await self.resolve_access(attraction_id)
        if not decision.has_access or not decision.consumes_credit:
            return None

        self._optimistic_usage.add(attraction_id)
        result = await self._recorder.record_usage(self.user_id, attraction_id, now_utc=self._clock())
        if result.status in {
            UsageRecordStatus.ALREADY_RECORDED,
            UsageRecordStatus.NOT_REQUIRED,
            UsageRecordStatus.LIMIT_EXCEEDED,
        }:
            self._optimistic_usage.discard(attraction_id)
        elif result.changed_ledger and not self._connected:
            # Bus-driven refresh only runs while connected.
            await self._refresh_quietly()
        return result

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except Exception as exc:
            logger.warning(
                "entitlement_refresh_failed",
                user_id=self.user_id,
                error_type=type(exc).__name__,
            )

    async def refund_usage(self, attraction_id: str) -> UsageRecordResult:
        self._optimistic_usage.discard(attraction_id)
        result = await self._recorder.refund_usage(
            self.user_id,
            attraction_id,
            now_utc=self._clock(),
            target=self._refund_target,
        )
        if result.changed_ledger and not self._connected:
            await self._refresh_quietly()
        return result

    async def reset_usage(self) -> UsageResetResult:
        self._optimistic_usage.clear()
        result = await self._recorder.reset_usage(self.user_id, now_utc=self._clock())
        if result.changed_ledger and not self._connected:
            await self._refresh_quietly()
        return result

    async def purchase(self, product_id: str) -> PurchaseResult:
        if classify_product(product_id) is None:
            logger.warning("purchase_product_unknown", user_id=self.user_id, product_id=product_id)
            return PurchaseResult(
                outcome=PurchaseOutcome.FAILED,
                product_id=product_id,
                error_code=ProductNotFoundError.code,
            )

        try:
            await self.connect()
        except StoreUnavailableError:
            return PurchaseResult(
                outcome=PurchaseOutcome.STORE_UNAVAILABLE,
                product_id=product_id,
                retryable=True,
                error_code=StoreUnavailableError.code,
            )

        try:
            event = await self._provider.purchase(product_id)
        except UserCancelledError:
            logger.info("purchase_cancelled", user_id=self.user_id, product_id=product_id)
            return PurchaseResult(outcome=PurchaseOutcome.CANCELLED, product_id=product_id)
        except AlreadyOwnedError:
            logger.info("purchase_already_owned", user_id=self.user_id, product_id=product_id)
            restored = await self.restore()
            return PurchaseResult(
                outcome=PurchaseOutcome.ALREADY_OWNED,
                product_id=product_id,
                restore=restored,
            )
        except StoreUnavailableError:
            logger.warning("purchase_store_unavailable", user_id=self.user_id, product_id=product_id)
            return PurchaseResult(
                outcome=PurchaseOutcome.STORE_UNAVAILABLE,
                product_id=product_id,
                retryable=True,
                error_code=StoreUnavailableError.code,
            )
        except PurchaseFailedError as exc:
            logger.warning(
                "purchase_rejected",
                user_id=self.user_id,
                product_id=product_id,
                error=str(exc),
            )
            return PurchaseResult(
                outcome=PurchaseOutcome.FAILED,
                product_id=product_id,
                retryable=True,
                error_code=PurchaseFailedError.code,
            )
        except Exception:
            logger.exception("purchase_provider_failed", user_id=self.user_id, product_id=product_id)
            return PurchaseResult(
                outcome=PurchaseOutcome.FAILED,
                product_id=product_id,
                retryable=True,
                error_code=PurchaseFailedError.code,
            )

        if event.state == PurchaseState.PENDING:
            return PurchaseResult(outcome=PurchaseOutcome.PENDING, product_id=product_id)

        reconciliation = await self._reconciler.handle(self.user_id, event, now_utc=self._clock())
        if not reconciliation.succeeded:
            return PurchaseResult(
                outcome=PurchaseOutcome.FAILED,
                product_id=product_id,
                reconciliation=reconciliation,
                retryable=True,
                error_code=reconciliation.error_code,
            )
        return PurchaseResult(
            outcome=PurchaseOutcome.PURCHASED,
            product_id=product_id,
            reconciliation=reconciliation,
        )

    async def restore(self) -> RestoreResult:
        try:
            await self.connect()
        except StoreUnavailableError:
            return RestoreResult(
                outcome=RestoreOutcome.ERROR,
                retryable=True,
                error_code=StoreUnavailableError.code,
            )
        return await restore_purchases(
            self._provider,
            self._reconciler,
            self.user_id,
            now_utc=self._clock(),
        )

    async def _on_provider_purchase(self, event: PurchaseEvent) -> None:
        await self._reconciler.handle(self.user_id, event, now_utc=self._clock())

    async def _on_provider_error(self, error: Exception) -> None:
        if isinstance(error, UserCancelledError):
            logger.info("purchase_cancelled", user_id=self.user_id)
            return
        logger.warning(
            "purchase_provider_error",
            user_id=self.user_id,
            error_type=type(error).__name__,
            error=str(error),
        )

    async def _on_ledger_changed(self, event: LedgerChanged) -> None:
        if event.user_id != self.user_id:
            return
        await self._refresh_quietly()
