from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import datetime

import structlog

from guidepass.economy.interfaces import Acknowledger, EntitlementStore
from guidepass.economy.purchases.catalog import ProductSpec, classify_product, compute_expires_at
from guidepass.economy.purchases.errors import PersistenceFailedError, ProductNotFoundError
from guidepass.economy.purchases.types import (
    PurchaseEvent,
    PurchaseRecord,
    PurchaseState,
    ReconciliationResult,
    ReconciliationStage,
)
from guidepass.services.event_bus import LEDGER_CHANGE_REASON_PURCHASE_APPLIED, LedgerChanged, LedgerEventBus

logger = structlog.get_logger(__name__)


def build_purchase_record(user_id: str, event: PurchaseEvent, product: ProductSpec) -> PurchaseRecord:
    return PurchaseRecord(
        transaction_id=event.transaction_id,
        user_id=user_id,
        product_id=product.product_id,
        product_kind=product.kind,
        purchased_at=event.timestamp,
        platform=event.platform,
        credit_amount=product.credit_amount,
        attraction_ids=product.attraction_ids,
        expires_at=compute_expires_at(product.cadence, event.timestamp),
    )


class PurchaseReconciler:
    """Drives one purchase event through classify, persist and acknowledge.

    The transaction id is the only dedup anchor: a replayed event is
    acknowledged again but never mutates the ledger twice.
    """

    def __init__(
        self,
        store: EntitlementStore,
        acknowledger: Acknowledger,
        bus: LedgerEventBus | None = None,
    ) -> None:
        self._store = store
        self._acknowledger = acknowledger
        self._bus = bus

    async def handle(self, user_id: str, event: PurchaseEvent, *, now_utc: datetime) -> ReconciliationResult:
        log = logger.bind(
            user_id=user_id,
            product_id=event.product_id,
            transaction_id=event.transaction_id,
            platform=event.platform,
        )
        log.info("purchase_event_observed", state=event.state.value)

        if event.state == PurchaseState.PENDING:
            return ReconciliationResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                stage=ReconciliationStage.OBSERVED,
            )

        product = classify_product(event.product_id)
        if product is None:
            log.error("purchase_product_unknown")
            return ReconciliationResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                stage=ReconciliationStage.FAILED,
                error_code=ProductNotFoundError.code,
            )

        record = build_purchase_record(user_id, event, product)
        try:
            inserted = await self._store.apply_purchase(record, now_utc=now_utc)
        except Exception:
            log.exception("purchase_persist_failed", product_kind=product.kind.value)
            return ReconciliationResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                stage=ReconciliationStage.FAILED,
                product_kind=product.kind,
                error_code=PersistenceFailedError.code,
            )

        if inserted:
            log.info("purchase_persisted", product_kind=product.kind.value, credit_amount=product.credit_amount)
            if self._bus is not None:
                await self._bus.publish(
                    LedgerChanged(
                        user_id=user_id,
                        reason=LEDGER_CHANGE_REASON_PURCHASE_APPLIED,
                        reference=event.transaction_id,
                    )
                )
        else:
            log.info("purchase_replay_skipped", product_kind=product.kind.value)

        try:
            await self._acknowledger.acknowledge(event, consumable=product.consumable)
        except Exception as exc:
            log.error(
                "purchase_acknowledge_failed",
                product_kind=product.kind.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return ReconciliationResult(
                transaction_id=event.transaction_id,
                product_id=event.product_id,
                stage=ReconciliationStage.FAILED_ACKNOWLEDGED,
                idempotent_replay=not inserted,
                product_kind=product.kind,
            )

        return ReconciliationResult(
            transaction_id=event.transaction_id,
            product_id=event.product_id,
            stage=ReconciliationStage.ACKNOWLEDGED,
            idempotent_replay=not inserted,
            product_kind=product.kind,
        )

    async def handle_many(
        self,
        user_id: str,
        events: Sequence[PurchaseEvent],
        *,
        now_utc: datetime,
    ) -> list[ReconciliationResult]:
        """Runs distinct transactions concurrently and repeats of one transaction serially."""
        grouped: dict[str, list[int]] = {}
        for index, event in enumerate(events):
            grouped.setdefault(event.transaction_id, []).append(index)

        results: list[ReconciliationResult | None] = [None] * len(events)

        async def _run_group(indexes: list[int]) -> None:
            for index in indexes:
                results[index] = await self.handle(user_id, events[index], now_utc=now_utc)

        await asyncio.gather(*(_run_group(indexes) for indexes in grouped.values()))
        return [result for result in results if result is not None]
