from __future__ import annotations

from datetime import datetime

import structlog

from guidepass.economy.credits.constants import CREDIT_COST_PER_GUIDE
from guidepass.economy.credits.rules import consume, refund, reset
from guidepass.economy.credits.types import RefundTarget
from guidepass.economy.interfaces import EntitlementStore, UsageWriteStatus
from guidepass.economy.purchases.errors import LimitExceededError, PersistenceFailedError
from guidepass.economy.usage.types import UsageRecordResult, UsageRecordStatus, UsageResetResult
from guidepass.services.event_bus import (
    LEDGER_CHANGE_REASON_USAGE_RECORDED,
    LEDGER_CHANGE_REASON_USAGE_REFUNDED,
    LEDGER_CHANGE_REASON_USAGE_RESET,
    LedgerChanged,
    LedgerEventBus,
)

logger = structlog.get_logger(__name__)

DEFAULT_MAX_WRITE_ATTEMPTS = 3


class UsageRecorder:
    """Records credit consumption after access was already granted.

    Active subscribers and purchased attractions are never charged, whichever
    caller reaches this first.

    Every failure is logged and returned as a result; the caller has already
    let the user play the guide, so nothing here is rolled back or raised.
    """

    def __init__(
        self,
        store: EntitlementStore,
        bus: LedgerEventBus | None = None,
        *,
        max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS,
    ) -> None:
        self._store = store
        self._bus = bus
        self._max_write_attempts = max(1, max_write_attempts)

    async def record_usage(
        self,
        user_id: str,
        attraction_id: str,
        *,
        now_utc: datetime,
    ) -> UsageRecordResult:
        try:
            subscription = await self._store.get_subscription_status(user_id)
            if subscription.is_active_at(now_utc):
                logger.info(
                    "usage_not_required",
                    user_id=user_id,
                    attraction_id=attraction_id,
                    reason="unlimited",
                )
                return UsageRecordResult(
                    status=UsageRecordStatus.NOT_REQUIRED,
                    user_id=user_id,
                    attraction_id=attraction_id,
                )

            for attempt in range(1, self._max_write_attempts + 1):
                loaded = await self._store.get_credits_and_owned_items(user_id)
                if attraction_id in loaded.owned.attractions:
                    logger.info(
                        "usage_not_required",
                        user_id=user_id,
                        attraction_id=attraction_id,
                        reason="owned",
                    )
                    return UsageRecordResult(
                        status=UsageRecordStatus.NOT_REQUIRED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                    )

                if attraction_id in loaded.owned.unlocked_attractions:
                    return UsageRecordResult(
                        status=UsageRecordStatus.ALREADY_RECORDED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                    )

                if loaded.usage_count + CREDIT_COST_PER_GUIDE > loaded.limit:
                    logger.warning(
                        "usage_limit_exceeded",
                        user_id=user_id,
                        attraction_id=attraction_id,
                        usage_count=loaded.usage_count,
                        limit=loaded.limit,
                    )
                    return UsageRecordResult(
                        status=UsageRecordStatus.LIMIT_EXCEEDED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                        error_code=LimitExceededError.code,
                    )

                consumed = consume(loaded.ledger, CREDIT_COST_PER_GUIDE)
                write_status = await self._store.upsert_usage(
                    user_id,
                    attraction_id=attraction_id,
                    ledger=consumed.ledger,
                    expected_version=loaded.version,
                    now_utc=now_utc,
                )
                if write_status == UsageWriteStatus.CONFLICT:
                    logger.info(
                        "usage_write_conflict",
                        user_id=user_id,
                        attraction_id=attraction_id,
                        attempt=attempt,
                    )
                    continue

                if write_status == UsageWriteStatus.DUPLICATE:
                    return UsageRecordResult(
                        status=UsageRecordStatus.ALREADY_RECORDED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                    )

                await self._publish(user_id, LEDGER_CHANGE_REASON_USAGE_RECORDED, attraction_id)
                logger.info(
                    "usage_recorded",
                    user_id=user_id,
                    attraction_id=attraction_id,
                    from_trial=consumed.from_trial,
                    from_purchased=consumed.from_purchased,
                )
                return UsageRecordResult(
                    status=UsageRecordStatus.RECORDED,
                    user_id=user_id,
                    attraction_id=attraction_id,
                    ledger=consumed.ledger,
                    from_trial=consumed.from_trial,
                    from_purchased=consumed.from_purchased,
                )
        except Exception:
            logger.exception("usage_record_failed", user_id=user_id, attraction_id=attraction_id)
            return UsageRecordResult(
                status=UsageRecordStatus.FAILED,
                user_id=user_id,
                attraction_id=attraction_id,
                error_code=PersistenceFailedError.code,
            )

        logger.error(
            "usage_record_conflict_exhausted",
            user_id=user_id,
            attraction_id=attraction_id,
            attempts=self._max_write_attempts,
        )
        return UsageRecordResult(
            status=UsageRecordStatus.FAILED,
            user_id=user_id,
            attraction_id=attraction_id,
            error_code="write_conflict",
        )

    async def refund_usage(
        self,
        user_id: str,
        attraction_id: str,
        *,
        now_utc: datetime,
        target: RefundTarget = RefundTarget.PURCHASED_FIRST,
    ) -> UsageRecordResult:
        try:
            for attempt in range(1, self._max_write_attempts + 1):
                loaded = await self._store.get_credits_and_owned_items(user_id)
                if attraction_id not in loaded.owned.unlocked_attractions:
                    return UsageRecordResult(
                        status=UsageRecordStatus.NOT_RECORDED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                    )

                refunded = refund(loaded.ledger, CREDIT_COST_PER_GUIDE, target=target)
                write_status = await self._store.release_usage(
                    user_id,
                    attraction_id=attraction_id,
                    ledger=refunded.ledger,
                    expected_version=loaded.version,
                    now_utc=now_utc,
                )
                if write_status == UsageWriteStatus.CONFLICT:
                    logger.info(
                        "usage_refund_conflict",
                        user_id=user_id,
                        attraction_id=attraction_id,
                        attempt=attempt,
                    )
                    continue

                if write_status == UsageWriteStatus.MISSING:
                    return UsageRecordResult(
                        status=UsageRecordStatus.NOT_RECORDED,
                        user_id=user_id,
                        attraction_id=attraction_id,
                        ledger=loaded.ledger,
                    )

                await self._publish(user_id, LEDGER_CHANGE_REASON_USAGE_REFUNDED, attraction_id)
                logger.info(
                    "usage_refunded",
                    user_id=user_id,
                    attraction_id=attraction_id,
                    to_purchased=refunded.to_purchased,
                    to_trial=refunded.to_trial,
                )
                return UsageRecordResult(
                    status=UsageRecordStatus.REFUNDED,
                    user_id=user_id,
                    attraction_id=attraction_id,
                    ledger=refunded.ledger,
                )
        except Exception:
            logger.exception("usage_refund_failed", user_id=user_id, attraction_id=attraction_id)
            return UsageRecordResult(
                status=UsageRecordStatus.FAILED,
                user_id=user_id,
                attraction_id=attraction_id,
                error_code=PersistenceFailedError.code,
            )

        logger.error(
            "usage_refund_conflict_exhausted",
            user_id=user_id,
            attraction_id=attraction_id,
            attempts=self._max_write_attempts,
        )
        return UsageRecordResult(
            status=UsageRecordStatus.FAILED,
            user_id=user_id,
            attraction_id=attraction_id,
            error_code="write_conflict",
        )

    async def reset_usage(self, user_id: str, *, now_utc: datetime) -> UsageResetResult:
        try:
            for attempt in range(1, self._max_write_attempts + 1):
                loaded = await self._store.get_credits_and_owned_items(user_id)
                released = len(loaded.owned.unlocked_attractions)
                if loaded.version is None or (released == 0 and loaded.usage_count == 0):
                    return UsageResetResult(
                        status=UsageRecordStatus.NOT_RECORDED,
                        user_id=user_id,
                        ledger=loaded.ledger,
                    )

                ledger = reset(loaded.ledger)
                write_status = await self._store.reset_usage(
                    user_id,
                    ledger=ledger,
                    expected_version=loaded.version,
                    now_utc=now_utc,
                )
                if write_status == UsageWriteStatus.CONFLICT:
                    logger.info("usage_reset_conflict", user_id=user_id, attempt=attempt)
                    continue

                await self._publish(user_id, LEDGER_CHANGE_REASON_USAGE_RESET, None)
                logger.info(
                    "usage_reset",
                    user_id=user_id,
                    released_attractions=released,
                    released_credits=loaded.usage_count,
                )
                return UsageResetResult(
                    status=UsageRecordStatus.RESET,
                    user_id=user_id,
                    ledger=ledger,
                    released_attractions=released,
                )
        except Exception:
            logger.exception("usage_reset_failed", user_id=user_id)
            return UsageResetResult(
                status=UsageRecordStatus.FAILED,
                user_id=user_id,
                error_code=PersistenceFailedError.code,
            )

        logger.error("usage_reset_conflict_exhausted", user_id=user_id, attempts=self._max_write_attempts)
        return UsageResetResult(
            status=UsageRecordStatus.FAILED,
            user_id=user_id,
            error_code="write_conflict",
        )

    async def _publish(self, user_id: str, reason: str, reference: str | None) -> None:
        if self._bus is None:
            return
        await self._bus.publish(LedgerChanged(user_id=user_id, reason=reason, reference=reference))
