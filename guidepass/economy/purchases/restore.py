from __future__ import annotations

from datetime import datetime

import structlog

from guidepass.economy.interfaces import PurchaseProvider
from guidepass.economy.purchases.errors import StoreUnavailableError
from guidepass.economy.purchases.pipeline import PurchaseReconciler
from guidepass.economy.purchases.types import RestoreOutcome, RestoreResult

logger = structlog.get_logger(__name__)


async def restore_purchases(
    provider: PurchaseProvider,
    reconciler: PurchaseReconciler,
    user_id: str,
    *,
    now_utc: datetime,
) -> RestoreResult:
    try:
        events = await provider.list_available_purchases()
    except StoreUnavailableError:
        logger.warning("purchase_restore_store_unavailable", user_id=user_id)
        return RestoreResult(
            outcome=RestoreOutcome.ERROR,
            retryable=True,
            error_code=StoreUnavailableError.code,
        )
    except Exception:
        logger.exception("purchase_restore_list_failed", user_id=user_id)
        return RestoreResult(
            outcome=RestoreOutcome.ERROR,
            retryable=True,
            error_code=StoreUnavailableError.code,
        )

    if not events:
        logger.info("purchase_restore_empty", user_id=user_id)
        return RestoreResult(outcome=RestoreOutcome.EMPTY)

    results = await reconciler.handle_many(user_id, events, now_utc=now_utc)
    restored = RestoreResult(outcome=RestoreOutcome.RESTORED, results=results)
    logger.info(
        "purchase_restore_completed",
        user_id=user_id,
        items=len(results),
        restored=restored.restored_count,
    )
    return restored
