from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from guidepass.core.config import get_settings
from guidepass.db.session import SessionLocal
from guidepass.economy.interfaces import EntitlementStore
from guidepass.economy.purchases.errors import ProductNotFoundError
from guidepass.economy.purchases.pipeline import PurchaseReconciler
from guidepass.economy.purchases.types import PurchaseEvent, PurchaseState, ReconciliationStage
from guidepass.services.internal_auth import is_webhook_request_authenticated
from guidepass.services.ledger_store import SqlEntitlementStore

router = APIRouter(tags=["purchases"])
logger = structlog.get_logger(__name__)


class PurchaseWebhookPayload(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    product_id: str = Field(min_length=1, max_length=128)
    transaction_id: str = Field(min_length=1, max_length=255)
    timestamp: datetime
    state: PurchaseState = PurchaseState.PURCHASED
    platform: str = Field(default="unknown", max_length=32)

    def to_event(self) -> PurchaseEvent:
        timestamp = self.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return PurchaseEvent(
            product_id=self.product_id,
            transaction_id=self.transaction_id,
            timestamp=timestamp,
            state=self.state,
            platform=self.platform,
        )


class WebhookAcknowledger:
    """The 2xx response is the acknowledgement for pushed events."""

    async def acknowledge(self, event: PurchaseEvent, *, consumable: bool) -> None:
        logger.debug(
            "purchase_webhook_acknowledged",
            transaction_id=event.transaction_id,
            consumable=consumable,
        )


def get_entitlement_store() -> EntitlementStore:
    settings = get_settings()
    return SqlEntitlementStore(SessionLocal, base_free_allowance=settings.base_free_allowance)


@router.post("/webhook/purchases")
async def purchase_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    if not is_webhook_request_authenticated(request, expected_secret=settings.purchase_webhook_secret):
        logger.warning("purchase_webhook_invalid_secret")
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"code": "E_FORBIDDEN"},
        )

    try:
        payload = PurchaseWebhookPayload.model_validate(await request.json())
    except (ValueError, ValidationError):
        logger.warning("purchase_webhook_invalid_payload")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "invalid"},
        )

    reconciler = PurchaseReconciler(get_entitlement_store(), WebhookAcknowledger())
    result = await reconciler.handle(
        payload.user_id,
        payload.to_event(),
        now_utc=datetime.now(timezone.utc),
    )

    if result.stage == ReconciliationStage.OBSERVED:
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "pending"})

    if result.stage == ReconciliationStage.FAILED:
        if result.error_code == ProductNotFoundError.code:
            return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ignored"})
        # Provider redelivers on 5xx; the transaction id keeps the retry idempotent.
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"status": "retry"},
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "duplicate" if result.idempotent_replay else "processed",
            "transaction_id": result.transaction_id,
        },
    )
