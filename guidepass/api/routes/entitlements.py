from __future__ import annotations

from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from guidepass.core.config import get_settings
from guidepass.db.session import SessionLocal
from guidepass.economy.credits.constants import UNLIMITED_USAGE_LIMIT
from guidepass.economy.credits.rules import summarize
from guidepass.economy.entitlements.resolver import build_snapshot, resolve_snapshot_access
from guidepass.economy.entitlements.types import EntitlementSnapshot
from guidepass.economy.interfaces import EntitlementStore
from guidepass.economy.purchases.catalog import ProductKind, ProductSpec, list_attraction_packages, list_products
from guidepass.economy.usage.service import UsageRecorder
from guidepass.economy.usage.types import UsageRecordResult
from guidepass.services.internal_auth import (
    extract_client_ip,
    is_client_ip_allowed,
    is_internal_request_authenticated,
)
from guidepass.services.ledger_store import SqlEntitlementStore

router = APIRouter(tags=["internal", "entitlements"])
logger = structlog.get_logger(__name__)


class CreditsResponse(BaseModel):
    trial_available: int = Field(ge=0)
    trial_used: int = Field(ge=0)
    purchased_available: int = Field(ge=0)
    purchased_used: int = Field(ge=0)
    available_total: int = Field(ge=0)
    used_total: int = Field(ge=0)
    percent_available: int = Field(ge=0, le=100)


class EntitlementsResponse(BaseModel):
    user_id: str
    has_unlimited_access: bool
    subscription_kind: str
    subscription_expires_at: datetime | None = None
    usage_count: int = Field(ge=0)
    usage_limit: int = Field(ge=0)
    credits: CreditsResponse
    owned_attractions: list[str]
    owned_packages: list[str]
    unlocked_attractions: list[str]
    refreshed_at: datetime | None = None


class AccessResponse(BaseModel):
    user_id: str
    attraction_id: str
    has_access: bool
    reason: str
    consumes_credit: bool
    message: str | None = None


class UsageRequest(BaseModel):
    attraction_id: str = Field(min_length=1, max_length=128)


class UsageResponse(BaseModel):
    user_id: str
    attraction_id: str
    status: str
    from_trial: int = Field(ge=0)
    from_purchased: int = Field(ge=0)
    available_total: int | None = None
    error_code: str | None = None


class UsageResetResponse(BaseModel):
    user_id: str
    status: str
    released_attractions: int = Field(ge=0)
    available_total: int | None = None
    error_code: str | None = None


class ProductResponse(BaseModel):
    product_id: str
    kind: str
    subscription_kind: str
    credit_amount: int = Field(ge=0)
    attraction_ids: list[str]


class ProductsResponse(BaseModel):
    items: list[ProductResponse]


def get_entitlement_store() -> EntitlementStore:
    settings = get_settings()
    return SqlEntitlementStore(SessionLocal, base_free_allowance=settings.base_free_allowance)


def _assert_internal_access(request: Request) -> None:
    settings = get_settings()
    client_ip = extract_client_ip(request)

    if not is_client_ip_allowed(client_ip=client_ip, allowlist=settings.internal_api_allowlist):
        logger.warning("internal_entitlements_auth_failed", reason="ip_not_allowed", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})

    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning("internal_entitlements_auth_failed", reason="invalid_credentials", client_ip=client_ip)
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


async def _load_snapshot(store: EntitlementStore, user_id: str, now_utc: datetime) -> EntitlementSnapshot:
    subscription = await store.get_subscription_status(user_id)
    credits = await store.get_credits_and_owned_items(user_id)
    return build_snapshot(subscription, credits.ledger, credits.owned, now_utc=now_utc)


def _as_usage_response(result: UsageRecordResult) -> UsageResponse:
    return UsageResponse(
        user_id=result.user_id,
        attraction_id=result.attraction_id,
        status=result.status.value,
        from_trial=result.from_trial,
        from_purchased=result.from_purchased,
        available_total=result.ledger.available_total if result.ledger is not None else None,
        error_code=result.error_code,
    )


def _as_products_response(products: list[ProductSpec]) -> ProductsResponse:
    return ProductsResponse(
        items=[
            ProductResponse(
                product_id=product.product_id,
                kind=product.kind.value,
                subscription_kind=product.subscription_kind.value,
                credit_amount=product.credit_amount,
                attraction_ids=list(product.attraction_ids),
            )
            for product in products
        ]
    )


@router.get("/internal/users/{user_id}/entitlements", response_model=EntitlementsResponse)
async def get_entitlements(request: Request, user_id: str) -> EntitlementsResponse:
    _assert_internal_access(request)
    snapshot = await _load_snapshot(get_entitlement_store(), user_id, datetime.now(timezone.utc))
    ledger = snapshot.ledger
    summary = summarize(ledger)
    return EntitlementsResponse(
        user_id=user_id,
        has_unlimited_access=snapshot.has_unlimited_access,
        subscription_kind=snapshot.subscription.kind.value,
        subscription_expires_at=snapshot.subscription.expires_at,
        usage_count=summary.used_total,
        usage_limit=UNLIMITED_USAGE_LIMIT if snapshot.has_unlimited_access else summary.total,
        credits=CreditsResponse(
            trial_available=ledger.trial.available,
            trial_used=ledger.trial.used,
            purchased_available=ledger.purchased.available,
            purchased_used=ledger.purchased.used,
            available_total=summary.available_total,
            used_total=summary.used_total,
            percent_available=summary.percent_available,
        ),
        owned_attractions=sorted(snapshot.owned_attractions),
        owned_packages=sorted(snapshot.owned_packages),
        unlocked_attractions=sorted(snapshot.unlocked_attractions),
        refreshed_at=snapshot.refreshed_at,
    )


@router.get("/internal/users/{user_id}/access/{attraction_id}", response_model=AccessResponse)
async def get_access(request: Request, user_id: str, attraction_id: str) -> AccessResponse:
    _assert_internal_access(request)
    now_utc = datetime.now(timezone.utc)
    snapshot = await _load_snapshot(get_entitlement_store(), user_id, now_utc)
    decision = resolve_snapshot_access(
        snapshot,
        attraction_id,
        now_utc=now_utc,
        base_free_allowance=get_settings().base_free_allowance,
    )
    return AccessResponse(
        user_id=user_id,
        attraction_id=attraction_id,
        has_access=decision.has_access,
        reason=decision.reason.value,
        consumes_credit=decision.consumes_credit,
        message=decision.message,
    )


@router.post("/internal/users/{user_id}/usage", response_model=UsageResponse)
async def record_usage(request: Request, user_id: str, payload: UsageRequest) -> UsageResponse:
    _assert_internal_access(request)
    recorder = UsageRecorder(get_entitlement_store())
    result = await recorder.record_usage(
        user_id,
        payload.attraction_id,
        now_utc=datetime.now(timezone.utc),
    )
    return _as_usage_response(result)


@router.post("/internal/users/{user_id}/usage/refund", response_model=UsageResponse)
async def refund_usage(request: Request, user_id: str, payload: UsageRequest) -> UsageResponse:
    _assert_internal_access(request)
    recorder = UsageRecorder(get_entitlement_store())
    result = await recorder.refund_usage(
        user_id,
        payload.attraction_id,
        now_utc=datetime.now(timezone.utc),
        target=get_settings().refund_target,
    )
    return _as_usage_response(result)


@router.post("/internal/users/{user_id}/usage/reset", response_model=UsageResetResponse)
async def reset_usage(request: Request, user_id: str) -> UsageResetResponse:
    _assert_internal_access(request)
    recorder = UsageRecorder(get_entitlement_store())
    result = await recorder.reset_usage(user_id, now_utc=datetime.now(timezone.utc))
    return UsageResetResponse(
        user_id=result.user_id,
        status=result.status.value,
        released_attractions=result.released_attractions,
        available_total=result.ledger.available_total if result.ledger is not None else None,
        error_code=result.error_code,
    )


@router.get("/internal/products", response_model=ProductsResponse)
async def get_products(request: Request, kind: ProductKind | None = Query(default=None)) -> ProductsResponse:
    _assert_internal_access(request)
    return _as_products_response(list_products(kind))


@router.get("/internal/products/packages", response_model=ProductsResponse)
async def get_attraction_packages(request: Request) -> ProductsResponse:
    _assert_internal_access(request)
    return _as_products_response(list_attraction_packages())
