from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from fastapi.testclient import TestClient

from guidepass.api.routes import entitlements
from guidepass.economy.credits.constants import UNLIMITED_USAGE_LIMIT
from guidepass.economy.credits.rules import create_ledger
from guidepass.economy.credits.types import CreditBucket, RefundTarget
from guidepass.economy.entitlements.types import SubscriptionKind, SubscriptionStatus
from guidepass.main import app
from tests.ledger_helpers import NOW_UTC, InMemoryEntitlementStore

HEADERS = {"X-Internal-Token": "internal-secret"}


def _install(monkeypatch, store: InMemoryEntitlementStore, *, allowlist: str = "127.0.0.1/32") -> None:
    monkeypatch.setattr(
        entitlements,
        "get_settings",
        lambda: SimpleNamespace(
            internal_api_token="internal-secret",
            internal_api_allowlist=allowlist,
            base_free_allowance=2,
            refund_target=RefundTarget.PURCHASED_FIRST,
        ),
    )
    monkeypatch.setattr(entitlements, "extract_client_ip", lambda request: "127.0.0.1")
    monkeypatch.setattr(entitlements, "get_entitlement_store", lambda: store)


def test_entitlements_rejects_missing_token(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.get("/internal/users/user-1/entitlements")

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_entitlements_rejects_disallowed_ip(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore(), allowlist="192.168.0.0/16")

    client = TestClient(app)
    response = client.get("/internal/users/user-1/entitlements", headers=HEADERS)

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_entitlements_for_new_user_show_free_allowance(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.get("/internal/users/user-1/entitlements", headers=HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["has_unlimited_access"] is False
    assert payload["usage_count"] == 0
    assert payload["usage_limit"] == 2
    assert payload["credits"]["trial_available"] == 2
    assert payload["credits"]["percent_available"] == 100


def test_entitlements_report_unlimited_display_limit(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    store.subscriptions["user-1"] = SubscriptionStatus(
        active=True,
        kind=SubscriptionKind.LIFETIME,
        expires_at=None,
    )
    _install(monkeypatch, store)

    client = TestClient(app)
    response = client.get("/internal/users/user-1/entitlements", headers=HEADERS)

    payload = response.json()
    assert payload["has_unlimited_access"] is True
    assert payload["subscription_kind"] == "LIFETIME"
    assert payload["usage_limit"] == UNLIMITED_USAGE_LIMIT


def test_access_reports_blocked_with_upsell(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    store.credits["user-1"] = (create_ledger(trial_used=2), 2)
    store.subscriptions["user-1"] = SubscriptionStatus(
        active=True,
        kind=SubscriptionKind.UNLIMITED_MONTHLY,
        expires_at=NOW_UTC - timedelta(days=400),
    )
    _install(monkeypatch, store)

    client = TestClient(app)
    response = client.get("/internal/users/user-1/access/colosseum", headers=HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["has_access"] is False
    assert payload["reason"] == "blocked"
    assert payload["consumes_credit"] is False
    assert payload["message"]


def test_usage_is_recorded_once_per_attraction(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    _install(monkeypatch, store)

    client = TestClient(app)
    first = client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)
    second = client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)

    assert first.status_code == 200
    assert first.json()["status"] == "RECORDED"
    assert first.json()["from_trial"] == 1
    assert first.json()["available_total"] == 1
    assert second.json()["status"] == "ALREADY_RECORDED"
    assert store.ledger_for("user-1").used_total == 1


def test_usage_refund_restores_credit(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    _install(monkeypatch, store)

    client = TestClient(app)
    client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)
    response = client.post(
        "/internal/users/user-1/usage/refund",
        json={"attraction_id": "colosseum"},
        headers=HEADERS,
    )

    assert response.status_code == 200
    assert response.json()["status"] == "REFUNDED"
    assert store.ledger_for("user-1").available_total == 2


def test_usage_rejects_empty_attraction_id(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.post("/internal/users/user-1/usage", json={"attraction_id": ""}, headers=HEADERS)

    assert response.status_code == 422


def test_usage_for_unlimited_subscriber_spends_nothing(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    store.subscriptions["user-1"] = SubscriptionStatus(
        active=True,
        kind=SubscriptionKind.UNLIMITED_MONTHLY,
        expires_at=datetime.now(timezone.utc) + timedelta(days=30),
    )
    _install(monkeypatch, store)

    client = TestClient(app)
    access = client.get("/internal/users/user-1/access/colosseum", headers=HEADERS)
    usage = client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)

    assert access.json()["reason"] == "unlimited"
    assert access.json()["consumes_credit"] is False
    assert usage.status_code == 200
    assert usage.json()["status"] == "NOT_REQUIRED"
    assert usage.json()["from_trial"] == 0
    assert store.ledger_for("user-1").trial == CreditBucket(available=2, used=0)


def test_usage_for_owned_attraction_spends_nothing(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    store.owned["user-1"] = {"colosseum"}
    _install(monkeypatch, store)

    client = TestClient(app)
    access = client.get("/internal/users/user-1/access/colosseum", headers=HEADERS)
    usage = client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)

    assert access.json()["reason"] == "owned"
    assert usage.json()["status"] == "NOT_REQUIRED"
    assert store.ledger_for("user-1").used_total == 0


def test_usage_reset_restores_full_allowance(monkeypatch) -> None:
    store = InMemoryEntitlementStore()
    _install(monkeypatch, store)

    client = TestClient(app)
    client.post("/internal/users/user-1/usage", json={"attraction_id": "colosseum"}, headers=HEADERS)
    client.post("/internal/users/user-1/usage", json={"attraction_id": "pantheon"}, headers=HEADERS)
    response = client.post("/internal/users/user-1/usage/reset", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == {
        "user_id": "user-1",
        "status": "RESET",
        "released_attractions": 2,
        "available_total": 2,
        "error_code": None,
    }
    assert store.ledger_for("user-1").trial == CreditBucket(available=2, used=0)
    assert "user-1" not in store.usage


def test_usage_reset_requires_internal_token(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.post("/internal/users/user-1/usage/reset")

    assert response.status_code == 403


def test_products_listing_filters_by_kind(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.get("/internal/products", params={"kind": "LEGACY_PACK"}, headers=HEADERS)

    assert response.status_code == 200
    items = response.json()["items"]
    assert [item["kind"] for item in items] == ["LEGACY_PACK"] * len(items)
    assert items[0] == {
        "product_id": "com.nuolo.package.city_highlights",
        "kind": "LEGACY_PACK",
        "subscription_kind": "NONE",
        "credit_amount": 0,
        "attraction_ids": ["attraction_1", "attraction_2"],
    }


def test_products_listing_rejects_unknown_kind(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.get("/internal/products", params={"kind": "GIFT_CARD"}, headers=HEADERS)

    assert response.status_code == 422


def test_attraction_packages_listing(monkeypatch) -> None:
    _install(monkeypatch, InMemoryEntitlementStore())

    client = TestClient(app)
    response = client.get("/internal/products/packages", headers=HEADERS)

    assert response.status_code == 200
    assert [(item["product_id"], item["credit_amount"]) for item in response.json()["items"]] == [
        ("nuolo_basic_package", 5),
        ("nuolo_standard_package", 20),
        ("nuolo_premium_package", 50),
    ]
