from __future__ import annotations

from datetime import datetime

from guidepass.economy.credits.constants import BASE_FREE_ALLOWANCE
from guidepass.economy.credits.types import CreditsLedger
from guidepass.economy.entitlements.types import (
    AccessDecision,
    AccessReason,
    EntitlementSnapshot,
    OwnedItems,
    SubscriptionStatus,
)

UPSELL_MESSAGE = (
    "Upgrade to unlimited for unlimited access, or purchase a guide package to continue."
)


def has_pack_credits(ledger: CreditsLedger, *, base_free_allowance: int = BASE_FREE_ALLOWANCE) -> bool:
    return ledger.total > base_free_allowance and ledger.available_total > 0


def resolve_access(
    subscription: SubscriptionStatus,
    ledger: CreditsLedger,
    owned: OwnedItems,
    attraction_id: str,
    *,
    now_utc: datetime,
    base_free_allowance: int = BASE_FREE_ALLOWANCE,
) -> AccessDecision:
    """Decides access in strict precedence: unlimited, pack, owned, free, blocked.

    ``pack`` and ``free_remaining`` only differ for telemetry tagging; both
    grant access and expect a credit to be consumed afterwards.
    """
    if subscription.is_active_at(now_utc):
        return AccessDecision(has_access=True, reason=AccessReason.UNLIMITED, consumes_credit=False)

    if has_pack_credits(ledger, base_free_allowance=base_free_allowance):
        return AccessDecision(has_access=True, reason=AccessReason.PACK, consumes_credit=True)

    if owned.owns_attraction(attraction_id):
        return AccessDecision(has_access=True, reason=AccessReason.OWNED, consumes_credit=False)

    if ledger.available_total > 0:
        return AccessDecision(
            has_access=True,
            reason=AccessReason.FREE_REMAINING,
            consumes_credit=True,
        )

    return AccessDecision(
        has_access=False,
        reason=AccessReason.BLOCKED,
        consumes_credit=False,
        message=UPSELL_MESSAGE,
    )


def resolve_snapshot_access(
    snapshot: EntitlementSnapshot,
    attraction_id: str,
    *,
    now_utc: datetime,
    base_free_allowance: int = BASE_FREE_ALLOWANCE,
) -> AccessDecision:
    return resolve_access(
        snapshot.subscription,
        snapshot.ledger,
        snapshot.owned_items,
        attraction_id,
        now_utc=now_utc,
        base_free_allowance=base_free_allowance,
    )


def build_snapshot(
    subscription: SubscriptionStatus,
    ledger: CreditsLedger,
    owned: OwnedItems,
    *,
    now_utc: datetime,
) -> EntitlementSnapshot:
    return EntitlementSnapshot(
        has_unlimited_access=subscription.is_active_at(now_utc),
        ledger=ledger,
        owned_attractions=owned.attractions,
        owned_packages=owned.packages,
        unlocked_attractions=owned.unlocked_attractions,
        subscription=subscription,
        refreshed_at=now_utc,
    )
