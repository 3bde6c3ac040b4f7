from guidepass.economy.entitlements.resolver import (
    build_snapshot,
    resolve_access,
    resolve_snapshot_access,
)
from guidepass.economy.entitlements.types import (
    AccessDecision,
    AccessReason,
    EntitlementSnapshot,
    OwnedItems,
    SubscriptionKind,
    SubscriptionStatus,
)

__all__ = [
    "AccessDecision",
    "AccessReason",
    "EntitlementSnapshot",
    "OwnedItems",
    "SubscriptionKind",
    "SubscriptionStatus",
    "build_snapshot",
    "resolve_access",
    "resolve_snapshot_access",
]
