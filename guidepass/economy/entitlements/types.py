from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from guidepass.economy.credits.types import CreditsLedger


class SubscriptionKind(str, Enum):
    NONE = "NONE"
    UNLIMITED_MONTHLY = "UNLIMITED_MONTHLY"
    PREMIUM_MONTHLY = "PREMIUM_MONTHLY"
    PREMIUM_YEARLY = "PREMIUM_YEARLY"
    LIFETIME = "LIFETIME"


class AccessReason(str, Enum):
    UNLIMITED = "unlimited"
    PACK = "pack"
    OWNED = "owned"
    FREE_REMAINING = "free_remaining"
    BLOCKED = "blocked"


@dataclass(frozen=True, slots=True)
class SubscriptionStatus:
    active: bool = False
    kind: SubscriptionKind = SubscriptionKind.NONE
    expires_at: datetime | None = None

    def is_active_at(self, now_utc: datetime) -> bool:
        """Expiry is evaluated lazily against ``now_utc``; no job flips ``active``."""
        if not self.active or self.kind == SubscriptionKind.NONE:
            return False
        if self.expires_at is None:
            return True
        return now_utc <= self.expires_at


@dataclass(frozen=True, slots=True)
class OwnedItems:
    attractions: frozenset[str] = frozenset()
    packages: frozenset[str] = frozenset()
    unlocked_attractions: frozenset[str] = frozenset()

    def owns_attraction(self, attraction_id: str) -> bool:
        return attraction_id in self.attractions or attraction_id in self.unlocked_attractions


@dataclass(frozen=True, slots=True)
class AccessDecision:
    has_access: bool
    reason: AccessReason
    consumes_credit: bool
    message: str | None = None


@dataclass(frozen=True, slots=True)
class EntitlementSnapshot:
    has_unlimited_access: bool
    ledger: CreditsLedger
    owned_attractions: frozenset[str] = frozenset()
    owned_packages: frozenset[str] = frozenset()
    unlocked_attractions: frozenset[str] = frozenset()
    subscription: SubscriptionStatus = field(default_factory=SubscriptionStatus)
    refreshed_at: datetime | None = None

    @property
    def owned_items(self) -> OwnedItems:
        return OwnedItems(
            attractions=self.owned_attractions,
            packages=self.owned_packages,
            unlocked_attractions=self.unlocked_attractions,
        )
