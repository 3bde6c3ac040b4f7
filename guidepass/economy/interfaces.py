from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from guidepass.economy.credits.types import CreditsLedger
from guidepass.economy.entitlements.types import OwnedItems, SubscriptionStatus
from guidepass.economy.purchases.types import PurchaseEvent, PurchaseRecord


class UsageWriteStatus(str, Enum):
    WRITTEN = "WRITTEN"
    DUPLICATE = "DUPLICATE"
    MISSING = "MISSING"
    CONFLICT = "CONFLICT"


@dataclass(frozen=True, slots=True)
class CreditsAndOwnedItems:
    ledger: CreditsLedger
    owned: OwnedItems
    version: int | None = None

    @property
    def usage_count(self) -> int:
        return self.ledger.used_total

    @property
    def limit(self) -> int:
        return self.ledger.total


class EntitlementStore(Protocol):
    async def get_subscription_status(self, user_id: str) -> SubscriptionStatus: ...

    async def get_credits_and_owned_items(self, user_id: str) -> CreditsAndOwnedItems: ...

    async def upsert_usage(
        self,
        user_id: str,
        *,
        attraction_id: str,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus: ...

    async def release_usage(
        self,
        user_id: str,
        *,
        attraction_id: str,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus: ...

    async def reset_usage(
        self,
        user_id: str,
        *,
        ledger: CreditsLedger,
        expected_version: int | None,
        now_utc: datetime,
    ) -> UsageWriteStatus:
        """Forgets every unlocked attraction and writes the reset ledger atomically."""
        ...

    async def apply_purchase(self, record: PurchaseRecord, *, now_utc: datetime) -> bool:
        """Inserts the record if absent and mutates the ledger in the same transaction.

        Returns ``False`` when the transaction id was already present.
        """
        ...


class Acknowledger(Protocol):
    async def acknowledge(self, event: PurchaseEvent, *, consumable: bool) -> None: ...


PurchaseListener = Callable[[PurchaseEvent], Awaitable[None]]
PurchaseErrorListener = Callable[[Exception], Awaitable[None]]


class PurchaseProvider(Acknowledger, Protocol):
    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def list_available_purchases(self) -> list[PurchaseEvent]: ...

    async def purchase(self, product_id: str) -> PurchaseEvent:
        """Raises ``UserCancelledError``, ``AlreadyOwnedError`` or ``PurchaseFailedError``."""
        ...

    def subscribe(
        self,
        listener: PurchaseListener,
        error_listener: PurchaseErrorListener | None = None,
    ) -> Callable[[], None]: ...
