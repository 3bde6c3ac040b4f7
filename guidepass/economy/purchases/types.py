from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from guidepass.economy.purchases.catalog import ProductKind


class PurchaseState(str, Enum):
    PURCHASED = "purchased"
    PENDING = "pending"
    RESTORED = "restored"


class ReconciliationStage(str, Enum):
    OBSERVED = "OBSERVED"
    CLASSIFIED = "CLASSIFIED"
    PERSISTED = "PERSISTED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    FAILED_ACKNOWLEDGED = "FAILED_ACKNOWLEDGED"
    FAILED = "FAILED"


class RestoreOutcome(str, Enum):
    RESTORED = "restored"
    EMPTY = "empty"
    ERROR = "error"


class PurchaseOutcome(str, Enum):
    PURCHASED = "purchased"
    PENDING = "pending"
    CANCELLED = "cancelled"
    ALREADY_OWNED = "already_owned"
    FAILED = "failed"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True, slots=True)
class PurchaseEvent:
    product_id: str
    transaction_id: str
    timestamp: datetime
    state: PurchaseState = PurchaseState.PURCHASED
    platform: str = "unknown"


@dataclass(frozen=True, slots=True)
class PurchaseRecord:
    transaction_id: str
    user_id: str
    product_id: str
    product_kind: ProductKind
    purchased_at: datetime
    platform: str
    credit_amount: int = 0
    attraction_ids: tuple[str, ...] = ()
    expires_at: datetime | None = None


@dataclass(slots=True)
class ReconciliationResult:
    transaction_id: str
    product_id: str
    stage: ReconciliationStage
    idempotent_replay: bool = False
    product_kind: ProductKind | None = None
    error_code: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.stage in {ReconciliationStage.ACKNOWLEDGED, ReconciliationStage.FAILED_ACKNOWLEDGED}


@dataclass(slots=True)
class RestoreResult:
    outcome: RestoreOutcome
    results: list[ReconciliationResult] = field(default_factory=list)
    retryable: bool = False
    error_code: str | None = None

    @property
    def restored_count(self) -> int:
        return sum(1 for result in self.results if result.succeeded)


@dataclass(slots=True)
class PurchaseResult:
    outcome: PurchaseOutcome
    product_id: str
    reconciliation: ReconciliationResult | None = None
    restore: RestoreResult | None = None
    retryable: bool = False
    error_code: str | None = None

    @property
    def is_error(self) -> bool:
        return self.outcome in {PurchaseOutcome.FAILED, PurchaseOutcome.STORE_UNAVAILABLE}
