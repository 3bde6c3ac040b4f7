from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from guidepass.economy.credits.types import CreditsLedger


class UsageRecordStatus(str, Enum):
    RECORDED = "RECORDED"
    ALREADY_RECORDED = "ALREADY_RECORDED"
    NOT_REQUIRED = "NOT_REQUIRED"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"
    REFUNDED = "REFUNDED"
    RESET = "RESET"
    NOT_RECORDED = "NOT_RECORDED"
    FAILED = "FAILED"


@dataclass(slots=True)
class UsageRecordResult:
    status: UsageRecordStatus
    user_id: str
    attraction_id: str
    ledger: CreditsLedger | None = None
    from_trial: int = 0
    from_purchased: int = 0
    error_code: str | None = None

    @property
    def changed_ledger(self) -> bool:
        return self.status in {UsageRecordStatus.RECORDED, UsageRecordStatus.REFUNDED, UsageRecordStatus.RESET}


@dataclass(slots=True)
class UsageResetResult:
    status: UsageRecordStatus
    user_id: str
    ledger: CreditsLedger | None = None
    released_attractions: int = 0
    error_code: str | None = None

    @property
    def changed_ledger(self) -> bool:
        return self.status == UsageRecordStatus.RESET
