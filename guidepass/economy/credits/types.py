from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CreditPool(str, Enum):
    TRIAL = "TRIAL"
    PURCHASED = "PURCHASED"


class RefundTarget(str, Enum):
    PURCHASED_FIRST = "PURCHASED_FIRST"
    TRIAL_FIRST = "TRIAL_FIRST"


@dataclass(frozen=True, slots=True)
class CreditBucket:
    available: int = 0
    used: int = 0

    @property
    def granted(self) -> int:
        return self.available + self.used


@dataclass(frozen=True, slots=True)
class CreditsLedger:
    trial: CreditBucket = CreditBucket()
    purchased: CreditBucket = CreditBucket()

    @property
    def total(self) -> int:
        return self.trial.granted + self.purchased.granted

    @property
    def available_total(self) -> int:
        return self.trial.available + self.purchased.available

    @property
    def used_total(self) -> int:
        return self.trial.used + self.purchased.used

    def bucket(self, pool: CreditPool) -> CreditBucket:
        return self.trial if pool == CreditPool.TRIAL else self.purchased


@dataclass(frozen=True, slots=True)
class ConsumeResult:
    ledger: CreditsLedger
    from_trial: int
    from_purchased: int
    remaining: int

    @property
    def consumed(self) -> int:
        return self.from_trial + self.from_purchased


@dataclass(frozen=True, slots=True)
class RefundResult:
    ledger: CreditsLedger
    to_purchased: int
    to_trial: int

    @property
    def refunded(self) -> int:
        return self.to_purchased + self.to_trial


@dataclass(frozen=True, slots=True)
class CreditSummary:
    available_total: int
    used_total: int
    total: int
    purchased_available: int
    available_ratio: float
    percent_available: int
