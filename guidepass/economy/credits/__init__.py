from guidepass.economy.credits.rules import consume, create_ledger, grant, refund, reset, summarize
from guidepass.economy.credits.types import (
    ConsumeResult,
    CreditBucket,
    CreditPool,
    CreditsLedger,
    CreditSummary,
    RefundResult,
    RefundTarget,
)

__all__ = [
    "ConsumeResult",
    "CreditBucket",
    "CreditPool",
    "CreditSummary",
    "CreditsLedger",
    "RefundResult",
    "RefundTarget",
    "consume",
    "create_ledger",
    "grant",
    "refund",
    "reset",
    "summarize",
]
