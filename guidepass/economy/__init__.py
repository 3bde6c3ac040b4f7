from guidepass.economy.purchases import PurchaseReconciler
from guidepass.economy.usage import UsageRecorder

__all__ = [
    "PurchaseReconciler",
    "UsageRecorder",
]
