from guidepass.economy.purchases.pipeline import PurchaseReconciler
from guidepass.economy.purchases.restore import restore_purchases

__all__ = ["PurchaseReconciler", "restore_purchases"]
