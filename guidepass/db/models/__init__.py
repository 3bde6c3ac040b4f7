from guidepass.db.models.analytics_events import AnalyticsEvent
from guidepass.db.models.attraction_usage import AttractionUsage
from guidepass.db.models.owned_attractions import OwnedAttraction
from guidepass.db.models.purchase_records import PurchaseRecordRow
from guidepass.db.models.user_credits import UserCredits
from guidepass.db.models.user_subscriptions import UserSubscription

__all__ = [
    "AnalyticsEvent",
    "AttractionUsage",
    "OwnedAttraction",
    "PurchaseRecordRow",
    "UserCredits",
    "UserSubscription",
]
