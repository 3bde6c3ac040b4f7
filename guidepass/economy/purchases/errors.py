class MonetizationError(Exception):
    code = "monetization_error"


class StoreUnavailableError(MonetizationError):
    code = "store_unavailable"


class UserCancelledError(MonetizationError):
    code = "user_cancelled"


class AlreadyOwnedError(MonetizationError):
    code = "already_owned"


class PurchaseFailedError(MonetizationError):
    code = "purchase_failed"


class PersistenceFailedError(MonetizationError):
    code = "persistence_failed"


class LimitExceededError(MonetizationError):
    code = "limit_exceeded"


class ProductNotFoundError(MonetizationError):
    code = "product_not_found"
