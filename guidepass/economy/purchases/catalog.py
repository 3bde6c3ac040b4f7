from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from guidepass.economy.entitlements.types import SubscriptionKind


class ProductKind(str, Enum):
    SUBSCRIPTION = "SUBSCRIPTION"
    CONSUMABLE_PACKAGE = "CONSUMABLE_PACKAGE"
    CONSUMABLE_SINGLE_ATTRACTION = "CONSUMABLE_SINGLE_ATTRACTION"
    LEGACY_PACK = "LEGACY_PACK"


class BillingCadence(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    LIFETIME = "LIFETIME"


@dataclass(frozen=True, slots=True)
class ProductSpec:
    product_id: str
    kind: ProductKind
    subscription_kind: SubscriptionKind = SubscriptionKind.NONE
    cadence: BillingCadence | None = None
    credit_amount: int = 0
    attraction_ids: tuple[str, ...] = ()

    @property
    def consumable(self) -> bool:
        return self.kind in {ProductKind.CONSUMABLE_PACKAGE, ProductKind.CONSUMABLE_SINGLE_ATTRACTION}


LIFETIME_EXPIRES_AT = datetime(9999, 12, 31, tzinfo=timezone.utc)
SINGLE_ATTRACTION_PREFIX = "attraction_"


def _subscription(product_id: str, kind: SubscriptionKind, cadence: BillingCadence) -> ProductSpec:
    return ProductSpec(
        product_id=product_id,
        kind=ProductKind.SUBSCRIPTION,
        subscription_kind=kind,
        cadence=cadence,
    )


def _package(product_id: str, credit_amount: int) -> ProductSpec:
    return ProductSpec(
        product_id=product_id,
        kind=ProductKind.CONSUMABLE_PACKAGE,
        credit_amount=credit_amount,
    )


def _legacy_pack(product_id: str, *attraction_ids: str) -> ProductSpec:
    return ProductSpec(
        product_id=product_id,
        kind=ProductKind.LEGACY_PACK,
        attraction_ids=attraction_ids,
    )


PRODUCTS: dict[str, ProductSpec] = {
    product.product_id: product
    for product in (
        _subscription("nuolo_unlimited_monthly", SubscriptionKind.UNLIMITED_MONTHLY, BillingCadence.MONTHLY),
        _subscription("nuolo_premium_monthly", SubscriptionKind.PREMIUM_MONTHLY, BillingCadence.MONTHLY),
        _subscription("nuolo_premium_yearly", SubscriptionKind.PREMIUM_YEARLY, BillingCadence.YEARLY),
        _subscription("nuolo_lifetime", SubscriptionKind.LIFETIME, BillingCadence.LIFETIME),
        _subscription("com.nuolo.subscription.monthly", SubscriptionKind.PREMIUM_MONTHLY, BillingCadence.MONTHLY),
        _subscription("com.nuolo.subscription.yearly", SubscriptionKind.PREMIUM_YEARLY, BillingCadence.YEARLY),
        _package("nuolo_basic_package", 5),
        _package("nuolo_standard_package", 20),
        _package("nuolo_premium_package", 50),
        _legacy_pack("com.nuolo.package.city_highlights", "attraction_1", "attraction_2"),
        _legacy_pack("com.nuolo.package.museums", "museum_1", "museum_2"),
        _legacy_pack("com.nuolo.package.architecture", "arch_1", "arch_2"),
    )
}

PACKAGE_CREDITS: dict[str, int] = {
    product_id: product.credit_amount
    for product_id, product in PRODUCTS.items()
    if product.kind == ProductKind.CONSUMABLE_PACKAGE
}


def get_product(product_id: str) -> ProductSpec | None:
    return PRODUCTS.get(product_id)


def list_products(kind: ProductKind | None = None) -> list[ProductSpec]:
    """Enumerated catalog entries in declaration order; derived single-attraction ids are never listed."""
    return [product for product in PRODUCTS.values() if kind is None or product.kind == kind]


def list_attraction_packages() -> list[ProductSpec]:
    return sorted(
        list_products(ProductKind.CONSUMABLE_PACKAGE),
        key=lambda product: (product.credit_amount, product.product_id),
    )


def classify_product(product_id: str) -> ProductSpec | None:
    """Maps a provider product identifier to its catalog entry.

    Single-attraction products are not enumerated; any ``attraction_<id>``
    identifier unlocks exactly that attraction.
    """
    product = PRODUCTS.get(product_id)
    if product is not None:
        return product

    if product_id.startswith(SINGLE_ATTRACTION_PREFIX):
        attraction_id = product_id[len(SINGLE_ATTRACTION_PREFIX):]
        if attraction_id:
            return ProductSpec(
                product_id=product_id,
                kind=ProductKind.CONSUMABLE_SINGLE_ATTRACTION,
                attraction_ids=(attraction_id,),
            )
    return None


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def compute_expires_at(cadence: BillingCadence | None, purchased_at: datetime) -> datetime | None:
    if cadence is None:
        return None
    if cadence == BillingCadence.LIFETIME:
        return LIFETIME_EXPIRES_AT
    if cadence == BillingCadence.YEARLY:
        return _add_months(purchased_at, 12)
    return _add_months(purchased_at, 1)
