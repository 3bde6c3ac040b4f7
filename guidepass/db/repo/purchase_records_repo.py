from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.purchase_records import PurchaseRecordRow
from guidepass.economy.purchases.catalog import ProductKind
from guidepass.economy.purchases.types import PurchaseRecord

PACKAGE_KINDS = (ProductKind.CONSUMABLE_PACKAGE.value, ProductKind.LEGACY_PACK.value)


class PurchaseRecordsRepo:
    @staticmethod
    async def get_by_transaction_id(
        session: AsyncSession,
        transaction_id: str,
    ) -> PurchaseRecordRow | None:
        return await session.get(PurchaseRecordRow, transaction_id)

    @staticmethod
    async def insert_if_absent(session: AsyncSession, *, record: PurchaseRecord) -> bool:
        stmt = (
            postgresql_insert(PurchaseRecordRow)
            .values(
                transaction_id=record.transaction_id,
                user_id=record.user_id,
                product_id=record.product_id,
                product_kind=record.product_kind.value,
                credit_amount=record.credit_amount,
                platform=record.platform,
                purchased_at=record.purchased_at,
                expires_at=record.expires_at,
            )
            .on_conflict_do_nothing(index_elements=[PurchaseRecordRow.transaction_id])
            .returning(PurchaseRecordRow.transaction_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def sum_package_credits(session: AsyncSession, *, user_id: str) -> int:
        stmt = select(func.coalesce(func.sum(PurchaseRecordRow.credit_amount), 0)).where(
            PurchaseRecordRow.user_id == user_id,
            PurchaseRecordRow.product_kind == ProductKind.CONSUMABLE_PACKAGE.value,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_package_product_ids(session: AsyncSession, *, user_id: str) -> list[str]:
        stmt = (
            select(PurchaseRecordRow.product_id)
            .where(
                PurchaseRecordRow.user_id == user_id,
                PurchaseRecordRow.product_kind.in_(PACKAGE_KINDS),
            )
            .distinct()
        )
        result = await session.execute(stmt)
        return [str(product_id) for product_id in result.scalars()]
