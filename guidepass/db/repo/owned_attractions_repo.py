from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.owned_attractions import OwnedAttraction


class OwnedAttractionsRepo:
    @staticmethod
    async def add_if_absent(
        session: AsyncSession,
        *,
        user_id: str,
        attraction_id: str,
        source_product_id: str,
        source_transaction_id: str,
        acquired_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(OwnedAttraction)
            .values(
                user_id=user_id,
                attraction_id=attraction_id,
                source_product_id=source_product_id,
                source_transaction_id=source_transaction_id,
                acquired_at=acquired_at,
            )
            .on_conflict_do_nothing(
                index_elements=[OwnedAttraction.user_id, OwnedAttraction.attraction_id],
            )
            .returning(OwnedAttraction.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_attraction_ids(session: AsyncSession, *, user_id: str) -> list[str]:
        stmt = select(OwnedAttraction.attraction_id).where(OwnedAttraction.user_id == user_id)
        result = await session.execute(stmt)
        return [str(attraction_id) for attraction_id in result.scalars()]
