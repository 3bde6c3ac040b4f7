from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.attraction_usage import AttractionUsage


class AttractionUsageRepo:
    @staticmethod
    async def try_create(
        session: AsyncSession,
        *,
        user_id: str,
        attraction_id: str,
        used_at: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(AttractionUsage)
            .values(user_id=user_id, attraction_id=attraction_id, used_at=used_at)
            .on_conflict_do_nothing(
                index_elements=[AttractionUsage.user_id, AttractionUsage.attraction_id],
            )
            .returning(AttractionUsage.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def delete(session: AsyncSession, *, user_id: str, attraction_id: str) -> bool:
        stmt = (
            delete(AttractionUsage)
            .where(
                AttractionUsage.user_id == user_id,
                AttractionUsage.attraction_id == attraction_id,
            )
            .returning(AttractionUsage.id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def list_attraction_ids(session: AsyncSession, *, user_id: str) -> list[str]:
        stmt = (
            select(AttractionUsage.attraction_id)
            .where(AttractionUsage.user_id == user_id)
            .order_by(AttractionUsage.used_at.asc())
        )
        result = await session.execute(stmt)
        return [str(attraction_id) for attraction_id in result.scalars()]

    @staticmethod
    async def delete_all_for_user(session: AsyncSession, *, user_id: str) -> int:
        stmt = (
            delete(AttractionUsage)
            .where(AttractionUsage.user_id == user_id)
            .returning(AttractionUsage.id)
        )
        result = await session.execute(stmt)
        return len(result.scalars().all())
