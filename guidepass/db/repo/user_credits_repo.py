from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.user_credits import UserCredits


class UserCreditsRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: str) -> UserCredits | None:
        return await session.get(UserCredits, user_id)

    @staticmethod
    async def get_by_user_id_for_update(session: AsyncSession, user_id: str) -> UserCredits | None:
        stmt = select(UserCredits).where(UserCredits.user_id == user_id).with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_create(
        session: AsyncSession,
        *,
        user_id: str,
        trial_available: int,
        trial_used: int,
        purchased_available: int,
        purchased_used: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            postgresql_insert(UserCredits)
            .values(
                user_id=user_id,
                trial_available=trial_available,
                trial_used=trial_used,
                purchased_available=purchased_available,
                purchased_used=purchased_used,
                version=0,
                created_at=now_utc,
                updated_at=now_utc,
            )
            .on_conflict_do_nothing(index_elements=[UserCredits.user_id])
            .returning(UserCredits.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def compare_and_set(
        session: AsyncSession,
        *,
        user_id: str,
        expected_version: int,
        trial_available: int,
        trial_used: int,
        purchased_available: int,
        purchased_used: int,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(UserCredits)
            .where(
                UserCredits.user_id == user_id,
                UserCredits.version == expected_version,
            )
            .values(
                trial_available=trial_available,
                trial_used=trial_used,
                purchased_available=purchased_available,
                purchased_used=purchased_used,
                version=UserCredits.version + 1,
                updated_at=now_utc,
            )
            .returning(UserCredits.user_id)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
