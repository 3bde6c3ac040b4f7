from __future__ import annotations

from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.user_subscriptions import UserSubscription


class SubscriptionsRepo:
    @staticmethod
    async def get_by_user_id(session: AsyncSession, user_id: str) -> UserSubscription | None:
        return await session.get(UserSubscription, user_id)

    @staticmethod
    async def upsert(
        session: AsyncSession,
        *,
        user_id: str,
        kind: str,
        expires_at: datetime | None,
        product_id: str,
        transaction_id: str,
        platform: str,
        now_utc: datetime,
    ) -> bool:
        """Writes the subscription unless the stored one already runs longer.

        Restoring an older renewal after a newer one must not shorten access.
        """
        stmt = postgresql_insert(UserSubscription).values(
            user_id=user_id,
            kind=kind,
            is_active=True,
            expires_at=expires_at,
            product_id=product_id,
            transaction_id=transaction_id,
            platform=platform,
            updated_at=now_utc,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserSubscription.user_id],
            set_={
                "kind": stmt.excluded.kind,
                "is_active": True,
                "expires_at": stmt.excluded.expires_at,
                "product_id": stmt.excluded.product_id,
                "transaction_id": stmt.excluded.transaction_id,
                "platform": stmt.excluded.platform,
                "updated_at": stmt.excluded.updated_at,
            },
            where=or_(
                UserSubscription.is_active.is_(False),
                UserSubscription.expires_at.is_(None),
                UserSubscription.expires_at <= stmt.excluded.expires_at,
            ),
        ).returning(UserSubscription.user_id)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
