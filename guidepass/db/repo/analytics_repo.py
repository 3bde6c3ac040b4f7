from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.analytics_events import AnalyticsEvent


class AnalyticsRepo:
    @staticmethod
    async def create_event(
        session: AsyncSession,
        *,
        event_type: str,
        source: str,
        user_id: str | None,
        reference: str | None,
        payload: dict[str, object],
        happened_at: datetime,
    ) -> AnalyticsEvent:
        event = AnalyticsEvent(
            event_type=event_type,
            source=source,
            user_id=user_id,
            reference=reference,
            payload=payload,
            happened_at=happened_at,
        )
        session.add(event)
        await session.flush()
        return event

    @staticmethod
    async def count_by_type_for_user(session: AsyncSession, *, user_id: str, event_type: str) -> int:
        stmt = select(func.count(AnalyticsEvent.id)).where(
            AnalyticsEvent.user_id == user_id,
            AnalyticsEvent.event_type == event_type,
        )
        result = await session.execute(stmt)
        return int(result.scalar_one() or 0)

    @staticmethod
    async def list_references(session: AsyncSession, *, user_id: str, event_type: str) -> list[str]:
        stmt = (
            select(AnalyticsEvent.reference)
            .where(
                AnalyticsEvent.user_id == user_id,
                AnalyticsEvent.event_type == event_type,
                AnalyticsEvent.reference.is_not(None),
            )
            .order_by(AnalyticsEvent.happened_at.asc(), AnalyticsEvent.id.asc())
        )
        result = await session.execute(stmt)
        return [reference for reference in result.scalars().all() if reference is not None]
