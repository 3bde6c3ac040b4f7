from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from guidepass.db.models.analytics_events import AnalyticsEvent
from guidepass.db.repo.analytics_repo import AnalyticsRepo

EVENT_SOURCE_SYSTEM = "SYSTEM"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


async def emit_analytics_event(
    session: AsyncSession,
    *,
    event_type: str,
    source: str,
    happened_at: datetime,
    user_id: str | None = None,
    reference: str | None = None,
    payload: dict[str, object] | None = None,
) -> AnalyticsEvent:
    """Adds the event to the caller's transaction; it commits or rolls back with the ledger write."""
    return await AnalyticsRepo.create_event(
        session,
        event_type=event_type,
        source=source,
        user_id=user_id,
        reference=reference,
        payload=payload or {},
        happened_at=_as_utc(happened_at),
    )
