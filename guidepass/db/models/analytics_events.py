from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from guidepass.db.models.base import Base


class AnalyticsEvent(Base):
    """Append-only audit trail of ledger mutations; ``reference`` is the attraction or transaction id."""

    __tablename__ = "analytics_events"
    __table_args__ = (
        CheckConstraint("source IN ('API','WEBHOOK','SYSTEM')", name="ck_analytics_events_source"),
        Index("idx_analytics_events_type_time", "event_type", "happened_at"),
        Index("idx_analytics_events_user_type_time", "user_id", "event_type", "happened_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(16), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload: Mapped[dict[str, object]] = mapped_column(
        JSONB, nullable=False, server_default=text("'{}'::jsonb")
    )
    happened_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
