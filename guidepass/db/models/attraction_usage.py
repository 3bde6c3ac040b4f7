from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guidepass.db.models.base import Base


class AttractionUsage(Base):
    __tablename__ = "attraction_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "attraction_id", name="uq_attraction_usage_user_attraction"),
        Index("idx_attraction_usage_user_time", "user_id", "used_at"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    attraction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
