from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from guidepass.db.models.base import Base


class OwnedAttraction(Base):
    __tablename__ = "owned_attractions"
    __table_args__ = (
        UniqueConstraint("user_id", "attraction_id", name="uq_owned_attractions_user_attraction"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    attraction_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_product_id: Mapped[str] = mapped_column(String(128), nullable=False)
    source_transaction_id: Mapped[str] = mapped_column(String(255), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
