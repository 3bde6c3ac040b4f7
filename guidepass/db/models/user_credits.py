from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from guidepass.db.models.base import Base


class UserCredits(Base):
    __tablename__ = "user_credits"
    __table_args__ = (
        CheckConstraint("trial_available >= 0", name="ck_user_credits_trial_available_non_negative"),
        CheckConstraint("trial_used >= 0", name="ck_user_credits_trial_used_non_negative"),
        CheckConstraint("purchased_available >= 0", name="ck_user_credits_purchased_available_non_negative"),
        CheckConstraint("purchased_used >= 0", name="ck_user_credits_purchased_used_non_negative"),
    )

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    trial_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    trial_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchased_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
