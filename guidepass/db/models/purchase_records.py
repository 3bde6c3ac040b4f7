from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from guidepass.db.models.base import Base


class PurchaseRecordRow(Base):
    __tablename__ = "purchase_records"
    __table_args__ = (
        CheckConstraint(
            "product_kind IN ('SUBSCRIPTION','CONSUMABLE_PACKAGE','CONSUMABLE_SINGLE_ATTRACTION','LEGACY_PACK')",
            name="ck_purchase_records_product_kind",
        ),
        CheckConstraint("credit_amount >= 0", name="ck_purchase_records_credit_amount_non_negative"),
        Index("idx_purchase_records_user_time", "user_id", "purchased_at"),
    )

    transaction_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    product_id: Mapped[str] = mapped_column(String(128), nullable=False)
    product_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    credit_amount: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
