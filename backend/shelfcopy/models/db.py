"""SQLAlchemy ORM models for Shelfcopy.

One ledger row per shop holds the spendable balance; history rows are
written by the item processor, one per processed unit.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Shop(Base):
    __tablename__ = "shops"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    access_token: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    settings: Mapped["ShopSettingsRow | None"] = relationship(
        back_populates="shop", cascade="all, delete"
    )
    credits: Mapped["CreditLedgerRow | None"] = relationship(
        back_populates="shop", cascade="all, delete"
    )


class ShopSettingsRow(Base):
    __tablename__ = "shop_settings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[str] = mapped_column(
        ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    default_tone: Mapped[str] = mapped_column(String(20), nullable=False, default="professional")
    include_meta: Mapped[bool] = mapped_column(Boolean, default=True)
    product_desc_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_title_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    meta_desc_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    visual_analysis_depth: Mapped[str] = mapped_column(
        String(20), nullable=False, default="standard"
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    shop: Mapped["Shop"] = relationship(back_populates="settings")


class CreditLedgerRow(Base):
    __tablename__ = "credit_ledgers"
    __table_args__ = (CheckConstraint("available >= 0", name="ck_credit_ledgers_available_nonneg"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[str] = mapped_column(
        ForeignKey("shops.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    plan: Mapped[str] = mapped_column(String(20), nullable=False, default="FREE")
    available: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reset_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_granted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    shop: Mapped["Shop"] = relationship(back_populates="credits")


class GenerationHistory(Base):
    __tablename__ = "generation_history"
    __table_args__ = (
        Index("idx_generation_history_shop_status", "shop_id", "status"),
        Index("idx_generation_history_shop_created", "shop_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop_id: Mapped[str] = mapped_column(
        ForeignKey("shops.id", ondelete="CASCADE"), nullable=False
    )
    item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    item_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    original_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    generated_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_analysis: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    generated_meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    credits_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
