from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class TransactionStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    cancelled = "cancelled"


class LimitKind(str, Enum):
    category = "category"
    card = "card"
    general = "general"
    period = "period"


class LimitPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6B7280")
    icon: Mapped[str] = mapped_column(String(50), nullable=False, default="folder")
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", "name", name="uq_category_user_type_name"),
    )


class Card(Base, TimestampMixin):
    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    brand: Mapped[Optional[str]] = mapped_column(String(40))
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="card"
    )

    __table_args__ = (UniqueConstraint("user_id", "name", name="uq_card_user_name"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    status: Mapped[TransactionStatus] = mapped_column(
        SAEnum(TransactionStatus), nullable=False, default=TransactionStatus.confirmed
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    card_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cards.id"))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    card: Mapped[Optional["Card"]] = relationship("Card", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        Index("ix_transactions_user_card_date", "user_id", "card_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Limit(Base, TimestampMixin):
    __tablename__ = "limits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[LimitKind] = mapped_column(SAEnum(LimitKind), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    accrued_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period: Mapped[LimitPeriod] = mapped_column(
        SAEnum(LimitPeriod), nullable=False, default=LimitPeriod.monthly
    )
    category_id: Mapped[Optional[int]] = mapped_column(ForeignKey("categories.id"))
    card_id: Mapped[Optional[int]] = mapped_column(ForeignKey("cards.id"))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_50: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_75: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_90: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    alert_100: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_reset_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    next_reset_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[Optional["Category"]] = relationship("Category")
    card: Mapped[Optional["Card"]] = relationship("Card")

    __table_args__ = (
        Index("ix_limits_user_active", "user_id", "active"),
        Index("ix_limits_user_kind", "user_id", "kind"),
        Index("ix_limits_active_next_reset", "active", "next_reset_at"),
        CheckConstraint("amount_cents >= 0", name="ck_limits_amount_positive"),
        CheckConstraint("accrued_cents >= 0", name="ck_limits_accrued_positive"),
    )
