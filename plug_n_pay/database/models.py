"""SQLAlchemy database models for the pay-per-call marketplace."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# AVAX amounts keep full wei precision (18 decimal places)
AVAX_AMOUNT = Numeric(36, 18)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Developer(Base):
    """
    API provider account.

    Identified by an API key issued at registration; one account per wallet.
    """

    __tablename__ = "developers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    api_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    wallet_address: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    plans: Mapped[List["SubscriptionPlan"]] = relationship(
        back_populates="developer", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        """String representation of Developer."""
        return f"<Developer(id={self.id}, wallet={self.wallet_address})>"


class SubscriptionPlan(Base):
    """
    Per-call pricing plan defined by a developer.

    Prices and caps are denominated in AVAX.
    """

    __tablename__ = "subscription_plans"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    developer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("developers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    price_per_call: Mapped[Decimal] = mapped_column(AVAX_AMOUNT, nullable=False)
    daily_cap: Mapped[Decimal | None] = mapped_column(AVAX_AMOUNT, nullable=True)
    monthly_cap: Mapped[Decimal | None] = mapped_column(AVAX_AMOUNT, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Joined so the owner's wallet is available outside a lazy-load context
    developer: Mapped[Developer] = relationship(back_populates="plans", lazy="joined")

    __table_args__ = (
        CheckConstraint("price_per_call > 0", name="positive_price_per_call"),
        CheckConstraint("daily_cap IS NULL OR daily_cap > 0", name="positive_daily_cap"),
        CheckConstraint("monthly_cap IS NULL OR monthly_cap > 0", name="positive_monthly_cap"),
        Index("idx_plans_developer_active", "developer_id", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation of SubscriptionPlan."""
        return (
            f"<SubscriptionPlan(id={self.id}, name={self.name}, "
            f"price_per_call={self.price_per_call}, active={self.is_active})>"
        )


class ApiCustomer(Base):
    """API consumer, keyed by the wallet that pays for calls."""

    __tablename__ = "api_customers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    wallet_address: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, index=True
    )
    current_balance: Mapped[Decimal] = mapped_column(
        AVAX_AMOUNT, nullable=False, default=Decimal("0")
    )
    total_spent: Mapped[Decimal] = mapped_column(
        AVAX_AMOUNT, nullable=False, default=Decimal("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        """String representation of ApiCustomer."""
        return f"<ApiCustomer(id={self.id}, wallet={self.wallet_address})>"


class UsageLog(Base):
    """
    One paid API call.

    The verified transaction hash is unique, so a payment can grant access once.
    Immutable once written.
    """

    __tablename__ = "usage_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("api_customers.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("subscription_plans.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(AVAX_AMOUNT, nullable=False)
    payment_intent_hash: Mapped[str | None] = mapped_column(
        String(66), unique=True, nullable=True
    )
    api_endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="non_negative_amount"),
        Index("idx_usage_customer_plan_ts", "customer_id", "plan_id", "timestamp"),
    )

    def __repr__(self) -> str:
        """String representation of UsageLog."""
        return (
            f"<UsageLog(id={self.id}, customer_id={self.customer_id}, "
            f"plan_id={self.plan_id}, amount={self.amount})>"
        )
