"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class UserAccount(Base):
    """
    ORM model for users table.

    Tier and monthly usage counters. The id is owned by the identity provider.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Entitlement
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    monthly_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    generated_this_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    subscription_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Last mutation of the usage counter; drives the monthly reset
    usage_updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("tier IN ('free', 'premium')", name="ck_users_tier"),
        CheckConstraint("generated_this_month >= 0", name="ck_users_generated_non_negative"),
        CheckConstraint("monthly_limit > 0", name="ck_users_monthly_limit_positive"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<UserAccount(id={self.id}, tier={self.tier}, generated={self.generated_this_month})>"


class PaymentTransaction(Base):
    """
    ORM model for payment_transactions table.

    Audit trail of tier purchases. Rows are never deleted.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # Gateway reference (Cryptomus payment uuid), set once the gateway responds
    gateway_payment_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    order_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    tier_purchased: Mapped[str] = mapped_column(String(20), nullable=False, default="premium")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    gateway_data: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')",
            name="ck_payment_status",
        ),
        Index(
            "uq_payment_transactions_gateway_payment_id",
            "gateway_payment_id",
            unique=True,
            postgresql_where=(gateway_payment_id.isnot(None)),
        ),
        Index("idx_payment_transactions_user_status", "user_id", "status", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PaymentTransaction(id={self.id}, user_id={self.user_id}, "
            f"status={self.status}, gateway_payment_id={self.gateway_payment_id})>"
        )


class FlashcardSet(Base):
    """ORM model for flashcard_sets table."""

    __tablename__ = "flashcard_sets"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_notes: Mapped[str] = mapped_column(Text, nullable=False)
    flashcard_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    flashcards: Mapped[list["Flashcard"]] = relationship(
        back_populates="flashcard_set",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Flashcard.created_at",
    )

    __table_args__ = (
        CheckConstraint("flashcard_count >= 0", name="ck_flashcard_sets_count_non_negative"),
        Index("idx_flashcard_sets_user_created", "user_id", "created_at"),
    )


class Flashcard(Base):
    """ORM model for flashcards table."""

    __tablename__ = "flashcards"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    set_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("flashcard_sets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str] = mapped_column(Text, nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Review counters (no scheduling)
    times_reviewed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    times_correct: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    flashcard_set: Mapped[FlashcardSet] = relationship(back_populates="flashcards")

    __table_args__ = (
        CheckConstraint("difficulty BETWEEN 1 AND 5", name="ck_flashcards_difficulty_range"),
        CheckConstraint("times_correct <= times_reviewed", name="ck_flashcards_correct_le_reviewed"),
    )
