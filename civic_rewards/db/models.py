"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from civic_rewards.models.api import PointsSource, TransactionType


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Holds the live points balance. Only the points ledger writes `points`.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="citizen")

    # Balance
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        CheckConstraint("role IN ('citizen', 'admin')", name="ck_users_role"),
        Index("idx_users_role", "role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, points={self.points})>"


class Report(Base):
    """
    ORM model for reports table.

    Status, urgency and history are written only by the report state machine.
    """

    __tablename__ = "reports"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Content
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)

    # Location (explicit columns, no JSON)
    address: Mapped[str] = mapped_column(String(500), nullable=False)
    city: Mapped[str] = mapped_column(String(255), nullable=False)
    governorate: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)

    image_urls: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")

    # Ownership
    reporter_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    admin_id: Mapped[UUID | None] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )

    # AI analysis snapshot
    ai_classification: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ai_urgency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    ai_analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status_history: Mapped[list["ReportStatusEntry"]] = relationship(
        "ReportStatusEntry",
        back_populates="report",
        order_by="ReportStatusEntry.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'in-progress', 'resolved', 'rejected')",
            name="ck_reports_status",
        ),
        CheckConstraint(
            "urgency IN ('low', 'medium', 'high', 'critical')",
            name="ck_reports_urgency",
        ),
        CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_reports_ai_confidence_range",
        ),
        Index("idx_reports_reporter_id", "reporter_id"),
        Index("idx_reports_status", "status"),
        Index("idx_reports_urgency", "urgency"),
        Index("idx_reports_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Report(id={self.id}, status={self.status}, urgency={self.urgency})>"


class ReportStatusEntry(Base):
    """
    ORM model for report_status_history table.

    Append-only. Position 0 is the creation entry.
    """

    __tablename__ = "report_status_history"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    report_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("reports.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    report: Mapped[Report] = relationship("Report", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("report_id", "position", name="uq_report_status_history_position"),
        CheckConstraint("position >= 0", name="ck_report_status_history_position"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ReportStatusEntry(report_id={self.report_id}, position={self.position}, "
            f"status={self.status})>"
        )


class PointsTransaction(Base):
    """
    ORM model for points_transactions table.

    Immutable ledger of every balance change. `balance` is the running total
    after this row was applied.
    """

    __tablename__ = "points_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )

    type: Mapped[TransactionType] = mapped_column(
        SQLEnum(
            TransactionType,
            name="points_transaction_type",
            native_enum=False,
            length=10,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    source: Mapped[PointsSource] = mapped_column(
        SQLEnum(
            PointsSource,
            name="points_source",
            native_enum=False,
            length=30,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False)

    reference_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    description: Mapped[str] = mapped_column(String, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_points_transactions_amount_positive"),
        CheckConstraint("balance >= 0", name="ck_points_transactions_balance_non_negative"),
        Index("idx_points_transactions_user_created", "user_id", "created_at"),
        Index("idx_points_transactions_source", "source"),
        # A report is rewarded at most once per reward kind
        Index(
            "uq_points_transactions_report_reward",
            "source",
            "reference_id",
            unique=True,
            postgresql_where=text("source IN ('report_submission', 'report_resolved')"),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PointsTransaction(id={self.id}, user_id={self.user_id}, type={self.type}, "
            f"amount={self.amount}, balance={self.balance})>"
        )


class Product(Base):
    """
    ORM model for products table.

    `stock` NULL means unlimited. Stock changes only through redemption.
    """

    __tablename__ = "products"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    points_cost: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stock: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("points_cost >= 1", name="ck_products_points_cost_positive"),
        CheckConstraint("stock IS NULL OR stock >= 0", name="ck_products_stock_non_negative"),
        CheckConstraint(
            "stock IS NULL OR stock > 0 OR is_active = false",
            name="ck_products_depleted_inactive",
        ),
        Index("idx_products_is_active", "is_active"),
        Index("idx_products_category", "category"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Product(id={self.id}, name={self.name}, stock={self.stock})>"


class Redemption(Base):
    """
    ORM model for redemptions table.

    `points_cost` is a snapshot taken at redemption time.
    """

    __tablename__ = "redemptions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    product_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    points_cost: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    admin_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    processing_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completion_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("points_cost >= 1", name="ck_redemptions_points_cost_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'rejected')",
            name="ck_redemptions_status",
        ),
        Index("idx_redemptions_user_id", "user_id"),
        Index("idx_redemptions_product_id", "product_id"),
        Index("idx_redemptions_status", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Redemption(id={self.id}, user_id={self.user_id}, "
            f"product_id={self.product_id}, status={self.status})>"
        )
