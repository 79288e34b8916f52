"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from civic_rewards.models.api import (
    PointsSource,
    RedemptionStatus,
    ReportCategory,
    ReportStatus,
    TransactionType,
    Urgency,
    UserRole,
)


@dataclass(frozen=True)
class Location:
    """Where a reported issue is."""

    address: str
    city: str
    governorate: str
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        """Validate coordinates."""
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Longitude out of range: {self.longitude}")


@dataclass(frozen=True)
class ReportDraft:
    """Citizen-supplied report content before persistence."""

    title: str
    description: str
    category: ReportCategory
    location: Location
    image_urls: tuple[str, ...] = ()
    urgency: Urgency = Urgency.MEDIUM

    def __post_init__(self) -> None:
        """Validate report content."""
        if not self.title.strip():
            raise ValueError("Title cannot be empty")
        if not self.description.strip():
            raise ValueError("Description cannot be empty")


@dataclass(frozen=True)
class StatusHistoryEntry:
    """One append-only status history row."""

    status: ReportStatus
    actor_id: UUID | None
    note: str
    created_at: datetime


@dataclass(frozen=True)
class AIAnalysis:
    """
    Snapshot of an AI classification and urgency guess.

    `confidence` is the classifier's. The urgency detector's confidence is
    only needed for the merge decision and is not persisted; when absent the
    snapshot confidence is used.
    """

    classification: str
    urgency: str
    confidence: float
    analyzed_at: datetime
    urgency_confidence: float | None = None

    @property
    def merge_confidence(self) -> float:
        """Confidence that gates urgency escalation."""
        return self.confidence if self.urgency_confidence is None else self.urgency_confidence


@dataclass(frozen=True)
class UserData:
    """Immutable user snapshot."""

    user_id: UUID
    email: str | None
    display_name: str | None
    role: UserRole
    points: int


@dataclass(frozen=True)
class ReportData:
    """Immutable report snapshot."""

    report_id: UUID
    title: str
    description: str
    category: ReportCategory
    location: Location
    image_urls: tuple[str, ...]
    status: ReportStatus
    urgency: Urgency
    reporter_id: UUID
    admin_id: UUID | None
    ai_analysis: AIAnalysis | None
    status_history: tuple[StatusHistoryEntry, ...]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class EarnIntent:
    """Credit points to a user - immutable intent."""

    user_id: UUID
    amount: int
    source: PointsSource
    description: str
    reference_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate earn constraints."""
        if self.amount <= 0:
            raise ValueError(f"Earn amount must be positive: {self.amount}")
        if self.source == PointsSource.PRODUCT_REDEMPTION:
            raise ValueError("product_redemption is not an earning source")
        if not self.description:
            raise ValueError("Description cannot be empty")


@dataclass(frozen=True)
class DeductIntent:
    """Debit points from a user - immutable intent."""

    user_id: UUID
    amount: int
    description: str
    reference_id: UUID | None = None
    source: PointsSource = PointsSource.PRODUCT_REDEMPTION

    def __post_init__(self) -> None:
        """Validate deduct constraints."""
        if self.amount <= 0:
            raise ValueError(f"Deduct amount must be positive: {self.amount}")
        if self.source in (PointsSource.REPORT_SUBMISSION, PointsSource.REPORT_RESOLVED):
            raise ValueError(f"{self.source.value} is not a deduction source")
        if not self.description:
            raise ValueError("Description cannot be empty")


@dataclass(frozen=True)
class PointsTransactionData:
    """Immutable ledger row after persistence."""

    transaction_id: UUID
    user_id: UUID
    type: TransactionType
    source: PointsSource
    amount: int
    balance: int
    reference_id: UUID | None
    description: str
    created_at: datetime

    @property
    def signed_amount(self) -> int:
        """Amount with the sign of its effect on the balance."""
        return self.amount if self.type == TransactionType.EARN else -self.amount


@dataclass(frozen=True)
class LedgerEntry:
    """Result of an earn or deduct."""

    new_balance: int
    transaction: PointsTransactionData


@dataclass(frozen=True)
class TransactionPage:
    """One page of a user's transaction history, newest first."""

    transactions: tuple[PointsTransactionData, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        """Number of pages at this limit."""
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class LedgerAudit:
    """Outcome of replaying a user's transaction chain."""

    user_id: UUID
    stored_balance: int
    replayed_balance: int
    transaction_count: int
    first_broken_transaction_id: UUID | None

    @property
    def consistent(self) -> bool:
        """Chain is intact and ends at the stored balance."""
        return (
            self.first_broken_transaction_id is None
            and self.replayed_balance == self.stored_balance
        )


@dataclass(frozen=True)
class ProductDraft:
    """Admin-supplied product before persistence."""

    name: str
    description: str
    points_cost: int
    category: str
    image_url: str | None = None
    is_active: bool = True
    stock: int | None = None

    def __post_init__(self) -> None:
        """Validate product constraints."""
        if self.points_cost < 1:
            raise ValueError(f"Points cost must be at least 1: {self.points_cost}")
        if self.stock is not None and self.stock < 0:
            raise ValueError(f"Stock cannot be negative: {self.stock}")
        if not self.name:
            raise ValueError("Name cannot be empty")


@dataclass(frozen=True)
class ProductChanges:
    """Partial admin edit of a product. None leaves the field untouched; stock is not editable."""

    name: str | None = None
    description: str | None = None
    points_cost: int | None = None
    category: str | None = None
    image_url: str | None = None
    is_active: bool | None = None

    def __post_init__(self) -> None:
        """Validate product constraints."""
        if self.points_cost is not None and self.points_cost < 1:
            raise ValueError(f"Points cost must be at least 1: {self.points_cost}")
        if self.name is not None and not self.name:
            raise ValueError("Name cannot be empty")


@dataclass(frozen=True)
class ProductData:
    """Immutable product snapshot."""

    product_id: UUID
    name: str
    description: str
    points_cost: int
    category: str
    image_url: str | None
    is_active: bool
    stock: int | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_available(self) -> bool:
        """Active and not depleted."""
        return self.is_active and (self.stock is None or self.stock > 0)


@dataclass(frozen=True)
class RedemptionData:
    """Immutable redemption snapshot."""

    redemption_id: UUID
    user_id: UUID
    product_id: UUID
    points_cost: int
    status: RedemptionStatus
    notes: str
    admin_id: UUID | None
    processing_date: datetime | None
    completion_date: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class RedemptionResult:
    """Outcome of a successful redemption."""

    redemption: RedemptionData
    points_deducted: int
    remaining_balance: int


# ============================================================================
# AI Backend Contract
# ============================================================================


@dataclass(frozen=True)
class ClassificationResult:
    """AI image classification."""

    classification: str
    confidence: float
    is_fallback: bool = False


@dataclass(frozen=True)
class UrgencyResult:
    """AI urgency detection."""

    urgency: str
    confidence: float
    is_fallback: bool = False


FALLBACK_CLASSIFICATION = ClassificationResult(
    classification=ReportCategory.OTHER.value, confidence=0.5, is_fallback=True
)
FALLBACK_URGENCY = UrgencyResult(urgency=Urgency.MEDIUM.value, confidence=0.5, is_fallback=True)
