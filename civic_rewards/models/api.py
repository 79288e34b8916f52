"""
API Models - Enumerations and Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

# Admin input ceilings; products.stock is a 32-bit column
MAX_POINTS_DELTA = 1_000_000
MAX_POINTS_COST = 1_000_000
MAX_STOCK = 1_000_000


class ReportStatus(str, Enum):
    """Report lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    RESOLVED = "resolved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        """Resolved and rejected reports accept no further transitions."""
        return self in (ReportStatus.RESOLVED, ReportStatus.REJECTED)


class Urgency(str, Enum):
    """Report urgency, totally ordered low < medium < high < critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReportCategory(str, Enum):
    """Closed set of infrastructure issue categories."""

    ROAD_DAMAGE = "road_damage"
    WATER_ISSUE = "water_issue"
    ELECTRICITY_ISSUE = "electricity_issue"
    WASTE_MANAGEMENT = "waste_management"
    PUBLIC_PROPERTY_DAMAGE = "public_property_damage"
    STREET_LIGHTING = "street_lighting"
    SEWAGE_PROBLEM = "sewage_problem"
    PUBLIC_TRANSPORTATION = "public_transportation"
    ENVIRONMENTAL_ISSUE = "environmental_issue"
    OTHER = "other"


class TransactionType(str, Enum):
    """Points transaction direction."""

    EARN = "earn"
    REDEEM = "redeem"


class PointsSource(str, Enum):
    """Why a points transaction happened."""

    REPORT_SUBMISSION = "report_submission"
    REPORT_RESOLVED = "report_resolved"
    PRODUCT_REDEMPTION = "product_redemption"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    OTHER = "other"


class RedemptionStatus(str, Enum):
    """Redemption fulfilment status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    REJECTED = "rejected"


class UserRole(str, Enum):
    """Role of the acting user."""

    CITIZEN = "citizen"
    ADMIN = "admin"


# ============================================================================
# Report Models
# ============================================================================


class LocationModel(BaseModel):
    """Report location - explicit fields, no dict."""

    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=255)
    governorate: str = Field(..., min_length=1, max_length=255)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CreateReportRequest(BaseModel):
    """POST /v1/reports request body."""

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=10, max_length=2000)
    category: ReportCategory
    location: LocationModel
    image_urls: list[str] = Field(default_factory=list, max_length=10)
    urgency: Urgency = Urgency.MEDIUM


class UpdateReportStatusRequest(BaseModel):
    """PATCH /v1/admin/reports/{report_id}/status request body."""

    status: str = Field(..., min_length=1, max_length=20)
    note: str | None = Field(None, max_length=1000)


class UpdateUrgencyRequest(BaseModel):
    """PATCH /v1/admin/reports/{report_id}/urgency request body."""

    urgency: str = Field(..., min_length=1, max_length=20)


class StatusHistoryItem(BaseModel):
    """Single status history entry."""

    status: ReportStatus
    actor_id: UUID | None
    note: str
    created_at: datetime


class AIAnalysisModel(BaseModel):
    """AI analysis snapshot stored on a report."""

    classification: str
    urgency: str
    confidence: float
    analyzed_at: datetime


class ReportResponse(BaseModel):
    """Report representation returned by the API."""

    report_id: UUID
    title: str
    description: str
    category: ReportCategory
    location: LocationModel
    image_urls: list[str]
    status: ReportStatus
    urgency: Urgency
    reporter_id: UUID
    admin_id: UUID | None
    ai_analysis: AIAnalysisModel | None
    status_history: list[StatusHistoryItem]
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Points Models
# ============================================================================


class BalanceResponse(BaseModel):
    """GET /v1/points/{user_id}/balance response."""

    user_id: UUID
    balance: int


class TransactionItem(BaseModel):
    """Single points transaction."""

    transaction_id: UUID
    type: TransactionType
    source: PointsSource
    amount: int
    balance: int
    reference_id: UUID | None
    description: str
    created_at: datetime


class TransactionListResponse(BaseModel):
    """Paginated transaction history."""

    transactions: list[TransactionItem]
    total: int
    page: int
    limit: int
    pages: int


class AdjustPointsRequest(BaseModel):
    """POST /v1/admin/points/{user_id}/adjustments request body."""

    delta: int = Field(
        ...,
        ge=-MAX_POINTS_DELTA,
        le=MAX_POINTS_DELTA,
        description="Positive to credit, negative to debit",
    )
    description: str = Field(..., min_length=1, max_length=500)


class LedgerEntryResponse(BaseModel):
    """Result of a ledger write."""

    new_balance: int
    transaction: TransactionItem


class LedgerAuditResponse(BaseModel):
    """Ledger consistency audit for one user."""

    user_id: UUID
    stored_balance: int
    replayed_balance: int
    transaction_count: int
    consistent: bool
    first_broken_transaction_id: UUID | None


# ============================================================================
# Product Models
# ============================================================================


class CreateProductRequest(BaseModel):
    """POST /v1/admin/products request body."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=2000)
    points_cost: int = Field(..., ge=1, le=MAX_POINTS_COST)
    category: str = Field(..., min_length=1, max_length=100)
    image_url: str | None = Field(None, max_length=1000)
    is_active: bool = True
    stock: int | None = Field(None, ge=0, le=MAX_STOCK)


class UpdateProductRequest(BaseModel):
    """PATCH /v1/admin/products/{product_id} request body - stock is not editable."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    points_cost: int | None = Field(None, ge=1, le=MAX_POINTS_COST)
    category: str | None = Field(None, min_length=1, max_length=100)
    image_url: str | None = Field(None, max_length=1000)
    is_active: bool | None = None


class ProductResponse(BaseModel):
    """Product representation returned by the API."""

    product_id: UUID
    name: str
    description: str
    points_cost: int
    category: str
    image_url: str | None
    is_active: bool
    stock: int | None
    is_available: bool


# ============================================================================
# Redemption Models
# ============================================================================


class CreateRedemptionRequest(BaseModel):
    """POST /v1/redemptions request body."""

    product_id: UUID


class UpdateRedemptionStatusRequest(BaseModel):
    """PATCH /v1/admin/redemptions/{redemption_id}/status request body."""

    status: str = Field(..., min_length=1, max_length=20)
    notes: str | None = Field(None, max_length=1000)


class RedemptionResponse(BaseModel):
    """Redemption representation returned by the API."""

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


class RedeemResponse(BaseModel):
    """POST /v1/redemptions response."""

    redemption: RedemptionResponse
    points_deducted: int
    remaining_balance: int


# ============================================================================
# Health
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
