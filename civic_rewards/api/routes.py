"""
API Routes - Citizen-facing endpoints for reports, points and redemptions.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.api.dependencies import (
    Actor,
    ensure_self_or_admin,
    get_actor,
    get_enrichment,
    get_notifier,
)
from civic_rewards.db.session import get_read_db, get_write_db
from civic_rewards.exceptions import (
    AuthorizationError,
    ConflictError,
    DatabaseError,
    DataIntegrityError,
    InsufficientPointsError,
    InvalidStateError,
    OutOfStockError,
    ProductUnavailableError,
    ResourceNotFoundError,
    RewardsError,
    WriteVerificationError,
)
from civic_rewards.models.api import (
    AIAnalysisModel,
    BalanceResponse,
    CreateRedemptionRequest,
    CreateReportRequest,
    HealthResponse,
    LedgerEntryResponse,
    LocationModel,
    PointsSource,
    ProductResponse,
    RedeemResponse,
    RedemptionResponse,
    RedemptionStatus,
    ReportResponse,
    ReportStatus,
    StatusHistoryItem,
    TransactionItem,
    TransactionListResponse,
    TransactionType,
)
from civic_rewards.models.domain import (
    LedgerEntry,
    Location,
    PointsTransactionData,
    ProductData,
    RedemptionData,
    ReportData,
    ReportDraft,
)
from civic_rewards.observability.metrics import metrics
from civic_rewards.services.ai_enrichment import AIEnrichmentService
from civic_rewards.services.notifications import Notifier
from civic_rewards.services.points_ledger import PointsLedger
from civic_rewards.services.products import ProductCatalog
from civic_rewards.services.redemptions import RedemptionWorkflow
from civic_rewards.services.reports import ReportStateMachine

logger = get_logger(__name__)

router = APIRouter()

TRY_AGAIN = "Temporarily unavailable, please try again"


# =============================================================================
# Error Mapping
# =============================================================================


def to_http_exception(exc: RewardsError, operation: str) -> HTTPException:
    """Map a service error to the client-facing HTTP status."""
    if isinstance(exc, ResourceNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    if isinstance(exc, InsufficientPointsError):
        return HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(exc))
    if isinstance(exc, (ProductUnavailableError, OutOfStockError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)

    metrics.record_error(type(exc).__name__, operation)
    logger.error(
        "request_failed", operation=operation, error=str(exc), error_type=type(exc).__name__
    )

    if isinstance(exc, (ConflictError, DatabaseError)):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=TRY_AGAIN)
    if isinstance(exc, (WriteVerificationError, DataIntegrityError)):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Something went wrong, please try again",
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=TRY_AGAIN)


# =============================================================================
# Response Converters
# =============================================================================


def report_to_response(report: ReportData) -> ReportResponse:
    ai_analysis = None
    if report.ai_analysis is not None:
        ai_analysis = AIAnalysisModel(
            classification=report.ai_analysis.classification,
            urgency=report.ai_analysis.urgency,
            confidence=report.ai_analysis.confidence,
            analyzed_at=report.ai_analysis.analyzed_at,
        )

    return ReportResponse(
        report_id=report.report_id,
        title=report.title,
        description=report.description,
        category=report.category,
        location=LocationModel(
            address=report.location.address,
            city=report.location.city,
            governorate=report.location.governorate,
            latitude=report.location.latitude,
            longitude=report.location.longitude,
        ),
        image_urls=list(report.image_urls),
        status=report.status,
        urgency=report.urgency,
        reporter_id=report.reporter_id,
        admin_id=report.admin_id,
        ai_analysis=ai_analysis,
        status_history=[
            StatusHistoryItem(
                status=entry.status,
                actor_id=entry.actor_id,
                note=entry.note,
                created_at=entry.created_at,
            )
            for entry in report.status_history
        ],
        created_at=report.created_at,
        updated_at=report.updated_at,
    )


def transaction_to_item(transaction: PointsTransactionData) -> TransactionItem:
    return TransactionItem(
        transaction_id=transaction.transaction_id,
        type=transaction.type,
        source=transaction.source,
        amount=transaction.amount,
        balance=transaction.balance,
        reference_id=transaction.reference_id,
        description=transaction.description,
        created_at=transaction.created_at,
    )


def ledger_entry_to_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        new_balance=entry.new_balance,
        transaction=transaction_to_item(entry.transaction),
    )


def product_to_response(product: ProductData) -> ProductResponse:
    return ProductResponse(
        product_id=product.product_id,
        name=product.name,
        description=product.description,
        points_cost=product.points_cost,
        category=product.category,
        image_url=product.image_url,
        is_active=product.is_active,
        stock=product.stock,
        is_available=product.is_available,
    )


def redemption_to_response(redemption: RedemptionData) -> RedemptionResponse:
    return RedemptionResponse(
        redemption_id=redemption.redemption_id,
        user_id=redemption.user_id,
        product_id=redemption.product_id,
        points_cost=redemption.points_cost,
        status=redemption.status,
        notes=redemption.notes,
        admin_id=redemption.admin_id,
        processing_date=redemption.processing_date,
        completion_date=redemption.completion_date,
        created_at=redemption.created_at,
    )


# =============================================================================
# Reports
# =============================================================================


@router.post(
    "/v1/reports",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_report(
    request: CreateReportRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_write_db),
    notifier: Notifier = Depends(get_notifier),
    enrichment: AIEnrichmentService | None = Depends(get_enrichment),
) -> ReportResponse:
    """
    Submit a report.

    Awards the submission reward in the same commit. AI enrichment runs in
    the background when images are attached.
    """
    try:
        draft = ReportDraft(
            title=request.title,
            description=request.description,
            category=request.category,
            location=Location(
                address=request.location.address,
                city=request.location.city,
                governorate=request.location.governorate,
                latitude=request.location.latitude,
                longitude=request.location.longitude,
            ),
            image_urls=tuple(request.image_urls),
            urgency=request.urgency,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    reports = ReportStateMachine(db, notifier=notifier, enrichment=enrichment)
    try:
        report = await reports.create(draft, actor.user_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "create_report") from exc

    return report_to_response(report)


@router.get("/v1/reports", response_model=list[ReportResponse])
async def list_my_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    report_status: ReportStatus | None = Query(None, alias="status"),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> list[ReportResponse]:
    """List the caller's reports, newest first."""
    reports = ReportStateMachine(db)
    items = await reports.list_for_reporter(actor.user_id, page, limit, report_status)
    return [report_to_response(report) for report in items]


@router.get("/v1/reports/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> ReportResponse:
    """Get a report with its status history."""
    reports = ReportStateMachine(db)
    try:
        report = await reports.get(report_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "get_report") from exc
    return report_to_response(report)


@router.delete("/v1/reports/{report_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_report(
    report_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """Delete one of the caller's reports while it is still pending."""
    reports = ReportStateMachine(db)
    try:
        await reports.delete(report_id, actor.user_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "delete_report") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Points
# =============================================================================


@router.get("/v1/points/{user_id}/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> BalanceResponse:
    """Current points balance."""
    ensure_self_or_admin(actor, user_id)
    ledger = PointsLedger(db)
    try:
        balance = await ledger.get_balance(user_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "get_balance") from exc
    return BalanceResponse(user_id=user_id, balance=balance)


@router.get("/v1/points/{user_id}/transactions", response_model=TransactionListResponse)
async def get_transactions(
    user_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    transaction_type: TransactionType | None = Query(None, alias="type"),
    source: PointsSource | None = Query(None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> TransactionListResponse:
    """Transaction history, newest first."""
    ensure_self_or_admin(actor, user_id)
    ledger = PointsLedger(db)
    history = await ledger.get_history(user_id, page, limit, transaction_type, source)
    return TransactionListResponse(
        transactions=[transaction_to_item(t) for t in history.transactions],
        total=history.total,
        page=history.page,
        limit=history.limit,
        pages=history.pages,
    )


# =============================================================================
# Products
# =============================================================================


@router.get("/v1/products", response_model=list[ProductResponse])
async def list_products(
    category: str | None = Query(None),
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_read_db),
) -> list[ProductResponse]:
    """Browse the catalog."""
    catalog = ProductCatalog(db)
    products = await catalog.list_products(active_only=active_only, category=category)
    return [product_to_response(product) for product in products]


@router.get("/v1/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    db: AsyncSession = Depends(get_read_db),
) -> ProductResponse:
    """Get one product with its availability."""
    catalog = ProductCatalog(db)
    try:
        product = await catalog.get_product(product_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "get_product") from exc
    return product_to_response(product)


# =============================================================================
# Redemptions
# =============================================================================


@router.post(
    "/v1/redemptions",
    response_model=RedeemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def redeem_product(
    request: CreateRedemptionRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_write_db),
    notifier: Notifier = Depends(get_notifier),
) -> RedeemResponse:
    """
    Redeem a product for points.

    Creates the redemption, deducts the points and reduces stock atomically.
    """
    workflow = RedemptionWorkflow(db, notifier=notifier)
    try:
        result = await workflow.redeem(actor.user_id, request.product_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "redeem_product") from exc

    return RedeemResponse(
        redemption=redemption_to_response(result.redemption),
        points_deducted=result.points_deducted,
        remaining_balance=result.remaining_balance,
    )


@router.get("/v1/redemptions", response_model=list[RedemptionResponse])
async def list_my_redemptions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    redemption_status: RedemptionStatus | None = Query(None, alias="status"),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> list[RedemptionResponse]:
    """List the caller's redemptions, newest first."""
    workflow = RedemptionWorkflow(db)
    items = await workflow.list_for_user(actor.user_id, page, limit, redemption_status)
    return [redemption_to_response(item) for item in items]


@router.get("/v1/redemptions/{redemption_id}", response_model=RedemptionResponse)
async def get_redemption(
    redemption_id: UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_read_db),
) -> RedemptionResponse:
    """Get one of the caller's redemptions."""
    workflow = RedemptionWorkflow(db)
    try:
        redemption = await workflow.get(redemption_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "get_redemption") from exc

    ensure_self_or_admin(actor, redemption.user_id)
    return redemption_to_response(redemption)


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))

        return HealthResponse(
            status="healthy",
            database="connected",
            timestamp=datetime.now(UTC).isoformat(),
        )

    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
