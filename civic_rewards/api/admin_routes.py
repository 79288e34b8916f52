"""
Admin API Routes - Report moderation, points adjustments, catalog and fulfilment.

All endpoints require the admin role.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.api.dependencies import (
    Actor,
    get_enrichment,
    get_notifier,
    require_admin,
)
from civic_rewards.api.routes import (
    ledger_entry_to_response,
    product_to_response,
    redemption_to_response,
    report_to_response,
    to_http_exception,
)
from civic_rewards.db.session import get_read_db, get_write_db
from civic_rewards.exceptions import RewardsError
from civic_rewards.models.api import (
    AdjustPointsRequest,
    CreateProductRequest,
    LedgerAuditResponse,
    LedgerEntryResponse,
    ProductResponse,
    RedemptionResponse,
    ReportResponse,
    UpdateProductRequest,
    UpdateRedemptionStatusRequest,
    UpdateReportStatusRequest,
    UpdateUrgencyRequest,
)
from civic_rewards.models.domain import ProductChanges, ProductDraft
from civic_rewards.services.ai_enrichment import AIEnrichmentService
from civic_rewards.services.notifications import Notifier
from civic_rewards.services.points_ledger import PointsLedger
from civic_rewards.services.products import ProductCatalog
from civic_rewards.services.redemptions import RedemptionWorkflow
from civic_rewards.services.reports import ReportStateMachine

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/admin", tags=["admin"])


# =============================================================================
# Reports
# =============================================================================


@router.patch("/reports/{report_id}/status", response_model=ReportResponse)
async def update_report_status(
    report_id: UUID,
    request: UpdateReportStatusRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
    notifier: Notifier = Depends(get_notifier),
) -> ReportResponse:
    """
    Move a report through its lifecycle.

    Resolving a report awards the urgency-scaled reward exactly once.
    """
    reports = ReportStateMachine(db, notifier=notifier)
    try:
        report = await reports.transition_status(
            report_id, request.status, admin.user_id, request.note
        )
    except RewardsError as exc:
        raise to_http_exception(exc, "update_report_status") from exc
    return report_to_response(report)


@router.patch("/reports/{report_id}/urgency", response_model=ReportResponse)
async def update_report_urgency(
    report_id: UUID,
    request: UpdateUrgencyRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ReportResponse:
    """Override a report's urgency (may lower it)."""
    reports = ReportStateMachine(db)
    try:
        report = await reports.set_urgency(report_id, request.urgency, admin.user_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "update_report_urgency") from exc
    return report_to_response(report)


@router.post("/reports/{report_id}/enrichment", status_code=status.HTTP_202_ACCEPTED)
async def retrigger_enrichment(
    report_id: UUID,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
    enrichment: AIEnrichmentService | None = Depends(get_enrichment),
) -> Response:
    """Run AI enrichment again for a report (e.g. after a lost background task)."""
    if enrichment is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI enrichment is not configured",
        )

    reports = ReportStateMachine(db)
    try:
        report = await reports.get(report_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "retrigger_enrichment") from exc

    enrichment.schedule(report)
    logger.info("ai_enrichment_retriggered", report_id=str(report_id), admin_id=str(admin.user_id))
    return Response(status_code=status.HTTP_202_ACCEPTED)


@router.post(
    "/reports/{report_id}/submission-reward",
    response_model=LedgerEntryResponse | None,
)
async def retry_submission_reward(
    report_id: UUID,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> LedgerEntryResponse | None:
    """Award the submission reward if it was never recorded. Returns null when already awarded."""
    reports = ReportStateMachine(db)
    try:
        entry = await reports.award_submission_reward(report_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "retry_submission_reward") from exc
    return ledger_entry_to_response(entry) if entry is not None else None


# =============================================================================
# Points
# =============================================================================


@router.post(
    "/points/{user_id}/adjustments",
    response_model=LedgerEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def adjust_points(
    user_id: UUID,
    request: AdjustPointsRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> LedgerEntryResponse:
    """Credit (positive delta) or debit (negative delta) a user's points."""
    ledger = PointsLedger(db)
    try:
        entry = await ledger.adjust(user_id, request.delta, admin.user_id, request.description)
    except RewardsError as exc:
        raise to_http_exception(exc, "adjust_points") from exc
    return ledger_entry_to_response(entry)


@router.get("/points/{user_id}/audit", response_model=LedgerAuditResponse)
async def audit_ledger(
    user_id: UUID,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_read_db),
) -> LedgerAuditResponse:
    """Replay a user's transaction chain and compare it to the stored balance."""
    ledger = PointsLedger(db)
    try:
        audit = await ledger.verify_ledger(user_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "audit_ledger") from exc

    return LedgerAuditResponse(
        user_id=audit.user_id,
        stored_balance=audit.stored_balance,
        replayed_balance=audit.replayed_balance,
        transaction_count=audit.transaction_count,
        consistent=audit.consistent,
        first_broken_transaction_id=audit.first_broken_transaction_id,
    )


# =============================================================================
# Products
# =============================================================================


@router.post(
    "/products",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_product(
    request: CreateProductRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ProductResponse:
    """Add a product to the catalog."""
    try:
        draft = ProductDraft(
            name=request.name,
            description=request.description,
            points_cost=request.points_cost,
            category=request.category,
            image_url=request.image_url,
            is_active=request.is_active,
            stock=request.stock,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    catalog = ProductCatalog(db)
    try:
        product = await catalog.create_product(draft)
    except RewardsError as exc:
        raise to_http_exception(exc, "create_product") from exc
    return product_to_response(product)


@router.patch("/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    request: UpdateProductRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> ProductResponse:
    """Edit a product. Stock cannot be edited."""
    try:
        changes = ProductChanges(
            name=request.name,
            description=request.description,
            points_cost=request.points_cost,
            category=request.category,
            image_url=request.image_url,
            is_active=request.is_active,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)
        ) from exc

    catalog = ProductCatalog(db)
    try:
        product = await catalog.update_product(product_id, changes)
    except RewardsError as exc:
        raise to_http_exception(exc, "update_product") from exc
    return product_to_response(product)


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> Response:
    """Delete a product that was never redeemed."""
    catalog = ProductCatalog(db)
    try:
        await catalog.delete_product(product_id)
    except RewardsError as exc:
        raise to_http_exception(exc, "delete_product") from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Redemptions
# =============================================================================


@router.patch("/redemptions/{redemption_id}/status", response_model=RedemptionResponse)
async def update_redemption_status(
    redemption_id: UUID,
    request: UpdateRedemptionStatusRequest,
    admin: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_write_db),
) -> RedemptionResponse:
    """Move a redemption forward (pending, processing, completed) or reject it."""
    workflow = RedemptionWorkflow(db)
    try:
        redemption = await workflow.update_status(
            redemption_id, request.status, admin.user_id, request.notes
        )
    except RewardsError as exc:
        raise to_http_exception(exc, "update_redemption_status") from exc
    return redemption_to_response(redemption)
