"""
Redemption Workflow - Exchange points for a catalog product.

A redemption creates the redemption record, deducts the points and reduces
the product stock in one unit of work. Locks are always taken product first,
then user, so two redemptions can never wait on each other in a cycle.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

import time
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import Redemption
from civic_rewards.db.unit_of_work import run_in_transaction
from civic_rewards.exceptions import (
    ConflictError,
    InsufficientPointsError,
    InvalidStateError,
    OutOfStockError,
    ProductUnavailableError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from civic_rewards.models.api import PointsSource, RedemptionStatus, TransactionType
from civic_rewards.models.domain import DeductIntent, RedemptionData, RedemptionResult
from civic_rewards.observability.metrics import metrics
from civic_rewards.observability.tracing import trace_operation
from civic_rewards.services.notifications import LoggingNotifier, Notifier, notify_safely
from civic_rewards.services.points_ledger import PointsLedger
from civic_rewards.services.products import ProductCatalog, product_is_available

logger = get_logger(__name__)

# Forward order; rejected is reachable from every state
_FORWARD_RANK = {
    RedemptionStatus.PENDING: 0,
    RedemptionStatus.PROCESSING: 1,
    RedemptionStatus.COMPLETED: 2,
}


def can_transition_redemption(current: RedemptionStatus, target: RedemptionStatus) -> bool:
    """Whether an admin may move a redemption from `current` to `target`."""
    if current == target:
        return True
    if target == RedemptionStatus.REJECTED:
        return True
    if current == RedemptionStatus.REJECTED:
        return False
    return _FORWARD_RANK[target] > _FORWARD_RANK[current]


def _redemption_outcome(exc: Exception) -> str:
    if isinstance(exc, ResourceNotFoundError):
        return "not_found"
    if isinstance(exc, (ProductUnavailableError, OutOfStockError)):
        return "unavailable"
    if isinstance(exc, InsufficientPointsError):
        return "insufficient_points"
    if isinstance(exc, ConflictError):
        return "conflict"
    return "error"


class RedemptionWorkflow:
    """Atomic redemption and admin fulfilment tracking."""

    def __init__(self, session: AsyncSession, notifier: Notifier | None = None) -> None:
        """Initialize with database session."""
        self.session = session
        self.ledger = PointsLedger(session)
        self.catalog = ProductCatalog(session)
        self.notifier = notifier or LoggingNotifier()

    async def redeem(self, user_id: UUID, product_id: UUID) -> RedemptionResult:
        """
        Redeem one unit of a product for its points cost.

        Raises:
            ResourceNotFoundError: User or product doesn't exist
            ProductUnavailableError: Product inactive or depleted
            InsufficientPointsError: Balance lower than the points cost
            ConflictError: Contention outlasted the retry budget
        """
        start = time.perf_counter()
        product_name = ""

        async def _redeem(session: AsyncSession) -> RedemptionResult:
            nonlocal product_name

            product = await self.catalog.lock_product(product_id)
            user = await self.ledger.lock_user(user_id)

            if product is None:
                raise ResourceNotFoundError("Product", product_id)
            if user is None:
                raise ResourceNotFoundError("User", user_id)

            if not product_is_available(product.is_active, product.stock):
                raise ProductUnavailableError(product_id)

            if user.points < product.points_cost:
                raise InsufficientPointsError(required=product.points_cost, available=user.points)

            product_name = product.name
            now = datetime.now(UTC)
            redemption = Redemption(
                id=uuid4(),
                user_id=user_id,
                product_id=product_id,
                points_cost=product.points_cost,
                status=RedemptionStatus.PENDING.value,
                notes="",
                created_at=now,
                updated_at=now,
            )
            session.add(redemption)
            await session.flush()

            verified = await session.get(Redemption, redemption.id)
            if verified is None:
                raise WriteVerificationError(f"Redemption {redemption.id} not found after insert")

            entry = await self.ledger.apply_deduct(
                DeductIntent(
                    user_id=user_id,
                    amount=product.points_cost,
                    description=f"Points redeemed for product: {product.name}",
                    reference_id=product_id,
                )
            )
            await self.catalog.reduce_stock(product_id)

            return RedemptionResult(
                redemption=self._to_domain(verified),
                points_deducted=product.points_cost,
                remaining_balance=entry.new_balance,
            )

        with trace_operation(
            "redemption.redeem", user_id=str(user_id), product_id=str(product_id)
        ) as span:
            try:
                result = await run_in_transaction(
                    self.session, _redeem, resource=f"product:{product_id}"
                )
            except Exception as exc:
                metrics.record_redemption(_redemption_outcome(exc), time.perf_counter() - start)
                logger.info(
                    "redemption_rejected",
                    user_id=str(user_id),
                    product_id=str(product_id),
                    reason=type(exc).__name__,
                )
                raise
            span.set_attribute("points_deducted", result.points_deducted)

        metrics.record_redemption("success", time.perf_counter() - start)
        metrics.record_ledger_operation(
            TransactionType.REDEEM.value,
            PointsSource.PRODUCT_REDEMPTION.value,
            True,
            result.points_deducted,
        )
        logger.info(
            "product_redeemed",
            redemption_id=str(result.redemption.redemption_id),
            user_id=str(user_id),
            product_id=str(product_id),
            points_deducted=result.points_deducted,
            remaining_balance=result.remaining_balance,
        )

        await notify_safely(
            self.notifier.notify_redeemed(result.redemption, product_name), "redeemed"
        )
        return result

    async def update_status(
        self,
        redemption_id: UUID,
        new_status: str,
        admin_id: UUID,
        notes: str | None = None,
    ) -> RedemptionData:
        """
        Move a redemption forward (or reject it).

        Entering processing or completed stamps the matching date only the
        first time. Re-submitting the current status is a no-op apart from notes.

        Raises:
            InvalidStateError: Unknown status or backwards transition
            ResourceNotFoundError: Redemption doesn't exist
        """
        try:
            target = RedemptionStatus(new_status)
        except ValueError as exc:
            raise InvalidStateError(f"Invalid redemption status: {new_status}") from exc

        async def _update(session: AsyncSession) -> RedemptionData:
            stmt = select(Redemption).where(Redemption.id == redemption_id).with_for_update()
            redemption = (await session.execute(stmt)).scalar_one_or_none()
            if redemption is None:
                raise ResourceNotFoundError("Redemption", redemption_id)

            current = RedemptionStatus(redemption.status)
            if not can_transition_redemption(current, target):
                raise InvalidStateError(
                    f"Cannot move redemption from {current.value} to {target.value}"
                )

            now = datetime.now(UTC)
            redemption.status = target.value
            redemption.admin_id = admin_id
            if notes is not None:
                redemption.notes = notes
            if target == RedemptionStatus.PROCESSING and redemption.processing_date is None:
                redemption.processing_date = now
            if target == RedemptionStatus.COMPLETED and redemption.completion_date is None:
                redemption.completion_date = now

            await session.flush()
            return self._to_domain(redemption)

        data = await run_in_transaction(
            self.session, _update, resource=f"redemption:{redemption_id}"
        )

        logger.info(
            "redemption_status_updated",
            redemption_id=str(redemption_id),
            status=target.value,
            admin_id=str(admin_id),
        )
        return data

    async def get(self, redemption_id: UUID) -> RedemptionData:
        """
        Get a redemption.

        Raises:
            ResourceNotFoundError: Redemption doesn't exist
        """
        redemption = await self.session.get(Redemption, redemption_id)
        if redemption is None:
            raise ResourceNotFoundError("Redemption", redemption_id)
        return self._to_domain(redemption)

    async def list_for_user(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 10,
        status: RedemptionStatus | None = None,
    ) -> list[RedemptionData]:
        """List a user's redemptions, newest first."""
        page = max(page, 1)
        limit = max(min(limit, 100), 1)

        stmt = select(Redemption).where(Redemption.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Redemption.status == status.value)
        stmt = (
            stmt.order_by(Redemption.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )

        result = await self.session.execute(stmt)
        return [self._to_domain(row) for row in result.scalars().all()]

    @staticmethod
    def _to_domain(redemption: Redemption) -> RedemptionData:
        """Convert ORM redemption to domain model."""
        return RedemptionData(
            redemption_id=redemption.id,
            user_id=redemption.user_id,
            product_id=redemption.product_id,
            points_cost=redemption.points_cost,
            status=RedemptionStatus(redemption.status),
            notes=redemption.notes,
            admin_id=redemption.admin_id,
            processing_date=redemption.processing_date,
            completion_date=redemption.completion_date,
            created_at=redemption.created_at,
            updated_at=redemption.updated_at,
        )
