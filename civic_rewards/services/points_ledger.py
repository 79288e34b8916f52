"""
Points Ledger - Per-user balances and the append-only transaction log.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import PointsTransaction, User
from civic_rewards.db.unit_of_work import run_in_transaction
from civic_rewards.exceptions import (
    DataIntegrityError,
    InsufficientPointsError,
    InvalidStateError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from civic_rewards.models.api import PointsSource, TransactionType
from civic_rewards.models.domain import (
    DeductIntent,
    EarnIntent,
    LedgerAudit,
    LedgerEntry,
    PointsTransactionData,
    TransactionPage,
)
from civic_rewards.observability.metrics import metrics

logger = get_logger(__name__)


def replay_ledger(transactions: Sequence[PointsTransactionData]) -> tuple[int, UUID | None]:
    """
    Replay a user's transactions oldest first.

    Returns the replayed balance and the id of the first transaction whose
    stored running balance disagrees with the replay (None when intact).
    """
    running = 0
    first_broken: UUID | None = None
    for transaction in transactions:
        running += transaction.signed_amount
        if first_broken is None and (running < 0 or transaction.balance != running):
            first_broken = transaction.transaction_id
    return running, first_broken


class PointsLedger:
    """
    Points ledger with write verification.

    Every balance change follows the pattern:
    1. Lock the user row (SELECT FOR UPDATE)
    2. Check the rule (deductions never go below zero)
    3. Append exactly one transaction row carrying the new running balance
    4. Update the balance, flush, read back and verify

    `apply_*` methods do all of the above without committing so that a
    caller's unit of work can compose them; `earn`/`deduct`/`adjust` commit.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize ledger with database session."""
        self.session = session

    async def earn(self, intent: EarnIntent) -> LedgerEntry:
        """
        Credit points and commit.

        Raises:
            ResourceNotFoundError: User doesn't exist
        """

        async def _work(_: AsyncSession) -> LedgerEntry:
            return await self.apply_earn(intent)

        try:
            entry = await run_in_transaction(
                self.session, _work, resource=f"user:{intent.user_id}"
            )
        except Exception:
            metrics.record_ledger_operation(
                TransactionType.EARN.value, intent.source.value, False, intent.amount
            )
            raise

        metrics.record_ledger_operation(
            TransactionType.EARN.value, intent.source.value, True, intent.amount
        )
        return entry

    async def deduct(self, intent: DeductIntent) -> LedgerEntry:
        """
        Debit points and commit.

        Raises:
            ResourceNotFoundError: User doesn't exist
            InsufficientPointsError: Balance lower than the amount
        """

        async def _work(_: AsyncSession) -> LedgerEntry:
            return await self.apply_deduct(intent)

        try:
            entry = await run_in_transaction(
                self.session, _work, resource=f"user:{intent.user_id}"
            )
        except Exception:
            metrics.record_ledger_operation(
                TransactionType.REDEEM.value, intent.source.value, False, intent.amount
            )
            raise

        metrics.record_ledger_operation(
            TransactionType.REDEEM.value, intent.source.value, True, intent.amount
        )
        return entry

    async def adjust(
        self, user_id: UUID, delta: int, admin_id: UUID, description: str
    ) -> LedgerEntry:
        """
        Admin adjustment: positive delta credits, negative delta debits.

        Raises:
            InvalidStateError: Zero delta
            ResourceNotFoundError: User doesn't exist
            InsufficientPointsError: Debit larger than the balance
        """
        if delta == 0:
            raise InvalidStateError("Adjustment delta cannot be zero")

        note = f"{description} (adjusted by admin {admin_id})"
        logger.info("points_adjustment_requested", user_id=str(user_id), delta=delta)

        if delta > 0:
            return await self.earn(
                EarnIntent(
                    user_id=user_id,
                    amount=delta,
                    source=PointsSource.ADMIN_ADJUSTMENT,
                    description=note,
                )
            )
        return await self.deduct(
            DeductIntent(
                user_id=user_id,
                amount=-delta,
                description=note,
                source=PointsSource.ADMIN_ADJUSTMENT,
            )
        )

    async def apply_earn(self, intent: EarnIntent) -> LedgerEntry:
        """Credit points inside the caller's transaction. Does not commit."""
        user = await self.lock_user(intent.user_id)
        if user is None:
            raise ResourceNotFoundError("User", intent.user_id)

        balance_after = user.points + intent.amount

        entry = await self._append(
            user,
            TransactionType.EARN,
            intent.source,
            intent.amount,
            balance_after,
            intent.reference_id,
            intent.description,
        )
        logger.info(
            "points_earned",
            user_id=str(intent.user_id),
            amount=intent.amount,
            source=intent.source.value,
            reference_id=str(intent.reference_id) if intent.reference_id else None,
            balance=balance_after,
        )
        return entry

    async def apply_deduct(self, intent: DeductIntent) -> LedgerEntry:
        """Debit points inside the caller's transaction. Does not commit."""
        user = await self.lock_user(intent.user_id)
        if user is None:
            raise ResourceNotFoundError("User", intent.user_id)

        # Checked against the locked row: no concurrent deduction can interleave
        if user.points < intent.amount:
            raise InsufficientPointsError(required=intent.amount, available=user.points)

        balance_after = user.points - intent.amount

        entry = await self._append(
            user,
            TransactionType.REDEEM,
            intent.source,
            intent.amount,
            balance_after,
            intent.reference_id,
            intent.description,
        )
        logger.info(
            "points_deducted",
            user_id=str(intent.user_id),
            amount=intent.amount,
            source=intent.source.value,
            reference_id=str(intent.reference_id) if intent.reference_id else None,
            balance=balance_after,
        )
        return entry

    async def get_balance(self, user_id: UUID) -> int:
        """
        Get current points balance.

        Raises:
            ResourceNotFoundError: User doesn't exist
        """
        stmt = select(User.points).where(User.id == user_id)
        result = await self.session.execute(stmt)
        points = result.scalar_one_or_none()
        if points is None:
            raise ResourceNotFoundError("User", user_id)
        return points

    async def get_history(
        self,
        user_id: UUID,
        page: int = 1,
        limit: int = 10,
        transaction_type: TransactionType | None = None,
        source: PointsSource | None = None,
    ) -> TransactionPage:
        """Get a page of the user's transactions, newest first."""
        page = max(page, 1)
        limit = max(min(limit, 100), 1)

        filters = [PointsTransaction.user_id == user_id]
        if transaction_type is not None:
            filters.append(PointsTransaction.type == transaction_type)
        if source is not None:
            filters.append(PointsTransaction.source == source)

        count_stmt = select(func.count()).select_from(PointsTransaction).where(*filters)
        total = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(PointsTransaction)
            .where(*filters)
            .order_by(PointsTransaction.created_at.desc(), PointsTransaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = (await self.session.execute(stmt)).scalars().all()

        return TransactionPage(
            transactions=tuple(self._transaction_to_domain(row) for row in rows),
            total=total,
            page=page,
            limit=limit,
        )

    async def has_reward(self, source: PointsSource, reference_id: UUID) -> bool:
        """Whether a reward of this kind was already recorded for the reference."""
        stmt = select(PointsTransaction.id).where(
            PointsTransaction.source == source,
            PointsTransaction.reference_id == reference_id,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def verify_ledger(self, user_id: UUID) -> LedgerAudit:
        """
        Replay the user's transaction chain against the stored balance.

        Raises:
            ResourceNotFoundError: User doesn't exist
        """
        stored_balance = await self.get_balance(user_id)

        stmt = (
            select(PointsTransaction)
            .where(PointsTransaction.user_id == user_id)
            .order_by(PointsTransaction.created_at.asc(), PointsTransaction.id.asc())
        )
        rows = (await self.session.execute(stmt)).scalars().all()
        transactions = [self._transaction_to_domain(row) for row in rows]

        replayed, first_broken = replay_ledger(transactions)
        audit = LedgerAudit(
            user_id=user_id,
            stored_balance=stored_balance,
            replayed_balance=replayed,
            transaction_count=len(transactions),
            first_broken_transaction_id=first_broken,
        )
        if not audit.consistent:
            logger.error(
                "ledger_inconsistent",
                user_id=str(user_id),
                stored_balance=stored_balance,
                replayed_balance=replayed,
                first_broken_transaction_id=str(first_broken) if first_broken else None,
            )
        return audit

    async def lock_user(self, user_id: UUID) -> User | None:
        """Lock user row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _append(
        self,
        user: User,
        transaction_type: TransactionType,
        source: PointsSource,
        amount: int,
        balance_after: int,
        reference_id: UUID | None,
        description: str,
    ) -> LedgerEntry:
        transaction = PointsTransaction(
            user_id=user.id,
            type=transaction_type,
            source=source,
            amount=amount,
            balance=balance_after,
            reference_id=reference_id,
            description=description,
        )
        self.session.add(transaction)
        await self.session.flush()

        verified_transaction = await self.session.get(PointsTransaction, transaction.id)
        if verified_transaction is None:
            raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

        user.points = balance_after
        await self.session.flush()

        verified_user = await self.session.get(User, user.id)
        if verified_user is None:
            raise WriteVerificationError(f"User {user.id} disappeared after update")

        if verified_user.points != balance_after:
            raise DataIntegrityError(
                f"Points mismatch: expected {balance_after}, got {verified_user.points}"
            )

        return LedgerEntry(
            new_balance=balance_after,
            transaction=self._transaction_to_domain(verified_transaction),
        )

    def _transaction_to_domain(self, row: PointsTransaction) -> PointsTransactionData:
        """Convert ORM transaction to domain model."""
        return PointsTransactionData(
            transaction_id=row.id,
            user_id=row.user_id,
            type=TransactionType(row.type),
            source=PointsSource(row.source),
            amount=row.amount,
            balance=row.balance,
            reference_id=row.reference_id,
            description=row.description,
            created_at=row.created_at,
        )
