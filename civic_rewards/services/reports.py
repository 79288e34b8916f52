"""
Report State Machine - Report status, urgency and status history.

This service is the only writer of report status, urgency and history.
Every write locks the report row first; when points are involved the user
row is locked after it (report, then user).

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import Report, ReportStatusEntry, utc_now
from civic_rewards.db.unit_of_work import run_in_transaction
from civic_rewards.exceptions import (
    AuthorizationError,
    InvalidStateError,
    ResourceNotFoundError,
)
from civic_rewards.models.api import (
    PointsSource,
    ReportCategory,
    ReportStatus,
    TransactionType,
    Urgency,
)
from civic_rewards.models.domain import (
    AIAnalysis,
    EarnIntent,
    LedgerEntry,
    Location,
    ReportData,
    ReportDraft,
    StatusHistoryEntry,
)
from civic_rewards.observability.metrics import metrics
from civic_rewards.services.notifications import LoggingNotifier, Notifier, notify_safely
from civic_rewards.services.points_ledger import PointsLedger
from civic_rewards.services.rewards import resolution_reward, submission_reward
from civic_rewards.services.urgency import should_escalate_urgency

logger = get_logger(__name__)

REPORT_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.PENDING: frozenset(
        {ReportStatus.IN_PROGRESS, ReportStatus.RESOLVED, ReportStatus.REJECTED}
    ),
    ReportStatus.IN_PROGRESS: frozenset({ReportStatus.RESOLVED, ReportStatus.REJECTED}),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.REJECTED: frozenset(),
}

CREATION_NOTE = "Report created"


def can_transition_report(current: ReportStatus, target: ReportStatus) -> bool:
    """Whether `target` is a legal next status from `current`."""
    return target in REPORT_TRANSITIONS[current]


class EnrichmentScheduler(Protocol):
    """Starts background AI enrichment for a freshly committed report."""

    def schedule(self, report: ReportData) -> None: ...


class ReportStateMachine:
    """
    Report lifecycle with one-time rewards.

    - create: pending report plus submission reward, one commit
    - transition_status: legal moves only, resolution reward at most once
    - set_urgency: admin override, may lower urgency
    - apply_ai_analysis: escalation-only merge against the locked row
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier: Notifier | None = None,
        enrichment: EnrichmentScheduler | None = None,
    ) -> None:
        """Initialize with database session and optional collaborators."""
        self.session = session
        self.ledger = PointsLedger(session)
        self.notifier = notifier or LoggingNotifier()
        self.enrichment = enrichment

    async def create(self, draft: ReportDraft, reporter_id: UUID) -> ReportData:
        """
        Create a pending report and award the submission reward.

        Raises:
            ResourceNotFoundError: Reporter doesn't exist
        """
        reward = submission_reward()

        async def _create(session: AsyncSession) -> ReportData:
            reporter = await self.ledger.lock_user(reporter_id)
            if reporter is None:
                raise ResourceNotFoundError("User", reporter_id)

            now = utc_now()
            report = Report(
                id=uuid4(),
                title=draft.title,
                description=draft.description,
                category=draft.category.value,
                address=draft.location.address,
                city=draft.location.city,
                governorate=draft.location.governorate,
                latitude=draft.location.latitude,
                longitude=draft.location.longitude,
                image_urls=list(draft.image_urls),
                status=ReportStatus.PENDING.value,
                urgency=draft.urgency.value,
                reporter_id=reporter_id,
                created_at=now,
                updated_at=now,
            )
            report.status_history.append(
                ReportStatusEntry(
                    position=0,
                    status=ReportStatus.PENDING.value,
                    actor_id=reporter_id,
                    note=CREATION_NOTE,
                    created_at=now,
                )
            )
            session.add(report)
            await session.flush()

            await self.ledger.apply_earn(
                EarnIntent(
                    user_id=reporter_id,
                    amount=reward,
                    source=PointsSource.REPORT_SUBMISSION,
                    description=f"Points awarded for submitting report: {draft.title}",
                    reference_id=report.id,
                )
            )
            return self.to_domain(report)

        data = await run_in_transaction(self.session, _create, resource=f"user:{reporter_id}")

        metrics.record_report_created(draft.category.value)
        metrics.record_ledger_operation(
            TransactionType.EARN.value, PointsSource.REPORT_SUBMISSION.value, True, reward
        )
        logger.info(
            "report_created",
            report_id=str(data.report_id),
            reporter_id=str(reporter_id),
            category=draft.category.value,
            image_count=len(data.image_urls),
            reward=reward,
        )

        if data.image_urls and self.enrichment is not None:
            self.enrichment.schedule(data)

        return data

    async def transition_status(
        self,
        report_id: UUID,
        new_status: str,
        actor_id: UUID,
        note: str | None = None,
    ) -> ReportData:
        """
        Move a report to a new status.

        Entering resolved awards the urgency-scaled reward unless the report
        was already rewarded. Re-submitting the current status changes nothing.

        Raises:
            InvalidStateError: Unknown status or illegal transition
            ResourceNotFoundError: Report doesn't exist
        """
        try:
            target = ReportStatus(new_status)
        except ValueError as exc:
            raise InvalidStateError(f"Invalid report status: {new_status}") from exc

        history_note = note or ""
        previous: ReportStatus | None = None
        reward_amount = 0

        async def _transition(session: AsyncSession) -> ReportData:
            nonlocal previous, reward_amount
            previous = None
            reward_amount = 0

            report = await self._lock_report(report_id)
            if report is None:
                raise ResourceNotFoundError("Report", report_id)

            current = ReportStatus(report.status)
            if target == current:
                return self.to_domain(report)

            if not can_transition_report(current, target):
                raise InvalidStateError(
                    f"Cannot transition report from {current.value} to {target.value}"
                )

            self._append_history(report, target, actor_id, history_note)
            report.status = target.value
            report.admin_id = actor_id
            report.updated_at = utc_now()
            previous = current

            if target == ReportStatus.RESOLVED and not await self.ledger.has_reward(
                PointsSource.REPORT_RESOLVED, report.id
            ):
                reward_amount = resolution_reward(report.urgency)
                await self.ledger.apply_earn(
                    EarnIntent(
                        user_id=report.reporter_id,
                        amount=reward_amount,
                        source=PointsSource.REPORT_RESOLVED,
                        description=f"Points awarded for resolved report: {report.title}",
                        reference_id=report.id,
                    )
                )

            await session.flush()
            return self.to_domain(report)

        data = await run_in_transaction(self.session, _transition, resource=f"report:{report_id}")

        if previous is None:
            logger.info("report_transition_noop", report_id=str(report_id), status=target.value)
            return data

        metrics.record_report_transition(previous.value, target.value)
        if reward_amount:
            metrics.record_ledger_operation(
                TransactionType.EARN.value,
                PointsSource.REPORT_RESOLVED.value,
                True,
                reward_amount,
            )
        logger.info(
            "report_status_changed",
            report_id=str(report_id),
            from_status=previous.value,
            to_status=target.value,
            actor_id=str(actor_id),
            reward=reward_amount,
        )

        await notify_safely(
            self.notifier.notify_status_changed(data, target, history_note), "status_changed"
        )
        return data

    async def set_urgency(self, report_id: UUID, urgency: str, actor_id: UUID) -> ReportData:
        """
        Admin urgency override. May lower urgency.

        Raises:
            InvalidStateError: Unknown urgency or terminal report
            ResourceNotFoundError: Report doesn't exist
        """
        try:
            target = Urgency(urgency)
        except ValueError as exc:
            raise InvalidStateError(f"Invalid urgency: {urgency}") from exc

        async def _set_urgency(session: AsyncSession) -> ReportData:
            report = await self._lock_report(report_id)
            if report is None:
                raise ResourceNotFoundError("Report", report_id)

            current = ReportStatus(report.status)
            if current.is_terminal:
                raise InvalidStateError(
                    f"Report {report_id} is {current.value}; urgency can no longer change"
                )

            report.urgency = target.value
            report.updated_at = utc_now()
            self._append_history(report, current, actor_id, f"Urgency updated to {target.value}")

            await session.flush()
            return self.to_domain(report)

        data = await run_in_transaction(self.session, _set_urgency, resource=f"report:{report_id}")

        logger.info(
            "report_urgency_overridden",
            report_id=str(report_id),
            urgency=target.value,
            actor_id=str(actor_id),
        )
        return data

    async def apply_ai_analysis(self, report_id: UUID, analysis: AIAnalysis) -> ReportData:
        """
        Store an AI snapshot and escalate urgency when the merge rule allows.

        The comparison uses the urgency read under the row lock, so an admin
        change made while the AI call was in flight is never regressed.

        Raises:
            ResourceNotFoundError: Report doesn't exist (e.g. deleted meanwhile)
        """
        escalated_from: str | None = None

        async def _apply(session: AsyncSession) -> ReportData:
            nonlocal escalated_from
            escalated_from = None

            report = await self._lock_report(report_id)
            if report is None:
                raise ResourceNotFoundError("Report", report_id)

            report.ai_classification = analysis.classification
            report.ai_urgency = analysis.urgency
            report.ai_confidence = analysis.confidence
            report.ai_analyzed_at = analysis.analyzed_at

            status = ReportStatus(report.status)
            if not status.is_terminal and should_escalate_urgency(
                analysis.urgency, report.urgency, analysis.merge_confidence
            ):
                escalated_from = report.urgency
                report.urgency = analysis.urgency
                self._append_history(
                    report, status, None, f"Urgency escalated to {analysis.urgency} by AI analysis"
                )

            report.updated_at = utc_now()
            await session.flush()
            return self.to_domain(report)

        data = await run_in_transaction(self.session, _apply, resource=f"report:{report_id}")

        logger.info(
            "report_ai_analysis_applied",
            report_id=str(report_id),
            classification=analysis.classification,
            ai_urgency=analysis.urgency,
            confidence=analysis.confidence,
            escalated_from=escalated_from,
            urgency=data.urgency.value,
        )
        return data

    async def award_submission_reward(self, report_id: UUID) -> LedgerEntry | None:
        """
        Award the submission reward if it was never recorded.

        Returns None when the report was already rewarded.

        Raises:
            ResourceNotFoundError: Report doesn't exist
        """
        reward = submission_reward()

        async def _award(session: AsyncSession) -> LedgerEntry | None:
            report = await self._lock_report(report_id)
            if report is None:
                raise ResourceNotFoundError("Report", report_id)

            if await self.ledger.has_reward(PointsSource.REPORT_SUBMISSION, report.id):
                return None

            return await self.ledger.apply_earn(
                EarnIntent(
                    user_id=report.reporter_id,
                    amount=reward,
                    source=PointsSource.REPORT_SUBMISSION,
                    description=f"Points awarded for submitting report: {report.title}",
                    reference_id=report.id,
                )
            )

        entry = await run_in_transaction(self.session, _award, resource=f"report:{report_id}")
        logger.info(
            "submission_reward_checked",
            report_id=str(report_id),
            awarded=entry is not None,
        )
        return entry

    async def get(self, report_id: UUID) -> ReportData:
        """
        Get a report with its full history.

        Raises:
            ResourceNotFoundError: Report doesn't exist
        """
        report = await self.session.get(Report, report_id)
        if report is None:
            raise ResourceNotFoundError("Report", report_id)
        return self.to_domain(report)

    async def list_for_reporter(
        self,
        reporter_id: UUID,
        page: int = 1,
        limit: int = 10,
        status: ReportStatus | None = None,
    ) -> list[ReportData]:
        """List a reporter's reports, newest first."""
        page = max(page, 1)
        limit = max(min(limit, 100), 1)

        stmt = select(Report).where(Report.reporter_id == reporter_id)
        if status is not None:
            stmt = stmt.where(Report.status == status.value)
        stmt = stmt.order_by(Report.created_at.desc()).offset((page - 1) * limit).limit(limit)

        result = await self.session.execute(stmt)
        return [self.to_domain(report) for report in result.scalars().all()]

    async def delete(self, report_id: UUID, user_id: UUID) -> None:
        """
        Delete a report. Only its reporter may, and only while it is pending.

        Raises:
            ResourceNotFoundError: Report doesn't exist
            AuthorizationError: Caller is not the reporter
            InvalidStateError: Report already left pending
        """

        async def _delete(session: AsyncSession) -> None:
            report = await self._lock_report(report_id)
            if report is None:
                raise ResourceNotFoundError("Report", report_id)
            if report.reporter_id != user_id:
                raise AuthorizationError("Only the reporter can delete a report")
            if report.status != ReportStatus.PENDING.value:
                raise InvalidStateError(f"Report {report_id} is {report.status} and cannot be deleted")
            await session.delete(report)

        await run_in_transaction(self.session, _delete, resource=f"report:{report_id}")
        logger.info("report_deleted", report_id=str(report_id), user_id=str(user_id))

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _lock_report(self, report_id: UUID) -> Report | None:
        """Lock report row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Report)
            .where(Report.id == report_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _append_history(
        self,
        report: Report,
        status: ReportStatus,
        actor_id: UUID | None,
        note: str,
    ) -> None:
        report.status_history.append(
            ReportStatusEntry(
                position=len(report.status_history),
                status=status.value,
                actor_id=actor_id,
                note=note,
                created_at=utc_now(),
            )
        )

    @staticmethod
    def to_domain(report: Report) -> ReportData:
        """Convert ORM report (with loaded history) to domain model."""
        ai_analysis = None
        if report.ai_analyzed_at is not None:
            ai_analysis = AIAnalysis(
                classification=report.ai_classification or ReportCategory.OTHER.value,
                urgency=report.ai_urgency or Urgency.MEDIUM.value,
                confidence=report.ai_confidence if report.ai_confidence is not None else 0.0,
                analyzed_at=report.ai_analyzed_at,
            )

        return ReportData(
            report_id=report.id,
            title=report.title,
            description=report.description,
            category=ReportCategory(report.category),
            location=Location(
                address=report.address,
                city=report.city,
                governorate=report.governorate,
                latitude=report.latitude,
                longitude=report.longitude,
            ),
            image_urls=tuple(report.image_urls or ()),
            status=ReportStatus(report.status),
            urgency=Urgency(report.urgency),
            reporter_id=report.reporter_id,
            admin_id=report.admin_id,
            ai_analysis=ai_analysis,
            status_history=tuple(
                StatusHistoryEntry(
                    status=ReportStatus(entry.status),
                    actor_id=entry.actor_id,
                    note=entry.note,
                    created_at=entry.created_at,
                )
                for entry in report.status_history
            ),
            created_at=report.created_at,
            updated_at=report.updated_at,
        )
