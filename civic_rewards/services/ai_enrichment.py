"""
AI Enrichment - Background classification and urgency merge for reports.

Enrichment runs after the report is committed, on its own session, and never
blocks or fails report creation. The write itself goes through
ReportStateMachine.apply_ai_analysis, which re-reads urgency under the row
lock before applying the escalation-only rule.
"""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.clients.ai_backend import AIBackendClient
from civic_rewards.db.session import get_write_session
from civic_rewards.exceptions import ResourceNotFoundError
from civic_rewards.models.domain import (
    FALLBACK_CLASSIFICATION,
    AIAnalysis,
    ClassificationResult,
    ReportData,
)
from civic_rewards.observability.metrics import metrics
from civic_rewards.observability.tracing import trace_operation
from civic_rewards.services.reports import ReportStateMachine

logger = get_logger(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class AIEnrichmentService:
    """
    Runs AI analysis for reports on background tasks.

    Usage:
        enrichment = AIEnrichmentService(AIBackendClient())
        enrichment.schedule(report)  # returns immediately
    """

    def __init__(
        self,
        client: AIBackendClient,
        session_scope: SessionScope = get_write_session,
    ) -> None:
        self.client = client
        self.session_scope = session_scope
        self._tasks: set[asyncio.Task[ReportData | None]] = set()

    def schedule(self, report: ReportData) -> None:
        """Start enrichment for a committed report without waiting for it."""
        task = asyncio.create_task(
            self.enrich(report.report_id, report.description, report.image_urls),
            name=f"ai-enrichment-{report.report_id}",
        )
        # The event loop holds only weak references to tasks
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("ai_enrichment_scheduled", report_id=str(report.report_id))

    async def enrich(
        self, report_id: UUID, description: str, image_urls: tuple[str, ...]
    ) -> ReportData | None:
        """
        Analyze a report and merge the result. Never raises.

        Returns the updated report, or None when enrichment could not be stored.
        """
        with trace_operation("ai.enrich", report_id=str(report_id)):
            try:
                analysis = await self.analyze(description, image_urls)
                async with self.session_scope() as session:
                    reports = ReportStateMachine(session)
                    updated = await reports.apply_ai_analysis(report_id, analysis)
            except ResourceNotFoundError:
                metrics.record_ai_enrichment("report_missing")
                logger.info("ai_enrichment_report_missing", report_id=str(report_id))
                return None
            except Exception as exc:
                metrics.record_ai_enrichment("error")
                metrics.record_error(type(exc).__name__, "ai_enrichment")
                logger.error(
                    "ai_enrichment_failed",
                    report_id=str(report_id),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None

        metrics.record_ai_enrichment("applied")
        return updated

    async def analyze(self, description: str, image_urls: tuple[str, ...]) -> AIAnalysis:
        """Call the classifier and urgency detector concurrently."""
        first_image = image_urls[0] if image_urls else None

        classification_task = (
            self.client.classify(first_image) if first_image else _no_image_classification()
        )
        classification, urgency = await asyncio.gather(
            classification_task,
            self.client.detect_urgency(description, first_image),
        )

        return AIAnalysis(
            classification=classification.classification,
            urgency=urgency.urgency,
            confidence=classification.confidence,
            analyzed_at=datetime.now(UTC),
            urgency_confidence=urgency.confidence,
        )

    async def drain(self) -> None:
        """Wait for in-flight enrichment tasks (used at shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        """Number of enrichment tasks still running."""
        return len(self._tasks)


async def _no_image_classification() -> ClassificationResult:
    return FALLBACK_CLASSIFICATION
