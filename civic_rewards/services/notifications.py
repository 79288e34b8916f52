"""
Notifications - Fire-and-forget notifier collaborator.

Delivery (email, push) lives outside this service. A notifier failure is
logged and counted, never propagated into the caller's result.
"""

from collections.abc import Awaitable
from typing import Protocol

from structlog import get_logger

from civic_rewards.models.api import ReportStatus
from civic_rewards.models.domain import RedemptionData, ReportData
from civic_rewards.observability.metrics import metrics

logger = get_logger(__name__)


class Notifier(Protocol):
    """Receives lifecycle events after they are committed."""

    async def notify_status_changed(
        self, report: ReportData, new_status: ReportStatus, note: str
    ) -> None: ...

    async def notify_redeemed(self, redemption: RedemptionData, product_name: str) -> None: ...


class LoggingNotifier:
    """Default notifier: records the event in the structured log."""

    async def notify_status_changed(
        self, report: ReportData, new_status: ReportStatus, note: str
    ) -> None:
        logger.info(
            "notification_status_changed",
            report_id=str(report.report_id),
            reporter_id=str(report.reporter_id),
            status=new_status.value,
            note=note,
        )

    async def notify_redeemed(self, redemption: RedemptionData, product_name: str) -> None:
        logger.info(
            "notification_redeemed",
            redemption_id=str(redemption.redemption_id),
            user_id=str(redemption.user_id),
            product_name=product_name,
            points_cost=redemption.points_cost,
        )


async def notify_safely(notification: Awaitable[None], event: str) -> None:
    """Await a notification, absorbing and logging any failure."""
    try:
        await notification
    except Exception as exc:
        logger.warning("notification_failed", notification_event=event, error=str(exc))
        metrics.record_error(type(exc).__name__, f"notify_{event}")
