"""
Tests for admin API routes.

Route handler functions are called directly with mocked services.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from conftest import create_product, create_redemption, create_report, create_user
from fastapi import HTTPException

from civic_rewards.api.admin_routes import (
    adjust_points,
    audit_ledger,
    create_product as create_product_route,
    delete_product,
    retrigger_enrichment,
    retry_submission_reward,
    update_product,
    update_redemption_status,
    update_report_status,
    update_report_urgency,
)
from civic_rewards.api.dependencies import Actor
from civic_rewards.exceptions import InvalidStateError, ResourceNotFoundError
from civic_rewards.models.api import (
    AdjustPointsRequest,
    CreateProductRequest,
    RedemptionStatus,
    ReportStatus,
    UpdateProductRequest,
    UpdateRedemptionStatusRequest,
    UpdateReportStatusRequest,
    UpdateUrgencyRequest,
    Urgency,
)
from civic_rewards.models.domain import LedgerAudit
from civic_rewards.services.notifications import LoggingNotifier
from civic_rewards.services.products import ProductCatalog
from civic_rewards.services.redemptions import RedemptionWorkflow
from civic_rewards.services.reports import ReportStateMachine


class TestReportAdminRoutes:
    """Tests for report moderation endpoints."""

    async def test_update_status(self, db_session: AsyncMock, admin_actor: Actor):
        report = ReportStateMachine.to_domain(
            create_report(create_user(), ReportStatus.IN_PROGRESS)
        )

        with patch("civic_rewards.api.admin_routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.transition_status = AsyncMock(return_value=report)

            response = await update_report_status(
                report.report_id,
                UpdateReportStatusRequest(status="in-progress", note="Crew dispatched"),
                admin_actor,
                db_session,
                LoggingNotifier(),
            )

        assert response.status == ReportStatus.IN_PROGRESS
        MockMachine.return_value.transition_status.assert_awaited_once_with(
            report.report_id, "in-progress", admin_actor.user_id, "Crew dispatched"
        )

    async def test_illegal_transition_is_422(self, db_session: AsyncMock, admin_actor: Actor):
        with patch("civic_rewards.api.admin_routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.transition_status = AsyncMock(
                side_effect=InvalidStateError("Cannot transition report from resolved to pending")
            )

            with pytest.raises(HTTPException) as exc_info:
                await update_report_status(
                    uuid4(),
                    UpdateReportStatusRequest(status="pending"),
                    admin_actor,
                    db_session,
                    LoggingNotifier(),
                )

        assert exc_info.value.status_code == 422

    async def test_update_urgency(self, db_session: AsyncMock, admin_actor: Actor):
        report = ReportStateMachine.to_domain(create_report(create_user(), urgency=Urgency.LOW))

        with patch("civic_rewards.api.admin_routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.set_urgency = AsyncMock(return_value=report)

            response = await update_report_urgency(
                report.report_id, UpdateUrgencyRequest(urgency="low"), admin_actor, db_session
            )

        assert response.urgency == Urgency.LOW

    async def test_retrigger_enrichment_without_service(
        self, db_session: AsyncMock, admin_actor: Actor
    ):
        with pytest.raises(HTTPException) as exc_info:
            await retrigger_enrichment(uuid4(), admin_actor, db_session, None)

        assert exc_info.value.status_code == 503

    async def test_retrigger_enrichment_schedules(self, db_session: AsyncMock, admin_actor: Actor):
        report = ReportStateMachine.to_domain(create_report(create_user()))
        enrichment = MagicMock()

        with patch("civic_rewards.api.admin_routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.get = AsyncMock(return_value=report)

            response = await retrigger_enrichment(
                report.report_id, admin_actor, db_session, enrichment
            )

        assert response.status_code == 202
        enrichment.schedule.assert_called_once_with(report)

    async def test_submission_reward_already_awarded(
        self, db_session: AsyncMock, admin_actor: Actor
    ):
        with patch("civic_rewards.api.admin_routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.award_submission_reward = AsyncMock(return_value=None)

            assert await retry_submission_reward(uuid4(), admin_actor, db_session) is None


class TestPointsAdminRoutes:
    """Tests for adjustments and audits."""

    async def test_zero_adjustment_is_422(self, db_session: AsyncMock, admin_actor: Actor):
        with patch("civic_rewards.api.admin_routes.PointsLedger") as MockLedger:
            MockLedger.return_value.adjust = AsyncMock(
                side_effect=InvalidStateError("Adjustment delta cannot be zero")
            )

            with pytest.raises(HTTPException) as exc_info:
                await adjust_points(
                    uuid4(),
                    AdjustPointsRequest(delta=0, description="noop"),
                    admin_actor,
                    db_session,
                )

        assert exc_info.value.status_code == 422

    async def test_audit(self, db_session: AsyncMock, admin_actor: Actor):
        user_id = uuid4()
        audit = LedgerAudit(
            user_id=user_id,
            stored_balance=70,
            replayed_balance=50,
            transaction_count=2,
            first_broken_transaction_id=None,
        )

        with patch("civic_rewards.api.admin_routes.PointsLedger") as MockLedger:
            MockLedger.return_value.verify_ledger = AsyncMock(return_value=audit)

            response = await audit_ledger(user_id, admin_actor, db_session)

        assert response.consistent is False
        assert response.stored_balance == 70
        assert response.replayed_balance == 50


class TestProductAdminRoutes:
    """Tests for catalog administration."""

    async def test_create_product(self, db_session: AsyncMock, admin_actor: Actor):
        product = ProductCatalog.to_domain(create_product(points_cost=40, stock=None))

        with patch("civic_rewards.api.admin_routes.ProductCatalog") as MockCatalog:
            MockCatalog.return_value.create_product = AsyncMock(return_value=product)

            response = await create_product_route(
                CreateProductRequest(name="Bus pass", points_cost=40, category="transport"),
                admin_actor,
                db_session,
            )

        assert response.points_cost == 40
        assert response.is_available is True
        [draft] = MockCatalog.return_value.create_product.await_args.args
        assert draft.stock is None

    async def test_update_unknown_product(self, db_session: AsyncMock, admin_actor: Actor):
        with patch("civic_rewards.api.admin_routes.ProductCatalog") as MockCatalog:
            MockCatalog.return_value.update_product = AsyncMock(
                side_effect=ResourceNotFoundError("Product", uuid4())
            )

            with pytest.raises(HTTPException) as exc_info:
                await update_product(
                    uuid4(), UpdateProductRequest(points_cost=10), admin_actor, db_session
                )

        assert exc_info.value.status_code == 404

    async def test_delete_redeemed_product_refused(
        self, db_session: AsyncMock, admin_actor: Actor
    ):
        with patch("civic_rewards.api.admin_routes.ProductCatalog") as MockCatalog:
            MockCatalog.return_value.delete_product = AsyncMock(
                side_effect=InvalidStateError("has 3 redemptions; deactivate it instead")
            )

            with pytest.raises(HTTPException) as exc_info:
                await delete_product(uuid4(), admin_actor, db_session)

        assert exc_info.value.status_code == 422


class TestRedemptionAdminRoutes:
    """Tests for fulfilment updates."""

    async def test_update_redemption_status(self, db_session: AsyncMock, admin_actor: Actor):
        redemption = RedemptionWorkflow._to_domain(
            create_redemption(create_user(), create_product(), RedemptionStatus.PROCESSING)
        )

        with patch("civic_rewards.api.admin_routes.RedemptionWorkflow") as MockWorkflow:
            MockWorkflow.return_value.update_status = AsyncMock(return_value=redemption)

            response = await update_redemption_status(
                redemption.redemption_id,
                UpdateRedemptionStatusRequest(status="processing", notes="Packed"),
                admin_actor,
                db_session,
            )

        assert response.status == RedemptionStatus.PROCESSING
        MockWorkflow.return_value.update_status.assert_awaited_once_with(
            redemption.redemption_id, "processing", admin_actor.user_id, "Packed"
        )
