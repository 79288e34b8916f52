"""
Tests for citizen API routes and shared dependencies.

Route handler functions are called directly with mocked services.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest
from conftest import create_product, create_redemption, create_report, create_user
from fastapi import HTTPException

from civic_rewards.api.dependencies import (
    Actor,
    ensure_self_or_admin,
    get_actor,
    get_enrichment,
    get_notifier,
    require_admin,
)
from civic_rewards.api.routes import (
    TRY_AGAIN,
    create_report as create_report_route,
    delete_report,
    get_balance,
    get_redemption,
    get_transactions,
    product_to_response,
    redeem_product,
    to_http_exception,
)
from civic_rewards.exceptions import (
    AuthorizationError,
    ConflictError,
    DataIntegrityError,
    InsufficientPointsError,
    InvalidStateError,
    OutOfStockError,
    ProductUnavailableError,
    ResourceNotFoundError,
    WriteVerificationError,
)
from civic_rewards.models.api import (
    CreateRedemptionRequest,
    CreateReportRequest,
    LocationModel,
    ReportCategory,
    UserRole,
)
from civic_rewards.models.domain import RedemptionResult, TransactionPage, UserData
from civic_rewards.services.notifications import LoggingNotifier
from civic_rewards.services.products import ProductCatalog
from civic_rewards.services.redemptions import RedemptionWorkflow
from civic_rewards.services.reports import ReportStateMachine

# ============================================================================
# Error Mapping
# ============================================================================


class TestToHttpException:
    """Tests for service error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (ResourceNotFoundError("Report", uuid4()), 404),
            (InvalidStateError("Cannot transition report from resolved to pending"), 422),
            (InsufficientPointsError(required=100, available=50), 402),
            (ProductUnavailableError(uuid4()), 409),
            (OutOfStockError(uuid4()), 409),
            (AuthorizationError("Only the reporter can delete a report"), 403),
            (ConflictError("product:1"), 503),
            (WriteVerificationError("lost"), 500),
            (DataIntegrityError("mismatch"), 500),
        ],
    )
    def test_status_codes(self, exc: Exception, status_code: int):
        assert to_http_exception(exc, "test").status_code == status_code

    def test_insufficient_points_detail_has_amounts(self):
        http_exc = to_http_exception(InsufficientPointsError(required=100, available=50), "test")

        assert "required 100" in http_exc.detail
        assert "available 50" in http_exc.detail

    def test_conflict_asks_client_to_retry(self):
        assert to_http_exception(ConflictError("user:1"), "test").detail == TRY_AGAIN


# ============================================================================
# Dependencies
# ============================================================================


class TestDependencies:
    """Tests for acting-user resolution and authorization helpers."""

    def _stored(self, user_id: UUID, role: UserRole) -> UserData:
        return UserData(user_id=user_id, email=None, display_name=None, role=role, points=0)

    async def test_get_actor_provisions_first_seen_user(self, db_session: AsyncMock):
        user_id = uuid4()

        with patch("civic_rewards.api.dependencies.UserDirectory") as MockDirectory:
            MockDirectory.return_value.ensure_user = AsyncMock(
                return_value=self._stored(user_id, UserRole.CITIZEN)
            )

            actor = await get_actor(str(user_id), "new@example.com", "New Citizen", db_session)

        assert actor.user_id == user_id
        assert actor.is_admin is False
        MockDirectory.return_value.ensure_user.assert_awaited_once_with(
            user_id, "new@example.com", "New Citizen"
        )

    async def test_stored_citizen_is_not_admitted_as_admin(self, db_session: AsyncMock):
        """Admin rights come from users.role, whatever else the request says."""
        user_id = uuid4()

        with patch("civic_rewards.api.dependencies.UserDirectory") as MockDirectory:
            MockDirectory.return_value.ensure_user = AsyncMock(
                return_value=self._stored(user_id, UserRole.CITIZEN)
            )
            actor = await get_actor(str(user_id), None, None, db_session)

        with pytest.raises(HTTPException) as exc_info:
            await require_admin(actor)
        assert exc_info.value.status_code == 403

    async def test_stored_admin_is_admitted(self, db_session: AsyncMock):
        user_id = uuid4()

        with patch("civic_rewards.api.dependencies.UserDirectory") as MockDirectory:
            MockDirectory.return_value.ensure_user = AsyncMock(
                return_value=self._stored(user_id, UserRole.ADMIN)
            )
            actor = await get_actor(str(user_id), None, None, db_session)

        assert await require_admin(actor) is actor

    async def test_get_actor_rejects_bad_user_id(self, db_session: AsyncMock):
        with pytest.raises(HTTPException) as exc_info:
            await get_actor("not-a-uuid", None, None, db_session)

        assert exc_info.value.status_code == 401
        db_session.execute.assert_not_awaited()

    async def test_get_actor_email_conflict_is_409(self, db_session: AsyncMock):
        with patch("civic_rewards.api.dependencies.UserDirectory") as MockDirectory:
            MockDirectory.return_value.ensure_user = AsyncMock(
                side_effect=InvalidStateError("Email taken@example.com is already registered")
            )

            with pytest.raises(HTTPException) as exc_info:
                await get_actor(str(uuid4()), "taken@example.com", None, db_session)

        assert exc_info.value.status_code == 409

    async def test_require_admin(self, citizen_actor: Actor, admin_actor: Actor):
        assert await require_admin(admin_actor) is admin_actor

        with pytest.raises(HTTPException) as exc_info:
            await require_admin(citizen_actor)
        assert exc_info.value.status_code == 403

    def test_ensure_self_or_admin(self, citizen_actor: Actor, admin_actor: Actor):
        ensure_self_or_admin(citizen_actor, citizen_actor.user_id)
        ensure_self_or_admin(admin_actor, citizen_actor.user_id)

        with pytest.raises(HTTPException) as exc_info:
            ensure_self_or_admin(citizen_actor, uuid4())
        assert exc_info.value.status_code == 403

    def test_collaborators_default_when_not_configured(self):
        request = MagicMock()
        request.app.state = MagicMock(spec=[])

        assert isinstance(get_notifier(request), LoggingNotifier)
        assert get_enrichment(request) is None


# ============================================================================
# Reports
# ============================================================================


class TestReportRoutes:
    """Tests for report endpoints."""

    def _request(self) -> CreateReportRequest:
        return CreateReportRequest(
            title="Broken streetlight",
            description="The streetlight on the corner has been out for a week",
            category=ReportCategory.STREET_LIGHTING,
            location=LocationModel(
                address="12 Main Street",
                city="Cairo",
                governorate="Cairo",
                latitude=30.04,
                longitude=31.23,
            ),
        )

    async def test_create_report(self, db_session: AsyncMock, citizen_actor: Actor):
        reporter = create_user(user_id=citizen_actor.user_id)
        report = ReportStateMachine.to_domain(create_report(reporter))

        with patch("civic_rewards.api.routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.create = AsyncMock(return_value=report)

            response = await create_report_route(
                self._request(), citizen_actor, db_session, LoggingNotifier(), None
            )

        assert response.report_id == report.report_id
        assert response.status.value == "pending"
        assert len(response.status_history) == 1
        draft, reporter_id = MockMachine.return_value.create.await_args.args
        assert reporter_id == citizen_actor.user_id
        assert draft.location.city == "Cairo"

    async def test_create_report_unknown_user(self, db_session: AsyncMock, citizen_actor: Actor):
        with patch("civic_rewards.api.routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.create = AsyncMock(
                side_effect=ResourceNotFoundError("User", citizen_actor.user_id)
            )

            with pytest.raises(HTTPException) as exc_info:
                await create_report_route(
                    self._request(), citizen_actor, db_session, LoggingNotifier(), None
                )

        assert exc_info.value.status_code == 404

    async def test_delete_someone_elses_report(self, db_session: AsyncMock, citizen_actor: Actor):
        with patch("civic_rewards.api.routes.ReportStateMachine") as MockMachine:
            MockMachine.return_value.delete = AsyncMock(
                side_effect=AuthorizationError("Only the reporter can delete a report")
            )

            with pytest.raises(HTTPException) as exc_info:
                await delete_report(uuid4(), citizen_actor, db_session)

        assert exc_info.value.status_code == 403


# ============================================================================
# Points
# ============================================================================


class TestPointsRoutes:
    """Tests for balance and history endpoints."""

    async def test_get_own_balance(self, db_session: AsyncMock, citizen_actor: Actor):
        with patch("civic_rewards.api.routes.PointsLedger") as MockLedger:
            MockLedger.return_value.get_balance = AsyncMock(return_value=150)

            response = await get_balance(citizen_actor.user_id, citizen_actor, db_session)

        assert response.balance == 150
        assert response.user_id == citizen_actor.user_id

    async def test_cannot_read_other_users_balance(
        self, db_session: AsyncMock, citizen_actor: Actor
    ):
        with pytest.raises(HTTPException) as exc_info:
            await get_balance(uuid4(), citizen_actor, db_session)

        assert exc_info.value.status_code == 403

    async def test_get_transactions_paged(self, db_session: AsyncMock, citizen_actor: Actor):
        page = TransactionPage(transactions=(), total=23, page=2, limit=10)

        with patch("civic_rewards.api.routes.PointsLedger") as MockLedger:
            MockLedger.return_value.get_history = AsyncMock(return_value=page)

            response = await get_transactions(
                citizen_actor.user_id, 2, 10, None, None, citizen_actor, db_session
            )

        assert response.total == 23
        assert response.pages == 3
        assert response.page == 2


# ============================================================================
# Redemptions
# ============================================================================


class TestRedemptionRoutes:
    """Tests for redemption endpoints."""

    async def test_redeem(self, db_session: AsyncMock, citizen_actor: Actor):
        user = create_user(points=50, user_id=citizen_actor.user_id)
        product = create_product(points_cost=100)
        redemption = RedemptionWorkflow._to_domain(create_redemption(user, product))
        result = RedemptionResult(
            redemption=redemption, points_deducted=100, remaining_balance=50
        )

        with patch("civic_rewards.api.routes.RedemptionWorkflow") as MockWorkflow:
            MockWorkflow.return_value.redeem = AsyncMock(return_value=result)

            response = await redeem_product(
                CreateRedemptionRequest(product_id=product.id),
                citizen_actor,
                db_session,
                LoggingNotifier(),
            )

        assert response.points_deducted == 100
        assert response.remaining_balance == 50
        assert response.redemption.status.value == "pending"
        MockWorkflow.return_value.redeem.assert_awaited_once_with(
            citizen_actor.user_id, product.id
        )

    @pytest.mark.parametrize(
        "exc,status_code",
        [
            (InsufficientPointsError(required=100, available=50), 402),
            (ProductUnavailableError(uuid4()), 409),
            (ConflictError("product:1"), 503),
        ],
    )
    async def test_redeem_failures(
        self, db_session: AsyncMock, citizen_actor: Actor, exc: Exception, status_code: int
    ):
        with patch("civic_rewards.api.routes.RedemptionWorkflow") as MockWorkflow:
            MockWorkflow.return_value.redeem = AsyncMock(side_effect=exc)

            with pytest.raises(HTTPException) as exc_info:
                await redeem_product(
                    CreateRedemptionRequest(product_id=uuid4()),
                    citizen_actor,
                    db_session,
                    LoggingNotifier(),
                )

        assert exc_info.value.status_code == status_code

    async def test_cannot_read_other_users_redemption(
        self, db_session: AsyncMock, citizen_actor: Actor
    ):
        redemption = RedemptionWorkflow._to_domain(
            create_redemption(create_user(), create_product())
        )

        with patch("civic_rewards.api.routes.RedemptionWorkflow") as MockWorkflow:
            MockWorkflow.return_value.get = AsyncMock(return_value=redemption)

            with pytest.raises(HTTPException) as exc_info:
                await get_redemption(redemption.redemption_id, citizen_actor, db_session)

        assert exc_info.value.status_code == 403


class TestConverters:
    """Tests for domain to response conversion."""

    def test_product_response_reports_availability(self):
        depleted = ProductCatalog.to_domain(create_product(stock=0, is_active=False))

        assert product_to_response(depleted).is_available is False

