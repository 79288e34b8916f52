"""
Tests for admin bootstrap seeding.
"""

from unittest.mock import AsyncMock

from conftest import create_user, queue_results

from civic_rewards.db.models import User
from civic_rewards.db.seed import seed_admin
from civic_rewards.models.api import UserRole


class TestSeedAdmin:
    """Tests for seed_admin."""

    async def test_no_email_skips(self, db_session: AsyncMock):
        assert await seed_admin(db_session, "", "Administrator") is None
        db_session.execute.assert_not_awaited()

    async def test_creates_admin(self, db_session: AsyncMock):
        queue_results(db_session, None)

        user = await seed_admin(db_session, "  Admin@City.gov ", "Administrator")

        assert isinstance(user, User)
        assert user.email == "admin@city.gov"
        assert user.role == UserRole.ADMIN.value
        assert user.points == 0
        db_session.add.assert_called_once_with(user)
        db_session.commit.assert_awaited_once()

    async def test_promotes_existing_citizen(self, db_session: AsyncMock):
        citizen = create_user(points=320)
        queue_results(db_session, citizen)

        user = await seed_admin(db_session, citizen.email, "Administrator")

        assert user is citizen
        assert citizen.role == UserRole.ADMIN.value
        assert citizen.points == 320
        db_session.add.assert_not_called()
        db_session.commit.assert_awaited_once()

    async def test_existing_admin_untouched(self, db_session: AsyncMock):
        admin = create_user(role=UserRole.ADMIN.value)
        queue_results(db_session, admin)

        assert await seed_admin(db_session, admin.email, "Administrator") is admin
        db_session.commit.assert_not_awaited()
