"""
Tests for run_in_transaction.

Covers commit/rollback semantics and retry of serialization conflicts.
"""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError

from civic_rewards.db.unit_of_work import is_retryable_conflict, run_in_transaction
from civic_rewards.exceptions import (
    ConflictError,
    DatabaseError,
    DataIntegrityError,
    InsufficientPointsError,
)


class FakeDriverError(Exception):
    """Driver exception carrying a SQLSTATE like asyncpg's."""

    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def db_error(sqlstate: str) -> DBAPIError:
    return DBAPIError("UPDATE users SET points = $1", {}, FakeDriverError(sqlstate))


class TestRunInTransaction:
    """Tests for the unit of work."""

    async def test_commits_and_returns_result(self, db_session: AsyncMock):
        work = AsyncMock(return_value="done")

        assert await run_in_transaction(db_session, work, resource="user:1") == "done"

        work.assert_awaited_once_with(db_session)
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    async def test_business_error_rolls_back_and_propagates(self, db_session: AsyncMock):
        work = AsyncMock(side_effect=InsufficientPointsError(required=10, available=5))

        with pytest.raises(InsufficientPointsError):
            await run_in_transaction(db_session, work, resource="user:1")

        work.assert_awaited_once()
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01", "55P03"])
    async def test_conflict_is_retried(self, db_session: AsyncMock, sqlstate: str):
        work = AsyncMock(side_effect=[db_error(sqlstate), "done"])

        result = await run_in_transaction(db_session, work, resource="product:1", attempts=3)

        assert result == "done"
        assert work.await_count == 2
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    async def test_conflict_outlasting_retries_raises(self, db_session: AsyncMock):
        work = AsyncMock(side_effect=db_error("40001"))

        with pytest.raises(ConflictError) as exc_info:
            await run_in_transaction(db_session, work, resource="product:1", attempts=2)

        assert exc_info.value.resource == "product:1"
        assert work.await_count == 2
        db_session.commit.assert_not_awaited()

    async def test_commit_conflict_is_retried(self, db_session: AsyncMock):
        """Serialization failures surface at commit time too."""
        work = AsyncMock(return_value="done")
        db_session.commit = AsyncMock(side_effect=[db_error("40001"), None])

        assert await run_in_transaction(db_session, work, resource="user:1") == "done"
        assert work.await_count == 2

    async def test_other_database_error_not_retried(self, db_session: AsyncMock):
        work = AsyncMock(side_effect=db_error("08006"))

        with pytest.raises(DatabaseError):
            await run_in_transaction(db_session, work, resource="user:1", attempts=3)

        work.assert_awaited_once()

    async def test_integrity_error_mapped(self, db_session: AsyncMock):
        work = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, FakeDriverError("23505"))
        )

        with pytest.raises(DataIntegrityError):
            await run_in_transaction(db_session, work, resource="report:1", attempts=3)

        work.assert_awaited_once()
        db_session.rollback.assert_awaited_once()

    async def test_single_attempt_is_not_retried(self, db_session: AsyncMock):
        work = AsyncMock(side_effect=[db_error("40001"), "done"])

        with pytest.raises(ConflictError):
            await run_in_transaction(db_session, work, resource="user:1", attempts=1)

        work.assert_awaited_once()

    async def test_zero_attempts_rejected(self, db_session: AsyncMock):
        work = AsyncMock(return_value="done")

        with pytest.raises(ValueError, match="at least 1"):
            await run_in_transaction(db_session, work, resource="user:1", attempts=0)

        work.assert_not_awaited()


class TestIsRetryableConflict:
    """Tests for SQLSTATE classification."""

    def test_pgcode_attribute_supported(self):
        class Psycopg2Style(Exception):
            pgcode = "40P01"

        assert is_retryable_conflict(DBAPIError("SELECT 1", {}, Psycopg2Style())) is True

    def test_unique_violation_not_retryable(self):
        assert is_retryable_conflict(db_error("23505")) is False
