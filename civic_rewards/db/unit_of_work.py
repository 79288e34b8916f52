"""
Unit of Work - Commit or roll back a multi-entity operation as one step.

The caller hands over a coroutine function that performs every write through
the given session without committing. It either commits as a whole or is
rolled back as a whole. Serialization failures, deadlocks and lock timeouts
are retried with jittered backoff, re-running the whole function.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from civic_rewards.config import settings
from civic_rewards.exceptions import ConflictError, DatabaseError, DataIntegrityError
from civic_rewards.observability.metrics import metrics

logger = get_logger(__name__)
_tenacity_logger = logging.getLogger(f"{__name__}.retry")

T = TypeVar("T")

# serialization_failure, deadlock_detected, lock_not_available
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def is_retryable_conflict(exc: DBAPIError) -> bool:
    """Whether the database rejected the transaction because of contention."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in RETRYABLE_SQLSTATES


async def _run_once(
    session: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
    resource: str,
) -> T:
    try:
        result = await work(session)
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise DataIntegrityError(str(exc.orig)) from exc
    except DBAPIError as exc:
        await session.rollback()
        if is_retryable_conflict(exc):
            metrics.record_conflict(resource)
            logger.warning("unit_of_work_conflict", resource=resource, error=str(exc.orig))
            raise ConflictError(resource) from exc
        raise DatabaseError(str(exc.orig)) from exc
    except BaseException:
        await session.rollback()
        raise
    return result


async def run_in_transaction(
    session: AsyncSession,
    work: Callable[[AsyncSession], Awaitable[T]],
    *,
    resource: str,
    attempts: int | None = None,
) -> T:
    """
    Run `work` inside one transaction and commit it.

    Business errors raised by `work` roll everything back and propagate
    unchanged. Contention is retried up to `attempts` times (defaults to
    `settings.conflict_retry_attempts`) before ConflictError is surfaced.

    Usage:
        async def _redeem(session: AsyncSession) -> RedemptionResult:
            ...
        result = await run_in_transaction(session, _redeem, resource="product:123")
    """
    if attempts is None:
        attempts = settings.conflict_retry_attempts
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_random_exponential(
            multiplier=0.05, max=settings.conflict_retry_max_wait_seconds
        ),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=before_sleep_log(_tenacity_logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            result = await _run_once(session, work, resource)
    return result
