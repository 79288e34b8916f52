"""
User Directory - Provisioning of gateway-authenticated users.

The gateway owns identity; this service owns the row that carries the
points balance and the role. A user is created the first time their id is
seen and never touched again here (roles change only through admin seeding).

NO DICTIONARIES - All operations use strongly typed domain models.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import User
from civic_rewards.exceptions import InvalidStateError
from civic_rewards.models.api import UserRole
from civic_rewards.models.domain import UserData

logger = get_logger(__name__)


class UserDirectory:
    """Get-or-create access to user rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize with database session."""
        self.session = session

    async def ensure_user(
        self,
        user_id: UUID,
        email: str | None = None,
        display_name: str | None = None,
    ) -> UserData:
        """
        Return the user, creating a citizen with a zero balance if missing.

        Concurrent first requests for the same id race on the insert; the
        loser's INSERT ... ON CONFLICT DO NOTHING is a no-op and both read the
        same row. Commits only on the insert path.

        Raises:
            InvalidStateError: Email already belongs to a different user
        """
        existing = await self._find(user_id)
        if existing is not None:
            return existing

        normalized = email.strip().lower() if email else None
        stmt = (
            pg_insert(User)
            .values(
                id=user_id,
                email=normalized,
                display_name=display_name,
                role=UserRole.CITIZEN.value,
                points=0,
            )
            .on_conflict_do_nothing()
            .returning(User.id)
        )
        inserted = (await self.session.execute(stmt)).scalar_one_or_none()
        await self.session.commit()

        user = await self._find(user_id)
        if user is None:
            raise InvalidStateError(f"Email {normalized} is already registered to another user")

        if inserted is not None:
            logger.info("user_provisioned", user_id=str(user_id), has_email=normalized is not None)
        return user

    async def _find(self, user_id: UUID) -> UserData | None:
        # Columns, not the entity: the row must not sit in the identity map
        # ahead of a later SELECT ... FOR UPDATE in the same session
        stmt = select(
            User.id, User.email, User.display_name, User.role, User.points
        ).where(User.id == user_id)
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return UserData(
            user_id=row.id,
            email=row.email,
            display_name=row.display_name,
            role=UserRole(row.role),
            points=row.points,
        )
