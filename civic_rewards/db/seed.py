"""
Startup Seeding - Bootstrap admin account.

Runs once from the application lifespan, never from a request handler.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.models import User
from civic_rewards.models.api import UserRole

logger = get_logger(__name__)


async def seed_admin(session: AsyncSession, email: str, display_name: str) -> User | None:
    """
    Ensure an admin user exists for `email`.

    An existing citizen with that email is promoted. Returns None when no
    email is configured.
    """
    if not email:
        logger.info("admin_seed_skipped", reason="ADMIN_EMAIL not set")
        return None

    normalized = email.strip().lower()
    stmt = select(User).where(User.email == normalized)
    result = await session.execute(stmt)
    user = result.scalar_one_or_none()

    if user is None:
        user = User(
            email=normalized,
            display_name=display_name,
            role=UserRole.ADMIN.value,
            points=0,
        )
        session.add(user)
        await session.commit()
        logger.info("admin_seeded", email=normalized, user_id=str(user.id))
        return user

    if user.role != UserRole.ADMIN.value:
        user.role = UserRole.ADMIN.value
        await session.commit()
        logger.info("admin_promoted", email=normalized, user_id=str(user.id))
    else:
        logger.info("admin_seed_exists", email=normalized, user_id=str(user.id))

    return user
