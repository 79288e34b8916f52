"""
FastAPI Dependencies - Acting user and shared collaborators.

Authentication happens upstream (gateway); the verified user id arrives as
the X-User-ID header, with optional X-User-Email / X-User-Name used only when
the user is provisioned. Roles are read from the users table, never from the
request.

NO DICTIONARIES - All dependencies return typed objects.
"""

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from civic_rewards.db.session import get_write_db
from civic_rewards.exceptions import InvalidStateError
from civic_rewards.models.api import UserRole
from civic_rewards.services.ai_enrichment import AIEnrichmentService
from civic_rewards.services.notifications import LoggingNotifier, Notifier
from civic_rewards.services.users import UserDirectory

logger = get_logger(__name__)


@dataclass(frozen=True)
class Actor:
    """User performing the request."""

    user_id: UUID
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


async def get_actor(
    x_user_id: str = Header(..., description="Authenticated user id"),
    x_user_email: str | None = Header(None, description="Email, stored on first sight"),
    x_user_name: str | None = Header(None, description="Display name, stored on first sight"),
    db: AsyncSession = Depends(get_write_db),
) -> Actor:
    """
    FastAPI dependency resolving the acting user.

    First sight of an id provisions a citizen with a zero balance; the role
    always comes from the stored row.

    Raises:
        HTTPException 401 if the user id header is malformed
        HTTPException 409 if the email belongs to another user
    """
    try:
        user_id = UUID(x_user_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid X-User-ID header",
        ) from exc

    try:
        user = await UserDirectory(db).ensure_user(user_id, x_user_email, x_user_name)
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    return Actor(user_id=user.user_id, role=user.role)


async def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """
    FastAPI dependency that only admits admins.

    Raises:
        HTTPException 403 if the actor is not an admin
    """
    if not actor.is_admin:
        logger.warning("admin_access_denied", user_id=str(actor.user_id))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin role required",
        )
    return actor


def ensure_self_or_admin(actor: Actor, user_id: UUID) -> None:
    """Citizens may only read their own points and redemptions."""
    if actor.user_id != user_id and not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot access another user's data",
        )


def get_notifier(request: Request) -> Notifier:
    """Notifier configured at startup."""
    notifier: Notifier | None = getattr(request.app.state, "notifier", None)
    return notifier or LoggingNotifier()


def get_enrichment(request: Request) -> AIEnrichmentService | None:
    """Background AI enrichment service configured at startup (None when disabled)."""
    return getattr(request.app.state, "enrichment", None)
