"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from personal_actions.database import init_db
from personal_actions.services.action_service import ActionService
from personal_actions.services.capabilities import GrantedCapabilities


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_actor_id(
    x_user_id: Annotated[str | None, Header()] = None
) -> int | None:
    """Extract the acting user id from header."""
    if not x_user_id:
        return None
    try:
        return int(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-User-ID format",
        )


ActorId = Annotated[int | None, Depends(get_actor_id)]


async def get_capabilities(
    actor_id: ActorId,
    x_capabilities: Annotated[str | None, Header()] = None,
) -> GrantedCapabilities:
    """Capabilities granted to the actor by the upstream auth layer."""
    return GrantedCapabilities.from_header(actor_id, x_capabilities)


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Capabilities = Annotated[GrantedCapabilities, Depends(get_capabilities)]


async def get_action_service(db: DbSession, capabilities: Capabilities) -> ActionService:
    return ActionService(db, capabilities)


Service = Annotated[ActionService, Depends(get_action_service)]
