"""Integration test fixtures wiring the API to an in-memory database."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from personal_actions.api.app import create_app
from personal_actions.api.dependencies import (
    Capabilities,
    DbSession,
    get_action_service,
    get_db_session,
)
from personal_actions.services.action_service import ActionService
from tests.conftest import TODAY, SeededCatalog, seed_catalog

ALL_ABSENCE_CAPABILITIES = ",".join(
    f"hr-action-absences:{cap}" for cap in ("view", "create", "edit", "approve", "cancel")
)
ALL_GENERIC_CAPABILITIES = ",".join(
    f"hr_action:{cap}" for cap in ("view", "create", "edit", "approve", "cancel")
)


def headers(user_id: int = 1, *capabilities: str) -> dict[str, str]:
    """Request headers for an actor with the given capability lists."""
    codes = capabilities or (ALL_ABSENCE_CAPABILITIES, ALL_GENERIC_CAPABILITIES, "employee:view-sensitive")
    return {"X-User-ID": str(user_id), "X-Capabilities": ",".join(codes)}


@pytest_asyncio.fixture
async def seeded_catalog(session_factory: async_sessionmaker[AsyncSession]) -> SeededCatalog:
    """Commit the shared catalog so request sessions can see it."""
    async with session_factory() as session:
        catalog = await seed_catalog(session)
        await session.commit()
    return catalog


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    app = create_app()

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def override_action_service(db: DbSession, capabilities: Capabilities) -> ActionService:
        return ActionService(db, capabilities, today=lambda: TODAY)

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_action_service] = override_action_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
