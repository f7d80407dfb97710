"""
Pytest configuration and fixtures for the LoCall dashboard API tests.

Provides fixtures for:
- Database session
- Realtime broker
- Test client
- Workspaces, system roles and users
- JWT tokens
"""

import os

# Settings are cached on first use; configure them before importing the app
os.environ.setdefault("LOCALL_ENVIRONMENT", "test")
os.environ.setdefault("LOCALL_HUBSPOT_WEBHOOK_SECRET", "test-hubspot-secret")
os.environ.setdefault("LOCALL_REALTIME_BACKEND", "memory")

from typing import AsyncGenerator  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.orm import selectinload  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

# Import all models to ensure they're registered with Base.metadata before create_all()
import locall.models  # noqa: E402, F401
from locall.database import get_db  # noqa: E402
from locall.main import app  # noqa: E402
from locall.models import Role, User, UserRoleAssignment, Workspace  # noqa: E402
from locall.models.base import Base  # noqa: E402
from locall.realtime import LocalBroker, get_broker  # noqa: E402
from locall.security import create_access_token, create_refresh_token, hash_password  # noqa: E402
from locall.services.users import UserManagementService  # noqa: E402

# Test database URL (use file-based SQLite for tests to ensure table persistence)
TEST_DATABASE_URL = "sqlite+aiosqlite:///test_db.sqlite"


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine."""
    # Remove old test database if exists
    if os.path.exists("test_db.sqlite"):
        os.remove("test_db.sqlite")

    engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()

    # Clean up test database file
    if os.path.exists("test_db.sqlite"):
        os.remove("test_db.sqlite")


@pytest_asyncio.fixture
async def test_db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def broker() -> AsyncGenerator[LocalBroker, None]:
    """In-process realtime broker."""
    local_broker = LocalBroker()
    yield local_broker
    await local_broker.close()


@pytest_asyncio.fixture
async def test_workspace(test_db: AsyncSession) -> Workspace:
    """Create test workspace."""
    workspace = Workspace(
        name="Test Workspace",
        slug="test-workspace",
        plan="professional",
        contact_email="owner@testworkspace.com",
        contact_name="Test Owner",
        max_users=50,
        max_teams=10,
        is_active=True,
    )
    test_db.add(workspace)
    await test_db.commit()
    await test_db.refresh(workspace)
    return workspace


@pytest_asyncio.fixture
async def other_workspace(test_db: AsyncSession) -> Workspace:
    """Second tenant for isolation tests."""
    workspace = Workspace(name="Other Workspace", slug="other-workspace", plan="starter", is_active=True)
    test_db.add(workspace)
    await test_db.commit()
    await test_db.refresh(workspace)
    return workspace


@pytest_asyncio.fixture
async def system_roles(test_db: AsyncSession) -> dict[str, Role]:
    """Built-in owner, admin, manager, agent and viewer roles."""
    return await UserManagementService(test_db).ensure_system_roles()


async def create_user(
    db: AsyncSession,
    workspace: Workspace,
    email: str,
    role: Role | None = None,
    password: str = "password123",
    is_active: bool = True,
) -> User:
    """Create a user, optionally with a role, and return it with roles loaded."""
    user = User(
        workspace_id=workspace.id,
        email=email,
        full_name=email.split("@")[0].title(),
        hashed_password=hash_password(password),
        is_active=is_active,
        is_verified=True,
    )
    db.add(user)
    await db.flush()

    if role is not None:
        db.add(UserRoleAssignment(user_id=user.id, role_id=role.id, workspace_id=workspace.id))

    await db.commit()

    # Re-fetch user with eager loading of relationships
    stmt = (
        select(User)
        .options(
            selectinload(User.workspace),
            selectinload(User.roles).selectinload(UserRoleAssignment.role).selectinload(Role.permissions),
        )
        .where(User.id == user.id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one()


@pytest_asyncio.fixture
async def test_user_owner(test_db: AsyncSession, test_workspace: Workspace, system_roles: dict) -> User:
    """Workspace owner with every permission."""
    return await create_user(test_db, test_workspace, "owner@testworkspace.com", system_roles["owner"])


@pytest_asyncio.fixture
async def test_user_agent(test_db: AsyncSession, test_workspace: Workspace, system_roles: dict) -> User:
    """Agent with read-only access to users and teams."""
    return await create_user(test_db, test_workspace, "agent@testworkspace.com", system_roles["agent"])


@pytest_asyncio.fixture
async def test_user_inactive(test_db: AsyncSession, test_workspace: Workspace, system_roles: dict) -> User:
    """Create inactive test user."""
    return await create_user(
        test_db, test_workspace, "inactive@testworkspace.com", system_roles["agent"], is_active=False
    )


@pytest_asyncio.fixture
async def other_user_owner(test_db: AsyncSession, other_workspace: Workspace, system_roles: dict) -> User:
    """Owner of the second workspace."""
    return await create_user(test_db, other_workspace, "owner@otherworkspace.com", system_roles["owner"])


def token_for(user: User) -> str:
    return create_access_token(user_id=user.id, workspace_id=user.workspace_id, email=user.email)


@pytest_asyncio.fixture
async def owner_access_token(test_user_owner: User) -> str:
    """Create access token for owner user."""
    return token_for(test_user_owner)


@pytest_asyncio.fixture
async def owner_refresh_token(test_user_owner: User) -> str:
    """Create refresh token for owner user."""
    return create_refresh_token(user_id=test_user_owner.id)


@pytest_asyncio.fixture
async def agent_access_token(test_user_agent: User) -> str:
    """Create access token for agent user."""
    return token_for(test_user_agent)


@pytest_asyncio.fixture
async def other_owner_access_token(other_user_owner: User) -> str:
    return token_for(other_user_owner)


@pytest_asyncio.fixture
async def owner_headers(owner_access_token: str) -> dict:
    return {"Authorization": f"Bearer {owner_access_token}"}


@pytest_asyncio.fixture
async def agent_headers(agent_access_token: str) -> dict:
    return {"Authorization": f"Bearer {agent_access_token}"}


@pytest_asyncio.fixture
async def other_owner_headers(other_owner_access_token: str) -> dict:
    return {"Authorization": f"Bearer {other_owner_access_token}"}


@pytest_asyncio.fixture
async def client(test_db: AsyncSession, broker: LocalBroker) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database session and broker overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_broker] = lambda: broker

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
