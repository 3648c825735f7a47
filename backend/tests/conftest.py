"""Pytest configuration and fixtures for the permission engine tests.

Every test gets its own in-memory SQLite database built from the model
metadata; the Redis cache is switched off through settings (cache tests
install a fake client instead).
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("LOG_JSON", "false")
os.environ.setdefault("PERMISSION_CACHE_ENABLED", "false")
os.environ.setdefault("SECRET_KEY", "test-secret")

from typing import AsyncGenerator, Awaitable, Callable

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models import *  # noqa: F401,F403
from app.models.employee import Employee
from app.models.grant import EmployeeRole
from app.models.role import Role
from app.services.roles import list_roles, seed_system_roles


# ── Test Database Setup ──────────────────────────────────────────

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the database dependency pointed at the test session."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ── Test Data Fixtures ───────────────────────────────────────────

@pytest_asyncio.fixture
async def system_roles(db_session: AsyncSession) -> dict[str, Role]:
    """Seeded system role templates, keyed by name."""
    await seed_system_roles(db_session)
    return {role.name: role for role in await list_roles(db_session)}


EmployeeFactory = Callable[..., Awaitable[Employee]]


@pytest_asyncio.fixture
async def make_employee(db_session: AsyncSession, system_roles) -> EmployeeFactory:
    """Create an employee, optionally holding some system roles.

    Roles are attached directly (no audit entry), the way the staff
    service provisions accounts.
    """
    counter = 0

    async def _make(name: str = "Test Employee", roles: tuple[str, ...] = ()) -> Employee:
        nonlocal counter
        counter += 1
        employee = Employee(full_name=name, email=f"employee{counter}@example.com")
        db_session.add(employee)
        await db_session.flush()
        for role_name in roles:
            db_session.add(EmployeeRole(
                employee_id=employee.id,
                role_id=system_roles[role_name].id,
                assigned_by="provisioning",
            ))
        await db_session.commit()
        return employee

    return _make


@pytest_asyncio.fixture
async def admin(make_employee) -> Employee:
    return await make_employee("Alice Admin", roles=("admin",))


@pytest_asyncio.fixture
async def cashier(make_employee) -> Employee:
    return await make_employee("Carl Cashier", roles=("cashier",))


@pytest_asyncio.fixture
async def newcomer(make_employee) -> Employee:
    """Employee with no roles and no overrides."""
    return await make_employee("Nina Newcomer")


def auth_headers_for(employee_id: str, super_admin: bool = False) -> dict[str, str]:
    token = create_access_token(employee_id, super_admin=super_admin)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_headers(admin) -> dict[str, str]:
    return auth_headers_for(admin.id)


@pytest_asyncio.fixture
async def cashier_headers(cashier) -> dict[str, str]:
    return auth_headers_for(cashier.id)


@pytest_asyncio.fixture
async def super_admin_headers() -> dict[str, str]:
    """Platform operator: not an employee, bypasses every check."""
    return auth_headers_for("platform-operator", super_admin=True)
