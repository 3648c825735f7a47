"""Resolver service — loads an employee's grants and resolves them.

The resolution itself is the pure code in app.auth.permissions; this
module only reads a snapshot (role keys, overrides, write generation)
and fronts the result with the Redis matrix cache.  Nothing here writes.
"""

import logging
from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.catalog import PermissionCatalog, catalog as default_catalog
from app.auth.permissions import check_permission, resolve_matrix
from app.config import settings
from app.middleware.exceptions import NotFoundError
from app.models.employee import Employee
from app.models.grant import EmployeePermissionState, EmployeeRole, PermissionOverride
from app.models.role import Role, RolePermission
from app.schemas.permissions import CheckResult, ResolvedMatrix
from app.utils.cache import get_cached, matrix_cache_key, set_cached

logger = logging.getLogger(__name__)


@dataclass
class EmployeeGrants:
    """Point-in-time snapshot of what feeds the resolver for one employee."""
    employee_id: str
    role_keys: set[str] = field(default_factory=set)
    overrides: dict[str, bool] = field(default_factory=dict)


async def get_employee(db: AsyncSession, employee_id: str) -> Employee:
    employee = (
        await db.execute(select(Employee).where(Employee.id == employee_id))
    ).scalar_one_or_none()
    if not employee:
        raise NotFoundError("Employee", employee_id)
    return employee


async def get_generation(db: AsyncSession, employee_id: str) -> int:
    """Current write generation; 0 for an employee never mutated."""
    result = await db.execute(
        select(EmployeePermissionState.version).where(
            EmployeePermissionState.employee_id == employee_id
        )
    )
    return result.scalar() or 0


async def load_grants(db: AsyncSession, employee_id: str) -> EmployeeGrants:
    role_rows = await db.execute(
        select(RolePermission.permission_key)
        .join(EmployeeRole, EmployeeRole.role_id == RolePermission.role_id)
        .where(EmployeeRole.employee_id == employee_id)
    )
    override_rows = await db.execute(
        select(PermissionOverride.permission_key, PermissionOverride.granted).where(
            PermissionOverride.employee_id == employee_id
        )
    )
    return EmployeeGrants(
        employee_id=employee_id,
        role_keys={row[0] for row in role_rows.all()},
        overrides={row[0]: row[1] for row in override_rows.all()},
    )


async def list_employee_roles(db: AsyncSession, employee_id: str) -> list[Role]:
    await get_employee(db, employee_id)
    result = await db.execute(
        select(Role)
        .join(EmployeeRole, EmployeeRole.role_id == Role.id)
        .where(EmployeeRole.employee_id == employee_id)
        .order_by(Role.display_name)
    )
    return list(result.scalars().all())


async def resolve(
    db: AsyncSession,
    employee_id: str,
    *,
    catalog: PermissionCatalog = default_catalog,
) -> ResolvedMatrix:
    """Effective permission matrix of one employee (cached per generation)."""
    await get_employee(db, employee_id)

    generation = await get_generation(db, employee_id)
    key = matrix_cache_key(employee_id, generation)
    cached = await get_cached(key)
    if cached:
        return ResolvedMatrix.model_validate_json(cached)

    grants = await load_grants(db, employee_id)
    matrix = resolve_matrix(
        catalog,
        grants.role_keys,
        grants.overrides,
        legacy_prefix=settings.legacy_prefix_wildcards,
        employee_id=employee_id,
    )

    # Only cache when no write landed while we were reading
    if await get_generation(db, employee_id) == generation:
        await set_cached(key, matrix.model_dump_json())
    else:
        logger.debug(f"Generation moved while resolving {employee_id}, not caching")
    return matrix


async def check(db: AsyncSession, employee_id: str, permission_key: str) -> CheckResult:
    """Single-permission query with the matching rule for diagnostics."""
    await get_employee(db, employee_id)
    grants = await load_grants(db, employee_id)
    return check_permission(
        grants.role_keys,
        grants.overrides,
        permission_key,
        legacy_prefix=settings.legacy_prefix_wildcards,
    )
