"""RBAC statistics: who holds which role, and what changed recently.

Read-only aggregates over the Role Store, Grant Store and Audit Log for
the administration dashboard.
"""

from datetime import timedelta

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.models.audit import PermissionAuditEntry
from app.models.employee import Employee
from app.models.grant import EmployeeRole, PermissionOverride
from app.models.role import Role, RolePermission
from app.schemas.permissions import ActivityCount, GrantTotals, RbacStats, RoleHolderCount


async def _count(db: AsyncSession, column) -> int:
    return (await db.execute(select(func.count(distinct(column))))).scalar() or 0


async def role_holders(db: AsyncSession) -> list[RoleHolderCount]:
    """Every role with its number of holders, most held first."""
    holders = func.count(EmployeeRole.id).label("holders")
    result = await db.execute(
        select(Role.id, Role.name, Role.display_name, Role.is_system, holders)
        .outerjoin(EmployeeRole, EmployeeRole.role_id == Role.id)
        .group_by(Role.id, Role.name, Role.display_name, Role.is_system)
        .order_by(holders.desc(), Role.name)
    )
    return [
        RoleHolderCount(
            role_id=row.id,
            name=row.name,
            display_name=row.display_name,
            is_system=row.is_system,
            holders=row.holders,
        )
        for row in result.all()
    ]


async def recent_activity(db: AsyncSession, days: int) -> list[ActivityCount]:
    entries = func.count(PermissionAuditEntry.id).label("entries")
    result = await db.execute(
        select(PermissionAuditEntry.action, entries)
        .where(PermissionAuditEntry.changed_at >= utcnow() - timedelta(days=days))
        .group_by(PermissionAuditEntry.action)
        .order_by(entries.desc(), PermissionAuditEntry.action)
    )
    return [ActivityCount(action=row.action, count=row.entries) for row in result.all()]


async def rbac_stats(db: AsyncSession, *, days: int | None = None) -> RbacStats:
    days = days or settings.stats_recent_days
    totals = GrantTotals(
        employees=await _count(db, Employee.id),
        employees_with_roles=await _count(db, EmployeeRole.employee_id),
        employees_with_overrides=await _count(db, PermissionOverride.employee_id),
        roles_with_permissions=await _count(db, RolePermission.role_id),
    )
    return RbacStats(
        roles=await role_holders(db),
        totals=totals,
        recent_activity=await recent_activity(db, days),
        window_days=days,
        generated_at=utcnow(),
    )
