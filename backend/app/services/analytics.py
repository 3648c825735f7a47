"""Permission analytics and employee comparison.

`summarize()` and `compare()` are pure functions over resolved matrices;
the async helpers below load the matrices and add audit activity.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.database import utcnow
from app.schemas.permissions import (
    AnalyticsSummary,
    CategoryBreakdown,
    ComparisonResult,
    EmployeeAnalytics,
    EmployeeComparison,
    PermissionDifference,
    PermissionExport,
    ResolvedMatrix,
)
from app.schemas.role import RoleSummary
from app.services import audit, resolver

HIGH_RISK_RATIO = 0.8
MEDIUM_RISK_RATIO = 0.5


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half up; 0 when `whole` is 0."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def risk_level(granted: int, total: int) -> str:
    if granted > total * HIGH_RISK_RATIO:
        return "high"
    if granted > total * MEDIUM_RISK_RATIO:
        return "medium"
    return "low"


def summarize(matrix: ResolvedMatrix) -> AnalyticsSummary:
    total = granted = role_granted = individual_granted = 0
    per_category = []

    for resource in matrix.resources:
        resource_granted = 0
        for cell in resource.actions:
            total += 1
            if not cell.has_permission:
                continue
            resource_granted += 1
            if cell.source == "individual":
                individual_granted += 1
            else:
                role_granted += 1
        granted += resource_granted

        resource_total = len(resource.actions)
        per_category.append(CategoryBreakdown(
            name=resource.display_name,
            granted=resource_granted,
            total=resource_total,
            pct=percent(resource_granted, resource_total),
        ))

    return AnalyticsSummary(
        total=total,
        granted=granted,
        role_granted=role_granted,
        individual_granted=individual_granted,
        coverage_pct=percent(granted, total),
        per_category=per_category,
        risk_level=risk_level(granted, total),
    )


def compare(a: ResolvedMatrix, b: ResolvedMatrix) -> ComparisonResult:
    """Keys where exactly one side is granted, over the union of both matrices."""
    categories: dict[str, str] = {}
    for matrix in (a, b):
        for resource, cell in matrix.cells():
            categories.setdefault(cell.permission_key, resource.display_name)

    a_map, b_map = a.as_dict(), b.as_dict()
    differences = [
        PermissionDifference(
            permission_key=key,
            a_has=a_map.get(key, False),
            b_has=b_map.get(key, False),
            category=categories[key],
        )
        for key in sorted(categories)
        if a_map.get(key, False) != b_map.get(key, False)
    ]

    total = len(categories)
    return ComparisonResult(
        differences=differences,
        similarity_pct=percent(total - len(differences), total) if total else 100,
    )


async def employee_analytics(db: AsyncSession, employee_id: str) -> EmployeeAnalytics:
    matrix = await resolver.resolve(db, employee_id)
    summary = summarize(matrix)
    return EmployeeAnalytics(
        **summary.model_dump(),
        employee_id=employee_id,
        recent_changes=await audit.count_recent(db, employee_id),
    )


async def compare_employees(
    db: AsyncSession,
    employee_a: str,
    employee_b: str,
) -> EmployeeComparison:
    result = compare(
        await resolver.resolve(db, employee_a),
        await resolver.resolve(db, employee_b),
    )
    return EmployeeComparison(
        **result.model_dump(),
        employee_a=employee_a,
        employee_b=employee_b,
    )


async def export_permissions(db: AsyncSession, employee_id: str) -> PermissionExport:
    employee = await resolver.get_employee(db, employee_id)
    matrix = await resolver.resolve(db, employee_id)
    roles = await resolver.list_employee_roles(db, employee_id)
    return PermissionExport(
        employee_id=employee_id,
        employee_name=employee.full_name,
        roles=[RoleSummary.model_validate(role) for role in roles],
        matrix=matrix,
        analytics=summarize(matrix),
        exported_at=utcnow(),
    )
