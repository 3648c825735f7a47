"""Permissions router — resolution, mutations, audit and analytics.

Endpoints:
    GET    /api/permissions/catalog                          Resources and actions
    GET    /api/permissions/me                               Caller's own matrix
    GET    /api/permissions/employees/{id}/effective         Resolved matrix
    GET    /api/permissions/employees/{id}/check?key=        Single check + matched rule
    GET    /api/permissions/employees/{id}/roles             Assigned roles
    POST   /api/permissions/employees/{id}/roles             Assign a role
    DELETE /api/permissions/employees/{id}/roles/{role_id}   Remove a role
    POST   /api/permissions/employees/{id}/bulk              Atomic override batch
    POST   /api/permissions/employees/{id}/reset             Clear all overrides
    GET    /api/permissions/employees/{id}/audit             History, newest first
    GET    /api/permissions/employees/{id}/analytics         Coverage and risk
    GET    /api/permissions/employees/{id}/export            Matrix + roles + analytics
    GET    /api/permissions/compare                          Diff two employees
    GET    /api/permissions/audit                            Audit log across employees
    GET    /api/permissions/stats                            Role holders + recent activity
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.catalog import catalog
from app.auth.deps import Principal, get_principal, require_permission
from app.database import get_db
from app.schemas.common import CursorPaginatedResponse, PaginatedResponse
from app.schemas.permissions import (
    AssignRoleRequest,
    AuditAction,
    AuditEntryOut,
    BulkChangeRequest,
    CatalogAction,
    CatalogResource,
    CheckResult,
    EmployeeAnalytics,
    EmployeeComparison,
    MutationResult,
    PermissionExport,
    RbacStats,
    ResetRequest,
    ResolvedMatrix,
)
from app.schemas.role import RoleSummary
from app.services import analytics, audit, mutations, resolver, stats

router = APIRouter()

VIEW = "permissions.view"
MANAGE = "permissions.manage"


# ── Catalog ──────────────────────────────────────────────────

@router.get("/catalog", response_model=list[CatalogResource])
async def get_catalog(
    _principal: Principal = Depends(get_principal),
):
    return [
        CatalogResource(
            name=resource.name,
            display_name=resource.display_name,
            resource_type=resource.resource_type,
            actions=[
                CatalogAction(
                    name=action.name,
                    display_name=action.display_name,
                    permission_key=resource.key(action.name),
                )
                for action in resource.actions
            ],
        )
        for resource in catalog.resources
    ]


# ── Resolution ───────────────────────────────────────────────

@router.get("/me", response_model=ResolvedMatrix)
async def my_permissions(
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_principal),
):
    """Effective permissions of the authenticated caller."""
    return await resolver.resolve(db, principal.employee_id)


@router.get("/employees/{employee_id}/effective", response_model=ResolvedMatrix)
async def effective_permissions(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await resolver.resolve(db, employee_id)


@router.get("/employees/{employee_id}/check", response_model=CheckResult)
async def check_permission(
    employee_id: str,
    key: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await resolver.check(db, employee_id, key)


# ── Role assignments ─────────────────────────────────────────

@router.get("/employees/{employee_id}/roles", response_model=list[RoleSummary])
async def employee_roles(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await resolver.list_employee_roles(db, employee_id)


@router.post("/employees/{employee_id}/roles", response_model=MutationResult)
async def assign_role(
    employee_id: str,
    body: AssignRoleRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission(MANAGE)),
):
    return await mutations.assign_role(
        db, employee_id, body.role_id, principal.employee_id, body.reason
    )


@router.delete("/employees/{employee_id}/roles/{role_id}", response_model=MutationResult)
async def remove_role(
    employee_id: str,
    role_id: str,
    reason: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission(MANAGE)),
):
    return await mutations.remove_role(
        db, employee_id, role_id, principal.employee_id, reason
    )


# ── Overrides ────────────────────────────────────────────────

@router.post("/employees/{employee_id}/bulk", response_model=MutationResult)
async def bulk_change(
    employee_id: str,
    body: BulkChangeRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission(MANAGE)),
):
    """Apply every change or none of them, with one audit batch."""
    return await mutations.apply_bulk_change(
        db, employee_id, body.changes, body.reason, principal.employee_id
    )


@router.post("/employees/{employee_id}/reset", response_model=MutationResult)
async def reset_permissions(
    employee_id: str,
    body: ResetRequest | None = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_permission(MANAGE)),
):
    return await mutations.reset_to_role_defaults(
        db, employee_id, principal.employee_id, body.reason if body else None
    )


# ── Audit ────────────────────────────────────────────────────

@router.get(
    "/employees/{employee_id}/audit",
    response_model=CursorPaginatedResponse[AuditEntryOut],
)
async def audit_history(
    employee_id: str,
    limit: int | None = Query(None, ge=1),
    before: int | None = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    await resolver.get_employee(db, employee_id)
    items, total, has_more = await audit.query_history(
        db, employee_id, limit=limit, before=before
    )

    next_cursor = None
    if has_more and items:
        next_cursor = str(items[-1].id)

    return CursorPaginatedResponse(
        items=[AuditEntryOut.model_validate(entry) for entry in items],
        total=total,
        limit=audit.clamp_limit(limit),
        next_cursor=next_cursor,
        has_more=has_more,
    )


@router.get("/audit", response_model=PaginatedResponse[AuditEntryOut])
async def audit_log(
    employee_id: str | None = Query(None),
    changed_by: str | None = Query(None),
    action: AuditAction | None = Query(None),
    resource: str | None = Query(None, min_length=1),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    """Filtered audit log across all employees, newest first."""
    items, total = await audit.query_log(
        db,
        employee_id=employee_id,
        changed_by=changed_by,
        action=action,
        resource=resource,
        start=start,
        end=end,
        limit=limit,
        offset=offset,
    )
    return PaginatedResponse(
        items=[AuditEntryOut.model_validate(entry) for entry in items],
        total=total,
        limit=audit.clamp_limit(limit),
        offset=offset,
    )


# ── Analytics ────────────────────────────────────────────────

@router.get("/employees/{employee_id}/analytics", response_model=EmployeeAnalytics)
async def employee_analytics(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await analytics.employee_analytics(db, employee_id)


@router.get("/employees/{employee_id}/export", response_model=PermissionExport)
async def export_permissions(
    employee_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await analytics.export_permissions(db, employee_id)


@router.get("/compare", response_model=EmployeeComparison)
async def compare_employees(
    employee_a: str = Query(...),
    employee_b: str = Query(...),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await analytics.compare_employees(db, employee_a, employee_b)


@router.get("/stats", response_model=RbacStats)
async def rbac_stats(
    days: int | None = Query(None, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await stats.rbac_stats(db, days=days)
