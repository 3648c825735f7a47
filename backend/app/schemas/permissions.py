"""Pydantic schemas for permission resolution, mutations, audit and analytics."""

from datetime import datetime
from typing import Iterator, Literal

from pydantic import BaseModel, Field

from app.schemas.role import RoleSummary

PermissionSource = Literal["role", "individual"]


# ── Catalog ───────────────────────────────────────────────────

class CatalogAction(BaseModel):
    name: str
    display_name: str
    permission_key: str


class CatalogResource(BaseModel):
    name: str
    display_name: str
    resource_type: str
    actions: list[CatalogAction]


# ── Resolved matrix ──────────────────────────────────────────

class PermissionCell(BaseModel):
    name: str
    display_name: str
    permission_key: str
    has_permission: bool
    source: PermissionSource


class ResourcePermissions(BaseModel):
    name: str
    display_name: str
    resource_type: str
    actions: list[PermissionCell]


class ResolvedMatrix(BaseModel):
    """Effective permissions of one employee. Derived, never persisted."""
    employee_id: str | None = None
    resources: list[ResourcePermissions]

    def cells(self) -> Iterator[tuple[ResourcePermissions, PermissionCell]]:
        for resource in self.resources:
            for cell in resource.actions:
                yield resource, cell

    def as_dict(self) -> dict[str, bool]:
        return {cell.permission_key: cell.has_permission for _, cell in self.cells()}


class CheckResult(BaseModel):
    permission_key: str
    allowed: bool
    # admin_wildcard | individual_override | role_exact |
    # dot_wildcard | legacy_prefix | no_match
    reason: str
    source: PermissionSource
    matched_key: str | None = None


# ── Mutations ─────────────────────────────────────────────────

class PermissionChange(BaseModel):
    permission_key: str
    granted: bool


class BulkChangeRequest(BaseModel):
    """All intended changes plus the reason, submitted as one unit."""
    changes: list[PermissionChange]
    reason: str = ""


class AssignRoleRequest(BaseModel):
    role_id: str
    reason: str | None = None


class ResetRequest(BaseModel):
    reason: str | None = None


class MutationResult(BaseModel):
    employee_id: str
    audit_batch_id: str | None = None
    applied_count: int


# ── Audit ─────────────────────────────────────────────────────

class AuditEntryOut(BaseModel):
    id: int
    batch_id: str
    employee_id: str
    permission_key: str
    action: str
    changed_by: str
    changed_at: datetime
    reason: str | None = None
    old_value: bool | None = None
    new_value: bool | None = None
    role_id: str | None = None

    model_config = {"from_attributes": True}


AuditAction = Literal["granted", "revoked", "role_assigned", "role_removed"]


class AuditVerification(BaseModel):
    employee_id: str
    consistent: bool
    entries_replayed: int
    override_mismatches: list[str] = Field(default_factory=list)
    role_mismatches: list[str] = Field(default_factory=list)


# ── Analytics ─────────────────────────────────────────────────

RiskLevel = Literal["low", "medium", "high"]


class CategoryBreakdown(BaseModel):
    name: str
    granted: int
    total: int
    pct: int


class AnalyticsSummary(BaseModel):
    total: int
    granted: int
    role_granted: int
    individual_granted: int
    coverage_pct: int
    per_category: list[CategoryBreakdown]
    risk_level: RiskLevel


class EmployeeAnalytics(AnalyticsSummary):
    employee_id: str
    recent_changes: int


class PermissionDifference(BaseModel):
    permission_key: str
    a_has: bool
    b_has: bool
    category: str


class ComparisonResult(BaseModel):
    differences: list[PermissionDifference]
    similarity_pct: int


class EmployeeComparison(ComparisonResult):
    employee_a: str
    employee_b: str


class PermissionExport(BaseModel):
    employee_id: str
    employee_name: str
    roles: list[RoleSummary]
    matrix: ResolvedMatrix
    analytics: AnalyticsSummary
    exported_at: datetime


# ── RBAC statistics ──────────────────────────────────────────

class RoleHolderCount(BaseModel):
    role_id: str
    name: str
    display_name: str
    is_system: bool
    holders: int


class ActivityCount(BaseModel):
    action: str
    count: int


class GrantTotals(BaseModel):
    employees: int
    employees_with_roles: int
    employees_with_overrides: int
    roles_with_permissions: int


class RbacStats(BaseModel):
    roles: list[RoleHolderCount]
    totals: GrantTotals
    recent_activity: list[ActivityCount]
    window_days: int
    generated_at: datetime
