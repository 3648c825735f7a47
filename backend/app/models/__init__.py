"""Aggregate model imports for Alembic auto-detection."""

# External collaborator (read-only to the engine)
from app.models.employee import Employee  # noqa: F401

# Role Store
from app.models.role import Role, RolePermission  # noqa: F401

# Grant Store
from app.models.grant import (  # noqa: F401
    EmployeePermissionState,
    EmployeeRole,
    PermissionOverride,
)

# Audit Log
from app.models.audit import PermissionAuditEntry  # noqa: F401
