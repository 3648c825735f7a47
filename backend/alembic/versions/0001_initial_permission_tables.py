"""Initial schema — roles, grants, write generations and the audit log.

Revision ID: 0001
Revises: (none)
Create Date: 2026-10-18

Run with:
    alembic upgrade head

Then seed the system roles:
    python -m app.cli seed-roles
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op
import sqlalchemy as sa


def upgrade() -> None:
    # ── External collaborator (employee directory) ──────────

    op.create_table(
        "employees",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), unique=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_employees_email", "employees", ["email"])

    # ── Role Store ───────────────────────────────────────────

    op.create_table(
        "roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_template", sa.Boolean(), server_default=sa.true()),
        sa.Column("is_system", sa.Boolean(), server_default=sa.false()),
        sa.Column("seed_version", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_roles_name", "roles", ["name"])

    op.create_table(
        "role_permissions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "role_id", sa.String(36),
            sa.ForeignKey("roles.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("permission_key", sa.String(150), nullable=False),
        sa.UniqueConstraint("role_id", "permission_key", name="uq_role_permission"),
    )

    # ── Grant Store ──────────────────────────────────────────

    op.create_table(
        "employee_roles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "employee_id", sa.String(36),
            sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("role_id", sa.String(36), sa.ForeignKey("roles.id"), nullable=False),
        sa.Column("assigned_by", sa.String(36), nullable=False),
        sa.Column("assigned_at", sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint("employee_id", "role_id", name="uq_employee_role"),
    )
    op.create_index("ix_employee_roles_employee_id", "employee_roles", ["employee_id"])

    op.create_table(
        "permission_overrides",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "employee_id", sa.String(36),
            sa.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("permission_key", sa.String(150), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("source", sa.String(20), server_default="individual", nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("changed_by", sa.String(36), nullable=False),
        sa.Column("changed_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("employee_id", "permission_key", name="uq_employee_override"),
    )
    op.create_index(
        "ix_permission_overrides_employee_id", "permission_overrides", ["employee_id"]
    )

    op.create_table(
        "employee_permission_states",
        sa.Column(
            "employee_id", sa.String(36),
            sa.ForeignKey("employees.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ── Audit Log ────────────────────────────────────────────

    op.create_table(
        "permission_audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("batch_id", sa.String(36), nullable=False),
        sa.Column("employee_id", sa.String(36), nullable=False),
        sa.Column("permission_key", sa.String(150), nullable=False),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("old_value", sa.Boolean(), nullable=True),
        sa.Column("new_value", sa.Boolean(), nullable=True),
        sa.Column("role_id", sa.String(36), nullable=True),
        sa.Column("changed_by", sa.String(36), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("changed_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_permission_audit_log_batch_id", "permission_audit_log", ["batch_id"])
    op.create_index(
        "ix_permission_audit_log_employee_id", "permission_audit_log", ["employee_id"]
    )
    op.create_index("ix_permission_audit_log_action", "permission_audit_log", ["action"])
    op.create_index(
        "ix_permission_audit_log_changed_at", "permission_audit_log", ["changed_at"]
    )


def downgrade() -> None:
    op.drop_table("permission_audit_log")
    op.drop_table("employee_permission_states")
    op.drop_table("permission_overrides")
    op.drop_table("employee_roles")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_table("employees")
