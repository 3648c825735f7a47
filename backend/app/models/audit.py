"""PermissionAuditEntry — append-only history of permission changes.

The id is a monotonic integer so "newest first" is a plain id ordering
and replaying the log in id order reproduces the Grant Store.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class PermissionAuditEntry(Base):
    __tablename__ = "permission_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    batch_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # ── Target ─────────────────────────────────────────────────
    employee_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    # permission key, or "role.<name>" for role assignment entries
    permission_key: Mapped[str] = mapped_column(String(150), nullable=False)

    # ── What ───────────────────────────────────────────────────
    # granted | revoked | role_assigned | role_removed
    action: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    old_value: Mapped[bool | None] = mapped_column(Boolean)
    # null on a "revoked" entry means the override was cleared (reset)
    new_value: Mapped[bool | None] = mapped_column(Boolean)
    role_id: Mapped[str | None] = mapped_column(String(36))

    # ── Who / why / when ───────────────────────────────────────
    changed_by: Mapped[str] = mapped_column(String(36), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    changed_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
