"""Audit Log — append-only history of permission changes.

Entries are added to the caller's session and committed with the
enclosing transaction, so a batch's grants and its audit rows land or
vanish together.  Only the mutation coordinator appends.

Usage:
    record_change(
        db, batch_id, employee_id="emp-1", permission_key="sales.delete",
        action="granted", old_value=False, new_value=True,
        changed_by=actor_id, reason="Covering for manager",
    )
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import utcnow
from app.models.audit import PermissionAuditEntry
from app.models.grant import EmployeeRole, PermissionOverride
from app.schemas.permissions import AuditVerification

logger = logging.getLogger(__name__)

OVERRIDE_ACTIONS = ("granted", "revoked")
ROLE_ACTIONS = ("role_assigned", "role_removed")


def record_change(
    db: AsyncSession,
    batch_id: str,
    *,
    employee_id: str,
    permission_key: str,
    action: str,
    changed_by: str,
    changed_at: datetime | None = None,
    reason: str | None = None,
    old_value: bool | None = None,
    new_value: bool | None = None,
    role_id: str | None = None,
) -> PermissionAuditEntry:
    """Append one audit entry to the current DB session."""
    entry = PermissionAuditEntry(
        batch_id=batch_id,
        employee_id=employee_id,
        permission_key=permission_key,
        action=action,
        old_value=old_value,
        new_value=new_value,
        role_id=role_id,
        changed_by=changed_by,
        reason=reason,
        changed_at=changed_at or utcnow(),
    )
    db.add(entry)
    return entry


def clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return settings.audit_default_limit
    return min(limit, settings.audit_max_limit)


async def query_history(
    db: AsyncSession,
    employee_id: str,
    *,
    limit: int | None = None,
    before: int | None = None,
) -> tuple[list[PermissionAuditEntry], int, bool]:
    """Entries for one employee, newest first.

    `before` is the id of the last entry of the previous page.  Returns
    (items, total, has_more).
    """
    limit = clamp_limit(limit)

    stmt = select(PermissionAuditEntry).where(
        PermissionAuditEntry.employee_id == employee_id
    )
    if before is not None:
        stmt = stmt.where(PermissionAuditEntry.id < before)
    stmt = stmt.order_by(PermissionAuditEntry.id.desc()).limit(limit + 1)

    rows = list((await db.execute(stmt)).scalars().all())
    has_more = len(rows) > limit
    items = rows[:limit]

    total = (
        await db.execute(
            select(func.count(PermissionAuditEntry.id)).where(
                PermissionAuditEntry.employee_id == employee_id
            )
        )
    ).scalar() or 0
    return items, total, has_more


def _naive_utc(value: datetime | None) -> datetime | None:
    # changed_at is stored as naive UTC
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def query_log(
    db: AsyncSession,
    *,
    employee_id: str | None = None,
    changed_by: str | None = None,
    action: str | None = None,
    resource: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> tuple[list[PermissionAuditEntry], int]:
    """Entries across all employees, newest first.  Returns (items, total).

    `resource` matches every key under it: `sales` selects `sales.view`,
    `sales.*` and so on; `role` selects the role assignment entries.
    `start` and `end` are inclusive bounds on `changed_at`.
    """
    conditions = []
    if employee_id:
        conditions.append(PermissionAuditEntry.employee_id == employee_id)
    if changed_by:
        conditions.append(PermissionAuditEntry.changed_by == changed_by)
    if action:
        conditions.append(PermissionAuditEntry.action == action)
    if resource:
        conditions.append(
            PermissionAuditEntry.permission_key.startswith(
                f"{resource.strip().lower()}.", autoescape=True
            )
        )
    if start is not None:
        conditions.append(PermissionAuditEntry.changed_at >= _naive_utc(start))
    if end is not None:
        conditions.append(PermissionAuditEntry.changed_at <= _naive_utc(end))

    total = (
        await db.execute(
            select(func.count(PermissionAuditEntry.id)).where(*conditions)
        )
    ).scalar() or 0

    result = await db.execute(
        select(PermissionAuditEntry)
        .where(*conditions)
        .order_by(PermissionAuditEntry.id.desc())
        .offset(offset)
        .limit(clamp_limit(limit))
    )
    return list(result.scalars().all()), total


async def count_recent(
    db: AsyncSession,
    employee_id: str,
    days: int | None = None,
) -> int:
    since = utcnow() - timedelta(days=days or settings.analytics_recent_days)
    result = await db.execute(
        select(func.count(PermissionAuditEntry.id)).where(
            PermissionAuditEntry.employee_id == employee_id,
            PermissionAuditEntry.changed_at >= since,
        )
    )
    return result.scalar() or 0


# ── Replay ───────────────────────────────────────────────────

@dataclass
class ReplayedGrants:
    overrides: dict[str, bool] = field(default_factory=dict)
    role_ids: set[str] = field(default_factory=set)


def replay(entries: list[PermissionAuditEntry]) -> ReplayedGrants:
    """Rebuild an employee's overrides and role set from the log, oldest first."""
    state = ReplayedGrants()
    for entry in sorted(entries, key=lambda e: e.id):
        if entry.action in OVERRIDE_ACTIONS:
            if entry.new_value is None:
                state.overrides.pop(entry.permission_key, None)
            else:
                state.overrides[entry.permission_key] = entry.new_value
        elif entry.action == "role_assigned":
            state.role_ids.add(entry.role_id)
        elif entry.action == "role_removed":
            state.role_ids.discard(entry.role_id)
    return state


async def verify(db: AsyncSession, employee_id: str) -> AuditVerification:
    """Compare the replayed log against the live Grant Store.

    Role assignments seeded outside the coordinator have no audit entry
    and show up as role mismatches.
    """
    entries = list(
        (
            await db.execute(
                select(PermissionAuditEntry).where(
                    PermissionAuditEntry.employee_id == employee_id
                )
            )
        ).scalars().all()
    )
    replayed = replay(entries)

    live_overrides = {
        row[0]: row[1]
        for row in (
            await db.execute(
                select(PermissionOverride.permission_key, PermissionOverride.granted).where(
                    PermissionOverride.employee_id == employee_id
                )
            )
        ).all()
    }
    live_roles = set(
        (
            await db.execute(
                select(EmployeeRole.role_id).where(EmployeeRole.employee_id == employee_id)
            )
        ).scalars().all()
    )

    override_mismatches = sorted(
        key
        for key in set(live_overrides) | set(replayed.overrides)
        if live_overrides.get(key) != replayed.overrides.get(key)
    )
    role_mismatches = sorted(live_roles ^ replayed.role_ids)

    consistent = not override_mismatches and not role_mismatches
    if not consistent:
        logger.warning(
            f"Audit replay mismatch for {employee_id}: "
            f"{len(override_mismatches)} override(s), {len(role_mismatches)} role(s)"
        )
    return AuditVerification(
        employee_id=employee_id,
        consistent=consistent,
        entries_replayed=len(entries),
        override_mismatches=override_mismatches,
        role_mismatches=role_mismatches,
    )
