"""Mutation coordinator — the only writer of grants and audit entries.

Every operation here:
  1. Validates the whole request before touching any row.
  2. Serialises on the employee (in-process lock + optimistic version
     claim on EmployeePermissionState, which also covers other workers).
  3. Writes grants and their audit entries in one transaction and
     commits it; any failure rolls the whole unit back.
  4. Invalidates the employee's cached matrix before returning.

A lost version race (ConflictError) is retried up to
`settings.mutation_max_retries` times, then surfaced as HTTP 409.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.catalog import PermissionCatalog, catalog as default_catalog
from app.auth.permissions import (
    KeyKind,
    check_permission,
    classify_key,
    validate_grant_key,
)
from app.config import settings
from app.database import utcnow
from app.middleware.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.grant import EmployeePermissionState, EmployeeRole, PermissionOverride
from app.models.role import Role
from app.schemas.permissions import MutationResult, PermissionChange
from app.services import audit
from app.services.resolver import get_employee, load_grants
from app.utils.cache import invalidate_employee

logger = logging.getLogger(__name__)


class _EmployeeLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


# One registry per event loop: asyncio.Lock binds to the loop it first waits on
_LOCKS: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[str, _EmployeeLock]]" = (
    weakref.WeakKeyDictionary()
)


def _registry() -> dict[str, _EmployeeLock]:
    return _LOCKS.setdefault(asyncio.get_running_loop(), {})


def _entry(employee_id: str) -> _EmployeeLock:
    locks = _registry()
    entry = locks.get(employee_id)
    if entry is None:
        entry = locks[employee_id] = _EmployeeLock()
    return entry


def employee_lock(employee_id: str) -> asyncio.Lock:
    return _entry(employee_id).lock


@asynccontextmanager
async def serialized(employee_id: str):
    """Hold the employee's lock for one unit of work.

    The registry entry is dropped once no task holds or awaits it.
    """
    entry = _entry(employee_id)
    entry.holders += 1
    try:
        async with entry.lock:
            yield
    finally:
        entry.holders -= 1
        locks = _registry()
        if entry.holders == 0 and locks.get(employee_id) is entry:
            del locks[employee_id]


# ── Version claim ────────────────────────────────────────────

async def _claim_version(db: AsyncSession, employee_id: str) -> int:
    """Bump the employee's write generation or raise ConflictError.

    The UPDATE only matches the version we read, so a concurrent writer
    that committed in between makes it hit zero rows.
    """
    current = (
        await db.execute(
            select(EmployeePermissionState.version)
            .where(EmployeePermissionState.employee_id == employee_id)
            .with_for_update()
        )
    ).scalar_one_or_none()

    if current is None:
        db.add(EmployeePermissionState(employee_id=employee_id, version=1))
        try:
            await db.flush()
        except IntegrityError:
            raise ConflictError(f"Concurrent first write for employee {employee_id}")
        return 1

    result = await db.execute(
        update(EmployeePermissionState)
        .where(
            EmployeePermissionState.employee_id == employee_id,
            EmployeePermissionState.version == current,
        )
        .values(version=current + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Permissions of employee {employee_id} changed concurrently")
    return current + 1


async def bump_versions(db: AsyncSession, employee_ids: list[str]) -> None:
    """Move holders of an edited role to a new generation (no claim check)."""
    if not employee_ids:
        return
    await db.execute(
        update(EmployeePermissionState)
        .where(EmployeePermissionState.employee_id.in_(employee_ids))
        .values(version=EmployeePermissionState.version + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    known = set(
        (
            await db.execute(
                select(EmployeePermissionState.employee_id).where(
                    EmployeePermissionState.employee_id.in_(employee_ids)
                )
            )
        ).scalars().all()
    )
    for employee_id in set(employee_ids) - known:
        db.add(EmployeePermissionState(employee_id=employee_id, version=1))


async def _run_unit(
    db: AsyncSession,
    employee_id: str,
    actor_id: str,
    operation: str,
    work: Callable[[], Awaitable[MutationResult]],
) -> MutationResult:
    attempts = settings.mutation_max_retries + 1
    context = {"employee_id": employee_id, "actor_id": actor_id}

    async with serialized(employee_id):
        for attempt in range(1, attempts + 1):
            try:
                result = await work()
                await db.commit()
            except ConflictError:
                await db.rollback()
                if attempt == attempts:
                    logger.warning(
                        "%s for %s gave up after %d attempts",
                        operation, employee_id, attempts, extra=context,
                    )
                    raise
                logger.warning(
                    "%s for %s lost a version race, retrying (%d/%d)",
                    operation, employee_id, attempt, attempts, extra=context,
                )
                continue
            except Exception:
                await db.rollback()
                raise

            await invalidate_employee(employee_id)
            logger.info(
                "%s for %s by %s committed: %d change(s), batch %s",
                operation, employee_id, actor_id, result.applied_count, result.audit_batch_id,
                extra={**context, "batch_id": result.audit_batch_id},
            )
            return result

    raise ConflictError(f"Permissions of employee {employee_id} changed concurrently")


async def _flush(db: AsyncSession, employee_id: str) -> None:
    try:
        await db.flush()
    except IntegrityError:
        raise ConflictError(f"Permissions of employee {employee_id} changed concurrently")


# ── Validation ───────────────────────────────────────────────

def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required", error_code="EMPTY_REASON")
    return reason


def validate_changes(
    changes: list[PermissionChange],
    catalog: PermissionCatalog = default_catalog,
) -> list[tuple[str, bool]]:
    """Normalize and check every change; nothing is written if one fails."""
    if not changes:
        raise ValidationError("No changes submitted", error_code="EMPTY_BATCH")

    validated: list[tuple[str, bool]] = []
    seen: set[str] = set()
    for index, change in enumerate(changes):
        try:
            key = validate_grant_key(change.permission_key, catalog)
        except ValidationError as exc:
            exc.details = {**(exc.details or {}), "index": index}
            raise

        if not change.granted and classify_key(key) is not KeyKind.CONCRETE:
            raise ValidationError(
                f"Wildcard keys can be granted but not revoked: {key}",
                error_code="WILDCARD_REVOKE_NOT_ALLOWED",
                details={"permission_key": key, "index": index},
            )
        if key in seen:
            raise ValidationError(
                f"Permission {key} appears more than once in the batch",
                error_code="DUPLICATE_CHANGE",
                details={"permission_key": key, "index": index},
            )
        seen.add(key)
        validated.append((key, change.granted))
    return validated


# ── Operations ───────────────────────────────────────────────

async def apply_bulk_change(
    db: AsyncSession,
    employee_id: str,
    changes: list[PermissionChange],
    reason: str,
    actor_id: str,
    *,
    catalog: PermissionCatalog = default_catalog,
) -> MutationResult:
    """Apply a batch of individual overrides all-or-nothing."""
    reason = _require_reason(reason)
    validated = validate_changes(changes, catalog)
    await get_employee(db, employee_id)

    async def work() -> MutationResult:
        await _claim_version(db, employee_id)
        grants = await load_grants(db, employee_id)
        keys = [key for key, _ in validated]
        batch_id = str(uuid.uuid4())
        now = utcnow()

        await db.execute(
            delete(PermissionOverride).where(
                PermissionOverride.employee_id == employee_id,
                PermissionOverride.permission_key.in_(keys),
            )
            .execution_options(synchronize_session="fetch")
        )
        await _flush(db, employee_id)

        for key, granted in validated:
            if classify_key(key) is KeyKind.CONCRETE:
                old_value = check_permission(
                    grants.role_keys,
                    grants.overrides,
                    key,
                    legacy_prefix=settings.legacy_prefix_wildcards,
                ).allowed
            else:
                old_value = grants.overrides.get(key)

            db.add(PermissionOverride(
                employee_id=employee_id,
                permission_key=key,
                granted=granted,
                source="individual",
                reason=reason,
                changed_by=actor_id,
                changed_at=now,
            ))
            audit.record_change(
                db, batch_id,
                employee_id=employee_id,
                permission_key=key,
                action="granted" if granted else "revoked",
                old_value=old_value,
                new_value=granted,
                changed_by=actor_id,
                changed_at=now,
                reason=reason,
            )

        await _flush(db, employee_id)
        return MutationResult(
            employee_id=employee_id,
            audit_batch_id=batch_id,
            applied_count=len(validated),
        )

    return await _run_unit(db, employee_id, actor_id, "Bulk change", work)


async def _get_role(db: AsyncSession, role_id: str) -> Role:
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if not role:
        raise NotFoundError("Role", role_id)
    return role


async def assign_role(
    db: AsyncSession,
    employee_id: str,
    role_id: str,
    actor_id: str,
    reason: str | None = None,
) -> MutationResult:
    """Give an employee a role; re-assigning refreshes who/when and is audited."""
    await get_employee(db, employee_id)
    role = await _get_role(db, role_id)
    role_name, role_label = role.name, role.display_name

    async def work() -> MutationResult:
        await _claim_version(db, employee_id)
        batch_id = str(uuid.uuid4())
        now = utcnow()

        existing = (
            await db.execute(
                select(EmployeeRole).where(
                    EmployeeRole.employee_id == employee_id,
                    EmployeeRole.role_id == role_id,
                )
            )
        ).scalar_one_or_none()
        if existing:
            existing.assigned_by = actor_id
            existing.assigned_at = now
        else:
            db.add(EmployeeRole(
                employee_id=employee_id,
                role_id=role_id,
                assigned_by=actor_id,
                assigned_at=now,
            ))

        audit.record_change(
            db, batch_id,
            employee_id=employee_id,
            permission_key=f"role.{role_name}",
            action="role_assigned",
            old_value=existing is not None,
            new_value=True,
            role_id=role_id,
            changed_by=actor_id,
            changed_at=now,
            reason=reason or f"Assigned role: {role_label}",
        )
        await _flush(db, employee_id)
        return MutationResult(employee_id=employee_id, audit_batch_id=batch_id, applied_count=1)

    return await _run_unit(db, employee_id, actor_id, "Role assignment", work)


async def remove_role(
    db: AsyncSession,
    employee_id: str,
    role_id: str,
    actor_id: str,
    reason: str | None = None,
) -> MutationResult:
    await get_employee(db, employee_id)
    role = await _get_role(db, role_id)
    role_name, role_label = role.name, role.display_name

    async def work() -> MutationResult:
        await _claim_version(db, employee_id)
        assignment = (
            await db.execute(
                select(EmployeeRole).where(
                    EmployeeRole.employee_id == employee_id,
                    EmployeeRole.role_id == role_id,
                )
            )
        ).scalar_one_or_none()
        if not assignment:
            raise NotFoundError("Role assignment", f"{employee_id}/{role_id}")

        batch_id = str(uuid.uuid4())
        await db.delete(assignment)
        audit.record_change(
            db, batch_id,
            employee_id=employee_id,
            permission_key=f"role.{role_name}",
            action="role_removed",
            old_value=True,
            new_value=False,
            role_id=role_id,
            changed_by=actor_id,
            reason=reason or f"Removed role: {role_label}",
        )
        await _flush(db, employee_id)
        return MutationResult(employee_id=employee_id, audit_batch_id=batch_id, applied_count=1)

    return await _run_unit(db, employee_id, actor_id, "Role removal", work)


async def reset_to_role_defaults(
    db: AsyncSession,
    employee_id: str,
    actor_id: str,
    reason: str | None = None,
) -> MutationResult:
    """Clear every individual override so only role grants remain."""
    await get_employee(db, employee_id)
    reason = (reason or "").strip() or "Reset to role defaults"

    async def work() -> MutationResult:
        await _claim_version(db, employee_id)
        overrides = list(
            (
                await db.execute(
                    select(PermissionOverride)
                    .where(PermissionOverride.employee_id == employee_id)
                    .order_by(PermissionOverride.permission_key)
                )
            ).scalars().all()
        )
        if not overrides:
            return MutationResult(employee_id=employee_id, audit_batch_id=None, applied_count=0)

        batch_id = str(uuid.uuid4())
        now = utcnow()
        for override in overrides:
            audit.record_change(
                db, batch_id,
                employee_id=employee_id,
                permission_key=override.permission_key,
                action="revoked",
                old_value=override.granted,
                new_value=None,
                changed_by=actor_id,
                changed_at=now,
                reason=reason,
            )
            await db.delete(override)

        await _flush(db, employee_id)
        return MutationResult(
            employee_id=employee_id,
            audit_batch_id=batch_id,
            applied_count=len(overrides),
        )

    return await _run_unit(db, employee_id, actor_id, "Reset", work)
