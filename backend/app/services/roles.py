"""Role Store service — templates, custom roles and system role seeding.

System roles (is_system) are written only by `seed_system_roles()` and
are immutable through the API.  Editing a custom role's keys moves every
holder to a new cache generation so no stale matrix survives the edit.
"""

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.catalog import PermissionCatalog, catalog as default_catalog
from app.auth.permissions import validate_grant_key
from app.auth.role_seed import SEED_VERSION, SYSTEM_ROLES
from app.middleware.exceptions import (
    ConfigurationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from app.models.grant import EmployeeRole
from app.models.role import Role, RolePermission
from app.schemas.role import RoleClone, RoleCreate, RoleDetail, RoleUpdate
from app.services.mutations import bump_versions
from app.utils.cache import invalidate_employee

logger = logging.getLogger(__name__)


def role_detail(role: Role) -> RoleDetail:
    return RoleDetail(
        id=role.id,
        name=role.name,
        display_name=role.display_name,
        description=role.description,
        is_template=role.is_template,
        is_system=role.is_system,
        permission_count=role.permission_count,
        permission_keys=sorted(role.permission_keys),
        created_at=role.created_at,
        updated_at=role.updated_at,
    )


def _validate_keys(keys: list[str], catalog: PermissionCatalog) -> set[str]:
    return {validate_grant_key(key, catalog) for key in keys}


def _ensure_mutable(role: Role) -> None:
    if role.is_system:
        raise ValidationError(
            f"System role '{role.name}' cannot be modified",
            error_code="SYSTEM_ROLE_IMMUTABLE",
            details={"role_id": role.id},
        )


async def _ensure_name_free(db: AsyncSession, name: str) -> None:
    taken = (await db.execute(select(Role.id).where(Role.name == name))).scalar()
    if taken:
        raise ValidationError(
            f"Role name '{name}' is already taken",
            error_code="ROLE_NAME_TAKEN",
            details={"name": name},
        )


async def _holders(db: AsyncSession, role_id: str) -> list[str]:
    result = await db.execute(
        select(EmployeeRole.employee_id).where(EmployeeRole.role_id == role_id)
    )
    return list(result.scalars().all())


async def _commit(db: AsyncSession) -> None:
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Role store changed concurrently", error_code="DUPLICATE_RECORD")


def _replace_keys(role: Role, keys: set[str]) -> None:
    current = {p.permission_key: p for p in role.permissions}
    for key in set(current) - keys:
        role.permissions.remove(current[key])
    for key in sorted(keys - set(current)):
        role.permissions.append(RolePermission(permission_key=key))


# ── Queries ──────────────────────────────────────────────────

async def list_roles(
    db: AsyncSession,
    *,
    templates_only: bool = False,
    include_custom: bool = True,
) -> list[Role]:
    """System roles first, then by display name.

    `templates_only` drops roles not marked reusable; `include_custom=False`
    keeps only the seeded system roles.
    """
    stmt = select(Role)
    if templates_only:
        stmt = stmt.where(Role.is_template == True)  # noqa: E712
    if not include_custom:
        stmt = stmt.where(Role.is_system == True)  # noqa: E712
    stmt = stmt.order_by(Role.is_system.desc(), Role.display_name)
    return list((await db.execute(stmt)).scalars().all())


async def get_role(db: AsyncSession, role_id: str) -> Role:
    role = (await db.execute(select(Role).where(Role.id == role_id))).scalar_one_or_none()
    if not role:
        raise NotFoundError("Role", role_id)
    return role


# ── Writes ───────────────────────────────────────────────────

async def create_role(
    db: AsyncSession,
    body: RoleCreate,
    *,
    catalog: PermissionCatalog = default_catalog,
) -> Role:
    keys = _validate_keys(body.permission_keys, catalog)
    await _ensure_name_free(db, body.name)

    role = Role(
        name=body.name,
        display_name=body.display_name,
        description=body.description,
        is_template=body.is_template,
        is_system=False,
        permissions=[RolePermission(permission_key=key) for key in sorted(keys)],
    )
    db.add(role)
    await _commit(db)
    await db.refresh(role)
    logger.info(f"Created role {role.name} with {len(keys)} permission(s)")
    return role


async def update_role(
    db: AsyncSession,
    role_id: str,
    body: RoleUpdate,
    *,
    catalog: PermissionCatalog = default_catalog,
) -> Role:
    role = await get_role(db, role_id)
    _ensure_mutable(role)

    updates = body.model_dump(exclude_unset=True)
    keys = updates.pop("permission_keys", None)
    new_keys = _validate_keys(keys, catalog) if keys is not None else None

    for field, value in updates.items():
        setattr(role, field, value)

    holders: list[str] = []
    if new_keys is not None and new_keys != role.permission_keys:
        _replace_keys(role, new_keys)
        holders = await _holders(db, role.id)
        await bump_versions(db, holders)

    await _commit(db)
    await invalidate_employee(*holders)
    await db.refresh(role)
    if holders:
        logger.info(f"Role {role.name} changed, invalidated {len(holders)} holder(s)")
    return role


async def delete_role(db: AsyncSession, role_id: str) -> None:
    role = await get_role(db, role_id)
    _ensure_mutable(role)

    in_use = (
        await db.execute(
            select(func.count(EmployeeRole.id)).where(EmployeeRole.role_id == role_id)
        )
    ).scalar() or 0
    if in_use:
        raise ValidationError(
            f"Role '{role.name}' is still assigned to {in_use} employee(s)",
            error_code="ROLE_IN_USE",
            details={"role_id": role_id, "assigned": in_use},
        )

    await db.delete(role)
    await _commit(db)
    logger.info(f"Deleted role {role.name}")


async def clone_role(db: AsyncSession, role_id: str, body: RoleClone) -> Role:
    """Copy any role (system included) into a new editable custom role."""
    source = await get_role(db, role_id)
    await _ensure_name_free(db, body.name)

    role = Role(
        name=body.name,
        display_name=body.display_name or f"{source.display_name} (copy)",
        description=source.description,
        is_template=True,
        is_system=False,
        permissions=[
            RolePermission(permission_key=key) for key in sorted(source.permission_keys)
        ],
    )
    db.add(role)
    await _commit(db)
    await db.refresh(role)
    logger.info(f"Cloned role {source.name} into {role.name}")
    return role


# ── Seeding ──────────────────────────────────────────────────

async def seed_system_roles(
    db: AsyncSession,
    *,
    catalog: PermissionCatalog = default_catalog,
    roles: list[dict] | None = None,
    seed_version: int = SEED_VERSION,
) -> int:
    """Create or re-synchronise the system role templates.

    Idempotent: roles already at `seed_version` are left alone.  A seed
    key the catalog does not know is a deployment defect and raises
    ConfigurationError before anything is written.

    Returns the number of roles created or updated.
    """
    roles = SYSTEM_ROLES if roles is None else roles

    planned: list[tuple[dict, set[str]]] = []
    for seed in roles:
        try:
            keys = {validate_grant_key(key, catalog, allow_legacy=True) for key in seed["permissions"]}
        except ValidationError as exc:
            raise ConfigurationError(
                f"System role '{seed['name']}' references {exc.message}"
            )
        planned.append((seed, keys))

    changed = 0
    holders: list[str] = []
    for seed, keys in planned:
        role = (
            await db.execute(select(Role).where(Role.name == seed["name"]))
        ).scalar_one_or_none()

        if role is None:
            db.add(Role(
                name=seed["name"],
                display_name=seed["display_name"],
                description=seed.get("description"),
                is_template=True,
                is_system=True,
                seed_version=seed_version,
                permissions=[RolePermission(permission_key=key) for key in sorted(keys)],
            ))
            changed += 1
            continue

        if role.is_system and (role.seed_version or 0) >= seed_version:
            continue

        role.display_name = seed["display_name"]
        role.description = seed.get("description")
        role.is_template = True
        role.is_system = True
        role.seed_version = seed_version
        if keys != role.permission_keys:
            _replace_keys(role, keys)
            role_holders = await _holders(db, role.id)
            await bump_versions(db, role_holders)
            holders.extend(role_holders)
        changed += 1

    await _commit(db)
    await invalidate_employee(*holders)
    logger.info(f"Seeded system roles (version {seed_version}): {changed} created or updated")
    return changed
