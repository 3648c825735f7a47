"""Role templates router — the Role Store's admin surface.

Endpoints:
    GET    /api/roles/templates              List role templates
    POST   /api/roles/templates              Create a custom role
    GET    /api/roles/templates/{id}         Role detail with keys
    PATCH  /api/roles/templates/{id}         Update a custom role
    DELETE /api/roles/templates/{id}         Delete an unassigned custom role
    POST   /api/roles/templates/{id}/clone   Copy any role into a custom role
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.deps import Principal, require_permission
from app.database import get_db
from app.schemas.role import RoleClone, RoleCreate, RoleDetail, RoleSummary, RoleUpdate
from app.services import roles as role_store
from app.services.roles import role_detail

router = APIRouter()

VIEW = "roles.view"
MANAGE = "roles.manage"


@router.get("/templates", response_model=list[RoleSummary])
async def list_templates(
    include_custom: bool = Query(True),
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return await role_store.list_roles(db, include_custom=include_custom)


@router.post("/templates", response_model=RoleDetail, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: RoleCreate,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(MANAGE)),
):
    role = await role_store.create_role(db, body)
    return role_detail(role)


@router.get("/templates/{role_id}", response_model=RoleDetail)
async def get_template(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(VIEW)),
):
    return role_detail(await role_store.get_role(db, role_id))


@router.patch("/templates/{role_id}", response_model=RoleDetail)
async def update_template(
    role_id: str,
    body: RoleUpdate,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(MANAGE)),
):
    role = await role_store.update_role(db, role_id, body)
    return role_detail(role)


@router.delete("/templates/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    role_id: str,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(MANAGE)),
):
    await role_store.delete_role(db, role_id)


@router.post(
    "/templates/{role_id}/clone",
    response_model=RoleDetail,
    status_code=status.HTTP_201_CREATED,
)
async def clone_template(
    role_id: str,
    body: RoleClone,
    db: AsyncSession = Depends(get_db),
    _principal: Principal = Depends(require_permission(MANAGE)),
):
    role = await role_store.clone_role(db, role_id, body)
    return role_detail(role)
