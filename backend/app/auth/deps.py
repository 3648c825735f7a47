"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_principal            → decode the bearer JWT, return the Principal
  require_permission(...)  → restrict to callers holding ALL listed keys

Permission checks go through the engine's own resolver, so the admin
keys (`permissions.view`, `permissions.manage`, `roles.manage`) are
granted and revoked like any other catalog key.
"""

from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.jwt import decode_token
from app.database import get_db
from app.middleware.exceptions import NotFoundError, PermissionDeniedError
from app.services import resolver

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


@dataclass
class Principal:
    """The authenticated caller."""
    employee_id: str
    super_admin: bool = False
    claims: dict = field(default_factory=dict, repr=False)


# ── Core principal dependency ───────────────────────────────

async def get_principal(token: str = Depends(oauth2_scheme)) -> Principal:
    payload = decode_token(token)
    employee_id: str | None = payload.get("sub")
    if not employee_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Principal(
        employee_id=employee_id,
        super_admin=bool(payload.get("super_admin", False)),
        claims=payload,
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*keys: str):
    """Dependency factory: restrict to principals who hold ALL listed keys.

    Usage:
        @router.post("/employees/{employee_id}/bulk")
        async def bulk(
            principal: Principal = Depends(require_permission("permissions.manage")),
        ):
            ...
    """
    async def _check(
        principal: Principal = Depends(get_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        if principal.super_admin:
            return principal

        missing = []
        for key in keys:
            try:
                result = await resolver.check(db, principal.employee_id, key)
            except NotFoundError:
                # Token for an employee the directory no longer knows
                raise PermissionDeniedError("Caller is not a known employee")
            if not result.allowed:
                missing.append(result.permission_key)

        if missing:
            raise PermissionDeniedError(
                f"Missing permissions: {', '.join(missing)}",
                details={"missing": missing},
            )
        return principal

    return _check
