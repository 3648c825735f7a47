"""Management CLI for role seeding and audit checks.

Usage:
    python -m app.cli seed-roles                  # Create / re-sync system roles
    python -m app.cli list-roles                  # Show roles and key counts
    python -m app.cli verify-audit <employee_id>  # Replay audit log vs live grants
"""

import asyncio
import sys

from app.config import settings
from app.database import async_session, engine
from app.services import audit
from app.services.roles import list_roles, seed_system_roles
from app.utils.logging import configure_logging


async def _seed_roles() -> int:
    async with async_session() as db:
        changed = await seed_system_roles(db)
    print(f"  {changed} system role(s) created or updated")
    return 0


async def _list_roles() -> int:
    async with async_session() as db:
        roles = await list_roles(db)
    for role in roles:
        kind = "system" if role.is_system else "custom"
        print(f"  {role.name:<20} {kind:<7} {role.permission_count:>3} key(s)  {role.display_name}")
    print(f"\n{len(roles)} role(s)")
    return 0


async def _verify_audit(employee_id: str) -> int:
    async with async_session() as db:
        result = await audit.verify(db, employee_id)
    print(f"  Replayed {result.entries_replayed} entries for {employee_id}")
    if result.consistent:
        print("  OK")
        return 0
    for key in result.override_mismatches:
        print(f"  override mismatch: {key}")
    for role_id in result.role_mismatches:
        print(f"  role mismatch: {role_id}")
    return 1


async def _run(coro) -> int:
    try:
        return await coro
    finally:
        await engine.dispose()


def main(argv: list[str]) -> int:
    configure_logging(settings.log_level, json_output=False)
    cmd = argv[0] if argv else ""
    if cmd == "seed-roles":
        return asyncio.run(_run(_seed_roles()))
    if cmd == "list-roles":
        return asyncio.run(_run(_list_roles()))
    if cmd == "verify-audit" and len(argv) > 1:
        return asyncio.run(_run(_verify_audit(argv[1])))
    print("Usage: python -m app.cli [seed-roles|list-roles|verify-audit <employee_id>]")
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
