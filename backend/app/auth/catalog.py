"""Permission Catalog — the static registry of resources and actions.

Every concrete permission key is `<resource>.<action>` for an action the
resource owns.  Resources are grouped by type the way the back office
menu is: `menu` entries only gate access, `database` entries carry CRUD,
`feature` entries carry the wider action set.

The catalog is code, validated at import: a broken catalog is a
deployment error, not something to recover from at request time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from app.middleware.exceptions import ConfigurationError

_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")


@dataclass(frozen=True)
class Action:
    name: str
    display_name: str


@dataclass(frozen=True)
class Resource:
    name: str
    display_name: str
    resource_type: str
    actions: tuple[Action, ...] = field(default_factory=tuple)

    def key(self, action: str) -> str:
        return f"{self.name}.{action}"

    @property
    def keys(self) -> list[str]:
        return [self.key(a.name) for a in self.actions]


class PermissionCatalog:
    """Ordered, validated set of resources."""

    def __init__(self, resources: list[Resource]):
        self._resources: dict[str, Resource] = {}
        self._keys: dict[str, tuple[Resource, Action]] = {}

        for resource in resources:
            if not _NAME_RE.match(resource.name):
                raise ConfigurationError(f"Invalid resource name: {resource.name!r}")
            if resource.name in self._resources:
                raise ConfigurationError(f"Duplicate resource: {resource.name}")
            if not resource.actions:
                raise ConfigurationError(f"Resource {resource.name} has no actions")
            self._resources[resource.name] = resource
            for action in resource.actions:
                if not _NAME_RE.match(action.name):
                    raise ConfigurationError(
                        f"Invalid action name {action.name!r} on {resource.name}"
                    )
                key = resource.key(action.name)
                if key in self._keys:
                    raise ConfigurationError(f"Duplicate permission key: {key}")
                self._keys[key] = (resource, action)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    @property
    def resources(self) -> list[Resource]:
        return list(self._resources.values())

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    def has_resource(self, name: str) -> bool:
        return name in self._resources

    def resource(self, name: str) -> Resource:
        try:
            return self._resources[name]
        except KeyError:
            raise ConfigurationError(f"Catalog has no resource {name!r}") from None

    def lookup(self, key: str) -> tuple[Resource, Action]:
        try:
            return self._keys[key]
        except KeyError:
            raise ConfigurationError(f"Catalog has no permission {key!r}") from None


# ── Default retail catalog ──────────────────────────────────

VIEW = Action("view", "View")
CREATE = Action("create", "Create")
UPDATE = Action("update", "Update")
DELETE = Action("delete", "Delete")
EXPORT = Action("export", "Export")
IMPORT = Action("import", "Import")
APPROVE = Action("approve", "Approve")
MANAGE = Action("manage", "Manage")
ACCESS = Action("access", "Access")

CRUD = (VIEW, CREATE, UPDATE, DELETE)

DEFAULT_RESOURCES: list[Resource] = [
    # Menu
    Resource("dashboard", "Dashboard", "menu", (ACCESS,)),
    Resource("reports", "Reports", "menu", (ACCESS, VIEW, EXPORT)),
    # Operational data
    Resource("pos", "Point of Sale", "database", (ACCESS, *CRUD)),
    Resource("sales", "Sales", "database", (*CRUD, APPROVE, EXPORT)),
    Resource("returns", "Returns", "database", (*CRUD, APPROVE)),
    Resource("inventory", "Inventory", "database", (*CRUD, IMPORT, EXPORT)),
    Resource("products", "Products", "database", (*CRUD, IMPORT, EXPORT)),
    Resource("categories", "Categories", "database", CRUD),
    Resource("suppliers", "Suppliers", "database", CRUD),
    Resource("customers", "Customers", "database", (*CRUD, EXPORT)),
    Resource("warranty", "Warranty", "database", CRUD),
    Resource("employees", "Employees", "database", CRUD),
    # Administration
    Resource("permissions", "Permissions", "feature", (VIEW, MANAGE)),
    Resource("roles", "Roles", "feature", (VIEW, MANAGE)),
    Resource("settings", "Settings", "feature", (VIEW, MANAGE)),
    Resource("system_backup", "System Backup", "feature", (VIEW, MANAGE)),
]

catalog = PermissionCatalog(DEFAULT_RESOURCES)
