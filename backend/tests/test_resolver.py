"""Tests for the resolver: rule precedence, wildcards and the DB-backed service."""

import pytest

from app.auth.catalog import Action, PermissionCatalog, Resource
from app.auth.permissions import check_permission, resolve_matrix
from app.middleware.exceptions import ConfigurationError, NotFoundError, ValidationError
from app.services import resolver

VIEW = Action("view", "View")
CREATE = Action("create", "Create")
DELETE = Action("delete", "Delete")
ACCESS = Action("access", "Access")

SMALL_CATALOG = PermissionCatalog([
    Resource("sales", "Sales", "database", (VIEW, CREATE, DELETE)),
    Resource("inventory", "Inventory", "database", (VIEW, CREATE, DELETE)),
    Resource("inventory_table", "Inventory Table", "database", (VIEW,)),
    Resource("pos", "Point of Sale", "database", (ACCESS, DELETE)),
])


def check(role_keys, overrides, key, **kwargs):
    return check_permission(set(role_keys), dict(overrides), key, **kwargs)


@pytest.mark.unit
class TestPrecedence:

    def test_nothing_held_denies_everything(self):
        matrix = resolve_matrix(SMALL_CATALOG, set(), {})
        assert not any(matrix.as_dict().values())
        assert all(cell.source == "role" for _, cell in matrix.cells())

    def test_role_exact_grants(self):
        result = check({"sales.view"}, {}, "sales.view")
        assert result.allowed
        assert result.source == "role"
        assert result.reason == "role_exact"

    def test_override_revoke_beats_role(self):
        result = check({"sales.view"}, {"sales.view": False}, "sales.view")
        assert not result.allowed
        assert result.source == "individual"
        assert result.reason == "individual_override"

    def test_override_grant_without_role(self):
        result = check(set(), {"sales.delete": True}, "sales.delete")
        assert result.allowed
        assert result.source == "individual"

    def test_override_beats_role_wildcard(self):
        role_keys = {"pos.*"}
        overrides = {"pos.delete": False}
        assert not check(role_keys, overrides, "pos.delete").allowed
        assert check(role_keys, overrides, "pos.access").allowed

    def test_no_match(self):
        result = check({"sales.view"}, {}, "sales.delete")
        assert not result.allowed
        assert result.reason == "no_match"
        assert result.matched_key is None


@pytest.mark.unit
class TestWildcards:

    def test_dot_wildcard_covers_resource(self):
        role_keys = {"inventory.*"}
        assert check(role_keys, {}, "inventory.view").allowed
        assert check(role_keys, {}, "inventory.delete").allowed
        assert not check(role_keys, {}, "sales.view").allowed

    def test_dot_wildcard_does_not_leak_to_prefixed_resource(self):
        assert not check({"inventory.*"}, {}, "inventory_table.view").allowed

    def test_legacy_prefix_matches_raw_prefix(self):
        result = check({"inventory*"}, {}, "inventory_table.view")
        assert result.allowed
        assert result.reason == "legacy_prefix"
        assert result.matched_key == "inventory*"

    def test_legacy_prefix_can_be_switched_off(self):
        assert not check({"inventory*"}, {}, "inventory_table.view", legacy_prefix=False).allowed

    def test_granting_override_wildcard(self):
        result = check(set(), {"sales.*": True}, "sales.create")
        assert result.allowed
        assert result.source == "individual"
        assert result.reason == "dot_wildcard"

    def test_revoking_override_wildcard_is_ignored(self):
        assert check({"pos.*"}, {"pos.*": False}, "pos.access").allowed

    def test_check_requires_concrete_key(self):
        with pytest.raises(ValidationError):
            check({"*"}, {}, "sales.*")


@pytest.mark.unit
class TestAdminWildcard:

    def test_role_admin_grants_everything(self):
        matrix = resolve_matrix(SMALL_CATALOG, {"*"}, {})
        assert all(matrix.as_dict().values())

    def test_admin_cannot_be_revoked_by_override(self):
        result = check({"*"}, {"sales.view": False}, "sales.view")
        assert result.allowed
        assert result.reason == "admin_wildcard"

    def test_admin_via_override(self):
        result = check(set(), {"*": True}, "pos.delete")
        assert result.allowed
        assert result.source == "individual"


@pytest.mark.unit
class TestResolveMatrix:

    def test_one_cell_per_catalog_key(self):
        matrix = resolve_matrix(SMALL_CATALOG, {"sales.view"}, {}, employee_id="emp-1")
        keys = [cell.permission_key for _, cell in matrix.cells()]
        assert keys == SMALL_CATALOG.keys
        assert matrix.employee_id == "emp-1"

    def test_deterministic(self):
        args = (SMALL_CATALOG, {"inventory.*", "sales.view"}, {"sales.view": False})
        assert resolve_matrix(*args) == resolve_matrix(*args)

    def test_sources_reported(self):
        matrix = resolve_matrix(SMALL_CATALOG, {"inventory.*"}, {"sales.delete": True})
        cells = {cell.permission_key: cell for _, cell in matrix.cells()}
        assert cells["inventory.view"].source == "role"
        assert cells["sales.delete"].source == "individual"
        assert cells["sales.delete"].has_permission

    def test_empty_catalog_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            resolve_matrix(PermissionCatalog([]), set(), {})


@pytest.mark.integration
@pytest.mark.asyncio
class TestResolverService:

    async def test_unknown_employee(self, db_session):
        with pytest.raises(NotFoundError):
            await resolver.resolve(db_session, "no-such-employee")

    async def test_employee_without_roles(self, db_session, newcomer):
        matrix = await resolver.resolve(db_session, newcomer.id)
        assert not any(matrix.as_dict().values())

    async def test_cashier_role(self, db_session, cashier):
        matrix = (await resolver.resolve(db_session, cashier.id)).as_dict()
        assert matrix["pos.delete"] is True
        assert matrix["sales.create"] is True
        assert matrix["sales.delete"] is False
        assert matrix["settings.manage"] is False

    async def test_admin_role(self, db_session, admin):
        matrix = await resolver.resolve(db_session, admin.id)
        assert all(matrix.as_dict().values())

    async def test_check_reports_matched_wildcard(self, db_session, cashier):
        result = await resolver.check(db_session, cashier.id, "POS:Delete")
        assert result.permission_key == "pos.delete"
        assert result.allowed
        assert result.reason == "dot_wildcard"
        assert result.matched_key == "pos.*"

    async def test_roles_union(self, db_session, make_employee):
        employee = await make_employee("Dual Role", roles=("cashier", "inventory_clerk"))
        matrix = (await resolver.resolve(db_session, employee.id)).as_dict()
        assert matrix["pos.access"] and matrix["suppliers.delete"]

    async def test_generation_starts_at_zero(self, db_session, newcomer):
        assert await resolver.get_generation(db_session, newcomer.id) == 0
