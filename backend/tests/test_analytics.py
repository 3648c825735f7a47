"""Tests for permission analytics, comparison and export."""

import pytest

from app.auth.catalog import Action, PermissionCatalog, Resource
from app.auth.permissions import resolve_matrix
from app.schemas.permissions import PermissionChange
from app.services import analytics, mutations
from app.services.analytics import compare, percent, risk_level, summarize

VIEW = Action("view", "View")
CREATE = Action("create", "Create")
UPDATE = Action("update", "Update")
DELETE = Action("delete", "Delete")

FOUR_ACTIONS = PermissionCatalog([
    Resource("stock", "Stock", "database", (VIEW, CREATE, UPDATE, DELETE)),
])

TEN_KEYS = PermissionCatalog([
    Resource("sales", "Sales", "database", (VIEW, CREATE, UPDATE, DELETE)),
    Resource("stock", "Stock", "database", (VIEW, CREATE, UPDATE, DELETE)),
    Resource("reports", "Reports", "menu", (VIEW, CREATE)),
])


@pytest.mark.unit
class TestPercent:

    @pytest.mark.parametrize("part,whole,expected", [
        (3, 4, 75),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),    # 12.5 rounds half up
        (0, 5, 0),
        (5, 5, 100),
        (0, 0, 0),
    ])
    def test_rounding(self, part, whole, expected):
        assert percent(part, whole) == expected

    def test_risk_thresholds(self):
        assert risk_level(3, 4) == "medium"      # 75 <= 80
        assert risk_level(9, 10) == "high"
        assert risk_level(8, 10) == "medium"     # exactly 80% is not high
        assert risk_level(5, 10) == "low"        # exactly 50% is not medium
        assert risk_level(0, 0) == "low"


@pytest.mark.unit
class TestSummarize:

    def test_coverage_example(self):
        matrix = resolve_matrix(FOUR_ACTIONS, {"stock.view", "stock.create"}, {"stock.update": True})
        summary = summarize(matrix)

        assert summary.total == 4
        assert summary.granted == 3
        assert summary.role_granted == 2
        assert summary.individual_granted == 1
        assert summary.coverage_pct == 75
        assert summary.risk_level == "medium"
        assert [(c.name, c.granted, c.total, c.pct) for c in summary.per_category] == [
            ("Stock", 3, 4, 75),
        ]

    def test_nothing_granted(self):
        summary = summarize(resolve_matrix(TEN_KEYS, set(), {}))
        assert summary.coverage_pct == 0
        assert summary.risk_level == "low"
        assert [c.pct for c in summary.per_category] == [0, 0, 0]

    def test_admin_is_high_risk(self):
        summary = summarize(resolve_matrix(TEN_KEYS, {"*"}, {}))
        assert summary.coverage_pct == 100
        assert summary.risk_level == "high"


@pytest.mark.unit
class TestCompare:

    def test_single_difference_over_ten_keys(self):
        a = resolve_matrix(TEN_KEYS, {"stock.*"}, {"sales.create": True})
        b = resolve_matrix(TEN_KEYS, {"stock.*"}, {"sales.create": False})
        result = compare(a, b)

        assert result.similarity_pct == 90
        assert len(result.differences) == 1
        diff = result.differences[0]
        assert diff.permission_key == "sales.create"
        assert diff.a_has is True
        assert diff.b_has is False
        assert diff.category == "Sales"

    def test_identical(self):
        a = resolve_matrix(TEN_KEYS, {"sales.view"}, {})
        assert compare(a, a).similarity_pct == 100
        assert compare(a, a).differences == []

    def test_union_of_keys(self):
        a = resolve_matrix(FOUR_ACTIONS, {"stock.view"}, {})
        b = resolve_matrix(TEN_KEYS, set(), {})
        result = compare(a, b)
        assert [d.permission_key for d in result.differences] == ["stock.view"]
        assert result.similarity_pct == 90


@pytest.mark.integration
@pytest.mark.asyncio
class TestEmployeeAnalytics:

    async def test_recent_changes_counted(self, db_session, cashier, admin):
        await mutations.apply_bulk_change(
            db_session, cashier.id,
            [
                PermissionChange(permission_key="sales.delete", granted=True),
                PermissionChange(permission_key="pos.delete", granted=False),
            ],
            reason="Shift swap", actor_id=admin.id,
        )
        result = await analytics.employee_analytics(db_session, cashier.id)
        assert result.employee_id == cashier.id
        assert result.recent_changes == 2
        assert result.individual_granted == 1
        assert result.granted == result.role_granted + result.individual_granted

    async def test_compare_employees(self, db_session, cashier, make_employee, admin):
        twin = await make_employee("Cathy Cashier", roles=("cashier",))
        await mutations.apply_bulk_change(
            db_session, twin.id,
            [PermissionChange(permission_key="sales.approve", granted=True)],
            reason="Supervisor cover", actor_id=admin.id,
        )

        result = await analytics.compare_employees(db_session, cashier.id, twin.id)
        assert [d.permission_key for d in result.differences] == ["sales.approve"]
        assert result.differences[0].b_has is True
        assert result.employee_a == cashier.id

    async def test_export(self, db_session, cashier):
        export = await analytics.export_permissions(db_session, cashier.id)
        assert export.employee_name == "Carl Cashier"
        assert [r.name for r in export.roles] == ["cashier"]
        assert export.matrix.as_dict()["pos.access"] is True
        assert export.analytics.total == len(export.matrix.as_dict())
