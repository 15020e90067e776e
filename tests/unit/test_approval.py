"""
Unit tests for approval threshold lookup and approval permissions.
"""
import pytest

from models.approval import ApprovalCondition, ApprovalThreshold
from models.purchase_order import PurchaseOrder, PurchaseOrderItem
from models.workflow import WorkflowSettings
from lifecycle.approval import ApprovalResolver, condition_matches, order_condition_values


def _order(total: float, created_by="creator", supplier_category="food", category="grains") -> PurchaseOrder:
    return PurchaseOrder(
        id="po-1",
        po_number="PO-202603-0001",
        supplier_id="SUP-1",
        supplier_category=supplier_category,
        department="kitchen",
        currency="PHP",
        payment_terms="Net 30",
        items=[PurchaseOrderItem(id="l1", product_id="p1", product_name="Rice",
                                 category=category, quantity=1, unit_cost=total, total=total)],
        subtotal=total,
        total=total,
        status="pending_approval",
        created_by=created_by,
    )


@pytest.fixture
def two_tier_settings() -> WorkflowSettings:
    """[0, 10000) needs level 1, [10000, inf) needs level 3."""
    return WorkflowSettings(approval_thresholds=[
        ApprovalThreshold(id="t1", name="Tier 1", min_amount=0, max_amount=10000,
                          required_level=1, required_roles=["supervisor", "manager"]),
        ApprovalThreshold(id="t2", name="Tier 2", min_amount=10000, max_amount=None,
                          required_level=3, required_roles=["admin"]),
    ])


@pytest.mark.unit
class TestThresholdLookup:

    def test_ranges_are_half_open(self, two_tier_settings):
        resolver = ApprovalResolver(two_tier_settings)
        assert resolver.get_approval_threshold(0).id == "t1"
        assert resolver.get_approval_threshold(9999.99).id == "t1"
        assert resolver.get_approval_threshold(10000).id == "t2"
        assert resolver.get_approval_threshold(10_000_000).id == "t2"

    def test_inactive_thresholds_are_ignored(self):
        settings = WorkflowSettings(approval_thresholds=[
            ApprovalThreshold(id="off", name="Off", min_amount=0, required_roles=["admin"],
                              is_active=False),
        ])
        assert ApprovalResolver(settings).get_approval_threshold(50) is None

    def test_conditional_threshold_takes_precedence_when_listed_first(self):
        settings = WorkflowSettings(approval_thresholds=[
            ApprovalThreshold(
                id="it", name="IT equipment", min_amount=0, max_amount=10000,
                required_level=2, required_roles=["manager"],
                conditions=[ApprovalCondition(field="supplier_category", operator="equals", value="IT")],
            ),
            ApprovalThreshold(id="std", name="Standard", min_amount=0, max_amount=10000,
                              required_level=1, required_roles=["supervisor"]),
        ])
        resolver = ApprovalResolver(settings)
        assert resolver.threshold_for(_order(500, supplier_category="it")).id == "it"
        assert resolver.threshold_for(_order(500, supplier_category="food")).id == "std"

    def test_required_approvers(self, two_tier_settings):
        resolver = ApprovalResolver(two_tier_settings)
        assert resolver.get_required_approvers(_order(20000)) == ["admin"]

    def test_role_levels(self):
        resolver = ApprovalResolver(WorkflowSettings())
        assert resolver.role_level("admin") == 3
        assert resolver.role_level("manager") == 2
        assert resolver.role_level("unknown") == 0


@pytest.mark.unit
class TestConditions:

    @pytest.mark.parametrize("operator,value,expected", [
        ("equals", "FOOD", True),
        ("equals", "drinks", False),
        ("contains", "oo", True),
        ("in", ["drinks", "food"], True),
        ("in", ["drinks"], False),
        ("not_in", ["drinks"], True),
        ("not_in", ["food"], False),
    ])
    def test_operators(self, operator, value, expected):
        values = order_condition_values(_order(100))
        cond = ApprovalCondition(field="supplier_category", operator=operator, value=value)
        assert condition_matches(cond, values) is expected

    def test_product_category_collects_every_line(self):
        order = _order(100)
        order.items.append(PurchaseOrderItem(id="l2", product_id="p2", product_name="Oil",
                                             category="oils", quantity=1, unit_cost=1, total=1))
        assert order_condition_values(order)["product_category"] == ["grains", "oils"]


@pytest.mark.unit
class TestApprovalPermissions:

    def test_level_two_approver_within_limit_succeeds(self, two_tier_settings):
        resolver = ApprovalResolver(two_tier_settings)
        result = resolver.validate_approval_permissions(
            _order(5000), "approver", "manager", actor_max_amount=10000, actor_level=2,
        )
        assert result.can_approve
        assert result.errors == []
        assert result.user_level == 2
        assert result.required_level == 1

    def test_low_level_over_limit_reports_both_reasons(self, two_tier_settings):
        resolver = ApprovalResolver(two_tier_settings)
        result = resolver.validate_approval_permissions(
            _order(100000), "approver", "supervisor", actor_max_amount=10000, actor_level=1,
        )
        assert not result.can_approve
        assert "Insufficient approval level: 1 < 3 required" in result.errors
        assert "Purchase order amount (100000) exceeds your approval limit (10000)" in result.errors

    @pytest.mark.parametrize("role,level", [("employee", None), ("admin", None), ("admin", 99)])
    def test_creator_can_never_approve(self, two_tier_settings, role, level):
        resolver = ApprovalResolver(two_tier_settings)
        result = resolver.validate_approval_permissions(
            _order(100, created_by="u1"), "u1", role, actor_level=level,
        )
        assert not result.can_approve
        assert "Users cannot approve their own purchase orders" in result.errors

    def test_level_derived_from_role(self, two_tier_settings):
        resolver = ApprovalResolver(two_tier_settings)
        result = resolver.validate_approval_permissions(_order(500), "u2", "supervisor")
        assert result.can_approve
        assert result.user_level == 1

    def test_no_threshold_means_no_approval(self):
        settings = WorkflowSettings(approval_thresholds=[
            ApprovalThreshold(id="small", name="Small", min_amount=0, max_amount=1000,
                              required_roles=["supervisor"]),
        ])
        result = ApprovalResolver(settings).validate_approval_permissions(_order(5000), "u2", "admin")
        assert not result.can_approve
        assert result.errors == ["No approval threshold configured for amount 5000"]

    def test_unusual_role_is_a_warning_only(self, two_tier_settings):
        result = ApprovalResolver(two_tier_settings).validate_approval_permissions(
            _order(500), "u2", "purchaser", actor_level=1,
        )
        assert result.can_approve
        assert any("not among the usual approvers" in w for w in result.warnings)


@pytest.mark.unit
class TestAutoApprove:

    def test_auto_approve_threshold(self):
        settings = WorkflowSettings(approval_thresholds=[
            ApprovalThreshold(id="petty", name="Petty cash", min_amount=0, max_amount=500,
                              required_roles=["supervisor"], auto_approve=True),
        ])
        resolver = ApprovalResolver(settings)
        assert resolver.can_auto_approve(_order(100))
        assert not resolver.can_auto_approve(_order(600))

    def test_exclusion_blocks_auto_approve(self):
        settings = WorkflowSettings(approval_thresholds=[
            ApprovalThreshold(
                id="petty", name="Petty cash", min_amount=0, max_amount=500,
                required_roles=["supervisor"], auto_approve=True,
                auto_approve_exclusions=[
                    ApprovalCondition(field="product_category", operator="in", value=["alcohol"]),
                ],
            ),
        ])
        resolver = ApprovalResolver(settings)
        assert resolver.can_auto_approve(_order(100, category="grains"))
        assert not resolver.can_auto_approve(_order(100, category="alcohol"))
