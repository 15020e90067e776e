"""
Unit tests for receiving tolerance validation.
"""
from datetime import datetime, timedelta, timezone

import pytest

from models.receiving import DamageReport, ReceiptItem, ReceivingContext
from models.workflow import ReceivingSettings, ToleranceSettings
from lifecycle.tolerance import (
    ReceivingToleranceValidator,
    calculate_receiving_statistics,
    days_until,
    generate_recommendations,
    parse_timestamp,
    validate_receiving,
)

RECEIPT_DATE = "2026-03-01T09:00:00+00:00"


def _item(received, ordered=10, previous=0, line="l1", **kwargs) -> ReceiptItem:
    return ReceiptItem(
        purchase_order_item_id=line,
        product_id=f"p-{line}",
        product_name=f"Product {line}",
        ordered_quantity=ordered,
        received_quantity=received,
        previously_received_quantity=previous,
        **kwargs,
    )


def _context(partial=False, role="employee", previous_receipts=0, reason=None) -> ReceivingContext:
    return ReceivingContext(
        purchase_order_id="po-1",
        user_id="u1",
        user_role=role,
        is_partial_receipt=partial,
        previous_receipts_count=previous_receipts,
        partial_reason=reason,
        receipt_date=RECEIPT_DATE,
    )


def _codes(issues) -> list[str]:
    return [i.code for i in issues]


def _days_from_receipt(days: int) -> str:
    return (parse_timestamp(RECEIPT_DATE) + timedelta(days=days)).date().isoformat()


@pytest.mark.unit
class TestQuantityTolerance:

    def test_exact_receipt_is_clean(self):
        result = validate_receiving([_item(10)], _context())
        assert result.is_valid
        assert result.can_proceed
        assert not result.requires_approval
        assert result.errors == []
        assert result.warnings == []

    def test_over_receiving_within_tolerance_needs_approval_not_error(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=10, require_approval=True, approval_roles=["manager"], block_threshold=None,
        ))
        result = validate_receiving([_item(15)], _context(), settings)

        assert result.is_valid
        assert result.requires_approval
        assert result.can_proceed
        assert result.required_roles == ["manager"]
        assert "OVER_RECEIVING_APPROVAL_REQUIRED" in _codes(result.warnings)

    def test_over_receiving_past_block_threshold_is_blocking(self):
        # Default block threshold is 10% of ordered
        result = validate_receiving([_item(12)], _context())
        assert not result.is_valid
        assert "OVER_RECEIVING_BLOCKED" in _codes(result.errors)

    def test_over_receiving_not_allowed_without_approval_or_auto_accept(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=5, require_approval=False, auto_accept=False, block_threshold=None,
        ))
        result = validate_receiving([_item(11)], _context(), settings)
        assert "OVER_RECEIVING_NOT_ALLOWED" in _codes(result.errors)

    def test_over_receiving_auto_accepted_beyond_tolerance(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=5, require_approval=False, auto_accept=True, block_threshold=None,
        ))
        result = validate_receiving([_item(11)], _context(), settings)
        assert result.is_valid
        assert not result.requires_approval

    def test_over_receiving_between_warning_and_tolerance_warns(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=50, warning_threshold=10, block_threshold=None,
        ))
        result = validate_receiving([_item(12)], _context(), settings)
        assert result.is_valid
        assert "OVER_RECEIVING_WARNING" in _codes(result.warnings)
        assert result.adjustments[0].adjustment_type == "quantity"

    def test_fixed_tolerance_uses_absolute_units(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            type="fixed", value=2, warning_threshold=1, block_threshold=3,
        ))
        assert validate_receiving([_item(13)], _context(), settings).is_valid
        assert not validate_receiving([_item(14)], _context(), settings).is_valid

    def test_previously_received_counts_toward_variance(self):
        result = validate_receiving([_item(6, previous=6)], _context())
        assert "OVER_RECEIVING_BLOCKED" in _codes(result.errors)

    def test_revalidating_completed_line_has_no_over_receiving(self):
        result = validate_receiving(
            [_item(0, previous=10), _item(1, line="l2", ordered=1)], _context(),
        )
        assert not any(c.startswith("OVER_RECEIVING") for c in _codes(result.errors + result.warnings))

    def test_under_receiving_on_final_receipt_warns(self):
        settings = ReceivingSettings(under_receiving=ToleranceSettings(
            value=10, require_approval=False, auto_accept=False, warning_threshold=5,
        ))
        result = validate_receiving([_item(8)], _context(partial=False), settings)
        assert result.is_valid
        assert "UNDER_RECEIVING_SIGNIFICANT" in _codes(result.warnings)

    def test_under_receiving_auto_accepted_by_default(self):
        result = validate_receiving([_item(5)], _context(partial=False))
        assert result.is_valid
        assert result.can_proceed
        assert "UNDER_RECEIVING_SIGNIFICANT" not in _codes(result.warnings)
        assert not result.requires_approval

    def test_under_receiving_ignored_for_partial_receipt(self):
        result = validate_receiving([_item(3)], _context(partial=True, reason="Back-ordered"))
        assert not any(c.startswith("UNDER_RECEIVING") for c in _codes(result.warnings))

    def test_under_receiving_requiring_approval(self):
        settings = ReceivingSettings(under_receiving=ToleranceSettings(
            value=10, require_approval=True, approval_roles=["supervisor"], warning_threshold=5,
        ))
        result = validate_receiving([_item(5)], _context(), settings)
        assert result.requires_approval
        assert result.required_roles == ["supervisor"]


@pytest.mark.unit
class TestQualityExpiryDamage:

    def test_required_quality_check_missing_for_authorised_role_warns(self):
        settings = ReceivingSettings()
        settings.quality_check.require_quality_check = True
        result = validate_receiving([_item(10)], _context(role="employee"), settings)
        assert "QUALITY_CHECK_REQUIRED" in _codes(result.warnings)

    def test_required_quality_check_by_unauthorised_role_errors(self):
        settings = ReceivingSettings()
        settings.quality_check.require_quality_check = True
        settings.quality_check.quality_check_roles = ["manager"]
        result = validate_receiving([_item(10)], _context(role="employee"), settings)
        assert "QUALITY_CHECK_UNAUTHORIZED" in _codes(result.errors)

    def test_rejected_quality_with_reject_handling_errors(self):
        settings = ReceivingSettings()
        settings.quality_check.damaged_item_handling = "reject"
        result = validate_receiving([_item(10, quality_status="rejected")], _context(), settings)
        assert "QUALITY_CHECK_FAILED" in _codes(result.errors)

    def test_rejected_quality_with_partial_accept_warns(self):
        result = validate_receiving([_item(10, quality_status="rejected")], _context())
        assert "QUALITY_CHECK_CONDITIONAL" in _codes(result.warnings)

    def test_expired_items_rejected(self):
        result = validate_receiving([_item(10, expiry_date=_days_from_receipt(-3))], _context())
        assert "EXPIRED_ITEMS_REJECTED" in _codes(result.errors)

    def test_expired_items_accepted_when_not_rejecting(self):
        settings = ReceivingSettings()
        settings.expiry.reject_expired_items = False
        result = validate_receiving(
            [_item(10, expiry_date=_days_from_receipt(-3))], _context(), settings,
        )
        assert result.is_valid
        assert "EXPIRED_ITEMS_ACCEPTED" in _codes(result.warnings)

    def test_near_expiry_requires_approval(self):
        result = validate_receiving([_item(10, expiry_date=_days_from_receipt(3))], _context())
        assert result.requires_approval
        assert "manager" in result.required_roles
        assert "NEAR_EXPIRY_APPROVAL_REQUIRED" in _codes(result.warnings)

    def test_near_expiry_warning_when_approval_not_offered(self):
        settings = ReceivingSettings()
        settings.expiry.accept_near_expiry_with_approval = False
        result = validate_receiving(
            [_item(10, expiry_date=_days_from_receipt(3))], _context(), settings,
        )
        assert not result.requires_approval
        assert "NEAR_EXPIRY_WARNING" in _codes(result.warnings)

    def test_expiring_within_warning_window(self):
        result = validate_receiving([_item(10, expiry_date=_days_from_receipt(20))], _context())
        assert "EXPIRY_WARNING" in _codes(result.warnings)
        assert not result.requires_approval

    def test_distant_expiry_is_silent(self):
        result = validate_receiving([_item(10, expiry_date=_days_from_receipt(200))], _context())
        assert result.warnings == []

    def test_damaged_without_report_errors(self):
        result = validate_receiving([_item(10, condition="damaged")], _context())
        assert "DAMAGE_REPORT_REQUIRED" in _codes(result.errors)

    def test_damaged_with_unknown_category_warns(self):
        report = DamageReport(category="Dented", description="Cans dented", severity="minor")
        result = validate_receiving([_item(10, condition="damaged", damage_report=report)], _context())
        assert result.is_valid
        assert "INVALID_DAMAGE_CATEGORY" in _codes(result.warnings)
        assert any(a.adjustment_type == "damage" for a in result.adjustments)

    def test_damage_photographs_required(self):
        settings = ReceivingSettings()
        settings.damage.require_photographs = True
        report = DamageReport(category="Water Damage", description="Wet boxes", severity="moderate")
        result = validate_receiving(
            [_item(10, condition="damaged", damage_report=report)], _context(), settings,
        )
        assert "DAMAGE_PHOTOS_REQUIRED" in _codes(result.errors)


@pytest.mark.unit
class TestReceiptRules:

    def test_nothing_received_is_blocking(self):
        result = validate_receiving([_item(0), _item(0, line="l2")], _context())
        assert not result.is_valid
        assert not result.can_proceed
        assert "NO_ITEMS_RECEIVED" in _codes(result.errors)

    def test_duplicate_lines_rejected(self):
        result = validate_receiving([_item(5), _item(5)], _context())
        assert "DUPLICATE_RECEIPT_ITEMS" in _codes(result.errors)

    def test_role_without_receiving_permission(self):
        result = validate_receiving([_item(10)], _context(role="cashier"))
        assert "INSUFFICIENT_PERMISSIONS" in _codes(result.errors)

    def test_partial_requires_reason(self):
        result = validate_receiving([_item(4)], _context(partial=True))
        assert "PARTIAL_REASON_REQUIRED" in _codes(result.errors)

    def test_partial_disallowed(self):
        settings = ReceivingSettings()
        settings.partial_receiving.allow_partial_receipts = False
        result = validate_receiving([_item(4)], _context(partial=True, reason="Short"), settings)
        assert "PARTIAL_RECEIVING_NOT_ALLOWED" in _codes(result.errors)

    def test_max_partial_receipts(self):
        result = validate_receiving(
            [_item(1)], _context(partial=True, reason="Trickle", previous_receipts=5),
        )
        assert "MAX_PARTIAL_RECEIPTS_EXCEEDED" in _codes(result.errors)

    def test_required_roles_are_deduplicated(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=10, approval_roles=["manager"], block_threshold=None,
        ))
        items = [_item(15), _item(15, line="l2", expiry_date=_days_from_receipt(2))]
        result = ReceivingToleranceValidator(settings).validate(items, _context())
        assert result.required_roles == ["manager"]


@pytest.mark.unit
class TestReporting:

    def test_days_until_rounds_up(self):
        as_of = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        assert days_until("2026-03-02", as_of) == 1
        assert days_until("2026-03-01", as_of) == 0
        assert days_until("2026-02-27", as_of) == -2

    def test_statistics(self):
        items = [
            _item(10),
            _item(2, line="l2", ordered=4),
            _item(0, line="l3", ordered=5, condition="damaged"),
        ]
        stats = calculate_receiving_statistics(items, parse_timestamp(RECEIPT_DATE))
        assert stats.total_items == 3
        assert stats.fully_received_items == 1
        assert stats.partially_received_items == 1
        assert stats.damaged_items == 1
        assert stats.completion_percentage == pytest.approx(200 / 3)
        assert stats.total_variance == -7

    def test_recommendations_for_approval_and_over_receipt(self):
        settings = ReceivingSettings(over_receiving=ToleranceSettings(
            value=10, block_threshold=None,
        ))
        items = [_item(15)]
        result = validate_receiving(items, _context(), settings)
        recs = generate_recommendations(result, items, parse_timestamp(RECEIPT_DATE))
        assert "Obtain required approvals before completing receipt" in recs
        assert "Verify over-received quantities with delivery documentation" in recs
