"""
Receiving tolerance validation.

Evaluates a proposed receipt against the ordered quantities and the
configured ReceivingSettings. Pure: settings and the receipt date are passed
in, nothing is read from the ledger or from ambient state.

Per item (in order):
  Over-receiving   block threshold, tolerance (approval / auto-accept), warning
  Under-receiving  only for final receipts; shortfalls warn rather than block
  Quality          missing decision, failed check
  Expiry           expired, near-expiry, expiring soon
  Damage           report required, photographs required, unknown category

Whole receipt:
  Partial rules    enabled, max receipts, reason required
  Constraints      something received, no duplicate lines, role may receive
"""
import logging
import math
from datetime import datetime, timezone
from typing import Optional

from models.receiving import (
    ReceiptItem,
    ReceivingAdjustment,
    ReceivingContext,
    ReceivingStatistics,
    ReceivingValidationResult,
    ValidationIssue,
)
from models.workflow import (
    DamageSettings,
    ExpirySettings,
    QualityCheckSettings,
    ReceivingSettings,
    ToleranceSettings,
)

logger = logging.getLogger(__name__)

# Used by recommendations: items expiring within this many days get flagged.
RECOMMEND_EXPIRY_DAYS = 30


def _error(code: str, message: str, field: Optional[str] = None, item_id: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        code=code, message=message, severity="error",
        field=field, item_id=item_id, blocking=True,
    )


def _warning(
    code: str,
    message: str,
    field: Optional[str] = None,
    item_id: Optional[str] = None,
    recommendation: Optional[str] = None,
) -> ValidationIssue:
    return ValidationIssue(
        code=code, message=message, severity="warning",
        field=field, item_id=item_id, recommendation=recommendation, blocking=False,
    )


def _fmt(qty: float) -> str:
    return f"{qty:g}"


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO date or datetime string; naive values are taken as UTC."""
    if not value:
        return datetime.now(timezone.utc)
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def days_until(expiry_date: str, as_of: datetime) -> int:
    """Whole days from as_of to expiry_date, rounded up (ceil)."""
    delta = parse_timestamp(expiry_date) - as_of
    return math.ceil(delta.total_seconds() / 86400)


def _threshold(config: ToleranceSettings, ordered: float, value: float) -> float:
    if config.type == "percentage":
        return ordered * value / 100
    return value


class ReceivingToleranceValidator:
    """
    Produces a ReceivingValidationResult for one receiving event.

    Usage:
        validator = ReceivingToleranceValidator(settings.receiving)
        result = validator.validate(items, context)
    """

    def __init__(self, settings: Optional[ReceivingSettings] = None) -> None:
        self.settings = settings or ReceivingSettings()

    def validate(self, items: list[ReceiptItem], context: ReceivingContext) -> ReceivingValidationResult:
        """Run all checks and return the combined result."""
        result = ReceivingValidationResult()
        as_of = parse_timestamp(context.receipt_date)

        for item in items:
            self._check_item(item, context, as_of, result)

        if context.is_partial_receipt:
            self._check_partial(context, result)

        self._check_constraints(items, context, result)

        result.compute_summary()
        logger.debug(
            "Receipt validation for %s: valid=%s approval=%s errors=%d warnings=%d",
            context.purchase_order_id, result.is_valid, result.requires_approval,
            len(result.errors), len(result.warnings),
        )
        return result

    def _check_item(
        self,
        item: ReceiptItem,
        context: ReceivingContext,
        as_of: datetime,
        result: ReceivingValidationResult,
    ) -> None:
        variance = item.total_received - item.ordered_quantity

        if variance > 0:
            self._check_over_receiving(item, variance, result)
        if variance < 0 and not context.is_partial_receipt:
            self._check_under_receiving(item, -variance, result)

        if self.settings.quality_check.enabled:
            self._check_quality(item, context, self.settings.quality_check, result)
        if self.settings.expiry.enabled and item.expiry_date:
            self._check_expiry(item, as_of, self.settings.expiry, result)
        if item.condition == "damaged" and self.settings.damage.enabled:
            self._check_damage(item, self.settings.damage, result)

    # ------------------------------------------------------------------
    # Quantity tolerance
    # ------------------------------------------------------------------

    def _check_over_receiving(
        self,
        item: ReceiptItem,
        variance: float,
        result: ReceivingValidationResult,
    ) -> None:
        config = self.settings.over_receiving
        if not config.enabled:
            return

        ordered = item.ordered_quantity
        tolerance = _threshold(config, ordered, config.value)
        warning = _threshold(config, ordered, config.warning_threshold)
        block = (
            _threshold(config, ordered, config.block_threshold)
            if config.block_threshold is not None else None
        )
        field = f"items.{item.purchase_order_item_id}.received_quantity"
        iid = item.purchase_order_item_id
        qty = _fmt(variance)

        if block is not None and variance > block:
            result.errors.append(_error(
                "OVER_RECEIVING_BLOCKED",
                f"Over-receiving blocked: received {qty} units over ordered quantity "
                f"for {item.product_name}",
                field, iid,
            ))
        elif variance > tolerance:
            if config.require_approval:
                result.requires_approval = True
                result.required_roles.extend(config.approval_roles)
                result.warnings.append(_warning(
                    "OVER_RECEIVING_APPROVAL_REQUIRED",
                    f"Over-receiving requires approval: {qty} units over ordered quantity "
                    f"for {item.product_name}",
                    field, iid,
                    recommendation=f"Approval required from: {', '.join(config.approval_roles)}",
                ))
            elif not config.auto_accept:
                result.errors.append(_error(
                    "OVER_RECEIVING_NOT_ALLOWED",
                    f"Over-receiving not allowed: {qty} units over tolerance for {item.product_name}",
                    field, iid,
                ))
        elif variance > warning:
            result.warnings.append(_warning(
                "OVER_RECEIVING_WARNING",
                f"Over-receiving warning: {qty} units over ordered quantity for {item.product_name}",
                field, iid,
                recommendation="Verify the received quantity is correct",
            ))

        if config.notify_on_variance and variance > warning:
            result.adjustments.append(ReceivingAdjustment(
                adjustment_type="quantity",
                description="Over-receiving variance detected",
                item_id=iid,
                original_value=item.ordered_quantity,
                adjusted_value=item.total_received,
                reason=f"Received {qty} units more than ordered",
                requires_approval=config.require_approval,
            ))

    def _check_under_receiving(
        self,
        item: ReceiptItem,
        shortfall: float,
        result: ReceivingValidationResult,
    ) -> None:
        config = self.settings.under_receiving
        if not config.enabled:
            return

        ordered = item.ordered_quantity
        tolerance = _threshold(config, ordered, config.value)
        warning = _threshold(config, ordered, config.warning_threshold)
        field = f"items.{item.purchase_order_item_id}.received_quantity"
        iid = item.purchase_order_item_id
        qty = _fmt(shortfall)

        if shortfall > tolerance:
            if config.require_approval:
                result.requires_approval = True
                result.required_roles.extend(config.approval_roles)
                result.warnings.append(_warning(
                    "UNDER_RECEIVING_APPROVAL_REQUIRED",
                    f"Under-receiving requires approval: {qty} units short for {item.product_name}",
                    field, iid,
                    recommendation=f"Approval required from: {', '.join(config.approval_roles)}",
                ))
            elif not config.auto_accept:
                result.warnings.append(_warning(
                    "UNDER_RECEIVING_SIGNIFICANT",
                    f"Significant under-receiving: {qty} units short for {item.product_name}",
                    field, iid,
                    recommendation="Confirm with the supplier whether a back-order is expected",
                ))
        elif shortfall > warning:
            result.warnings.append(_warning(
                "UNDER_RECEIVING_WARNING",
                f"Under-receiving warning: {qty} units short for {item.product_name}",
                field, iid,
                recommendation="Verify if remaining items are expected",
            ))

    # ------------------------------------------------------------------
    # Quality, expiry and damage
    # ------------------------------------------------------------------

    def _check_quality(
        self,
        item: ReceiptItem,
        context: ReceivingContext,
        config: QualityCheckSettings,
        result: ReceivingValidationResult,
    ) -> None:
        field = f"items.{item.purchase_order_item_id}.quality_status"
        iid = item.purchase_order_item_id

        if config.require_quality_check and item.quality_status in (None, "pending"):
            if context.user_role in config.quality_check_roles:
                result.warnings.append(_warning(
                    "QUALITY_CHECK_REQUIRED",
                    f"Quality check required for {item.product_name}",
                    field, iid,
                    recommendation="Perform quality check before accepting items",
                ))
            else:
                result.errors.append(_error(
                    "QUALITY_CHECK_UNAUTHORIZED",
                    f"User not authorized to perform quality check for {item.product_name}",
                    field, iid,
                ))
        elif item.quality_status == "rejected":
            if config.damaged_item_handling == "reject":
                result.errors.append(_error(
                    "QUALITY_CHECK_FAILED",
                    f"Quality check failed for {item.product_name}",
                    field, iid,
                ))
            else:
                result.warnings.append(_warning(
                    "QUALITY_CHECK_CONDITIONAL",
                    f"Quality check failed but items accepted conditionally for {item.product_name}",
                    field, iid,
                    recommendation="Document the condition and consider supplier feedback",
                ))

    def _check_expiry(
        self,
        item: ReceiptItem,
        as_of: datetime,
        config: ExpirySettings,
        result: ReceivingValidationResult,
    ) -> None:
        if not config.check_expiry_on_receipt:
            return

        days = days_until(item.expiry_date, as_of)
        field = f"items.{item.purchase_order_item_id}.expiry_date"
        iid = item.purchase_order_item_id

        if days < 0:
            if config.reject_expired_items:
                result.errors.append(_error(
                    "EXPIRED_ITEMS_REJECTED",
                    f"Expired items rejected for {item.product_name} (expired {abs(days)} days ago)",
                    field, iid,
                ))
            else:
                result.warnings.append(_warning(
                    "EXPIRED_ITEMS_ACCEPTED",
                    f"Expired items accepted for {item.product_name} (expired {abs(days)} days ago)",
                    field, iid,
                    recommendation="Quarantine expired stock",
                ))
        elif days <= config.near_expiry_threshold_days:
            if config.accept_near_expiry_with_approval:
                result.requires_approval = True
                result.required_roles.extend(config.near_expiry_approval_roles)
                result.warnings.append(_warning(
                    "NEAR_EXPIRY_APPROVAL_REQUIRED",
                    f"Near-expiry items require approval for {item.product_name} "
                    f"(expires in {days} days)",
                    field, iid,
                    recommendation="Obtain approval to accept near-expiry items",
                ))
            else:
                result.warnings.append(_warning(
                    "NEAR_EXPIRY_WARNING",
                    f"Near-expiry warning for {item.product_name} (expires in {days} days)",
                    field, iid,
                    recommendation="Prioritize usage of near-expiry items",
                ))
        elif days <= config.warn_before_expiry_days:
            result.warnings.append(_warning(
                "EXPIRY_WARNING",
                f"Expiry warning for {item.product_name} (expires in {days} days)",
                field, iid,
                recommendation="Monitor expiry date and prioritize usage",
            ))

    def _check_damage(
        self,
        item: ReceiptItem,
        config: DamageSettings,
        result: ReceivingValidationResult,
    ) -> None:
        report = item.damage_report
        field = f"items.{item.purchase_order_item_id}.damage_report"
        iid = item.purchase_order_item_id

        if report is None:
            if config.require_damage_report:
                result.errors.append(_error(
                    "DAMAGE_REPORT_REQUIRED",
                    f"Damage report required for damaged {item.product_name}",
                    field, iid,
                ))
            return

        if config.require_photographs and not report.photographs:
            result.errors.append(_error(
                "DAMAGE_PHOTOS_REQUIRED",
                f"Damage photographs required for damaged {item.product_name}",
                f"{field}.photographs", iid,
            ))

        if report.category not in config.damage_categories:
            result.warnings.append(_warning(
                "INVALID_DAMAGE_CATEGORY",
                f"Invalid damage category for {item.product_name}",
                f"{field}.category", iid,
                recommendation=f"Use one of: {', '.join(config.damage_categories)}",
            ))

        if config.notify_supplier_on_damage:
            result.adjustments.append(ReceivingAdjustment(
                adjustment_type="damage",
                description="Supplier notification required for damaged items",
                item_id=iid,
                original_value="good",
                adjusted_value="damaged",
                reason=report.description,
            ))

    # ------------------------------------------------------------------
    # Whole-receipt rules
    # ------------------------------------------------------------------

    def _check_partial(self, context: ReceivingContext, result: ReceivingValidationResult) -> None:
        config = self.settings.partial_receiving

        if not config.enabled or not config.allow_partial_receipts:
            result.errors.append(_error(
                "PARTIAL_RECEIVING_NOT_ALLOWED",
                "Partial receiving is not allowed",
            ))
            return

        if context.previous_receipts_count >= config.max_partial_receipts:
            result.errors.append(_error(
                "MAX_PARTIAL_RECEIPTS_EXCEEDED",
                f"Maximum partial receipts exceeded ({config.max_partial_receipts})",
            ))

        if config.require_reason_for_partial and not (context.partial_reason or "").strip():
            result.errors.append(_error(
                "PARTIAL_REASON_REQUIRED",
                "Reason required for partial receipt",
                field="partial_reason",
            ))

        if config.notify_on_partial:
            result.adjustments.append(ReceivingAdjustment(
                adjustment_type="quantity",
                description="Partial receipt notification required",
                original_value="full",
                adjusted_value="partial",
                reason=context.partial_reason or "Partial delivery",
            ))

    def _check_constraints(
        self,
        items: list[ReceiptItem],
        context: ReceivingContext,
        result: ReceivingValidationResult,
    ) -> None:
        if sum(item.received_quantity for item in items) <= 0:
            result.errors.append(_error("NO_ITEMS_RECEIVED", "No items are being received"))

        seen: set[str] = set()
        duplicates: list[str] = []
        for item in items:
            if item.purchase_order_item_id in seen:
                duplicates.append(item.purchase_order_item_id)
            seen.add(item.purchase_order_item_id)
        if duplicates:
            result.errors.append(_error(
                "DUPLICATE_RECEIPT_ITEMS",
                f"Duplicate items in receipt: {', '.join(dict.fromkeys(duplicates))}",
            ))

        if context.user_role not in self.settings.receiving_roles:
            result.errors.append(_error(
                "INSUFFICIENT_PERMISSIONS",
                f"Role '{context.user_role}' does not have permission to receive goods",
            ))


def validate_receiving(
    items: list[ReceiptItem],
    context: ReceivingContext,
    settings: Optional[ReceivingSettings] = None,
) -> ReceivingValidationResult:
    return ReceivingToleranceValidator(settings).validate(items, context)


# ------------------------------------------------------------------
# Reporting helpers
# ------------------------------------------------------------------

def calculate_receiving_statistics(
    items: list[ReceiptItem],
    as_of: Optional[datetime] = None,
) -> ReceivingStatistics:
    """Summarise completion and variance across the lines of one receipt."""
    as_of = as_of or datetime.now(timezone.utc)
    stats = ReceivingStatistics(total_items=len(items))
    variance_pct_total = 0.0

    for item in items:
        received = item.total_received
        variance = received - item.ordered_quantity
        stats.total_variance += variance
        if item.ordered_quantity:
            variance_pct_total += abs(variance / item.ordered_quantity) * 100

        if received >= item.ordered_quantity:
            stats.fully_received_items += 1
        elif received > 0:
            stats.partially_received_items += 1

        if item.condition == "damaged":
            stats.damaged_items += 1
        if item.condition == "expired" or (item.expiry_date and days_until(item.expiry_date, as_of) < 0):
            stats.expired_items += 1

    if items:
        stats.completion_percentage = (
            (stats.fully_received_items + stats.partially_received_items) / len(items) * 100
        )
        stats.average_variance_percentage = variance_pct_total / len(items)
    return stats


def generate_recommendations(
    result: ReceivingValidationResult,
    items: list[ReceiptItem],
    as_of: Optional[datetime] = None,
) -> list[str]:
    """Human-readable next steps derived from a validation result."""
    as_of = as_of or datetime.now(timezone.utc)
    recommendations: list[str] = []

    if result.warnings:
        recommendations.append("Review warning messages before proceeding")
    if result.requires_approval:
        recommendations.append("Obtain required approvals before completing receipt")
    if any(item.condition == "damaged" for item in items):
        recommendations.append("Document all damaged items with photos and detailed descriptions")
        recommendations.append("Contact supplier about damaged goods for credit or replacement")
    if any(
        item.expiry_date and days_until(item.expiry_date, as_of) <= RECOMMEND_EXPIRY_DAYS
        for item in items
    ):
        recommendations.append("Prioritize usage of near-expiry items")
        recommendations.append("Update inventory system with expiry dates")
    if any(item.total_received > item.ordered_quantity for item in items):
        recommendations.append("Verify over-received quantities with delivery documentation")
        recommendations.append("Consider updating purchase order if acceptable")

    return recommendations
