"""
Approval authority resolution.

Maps an order amount (plus optional supplier/product/department/terms/currency
conditions) to the active ApprovalThreshold that governs it, and decides
whether a given actor may approve. Pure: thresholds and role levels come
from the WorkflowSettings passed in.

Rules on top of the threshold lookup:
  - nobody approves an order they created
  - actor level must be >= the threshold's required level
  - an actor's personal max_approval_amount caps what they can approve
  - no matching threshold means nobody can approve
"""
import logging
from typing import Optional

from models.approval import ApprovalCondition, ApprovalPermissionResult, ApprovalThreshold
from models.purchase_order import PurchaseOrder
from models.workflow import WorkflowSettings

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


def _fmt_amount(amount: float) -> str:
    return f"{amount:g}" if float(amount).is_integer() else f"{amount:.2f}"


def order_condition_values(order: PurchaseOrder) -> dict[str, list[str]]:
    """
    Condition values an order exposes, keyed by ApprovalCondition.field.

    product_category can carry several values (one per line), so every field
    maps to a list.
    """
    def _one(value: Optional[str]) -> list[str]:
        return [value] if value else []

    return {
        "supplier_category": _one(order.supplier_category),
        "product_category":  sorted({i.category for i in order.items if i.category}),
        "department":        _one(order.department),
        "payment_terms":     _one(order.payment_terms),
        "currency":          _one(order.currency),
    }


def condition_matches(condition: ApprovalCondition, values: dict[str, list[str]]) -> bool:
    """Evaluate one condition against order values (case-insensitive)."""
    actual = [v.lower() for v in values.get(condition.field, [])]
    expected = condition.value
    if isinstance(expected, (list, tuple, set)):
        wanted = [str(v).lower() for v in expected]
    else:
        wanted = [str(expected).lower()]

    if condition.operator == "equals":
        return any(a == wanted[0] for a in actual)
    if condition.operator == "contains":
        return any(wanted[0] in a for a in actual)
    if condition.operator == "in":
        return any(a in wanted for a in actual)
    if condition.operator == "not_in":
        return all(a not in wanted for a in actual)
    return False


class ApprovalResolver:
    """
    Resolves approval thresholds and permissions for purchase orders.

    Usage:
        resolver = ApprovalResolver(settings)
        result = resolver.validate_approval_permissions(order, actor.id, actor.role)
    """

    def __init__(self, settings: Optional[WorkflowSettings] = None) -> None:
        settings = settings or WorkflowSettings()
        self.role_levels = dict(settings.role_levels)
        self.thresholds = sorted(
            (t for t in settings.approval_thresholds if t.is_active),
            key=lambda t: t.min_amount,
        )

    def role_level(self, role: str) -> int:
        return self.role_levels.get(role, 0)

    def get_approval_threshold(
        self,
        amount: float,
        conditions: Optional[dict[str, list[str]]] = None,
    ) -> Optional[ApprovalThreshold]:
        """
        Return the first active threshold whose [min, max) range contains
        amount and whose conditions all match, or None.
        """
        for threshold in self.thresholds:
            if not threshold.contains(amount):
                continue
            if threshold.conditions and not all(
                condition_matches(c, conditions or {}) for c in threshold.conditions
            ):
                continue
            return threshold
        return None

    def threshold_for(self, order: PurchaseOrder) -> Optional[ApprovalThreshold]:
        return self.get_approval_threshold(order.total, order_condition_values(order))

    def get_required_approvers(self, order: PurchaseOrder) -> list[str]:
        threshold = self.threshold_for(order)
        return list(threshold.required_roles) if threshold else []

    def can_auto_approve(self, order: PurchaseOrder) -> bool:
        threshold = self.threshold_for(order)
        if threshold is None or not threshold.auto_approve:
            return False
        values = order_condition_values(order)
        return not any(condition_matches(c, values) for c in threshold.auto_approve_exclusions)

    def validate_approval_permissions(
        self,
        order: PurchaseOrder,
        actor_id: str,
        actor_role: str,
        actor_max_amount: Optional[float] = None,
        actor_level: Optional[int] = None,
    ) -> ApprovalPermissionResult:
        """
        Decide whether the actor may approve order.

        actor_level overrides the level derived from actor_role when given.
        Every failing rule contributes its own error message.
        """
        errors: list[str] = []
        warnings: list[str] = []
        user_level = actor_level if actor_level is not None else self.role_level(actor_role)
        threshold = self.threshold_for(order)

        if order.created_by and order.created_by == actor_id:
            errors.append("Users cannot approve their own purchase orders")

        if threshold is None:
            errors.append(
                f"No approval threshold configured for amount {_fmt_amount(order.total)}"
            )
            required_level = 0
        else:
            required_level = threshold.required_level
            if user_level < required_level:
                errors.append(
                    f"Insufficient approval level: {user_level} < {required_level} required"
                )
            if threshold.required_roles and actor_role not in threshold.required_roles:
                warnings.append(
                    f"Role '{actor_role}' is not among the usual approvers for "
                    f"'{threshold.name}': {', '.join(threshold.required_roles)}"
                )
            if threshold.required_approvers > 1:
                warnings.append(
                    f"This threshold expects {threshold.required_approvers} approvers"
                )

        if actor_max_amount is not None and order.total > actor_max_amount:
            errors.append(
                f"Purchase order amount ({_fmt_amount(order.total)}) exceeds your "
                f"approval limit ({_fmt_amount(actor_max_amount)})"
            )

        if errors:
            logger.debug("Approval denied for %s by %s: %s", order.id, actor_id, "; ".join(errors))

        return ApprovalPermissionResult(
            can_approve=not errors,
            errors=errors,
            warnings=warnings,
            user_level=user_level,
            required_level=required_level,
            threshold=threshold,
        )
