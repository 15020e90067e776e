"""
Purchase order status state machine.

Pure: no ledger or audit calls. The orchestrator asks it whether an edge is
allowed, gets back a new order value plus a description of the transition,
and is responsible for persisting and auditing that result.

    draft               → pending_approval, cancelled
    pending_approval    → approved, draft (rejection), cancelled
    approved            → sent_to_supplier, cancelled
    sent_to_supplier    → partially_received, fully_received, cancelled
    partially_received  → partially_received, fully_received, cancelled
    fully_received      → closed
    cancelled, closed   → (terminal)

Whether a receipt ends in partially_received or fully_received is decided
by the orchestrator from the received quantities, never here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from models.purchase_order import PurchaseOrder, PurchaseOrderStatus, normalize_status
from lifecycle.errors import InvalidTransition, ValidationFailed

logger = logging.getLogger(__name__)

S = PurchaseOrderStatus

TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    S.DRAFT:              frozenset({S.PENDING_APPROVAL, S.CANCELLED}),
    S.PENDING_APPROVAL:   frozenset({S.APPROVED, S.DRAFT, S.CANCELLED}),
    S.APPROVED:           frozenset({S.SENT_TO_SUPPLIER, S.CANCELLED}),
    S.SENT_TO_SUPPLIER:   frozenset({S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED, S.CANCELLED}),
    S.PARTIALLY_RECEIVED: frozenset({S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED, S.CANCELLED}),
    S.FULLY_RECEIVED:     frozenset({S.CLOSED}),
    S.CANCELLED:          frozenset(),
    S.CLOSED:             frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)
RECEIVING_STATUSES = frozenset({S.PARTIALLY_RECEIVED, S.FULLY_RECEIVED})

# The forward path an order takes when nothing goes wrong.
_NEXT_LOGICAL: dict[PurchaseOrderStatus, PurchaseOrderStatus] = {
    S.DRAFT:              S.PENDING_APPROVAL,
    S.PENDING_APPROVAL:   S.APPROVED,
    S.APPROVED:           S.SENT_TO_SUPPLIER,
    S.SENT_TO_SUPPLIER:   S.PARTIALLY_RECEIVED,
    S.PARTIALLY_RECEIVED: S.FULLY_RECEIVED,
    S.FULLY_RECEIVED:     S.CLOSED,
}


@dataclass
class TransitionContext:
    performed_by: Optional[str] = None
    performed_by_name: Optional[str] = None
    reason: Optional[str] = None
    metadata: dict = field(default_factory=dict)


@dataclass
class Transition:
    """What changed; the orchestrator turns this into an audit entry."""
    from_status: PurchaseOrderStatus
    to_status: PurchaseOrderStatus
    reason: Optional[str]
    performed_by: Optional[str]
    timestamp: str


@dataclass
class TransitionOutcome:
    order: PurchaseOrder
    transition: Transition


def can_transition(from_status, to_status) -> bool:
    """Return True if the directed edge from_status → to_status exists."""
    try:
        src, dst = normalize_status(from_status), normalize_status(to_status)
    except ValueError:
        return False
    return dst in TRANSITIONS[src]


def valid_transitions(from_status) -> frozenset[PurchaseOrderStatus]:
    return TRANSITIONS[normalize_status(from_status)]


def is_terminal(status) -> bool:
    return normalize_status(status) in TERMINAL_STATUSES


def next_logical_status(status) -> Optional[PurchaseOrderStatus]:
    return _NEXT_LOGICAL.get(normalize_status(status))


def check_business_rules(
    order: PurchaseOrder,
    to_status: PurchaseOrderStatus,
    context: TransitionContext,
) -> list[str]:
    """Preconditions beyond the transition table. Returns error messages."""
    errors: list[str] = []

    if to_status == S.PENDING_APPROVAL:
        if not order.items:
            errors.append("Purchase order must have at least one item before submission")
        if order.total <= 0:
            errors.append("Purchase order total must be greater than zero")
        if not order.supplier_id:
            errors.append("Purchase order must have a supplier")

    if to_status == S.APPROVED and not context.performed_by:
        errors.append("Approval requires an approver")

    return errors


def execute_transition(
    order: PurchaseOrder,
    to_status,
    context: Optional[TransitionContext] = None,
) -> TransitionOutcome:
    """
    Validate and apply a status change to an in-memory order.

    Raises InvalidTransition when the edge is not in the table and
    ValidationFailed when a business precondition fails. The input order is
    never mutated; a copy carrying the new status is returned.
    """
    context = context or TransitionContext()
    target = normalize_status(to_status)

    if not can_transition(order.status, target):
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[order.status])) or "none"
        raise InvalidTransition(
            f"Cannot transition from {order.status.value} to {target.value} "
            f"(allowed: {allowed})",
            details={"from": order.status.value, "to": target.value},
        )

    errors = check_business_rules(order, target, context)
    if errors:
        raise ValidationFailed(
            errors[0],
            code="TRANSITION_PRECONDITION_FAILED",
            errors=errors,
            details={"from": order.status.value, "to": target.value},
        )

    now = datetime.now(timezone.utc).isoformat()
    update: dict = {"status": target, "updated_at": now}
    if target == S.FULLY_RECEIVED:
        update["received_date"] = now

    logger.debug("Transition %s: %s → %s", order.id, order.status.value, target.value)
    return TransitionOutcome(
        order=order.model_copy(update=update, deep=True),
        transition=Transition(
            from_status=order.status,
            to_status=target,
            reason=context.reason,
            performed_by=context.performed_by,
            timestamp=now,
        ),
    )
