"""
Purchase order orchestrator: the engine's public entry point.

Every operation follows the same shape:

  1. load the current order from the ledger         (NotFound)
  2. validate with the state machine / tolerance validator / approval
     resolver                                        (InvalidTransition,
                                                      ValidationFailed,
                                                      PermissionDenied)
  3. compute the new order value
  4. write it with a compare-and-swap on the status and updated_at that
     were loaded in step 1                           (ConflictError,
                                                      TransportError)
  5. record the audit entry                          (failure → warning)
  6. fire a notification                             (failure → log only)
  7. return OperationResult(data=...)

Failures in steps 1-4 abort before anything is written and come back as
OperationResult(error=...). Workflow settings are loaded once per call and
passed explicitly into the validators.
"""
import functools
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Union

from models.approval import Actor, ApprovalSubmission
from models.audit import AuditAction, AuditContext, AuditLogFilter
from models.purchase_order import (
    NewPurchaseOrder,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderStatus,
    PurchaseOrderUpdate,
    normalize_status,
    totals_match,
)
from models.receiving import (
    ReceiptItem,
    ReceiptPreview,
    ReceivingContext,
    ReceivingOutcome,
    ReceivingSubmission,
)
from models.result import OperationResult
from models.workflow import WorkflowSettings
from lifecycle.approval import ADMIN_ROLE, ApprovalResolver
from lifecycle.audit import AuditRecorder, AuditRecordResult, order_snapshot
from lifecycle.errors import (
    InvalidTransition,
    LifecycleError,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from lifecycle.identity import SYSTEM_ACTOR, Identity
from lifecycle.ledger import Ledger
from lifecycle.notifier import LoggingNotifier, Notifier
from lifecycle.settings import WorkflowSettingsStore
from lifecycle.state_machine import (
    RECEIVING_STATUSES,
    TransitionContext,
    can_transition,
    execute_transition,
    next_logical_status,
    valid_transitions,
)
from lifecycle.tolerance import (
    ReceivingToleranceValidator,
    calculate_receiving_statistics,
    generate_recommendations,
)

logger = logging.getLogger(__name__)

S = PurchaseOrderStatus
DELETABLE_STATUSES = frozenset({S.DRAFT, S.CANCELLED})
RECEIVABLE_STATUSES = frozenset({S.SENT_TO_SUPPLIER, S.PARTIALLY_RECEIVED})


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _operation(method):
    """Convert LifecycleError raised by an operation into a failed OperationResult."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs) -> OperationResult:
        try:
            return method(self, *args, **kwargs)
        except LifecycleError as exc:
            logger.info("%s failed: %s (%s)", method.__name__, exc.kind, exc.message)
            return OperationResult.failure(exc.to_operation_error())
    return wrapper


class PurchaseOrderOrchestrator:
    """
    Composes the state machine, tolerance validator, approval resolver and
    audit recorder around a Ledger.

    Usage:
        engine = PurchaseOrderOrchestrator(ledger, identity, WorkflowSettingsStore(path))
        result = engine.submit_for_approval(order_id)
        if not result.ok:
            print(result.error.message)
    """

    def __init__(
        self,
        ledger: Ledger,
        identity: Identity,
        settings: Union[WorkflowSettingsStore, WorkflowSettings, None] = None,
        notifier: Optional[Notifier] = None,
        recorder: Optional[AuditRecorder] = None,
        default_currency: str = "PHP",
    ) -> None:
        self.ledger = ledger
        self.identity = identity
        self.settings_source = settings if settings is not None else WorkflowSettings()
        self.notifier = notifier or LoggingNotifier()
        self.recorder = recorder or AuditRecorder(ledger)
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _settings(self) -> WorkflowSettings:
        if isinstance(self.settings_source, WorkflowSettings):
            return self.settings_source
        return self.settings_source.load()

    def _load(self, order_id: str) -> PurchaseOrder:
        order = self.ledger.get_order(order_id)
        if order is None:
            raise NotFound(f"Purchase order {order_id} not found", details={"id": order_id})
        return order

    @staticmethod
    def _audit_context(actor: Actor, reason: Optional[str] = None, **metadata) -> AuditContext:
        return AuditContext(
            performed_by=actor.id,
            performed_by_name=actor.display_name or actor.id,
            reason=reason,
            metadata={"actor_role": actor.role, **metadata},
        )

    @staticmethod
    def _collect(audit: AuditRecordResult, warnings: list[str]) -> None:
        warnings.extend(e.message for e in audit.errors)

    def _notify(self, event: str, order: PurchaseOrder, message: str) -> None:
        payload = {
            "message":   message,
            "order_id":  order.id,
            "po_number": order.po_number,
            "status":    order.status.value,
            "total":     order.total,
            "supplier":  order.supplier_name,
        }
        try:
            self.notifier.notify(event, payload)
        except Exception as exc:
            logger.warning("Notifier failed for %s on %s: %s", event, order.id, exc)

    def _commit(self, before: PurchaseOrder, after: PurchaseOrder) -> PurchaseOrder:
        return self.ledger.update_order(
            after, expected_status=before.status, expected_updated_at=before.updated_at,
        )

    def _transition(
        self,
        order: PurchaseOrder,
        target: PurchaseOrderStatus,
        actor: Actor,
        action: AuditAction,
        reason: Optional[str] = None,
        warnings: Optional[list[str]] = None,
        **metadata,
    ) -> PurchaseOrder:
        """Validate, persist and audit one status change."""
        warnings = warnings if warnings is not None else []
        outcome = execute_transition(
            order,
            target,
            TransitionContext(
                performed_by=actor.id,
                performed_by_name=actor.display_name,
                reason=reason,
                metadata=metadata,
            ),
        )
        saved = self._commit(order, outcome.order)
        logger.info(
            "PO %s: %s → %s by %s",
            saved.po_number, order.status.value, saved.status.value, actor.id,
        )
        audit = self.recorder.record_status_change(
            saved,
            outcome.transition.from_status,
            outcome.transition.to_status,
            self._audit_context(actor, reason, **metadata),
            action=action,
        )
        self._collect(audit, warnings)
        self._notify(
            f"purchase_order.{action.value}",
            saved,
            f"Purchase order {saved.po_number} is now {saved.status.value}",
        )
        return saved

    def _require_reason(self, reason: Optional[str], what: str) -> str:
        if not reason or not reason.strip():
            raise ValidationFailed(f"A reason is required to {what}", code="REASON_REQUIRED")
        return reason.strip()

    @staticmethod
    def _effective_authority(
        resolver: ApprovalResolver,
        actor: Actor,
        approval_level: Optional[int] = None,
        max_approval_amount: Optional[float] = None,
    ) -> tuple[int, Optional[float]]:
        """
        Combine the actor's own authority with values supplied on a request.

        Requested values can only narrow what the actor already holds: the
        lower level and the smaller personal limit win.
        """
        level = actor.approval_level
        if level is None:
            level = resolver.role_level(actor.role)
        if approval_level is not None:
            level = min(level, approval_level)

        limits = [v for v in (actor.max_approval_amount, max_approval_amount) if v is not None]
        limit = min(limits) if limits else None
        return level, limit

    # ------------------------------------------------------------------
    # Create / read / update / delete
    # ------------------------------------------------------------------

    @_operation
    def create_order(self, request: NewPurchaseOrder) -> OperationResult:
        actor = self.identity.current_actor()
        supplier = self.ledger.get_supplier(request.supplier_id)
        if supplier is None:
            raise NotFound(f"Supplier {request.supplier_id} not found",
                           details={"supplier_id": request.supplier_id})
        if not supplier.is_active:
            raise ValidationFailed(f"Supplier {supplier.name} is inactive", code="SUPPLIER_INACTIVE")

        product_ids = [i.product_id for i in request.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValidationFailed("Each product may appear only once per order",
                                   code="DUPLICATE_ORDER_ITEMS")

        items = [
            PurchaseOrderItem(id=uuid.uuid4().hex, received_quantity=0, **i.model_dump())
            for i in request.items
        ]
        subtotal = request.subtotal if request.subtotal is not None else round(
            sum(i.total for i in items), 2
        )
        total = request.total if request.total is not None else round(subtotal + request.tax, 2)
        if not totals_match(subtotal, request.tax, total):
            raise ValidationFailed(
                f"Total {total:.2f} does not equal subtotal {subtotal:.2f} + tax {request.tax:.2f}",
                code="TOTAL_MISMATCH",
                details={"subtotal": subtotal, "tax": request.tax, "total": total},
            )

        now = _now()
        order = PurchaseOrder(
            id=uuid.uuid4().hex,
            po_number=request.po_number or self.ledger.next_po_number(),
            supplier_id=supplier.id,
            supplier_name=supplier.name,
            supplier_category=supplier.category,
            department=request.department,
            items=items,
            subtotal=subtotal,
            tax=request.tax,
            total=total,
            currency=request.currency or self.default_currency,
            payment_terms=request.payment_terms or supplier.payment_terms,
            status=S.DRAFT,
            expected_date=request.expected_date,
            created_by=actor.id,
            created_at=now,
            updated_at=now,
            notes=request.notes,
        )
        warnings: list[str] = []
        line_sum = round(sum(i.total for i in items), 2)
        if items and abs(line_sum - subtotal) > 0.005:
            warnings.append(f"Subtotal {subtotal:.2f} differs from the sum of line totals {line_sum:.2f}")

        self.ledger.create_order(order)
        audit = self.recorder.record(
            order.id, order.po_number, AuditAction.CREATED,
            self._audit_context(actor), None, order_snapshot(order),
        )
        self._collect(audit, warnings)
        self._notify("purchase_order.created", order, f"Purchase order {order.po_number} created")
        return OperationResult.success(order, warnings)

    @_operation
    def get_order(self, order_id: str) -> OperationResult:
        return OperationResult.success(self._load(order_id))

    @_operation
    def list_orders(
        self,
        supplier_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> OperationResult:
        if status:
            try:
                status = normalize_status(status).value
            except ValueError as exc:
                raise ValidationFailed(str(exc), code="UNKNOWN_STATUS") from exc
        orders = self.ledger.list_orders(
            supplier_id=supplier_id, status=status, limit=limit, offset=offset,
        )
        return OperationResult.success(orders)

    @_operation
    def update_order(
        self,
        order_id: str,
        patch: PurchaseOrderUpdate,
        reason: Optional[str] = None,
    ) -> OperationResult:
        """
        Edit an order. Money fields and line items may only change while the
        order is a draft; a total that no longer equals subtotal + tax is
        rejected, never corrected.
        """
        actor = self.identity.current_actor()
        order = self._load(order_id)

        if order.status in (S.CANCELLED, S.CLOSED):
            raise ValidationFailed(
                f"Purchase order {order.po_number} is {order.status.value} and cannot be edited",
                code="ORDER_LOCKED",
            )
        if patch.touches_money and order.status != S.DRAFT:
            raise ValidationFailed(
                "Line items and amounts can only be changed while the order is a draft",
                code="ORDER_NOT_DRAFT",
            )

        update: dict = {}
        for name in ("currency", "payment_terms", "department", "expected_date", "notes"):
            value = getattr(patch, name)
            if value is not None:
                update[name] = value

        if patch.items is not None:
            product_ids = [i.product_id for i in patch.items]
            if len(product_ids) != len(set(product_ids)):
                raise ValidationFailed("Each product may appear only once per order",
                                       code="DUPLICATE_ORDER_ITEMS")
            items = []
            for new in patch.items:
                existing = order.item_by_product(new.product_id)
                items.append(PurchaseOrderItem(
                    id=existing.id if existing else uuid.uuid4().hex,
                    received_quantity=existing.received_quantity if existing else 0,
                    **new.model_dump(),
                ))
            update["items"] = items

        if patch.touches_money:
            items = update.get("items", order.items)
            if patch.subtotal is not None:
                subtotal = patch.subtotal
            elif patch.items is not None:
                subtotal = round(sum(i.total for i in items), 2)
            else:
                subtotal = order.subtotal
            tax = patch.tax if patch.tax is not None else order.tax
            total = patch.total if patch.total is not None else order.total
            if not totals_match(subtotal, tax, total):
                raise ValidationFailed(
                    f"Total {total:.2f} does not equal subtotal {subtotal:.2f} + tax {tax:.2f}",
                    code="TOTAL_MISMATCH",
                    details={"subtotal": subtotal, "tax": tax, "total": total},
                )
            update.update(subtotal=subtotal, tax=tax, total=total)

        if not update:
            return OperationResult.success(order, ["Nothing to update"])

        update["updated_at"] = _now()
        updated = order.model_copy(update=update, deep=True)
        saved = self._commit(order, updated)
        logger.info("PO %s updated by %s: %s", saved.po_number, actor.id, ", ".join(sorted(update)))

        warnings: list[str] = []
        old_snap, new_snap = order_snapshot(order), order_snapshot(saved)
        audit = self.recorder.record(
            saved.id, saved.po_number, AuditAction.UPDATED,
            self._audit_context(actor, reason),
            {k: old_snap[k] for k in old_snap if old_snap[k] != new_snap[k]},
            {k: new_snap[k] for k in new_snap if old_snap[k] != new_snap[k]},
        )
        self._collect(audit, warnings)
        self._notify("purchase_order.updated", saved, f"Purchase order {saved.po_number} updated")
        return OperationResult.success(saved, warnings)

    @_operation
    def delete_order(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        """Only draft or cancelled orders can be deleted."""
        actor = self.identity.current_actor()
        order = self._load(order_id)
        if order.status not in DELETABLE_STATUSES:
            raise ValidationFailed(
                f"Only draft or cancelled orders can be deleted (status is {order.status.value})",
                code="ORDER_NOT_DELETABLE",
            )
        if not self.ledger.delete_order(order_id):
            raise NotFound(f"Purchase order {order_id} not found", details={"id": order_id})
        logger.info("PO %s deleted by %s", order.po_number, actor.id)

        warnings: list[str] = []
        audit = self.recorder.record(
            order.id, order.po_number, AuditAction.DELETED,
            self._audit_context(actor, reason), order_snapshot(order), None,
        )
        self._collect(audit, warnings)
        self._notify("purchase_order.deleted", order, f"Purchase order {order.po_number} deleted")
        return OperationResult.success({"id": order.id, "po_number": order.po_number, "deleted": True},
                                       warnings)

    # ------------------------------------------------------------------
    # Status changes
    # ------------------------------------------------------------------

    @_operation
    def change_status(
        self,
        order_id: str,
        to_status: str,
        reason: Optional[str] = None,
    ) -> OperationResult:
        """
        Generic status change. Approval, rejection and cancellation are
        routed through their dedicated rules; receiving statuses can only be
        reached by receive().
        """
        try:
            target = normalize_status(to_status)
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="UNKNOWN_STATUS") from exc

        order = self._load(order_id)
        if not can_transition(order.status, target):
            raise InvalidTransition(
                f"Cannot transition from {order.status.value} to {target.value}",
                details={"from": order.status.value, "to": target.value},
            )
        if target in RECEIVING_STATUSES:
            raise ValidationFailed(
                "Receiving statuses are derived from received quantities; record a receipt instead",
                code="USE_RECEIVE",
            )

        actor = self.identity.current_actor()
        settings = self._settings()
        warnings: list[str] = []

        if target == S.APPROVED:
            saved = self._approve(order, actor, settings, reason, None, None, warnings)
        elif order.status == S.PENDING_APPROVAL and target == S.DRAFT:
            saved = self._reject(order, actor, settings, reason, warnings, target=S.DRAFT)
        elif target == S.CANCELLED:
            saved = self._transition(order, target, actor, AuditAction.CANCELLED,
                                     self._require_reason(reason, "cancel an order"), warnings)
        elif target == S.PENDING_APPROVAL:
            saved = self._submit(order, actor, settings, reason, warnings)
        else:
            saved = self._transition(order, target, actor, AuditAction.STATUS_CHANGED, reason, warnings)
        return OperationResult.success(saved, warnings)

    def _submit(
        self,
        order: PurchaseOrder,
        actor: Actor,
        settings: WorkflowSettings,
        reason: Optional[str],
        warnings: list[str],
    ) -> PurchaseOrder:
        resolver = ApprovalResolver(settings)
        threshold = resolver.threshold_for(order)
        saved = self._transition(
            order, S.PENDING_APPROVAL, actor, AuditAction.STATUS_CHANGED, reason, warnings,
            threshold=threshold.id if threshold else None,
            required_roles=resolver.get_required_approvers(order),
        )
        if threshold is None:
            warnings.append(f"No approval threshold covers amount {order.total:.2f}")

        if settings.auto_approve_on_submit and resolver.can_auto_approve(saved):
            saved = self._transition(
                saved, S.APPROVED, SYSTEM_ACTOR, AuditAction.APPROVED,
                f"Auto-approved under threshold '{threshold.name}'", warnings,
                auto_approved=True, threshold=threshold.id,
            )
        return saved

    @_operation
    def submit_for_approval(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        """draft → pending_approval, auto-approving when the threshold allows it."""
        actor = self.identity.current_actor()
        order = self._load(order_id)
        warnings: list[str] = []
        saved = self._submit(order, actor, self._settings(), reason, warnings)
        return OperationResult.success(saved, warnings)

    def _approve(
        self,
        order: PurchaseOrder,
        actor: Actor,
        settings: WorkflowSettings,
        reason: Optional[str],
        approval_level: Optional[int],
        max_approval_amount: Optional[float],
        warnings: list[str],
    ) -> PurchaseOrder:
        if not can_transition(order.status, S.APPROVED):
            raise InvalidTransition(
                f"Cannot approve an order in status {order.status.value}",
                details={"from": order.status.value, "to": S.APPROVED.value},
            )
        resolver = ApprovalResolver(settings)
        level, limit = self._effective_authority(resolver, actor, approval_level, max_approval_amount)
        check = resolver.validate_approval_permissions(
            order, actor.id, actor.role, actor_max_amount=limit, actor_level=level,
        )
        if not check.can_approve:
            raise PermissionDenied(
                check.errors[0],
                code="APPROVAL_DENIED",
                errors=check.errors,
                warnings=check.warnings,
                details={"user_level": check.user_level, "required_level": check.required_level},
            )
        warnings.extend(check.warnings)
        return self._transition(
            order, S.APPROVED, actor, AuditAction.APPROVED, reason, warnings,
            threshold=check.threshold.id if check.threshold else None,
            user_level=check.user_level,
            required_level=check.required_level,
        )

    def _reject(
        self,
        order: PurchaseOrder,
        actor: Actor,
        settings: WorkflowSettings,
        reason: Optional[str],
        warnings: list[str],
        target: Optional[PurchaseOrderStatus] = None,
    ) -> PurchaseOrder:
        """
        pending_approval → rejection target (draft by default).

        The creator may withdraw their own order; anyone else needs the
        approval level the order's threshold requires.
        """
        target = target or S(settings.rejection_target)
        if order.status != S.PENDING_APPROVAL or not can_transition(order.status, target):
            raise InvalidTransition(
                f"Cannot reject an order in status {order.status.value}",
                details={"from": order.status.value, "to": target.value},
            )
        reason = self._require_reason(reason, "reject an order")

        if actor.id != order.created_by:
            check = ApprovalResolver(settings).validate_approval_permissions(
                order, actor.id, actor.role, actor_level=actor.approval_level,
            )
            if check.user_level < check.required_level:
                raise PermissionDenied(
                    f"Insufficient approval level to reject: {check.user_level} < "
                    f"{check.required_level} required",
                    code="REJECTION_DENIED",
                    details={"user_level": check.user_level, "required_level": check.required_level},
                )
        return self._transition(order, target, actor, AuditAction.REJECTED, reason, warnings)

    @_operation
    def approve(self, submission: ApprovalSubmission) -> OperationResult:
        """Approve or reject a pending order."""
        actor = self.identity.current_actor()
        if submission.approved_by and submission.approved_by != actor.id:
            raise PermissionDenied(
                f"approved_by {submission.approved_by} does not match the acting user {actor.id}",
                code="ACTOR_MISMATCH",
            )
        order = self._load(submission.purchase_order_id)
        settings = self._settings()
        warnings: list[str] = []
        if submission.action == "approve":
            saved = self._approve(
                order, actor, settings, submission.reason,
                submission.approval_level, submission.max_approval_amount, warnings,
            )
        else:
            saved = self._reject(order, actor, settings, submission.reason, warnings)
        return OperationResult.success(saved, warnings)

    @_operation
    def reject(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        actor = self.identity.current_actor()
        order = self._load(order_id)
        warnings: list[str] = []
        saved = self._reject(order, actor, self._settings(), reason, warnings)
        return OperationResult.success(saved, warnings)

    @_operation
    def validate_approval(
        self,
        order_id: str,
        approval_level: Optional[int] = None,
        max_approval_amount: Optional[float] = None,
    ) -> OperationResult:
        """Dry run: could the current actor approve this order?"""
        actor = self.identity.current_actor()
        order = self._load(order_id)
        resolver = ApprovalResolver(self._settings())
        level, limit = self._effective_authority(resolver, actor, approval_level, max_approval_amount)
        check = resolver.validate_approval_permissions(
            order, actor.id, actor.role, actor_max_amount=limit, actor_level=level,
        )
        return OperationResult.success(check)

    @_operation
    def send_to_supplier(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        actor = self.identity.current_actor()
        order = self._load(order_id)
        warnings: list[str] = []
        saved = self._transition(order, S.SENT_TO_SUPPLIER, actor, AuditAction.STATUS_CHANGED,
                                 reason, warnings)
        return OperationResult.success(saved, warnings)

    @_operation
    def cancel(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        actor = self.identity.current_actor()
        order = self._load(order_id)
        if not can_transition(order.status, S.CANCELLED):
            raise InvalidTransition(
                f"Cannot cancel an order in status {order.status.value}",
                details={"from": order.status.value, "to": S.CANCELLED.value},
            )
        warnings: list[str] = []
        saved = self._transition(order, S.CANCELLED, actor, AuditAction.CANCELLED,
                                 self._require_reason(reason, "cancel an order"), warnings)
        return OperationResult.success(saved, warnings)

    @_operation
    def close(self, order_id: str, reason: Optional[str] = None) -> OperationResult:
        actor = self.identity.current_actor()
        order = self._load(order_id)
        warnings: list[str] = []
        saved = self._transition(order, S.CLOSED, actor, AuditAction.STATUS_CHANGED, reason, warnings)
        return OperationResult.success(saved, warnings)

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    def _prepare_receipt(
        self,
        order: PurchaseOrder,
        submission: ReceivingSubmission,
        actor: Actor,
    ) -> tuple[list[ReceiptItem], dict[str, float], bool, ReceivingContext]:
        """
        Map a submission onto the order's lines.

        Returns the receipt items, each line's received quantity after this
        event (by line id), whether the receipt is partial, and the
        validation context.
        """
        receipts: list[ReceiptItem] = []
        after: dict[str, float] = {i.id: i.received_quantity for i in order.items}
        unknown: list[str] = []

        for sub in submission.items:
            line = order.item_by_product(sub.product_id)
            if line is None:
                unknown.append(sub.product_id)
                continue
            receipts.append(ReceiptItem(
                purchase_order_item_id=line.id,
                product_id=line.product_id,
                product_name=line.product_name,
                sku=line.sku,
                ordered_quantity=line.quantity,
                received_quantity=sub.received_quantity,
                previously_received_quantity=line.received_quantity,
                condition=sub.condition,
                quality_status=sub.quality_status,
                expiry_date=sub.expiry_date,
                batch_number=sub.batch_number,
                damage_report=sub.damage_report,
                notes=sub.notes,
            ))
            after[line.id] += sub.received_quantity

        if unknown:
            raise ValidationFailed(
                f"Products not on purchase order {order.po_number}: {', '.join(unknown)}",
                code="UNKNOWN_ORDER_ITEMS",
                details={"product_ids": unknown},
            )

        completes = all(after[i.id] >= i.quantity for i in order.items)
        is_partial = submission.is_partial if submission.is_partial is not None else not completes
        context = ReceivingContext(
            purchase_order_id=order.id,
            user_id=actor.id,
            user_role=actor.role,
            is_partial_receipt=is_partial,
            previous_receipts_count=order.receipt_count,
            partial_reason=submission.partial_reason,
            receipt_date=submission.receipt_date,
        )
        return receipts, after, is_partial, context

    @staticmethod
    def _resulting_status(order: PurchaseOrder, after: dict[str, float]) -> PurchaseOrderStatus:
        """fully_received once every line holds at least its ordered quantity."""
        if all(after[i.id] >= i.quantity for i in order.items):
            return S.FULLY_RECEIVED
        return S.PARTIALLY_RECEIVED

    @_operation
    def validate_receipt(self, submission: ReceivingSubmission) -> OperationResult:
        """Dry run of receive(): validation result, statistics and recommendations."""
        actor = self.identity.current_actor()
        order = self._load(submission.purchase_order_id)
        settings = self._settings()
        receipts, after, is_partial, context = self._prepare_receipt(order, submission, actor)
        result = ReceivingToleranceValidator(settings.receiving).validate(receipts, context)
        return OperationResult.success(ReceiptPreview(
            purchase_order_id=order.id,
            is_partial=is_partial,
            resulting_status=self._resulting_status(order, after),
            validation=result,
            statistics=calculate_receiving_statistics(receipts),
            recommendations=generate_recommendations(result, receipts),
        ))

    @_operation
    def receive(self, submission: ReceivingSubmission) -> OperationResult:
        """
        Record a receiving event.

        Quantities are added to each line's received_quantity and the new
        status is derived from them: fully_received when every line is
        complete, partially_received otherwise.
        """
        actor = self.identity.current_actor()
        if submission.received_by and submission.received_by != actor.id:
            raise PermissionDenied(
                f"received_by {submission.received_by} does not match the acting user {actor.id}",
                code="ACTOR_MISMATCH",
            )
        order = self._load(submission.purchase_order_id)
        if order.status not in RECEIVABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot receive goods for an order in status {order.status.value}",
                details={"from": order.status.value},
            )

        settings = self._settings()
        receipts, after, is_partial, context = self._prepare_receipt(order, submission, actor)
        result = ReceivingToleranceValidator(settings.receiving).validate(receipts, context)

        if result.errors:
            raise ValidationFailed(
                result.errors[0].message,
                code="RECEIPT_REJECTED",
                errors=result.errors,
                warnings=result.warnings,
                details={"requires_approval": result.requires_approval,
                         "required_roles": result.required_roles},
            )
        if result.requires_approval:
            approver_role = submission.approval_granted_by or actor.role
            if approver_role != ADMIN_ROLE and approver_role not in result.required_roles:
                raise PermissionDenied(
                    f"Receipt requires approval from: {', '.join(result.required_roles)}",
                    code="RECEIPT_APPROVAL_REQUIRED",
                    warnings=result.warnings,
                    details={"required_roles": result.required_roles},
                )

        target = self._resulting_status(order, after)
        outcome = execute_transition(order, target, TransitionContext(
            performed_by=actor.id, performed_by_name=actor.display_name,
            reason=submission.notes or submission.partial_reason,
        ))
        items = [
            item.model_copy(update={"received_quantity": after[item.id]})
            for item in order.items
        ]
        updated = outcome.order.model_copy(update={
            "items": items,
            "receipt_count": order.receipt_count + 1,
        })
        saved = self._commit(order, updated)
        logger.info(
            "PO %s received by %s: %s → %s (%d lines)",
            saved.po_number, actor.id, order.status.value, saved.status.value, len(receipts),
        )

        warnings = [w.message for w in result.warnings]
        audit = self.recorder.record_receiving(
            order, saved, receipts,
            self._audit_context(
                actor,
                submission.notes or submission.partial_reason,
                is_partial=is_partial,
                receipt_number=saved.receipt_count,
                approval_granted_by=submission.approval_granted_by if result.requires_approval else None,
            ),
        )
        self._collect(audit, warnings)
        self._notify(
            "purchase_order.received",
            saved,
            f"Purchase order {saved.po_number} is now {saved.status.value}",
        )
        return OperationResult.success(
            ReceivingOutcome(
                order=saved,
                resulting_status=saved.status,
                is_partial=is_partial,
                validation=result,
                stock_movements_written=audit.movements_written,
            ),
            warnings,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @_operation
    def get_valid_transitions(self, order_id: str) -> OperationResult:
        order = self._load(order_id)
        return OperationResult.success(sorted(s.value for s in valid_transitions(order.status)))

    @_operation
    def get_next_status(self, order_id: str) -> OperationResult:
        """The status an order normally moves to next, or None once it is finished."""
        order = self._load(order_id)
        nxt = next_logical_status(order.status)
        return OperationResult.success(nxt.value if nxt else None)

    @_operation
    def get_history(
        self,
        order_id: str,
        actions: Optional[list[str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> OperationResult:
        """Audit entries for an order, newest first. Works for deleted orders too."""
        try:
            parsed = [AuditAction(a) for a in actions] if actions else None
        except ValueError as exc:
            raise ValidationFailed(str(exc), code="UNKNOWN_AUDIT_ACTION") from exc
        return OperationResult.success(self.recorder.history(order_id, parsed, limit, offset))

    @_operation
    def get_audit_summary(self, order_id: str) -> OperationResult:
        return OperationResult.success(self.recorder.summary(order_id))

    @_operation
    def query_audit(self, flt: AuditLogFilter) -> OperationResult:
        return OperationResult.success(self.recorder.query(flt))

    @_operation
    def get_stock_movements(self, order_id: str) -> OperationResult:
        self._load(order_id)
        return OperationResult.success(self.ledger.query_stock_movements(order_id))
