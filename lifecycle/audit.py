"""
Audit trail recording.

Every mutating orchestrator call records what happened here after its
ledger write has committed. A failed audit write never turns a committed
mutation into a failure: the error is logged and handed back as an
AuditWriteFailed for the orchestrator to surface as a warning.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from models.audit import (
    AuditAction,
    AuditContext,
    AuditLogEntry,
    AuditLogFilter,
    AuditSummary,
    StockMovement,
    diff_values,
)
from models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from models.receiving import ReceiptItem
from lifecycle.errors import AuditWriteFailed
from lifecycle.ledger import Ledger

logger = logging.getLogger(__name__)

AUDIT_SOURCE = "lifecycle_engine"
AUDIT_VERSION = "1.0"


@dataclass
class AuditRecordResult:
    entry: Optional[AuditLogEntry] = None
    errors: list[AuditWriteFailed] = field(default_factory=list)
    movements_written: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def error(self) -> Optional[AuditWriteFailed]:
        return self.errors[0] if self.errors else None


def order_snapshot(order: PurchaseOrder) -> dict:
    """The fields an audit entry captures for create / update / delete."""
    return {
        "po_number":     order.po_number,
        "supplier_id":   order.supplier_id,
        "supplier_name": order.supplier_name,
        "status":        order.status.value,
        "subtotal":      order.subtotal,
        "tax":           order.tax,
        "total":         order.total,
        "currency":      order.currency,
        "expected_date": order.expected_date,
        "items": [
            {
                "product_id":        i.product_id,
                "quantity":          i.quantity,
                "unit_cost":         i.unit_cost,
                "received_quantity": i.received_quantity,
            }
            for i in order.items
        ],
    }


class AuditRecorder:
    """
    Appends audit entries and stock movements through the ledger.

    Usage:
        recorder = AuditRecorder(ledger)
        result = recorder.record(order.id, order.po_number, AuditAction.CREATED, ctx, None, snap)
        if not result.success:
            warnings.extend(e.message for e in result.errors)
    """

    def __init__(self, ledger: Ledger) -> None:
        self.ledger = ledger

    def record(
        self,
        order_id: str,
        order_number: Optional[str],
        action: AuditAction,
        context: AuditContext,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
    ) -> AuditRecordResult:
        entry = AuditLogEntry(
            purchase_order_id=order_id,
            purchase_order_number=order_number,
            action=action,
            performed_by=context.performed_by,
            performed_by_name=context.performed_by_name,
            changes=diff_values(old_values, new_values),
            reason=context.reason,
            metadata={**context.metadata, "version": AUDIT_VERSION, "source": AUDIT_SOURCE},
        )
        try:
            written = self.ledger.append_audit_entry(entry)
        except Exception as exc:
            return AuditRecordResult(errors=[self._failure(order_id, action, exc)])
        logger.debug("Audit %s recorded for %s", action.value, order_id)
        return AuditRecordResult(entry=written)

    def record_status_change(
        self,
        order: PurchaseOrder,
        from_status: PurchaseOrderStatus,
        to_status: PurchaseOrderStatus,
        context: AuditContext,
        action: AuditAction = AuditAction.STATUS_CHANGED,
    ) -> AuditRecordResult:
        return self.record(
            order.id,
            order.po_number,
            action,
            context,
            {"status": from_status.value},
            {"status": to_status.value},
        )

    def record_receiving(
        self,
        before: PurchaseOrder,
        after: PurchaseOrder,
        receipts: Iterable[ReceiptItem],
        context: AuditContext,
    ) -> AuditRecordResult:
        """
        Record a receiving event: one RECEIVED / PARTIALLY_RECEIVED entry for
        the order plus one stock movement per line actually received.
        """
        receipts = list(receipts)
        action = (
            AuditAction.RECEIVED
            if after.status == PurchaseOrderStatus.FULLY_RECEIVED
            else AuditAction.PARTIALLY_RECEIVED
        )
        old_values = {"status": before.status.value}
        new_values = {"status": after.status.value}
        for r in receipts:
            old_values[f"items.{r.product_id}.received_quantity"] = r.previously_received_quantity
            new_values[f"items.{r.product_id}.received_quantity"] = r.total_received

        ctx = context.model_copy(update={"metadata": {
            **context.metadata,
            "receipt_lines": [r.model_dump(mode="json") for r in receipts],
        }})
        result = self.record(after.id, after.po_number, action, ctx, old_values, new_values)

        # Movements are written even when the entry above failed.
        for r in receipts:
            if r.received_quantity <= 0:
                continue
            movement = StockMovement(
                purchase_order_id=after.id,
                purchase_order_number=after.po_number,
                product_id=r.product_id,
                product_name=r.product_name,
                sku=r.sku,
                quantity_before=r.previously_received_quantity,
                quantity_after=r.total_received,
                quantity_changed=r.received_quantity,
                condition=r.condition,
                batch_number=r.batch_number,
                performed_by=context.performed_by,
                performed_by_name=context.performed_by_name,
                notes=f"Received {r.received_quantity:g} units - Condition: {r.condition}",
            )
            try:
                self.ledger.append_stock_movement(movement)
            except Exception as exc:
                result.errors.append(self._failure(
                    after.id, action, exc, what=f"stock movement for {r.product_id}",
                ))
                continue
            result.movements_written += 1

        return result

    def _failure(
        self,
        order_id: str,
        action: AuditAction,
        exc: Exception,
        what: str = "audit entry",
    ) -> AuditWriteFailed:
        logger.warning("Failed to write %s (%s) for %s: %s", what, action.value, order_id, exc)
        return AuditWriteFailed(
            f"Failed to write {what} for {order_id}: {exc}",
            details={"action": action.value, "cause": getattr(exc, "kind", type(exc).__name__)},
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def history(
        self,
        order_id: str,
        actions: Optional[list[AuditAction]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Audit entries for one order, newest first."""
        return self.ledger.query_audit_entries(AuditLogFilter(
            purchase_order_id=order_id, actions=actions, limit=limit, offset=offset,
        ))

    def query(self, flt: AuditLogFilter) -> list[AuditLogEntry]:
        return self.ledger.query_audit_entries(flt)

    def summary(self, order_id: str, recent: int = 5) -> AuditSummary:
        summary = self.ledger.summarize_audit_entries(order_id)
        if recent > 0 and summary.total_events:
            summary.recent = self.history(order_id, limit=recent)
        return summary
