"""
Integration tests for the SQLite ledger.
"""
from datetime import datetime, timezone

import pytest

from models.audit import AuditAction, AuditLogEntry, AuditLogFilter, StockMovement, diff_values
from models.purchase_order import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus as S
from models.supplier import Supplier
from lifecycle.errors import ConflictError, NotFound


def _order(order_id="po-1", po_number="PO-202603-0001", status=S.DRAFT, **kwargs) -> PurchaseOrder:
    return PurchaseOrder(
        id=order_id,
        po_number=po_number,
        supplier_id="SUP-001",
        supplier_name="Acme Food Supplies",
        status=status,
        items=[PurchaseOrderItem(id="l1", product_id="p1", product_name="Rice",
                                 quantity=10, unit_cost=50, total=500)],
        subtotal=500,
        total=500,
        created_by="u1",
        created_at=kwargs.pop("created_at", datetime.now(timezone.utc).isoformat()),
        updated_at=kwargs.pop("updated_at", "2026-03-01T00:00:00+00:00"),
        **kwargs,
    )


@pytest.mark.integration
class TestOrders:

    def test_create_and_get(self, test_ledger):
        test_ledger.create_order(_order())
        loaded = test_ledger.get_order("po-1")
        assert loaded is not None
        assert loaded.po_number == "PO-202603-0001"
        assert loaded.items[0].product_name == "Rice"

    def test_get_missing_returns_none(self, test_ledger):
        assert test_ledger.get_order("nope") is None

    def test_duplicate_po_number_is_a_conflict(self, test_ledger):
        test_ledger.create_order(_order())
        with pytest.raises(ConflictError):
            test_ledger.create_order(_order(order_id="po-2"))

    def test_update_with_matching_expectations(self, test_ledger):
        test_ledger.create_order(_order())
        updated = _order(status=S.PENDING_APPROVAL, updated_at="2026-03-02T00:00:00+00:00")
        test_ledger.update_order(
            updated, expected_status=S.DRAFT, expected_updated_at="2026-03-01T00:00:00+00:00",
        )
        assert test_ledger.get_order("po-1").status == S.PENDING_APPROVAL

    def test_update_with_stale_status_conflicts(self, test_ledger):
        test_ledger.create_order(_order(status=S.APPROVED))
        with pytest.raises(ConflictError) as exc:
            test_ledger.update_order(_order(status=S.SENT_TO_SUPPLIER), expected_status=S.DRAFT)
        assert exc.value.details["actual_status"] == "approved"
        assert test_ledger.get_order("po-1").status == S.APPROVED

    def test_update_with_stale_timestamp_conflicts(self, test_ledger):
        test_ledger.create_order(_order())
        with pytest.raises(ConflictError):
            test_ledger.update_order(
                _order(notes="edited"),
                expected_status=S.DRAFT,
                expected_updated_at="2020-01-01T00:00:00+00:00",
            )
        assert test_ledger.get_order("po-1").notes is None

    def test_update_missing_order(self, test_ledger):
        with pytest.raises(NotFound):
            test_ledger.update_order(_order(order_id="ghost"))

    def test_delete(self, test_ledger):
        test_ledger.create_order(_order())
        assert test_ledger.delete_order("po-1") is True
        assert test_ledger.delete_order("po-1") is False
        assert test_ledger.get_order("po-1") is None

    def test_list_filters_and_legacy_status(self, test_ledger):
        test_ledger.create_order(_order("a", "PO-202603-0001", S.DRAFT, created_at="2026-03-01T00:00:00"))
        test_ledger.create_order(_order("b", "PO-202603-0002", S.SENT_TO_SUPPLIER,
                                        created_at="2026-03-02T00:00:00"))
        test_ledger.create_order(_order("c", "PO-202603-0003", S.SENT_TO_SUPPLIER,
                                        created_at="2026-03-03T00:00:00"))

        assert [o.id for o in test_ledger.list_orders()] == ["c", "b", "a"]
        assert [o.id for o in test_ledger.list_orders(status="sent")] == ["c", "b"]
        assert [o.id for o in test_ledger.list_orders(limit=1, offset=1)] == ["b"]
        assert test_ledger.list_orders(supplier_id="other") == []

    def test_po_number_sequence(self, test_ledger):
        march = datetime(2026, 3, 15, tzinfo=timezone.utc)
        assert test_ledger.next_po_number(march) == "PO-202603-0001"
        test_ledger.create_order(_order(po_number="PO-202603-0041"))
        assert test_ledger.next_po_number(march) == "PO-202603-0042"
        assert test_ledger.next_po_number(datetime(2026, 4, 1, tzinfo=timezone.utc)) == "PO-202604-0001"


@pytest.mark.integration
class TestSuppliers:

    def test_upsert_and_list(self, test_ledger):
        test_ledger.upsert_supplier(Supplier(id="s1", name="Beta Farms"))
        test_ledger.upsert_supplier(Supplier(id="s2", name="Alpha Foods", is_active=False))
        test_ledger.upsert_supplier(Supplier(id="s1", name="Beta Farms Inc", category="produce"))

        assert test_ledger.get_supplier("s1").name == "Beta Farms Inc"
        assert [s.id for s in test_ledger.list_suppliers()] == ["s1"]
        assert [s.id for s in test_ledger.list_suppliers(active_only=False)] == ["s2", "s1"]


@pytest.mark.integration
class TestAuditLog:

    def _entry(self, action, performed_by="u1", order_id="po-1") -> AuditLogEntry:
        return AuditLogEntry(
            purchase_order_id=order_id,
            purchase_order_number="PO-1",
            action=action,
            performed_by=performed_by,
            changes=diff_values({"status": "draft"}, {"status": "pending_approval"}),
            metadata={"source": "test"},
        )

    def test_append_stamps_id_and_timestamp(self, test_ledger):
        written = test_ledger.append_audit_entry(self._entry(AuditAction.CREATED))
        assert written.id is not None
        assert written.timestamp is not None

    def test_query_newest_first_with_filters(self, test_ledger):
        test_ledger.append_audit_entry(self._entry(AuditAction.CREATED))
        test_ledger.append_audit_entry(self._entry(AuditAction.STATUS_CHANGED, performed_by="u2"))
        test_ledger.append_audit_entry(self._entry(AuditAction.APPROVED, performed_by="u2"))
        test_ledger.append_audit_entry(self._entry(AuditAction.CREATED, order_id="po-2"))

        entries = test_ledger.query_audit_entries(AuditLogFilter(purchase_order_id="po-1"))
        assert [e.action for e in entries] == [
            AuditAction.APPROVED, AuditAction.STATUS_CHANGED, AuditAction.CREATED,
        ]
        assert entries[0].changes[0].new_value == "pending_approval"

        by_user = test_ledger.query_audit_entries(AuditLogFilter(performed_by="u2"))
        assert len(by_user) == 2

        created = test_ledger.query_audit_entries(AuditLogFilter(actions=[AuditAction.CREATED]))
        assert {e.purchase_order_id for e in created} == {"po-1", "po-2"}

    def test_summary_counts_whole_history(self, test_ledger):
        test_ledger.append_audit_entry(self._entry(AuditAction.CREATED))
        for i in range(120):
            test_ledger.append_audit_entry(self._entry(AuditAction.UPDATED, performed_by=f"u{i % 3}"))
        test_ledger.append_audit_entry(self._entry(AuditAction.CREATED, order_id="po-2"))

        summary = test_ledger.summarize_audit_entries("po-1")

        assert summary.total_events == 121
        assert summary.action_counts == {"created": 1, "updated": 120}
        assert summary.unique_users == ["u0", "u1", "u2"]
        assert summary.first_event <= summary.last_event
        assert summary.recent == []

    def test_summary_of_unknown_order_is_empty(self, test_ledger):
        summary = test_ledger.summarize_audit_entries("nope")
        assert summary.total_events == 0
        assert summary.action_counts == {}
        assert summary.first_event is None

    def test_stock_movements(self, test_ledger):
        test_ledger.append_stock_movement(StockMovement(
            purchase_order_id="po-1",
            product_id="p1",
            product_name="Rice",
            quantity_before=0,
            quantity_after=4,
            quantity_changed=4,
            performed_by="u1",
        ))
        movements = test_ledger.query_stock_movements("po-1")
        assert len(movements) == 1
        assert movements[0].movement_type == "purchase_receipt"
        assert movements[0].quantity_after == 4
