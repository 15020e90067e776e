from enum import Enum
from typing import Any, Optional, List

from pydantic import BaseModel, Field


class AuditAction(str, Enum):
    CREATED            = "created"
    UPDATED            = "updated"
    STATUS_CHANGED     = "status_changed"
    RECEIVED           = "received"
    PARTIALLY_RECEIVED = "partially_received"
    APPROVED           = "approved"
    REJECTED           = "rejected"
    CANCELLED          = "cancelled"
    DELETED            = "deleted"


class FieldChange(BaseModel):
    """One field's before/after values within an audit entry."""
    field: str
    old_value: Any = None
    new_value: Any = None


def diff_values(old_values: Optional[dict], new_values: Optional[dict]) -> List[FieldChange]:
    """
    Build an ordered list of FieldChange from two snapshots.

    Keys from old_values come first (in their order), followed by keys only
    present in new_values. Unchanged fields are dropped unless one side is
    missing entirely (create / delete snapshots keep every field).
    """
    old_values = old_values or {}
    new_values = new_values or {}
    keep_all = not old_values or not new_values
    changes: List[FieldChange] = []
    for key in list(old_values) + [k for k in new_values if k not in old_values]:
        old, new = old_values.get(key), new_values.get(key)
        if keep_all or old != new:
            changes.append(FieldChange(field=key, old_value=old, new_value=new))
    return changes


class AuditContext(BaseModel):
    """Who did it and why; supplied by the orchestrator for every record."""
    performed_by: str
    performed_by_name: Optional[str] = None
    reason: Optional[str] = None
    metadata: dict = Field(default_factory=dict)


class AuditLogEntry(BaseModel):
    """
    Append-only record of one mutating action on a purchase order.
    timestamp is assigned at write time (ISO 8601 UTC).
    """
    id: Optional[int] = None
    purchase_order_id: str
    purchase_order_number: Optional[str] = None
    action: AuditAction
    performed_by: str
    performed_by_name: Optional[str] = None
    timestamp: Optional[str] = None
    changes: List[FieldChange] = Field(default_factory=list)
    reason: Optional[str] = None
    metadata: dict = Field(default_factory=dict)

    @property
    def old_values(self) -> dict:
        return {c.field: c.old_value for c in self.changes if c.old_value is not None}

    @property
    def new_values(self) -> dict:
        return {c.field: c.new_value for c in self.changes if c.new_value is not None}


class AuditLogFilter(BaseModel):
    purchase_order_id: Optional[str] = None
    performed_by: Optional[str] = None
    actions: Optional[List[AuditAction]] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    limit: int = 100
    offset: int = 0


class StockMovement(BaseModel):
    """Inventory trace for one line item received against a purchase order."""
    id: Optional[int] = None
    purchase_order_id: str
    purchase_order_number: Optional[str] = None
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    movement_type: str = "purchase_receipt"
    quantity_before: float
    quantity_after: float
    quantity_changed: float
    condition: Optional[str] = None
    batch_number: Optional[str] = None
    performed_by: str
    performed_by_name: Optional[str] = None
    timestamp: Optional[str] = None
    notes: Optional[str] = None


class AuditSummary(BaseModel):
    purchase_order_id: str
    total_events: int = 0
    action_counts: dict = Field(default_factory=dict)
    unique_users: List[str] = Field(default_factory=list)
    first_event: Optional[str] = None
    last_event: Optional[str] = None
    recent: List[AuditLogEntry] = Field(default_factory=list)
