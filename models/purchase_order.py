from enum import Enum
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator, model_validator

# Rounding tolerance for total == subtotal + tax
MONEY_TOLERANCE = 0.005


class PurchaseOrderStatus(str, Enum):
    """Canonical purchase order statuses."""
    DRAFT              = "draft"
    PENDING_APPROVAL   = "pending_approval"
    APPROVED           = "approved"
    SENT_TO_SUPPLIER   = "sent_to_supplier"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED     = "fully_received"
    CANCELLED          = "cancelled"
    CLOSED             = "closed"


# Short-form spellings still produced by older clients and stored records.
LEGACY_STATUS_ALIASES: dict[str, PurchaseOrderStatus] = {
    "sent":     PurchaseOrderStatus.SENT_TO_SUPPLIER,
    "partial":  PurchaseOrderStatus.PARTIALLY_RECEIVED,
    "received": PurchaseOrderStatus.FULLY_RECEIVED,
}


def normalize_status(value) -> PurchaseOrderStatus:
    """
    Map a status string (canonical or legacy alias) to PurchaseOrderStatus.

    Raises ValueError for anything not in either vocabulary.
    """
    if isinstance(value, PurchaseOrderStatus):
        return value
    key = str(value).strip().lower()
    if key in LEGACY_STATUS_ALIASES:
        return LEGACY_STATUS_ALIASES[key]
    try:
        return PurchaseOrderStatus(key)
    except ValueError:
        raise ValueError(f"Unknown purchase order status {value!r}") from None


def totals_match(subtotal: float, tax: float, total: float) -> bool:
    return abs((subtotal + tax) - total) <= MONEY_TOLERANCE


class PurchaseOrderItem(BaseModel):
    """A single line on a purchase order."""
    id: str
    product_id: str
    product_name: str
    sku: Optional[str] = None               # Denormalised for historical accuracy
    category: Optional[str] = None          # Product category (approval conditions)
    quantity: float                         # Ordered quantity
    unit_cost: float
    total: float
    received_quantity: float = 0            # Accumulated across all receipts

    @property
    def outstanding_quantity(self) -> float:
        return max(self.quantity - self.received_quantity, 0)

    @property
    def is_fully_received(self) -> bool:
        return self.received_quantity >= self.quantity


class PurchaseOrder(BaseModel):
    """
    A purchase order as persisted in the ledger.

    status is always canonical; legacy aliases are normalised on construction.
    Timestamps are ISO 8601 strings.
    """
    id: str
    po_number: str
    supplier_id: Optional[str] = None
    supplier_name: Optional[str] = None
    supplier_category: Optional[str] = None
    department: Optional[str] = None
    items: List[PurchaseOrderItem] = Field(default_factory=list)
    subtotal: float = 0
    tax: float = 0
    total: float = 0
    currency: str = "PHP"
    payment_terms: Optional[str] = None     # e.g. "Net 30"
    status: PurchaseOrderStatus = PurchaseOrderStatus.DRAFT
    expected_date: Optional[str] = None     # YYYY-MM-DD
    received_date: Optional[str] = None
    created_by: Optional[str] = None        # Actor id of the creator
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    notes: Optional[str] = None
    receipt_count: int = 0                  # Receiving events recorded so far

    @field_validator("status", mode="before")
    @classmethod
    def _normalise_status(cls, v):
        return normalize_status(v)

    def item_by_product(self, product_id: str) -> Optional[PurchaseOrderItem]:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    def item_by_id(self, item_id: str) -> Optional[PurchaseOrderItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    @property
    def totals_consistent(self) -> bool:
        return totals_match(self.subtotal, self.tax, self.total)


class NewPurchaseOrderItem(BaseModel):
    """Line item supplied by a caller creating or editing a draft order."""
    product_id: str
    product_name: str
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: float = Field(gt=0)
    unit_cost: float = Field(ge=0)
    total: Optional[float] = None           # Defaults to quantity * unit_cost

    @model_validator(mode="after")
    def _default_total(self):
        if self.total is None:
            self.total = round(self.quantity * self.unit_cost, 2)
        return self


class NewPurchaseOrder(BaseModel):
    """
    Request body for creating a purchase order.

    total is optional: when omitted it is derived as subtotal + tax. When
    supplied it must agree with subtotal + tax; a mismatch is rejected by
    the orchestrator rather than corrected.
    """
    supplier_id: str
    items: List[NewPurchaseOrderItem] = Field(default_factory=list)
    subtotal: Optional[float] = None        # Defaults to the sum of line totals
    tax: float = 0
    total: Optional[float] = None
    currency: Optional[str] = None          # Defaults to the engine's default currency
    payment_terms: Optional[str] = None
    department: Optional[str] = None
    expected_date: Optional[str] = None
    notes: Optional[str] = None
    po_number: Optional[str] = None         # Generated when omitted


class PurchaseOrderUpdate(BaseModel):
    """Partial update for an existing order. Unset fields are left alone."""
    items: Optional[List[NewPurchaseOrderItem]] = None
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    currency: Optional[str] = None
    payment_terms: Optional[str] = None
    department: Optional[str] = None
    expected_date: Optional[str] = None
    notes: Optional[str] = None

    @property
    def touches_money(self) -> bool:
        return any(v is not None for v in (self.items, self.subtotal, self.tax, self.total))
