from typing import Any, Optional, List, Literal

from pydantic import BaseModel, Field

from .purchase_order import PurchaseOrder, PurchaseOrderStatus

ItemCondition = Literal["good", "damaged", "expired", "rejected"]
QualityStatus = Literal["pending", "approved", "rejected"]
DamageSeverity = Literal["minor", "moderate", "severe"]
IssueSeverity = Literal["error", "warning"]


class DamageReport(BaseModel):
    """Damage details attached to a receipt line with condition 'damaged'."""
    category: str                           # e.g. "Physical Damage"
    description: str = ""
    severity: DamageSeverity = "minor"
    affected_quantity: float = 0
    photographs: List[str] = Field(default_factory=list)   # URLs / file refs
    reported_by: Optional[str] = None
    estimated_loss: Optional[float] = None
    supplier_notified: bool = False


class ReceiptItem(BaseModel):
    """
    One line of a receiving event, as evaluated by the tolerance validator.

    received_quantity is the quantity received in THIS event;
    previously_received_quantity is what the order line held beforehand.
    """
    purchase_order_item_id: str
    product_id: str
    product_name: str = ""
    sku: Optional[str] = None
    ordered_quantity: float
    received_quantity: float = Field(ge=0)
    previously_received_quantity: float = 0
    condition: ItemCondition = "good"
    quality_status: Optional[QualityStatus] = None
    expiry_date: Optional[str] = None       # YYYY-MM-DD or ISO datetime
    batch_number: Optional[str] = None
    damage_report: Optional[DamageReport] = None
    notes: Optional[str] = None

    @property
    def total_received(self) -> float:
        return self.previously_received_quantity + self.received_quantity


class ReceivingContext(BaseModel):
    """Everything about the receipt that is not per-line."""
    purchase_order_id: str
    user_id: str
    user_role: str
    is_partial_receipt: bool = False
    previous_receipts_count: int = 0
    partial_reason: Optional[str] = None
    receipt_date: Optional[str] = None      # Defaults to "now" for expiry maths


class ReceivingSubmissionItem(BaseModel):
    """One line of a receiving request as submitted by a caller."""
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    ordered_quantity: Optional[float] = None   # Informational; the order is authoritative
    received_quantity: float = Field(ge=0)
    condition: ItemCondition = "good"
    quality_status: Optional[QualityStatus] = None
    expiry_date: Optional[str] = None
    batch_number: Optional[str] = None
    damage_report: Optional[DamageReport] = None
    notes: Optional[str] = None


class ReceivingSubmission(BaseModel):
    """
    Request to record a receiving event against a purchase order.

    is_partial=None lets the orchestrator infer it: the receipt is partial
    unless it brings every line up to its ordered quantity.
    """
    purchase_order_id: str
    received_by: Optional[str] = None
    items: List[ReceivingSubmissionItem] = Field(default_factory=list)
    is_partial: Optional[bool] = None
    partial_reason: Optional[str] = None
    receipt_date: Optional[str] = None
    notes: Optional[str] = None
    approval_granted_by: Optional[str] = None   # Role of an approver signing off


class ValidationIssue(BaseModel):
    """A single error or warning raised while validating a receipt."""
    code: str
    message: str
    severity: IssueSeverity = "error"
    field: Optional[str] = None
    item_id: Optional[str] = None
    recommendation: Optional[str] = None
    blocking: bool = True


class ReceivingAdjustment(BaseModel):
    """A follow-up action suggested by validation (e.g. notify supplier)."""
    adjustment_type: Literal["quantity", "quality", "damage", "expiry"]
    description: str
    item_id: Optional[str] = None
    original_value: Any = None
    adjusted_value: Any = None
    reason: Optional[str] = None
    requires_approval: bool = False


class ReceivingValidationResult(BaseModel):
    is_valid: bool = True
    can_proceed: bool = True
    requires_approval: bool = False
    required_roles: List[str] = Field(default_factory=list)
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    adjustments: List[ReceivingAdjustment] = Field(default_factory=list)

    def compute_summary(self) -> None:
        """Populate is_valid / can_proceed from the collected issues."""
        self.is_valid = not self.errors
        self.can_proceed = self.is_valid or self.requires_approval
        self.required_roles = list(dict.fromkeys(self.required_roles))


class ReceivingStatistics(BaseModel):
    total_items: int = 0
    fully_received_items: int = 0
    partially_received_items: int = 0
    damaged_items: int = 0
    expired_items: int = 0
    completion_percentage: float = 0
    total_variance: float = 0
    average_variance_percentage: float = 0


class ReceivingOutcome(BaseModel):
    """What a successful receive() returns."""
    order: PurchaseOrder
    resulting_status: PurchaseOrderStatus
    is_partial: bool
    validation: ReceivingValidationResult
    stock_movements_written: int = 0


class ReceiptPreview(BaseModel):
    """Dry-run result of validating a receipt without recording it."""
    purchase_order_id: str
    is_partial: bool
    resulting_status: PurchaseOrderStatus
    validation: ReceivingValidationResult
    statistics: ReceivingStatistics
    recommendations: List[str] = Field(default_factory=list)
