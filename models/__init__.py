from .purchase_order import (
    PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus,
    NewPurchaseOrder, NewPurchaseOrderItem, PurchaseOrderUpdate,
)
from .supplier import Supplier
from .receiving import (
    DamageReport, ReceiptItem, ReceivingContext, ReceivingSubmission,
    ReceivingSubmissionItem, ReceivingValidationResult, ValidationIssue,
)
from .approval import Actor, ApprovalThreshold, ApprovalSubmission, ApprovalPermissionResult
from .audit import AuditAction, AuditLogEntry, AuditLogFilter, StockMovement
from .workflow import WorkflowSettings, ReceivingSettings, ToleranceSettings
from .result import OperationError, OperationResult

__all__ = [
    "PurchaseOrder", "PurchaseOrderItem", "PurchaseOrderStatus",
    "NewPurchaseOrder", "NewPurchaseOrderItem", "PurchaseOrderUpdate",
    "Supplier",
    "DamageReport", "ReceiptItem", "ReceivingContext", "ReceivingSubmission",
    "ReceivingSubmissionItem", "ReceivingValidationResult", "ValidationIssue",
    "Actor", "ApprovalThreshold", "ApprovalSubmission", "ApprovalPermissionResult",
    "AuditAction", "AuditLogEntry", "AuditLogFilter", "StockMovement",
    "WorkflowSettings", "ReceivingSettings", "ToleranceSettings",
    "OperationError", "OperationResult",
]
