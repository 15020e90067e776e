from .errors import (
    LifecycleError, NotFound, InvalidTransition, ValidationFailed,
    PermissionDenied, ConflictError, AuditWriteFailed, TransportError,
)
from .state_machine import can_transition, valid_transitions, execute_transition
from .tolerance import ReceivingToleranceValidator, validate_receiving
from .approval import ApprovalResolver
from .audit import AuditRecorder
from .ledger import Ledger, SQLiteLedger
from .identity import Identity, StaticIdentity
from .notifier import Notifier, LoggingNotifier, WebhookNotifier, build_notifier
from .settings import WorkflowSettingsStore
from .orchestrator import PurchaseOrderOrchestrator

__all__ = [
    "LifecycleError", "NotFound", "InvalidTransition", "ValidationFailed",
    "PermissionDenied", "ConflictError", "AuditWriteFailed", "TransportError",
    "can_transition", "valid_transitions", "execute_transition",
    "ReceivingToleranceValidator", "validate_receiving",
    "ApprovalResolver", "AuditRecorder", "Ledger", "SQLiteLedger",
    "Identity", "StaticIdentity",
    "Notifier", "LoggingNotifier", "WebhookNotifier", "build_notifier",
    "WorkflowSettingsStore", "PurchaseOrderOrchestrator",
]
