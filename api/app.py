"""
Purchase Order Lifecycle Engine — FastAPI backend.

Thin JSON wrapper around PurchaseOrderOrchestrator. Every request builds an
orchestrator for the acting user named in the X-Actor-* headers (trusted;
authentication happens in front of this service).

All state lives in a single SQLite database (output/lifecycle.db). Workflow
settings are re-read from config/workflow_settings.json on every request.

Endpoints
---------
  GET    /api/health                               → liveness probe
  GET    /api/suppliers                            → list suppliers
  POST   /api/suppliers                            → create / update a supplier
  GET    /api/orders                               → list orders (?supplier_id= ?status=)
  POST   /api/orders                               → create a draft order
  GET    /api/orders/{id}                          → one order
  PATCH  /api/orders/{id}                          → edit an order
  DELETE /api/orders/{id}                          → delete (draft / cancelled only)
  POST   /api/orders/{id}/status                   → generic status change
  POST   /api/orders/{id}/submit                   → draft → pending_approval
  POST   /api/orders/{id}/approval                 → approve or reject
  POST   /api/orders/{id}/approval/validate        → dry-run approval permission check
  POST   /api/orders/{id}/send                     → approved → sent_to_supplier
  POST   /api/orders/{id}/cancel                   → cancel (reason required)
  POST   /api/orders/{id}/close                    → fully_received → closed
  POST   /api/orders/{id}/receipts                 → record goods received
  POST   /api/orders/{id}/receipts/validate        → dry-run receipt validation
  GET    /api/orders/{id}/transitions              → statuses reachable from here
  GET    /api/orders/{id}/next-status              → usual next status on the happy path
  GET    /api/orders/{id}/history                  → audit trail (?action=)
  GET    /api/orders/{id}/audit-summary            → audit counts and recent activity
  GET    /api/orders/{id}/stock-movements          → stock movements per received line
  GET    /api/audit                                → audit entries across orders
  GET    /api/settings                             → current workflow settings
  PUT    /api/settings                             → replace workflow settings
"""
import logging
import uuid
from typing import List, Literal, Optional

from fastapi import FastAPI, Header, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import Config
from models.approval import ApprovalSubmission
from models.audit import AuditAction, AuditLogFilter
from models.purchase_order import NewPurchaseOrder, PurchaseOrderUpdate
from models.receiving import ReceivingSubmission, ReceivingSubmissionItem
from models.result import OperationResult
from models.supplier import Supplier
from models.workflow import WorkflowSettings
from lifecycle.errors import LifecycleError
from lifecycle.identity import StaticIdentity
from lifecycle.ledger import SQLiteLedger
from lifecycle.notifier import build_notifier
from lifecycle.orchestrator import PurchaseOrderOrchestrator
from lifecycle.settings import WorkflowSettingsStore

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "NotFound":          404,
    "InvalidTransition": 409,
    "ConflictError":     409,
    "ValidationFailed":  422,
    "PermissionDenied":  403,
    "TransportError":    503,
}

# ---------------------------------------------------------------------------
# Ledger (opened lazily on first request so tests can point the app at a
# temporary database via configure())
# ---------------------------------------------------------------------------
_config: Optional[Config] = None
_ledger: Optional[SQLiteLedger] = None


def configure(config: Optional[Config] = None) -> None:
    """Point the app at a config; the ledger is reopened on next use."""
    global _config, _ledger
    _config = config
    _ledger = None


def get_config() -> Config:
    global _config
    if _config is None:
        _config = Config()
    return _config


def get_ledger() -> SQLiteLedger:
    global _ledger
    if _ledger is None:
        config = get_config()
        config.ensure_output_dir()
        _ledger = SQLiteLedger(config.db_path)
    return _ledger


def get_settings_store() -> WorkflowSettingsStore:
    return WorkflowSettingsStore(get_config().workflow_settings_path)


def get_orchestrator(
    actor_id: Optional[str],
    actor_name: Optional[str],
    actor_role: Optional[str],
) -> PurchaseOrderOrchestrator:
    config = get_config()
    identity = StaticIdentity.from_values(
        actor_id or config.actor_id,
        actor_name or config.actor_name,
        actor_role or config.actor_role,
    )
    return PurchaseOrderOrchestrator(
        get_ledger(),
        identity,
        get_settings_store(),
        notifier=build_notifier(config),
        default_currency=config.default_currency,
    )


def _respond(result: OperationResult, created: bool = False):
    """Success → 200/201 with the result body; failure → mapped status code."""
    body = result.model_dump(mode="json")
    if result.ok:
        return JSONResponse(status_code=201 if created else 200, content=body)
    return JSONResponse(status_code=STATUS_BY_KIND.get(result.error.kind, 400), content=body)


def _error_response(exc: LifecycleError) -> JSONResponse:
    body = OperationResult.failure(exc.to_operation_error()).model_dump(mode="json")
    return JSONResponse(status_code=STATUS_BY_KIND.get(exc.kind, 400), content=body)


app = FastAPI(title="Purchase Order Lifecycle Engine", docs_url=None, redoc_url=None)


# ── Request models ───────────────────────────────────────────────────────────

class SupplierBody(BaseModel):
    id: Optional[str] = None
    name: str
    category: Optional[str] = None
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    payment_terms: Optional[str] = None
    is_active: bool = True


class ReasonBody(BaseModel):
    reason: Optional[str] = None


class StatusChange(BaseModel):
    status: str
    reason: Optional[str] = None


class ApprovalBody(BaseModel):
    action: Literal["approve", "reject"]
    reason: Optional[str] = None
    approved_by: Optional[str] = None
    approval_level: Optional[int] = None
    max_approval_amount: Optional[float] = None


class ApprovalCheckBody(BaseModel):
    approval_level: Optional[int] = None
    max_approval_amount: Optional[float] = None


class ReceiptBody(BaseModel):
    received_by: Optional[str] = None
    items: List[ReceivingSubmissionItem] = Field(default_factory=list)
    is_partial: Optional[bool] = None
    partial_reason: Optional[str] = None
    receipt_date: Optional[str] = None
    notes: Optional[str] = None
    approval_granted_by: Optional[str] = None


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health():
    config = get_config()
    return {
        "status":        "ok",
        "db_path":       str(config.db_path),
        "db_exists":     config.db_path.exists(),
        "settings_file": str(config.workflow_settings_path),
    }


@app.get("/api/suppliers")
def list_suppliers(active_only: bool = Query(default=True)):
    return [s.model_dump(mode="json") for s in get_ledger().list_suppliers(active_only=active_only)]


@app.post("/api/suppliers", status_code=201)
def upsert_supplier(body: SupplierBody):
    data = body.model_dump()
    data["id"] = data["id"] or uuid.uuid4().hex
    try:
        supplier = get_ledger().upsert_supplier(Supplier(**data))
    except LifecycleError as exc:
        return _error_response(exc)
    logger.info("Supplier saved: %s (%s)", supplier.name, supplier.id)
    return supplier.model_dump(mode="json")


@app.get("/api/orders")
def list_orders(
    supplier_id: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.list_orders(
        supplier_id=supplier_id or None,
        status=status or None,
        limit=limit or get_config().default_page_size,
        offset=offset,
    ))


@app.post("/api/orders")
def create_order(
    body: NewPurchaseOrder,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.create_order(body), created=True)


@app.get("/api/orders/{order_id}")
def get_order(
    order_id: str,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.get_order(order_id))


@app.patch("/api/orders/{order_id}")
def update_order(
    order_id: str,
    body: PurchaseOrderUpdate,
    reason: Optional[str] = Query(default=None),
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.update_order(order_id, body, reason=reason))


@app.delete("/api/orders/{order_id}")
def delete_order(
    order_id: str,
    reason: Optional[str] = Query(default=None),
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.delete_order(order_id, reason=reason))


@app.post("/api/orders/{order_id}/status")
def change_status(
    order_id: str,
    body: StatusChange,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.change_status(order_id, body.status, reason=body.reason))


@app.post("/api/orders/{order_id}/submit")
def submit_order(
    order_id: str,
    body: Optional[ReasonBody] = None,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.submit_for_approval(order_id, reason=body.reason if body else None))


@app.post("/api/orders/{order_id}/approval")
def approve_order(
    order_id: str,
    body: ApprovalBody,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.approve(ApprovalSubmission(purchase_order_id=order_id, **body.model_dump())))


@app.post("/api/orders/{order_id}/approval/validate")
def validate_approval(
    order_id: str,
    body: Optional[ApprovalCheckBody] = None,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    body = body or ApprovalCheckBody()
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.validate_approval(
        order_id,
        approval_level=body.approval_level,
        max_approval_amount=body.max_approval_amount,
    ))


@app.post("/api/orders/{order_id}/send")
def send_order(
    order_id: str,
    body: Optional[ReasonBody] = None,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.send_to_supplier(order_id, reason=body.reason if body else None))


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: ReasonBody,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.cancel(order_id, reason=body.reason))


@app.post("/api/orders/{order_id}/close")
def close_order(
    order_id: str,
    body: Optional[ReasonBody] = None,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    return _respond(engine.close(order_id, reason=body.reason if body else None))


@app.post("/api/orders/{order_id}/receipts")
def receive_goods(
    order_id: str,
    body: ReceiptBody,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    submission = ReceivingSubmission(purchase_order_id=order_id, **body.model_dump())
    return _respond(engine.receive(submission))


@app.post("/api/orders/{order_id}/receipts/validate")
def validate_receipt(
    order_id: str,
    body: ReceiptBody,
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_name: Optional[str] = Header(default=None),
    x_actor_role: Optional[str] = Header(default=None),
):
    engine = get_orchestrator(x_actor_id, x_actor_name, x_actor_role)
    submission = ReceivingSubmission(purchase_order_id=order_id, **body.model_dump())
    return _respond(engine.validate_receipt(submission))


@app.get("/api/orders/{order_id}/transitions")
def get_transitions(order_id: str):
    return _respond(get_orchestrator(None, None, None).get_valid_transitions(order_id))


@app.get("/api/orders/{order_id}/next-status")
def get_next_status(order_id: str):
    return _respond(get_orchestrator(None, None, None).get_next_status(order_id))


@app.get("/api/orders/{order_id}/history")
def get_history(
    order_id: str,
    action: Optional[List[str]] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    engine = get_orchestrator(None, None, None)
    return _respond(engine.get_history(order_id, actions=action, limit=limit, offset=offset))


@app.get("/api/orders/{order_id}/audit-summary")
def get_audit_summary(order_id: str):
    return _respond(get_orchestrator(None, None, None).get_audit_summary(order_id))


@app.get("/api/orders/{order_id}/stock-movements")
def get_stock_movements(order_id: str):
    return _respond(get_orchestrator(None, None, None).get_stock_movements(order_id))


@app.get("/api/audit")
def query_audit(
    purchase_order_id: Optional[str] = Query(default=None),
    performed_by: Optional[str] = Query(default=None),
    action: Optional[List[str]] = Query(default=None),
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    try:
        actions = [AuditAction(a) for a in action] if action else None
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    flt = AuditLogFilter(
        purchase_order_id=purchase_order_id,
        performed_by=performed_by,
        actions=actions,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return _respond(get_orchestrator(None, None, None).query_audit(flt))


@app.get("/api/settings")
def get_settings():
    try:
        return get_settings_store().load().model_dump(mode="json")
    except LifecycleError as exc:
        return _error_response(exc)


@app.put("/api/settings")
def put_settings(body: WorkflowSettings):
    """Replace the workflow settings file. Inconsistent settings are refused."""
    store = get_settings_store()
    try:
        store.save(body)
    except LifecycleError as exc:
        return _error_response(exc)
    return body.model_dump(mode="json")
