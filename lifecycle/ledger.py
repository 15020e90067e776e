"""
Ledger: durable storage for purchase orders, suppliers, audit entries and
stock movements.

The orchestrator only depends on the Ledger protocol. SQLiteLedger is the
bundled implementation: one database file (output/lifecycle.db by default)
with a connection per call, WAL journaling, and a compare-and-swap status
update so two concurrent transitions on one order cannot both win.

Tables
------
  suppliers        supplier master data
  purchase_orders  denormalised filter columns + full order JSON in `data`
  audit_log        append-only AuditLogEntry rows (changes/metadata as JSON)
  stock_movements  one row per line received in a receiving event

sqlite3.IntegrityError surfaces as ConflictError and sqlite3.OperationalError
(locked database, disk I/O) as TransportError.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from models.audit import AuditLogEntry, AuditLogFilter, AuditSummary, StockMovement
from models.purchase_order import PurchaseOrder, PurchaseOrderStatus, normalize_status
from models.supplier import Supplier
from lifecycle.errors import ConflictError, NotFound, TransportError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS suppliers (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    category        TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    data            TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS purchase_orders (
    id              TEXT PRIMARY KEY,
    po_number       TEXT NOT NULL UNIQUE,
    supplier_id     TEXT,
    supplier_name   TEXT,
    status          TEXT NOT NULL DEFAULT 'draft',
    total           REAL NOT NULL DEFAULT 0,
    created_by      TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT,

    -- Full PurchaseOrder serialised as JSON (items included)
    data            TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_po_status     ON purchase_orders (status);
CREATE INDEX IF NOT EXISTS idx_po_supplier   ON purchase_orders (supplier_id);
CREATE INDEX IF NOT EXISTS idx_po_created_at ON purchase_orders (created_at DESC);

CREATE TABLE IF NOT EXISTS audit_log (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    purchase_order_id     TEXT NOT NULL,
    purchase_order_number TEXT,
    timestamp             TEXT NOT NULL,   -- ISO-8601 UTC, set at write time
    action                TEXT NOT NULL,   -- AuditAction value
    performed_by          TEXT NOT NULL,
    performed_by_name     TEXT,
    reason                TEXT,
    changes               TEXT NOT NULL,   -- JSON list of {field, old_value, new_value}
    metadata              TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_po        ON audit_log (purchase_order_id);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_log (timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_actor     ON audit_log (performed_by);

CREATE TABLE IF NOT EXISTS stock_movements (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    purchase_order_id     TEXT NOT NULL,
    purchase_order_number TEXT,
    product_id            TEXT NOT NULL,
    product_name          TEXT,
    sku                   TEXT,
    movement_type         TEXT NOT NULL,
    quantity_before       REAL NOT NULL,
    quantity_after        REAL NOT NULL,
    quantity_changed      REAL NOT NULL,
    condition             TEXT,
    batch_number          TEXT,
    performed_by          TEXT NOT NULL,
    performed_by_name     TEXT,
    timestamp             TEXT NOT NULL,
    notes                 TEXT
);

CREATE INDEX IF NOT EXISTS idx_movements_po ON stock_movements (purchase_order_id);
"""


class Ledger(Protocol):
    """Storage operations the lifecycle engine consumes."""

    def create_order(self, order: PurchaseOrder) -> PurchaseOrder: ...

    def get_order(self, order_id: str) -> Optional[PurchaseOrder]: ...

    def update_order(
        self,
        order: PurchaseOrder,
        expected_status: Optional[PurchaseOrderStatus] = None,
        expected_updated_at: Optional[str] = None,
    ) -> PurchaseOrder: ...

    def delete_order(self, order_id: str) -> bool: ...

    def list_orders(
        self,
        supplier_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PurchaseOrder]: ...

    def next_po_number(self, now: Optional[datetime] = None) -> str: ...

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]: ...

    def upsert_supplier(self, supplier: Supplier) -> Supplier: ...

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry: ...

    def query_audit_entries(self, flt: AuditLogFilter) -> list[AuditLogEntry]: ...

    def summarize_audit_entries(self, order_id: str) -> AuditSummary: ...

    def append_stock_movement(self, movement: StockMovement) -> StockMovement: ...

    def query_stock_movements(self, order_id: str) -> list[StockMovement]: ...


class SQLiteLedger:
    """Thin wrapper around an SQLite database file implementing Ledger."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    @contextmanager
    def _conn(self):
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30)
        except sqlite3.Error as exc:
            raise TransportError(f"Cannot open ledger database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as exc:
            conn.rollback()
            raise ConflictError(f"Ledger constraint violated: {exc}") from exc
        except sqlite3.OperationalError as exc:
            conn.rollback()
            raise TransportError(f"Ledger unavailable: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Ledger schema ready: %s", self.db_path)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    @staticmethod
    def _order_params(order: PurchaseOrder) -> dict:
        return {
            "id":            order.id,
            "po_number":     order.po_number,
            "supplier_id":   order.supplier_id,
            "supplier_name": order.supplier_name,
            "status":        order.status.value,
            "total":         order.total,
            "created_by":    order.created_by,
            "created_at":    order.created_at or datetime.now(timezone.utc).isoformat(),
            "updated_at":    order.updated_at,
            "data":          order.model_dump_json(),
        }

    def create_order(self, order: PurchaseOrder) -> PurchaseOrder:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO purchase_orders (
                    id, po_number, supplier_id, supplier_name, status,
                    total, created_by, created_at, updated_at, data
                ) VALUES (
                    :id, :po_number, :supplier_id, :supplier_name, :status,
                    :total, :created_by, :created_at, :updated_at, :data
                )
                """,
                self._order_params(order),
            )
        logger.info("Ledger created order %s (%s)", order.po_number, order.id)
        return order

    def get_order(self, order_id: str) -> Optional[PurchaseOrder]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM purchase_orders WHERE id = ?", (order_id,)
            ).fetchone()
        return PurchaseOrder.model_validate_json(row["data"]) if row else None

    def update_order(
        self,
        order: PurchaseOrder,
        expected_status: Optional[PurchaseOrderStatus] = None,
        expected_updated_at: Optional[str] = None,
    ) -> PurchaseOrder:
        """
        Replace the stored order.

        With expected_status (and optionally expected_updated_at) the write
        only happens if the stored row still matches; otherwise
        ConflictError is raised and nothing changes.
        """
        params = self._order_params(order)
        sql = """
            UPDATE purchase_orders SET
                po_number     = :po_number,
                supplier_id   = :supplier_id,
                supplier_name = :supplier_name,
                status        = :status,
                total         = :total,
                updated_at    = :updated_at,
                data          = :data
            WHERE id = :id
        """
        if expected_status is not None:
            sql += " AND status = :expected_status"
            params["expected_status"] = normalize_status(expected_status).value
        if expected_updated_at is not None:
            sql += " AND updated_at IS :expected_updated_at"
            params["expected_updated_at"] = expected_updated_at

        with self._conn() as conn:
            conn.execute(sql, params)
            changed = conn.execute("SELECT changes()").fetchone()[0]
            if not changed:
                row = conn.execute(
                    "SELECT status, updated_at FROM purchase_orders WHERE id = ?", (order.id,)
                ).fetchone()

        if not changed:
            if row is None:
                raise NotFound(f"Purchase order {order.id} not found")
            raise ConflictError(
                f"Purchase order {order.id} was modified concurrently "
                f"(expected status {params.get('expected_status')}, found {row['status']})",
                details={
                    "expected_status": params.get("expected_status"),
                    "actual_status": row["status"],
                    "expected_updated_at": expected_updated_at,
                    "actual_updated_at": row["updated_at"],
                },
            )
        return order

    def delete_order(self, order_id: str) -> bool:
        with self._conn() as conn:
            conn.execute("DELETE FROM purchase_orders WHERE id = ?", (order_id,))
            return conn.execute("SELECT changes()").fetchone()[0] > 0

    def list_orders(
        self,
        supplier_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[PurchaseOrder]:
        """Return orders newest-first, optionally filtered by supplier and status."""
        clauses: list[str] = []
        params: list = []

        if supplier_id:
            clauses.append("supplier_id = ?")
            params.append(supplier_id)
        if status:
            clauses.append("status = ?")
            params.append(normalize_status(status).value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])

        with self._conn() as conn:
            rows = conn.execute(
                f"""
                SELECT data FROM purchase_orders
                {where}
                ORDER BY created_at DESC, po_number DESC
                LIMIT ? OFFSET ?
                """,
                params,
            ).fetchall()
        return [PurchaseOrder.model_validate_json(r["data"]) for r in rows]

    def next_po_number(self, now: Optional[datetime] = None) -> str:
        """Next number in the PO-YYYYMM-NNNN sequence for the current month."""
        now = now or datetime.now(timezone.utc)
        prefix = f"PO-{now:%Y%m}-"
        with self._conn() as conn:
            row = conn.execute(
                "SELECT po_number FROM purchase_orders WHERE po_number LIKE ? "
                "ORDER BY po_number DESC LIMIT 1",
                (prefix + "%",),
            ).fetchone()
        seq = 1
        if row:
            try:
                seq = int(row["po_number"][len(prefix):]) + 1
            except ValueError:
                logger.warning("Unparseable PO number in ledger: %s", row["po_number"])
        return f"{prefix}{seq:04d}"

    # ------------------------------------------------------------------
    # Suppliers
    # ------------------------------------------------------------------

    def get_supplier(self, supplier_id: str) -> Optional[Supplier]:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT data FROM suppliers WHERE id = ?", (supplier_id,)
            ).fetchone()
        return Supplier.model_validate_json(row["data"]) if row else None

    def upsert_supplier(self, supplier: Supplier) -> Supplier:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO suppliers (id, name, category, is_active, data)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name      = excluded.name,
                    category  = excluded.category,
                    is_active = excluded.is_active,
                    data      = excluded.data
                """,
                (
                    supplier.id,
                    supplier.name,
                    supplier.category,
                    int(supplier.is_active),
                    supplier.model_dump_json(),
                ),
            )
        return supplier

    def list_suppliers(self, active_only: bool = True) -> list[Supplier]:
        sql = "SELECT data FROM suppliers"
        if active_only:
            sql += " WHERE is_active = 1"
        with self._conn() as conn:
            rows = conn.execute(sql + " ORDER BY name").fetchall()
        return [Supplier.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    # Audit log and stock movements (append-only)
    # ------------------------------------------------------------------

    def append_audit_entry(self, entry: AuditLogEntry) -> AuditLogEntry:
        """Insert one audit entry, stamping its timestamp now."""
        stamped = entry.model_copy(update={"timestamp": datetime.now(timezone.utc).isoformat()})
        with self._conn() as conn:
            cur = conn.execute(
                """INSERT INTO audit_log (
                       purchase_order_id, purchase_order_number, timestamp, action,
                       performed_by, performed_by_name, reason, changes, metadata
                   ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    stamped.purchase_order_id,
                    stamped.purchase_order_number,
                    stamped.timestamp,
                    stamped.action.value,
                    stamped.performed_by,
                    stamped.performed_by_name,
                    stamped.reason,
                    json.dumps([c.model_dump(mode="json") for c in stamped.changes]),
                    json.dumps(stamped.metadata, default=str),
                ),
            )
            stamped.id = cur.lastrowid
        return stamped

    def query_audit_entries(self, flt: AuditLogFilter) -> list[AuditLogEntry]:
        """Return matching entries newest first."""
        clauses: list[str] = []
        params: list = []

        if flt.purchase_order_id:
            clauses.append("purchase_order_id = ?")
            params.append(flt.purchase_order_id)
        if flt.performed_by:
            clauses.append("performed_by = ?")
            params.append(flt.performed_by)
        if flt.actions:
            clauses.append(f"action IN ({', '.join('?' for _ in flt.actions)})")
            params.extend(a.value for a in flt.actions)
        if flt.start_date:
            clauses.append("timestamp >= ?")
            params.append(flt.start_date)
        if flt.end_date:
            clauses.append("timestamp <= ?")
            params.append(flt.end_date)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([flt.limit, flt.offset])

        with self._conn() as conn:
            rows = conn.execute(
                f"""SELECT * FROM audit_log
                    {where}
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ? OFFSET ?""",
                params,
            ).fetchall()

        return [
            AuditLogEntry(
                id=r["id"],
                purchase_order_id=r["purchase_order_id"],
                purchase_order_number=r["purchase_order_number"],
                action=r["action"],
                performed_by=r["performed_by"],
                performed_by_name=r["performed_by_name"],
                timestamp=r["timestamp"],
                changes=json.loads(r["changes"]),
                reason=r["reason"],
                metadata=json.loads(r["metadata"]) if r["metadata"] else {},
            )
            for r in rows
        ]

    def summarize_audit_entries(self, order_id: str) -> AuditSummary:
        """Counts and time span of an order's audit trail, computed in SQL."""
        with self._conn() as conn:
            counts = conn.execute(
                """SELECT action, COUNT(*) AS n FROM audit_log
                   WHERE purchase_order_id = ?
                   GROUP BY action ORDER BY action""",
                (order_id,),
            ).fetchall()
            users = conn.execute(
                """SELECT DISTINCT performed_by FROM audit_log
                   WHERE purchase_order_id = ? ORDER BY performed_by""",
                (order_id,),
            ).fetchall()
            span = conn.execute(
                """SELECT MIN(timestamp) AS first_event, MAX(timestamp) AS last_event
                   FROM audit_log WHERE purchase_order_id = ?""",
                (order_id,),
            ).fetchone()

        action_counts = {r["action"]: r["n"] for r in counts}
        return AuditSummary(
            purchase_order_id=order_id,
            total_events=sum(action_counts.values()),
            action_counts=action_counts,
            unique_users=[r["performed_by"] for r in users],
            first_event=span["first_event"],
            last_event=span["last_event"],
        )

    def append_stock_movement(self, movement: StockMovement) -> StockMovement:
        stamped = movement.model_copy(update={"timestamp": datetime.now(timezone.utc).isoformat()})
        data = stamped.model_dump(exclude={"id"})
        with self._conn() as conn:
            cur = conn.execute(
                f"""INSERT INTO stock_movements ({', '.join(data)})
                    VALUES ({', '.join(':' + k for k in data)})""",
                data,
            )
            stamped.id = cur.lastrowid
        return stamped

    def query_stock_movements(self, order_id: str) -> list[StockMovement]:
        with self._conn() as conn:
            rows = conn.execute(
                """SELECT * FROM stock_movements WHERE purchase_order_id = ?
                   ORDER BY timestamp DESC, id DESC""",
                (order_id,),
            ).fetchall()
        return [StockMovement(**dict(r)) for r in rows]
