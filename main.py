#!/usr/bin/env python3
"""
Purchase Order Lifecycle Engine — CLI entry point.

Usage examples:
  python main.py init                               # Restore config files, create the database
  python main.py check                              # Verify config and database
  python main.py supplier add "Acme Foods" --category food
  python main.py create order.json                  # Create a draft order from JSON
  python main.py list --status pending_approval
  python main.py submit <order-id>
  python main.py --actor-id u2 --actor-role manager approve <order-id>
  python main.py receive receipt.json               # Record goods received
  python main.py history <order-id> --action approved

The acting user comes from --actor-id / --actor-name / --actor-role or the
ACTOR_ID / ACTOR_NAME / ACTOR_ROLE environment variables.
"""
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from config import Config
from models.approval import ApprovalSubmission
from models.purchase_order import NewPurchaseOrder, PurchaseOrder
from models.receiving import ReceivingOutcome, ReceivingSubmission
from models.result import OperationResult
from models.supplier import Supplier
from lifecycle.errors import LifecycleError
from lifecycle.identity import StaticIdentity
from lifecycle.ledger import SQLiteLedger
from lifecycle.notifier import build_notifier
from lifecycle.orchestrator import PurchaseOrderOrchestrator
from lifecycle.settings import WorkflowSettingsStore, check_settings


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _engine(ctx: click.Context) -> PurchaseOrderOrchestrator:
    config: Config = ctx.obj["config"]
    config.ensure_output_dir()
    identity = StaticIdentity.from_values(config.actor_id, config.actor_name, config.actor_role)
    return PurchaseOrderOrchestrator(
        SQLiteLedger(config.db_path),
        identity,
        WorkflowSettingsStore(config.workflow_settings_path),
        notifier=build_notifier(config),
        default_currency=config.default_currency,
    )


def _load_json(path: str) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        click.echo(f"Error: cannot read {path}: {e}", err=True)
        sys.exit(1)


def _print_order(order: PurchaseOrder) -> None:
    click.echo()
    click.echo(f"  PO:          {order.po_number}  ({order.id})")
    click.echo(f"  Status:      {order.status.value}")
    click.echo(f"  Supplier:    {order.supplier_name or order.supplier_id}")
    click.echo(f"  Total:       {order.currency} {order.total:,.2f}  "
               f"(subtotal {order.subtotal:,.2f} + tax {order.tax:,.2f})")
    click.echo(f"  Created by:  {order.created_by or '(unknown)'}  at {order.created_at or '-'}")
    if order.expected_date:
        click.echo(f"  Expected:    {order.expected_date}")
    if order.received_date:
        click.echo(f"  Received:    {order.received_date}")
    click.echo()
    for item in order.items:
        tick = "✓" if item.is_fully_received else " "
        click.echo(
            f"    {tick} {item.product_name:<30} {item.received_quantity:g}/{item.quantity:g}"
            f"  @ {item.unit_cost:,.2f} = {item.total:,.2f}"
        )
    click.echo()


def _finish(ctx: click.Context, result: OperationResult) -> None:
    """Print a result (or its error) and exit non-zero on failure."""
    if ctx.obj.get("json"):
        click.echo(result.model_dump_json(indent=2))
        if not result.ok:
            sys.exit(1)
        return

    if not result.ok:
        err = result.error
        click.echo(f"✗ {err.kind}: {err.message}", err=True)
        for e in err.errors:
            msg = e.get("message") if isinstance(e, dict) else e
            click.echo(f"    - {msg}", err=True)
        sys.exit(1)

    data = result.data
    if isinstance(data, ReceivingOutcome):
        _print_order(data.order)
        click.echo(f"  Receipt:     {'partial' if data.is_partial else 'complete'}, "
                   f"{data.stock_movements_written} stock movement(s) written")
    elif isinstance(data, PurchaseOrder):
        _print_order(data)
    elif isinstance(data, list):
        for row in data:
            if isinstance(row, PurchaseOrder):
                click.echo(f"  {row.po_number:<16} {row.status.value:<20} "
                           f"{row.currency} {row.total:>12,.2f}  {row.supplier_name or ''}  {row.id}")
            elif hasattr(row, "action"):
                click.echo(f"  {row.timestamp}  {row.action.value:<20} {row.performed_by:<12} "
                           f"{row.reason or ''}")
            else:
                click.echo(f"  {row}")
    elif hasattr(data, "model_dump_json"):
        click.echo(data.model_dump_json(indent=2))
    else:
        click.echo(json.dumps(data, indent=2, default=str))

    for w in result.warnings:
        click.echo(f"  ⚠ {w}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON results")
@click.option("--db", default=None, type=click.Path(), help="Path to the SQLite database")
@click.option("--actor-id", default=None, help="Acting user id (default: ACTOR_ID env var)")
@click.option("--actor-name", default=None, help="Acting user display name")
@click.option("--actor-role", default=None, help="Acting user role (default: ACTOR_ROLE or employee)")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    as_json: bool,
    db: Optional[str],
    actor_id: Optional[str],
    actor_name: Optional[str],
    actor_role: Optional[str],
) -> None:
    """Purchase Order Lifecycle Engine: create, approve, send and receive purchase orders."""
    ctx.ensure_object(dict)
    _setup_logging(verbose)
    config = Config()
    if db:
        config.db_path = Path(db)
    if actor_id:
        config.actor_id = actor_id
    if actor_name:
        config.actor_name = actor_name
    if actor_role:
        config.actor_role = actor_role
    ctx.obj["config"] = config
    ctx.obj["json"] = as_json


# --------------------------------------------------------------------
# setup commands
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Restore missing config files from defaults/ and create the database."""
    from bootstrap import ensure_config_files

    config: Config = ctx.obj["config"]
    restored = ensure_config_files(config.config_dir)
    config.ensure_output_dir()
    SQLiteLedger(config.db_path)
    click.echo(f"  Config directory:  {config.config_dir}"
               + (f"  (restored: {', '.join(restored)})" if restored else ""))
    click.echo(f"  Database:          {config.db_path}")


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the workflow settings and database are usable."""
    config: Config = ctx.obj["config"]
    click.echo("\n=== Lifecycle Engine Setup Check ===\n")

    ok = True
    path = config.workflow_settings_path
    if not path.exists():
        click.echo(f"  {path.name:<28} ✗ (file not found, built-in defaults apply)")
    else:
        try:
            settings = WorkflowSettingsStore(path).load()
            errors, warnings = check_settings(settings)
            click.echo(f"  {path.name:<28} ✓ ({len(settings.approval_thresholds)} thresholds)")
            for w in warnings:
                click.echo(f"     ⚠ {w}")
        except LifecycleError as e:
            ok = False
            click.echo(f"  {path.name:<28} ✗ {e.message}")
            for msg in e.errors:
                click.echo(f"     - {msg}")

    tick = "✓" if config.db_path.exists() else "✗"
    click.echo(f"  {'Database':<28} {tick}  {config.db_path}")
    hook = config.notify_webhook_url or "(not configured, notifications are logged)"
    click.echo(f"  {'Notification webhook':<28} {hook}")
    click.echo()
    if not ok:
        sys.exit(1)


# --------------------------------------------------------------------
# supplier commands
# --------------------------------------------------------------------

@cli.group()
def supplier() -> None:
    """Manage suppliers."""


@supplier.command("add")
@click.argument("name")
@click.option("--id", "supplier_id", default=None, help="Supplier id (default: generated)")
@click.option("--category", default=None, help="Supplier category (used by approval conditions)")
@click.option("--payment-terms", default=None, help="Default payment terms for new orders")
@click.option("--email", default=None)
@click.option("--inactive", is_flag=True, help="Create the supplier as inactive")
@click.pass_context
def supplier_add(
    ctx: click.Context,
    name: str,
    supplier_id: Optional[str],
    category: Optional[str],
    payment_terms: Optional[str],
    email: Optional[str],
    inactive: bool,
) -> None:
    """Create or update a supplier."""
    engine = _engine(ctx)
    saved = engine.ledger.upsert_supplier(Supplier(
        id=supplier_id or uuid.uuid4().hex,
        name=name,
        category=category,
        payment_terms=payment_terms,
        email=email,
        is_active=not inactive,
    ))
    click.echo(f"  Supplier saved: {saved.name}  ({saved.id})")


# --------------------------------------------------------------------
# order commands
# --------------------------------------------------------------------

@cli.command()
@click.argument("order_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def create(ctx: click.Context, order_file: str) -> None:
    """Create a draft purchase order from ORDER_FILE (JSON)."""
    try:
        request = NewPurchaseOrder.model_validate(_load_json(order_file))
    except ValidationError as e:
        click.echo(f"Error: invalid order file: {e}", err=True)
        sys.exit(1)
    _finish(ctx, _engine(ctx).create_order(request))


@cli.command()
@click.argument("order_id")
@click.pass_context
def show(ctx: click.Context, order_id: str) -> None:
    """Show one purchase order."""
    _finish(ctx, _engine(ctx).get_order(order_id))


@cli.command("list")
@click.option("--status", default=None, help="Filter by status")
@click.option("--supplier-id", default=None, help="Filter by supplier")
@click.option("--limit", default=None, type=int, help="Page size (default: DEFAULT_PAGE_SIZE)")
@click.option("--offset", default=0, type=int)
@click.pass_context
def list_orders(
    ctx: click.Context,
    status: Optional[str],
    supplier_id: Optional[str],
    limit: Optional[int],
    offset: int,
) -> None:
    """List purchase orders, newest first."""
    config: Config = ctx.obj["config"]
    _finish(ctx, _engine(ctx).list_orders(
        supplier_id=supplier_id,
        status=status,
        limit=limit or config.default_page_size,
        offset=offset,
    ))


@cli.command()
@click.argument("order_id")
@click.option("--reason", default=None)
@click.pass_context
def submit(ctx: click.Context, order_id: str, reason: Optional[str]) -> None:
    """Submit a draft for approval (auto-approves when the threshold allows)."""
    _finish(ctx, _engine(ctx).submit_for_approval(order_id, reason=reason))


@cli.command()
@click.argument("order_id")
@click.option("--reason", default=None)
@click.option("--level", "approval_level", default=None, type=int,
              help="Cap your approval level for this approval (never raises it)")
@click.option("--limit", "max_amount", default=None, type=float,
              help="Cap your approval limit for this approval (never raises it)")
@click.pass_context
def approve(
    ctx: click.Context,
    order_id: str,
    reason: Optional[str],
    approval_level: Optional[int],
    max_amount: Optional[float],
) -> None:
    """Approve a purchase order that is pending approval."""
    _finish(ctx, _engine(ctx).approve(ApprovalSubmission(
        purchase_order_id=order_id,
        action="approve",
        reason=reason,
        approval_level=approval_level,
        max_approval_amount=max_amount,
    )))


@cli.command()
@click.argument("order_id")
@click.option("--reason", required=True, help="Why the order is rejected")
@click.pass_context
def reject(ctx: click.Context, order_id: str, reason: str) -> None:
    """Reject a pending purchase order (returns it to draft by default)."""
    _finish(ctx, _engine(ctx).reject(order_id, reason=reason))


@cli.command()
@click.argument("order_id")
@click.option("--reason", default=None)
@click.pass_context
def send(ctx: click.Context, order_id: str, reason: Optional[str]) -> None:
    """Mark an approved order as sent to the supplier."""
    _finish(ctx, _engine(ctx).send_to_supplier(order_id, reason=reason))


@cli.command()
@click.argument("receipt_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--dry-run", is_flag=True, help="Validate only; nothing is written")
@click.pass_context
def receive(ctx: click.Context, receipt_file: str, dry_run: bool) -> None:
    """
    Record goods received from RECEIPT_FILE (JSON).

    \b
    The file holds purchase_order_id and items, each with product_id and
    received_quantity plus optional condition, quality_status, expiry_date,
    batch_number and damage_report.
    """
    try:
        submission = ReceivingSubmission.model_validate(_load_json(receipt_file))
    except ValidationError as e:
        click.echo(f"Error: invalid receipt file: {e}", err=True)
        sys.exit(1)
    engine = _engine(ctx)
    if dry_run:
        _finish(ctx, engine.validate_receipt(submission))
    else:
        _finish(ctx, engine.receive(submission))


@cli.command()
@click.argument("order_id")
@click.option("--reason", required=True, help="Why the order is cancelled")
@click.pass_context
def cancel(ctx: click.Context, order_id: str, reason: str) -> None:
    """Cancel a purchase order."""
    _finish(ctx, _engine(ctx).cancel(order_id, reason=reason))


@cli.command()
@click.argument("order_id")
@click.option("--reason", default=None)
@click.pass_context
def close(ctx: click.Context, order_id: str, reason: Optional[str]) -> None:
    """Close a fully received purchase order."""
    _finish(ctx, _engine(ctx).close(order_id, reason=reason))


@cli.command()
@click.argument("order_id")
@click.option("--reason", default=None)
@click.confirmation_option(prompt="Delete this purchase order?")
@click.pass_context
def delete(ctx: click.Context, order_id: str, reason: Optional[str]) -> None:
    """Delete a draft or cancelled purchase order."""
    _finish(ctx, _engine(ctx).delete_order(order_id, reason=reason))


@cli.command()
@click.argument("order_id")
@click.option("--action", "actions", multiple=True, help="Only show these actions (repeatable)")
@click.option("--summary", is_flag=True, help="Show counts and recent activity instead")
@click.pass_context
def history(ctx: click.Context, order_id: str, actions: tuple, summary: bool) -> None:
    """Show the audit trail for an order, newest first."""
    engine = _engine(ctx)
    if summary:
        _finish(ctx, engine.get_audit_summary(order_id))
    else:
        _finish(ctx, engine.get_history(order_id, actions=list(actions) or None))


@cli.command()
@click.argument("order_id")
@click.pass_context
def transitions(ctx: click.Context, order_id: str) -> None:
    """List the statuses an order can move to next."""
    engine = _engine(ctx)
    _finish(ctx, engine.get_valid_transitions(order_id))
    if not ctx.obj.get("json"):
        suggested = engine.get_next_status(order_id).data
        if suggested:
            click.echo(f"  Suggested next: {suggested}")


if __name__ == "__main__":
    cli()
