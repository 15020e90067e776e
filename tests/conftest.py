"""
Pytest configuration and shared fixtures for the lifecycle engine test suite.
"""
import os
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="po_lifecycle_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config(
        db_path=temp_dir / "output" / "lifecycle.db",
        config_dir=temp_dir / "config",
    )
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.ensure_output_dir()
    config.notify_webhook_url = None
    return config


@pytest.fixture
def test_ledger(test_config) -> "SQLiteLedger":
    """Provide an empty SQLite ledger."""
    from lifecycle.ledger import SQLiteLedger
    return SQLiteLedger(test_config.db_path)


@pytest.fixture
def workflow_settings() -> "WorkflowSettings":
    """Built-in workflow settings (thresholds at 10k / 50k)."""
    from models.workflow import WorkflowSettings
    return WorkflowSettings()


@pytest.fixture
def actors() -> dict:
    """A small cast of users keyed by short name."""
    from models.approval import Actor
    return {
        "clerk":      Actor(id="u-clerk", display_name="Carla Clerk", role="employee"),
        "supervisor": Actor(id="u-sup", display_name="Sam Supervisor", role="supervisor"),
        "manager":    Actor(id="u-mgr", display_name="Mia Manager", role="manager"),
        "admin":      Actor(id="u-admin", display_name="Ada Admin", role="admin"),
    }


@pytest.fixture
def make_engine(test_ledger, workflow_settings, actors) -> Callable:
    """
    Factory for orchestrators sharing one ledger.

    make_engine("manager") acts as the manager; pass settings= to override
    the workflow settings for that engine only.
    """
    from lifecycle.identity import StaticIdentity
    from lifecycle.orchestrator import PurchaseOrderOrchestrator

    def _make(actor="clerk", settings=None, **kwargs) -> PurchaseOrderOrchestrator:
        actor_obj = actors[actor] if isinstance(actor, str) else actor
        return PurchaseOrderOrchestrator(
            test_ledger,
            StaticIdentity(actor_obj),
            settings if settings is not None else workflow_settings,
            **kwargs,
        )
    return _make


@pytest.fixture
def sample_supplier(test_ledger) -> "Supplier":
    """An active supplier stored in the ledger."""
    from models.supplier import Supplier
    return test_ledger.upsert_supplier(Supplier(
        id="SUP-001",
        name="Acme Food Supplies",
        category="food",
        email="orders@acme.example",
        payment_terms="Net 30",
    ))


@pytest.fixture
def new_order_request(sample_supplier) -> "NewPurchaseOrder":
    """A two-line order worth 1,120.00 (1,000 + 120 tax)."""
    from models.purchase_order import NewPurchaseOrder, NewPurchaseOrderItem
    return NewPurchaseOrder(
        supplier_id=sample_supplier.id,
        items=[
            NewPurchaseOrderItem(product_id="P-RICE", product_name="Rice 25kg", sku="RICE-25",
                                 category="grains", quantity=10, unit_cost=50),
            NewPurchaseOrderItem(product_id="P-OIL", product_name="Cooking Oil 1L", sku="OIL-1",
                                 category="oils", quantity=20, unit_cost=25),
        ],
        tax=120,
        department="kitchen",
        expected_date="2026-12-01",
    )


@pytest.fixture
def draft_order(make_engine, new_order_request) -> "PurchaseOrder":
    """A draft order created by the clerk."""
    result = make_engine("clerk").create_order(new_order_request)
    assert result.ok, result.error
    return result.data


@pytest.fixture
def sent_order(make_engine, draft_order) -> "PurchaseOrder":
    """The draft order submitted, approved by the supervisor and sent."""
    from models.approval import ApprovalSubmission

    clerk = make_engine("clerk")
    assert clerk.submit_for_approval(draft_order.id).ok
    result = make_engine("supervisor").approve(
        ApprovalSubmission(purchase_order_id=draft_order.id, action="approve")
    )
    assert result.ok, result.error
    result = clerk.send_to_supplier(draft_order.id)
    assert result.ok, result.error
    return result.data


def receipt(order_id: str, lines: dict, **kwargs) -> "ReceivingSubmission":
    """Build a ReceivingSubmission from {product_id: quantity or dict}."""
    from models.receiving import ReceivingSubmission, ReceivingSubmissionItem
    items = []
    for product_id, line in lines.items():
        fields = line if isinstance(line, dict) else {"received_quantity": line}
        items.append(ReceivingSubmissionItem(product_id=product_id, **fields))
    return ReceivingSubmission(purchase_order_id=order_id, items=items, **kwargs)


@pytest.fixture
def make_receipt() -> Callable:
    return receipt


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
