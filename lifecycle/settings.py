"""
Workflow settings source.

WorkflowSettingsStore reads config/workflow_settings.json on every load() so
that an admin edit takes effect on the next request without a restart. A
missing file means built-in defaults. A file that exists but fails to parse
or validate is an error: silently falling back could loosen approval rules.
"""
import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from models.workflow import ToleranceSettings, WorkflowSettings
from lifecycle.errors import ValidationFailed

logger = logging.getLogger(__name__)


def check_settings(settings: WorkflowSettings) -> tuple[list[str], list[str]]:
    """
    Consistency checks pydantic field constraints cannot express.

    Returns (errors, warnings). Errors make the settings unusable.
    """
    errors: list[str] = []
    warnings: list[str] = []

    active = sorted(
        (t for t in settings.approval_thresholds if t.is_active),
        key=lambda t: t.min_amount,
    )
    for t in active:
        if not t.name.strip():
            errors.append(f"Approval threshold {t.id} has no name")
        if not t.required_roles:
            errors.append(f"Approval threshold '{t.name}' has no required roles")
        if t.max_amount is not None and t.max_amount <= t.min_amount:
            errors.append(f"Approval threshold '{t.name}' has max_amount <= min_amount")
        unknown = [r for r in t.required_roles if r not in settings.role_levels]
        if unknown:
            warnings.append(f"Approval threshold '{t.name}' names unknown roles: {', '.join(unknown)}")

    # Only thresholds with identical conditions compete for the same orders.
    for prev, cur in zip(active, active[1:]):
        if prev.conditions != cur.conditions:
            continue
        if prev.max_amount is None or prev.max_amount > cur.min_amount:
            errors.append(f"Approval thresholds '{prev.name}' and '{cur.name}' overlap")

    rs = settings.receiving
    for label, tol in (("over_receiving", rs.over_receiving), ("under_receiving", rs.under_receiving)):
        warnings.extend(_tolerance_warnings(label, tol))
        if tol.require_approval and not tol.approval_roles:
            errors.append(f"{label} requires approval but lists no approval roles")

    if rs.partial_receiving.max_partial_receipts < 1:
        errors.append("partial_receiving.max_partial_receipts must be at least 1")
    if rs.expiry.near_expiry_threshold_days > rs.expiry.warn_before_expiry_days:
        warnings.append("expiry.near_expiry_threshold_days exceeds warn_before_expiry_days")

    return errors, warnings


def _tolerance_warnings(label: str, tol: ToleranceSettings) -> list[str]:
    warnings: list[str] = []
    if tol.type == "percentage" and tol.value > 100:
        warnings.append(f"{label} tolerance above 100% may allow excessive variance")
    if tol.warning_threshold > tol.value:
        warnings.append(f"{label} warning threshold is above the tolerance and will never fire")
    if tol.block_threshold is not None and tol.block_threshold < tol.value:
        warnings.append(f"{label} block threshold is below the tolerance")
    return warnings


class WorkflowSettingsStore:
    """Loads and saves WorkflowSettings from a JSON file."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> WorkflowSettings:
        if not self.path.exists():
            return WorkflowSettings()
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = {k: v for k, v in json.load(f).items() if not k.startswith("_")}
            settings = WorkflowSettings.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            logger.error("Invalid workflow settings %s: %s", self.path, exc)
            raise ValidationFailed(
                f"Workflow settings file {self.path.name} is invalid: {exc}",
                code="INVALID_WORKFLOW_SETTINGS",
            ) from exc

        errors, warnings = check_settings(settings)
        for w in warnings:
            logger.warning("Workflow settings: %s", w)
        if errors:
            raise ValidationFailed(
                f"Workflow settings file {self.path.name} is inconsistent",
                code="INVALID_WORKFLOW_SETTINGS",
                errors=errors,
                warnings=warnings,
            )
        return settings

    def save(self, settings: WorkflowSettings) -> None:
        """Validate then write atomically (temp file + rename)."""
        errors, warnings = check_settings(settings)
        if errors:
            raise ValidationFailed(
                "Refusing to save inconsistent workflow settings",
                code="INVALID_WORKFLOW_SETTINGS",
                errors=errors,
                warnings=warnings,
            )
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(settings.model_dump_json(indent=2))
            os.replace(tmp, self.path)
        except Exception:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.info("Workflow settings saved: %s", self.path)
