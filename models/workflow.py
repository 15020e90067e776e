from typing import Optional, List, Literal

from pydantic import BaseModel, Field

from .approval import ApprovalThreshold

ToleranceType = Literal["percentage", "fixed"]


class ToleranceSettings(BaseModel):
    """
    Quantity variance allowance for over- or under-receiving.

    type="percentage": value/warning/block are percentages of the ordered qty.
    type="fixed":      they are absolute quantities.
    """
    enabled: bool = True
    type: ToleranceType = "percentage"
    value: float = Field(default=5, ge=0)
    require_approval: bool = True
    approval_roles: List[str] = Field(default_factory=lambda: ["manager"])
    auto_accept: bool = False
    warning_threshold: float = Field(default=3, ge=0)
    block_threshold: Optional[float] = None     # None = no hard block
    notify_on_variance: bool = True


class PartialReceivingSettings(BaseModel):
    enabled: bool = True
    allow_partial_receipts: bool = True
    max_partial_receipts: int = 5
    auto_close_after_days: int = 30
    require_reason_for_partial: bool = True
    notify_on_partial: bool = True


class QualityCheckSettings(BaseModel):
    enabled: bool = True
    require_quality_check: bool = False
    quality_check_roles: List[str] = Field(default_factory=lambda: ["employee"])
    rejection_reasons: List[str] = Field(
        default_factory=lambda: ["Damaged", "Wrong Item", "Poor Quality", "Expired"]
    )
    damaged_item_handling: Literal["reject", "partial_accept", "accept_with_note"] = "partial_accept"
    quality_hold_days: int = 3


class ExpirySettings(BaseModel):
    enabled: bool = True
    check_expiry_on_receipt: bool = True
    warn_before_expiry_days: int = 30
    reject_expired_items: bool = True
    accept_near_expiry_with_approval: bool = True
    near_expiry_threshold_days: int = 7
    near_expiry_approval_roles: List[str] = Field(default_factory=lambda: ["manager"])


class DamageSettings(BaseModel):
    enabled: bool = True
    require_damage_report: bool = True
    require_photographs: bool = False
    damage_categories: List[str] = Field(
        default_factory=lambda: [
            "Physical Damage", "Water Damage", "Contamination", "Packaging Issue",
        ]
    )
    auto_create_credit_note: bool = False
    notify_supplier_on_damage: bool = True


class ReceivingSettings(BaseModel):
    """All receiving-time rules, passed explicitly into the tolerance validator."""
    over_receiving: ToleranceSettings = Field(
        default_factory=lambda: ToleranceSettings(block_threshold=10)
    )
    under_receiving: ToleranceSettings = Field(
        default_factory=lambda: ToleranceSettings(
            type="percentage",
            value=10,
            require_approval=False,
            approval_roles=["employee"],
            auto_accept=True,
            warning_threshold=5,
            notify_on_variance=True,
        )
    )
    partial_receiving: PartialReceivingSettings = Field(default_factory=PartialReceivingSettings)
    quality_check: QualityCheckSettings = Field(default_factory=QualityCheckSettings)
    expiry: ExpirySettings = Field(default_factory=ExpirySettings)
    damage: DamageSettings = Field(default_factory=DamageSettings)
    receiving_roles: List[str] = Field(
        default_factory=lambda: ["employee", "manager", "admin"]
    )


def default_thresholds() -> List[ApprovalThreshold]:
    return [
        ApprovalThreshold(
            id="standard",
            name="Standard purchases",
            min_amount=0,
            max_amount=10000,
            required_level=1,
            required_roles=["supervisor", "purchaser", "manager"],
            priority=1,
        ),
        ApprovalThreshold(
            id="large",
            name="Large purchases",
            min_amount=10000,
            max_amount=50000,
            required_level=2,
            required_roles=["manager", "admin"],
            priority=2,
        ),
        ApprovalThreshold(
            id="capital",
            name="Capital purchases",
            min_amount=50000,
            max_amount=None,
            required_level=3,
            required_roles=["admin"],
            priority=3,
        ),
    ]


def default_role_levels() -> dict[str, int]:
    return {
        "employee":   0,
        "cashier":    0,
        "accountant": 0,
        "supervisor": 1,
        "purchaser":  1,
        "manager":    2,
        "admin":      3,
    }


class WorkflowSettings(BaseModel):
    """
    Admin-editable workflow rules (config/workflow_settings.json).

    Loaded once per request by WorkflowSettingsStore and threaded through
    the validators explicitly.
    """
    approval_thresholds: List[ApprovalThreshold] = Field(default_factory=default_thresholds)
    role_levels: dict[str, int] = Field(default_factory=default_role_levels)
    receiving: ReceivingSettings = Field(default_factory=ReceivingSettings)
    # Where a rejected order goes: back to draft for resubmission, or cancelled.
    rejection_target: Literal["draft", "cancelled"] = "draft"
    auto_approve_on_submit: bool = True
