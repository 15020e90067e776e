from typing import Any, Optional, List, Literal

from pydantic import BaseModel, Field

ConditionField = Literal[
    "supplier_category",
    "product_category",
    "department",
    "payment_terms",
    "currency",
]
ConditionOperator = Literal["equals", "contains", "in", "not_in"]


class ApprovalCondition(BaseModel):
    """Extra predicate a threshold (or auto-approve exclusion) must satisfy."""
    field: ConditionField
    operator: ConditionOperator = "equals"
    value: Any                              # str for equals/contains, list for in/not_in


class ApprovalThreshold(BaseModel):
    """
    A half-open amount range [min_amount, max_amount) mapped to an approval
    level and the roles permitted to approve inside it.
    max_amount=None means unbounded.
    """
    id: str
    name: str
    min_amount: float = Field(ge=0)
    max_amount: Optional[float] = None
    required_level: int = 1
    required_roles: List[str] = Field(default_factory=list)
    required_approvers: int = 1
    priority: int = 1
    auto_approve: bool = False
    conditions: List[ApprovalCondition] = Field(default_factory=list)
    auto_approve_exclusions: List[ApprovalCondition] = Field(default_factory=list)
    is_active: bool = True

    def contains(self, amount: float) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount < self.max_amount


class Actor(BaseModel):
    """The user performing an operation, as supplied by the identity provider."""
    id: str
    display_name: str = ""
    role: str = "employee"
    approval_level: Optional[int] = None        # Overrides the role-derived level
    max_approval_amount: Optional[float] = None


class ApprovalSubmission(BaseModel):
    """Approve or reject a purchase order that is pending approval."""
    purchase_order_id: str
    action: Literal["approve", "reject"]
    reason: Optional[str] = None
    approved_by: Optional[str] = None
    approval_level: Optional[int] = None        # May only lower the actor's own level
    max_approval_amount: Optional[float] = None # May only lower the actor's own limit


class ApprovalPermissionResult(BaseModel):
    can_approve: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    user_level: int = 0
    required_level: int = 0
    threshold: Optional[ApprovalThreshold] = None
