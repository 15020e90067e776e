from typing import Any, Optional, List

from pydantic import BaseModel, Field


class OperationError(BaseModel):
    """
    Failure payload returned by the orchestrator.
    kind is one of the LifecycleError taxonomy names (NotFound, ...).
    """
    kind: str
    code: str
    message: str
    errors: List[Any] = Field(default_factory=list)
    warnings: List[Any] = Field(default_factory=list)
    details: dict = Field(default_factory=dict)


class OperationResult(BaseModel):
    """
    Uniform result of every public orchestrator call.

    Exactly one of data / error is set. warnings may accompany a success
    (e.g. the audit write failed after the mutation committed).
    """
    data: Any = None
    error: Optional[OperationError] = None
    warnings: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any = None, warnings: Optional[List[str]] = None) -> "OperationResult":
        return cls(data=data, warnings=list(warnings or []))

    @classmethod
    def failure(cls, error: OperationError) -> "OperationResult":
        return cls(error=error)
