"""
Identity: who is performing the current request.

Authentication is not this engine's concern; callers (CLI options, HTTP
headers, tests) hand over an already-trusted Actor.
"""
from typing import Optional, Protocol

from models.approval import Actor

SYSTEM_ACTOR = Actor(id="system", display_name="System", role="admin")


class Identity(Protocol):
    def current_actor(self) -> Actor: ...


class StaticIdentity:
    """Always returns the same actor."""

    def __init__(self, actor: Actor) -> None:
        self.actor = actor

    def current_actor(self) -> Actor:
        return self.actor

    @classmethod
    def from_values(
        cls,
        actor_id: Optional[str],
        name: Optional[str] = None,
        role: Optional[str] = None,
        approval_level: Optional[int] = None,
        max_approval_amount: Optional[float] = None,
    ) -> "StaticIdentity":
        if not actor_id:
            return cls(SYSTEM_ACTOR)
        return cls(Actor(
            id=actor_id,
            display_name=name or actor_id,
            role=role or "employee",
            approval_level=approval_level,
            max_approval_amount=max_approval_amount,
        ))
