"""Authenticated actor supplied by the identity collaborator.

The core trusts these values. Credential checks happen upstream.
"""

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Marketplace role of an actor."""

    REQUESTER = "requester"
    CONTRACTOR = "contractor"


@dataclass(frozen=True)
class Actor:
    """An authenticated caller."""

    actor_id: str
    role: Role

    def __post_init__(self):
        if not self.actor_id or not self.actor_id.strip():
            raise ValueError("Actor ID cannot be empty")
        # Accept plain strings for role, store the enum
        if not isinstance(self.role, Role):
            try:
                object.__setattr__(self, "role", Role(self.role))
            except ValueError:
                raise ValueError(f"Invalid role: {self.role}")

    @property
    def is_requester(self) -> bool:
        return self.role == Role.REQUESTER

    @property
    def is_contractor(self) -> bool:
        return self.role == Role.CONTRACTOR

    @classmethod
    def requester(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=Role.REQUESTER)

    @classmethod
    def contractor(cls, actor_id: str) -> "Actor":
        return cls(actor_id=actor_id, role=Role.CONTRACTOR)
