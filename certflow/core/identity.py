"""
Identity context passed into every workflow operation.

The workflow never reads a "current user" from globals; the caller (HTTP
layer, CLI, tests) resolves who is acting and hands an ``Actor`` in.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLES = frozenset({"user", "client", "ca", "admin"})
ACTOR_STATUSES = frozenset({"pending", "active", "suspended"})

SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    """Resolved identity of the caller."""

    user_id: str
    role: str
    status: str = "active"
    display_name: str | None = None
    email: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def name(self) -> str:
        return self.display_name or self.email or self.user_id

    @classmethod
    def system(cls) -> "Actor":
        """Identity used for engine-initiated transitions (auto-issue)."""
        return cls(user_id=SYSTEM_ACTOR_ID, role="admin", status="active", display_name="System")
