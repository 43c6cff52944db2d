"""
Lifecycle states tracked by the unit of work.
"""

from __future__ import annotations

from enum import Enum


class EntityState(str, Enum):
    """
    NEW instances are unknown to storage, MANAGED ones are tracked, REMOVED
    ones are scheduled for deletion and DETACHED ones were managed by a scope
    that has since let go of them.
    """

    NEW = "new"
    MANAGED = "managed"
    REMOVED = "removed"
    DETACHED = "detached"

    @property
    def is_tracked(self) -> bool:
        return self in (EntityState.MANAGED, EntityState.REMOVED)
