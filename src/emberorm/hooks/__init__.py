"""
Lifecycle hooks registry for emberorm models.
"""

from .dispatcher import LIFECYCLE_EVENTS, HookDispatcher, hooks

__all__ = ["HookDispatcher", "LIFECYCLE_EVENTS", "hooks"]
