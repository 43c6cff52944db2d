"""
Hook dispatcher coordinating lifecycle events.
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Type

from ..core.model import Model


HookHandler = Callable[..., None]

LIFECYCLE_EVENTS = (
    "pre_persist",
    "post_persist",
    "pre_update",
    "post_update",
    "pre_remove",
    "post_remove",
    "post_load",
    "pre_flush",
    "on_flush",
    "post_flush",
)


class HookDispatcher:
    """
    Maintains global and per-model hook handlers.

    Per-model handlers are keyed by the real model class, so they also fire
    for lazy proxies of that model.
    """

    def __init__(self) -> None:
        self._global_handlers: Dict[str, List[HookHandler]] = defaultdict(list)
        self._model_handlers: Dict[Type[Model], Dict[str, List[HookHandler]]] = defaultdict(
            lambda: defaultdict(list)
        )

    def register(self, event: str, handler: HookHandler, *, model: Optional[Type[Model]] = None) -> None:
        if event not in LIFECYCLE_EVENTS:
            raise ValueError(f"Unknown lifecycle event '{event}'. Expected one of {LIFECYCLE_EVENTS}.")
        if model:
            self._model_handlers[model._real_class()][event].append(handler)
        else:
            self._global_handlers[event].append(handler)

    def unregister(self, event: str, handler: HookHandler, *, model: Optional[Type[Model]] = None) -> None:
        if model:
            handlers = self._model_handlers.get(model._real_class(), {}).get(event, [])
        else:
            handlers = self._global_handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def fire(self, event: str, instance: Optional[Model], **context: Any) -> None:
        handlers = list(self._global_handlers.get(event, []))
        model = instance.__class__._real_class() if instance is not None else None
        if model:
            handlers.extend(self._model_handlers.get(model, {}).get(event, []))
        for handler in handlers:
            handler(instance, **context)

    def clear(self) -> None:
        self._global_handlers.clear()
        self._model_handlers.clear()


hooks = HookDispatcher()
