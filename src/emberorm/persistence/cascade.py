"""
Graph walker propagating lifecycle operations along cascading associations.
"""

from __future__ import annotations

from typing import Callable, Iterator, List, Optional, Tuple

from ..core.model import Model
from ..core.relations import CASCADE_OPERATIONS, RelatedField
from .proxy import is_initialized

Visitor = Callable[[Model], None]


def association_targets(
    entity: Model, *, cascade: Optional[str] = None, initialize: bool = False
) -> Iterator[Tuple[RelatedField, Model]]:
    """
    Yield ``(relation, target)`` pairs in declaration order without loading.

    With ``cascade`` only relations carrying that flag are followed.
    Uninitialized proxies yield nothing. Lazy collections are skipped unless
    ``initialize`` is set.
    """
    if not is_initialized(entity):
        return
    for relation in entity._meta.get_relations():
        if cascade is not None and not relation.cascades(cascade):
            continue
        name = relation.require_name()
        if relation.is_collection:
            collection = entity._related_cache.get(name)
            if collection is None:
                continue
            if not collection.is_initialized:
                if not initialize:
                    continue
                collection.initialize()
            for item in collection.unwrap():
                if item is not None:
                    yield relation, item
        else:
            target = entity._field_values.get(name)
            if target is not None:
                yield relation, target


class CascadeEngine:
    """
    Iterative depth-first walk with a visited set keyed by ``id()``.

    The visitor runs on an entity before its own targets are expanded, so a
    visitor may change associations (e.g. in a lifecycle hook) and the walk
    follows the result. Each entity is visited at most once per run.
    """

    def walk(self, root: Model, operation: str, visitor: Optional[Visitor] = None) -> List[Model]:
        if operation not in CASCADE_OPERATIONS:
            raise ValueError(f"Unknown cascade operation '{operation}'.")
        visited: set[int] = set()
        ordered: List[Model] = []
        stack: List[Model] = [root]
        while stack:
            entity = stack.pop()
            if id(entity) in visited:
                continue
            visited.add(id(entity))
            ordered.append(entity)
            if visitor is not None:
                visitor(entity)
            targets = [
                target
                for _, target in association_targets(
                    entity, cascade=operation, initialize=operation == "remove"
                )
                if id(target) not in visited
            ]
            stack.extend(reversed(targets))
        return ordered

    def collect(self, root: Model, operation: str) -> List[Model]:
        return self.walk(root, operation)
