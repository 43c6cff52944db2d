"""
Dependency ordering of insert and delete batches.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..core.model import Model
from ..core.relations import RelatedField
from .errors import CommitOrderError


@dataclass
class Dependency:
    """
    ``before`` must be written before ``after`` because of ``field``.

    ``field`` lives on the entity holding the foreign key column.
    """

    before: Model
    after: Model
    field: RelatedField
    holder: Model
    nullable: bool


@dataclass
class CommitOrder:
    entities: List[Model]
    broken: List[Dependency] = field(default_factory=list)


class CommitOrderCalculator:
    """
    Kahn topological sort over entities with stable, insertion-ordered output.

    When no entity is free, a nullable dependency that lies on a cycle is
    dropped and reported in :attr:`CommitOrder.broken`; the caller writes that
    column separately. With only non-nullable dependencies left on a cycle,
    :meth:`sort` raises :class:`CommitOrderError` unless ``strict`` is off,
    in which case the first remaining entity is released.
    """

    def __init__(self) -> None:
        self._nodes: Dict[int, Model] = {}
        self._edges: List[Dependency] = []

    def add_node(self, entity: Model) -> None:
        self._nodes.setdefault(id(entity), entity)

    def has_node(self, entity: Model) -> bool:
        return id(entity) in self._nodes

    def add_dependency(
        self, before: Model, after: Model, field_obj: RelatedField, *, holder: Model
    ) -> None:
        self._edges.append(
            Dependency(before, after, field_obj, holder, nullable=field_obj.nullable)
        )

    def sort(self, *, strict: bool = True) -> CommitOrder:
        position = {key: index for index, key in enumerate(self._nodes)}
        active: List[Dependency] = list(self._edges)
        indegree: Dict[int, int] = {key: 0 for key in self._nodes}
        outgoing: Dict[int, List[Dependency]] = {key: [] for key in self._nodes}
        for edge in active:
            indegree[id(edge.after)] += 1
            outgoing[id(edge.before)].append(edge)

        removed: set[int] = set()
        broken: List[Dependency] = []
        ordered: List[Model] = []
        done: set[int] = set()
        ready = deque(key for key in self._nodes if indegree[key] == 0)

        while len(ordered) < len(self._nodes):
            if not ready:
                edge = self._breakable_edge(outgoing, removed, done)
                if edge is not None:
                    removed.add(id(edge))
                    broken.append(edge)
                    indegree[id(edge.after)] -= 1
                    if indegree[id(edge.after)] == 0:
                        ready.append(id(edge.after))
                    continue
                pending = [entity for key, entity in self._nodes.items() if key not in done]
                if strict:
                    raise CommitOrderError(self._cycle_members(outgoing, removed, done) or pending)
                ready.append(min((id(entity) for entity in pending), key=position.__getitem__))
                indegree[ready[-1]] = 0
                continue

            key = ready.popleft()
            if key in done:
                continue
            done.add(key)
            ordered.append(self._nodes[key])
            for edge in outgoing[key]:
                if id(edge) in removed:
                    continue
                removed.add(id(edge))
                target = id(edge.after)
                indegree[target] -= 1
                if indegree[target] == 0 and target not in done:
                    ready.append(target)

        return CommitOrder(ordered, broken)

    # Cycle helpers -----------------------------------------------------------
    def _breakable_edge(
        self, outgoing: Dict[int, List[Dependency]], removed: set[int], done: set[int]
    ) -> Optional[Dependency]:
        for key, edges in outgoing.items():
            if key in done:
                continue
            for edge in edges:
                if id(edge) in removed or not edge.nullable:
                    continue
                if self._reaches(id(edge.after), key, outgoing, removed, done):
                    return edge
        return None

    @staticmethod
    def _reaches(
        start: int,
        goal: int,
        outgoing: Dict[int, List[Dependency]],
        removed: set[int],
        done: set[int],
    ) -> bool:
        if start == goal:
            return True
        seen = {start}
        stack = [start]
        while stack:
            current = stack.pop()
            for edge in outgoing[current]:
                if id(edge) in removed:
                    continue
                nxt = id(edge.after)
                if nxt == goal:
                    return True
                if nxt in seen or nxt in done:
                    continue
                seen.add(nxt)
                stack.append(nxt)
        return False

    def _cycle_members(
        self, outgoing: Dict[int, List[Dependency]], removed: set[int], done: set[int]
    ) -> List[Model]:
        return [
            entity
            for key, entity in self._nodes.items()
            if key not in done
            and any(
                id(edge) not in removed and self._reaches(id(edge.after), key, outgoing, removed, done)
                for edge in outgoing[key]
            )
        ]
