"""
Snapshot ledger and change-set computation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..core.fields import Field
from ..core.model import Model


@dataclass
class ChangeSet:
    """
    Field name to ``(old, new)`` for one entity.
    """

    entity: Model
    changes: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __contains__(self, name: object) -> bool:
        return name in self.changes

    def __iter__(self) -> Iterator[str]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def old(self, name: str) -> Any:
        return self.changes[name][0]

    def new(self, name: str) -> Any:
        return self.changes[name][1]

    def fields(self) -> List[Field]:
        meta = self.entity._meta
        return [meta.get_field(name) for name in self.changes]


class ChangeLedger:
    """
    Remembers the last persisted field values of every managed entity.

    Scalars are deep-copied into the snapshot so in-place edits of compound
    values show up as changes; association targets are kept by reference and
    compared by identity.
    """

    def __init__(self) -> None:
        self._snapshots: Dict[int, Dict[str, Any]] = {}

    def snapshot(self, entity: Model) -> None:
        values: Dict[str, Any] = {}
        for field_obj in entity._meta.get_fields():
            name = field_obj.require_name()
            values[name] = field_obj.snapshot_value(entity._field_values.get(name))
        self._snapshots[id(entity)] = values

    def has_snapshot(self, entity: Model) -> bool:
        return id(entity) in self._snapshots

    def original(self, entity: Model) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshots.get(id(entity))
        return dict(snapshot) if snapshot is not None else None

    def original_value(self, entity: Model, name: str) -> Any:
        return self._snapshots[id(entity)][name]

    def forget(self, entity: Model) -> None:
        self._snapshots.pop(id(entity), None)

    def clear(self) -> None:
        self._snapshots.clear()

    def compute_changeset(self, entity: Model) -> ChangeSet:
        changeset = ChangeSet(entity)
        snapshot = self._snapshots.get(id(entity))
        if snapshot is None:
            return changeset
        version_field = entity._meta.version_field
        for field_obj in entity._meta.get_fields():
            if field_obj is version_field:
                continue
            name = field_obj.require_name()
            old = snapshot.get(name)
            new = entity._field_values.get(name)
            if field_obj.has_changed(old, new):
                changeset.changes[name] = (old, new)
        return changeset

    def __len__(self) -> int:
        return len(self._snapshots)
