"""
Collection wrapper for to-many associations.
"""

from __future__ import annotations

from collections.abc import MutableSequence
from typing import TYPE_CHECKING, Any, Callable, Iterable, Iterator, List, Optional

if TYPE_CHECKING:
    from .model import Model
    from .relations import CollectionField


CollectionLoader = Callable[["PersistentCollection"], List[Any]]


def _identities(items: Iterable[Any]) -> set[int]:
    return {id(item) for item in items}


class PersistentCollection(MutableSequence):
    """
    List-like collection that remembers which members were stored last.

    Membership changes are not written directly; at flush the unit of work
    asks for :meth:`insert_diff` and :meth:`delete_diff`, which compare the
    current members with the snapshot by object identity. Collections of
    loaded entities start uninitialized and load on first use.
    """

    def __init__(
        self,
        owner: "Model",
        field: "CollectionField",
        items: Optional[Iterable[Any]] = None,
        *,
        loader: Optional[CollectionLoader] = None,
    ) -> None:
        self.owner = owner
        self.field = field
        self._items: list[Any] = list(items or [])
        self._snapshot: list[Any] = []
        self._loader = loader
        self._initialized = loader is None
        self._dirty = bool(self._items)

    # Lazy loading --------------------------------------------------------
    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        if self._initialized:
            return
        loader = self._loader
        if loader is None:
            self._initialized = True
            return
        loaded = list(loader(self))
        self._items = list(loaded)
        self._snapshot = list(loaded)
        self._initialized = True
        self._loader = None
        self._dirty = False

    def reset(self, loader: CollectionLoader) -> None:
        """
        Forget the loaded members; the next access loads them again.
        """
        self._items = []
        self._snapshot = []
        self._loader = loader
        self._initialized = False
        self._dirty = False

    # Change tracking -----------------------------------------------------
    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def snapshot(self) -> list[Any]:
        return list(self._snapshot)

    def take_snapshot(self) -> None:
        self._snapshot = list(self._items)
        self._dirty = False

    def set_snapshot(self, items: Iterable[Any]) -> None:
        self._snapshot = list(items)
        self._dirty = _identities(self._snapshot) != _identities(self._items)

    def insert_diff(self) -> list[Any]:
        stored = _identities(self._snapshot)
        return [item for item in self._items if id(item) not in stored]

    def delete_diff(self) -> list[Any]:
        current = _identities(self._items)
        return [item for item in self._snapshot if id(item) not in current]

    def replace(self, items: Iterable[Any]) -> None:
        new_items = list(items)
        self.initialize()
        self._items = new_items
        self._dirty = True

    # MutableSequence -----------------------------------------------------
    def __getitem__(self, index):
        self.initialize()
        return self._items[index]

    def __setitem__(self, index, value) -> None:
        self.initialize()
        self._items[index] = value
        self._dirty = True

    def __delitem__(self, index) -> None:
        self.initialize()
        del self._items[index]
        self._dirty = True

    def __len__(self) -> int:
        self.initialize()
        return len(self._items)

    def __iter__(self) -> Iterator[Any]:
        self.initialize()
        return iter(list(self._items))

    def __contains__(self, value: object) -> bool:
        self.initialize()
        return any(item is value for item in self._items)

    def insert(self, index: int, value: Any) -> None:
        self.initialize()
        self._items.insert(index, value)
        self._dirty = True

    def index(self, value: Any, start: int = 0, stop: int | None = None) -> int:
        self.initialize()
        end = len(self._items) if stop is None else stop
        for position in range(start, end):
            if self._items[position] is value:
                return position
        raise ValueError(f"{value!r} is not in collection")

    def clear(self) -> None:
        self.initialize()
        if self._items:
            self._items = []
            self._dirty = True

    def unwrap(self) -> list[Any]:
        self.initialize()
        return list(self._items)

    def __repr__(self) -> str:
        if not self._initialized:
            return f"<PersistentCollection {self.field.name} (uninitialized)>"
        return f"<PersistentCollection {self.field.name} {self._items!r}>"
