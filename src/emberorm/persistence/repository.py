"""
Repositories: per-model read helpers that go through the unit of work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from ..core.model import Model

if TYPE_CHECKING:
    from .session import Session


TModel = TypeVar("TModel", bound=Model)


class Repository(Generic[TModel]):
    """
    Read access for one model.

    Rows are hydrated through the session's unit of work, so a row whose key
    is already tracked comes back as the tracked instance. Criteria are
    equality matches; ``None`` matches ``IS NULL`` and association criteria
    accept either an entity or its key. Subclass and point
    ``Meta.repository`` at the subclass to add custom finders.
    """

    def __init__(self, session: "Session", model: Type[TModel]) -> None:
        self.session = session
        self.model = model

    @property
    def persister(self):
        return self.session.unit_of_work.persister_for(self.model)

    def find(self, pk: Any, *, lock_version: Any = None) -> TModel:
        return self.session.find(self.model, pk, lock_version=lock_version)

    def get(self, pk: Any) -> Optional[TModel]:
        return self.session.get(self.model, pk)

    def find_all(self) -> List[TModel]:
        return self.find_by()

    def find_by(
        self,
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        **criteria: Any,
    ) -> List[TModel]:
        rows = self.persister.load_by(criteria, order_by=order_by, limit=limit, offset=offset)
        uow = self.session.unit_of_work
        return [uow.hydrate(self.model, row) for row in rows]  # type: ignore[misc]

    def find_one_by(self, **criteria: Any) -> Optional[TModel]:
        results = self.find_by(limit=1, **criteria)
        return results[0] if results else None

    def count(self, **criteria: Any) -> int:
        return self.persister.count(criteria)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.model.__name__}>"
