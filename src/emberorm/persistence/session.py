"""
Session management coordinating adapters, the unit of work and transactions.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional, Type, TypeVar

from ..adapters.base import ConnectionConfig, DatabaseAdapter
from ..core.model import Model
from ..dialects.base import Dialect
from ..dialects.sqlite import SQLiteDialect
from ..utils import get_logger, redact_params, resolve_slow_query_ms, time_call
from .proxy import real_class
from .repository import Repository
from .states import EntityState
from .transaction import TransactionManager
from .unit_of_work import UnitOfWork


if TYPE_CHECKING:
    from ..hooks import HookDispatcher


TModel = TypeVar("TModel", bound=Model)


class Session:
    """
    Entry point for working with persistent entities (the entity manager).

    Every operation delegates to the session's :class:`UnitOfWork`. Changes
    are written on :meth:`flush` (and :meth:`commit`); plain attribute writes
    are picked up by comparing against the last persisted snapshot.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        *,
        connection_config: Optional[ConnectionConfig] = None,
        dsn: Optional[str] = None,
        hooks: Optional["HookDispatcher"] = None,
        slow_query_ms: Optional[int] = None,
    ) -> None:
        if connection_config is not None and dsn is not None:
            raise ValueError("Pass either connection_config or dsn, not both.")
        self.adapter = adapter
        self.dialect: Dialect = adapter.dialect if hasattr(adapter, "dialect") else SQLiteDialect()
        if dsn is not None:
            connection_config = ConnectionConfig.from_dsn(dsn)
        self.connection_config = connection_config or ConnectionConfig(url="sqlite:///:memory:")
        self.transaction_manager = TransactionManager(adapter, self.dialect)
        if hooks is None:
            from ..hooks import hooks as default_hooks

            hooks = default_hooks
        self.hooks = hooks
        self.slow_query_ms = resolve_slow_query_ms(default=200, override=slow_query_ms)
        self.logger = get_logger("persistence.session")
        self.unit_of_work = UnitOfWork(self)
        self._repositories: Dict[Type[Model], Repository] = {}
        self.adapter.connect(self.connection_config)

    # ------------------------------------------------------------------ #
    # Context management
    # ------------------------------------------------------------------ #
    def __enter__(self) -> "Session":
        self.begin()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type:
                self.rollback()
            else:
                self.commit()
        finally:
            self.close()

    # ------------------------------------------------------------------ #
    # Entity lifecycle
    # ------------------------------------------------------------------ #
    def persist(self, entity: Model) -> None:
        self.unit_of_work.persist(entity)

    def remove(self, entity: Model) -> None:
        self.unit_of_work.remove(entity)

    def merge(self, entity: TModel) -> TModel:
        return self.unit_of_work.merge(entity)  # type: ignore[return-value]

    def detach(self, entity: Model) -> None:
        self.unit_of_work.detach(entity)

    def clear(self, model: Optional[Type[Model]] = None) -> None:
        self.unit_of_work.clear(model)

    def refresh(self, entity: Model) -> None:
        self.unit_of_work.refresh(entity)

    def contains(self, entity: Model) -> bool:
        return self.unit_of_work.contains(entity)

    def get_entity_state(self, entity: Model) -> EntityState:
        return self.unit_of_work.get_entity_state(entity)

    def lock(self, entity: Model, version: Any) -> None:
        self.unit_of_work.lock(entity, version)

    def initialize(self, obj: Any) -> None:
        """
        Load a proxy or lazy collection now.
        """
        self.unit_of_work.initialize(obj)

    def flush(self) -> None:
        self.unit_of_work.flush()

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def find(self, model: Type[TModel], pk: Any, *, lock_version: Any = None) -> TModel:
        return self.unit_of_work.find(model, pk, lock_version=lock_version)  # type: ignore[return-value]

    def get(self, model: Type[TModel], pk: Any) -> Optional[TModel]:
        return self.unit_of_work.get(model, pk)  # type: ignore[return-value]

    def get_reference(self, model: Type[TModel], pk: Any) -> TModel:
        return self.unit_of_work.get_reference(model, pk)  # type: ignore[return-value]

    def get_repository(self, model: Type[Model]) -> Repository:
        model = real_class(model)
        repository = self._repositories.get(model)
        if repository is None:
            repository_cls = model._meta.repository or Repository
            repository = repository_cls(self, model)
            self._repositories[model] = repository
        return repository

    def execute(self, sql: str, params: Iterable[Any] | None = None):
        param_list = list(params or [])
        with time_call(
            "session.execute",
            self.logger,
            sql=sql,
            params=redact_params(param_list),
            threshold_ms=self.slow_query_ms,
        ):
            return self.adapter.execute(sql, param_list)

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    def begin(self) -> None:
        """
        Start a transaction, or a savepoint when one is already open.

        Pending changes are flushed before a savepoint is taken, so rolling
        back to it only undoes work done inside it.
        """
        if self.transaction_manager.active:
            self.flush()
        self.transaction_manager.begin()

    def commit(self) -> None:
        """
        Flush pending changes and commit the innermost transaction.
        """
        if self.transaction_manager.depth == 0:
            self.begin()
        try:
            self.flush()
        except Exception:
            # Scheduled work is kept so the caller can correct and retry.
            self.transaction_manager.rollback()
            raise
        self.transaction_manager.commit()

    def rollback(self) -> None:
        """
        Roll back the innermost transaction and detach every tracked entity.

        Tracked state may no longer match storage after a rollback, at any
        nesting level.
        """
        self.transaction_manager.rollback()
        self.unit_of_work.clear()

    @contextmanager
    def transaction(self):
        """
        Provide nested transaction context with savepoint support.
        """

        self.begin()
        try:
            yield self
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    def close(self) -> None:
        """
        Detach everything, roll back an open transaction and close the connection.
        """
        self.unit_of_work.clear()
        self._repositories.clear()
        try:
            self.transaction_manager.rollback_all()
        finally:
            self.transaction_manager.reset()
            self.adapter.close()
