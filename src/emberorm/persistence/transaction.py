"""
Transaction levels for a session: one backend transaction, savepoints inside it.
"""

from __future__ import annotations

import itertools
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Generator, List, Optional

from ..adapters.base import DatabaseAdapter
from ..dialects.base import Dialect
from ..utils import get_logger


class TransactionError(RuntimeError):
    pass


@dataclass(frozen=True)
class TransactionLevel:
    """
    One open level. The outermost level has no savepoint name.
    """

    depth: int
    savepoint: Optional[str] = None

    @property
    def is_savepoint(self) -> bool:
        return self.savepoint is not None


class TransactionManager:
    """
    Stack of open transaction levels for one connection.

    The first :meth:`begin` starts a backend transaction; every later one
    creates a savepoint, provided the dialect supports them. :meth:`commit`
    and :meth:`rollback` always act on the innermost level.
    """

    def __init__(self, adapter: DatabaseAdapter, dialect: Dialect) -> None:
        self.adapter = adapter
        self.dialect = dialect
        self._levels: List[TransactionLevel] = []
        self._savepoint_names = itertools.count(1)
        self.logger = get_logger("persistence.transaction")

    @property
    def depth(self) -> int:
        return len(self._levels)

    @property
    def active(self) -> bool:
        return bool(self._levels)

    @property
    def current(self) -> Optional[TransactionLevel]:
        return self._levels[-1] if self._levels else None

    def begin(self) -> TransactionLevel:
        if not self._levels:
            self.adapter.begin()
            level = TransactionLevel(depth=1)
            self._levels.append(level)
            self.logger.debug("Transaction started")
            return level

        if not self.dialect.capabilities.supports_savepoints:
            raise TransactionError(
                f"{self.dialect.name} does not support savepoints; nested transactions are unavailable."
            )
        level = TransactionLevel(depth=self.depth + 1, savepoint=f"sp_{next(self._savepoint_names)}")
        self.adapter.execute(self.dialect.savepoint_sql(level.savepoint))
        self._levels.append(level)
        self.logger.debug("Savepoint %s created at depth %d", level.savepoint, level.depth)
        return level

    def commit(self) -> None:
        level = self._pop("commit")
        if level.is_savepoint:
            self.adapter.execute(self.dialect.release_savepoint_sql(level.savepoint))
            self.logger.debug("Savepoint %s released", level.savepoint)
            return
        self.adapter.commit()
        self.logger.debug("Transaction committed")

    def rollback(self) -> None:
        level = self._pop("roll back")
        if level.is_savepoint:
            self.adapter.execute(self.dialect.rollback_to_savepoint_sql(level.savepoint))
            self.adapter.execute(self.dialect.release_savepoint_sql(level.savepoint))
            self.logger.debug("Rolled back to savepoint %s", level.savepoint)
            return
        self.adapter.rollback()
        self.logger.debug("Transaction rolled back")

    def rollback_all(self) -> None:
        """
        Roll back the outer transaction, discarding every savepoint inside it.
        """
        if not self._levels:
            return
        dropped = len(self._levels) - 1
        self._levels.clear()
        self.adapter.rollback()
        self.logger.debug("Transaction rolled back with %d open savepoint(s)", dropped)

    @contextmanager
    def transaction(self) -> Generator[TransactionLevel, None, None]:
        level = self.begin()
        try:
            yield level
        except Exception:
            self.rollback()
            raise
        else:
            self.commit()

    def reset(self) -> None:
        """
        Forget open levels after the connection was closed.
        """
        self._levels.clear()

    def _pop(self, action: str) -> TransactionLevel:
        if not self._levels:
            raise TransactionError(f"No active transaction to {action}.")
        return self._levels.pop()
