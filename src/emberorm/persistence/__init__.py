"""
Persistence layer components: session, unit of work, identity map, proxies.
"""

from .cascade import CascadeEngine
from .changes import ChangeLedger, ChangeSet
from .commit_order import CommitOrder, CommitOrderCalculator
from .errors import (
    CommitOrderError,
    ConflictError,
    ConstraintViolationError,
    EntityNotFoundError,
    InvalidStateError,
    OptimisticLockError,
    PersistenceError,
)
from .identity_map import IdentityKey, IdentityMap
from .persister import CollectionPersister, EntityPersister
from .proxy import is_initialized, is_proxy, real_class
from .repository import Repository
from .session import Session
from .states import EntityState
from .transaction import TransactionError, TransactionLevel, TransactionManager
from .unit_of_work import UnitOfWork

__all__ = [
    "CascadeEngine",
    "ChangeLedger",
    "ChangeSet",
    "CollectionPersister",
    "CommitOrder",
    "CommitOrderCalculator",
    "CommitOrderError",
    "ConflictError",
    "ConstraintViolationError",
    "EntityNotFoundError",
    "EntityPersister",
    "EntityState",
    "IdentityKey",
    "IdentityMap",
    "InvalidStateError",
    "OptimisticLockError",
    "PersistenceError",
    "Repository",
    "Session",
    "TransactionError",
    "TransactionLevel",
    "TransactionManager",
    "UnitOfWork",
    "is_initialized",
    "is_proxy",
    "real_class",
]
