"""
Unit of Work: entity states, change tracking and the flush pipeline.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple, Type

from ..adapters.base import AdapterError
from ..core.collections import PersistentCollection
from ..core.model import Model
from ..core.relations import ManyToManyField, RelatedField
from ..utils import get_logger
from .cascade import CascadeEngine, association_targets
from .changes import ChangeLedger, ChangeSet
from .commit_order import CommitOrder, CommitOrderCalculator
from .errors import ConflictError, EntityNotFoundError, InvalidStateError, OptimisticLockError
from .identity_map import IdentityKey, IdentityMap
from .persister import CollectionPersister, EntityPersister
from .proxy import is_initialized, is_loading, is_proxy, make_proxy, mark_initialized, real_class
from .states import EntityState

if TYPE_CHECKING:
    from .session import Session


def describe(entity: Model) -> str:
    identifier = entity.identifier()
    if not identifier or any(value is None for value in identifier):
        return f"{real_class(entity).__name__}(unsaved)"
    shown = identifier[0] if len(identifier) == 1 else identifier
    return f"{real_class(entity).__name__}({shown!r})"


class UnitOfWork:
    """
    Tracks entity state for one session and writes changes on :meth:`flush`.

    Entity bookkeeping is keyed by ``id(entity)``; ``_entities`` holds the
    tracked instances themselves so those ids stay valid. The scope is not
    thread-safe and must not be shared between concurrent transactions.
    """

    def __init__(self, session: "Session") -> None:
        self.session = session
        self.identity_map = IdentityMap()
        self.ledger = ChangeLedger()
        self.cascades = CascadeEngine()
        self.logger = get_logger("persistence.unit_of_work")

        self._states: Dict[int, EntityState] = {}
        self._entities: Dict[int, Model] = {}
        self._insertions: Dict[int, Model] = {}
        self._updates: Dict[int, Model] = {}
        self._deletions: Dict[int, Model] = {}
        self._changesets: Dict[int, ChangeSet] = {}
        self._persisters: Dict[Type[Model], EntityPersister] = {}
        self._collection_persisters: Dict[int, CollectionPersister] = {}

    # ------------------------------------------------------------------ #
    # State bookkeeping
    # ------------------------------------------------------------------ #
    def get_entity_state(self, entity: Model) -> EntityState:
        key = id(entity)
        if self._entities.get(key) is entity:
            return self._states[key]
        if getattr(entity, "_persisted", False):
            return EntityState.DETACHED
        return EntityState.NEW

    def contains(self, entity: Model) -> bool:
        return self.get_entity_state(entity) is EntityState.MANAGED

    def is_scheduled_for_insert(self, entity: Model) -> bool:
        return self._insertions.get(id(entity)) is entity

    def is_scheduled_for_update(self, entity: Model) -> bool:
        return self._updates.get(id(entity)) is entity

    def is_scheduled_for_delete(self, entity: Model) -> bool:
        return self._deletions.get(id(entity)) is entity

    @property
    def scheduled_insertions(self) -> List[Model]:
        return list(self._insertions.values())

    @property
    def scheduled_updates(self) -> List[Model]:
        return list(self._updates.values())

    @property
    def scheduled_deletions(self) -> List[Model]:
        return list(self._deletions.values())

    def get_changeset(self, entity: Model) -> ChangeSet:
        return self.ledger.compute_changeset(entity)

    def __len__(self) -> int:
        return len(self._entities)

    def _track(self, entity: Model, state: EntityState) -> None:
        self._entities[id(entity)] = entity
        self._states[id(entity)] = state

    def _untrack(self, entity: Model) -> None:
        key = id(entity)
        self._states.pop(key, None)
        self._entities.pop(key, None)
        self._insertions.pop(key, None)
        self._updates.pop(key, None)
        self._deletions.pop(key, None)
        self._changesets.pop(key, None)
        self.identity_map.remove(entity)
        self.ledger.forget(entity)

    def _fire(self, event: str, entity: Optional[Model], **context: Any) -> None:
        self.session.hooks.fire(event, entity, session=self.session, **context)

    # ------------------------------------------------------------------ #
    # persist / remove / detach / clear
    # ------------------------------------------------------------------ #
    def persist(self, entity: Model) -> None:
        _require_entity(entity)
        self.cascades.walk(entity, "persist", self._persist_one)

    def _persist_one(self, entity: Model) -> None:
        state = self.get_entity_state(entity)
        if state is EntityState.MANAGED:
            return
        if state is EntityState.REMOVED:
            self._deletions.pop(id(entity), None)
            self._states[id(entity)] = EntityState.MANAGED
            self.logger.debug("Cancelled scheduled deletion of %s", describe(entity))
            return
        if state is EntityState.DETACHED:
            raise InvalidStateError(
                f"Detached entity {describe(entity)} passed to persist(); use merge() to reattach it."
            )

        self._fire("pre_persist", entity)
        self._track(entity, EntityState.MANAGED)
        self._insertions[id(entity)] = entity
        key = IdentityKey.of(entity)
        if key is not None:
            try:
                self.identity_map.register(key, entity)
            except ConflictError:
                self._untrack(entity)
                raise
        self.logger.debug("Scheduled insert of %s", describe(entity))

    def remove(self, entity: Model) -> None:
        _require_entity(entity)
        self.cascades.walk(entity, "remove", self._remove_one)

    def _remove_one(self, entity: Model) -> None:
        state = self.get_entity_state(entity)
        if state is EntityState.DETACHED:
            raise InvalidStateError(f"Detached entity {describe(entity)} cannot be removed.")
        if state is EntityState.NEW:
            entity._persisted = True
            self.logger.debug("Detached new entity %s", describe(entity))
            return
        if state is not EntityState.MANAGED:
            return
        if self.is_scheduled_for_insert(entity):
            # Never written, so there is nothing to delete.
            self._untrack(entity)
            self.logger.debug("Unscheduled insert of %s", describe(entity))
            return
        if not is_initialized(entity) and _needs_data_for_remove(real_class(entity)):
            entity._ensure_loaded()

        self._fire("pre_remove", entity)
        self._updates.pop(id(entity), None)
        self._changesets.pop(id(entity), None)
        self._states[id(entity)] = EntityState.REMOVED
        self._deletions[id(entity)] = entity
        self.logger.debug("Scheduled delete of %s", describe(entity))

    def detach(self, entity: Model) -> None:
        _require_entity(entity)
        self.cascades.walk(entity, "detach", self._detach_one)

    def _detach_one(self, entity: Model) -> None:
        if self.get_entity_state(entity).is_tracked:
            self._untrack(entity)
            entity._persisted = True
            self.logger.debug("Detached %s", describe(entity))

    def clear(self, model: Optional[Type[Model]] = None) -> None:
        """
        Detach every tracked entity, or only those of ``model``.
        """
        if model is not None:
            target = real_class(model)
            for entity in list(self._entities.values()):
                if real_class(entity) is target:
                    self._untrack(entity)
                    entity._persisted = True
            return
        count = len(self._entities)
        for entity in self._entities.values():
            entity._persisted = True
        self.identity_map.clear()
        self.ledger.clear()
        self._states.clear()
        self._entities.clear()
        self._insertions.clear()
        self._updates.clear()
        self._deletions.clear()
        self._changesets.clear()
        self.logger.debug("Cleared unit of work (%d entities detached)", count)

    # ------------------------------------------------------------------ #
    # merge
    # ------------------------------------------------------------------ #
    def merge(self, entity: Model) -> Model:
        """
        Return the managed counterpart of ``entity`` with its state copied in.

        The graph reachable through ``merge`` cascades is merged in one pass;
        other associations are re-pointed to managed instances or references.
        """
        _require_entity(entity)
        graph = self.cascades.collect(entity, "merge")
        counterparts: Dict[int, Model] = {}
        for item in graph:
            counterparts[id(item)] = self._merge_counterpart(item)
        for item in graph:
            self._merge_associations(item, counterparts[id(item)], counterparts)
        return counterparts[id(entity)]

    def _merge_counterpart(self, item: Model) -> Model:
        state = self.get_entity_state(item)
        if state is EntityState.MANAGED:
            return item
        if state is EntityState.REMOVED:
            raise InvalidStateError(f"Removed entity {describe(item)} passed to merge().")

        model = real_class(item)
        key = IdentityKey.of(item)
        if not is_initialized(item) and key is not None:
            return self.get_reference(model, key.pk)

        managed: Optional[Model] = None
        if key is not None:
            managed = self.identity_map.lookup(key)
            if managed is None:
                managed = self._load(model, key)
            elif not is_initialized(managed):
                managed._ensure_loaded()
            if managed is not None and self.get_entity_state(managed) is EntityState.REMOVED:
                raise InvalidStateError(f"{describe(managed)} is scheduled for deletion and cannot be merged.")

        if managed is None:
            if key is not None and item._persisted and model._meta.is_identifier_generated:
                raise EntityNotFoundError(model, key.pk)
            managed = _blank_instance(model)
            _copy_scalars(item, managed, include_identifier=True)
            self._persist_one(managed)
            return managed

        version_field = model._meta.version_field
        if version_field is not None:
            expected = item._field_values.get(version_field.require_name())
            actual = managed._field_values.get(version_field.require_name())
            if expected is not None and expected != actual:
                raise OptimisticLockError(item, expected=expected, actual=actual)
        _copy_scalars(item, managed, include_identifier=False)
        return managed

    def _merge_associations(self, item: Model, managed: Model, counterparts: Dict[int, Model]) -> None:
        if not is_initialized(item):
            return
        for relation in item._meta.get_relations():
            name = relation.require_name()
            if relation.is_collection:
                collection = item._related_cache.get(name)
                if collection is None or not collection.is_initialized:
                    continue
                members = [self._merged_target(member, counterparts) for member in collection.unwrap()]
                target_collection = getattr(managed, name)
                if target_collection is collection:
                    if all(a is b for a, b in zip(members, collection.unwrap())):
                        continue
                target_collection.replace(members)
                continue
            if name not in item._field_values:
                continue
            value = item._field_values[name]
            managed._field_values[name] = (
                None if value is None else self._merged_target(value, counterparts)
            )

    def _merged_target(self, value: Model, counterparts: Dict[int, Model]) -> Model:
        if id(value) in counterparts:
            return counterparts[id(value)]
        state = self.get_entity_state(value)
        if state.is_tracked:
            return value
        key = IdentityKey.of(value)
        if state is EntityState.DETACHED and key is not None:
            return self.get_reference(real_class(value), key.pk)
        return value

    # ------------------------------------------------------------------ #
    # refresh / lock / initialize
    # ------------------------------------------------------------------ #
    def refresh(self, entity: Model) -> None:
        """
        Reload ``entity`` and its refresh-cascaded graph from storage.

        The graph is collected before anything is reloaded, since reloading
        resets collections. Cascaded members that are not managed or not yet
        flushed are skipped.
        """
        _require_entity(entity)
        graph = self.cascades.collect(entity, "refresh")
        self._refresh_one(entity)
        for item in graph[1:]:
            if self.get_entity_state(item) is EntityState.MANAGED and not self.is_scheduled_for_insert(item):
                self._refresh_one(item)

    def _refresh_one(self, entity: Model) -> None:
        if self.get_entity_state(entity) is not EntityState.MANAGED:
            raise InvalidStateError(f"{describe(entity)} is not managed and cannot be refreshed.")
        if self.is_scheduled_for_insert(entity):
            raise InvalidStateError(f"{describe(entity)} has not been flushed yet.")
        if not is_initialized(entity):
            entity._ensure_loaded()
            return
        model = real_class(entity)
        key = IdentityKey.of(entity)
        if key is None:
            raise InvalidStateError(f"{describe(entity)} has no identifier and cannot be refreshed.")
        row = self.persister_for(model).load(key.pk)
        if row is None:
            raise EntityNotFoundError(model, key.pk)
        self._populate(entity, row)
        self._updates.pop(id(entity), None)
        self._changesets.pop(id(entity), None)
        self.logger.debug("Refreshed %s", describe(entity))

    def lock(self, entity: Model, version: Any) -> None:
        """
        Raise :class:`OptimisticLockError` unless ``entity`` is at ``version``.
        """
        if self.get_entity_state(entity) is not EntityState.MANAGED:
            raise InvalidStateError(f"{describe(entity)} is not managed and cannot be locked.")
        version_field = real_class(entity)._meta.version_field
        if version_field is None:
            raise InvalidStateError(f"{real_class(entity).__name__} is not versioned.")
        entity._ensure_loaded()
        current = entity._field_values.get(version_field.require_name())
        if current != version:
            raise OptimisticLockError(entity, expected=version, actual=current)

    def initialize(self, obj: Any) -> None:
        if isinstance(obj, PersistentCollection):
            obj.initialize()
        elif isinstance(obj, Model):
            obj._ensure_loaded()
        else:
            raise TypeError(f"Cannot initialize {type(obj).__name__}.")

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #
    def get_reference(self, model: Type[Model], pk: Any) -> Model:
        key = IdentityKey.build(model, pk)
        existing = self.identity_map.lookup(key)
        if existing is not None:
            return existing
        proxy = make_proxy(key.model, key.pk, self._load_proxy)
        self.identity_map.register(key, proxy)
        self._track(proxy, EntityState.MANAGED)
        return proxy

    def get(self, model: Type[Model], pk: Any) -> Optional[Model]:
        key = IdentityKey.build(model, pk)
        existing = self.identity_map.lookup(key)
        if existing is not None:
            if self.get_entity_state(existing) is EntityState.REMOVED:
                return None
            if not is_initialized(existing):
                try:
                    existing._ensure_loaded()
                except EntityNotFoundError:
                    return None
            return existing
        return self._load(key.model, key)

    def find(self, model: Type[Model], pk: Any, *, lock_version: Any = None) -> Model:
        entity = self.get(model, pk)
        if entity is None:
            key = IdentityKey.build(model, pk)
            raise EntityNotFoundError(key.model, key.pk)
        if lock_version is not None:
            self.lock(entity, lock_version)
        return entity

    def persister_for(self, model: Type[Model]) -> EntityPersister:
        model = real_class(model)
        persister = self._persisters.get(model)
        if persister is None:
            persister = EntityPersister(self.session, model)
            self._persisters[model] = persister
        return persister

    def _collection_persister(self, field_obj: ManyToManyField) -> CollectionPersister:
        owning = field_obj.owning_field()
        persister = self._collection_persisters.get(id(owning))
        if persister is None:
            persister = CollectionPersister(self.session, owning)
            self._collection_persisters[id(owning)] = persister
        return persister

    def _load(self, model: Type[Model], key: IdentityKey) -> Optional[Model]:
        row = self.persister_for(model).load(key.pk)
        if row is None:
            return None
        return self.hydrate(model, row)

    def _load_proxy(self, proxy: Model) -> None:
        key = IdentityKey.of(proxy)
        if key is None:
            # Deleted and flushed, so the generated key is gone.
            raise EntityNotFoundError(real_class(proxy), proxy.identifier())
        row = self.persister_for(key.model).load(key.pk)
        if row is None:
            raise EntityNotFoundError(key.model, key.pk)
        self._populate(proxy, row)
        self.logger.debug("Initialized proxy %r", key)

    def _load_collection(self, collection: PersistentCollection) -> List[Model]:
        owner = collection.owner
        field_obj = collection.field
        target = field_obj.require_remote_model()
        persister = self.persister_for(target)
        if isinstance(field_obj, ManyToManyField):
            rows = persister.load_many_to_many(field_obj, owner)
        else:
            inverse = field_obj.inverse_field()
            pk_names = list(target._meta.identifier_names)
            rows = persister.load_by({inverse.require_name(): owner.identifier()[0]}, order_by=pk_names)
        return [self.hydrate(target, row) for row in rows]

    def hydrate(self, model: Type[Model], row: Mapping[str, Any]) -> Model:
        """
        Turn a row into the scope's single instance for its key.

        A managed, loaded instance is returned untouched; an uninitialized
        proxy for the key is populated from the row.
        """
        model = real_class(model)
        meta = model._meta
        pk = tuple(f.from_db(row[f.column_name()]) for f in meta.primary_keys)
        key = IdentityKey.build(model, pk)
        existing = self.identity_map.lookup(key)
        if existing is not None:
            if is_proxy(existing) and not is_initialized(existing) and not is_loading(existing):
                mark_initialized(existing)
                self._populate(existing, row)
            return existing

        entity = _blank_instance(model)
        entity._field_values.update(zip(meta.identifier_names, key.pk))
        self.identity_map.register(key, entity)
        self._track(entity, EntityState.MANAGED)
        self._populate(entity, row)
        return entity

    def _populate(self, entity: Model, row: Mapping[str, Any]) -> None:
        meta = entity._meta
        references: List[Tuple[RelatedField, Any]] = []
        for field_obj in meta.get_fields():
            raw = row[field_obj.column_name()]
            if isinstance(field_obj, RelatedField):
                references.append((field_obj, raw))
                continue
            entity._field_values[field_obj.require_name()] = field_obj.from_db(raw)
        entity._persisted = True
        for field_obj, raw in references:
            entity._field_values[field_obj.require_name()] = self._resolve_reference(field_obj, raw)

        eager: List[PersistentCollection] = []
        for field_obj in meta.get_collections():
            name = field_obj.require_name()
            collection = entity._related_cache.get(name)
            if collection is None:
                collection = PersistentCollection(entity, field_obj, loader=self._load_collection)
                entity._related_cache[name] = collection
            else:
                collection.reset(self._load_collection)
            if field_obj.fetch == "eager":
                eager.append(collection)

        if self.get_entity_state(entity).is_tracked:
            self.ledger.snapshot(entity)
        self._fire("post_load", entity)
        for collection in eager:
            collection.initialize()

    def _resolve_reference(self, field_obj: RelatedField, raw: Any) -> Optional[Model]:
        if raw is None:
            return None
        target = self.get_reference(field_obj.require_remote_model(), raw)
        if field_obj.fetch == "eager" and not is_initialized(target):
            target._ensure_loaded()
        return target

    # ------------------------------------------------------------------ #
    # Flush
    # ------------------------------------------------------------------ #
    def flush(self) -> None:
        """
        Write every pending change in one transaction.

        On failure the transaction is rolled back and the error propagates.
        Scheduled work stays registered, identifiers generated by the failed
        batch are revoked and collection snapshots are reloaded, but the scope
        may still disagree with storage; discarding it is the safe choice.
        """
        self._fire("pre_flush", None)
        self._persist_reachable()
        self._compute_changesets()
        collections = self._collection_updates()

        if not (self._insertions or self._updates or self._deletions or collections):
            self.logger.debug("Flush found nothing to write")
            self._fire("post_flush", None)
            return

        self._fire("on_flush", None, unit_of_work=self)
        self._persist_reachable()
        self._compute_changesets()
        collections = self._collection_updates()

        insert_order = self._order_insertions()
        delete_order = self._order_deletions()

        generated: List[Model] = []
        versions: List[Tuple[Model, int]] = []
        updated: List[Tuple[Model, ChangeSet]] = []
        try:
            with self.session.transaction_manager.transaction():
                self._execute_inserts(insert_order, generated, versions)
                updated = self._execute_updates(versions)
                self._execute_extra_updates(insert_order)
                self._execute_collection_updates(collections)
                self._execute_deletions(delete_order)
        except Exception:
            self._revoke_identifiers(generated)
            try:
                self._resync_collections(collections)
            except AdapterError:
                self.logger.exception("Could not reload collection snapshots after failed flush")
            raise

        self._complete(insert_order.entities, updated, delete_order.entities, versions)

    # Preparation -------------------------------------------------------
    def _persist_reachable(self) -> None:
        seen: set[int] = set()
        while True:
            batch = [
                entity
                for key, entity in list(self._entities.items())
                if key not in seen and self._states.get(key) is EntityState.MANAGED
            ]
            if not batch:
                return
            for entity in batch:
                seen.add(id(entity))
                for relation, target in list(association_targets(entity)):
                    if self.get_entity_state(target) is not EntityState.NEW:
                        continue
                    if not relation.cascades("persist"):
                        raise InvalidStateError(
                            f"A new entity {describe(target)} was found through "
                            f"{real_class(entity).__name__}.{relation.name}, which does not cascade "
                            "persist. Persist it explicitly or add cascade='persist'."
                        )
                    self.persist(target)

    def _compute_changesets(self) -> None:
        for key, entity in list(self._entities.items()):
            if self._states.get(key) is not EntityState.MANAGED or key in self._insertions:
                continue
            if not is_initialized(entity) or not self.ledger.has_snapshot(entity):
                continue
            changeset = self.ledger.compute_changeset(entity)
            if changeset:
                _check_identifier_unchanged(changeset)
                self._updates[key] = entity
                self._changesets[key] = changeset
            else:
                self._updates.pop(key, None)
                self._changesets.pop(key, None)

    def _collection_updates(self) -> List[PersistentCollection]:
        pending: List[PersistentCollection] = []
        for key, entity in self._entities.items():
            if self._states.get(key) is not EntityState.MANAGED or not is_initialized(entity):
                continue
            for field_obj in entity._meta.get_collections():
                if not isinstance(field_obj, ManyToManyField) or not field_obj.is_owning:
                    continue
                collection = entity._related_cache.get(field_obj.require_name())
                if collection is None or not collection.is_initialized:
                    continue
                if collection.insert_diff() or collection.delete_diff():
                    pending.append(collection)
        return pending

    def _order_insertions(self) -> CommitOrder:
        calculator = CommitOrderCalculator()
        entities = list(self._insertions.values())
        for entity in entities:
            calculator.add_node(entity)
        for entity in entities:
            for relation in entity._meta.get_relations():
                if relation.is_collection:
                    continue
                target = entity._field_values.get(relation.require_name())
                if target is not None and calculator.has_node(target):
                    calculator.add_dependency(target, entity, relation, holder=entity)
        return calculator.sort()

    def _order_deletions(self) -> CommitOrder:
        calculator = CommitOrderCalculator()
        entities = list(self._deletions.values())
        for entity in entities:
            calculator.add_node(entity)
        for entity in entities:
            for relation in entity._meta.get_relations():
                if relation.is_collection:
                    continue
                target = entity._field_values.get(relation.require_name())
                if target is not None and target is not entity and calculator.has_node(target):
                    calculator.add_dependency(entity, target, relation, holder=entity)
        return calculator.sort(strict=False)

    # Execution ---------------------------------------------------------
    def _execute_inserts(
        self, order: CommitOrder, generated: List[Model], versions: List[Tuple[Model, int]]
    ) -> None:
        deferred: Dict[int, List[RelatedField]] = {}
        for dependency in order.broken:
            deferred.setdefault(id(dependency.holder), []).append(dependency.field)

        for entity in order.entities:
            model = real_class(entity)
            meta = model._meta
            persister = self.persister_for(model)
            row = persister.extract_row(entity, null_fields=deferred.get(id(entity), ()))
            if meta.version_field is not None:
                row[meta.version_field.column_name()] = 1
                versions.append((entity, 1))
            needs_key = meta.is_identifier_generated and entity.identifier()[0] is None
            generated_id = persister.insert(entity, row)
            if needs_key:
                pk_field = meta.primary_keys[0]
                entity._field_values[pk_field.require_name()] = pk_field.to_python(generated_id)
                generated.append(entity)
                self.identity_map.add(entity)
            self.logger.debug("Inserted %s", describe(entity))

    def _execute_updates(self, versions: List[Tuple[Model, int]]) -> List[Tuple[Model, ChangeSet]]:
        executed: List[Tuple[Model, ChangeSet]] = []
        for key, entity in list(self._updates.items()):
            self._fire("pre_update", entity, changeset=self._changesets.get(key))
            changeset = self.ledger.compute_changeset(entity)
            if not changeset:
                continue
            _check_identifier_unchanged(changeset)
            model = real_class(entity)
            persister = self.persister_for(model)
            columns = {
                field_obj.column_name(): field_obj.to_db(changeset.new(field_obj.require_name()))
                for field_obj in changeset.fields()
            }
            version_field = model._meta.version_field
            if version_field is None:
                persister.update(entity, columns)
            else:
                current = entity._field_values.get(version_field.require_name())
                new_version = (current or 0) + 1
                columns[version_field.column_name()] = new_version
                affected = persister.update(
                    entity, columns, version=(version_field.column_name(), current)
                )
                if affected == 0:
                    raise OptimisticLockError(
                        entity, expected=current, actual=persister.load_version(entity.identifier())
                    )
                versions.append((entity, new_version))
            self._changesets[key] = changeset
            executed.append((entity, changeset))
            self.logger.debug("Updated %s (%s)", describe(entity), ", ".join(changeset))
        return executed

    def _execute_extra_updates(self, order: CommitOrder) -> None:
        for dependency in order.broken:
            holder = dependency.holder
            field_obj = dependency.field
            value = holder._field_values.get(field_obj.require_name())
            self.persister_for(real_class(holder)).update(
                holder, {field_obj.column_name(): field_obj.to_db(value)}
            )
            self.logger.debug("Deferred %s.%s written after inserts", describe(holder), field_obj.name)

    def _execute_collection_updates(self, collections: List[PersistentCollection]) -> None:
        for collection in collections:
            field_obj = collection.field
            if not isinstance(field_obj, ManyToManyField):
                raise TypeError(f"{field_obj.name} is not a many-to-many collection.")
            persister = self._collection_persister(field_obj)
            persister.delete_rows(collection.owner, collection.delete_diff())
            persister.insert_rows(
                collection.owner,
                [
                    member
                    for member in collection.insert_diff()
                    if self.get_entity_state(member) is not EntityState.REMOVED
                ],
            )

    def _execute_deletions(self, order: CommitOrder) -> None:
        for dependency in order.broken:
            holder = dependency.holder
            self.persister_for(real_class(holder)).update(
                holder, {dependency.field.column_name(): None}
            )
        for entity in order.entities:
            model = real_class(entity)
            for field_obj in model._meta.get_collections():
                if isinstance(field_obj, ManyToManyField):
                    self._collection_persister(field_obj).delete_all_for(entity, field_obj.own_column())
            persister = self.persister_for(model)
            version_field = model._meta.version_field
            if version_field is None:
                persister.delete(entity)
            else:
                expected = entity._field_values.get(version_field.require_name())
                affected = persister.delete(entity, version=(version_field.column_name(), expected))
                if affected == 0:
                    raise OptimisticLockError(
                        entity, expected=expected, actual=persister.load_version(entity.identifier())
                    )
            self.logger.debug("Deleted %s", describe(entity))

    # Completion --------------------------------------------------------
    def _complete(
        self,
        inserted: List[Model],
        updated: List[Tuple[Model, ChangeSet]],
        deleted: List[Model],
        versions: List[Tuple[Model, int]],
    ) -> None:
        for entity, version in versions:
            version_field = real_class(entity)._meta.version_field
            if version_field is None:
                continue
            entity._field_values[version_field.require_name()] = version
        for entity in inserted:
            entity._persisted = True
            self._install_collections(entity)
            self.ledger.snapshot(entity)
        for entity in self._updates.values():
            self.ledger.snapshot(entity)
        for entity in deleted:
            self._untrack(entity)
            entity._persisted = False
            meta = real_class(entity)._meta
            if meta.is_identifier_generated:
                entity._field_values[meta.primary_keys[0].require_name()] = None
        for entity in self._entities.values():
            if not is_initialized(entity):
                continue
            for collection in entity._related_cache.values():
                if collection.is_initialized:
                    collection.take_snapshot()

        self._insertions.clear()
        self._updates.clear()
        self._deletions.clear()
        self._changesets.clear()

        for entity in inserted:
            self._fire("post_persist", entity)
        for entity, changeset in updated:
            self._fire("post_update", entity, changeset=changeset)
        for entity in deleted:
            self._fire("post_remove", entity)
        self._fire("post_flush", None)
        self.logger.info(
            "Flush complete: %d inserted, %d updated, %d deleted",
            len(inserted),
            len(updated),
            len(deleted),
        )

    def _install_collections(self, entity: Model) -> None:
        # Collections never touched before the insert load from storage on first use.
        for field_obj in entity._meta.get_collections():
            name = field_obj.require_name()
            if name not in entity._related_cache:
                entity._related_cache[name] = PersistentCollection(
                    entity, field_obj, loader=self._load_collection
                )

    def _revoke_identifiers(self, generated: List[Model]) -> None:
        for entity in generated:
            self.identity_map.remove(entity)
            pk_field = real_class(entity)._meta.primary_keys[0]
            entity._field_values[pk_field.require_name()] = None

    def _resync_collections(self, collections: List[PersistentCollection]) -> None:
        for collection in collections:
            if self.is_scheduled_for_insert(collection.owner):
                collection.set_snapshot([])
            else:
                collection.set_snapshot(self._load_collection(collection))


def _require_entity(entity: Any) -> None:
    if not isinstance(entity, Model):
        raise TypeError(f"Expected a model instance, got {type(entity).__name__}.")


def _needs_data_for_remove(model: Type[Model]) -> bool:
    meta = model._meta
    if meta.version_field is not None:
        return True
    return any(relation.cascades("remove") for relation in meta.get_relations())


def _blank_instance(model: Type[Model]) -> Model:
    instance = model.__new__(model)
    instance._field_values = {}
    instance._related_cache = {}
    instance._persisted = False
    return instance


def _copy_scalars(source: Model, target: Model, *, include_identifier: bool) -> None:
    meta = real_class(source)._meta
    for field_obj in meta.get_fields():
        if field_obj.is_relation:
            continue
        if not include_identifier and (field_obj.primary_key or field_obj.is_version):
            continue
        name = field_obj.require_name()
        if name in source._field_values:
            target._field_values[name] = field_obj.snapshot_value(source._field_values[name])


def _check_identifier_unchanged(changeset: ChangeSet) -> None:
    meta = changeset.entity._meta
    for name in meta.identifier_names:
        if name in changeset:
            raise InvalidStateError(
                f"Identifier '{name}' of managed {real_class(changeset.entity).__name__} cannot change "
                f"({changeset.old(name)!r} -> {changeset.new(name)!r})."
            )
