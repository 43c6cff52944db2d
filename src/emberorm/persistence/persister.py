"""
Per-model SQL persister used by the unit of work.

The persister renders and executes single-row statements. It knows nothing
about states or ordering; that is the unit of work's job.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type

from ..core.model import Model
from ..core.relations import ManyToManyField, RelatedField

if TYPE_CHECKING:
    from .session import Session


Row = Mapping[str, Any]


class EntityPersister:
    """
    Issues INSERT/UPDATE/DELETE/SELECT statements for one model class.
    """

    def __init__(self, session: "Session", model: Type[Model]) -> None:
        self.session = session
        self.model = model
        self.dialect = session.dialect
        self.meta = model._meta
        self.table = self.dialect.format_table(self.meta.table_name)

    # Helpers -----------------------------------------------------------
    def quote(self, column: str) -> str:
        return self.dialect.quote_identifier(column)

    def placeholder(self) -> str:
        return self.dialect.parameter_placeholder()

    def select_list(self) -> str:
        return ", ".join(self.quote(f.column_name()) for f in self.meta.get_fields())

    def identifier_clause(self) -> str:
        return " AND ".join(
            f"{self.quote(f.column_name())} = {self.placeholder()}" for f in self.meta.primary_keys
        )

    def identifier_params(self, entity: Model) -> List[Any]:
        return [
            field_obj.to_db(entity._field_values.get(field_obj.require_name()))
            for field_obj in self.meta.primary_keys
        ]

    def extract_row(self, entity: Model, *, null_fields: Iterable[RelatedField] = ()) -> Dict[str, Any]:
        """
        Column values for an INSERT; generated identifiers left unset are skipped.
        """
        nulled = {id(field_obj) for field_obj in null_fields}
        row: Dict[str, Any] = {}
        for field_obj in self.meta.get_fields():
            value = entity._field_values.get(field_obj.require_name())
            if field_obj.primary_key and field_obj.is_generated and value is None:
                continue
            if id(field_obj) in nulled:
                row[field_obj.column_name()] = None
                continue
            row[field_obj.column_name()] = field_obj.to_db(value)
        return row

    # Writes ------------------------------------------------------------
    def insert(self, entity: Model, row: Mapping[str, Any]) -> Any:
        """
        Insert ``row`` and return the generated identifier, if any.
        """
        columns = ", ".join(self.quote(column) for column in row)
        placeholders = ", ".join(self.placeholder() for _ in row)
        if row:
            sql = f"INSERT INTO {self.table} ({columns}) VALUES ({placeholders})"
        else:
            sql = f"INSERT INTO {self.table} DEFAULT VALUES"
        cursor = self.session.execute(sql, list(row.values()))
        pk_field = self.meta.primary_key
        if pk_field is not None and pk_field.is_generated:
            return self.session.adapter.last_insert_id(
                cursor, self.meta.table_name, pk_field.column_name()
            )
        return None

    def update(
        self,
        entity: Model,
        columns: Mapping[str, Any],
        *,
        version: Optional[Tuple[str, Any]] = None,
    ) -> int:
        """
        Update ``columns`` of the entity's row; returns the affected row count.
        """
        set_sql = ", ".join(f"{self.quote(column)} = {self.placeholder()}" for column in columns)
        params: List[Any] = list(columns.values())
        where = self.identifier_clause()
        params.extend(self.identifier_params(entity))
        if version is not None:
            where = f"{where} AND {self._version_clause(version[1])}"
            if version[1] is not None:
                params.append(version[1])
        sql = f"UPDATE {self.table} SET {set_sql} WHERE {where}"
        cursor = self.session.execute(sql, params)
        return cursor.rowcount

    def delete(self, entity: Model, *, version: Optional[Tuple[str, Any]] = None) -> int:
        where = self.identifier_clause()
        params = self.identifier_params(entity)
        if version is not None:
            where = f"{where} AND {self._version_clause(version[1])}"
            if version[1] is not None:
                params.append(version[1])
        cursor = self.session.execute(f"DELETE FROM {self.table} WHERE {where}", params)
        return cursor.rowcount

    def _version_clause(self, expected: Any) -> str:
        version_field = self.meta.version_field
        if version_field is None:
            raise ValueError(f"{self.model.__name__} has no version field.")
        column = self.quote(version_field.column_name())
        if expected is None:
            return f"{column} IS NULL"
        return f"{column} = {self.placeholder()}"

    # Reads -------------------------------------------------------------
    def load(self, pk: Sequence[Any]) -> Optional[Row]:
        params = [field_obj.to_db(value) for field_obj, value in zip(self.meta.primary_keys, pk)]
        sql = (
            f"SELECT {self.select_list()} FROM {self.table} "
            f"WHERE {self.identifier_clause()} {self.dialect.limit_clause(1, None)}"
        )
        return self.session.execute(sql, params).fetchone()

    def load_version(self, pk: Sequence[Any]) -> Any:
        version_field = self.meta.version_field
        if version_field is None:
            return None
        params = [field_obj.to_db(value) for field_obj, value in zip(self.meta.primary_keys, pk)]
        sql = (
            f"SELECT {self.quote(version_field.column_name())} FROM {self.table} "
            f"WHERE {self.identifier_clause()}"
        )
        row = self.session.execute(sql, params).fetchone()
        return row[0] if row is not None else None

    def load_by(
        self,
        criteria: Mapping[str, Any],
        *,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Row]:
        where, params = self._where(criteria)
        sql = f"SELECT {self.select_list()} FROM {self.table}{where}"
        if order_by:
            sql = f"{sql} ORDER BY {self._order_by(order_by)}"
        limit_sql = self.dialect.limit_clause(limit, offset)
        if limit_sql:
            sql = f"{sql} {limit_sql}"
        return list(self.session.execute(sql, params).fetchall())

    def count(self, criteria: Mapping[str, Any]) -> int:
        where, params = self._where(criteria)
        row = self.session.execute(f"SELECT COUNT(*) FROM {self.table}{where}", params).fetchone()
        return int(row[0])

    def load_many_to_many(self, field_obj: ManyToManyField, owner: Model) -> List[Row]:
        """
        Rows of the target model joined to ``owner`` through the join table.
        """
        through = self.dialect.format_table(field_obj.through_table())
        own_column = self.quote(field_obj.own_column())
        other_column = self.quote(field_obj.other_column())
        pk_field = self.meta.primary_key
        if pk_field is None:
            raise ValueError(f"{self.model.__name__} needs a single-column key for many-to-many.")
        columns = ", ".join(
            f"t.{self.quote(f.column_name())}" for f in self.meta.get_fields()
        )
        sql = (
            f"SELECT {columns} FROM {self.table} t "
            f"JOIN {through} j ON j.{other_column} = t.{self.quote(pk_field.column_name())} "
            f"WHERE j.{own_column} = {self.placeholder()} "
            f"ORDER BY t.{self.quote(pk_field.column_name())}"
        )
        return list(self.session.execute(sql, [owner.identifier()[0]]).fetchall())

    def _where(self, criteria: Mapping[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for name, value in criteria.items():
            field_obj = self.meta.get_field(name)
            column = self.quote(field_obj.column_name())
            if value is None:
                clauses.append(f"{column} IS NULL")
                continue
            if field_obj.is_relation and isinstance(value, Model):
                value = value.identifier()[0]
            elif not field_obj.is_relation:
                value = field_obj.to_db(value)
            clauses.append(f"{column} = {self.placeholder()}")
            params.append(value)
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def _order_by(self, order_by: Sequence[str]) -> str:
        parts: List[str] = []
        for item in order_by:
            descending = item.startswith("-")
            name = item[1:] if descending else item
            column = self.quote(self.meta.get_field(name).column_name())
            parts.append(f"{column} DESC" if descending else f"{column} ASC")
        return ", ".join(parts)


class CollectionPersister:
    """
    Writes join-table rows for the owning side of a many-to-many association.
    """

    def __init__(self, session: "Session", field_obj: ManyToManyField) -> None:
        self.session = session
        self.field = field_obj
        self.dialect = session.dialect
        self.table = self.dialect.format_table(field_obj.through_table())

    def insert_rows(self, owner: Model, members: Iterable[Model]) -> None:
        left = self.dialect.quote_identifier(self.field.left_column())
        right = self.dialect.quote_identifier(self.field.right_column())
        placeholder = self.dialect.parameter_placeholder()
        sql = f"INSERT INTO {self.table} ({left}, {right}) VALUES ({placeholder}, {placeholder})"
        for member in members:
            self.session.execute(sql, [owner.identifier()[0], member.identifier()[0]])

    def delete_rows(self, owner: Model, members: Iterable[Model]) -> None:
        left = self.dialect.quote_identifier(self.field.left_column())
        right = self.dialect.quote_identifier(self.field.right_column())
        placeholder = self.dialect.parameter_placeholder()
        sql = f"DELETE FROM {self.table} WHERE {left} = {placeholder} AND {right} = {placeholder}"
        for member in members:
            self.session.execute(sql, [owner.identifier()[0], member.identifier()[0]])

    def delete_all_for(self, entity: Model, column: str) -> None:
        """
        Remove every join row that references ``entity`` through ``column``.
        """
        quoted = self.dialect.quote_identifier(column)
        placeholder = self.dialect.parameter_placeholder()
        self.session.execute(
            f"DELETE FROM {self.table} WHERE {quoted} = {placeholder}", [entity.identifier()[0]]
        )
