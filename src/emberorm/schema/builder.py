"""
Schema builder converting model metadata into DDL statements.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, List

from ..core.fields import Field
from ..core.model import Model
from ..core.relations import ManyToManyField, RelatedField
from ..dialects.base import Dialect
from ..utils import get_logger

if TYPE_CHECKING:
    from ..persistence.session import Session


class SchemaBuilder:
    """
    Produces dialect-specific SQL for the tables the mapped models need.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.logger = get_logger("schema.builder")

    def create_table_sql(self, model: type[Model]) -> str:
        pieces = self._render_columns(model)
        primary_keys = model._meta.primary_keys
        if len(primary_keys) > 1:
            columns = ", ".join(self.dialect.quote_identifier(f.column_name()) for f in primary_keys)
            pieces.append(f"PRIMARY KEY ({columns})")
        table_name = self.dialect.format_table(model._meta.table_name)
        return f"CREATE TABLE IF NOT EXISTS {table_name} ({', '.join(pieces)})"

    def create_many_to_many_sql(self, model: type[Model]) -> list[str]:
        stmts: list[str] = []
        for field in model._meta.get_collections():
            if not isinstance(field, ManyToManyField) or not field.is_owning:
                continue
            owner = field.require_model()
            remote = field.require_remote_model()
            through_table = self.dialect.format_table(field.through_table())
            left_col = self.dialect.quote_identifier(field.left_column())
            right_col = self.dialect.quote_identifier(field.right_column())
            stmt = (
                f"CREATE TABLE IF NOT EXISTS {through_table} ("
                f"{left_col} INTEGER NOT NULL {self._references(owner)} ON DELETE CASCADE, "
                f"{right_col} INTEGER NOT NULL {self._references(remote)} ON DELETE CASCADE, "
                f"PRIMARY KEY ({left_col}, {right_col})"
                ")"
            )
            stmts.append(stmt)
        return stmts

    def create_all_sql(self, models: Iterable[type[Model]]) -> list[str]:
        models = list(models)
        statements = [self.create_table_sql(model) for model in models]
        for model in models:
            statements.extend(self.create_many_to_many_sql(model))
        return statements

    def create_all(self, session: "Session", models: Iterable[type[Model]]) -> None:
        for statement in self.create_all_sql(models):
            session.execute(statement)

    def drop_table_sql(self, model: type[Model]) -> str:
        table_name = self.dialect.format_table(model._meta.table_name)
        self.logger.warning(
            "DROP TABLE generated for %s; confirm destructive change before applying.",
            table_name,
        )
        return f"DROP TABLE IF EXISTS {table_name}"

    def _render_columns(self, model: type[Model]) -> List[str]:
        pieces: List[str] = []
        single_key = len(model._meta.primary_keys) == 1
        for field in model._meta.get_fields():
            column_type = field.db_type
            if not column_type:
                raise ValueError(f"Field '{field.name}' missing db_type for schema generation.")
            column_def = self.dialect.render_column_definition(
                field.column_name(),
                column_type,
                nullable=field.nullable if not field.primary_key else False,
            )
            extras: List[str] = []
            if field.primary_key and single_key:
                extras.append("PRIMARY KEY")
            if field.unique and not field.primary_key:
                extras.append("UNIQUE")
            default_sql = self._default_clause(field)
            if default_sql:
                extras.append(default_sql)
            if isinstance(field, RelatedField):
                extras.append(self._references(field.require_remote_model()))

            if extras:
                column_def = f"{column_def} {' '.join(extras)}"
            pieces.append(column_def)
        return pieces

    def _references(self, model: type[Model]) -> str:
        pk_field = model._meta.primary_key
        if pk_field is None:
            raise ValueError(f"'{model.__name__}' needs a single-column key to be referenced.")
        table = self.dialect.format_table(model._meta.table_name)
        return f"REFERENCES {table} ({self.dialect.quote_identifier(pk_field.column_name())})"

    def _default_clause(self, field: Field) -> str | None:
        if field.is_relation or field.default is None or callable(field.default):
            return None
        value = field.default
        if isinstance(value, bool):
            return f"DEFAULT {1 if value else 0}"
        if isinstance(value, str):
            escaped = value.replace("'", "''")
            return f"DEFAULT '{escaped}'"
        if isinstance(value, (int, float)):
            return f"DEFAULT {value}"
        return None
