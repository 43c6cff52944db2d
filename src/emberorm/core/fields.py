"""
Field definitions and descriptors for emberorm models.
"""

from __future__ import annotations

import copy
import json
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Sequence, cast

if TYPE_CHECKING:
    from .model import Model


class FieldError(Exception):
    """Internal exception for field configuration issues."""


class Field:
    """
    Base class for model field descriptors.

    Fields keep values in the instance's ``_field_values`` dict and carry the
    column metadata the persister and schema builder need. Accessing any
    non-identifier field asks the instance to finish loading first, which is
    how lazy proxies initialize.
    """

    _creation_counter = 0
    is_relation = False
    is_collection = False
    is_version = False

    def __init__(
        self,
        *,
        primary_key: bool = False,
        unique: bool = False,
        nullable: bool = True,
        default: Any = None,
        db_type: Optional[str] = None,
        db_column: Optional[str] = None,
        choices: Optional[Sequence[Any]] = None,
        help_text: Optional[str] = None,
    ) -> None:
        self.primary_key = primary_key
        self.unique = unique
        self.nullable = nullable
        self.default = default
        self.db_type = db_type
        self.db_column = db_column
        self.choices = tuple(choices) if choices is not None else None
        self.help_text = help_text

        self.model: type["Model"] | None = None
        self.name: str | None = None
        self.creation_counter = Field._creation_counter
        Field._creation_counter += 1

    # Descriptor protocol -------------------------------------------------
    def __get__(self, instance: object | None, owner: type | None = None) -> Any:
        if instance is None:
            return self

        model_instance = cast("Model", instance)
        if not self.primary_key:
            model_instance._ensure_loaded()
        name = self.require_name()
        value = model_instance._field_values.get(name)
        if value is None and name not in model_instance._field_values:
            default = self.get_default()
            if default is not None:
                model_instance._field_values[name] = default
                return default
        return value

    def __set__(self, instance: object, value: Any) -> None:
        model_instance = cast("Model", instance)
        if not self.primary_key:
            model_instance._ensure_loaded()
        name = self.require_name()
        if value is None:
            if not self.nullable and not self.primary_key:
                raise ValueError(f"Field '{name}' cannot be None")
            model_instance._field_values[name] = None
            return

        if self.choices and value not in self.choices:
            raise ValueError(f"Value '{value}' for field '{name}' not in choices {self.choices}")

        model_instance._field_values[name] = self.to_python(value)

    # Metadata helpers ----------------------------------------------------
    def bind(self, model: type["Model"], name: str) -> None:
        self.model = model
        self.name = name
        if self.db_column is None:
            self.db_column = name

    def contribute_to_class(self, model: type["Model"], name: str) -> None:
        """
        Attach the field to the model class as a descriptor.
        """
        self.bind(model, name)
        setattr(model, name, self)

    def require_name(self) -> str:
        if self.name is None:
            raise FieldError("Field name is not set.")
        return self.name

    def require_model(self) -> type["Model"]:
        if self.model is None:
            raise FieldError("Field model is not set.")
        return self.model

    def column_name(self) -> str:
        if self.db_column:
            return self.db_column
        return self.require_name()

    @property
    def is_generated(self) -> bool:
        return False

    # Conversion ----------------------------------------------------------
    def get_default(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_python(self, value: Any) -> Any:
        return value

    def to_db(self, value: Any) -> Any:
        """
        Convert a Python value into the parameter handed to the driver.
        """
        return value

    def from_db(self, value: Any) -> Any:
        """
        Convert a raw column value read from the driver.
        """
        if value is None:
            return None
        return self.to_python(value)

    # Change tracking -----------------------------------------------------
    def snapshot_value(self, value: Any) -> Any:
        return copy.deepcopy(value)

    def has_changed(self, old: Any, new: Any) -> bool:
        return not (old is new or old == new)


class AutoField(Field):
    """
    Auto-incrementing integer field used as the default primary key.
    """

    def __init__(self) -> None:
        super().__init__(primary_key=True, nullable=False, db_type="INTEGER")

    @property
    def is_generated(self) -> bool:
        return True

    def to_python(self, value: Any) -> int | None:
        if value is None:
            return value
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value '{value}' for AutoField") from exc


class IntegerField(Field):
    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "INTEGER")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> int | None:
        if value is None:
            return value
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid integer value '{value}'") from exc


class VersionField(IntegerField):
    """
    Optimistic-lock counter. Set to 1 on insert and bumped by every update.
    """

    is_version = True

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("nullable", True)
        super().__init__(**kwargs)


class FloatField(Field):
    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "REAL")
        super().__init__(**kwargs)

    def to_python(self, value: Any) -> float | None:
        if value is None:
            return value
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid float value '{value}'") from exc


class BooleanField(Field):
    def __init__(self, *, default: Any = False, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "BOOLEAN")
        kwargs.setdefault("nullable", False)
        super().__init__(default=default, **kwargs)

    @property
    def has_default(self) -> bool:
        return True

    def to_python(self, value: Any) -> bool | None:
        if value is None:
            return value
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.lower()
            if lowered in {"true", "t", "1"}:
                return True
            if lowered in {"false", "f", "0"}:
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        raise ValueError(f"Invalid boolean value '{value}'")

    def to_db(self, value: Any) -> int | None:
        if value is None:
            return None
        return 1 if value else 0


class StringField(Field):
    def __init__(self, *, max_length: int = 255, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)
        self.max_length = max_length

    def to_python(self, value: Any) -> str | None:
        if value is None:
            return value
        result = str(value)
        if self.max_length and len(result) > self.max_length:
            field_name = self.require_name()
            raise ValueError(f"Value for field '{field_name}' exceeds max_length {self.max_length}")
        return result


class DateTimeField(Field):
    def __init__(
        self, *, auto_now: bool = False, auto_now_add: bool = False, **kwargs: Any
    ) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)
        self.auto_now = auto_now
        self.auto_now_add = auto_now_add

    @property
    def has_default(self) -> bool:
        return self.auto_now or self.auto_now_add or super().has_default

    def get_default(self) -> Any:
        if self.auto_now or self.auto_now_add:
            return datetime.now(timezone.utc)
        return super().get_default()

    def to_python(self, value: Any) -> datetime | None:
        if value is None:
            return value
        if isinstance(value, datetime):
            return value
        raise ValueError(f"Expected datetime for field '{self.name}', received {value!r}")

    def to_db(self, value: Any) -> str | None:
        if value is None:
            return None
        return value.isoformat()

    def from_db(self, value: Any) -> datetime | None:
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(str(value))


class JSONField(Field):
    """
    Compound value (dict/list) stored as JSON text.

    Values are snapshotted by deep copy, so in-place edits such as
    ``entity.attributes["colour"] = "red"`` are detected at flush.
    """

    def __init__(self, **kwargs: Any) -> None:
        kwargs.setdefault("db_type", "TEXT")
        super().__init__(**kwargs)

    def get_default(self) -> Any:
        # Never share a mutable default between instances.
        return copy.deepcopy(super().get_default())

    def to_db(self, value: Any) -> str | None:
        if value is None:
            return None
        return json.dumps(value, sort_keys=True)

    def from_db(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8")
        return json.loads(value)
