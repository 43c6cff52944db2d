"""
Naming conventions used when deriving table and column names.
"""

import re


_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def camel_to_snake(name: str) -> str:
    """
    ``ECommerceProduct`` -> ``e_commerce_product``.
    """
    return _BOUNDARY_RE.sub("_", name).lower()


def join_table_name(owner_table: str, target_table: str) -> str:
    return f"{owner_table}_{target_table}"


def foreign_key_column(name: str) -> str:
    return f"{name}_id"
