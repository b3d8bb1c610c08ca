"""查询辅助模块"""

from .filters import OPERATORS, LOGICAL_KEYS, build_where, referenced_fields, equality_values
from .statements import (
    row_to_dict,
    pk_values,
    entity_id,
    pk_key,
    pk_clause,
    pk_in_clause,
    fk_in_clause,
    order_by_clauses,
    fetch_rows,
    refetch,
)

__all__ = [
    "OPERATORS",
    "LOGICAL_KEYS",
    "build_where",
    "referenced_fields",
    "equality_values",
    "row_to_dict",
    "pk_values",
    "entity_id",
    "pk_key",
    "pk_clause",
    "pk_in_clause",
    "fk_in_clause",
    "order_by_clauses",
    "fetch_rows",
    "refetch",
]
