"""查询条件转换

把字典形式的查询条件转换为 SQLAlchemy 表达式。

支持的写法:
    {"email": "a@x.com"}                         # 等值
    {"deleted_by": None}                         # IS NULL
    {"age": {"gte": 18, "lt": 60}}               # 运算符
    {"id": {"in": ["u1", "u2"]}}
    {"OR": [{"name": "a"}, {"name": "b"}]}       # 逻辑组合
    {"NOT": {"status": "banned"}}
    users.c.email.like("%@x.com")                # 原始表达式直接使用

使用示例:
    clause = build_where(users, {"email": {"endswith": "@x.com"}, "deleted_at": None})
    session.execute(select(users).where(clause))
"""

from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import Table, and_, not_, or_, true
from sqlalchemy.sql.elements import ClauseElement, ColumnElement

from ycascade.exceptions import Err, ErrorCode


def _eq(column, value):
    return column.is_(None) if value is None else column == value


def _ne(column, value):
    return column.is_not(None) if value is None else column != value


def _is_null(column, value):
    return column.is_(None) if value else column.is_not(None)


OPERATORS: Dict[str, Callable[[Any, Any], ColumnElement]] = {
    "eq": _eq,
    "ne": _ne,
    "in": lambda c, v: c.in_(list(v)),
    "not_in": lambda c, v: c.not_in(list(v)),
    "lt": lambda c, v: c < v,
    "lte": lambda c, v: c <= v,
    "gt": lambda c, v: c > v,
    "gte": lambda c, v: c >= v,
    "contains": lambda c, v: c.contains(v, autoescape=True),
    "startswith": lambda c, v: c.startswith(v, autoescape=True),
    "endswith": lambda c, v: c.endswith(v, autoescape=True),
    "is_null": _is_null,
}

LOGICAL_KEYS = ("AND", "OR", "NOT")


def _column(table, name: str):
    column = table.c.get(name)
    if column is None:
        raise Err.invalid(
            f"表 {table.name} 没有字段 '{name}'",
            code=ErrorCode.INVALID_FILTER,
            field=name,
        )
    return column


def _field_clause(table, name: str, value: Any) -> ColumnElement:
    column = _column(table, name)
    if not isinstance(value, Mapping):
        return _eq(column, value)

    clauses = []
    for op, operand in value.items():
        func = OPERATORS.get(op)
        if func is None:
            raise Err.invalid(
                f"字段 '{name}' 使用了未知运算符 '{op}'",
                code=ErrorCode.INVALID_FILTER,
                field=name,
                operator=op,
            )
        clauses.append(func(column, operand))
    return and_(true(), *clauses) if len(clauses) != 1 else clauses[0]


def _as_list(value) -> list:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def build_where(table: Table, where: Any = None) -> ColumnElement:
    """把查询条件转换为表达式

    Args:
        table: 目标表（或其别名）
        where: 字典条件、原始表达式、或它们的列表（按 AND 组合）；None 表示不过滤

    Returns:
        SQLAlchemy 布尔表达式

    Raises:
        ValidationException: 未知字段或运算符
    """
    if where is None:
        return true()
    if isinstance(where, ClauseElement):
        return where
    if isinstance(where, (list, tuple)):
        return and_(true(), *[build_where(table, item) for item in where])
    if not isinstance(where, Mapping):
        raise Err.invalid(
            f"不支持的查询条件类型: {type(where).__name__}",
            code=ErrorCode.INVALID_FILTER,
        )

    clauses = []
    for key, value in where.items():
        if key == "AND":
            clauses.append(and_(true(), *[build_where(table, item) for item in _as_list(value)]))
        elif key == "OR":
            items = [build_where(table, item) for item in _as_list(value)]
            clauses.append(or_(*items) if items else true())
        elif key == "NOT":
            clauses.append(not_(and_(true(), *[build_where(table, item) for item in _as_list(value)])))
        else:
            clauses.append(_field_clause(table, key, value))

    if not clauses:
        return true()
    return clauses[0] if len(clauses) == 1 else and_(*clauses)


def referenced_fields(where: Any) -> set:
    """条件中直接引用的字段名（不含逻辑组合内部，原始表达式不计）"""
    if not isinstance(where, Mapping):
        return set()
    return {key for key in where if key not in LOGICAL_KEYS}


def equality_values(where: Any) -> Optional[Dict[str, Any]]:
    """提取条件中的纯等值部分，用于点查判断"""
    if not isinstance(where, Mapping):
        return None
    values = {}
    for key, value in where.items():
        if key in LOGICAL_KEYS:
            continue
        if isinstance(value, Mapping):
            if set(value) == {"eq"}:
                values[key] = value["eq"]
            continue
        values[key] = value
    return values
