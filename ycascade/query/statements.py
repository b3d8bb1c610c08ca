"""语句辅助函数

行与主键相关的小工具，执行器、审计和客户端共用。
"""

import json
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import Table, and_, false, or_, select
from sqlalchemy.orm import Session

from ycascade.exceptions import Err, ErrorCode
from ycascade.schema.entities import Entity

from .filters import build_where


def row_to_dict(row) -> Dict[str, Any]:
    """Row / RowMapping 转为普通字典"""
    if row is None:
        return None
    mapping = getattr(row, "_mapping", row)
    return dict(mapping)


def pk_values(entity: Entity, row: Mapping[str, Any]) -> Dict[str, Any]:
    """从行中取出主键"""
    return {name: row[name] for name in entity.primary_key}


def entity_id(entity: Entity, row: Mapping[str, Any]) -> str:
    """审计事件中的 entity_id

    单主键为字符串形式；复合主键按主键声明顺序序列化为 JSON 对象。
    """
    if not entity.is_composite_key:
        return str(row[entity.primary_key[0]])
    return json.dumps(
        {name: row[name] for name in entity.primary_key},
        default=str,
        ensure_ascii=False,
    )


def pk_key(entity: Entity, row: Mapping[str, Any]) -> tuple:
    """可哈希的主键元组，用于前后配对"""
    return tuple(row[name] for name in entity.primary_key)


def pk_clause(table: Table, entity: Entity, row: Mapping[str, Any]):
    """按主键定位单行"""
    return and_(*[table.c[name] == row[name] for name in entity.primary_key])


def pk_in_clause(table: Table, entity: Entity, rows: Sequence[Mapping[str, Any]]):
    """按主键定位多行"""
    if not rows:
        return false()
    if not entity.is_composite_key:
        name = entity.primary_key[0]
        return table.c[name].in_([row[name] for row in rows])
    return or_(*[pk_clause(table, entity, row) for row in rows])


def fk_in_clause(table: Table, foreign_key: Sequence[str], parent_key: Sequence[str],
                 parents: Sequence[Mapping[str, Any]]):
    """子表外键指向任一父行"""
    if not parents:
        return false()
    if len(foreign_key) == 1:
        values = [p[parent_key[0]] for p in parents if p.get(parent_key[0]) is not None]
        return table.c[foreign_key[0]].in_(values) if values else false()
    return or_(*[
        and_(*[table.c[fk] == parent[pk] for fk, pk in zip(foreign_key, parent_key)])
        for parent in parents
    ])


def order_by_clauses(table: Table, order_by: Any) -> List:
    """排序条件

    支持 {"created_at": "desc"}、[{"a": "asc"}, {"b": "desc"}]、字段名字符串，以及原始表达式。
    """
    if order_by is None:
        return []
    items = order_by if isinstance(order_by, (list, tuple)) else [order_by]
    clauses = []
    for item in items:
        if isinstance(item, str):
            clauses.append(table.c[item].asc())
        elif isinstance(item, Mapping):
            for name, direction in item.items():
                column = table.c.get(name)
                if column is None:
                    raise Err.invalid(
                        f"表 {table.name} 没有字段 '{name}'",
                        code=ErrorCode.INVALID_FILTER,
                        field=name,
                    )
                clauses.append(column.desc() if str(direction).lower() == "desc" else column.asc())
        else:
            clauses.append(item)
    return clauses


def fetch_rows(
    session: Session,
    table: Table,
    where: Any = None,
    *extra,
    order_by: Any = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """查询行（不做软删除过滤，过滤条件由调用方通过 extra 传入）"""
    stmt = select(table).where(build_where(table, where), *extra)
    clauses = order_by_clauses(table, order_by)
    if clauses:
        stmt = stmt.order_by(*clauses)
    if limit is not None:
        stmt = stmt.limit(limit)
    if offset is not None:
        stmt = stmt.offset(offset)
    return [row_to_dict(row) for row in session.execute(stmt)]


def refetch(session: Session, table: Table, entity: Entity,
            rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """按主键重新读取（写入后的状态），保持输入顺序"""
    rows = list(rows)
    if not rows:
        return []
    fresh = {
        pk_key(entity, row): row
        for row in fetch_rows(session, table, None, pk_in_clause(table, entity, rows))
    }
    return [fresh[pk_key(entity, row)] for row in rows if pk_key(entity, row) in fresh]
