"""实体委托

每个实体一个委托对象：
- ReadView: 读取（find_many / find_first / find_unique / count / aggregate / group_by，支持 include）
- EntityDelegate: 普通实体，读取 + 写入 + 物理删除
- SoftDeleteDelegate: 可软删除实体，读取 + 写入 + 软删除 / 恢复 / 硬删除，没有普通 delete
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func, select

from ycascade.audit import (
    audited_create,
    audited_create_many,
    audited_delete,
    audited_delete_many,
    audited_update,
    audited_update_many,
    audited_upsert,
)
from ycascade.exceptions import Err, ErrorCode
from ycascade.filtering import FilterMode
from ycascade.query import fk_in_clause, order_by_clauses, row_to_dict
from ycascade.schema.description import RelationDescription
from ycascade.schema.entities import Entity
from ycascade.transaction import transaction_manager


_AGGREGATES = {
    "sum": func.sum,
    "avg": func.avg,
    "min": func.min,
    "max": func.max,
}


class ReadView:
    """实体的读取视图

    Args:
        core: 客户端内部状态（会话、schema、重写器等）
        entity: 实体元数据
        mode: 过滤模式
    """

    def __init__(self, core, entity: Entity, mode: FilterMode = FilterMode.ACTIVE):
        self._core = core
        self.entity = entity
        self.mode = mode
        self.table = core.schema.table(entity.name)
        self.target = core.executor.target(entity.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.entity.name}, mode={self.mode.value})"

    # ==================== 语句构造 ====================

    def _where(self, where: Any):
        return self.target.where_clause(where, active=self.mode == FilterMode.ACTIVE)

    def _filtered(self, stmt):
        return self._core.rewriter.rewrite_select(stmt, self.mode)

    def _select(self, where: Any = None, order_by: Any = None,
                limit: Optional[int] = None, offset: Optional[int] = None):
        stmt = self._filtered(select(self.table).where(self._where(where)))
        clauses = order_by_clauses(self.table, order_by)
        if clauses:
            stmt = stmt.order_by(*clauses)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)
        return stmt

    # ==================== 读取 ====================

    def find_many(self, where: Any = None, order_by: Any = None, limit: Optional[int] = None,
                  offset: Optional[int] = None, include: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """查询多条记录

        使用示例:
            client.User.find_many({"name": {"startswith": "A"}}, order_by={"name": "asc"}, limit=10)
            client.User.find_many(include={"posts": {"include": {"comments": True}}})
        """
        with self._core.session_scope() as session:
            rows = [row_to_dict(r) for r in session.execute(self._select(where, order_by, limit, offset))]
            if include:
                load_includes(self._core, session, self.entity, rows, include, self.mode)
            return rows

    def find_first(self, where: Any = None, order_by: Any = None,
                   include: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        rows = self.find_many(where, order_by=order_by, limit=1, include=include)
        return rows[0] if rows else None

    def find_unique(self, where: Any, include: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """按唯一条件查询

        哨兵策略下，覆盖 (字段..., deleted_at) 复合约束的条件会自动补上哨兵常量。

        Raises:
            ValidationException: 条件匹配到多条记录
        """
        rows = self.find_many(where, limit=2, include=include)
        if len(rows) > 1:
            raise Err.invalid(
                f"{self.entity.name}.find_unique 的条件匹配到多条记录",
                code=ErrorCode.NOT_UNIQUE_WHERE,
                entity=self.entity.name,
            )
        return rows[0] if rows else None

    def count(self, where: Any = None) -> int:
        stmt = self._filtered(
            select(func.count()).select_from(self.table).where(self._where(where))
        )
        with self._core.session_scope() as session:
            return session.execute(stmt).scalar_one()

    def _aggregate_columns(self, count: bool, aggregates: Mapping[str, Sequence[str]]):
        columns = []
        if count:
            columns.append(func.count().label("count"))
        for name, fields in aggregates.items():
            if not fields:
                continue
            agg = _AGGREGATES.get(name)
            if agg is None:
                raise Err.invalid(f"不支持的聚合函数: {name}", code=ErrorCode.INVALID_FILTER)
            for field_name in fields:
                column = self.table.c.get(field_name)
                if column is None:
                    raise Err.invalid(
                        f"表 {self.table.name} 没有字段 '{field_name}'",
                        code=ErrorCode.INVALID_FILTER,
                        field=field_name,
                    )
                columns.append(agg(column).label(f"{name}__{field_name}"))
        return columns

    @staticmethod
    def _shape(mapping: Mapping[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in mapping.items():
            if "__" in key:
                agg, field_name = key.split("__", 1)
                result.setdefault(agg, {})[field_name] = value
            else:
                result[key] = value
        return result

    def aggregate(self, where: Any = None, count: bool = True, **aggregates: Sequence[str]) -> Dict[str, Any]:
        """聚合查询

        使用示例:
            client.Order.aggregate({"status": "paid"}, sum=["amount"], max=["amount"])
            # {"count": 3, "sum": {"amount": 120}, "max": {"amount": 80}}
        """
        columns = self._aggregate_columns(count, aggregates)
        if not columns:
            return {}
        stmt = self._filtered(select(*columns).select_from(self.table).where(self._where(where)))
        with self._core.session_scope() as session:
            row = session.execute(stmt).one()
        return self._shape(row._mapping)

    def group_by(self, by: Sequence[str], where: Any = None, count: bool = True,
                 order_by: Any = None, **aggregates: Sequence[str]) -> List[Dict[str, Any]]:
        """分组聚合

        使用示例:
            client.Post.group_by(["author_id"], sum=["views"])
            # [{"author_id": "u1", "count": 2, "sum": {"views": 30}}, ...]
        """
        if isinstance(by, str):
            by = [by]
        keys = []
        for name in by:
            column = self.table.c.get(name)
            if column is None:
                raise Err.invalid(
                    f"表 {self.table.name} 没有字段 '{name}'",
                    code=ErrorCode.INVALID_FILTER,
                    field=name,
                )
            keys.append(column)

        stmt = select(*keys, *self._aggregate_columns(count, aggregates)).select_from(self.table)
        stmt = self._filtered(stmt.where(self._where(where)).group_by(*keys))
        clauses = order_by_clauses(self.table, order_by)
        stmt = stmt.order_by(*(clauses or keys))
        with self._core.session_scope() as session:
            return [self._shape(row._mapping) for row in session.execute(stmt)]


class _WriteMixin:
    """创建 / 更新（带审计）"""

    def _run(self, operation, *args, actor: Optional[str] = None,
             context: Optional[Mapping[str, Any]] = None):
        with self._core.session_scope() as session:
            with transaction_manager.transaction(session):
                return operation(session, self.target, *args, actor=actor,
                                 context=self._core.audit_context(context))

    def create(self, data: Mapping[str, Any], actor: Optional[str] = None,
               context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._run(audited_create, data, actor=actor, context=context)

    def create_many(self, data: Sequence[Mapping[str, Any]], actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(audited_create_many, data, actor=actor, context=context)

    def update(self, where: Any, data: Mapping[str, Any], actor: Optional[str] = None,
               context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._run(audited_update, where, data, actor=actor, context=context)

    def update_many(self, where: Any, data: Mapping[str, Any], actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(audited_update_many, where, data, actor=actor, context=context)

    def upsert(self, where: Any, create: Mapping[str, Any], update: Mapping[str, Any],
               actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._run(audited_upsert, where, create, update, actor=actor, context=context)


class EntityDelegate(_WriteMixin, ReadView):
    """普通实体（含仅审计实体）的委托"""

    def delete(self, where: Any, actor: Optional[str] = None,
               context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        return self._run(audited_delete, where, actor=actor, context=context)

    def delete_many(self, where: Any = None, actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None) -> int:
        return self._run(audited_delete_many, where, actor=actor, context=context)


class SoftDeleteDelegate(_WriteMixin, ReadView):
    """可软删除实体的委托

    使用示例:
        client.User.soft_delete({"id": "u1"}, actor="admin")
        client.User.only_deleted.find_many()
        client.User.restore_cascade({"id": "u1"})
    """

    @property
    def only_deleted(self) -> ReadView:
        """只读已删除记录"""
        return ReadView(self._core, self.entity, FilterMode.DELETED)

    @property
    def including_deleted(self) -> ReadView:
        """不过滤删除状态"""
        return ReadView(self._core, self.entity, FilterMode.ALL)

    def _execute(self, method: str, *args, **kwargs):
        context = self._core.audit_context(kwargs.pop("context", None))
        with self._core.session_scope() as session:
            return getattr(self._core.executor, method)(
                session, self.entity.name, *args, context=context, **kwargs
            )

    def soft_delete(self, where: Any, actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None):
        return self._execute("soft_delete", where, actor=actor, context=context)

    def soft_delete_many(self, where: Any = None, actor: Optional[str] = None,
                         context: Optional[Mapping[str, Any]] = None):
        return self._execute("soft_delete_many", where, actor=actor, context=context)

    def restore(self, where: Any, actor: Optional[str] = None,
                context: Optional[Mapping[str, Any]] = None):
        return self._execute("restore", where, actor=actor, context=context)

    def restore_cascade(self, where: Any, actor: Optional[str] = None,
                        context: Optional[Mapping[str, Any]] = None):
        return self._execute("restore_cascade", where, actor=actor, context=context)

    def hard_delete(self, where: Any, actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None, subtree: bool = False):
        return self._execute("hard_delete", where, actor=actor, context=context, subtree=subtree)

    def hard_delete_many(self, where: Any = None, actor: Optional[str] = None,
                         context: Optional[Mapping[str, Any]] = None, subtree: bool = False):
        return self._execute("hard_delete_many", where, actor=actor, context=context, subtree=subtree)


# ==================== include ====================

def resolve_include_keys(schema, entity: Entity, relation: RelationDescription):
    """include 关系两端的关联字段

    Returns:
        (目标实体, 本端字段, 目标端字段)
    """
    target = schema.entity(relation.target)
    if relation.is_owning:
        return target, relation.foreign_key, relation.references or target.primary_key

    for back in target.relations:
        if not back.is_owning or back.target != entity.name:
            continue
        if relation.relation_name and back.relation_name and relation.relation_name != back.relation_name:
            continue
        return target, back.references or entity.primary_key, back.foreign_key

    raise Err.invalid(
        f"无法确定关系 {entity.name}.{relation.name} 的外键",
        code=ErrorCode.INVALID_FILTER,
        entity=entity.name,
        relation=relation.name,
    )


def load_includes(core, session, entity: Entity, rows: List[Dict[str, Any]],
                  include: Mapping[str, Any], mode: FilterMode) -> None:
    """加载关联记录并挂到行字典上

    关联记录在默认视图和 only_deleted 视图下只取未删除记录，including_deleted 视图下不过滤。
    """
    if not rows:
        return
    child_mode = FilterMode.ALL if mode == FilterMode.ALL else FilterMode.ACTIVE

    for name, options in include.items():
        if not options:
            continue
        relation = entity.get_relation(name)
        if relation is None:
            raise Err.invalid(
                f"{entity.name} 没有关系 '{name}'",
                code=ErrorCode.INVALID_FILTER,
                entity=entity.name,
                relation=name,
            )
        target, local, remote = resolve_include_keys(core.schema, entity, relation)
        table = core.schema.table(target.name)
        options = options if isinstance(options, Mapping) else {}

        stmt = select(table).where(fk_in_clause(table, remote, local, rows))
        if options.get("where") is not None:
            stmt = stmt.where(core.executor.target(target.name).where_clause(options["where"], active=False))
        clauses = order_by_clauses(table, options.get("order_by"))
        if clauses:
            stmt = stmt.order_by(*clauses)
        stmt = core.rewriter.rewrite_select(stmt, child_mode)
        related = [row_to_dict(r) for r in session.execute(stmt)]

        if options.get("include"):
            load_includes(core, session, target, related, options["include"], mode)

        grouped: Dict[tuple, List[Dict[str, Any]]] = {}
        for item in related:
            grouped.setdefault(tuple(item[c] for c in remote), []).append(item)

        for row in rows:
            matches = grouped.get(tuple(row[c] for c in local), [])
            row[name] = matches if relation.is_list else (matches[0] if matches else None)
