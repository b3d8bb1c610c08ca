"""带审计的写操作

每个函数包装一个基础写操作，并按动作采集正确的前后快照：
- create / create_many: 写入后的记录
- update / update_many: {before, after}，批量时按主键配对
- upsert: 运行时判定 create 或 update，只在该动作需要审计时写事件
- delete / delete_many / hard_delete / hard_delete_many: 删除前的记录

实体没有声明对应审计动作时，函数只执行基础写操作。
所有函数都在调用方的事务中执行，不自行提交。

使用示例:
    target = WriteTarget(entity, table, writer, resolver)

    row = audited_create(session, target, {"id": "u1", "email": "a@x.com"}, actor="admin")
    row = audited_update(session, target, {"id": "u1"}, {"name": "A"}, actor="admin")
    count = audited_update_many(session, target, {"name": {"startswith": "A"}}, {"active": False})
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import Table, delete, insert, true, update
from sqlalchemy.orm import Session

from ycascade.exceptions import Err, ErrorCode
from ycascade.query import build_where, entity_id, fetch_rows, pk_clause, pk_key, pk_values, refetch
from ycascade.schema.entities import AuditAction, Entity
from ycascade.unique import UniqueConflictResolver

from .writer import AuditTrailWriter


@dataclass(frozen=True)
class WriteTarget:
    """写操作目标

    Attributes:
        entity: 实体元数据
        table: 实体表
        writer: 审计写入器，None 表示不审计
        resolver: 唯一约束解析器（哨兵注入、未删除谓词、点查改写）
    """
    entity: Entity
    table: Table
    writer: Optional[AuditTrailWriter] = None
    resolver: Optional[UniqueConflictResolver] = None

    def audits(self, action) -> bool:
        return (
            self.writer is not None
            and self.writer.enabled
            and self.entity.audits(action)
        )

    def active_clause(self):
        """未删除谓词，不可软删除实体为 true()"""
        if not self.entity.is_soft_deletable or self.resolver is None:
            return true()
        return self.resolver.active_predicate(self.table.c[self.entity.deleted_at_field])

    def deleted_clause(self):
        """已删除谓词"""
        if not self.entity.is_soft_deletable or self.resolver is None:
            return true()
        return self.resolver.deleted_predicate(self.table.c[self.entity.deleted_at_field])

    def where_clause(self, where: Any, active: bool = True):
        """查询条件

        active=True 时按未删除记录的点查改写（哨兵策略补上哨兵常量）；
        否则只展开复合键名。
        """
        if isinstance(where, Mapping) and self.resolver is not None and self.entity.is_soft_deletable:
            if active:
                where = self.resolver.rewrite_unique_where(self.entity, where)
            else:
                where = self.resolver.flatten_compound_keys(self.entity, where)
        return build_where(self.table, where)

    def write_event(self, session: Session, action, row: Mapping[str, Any], payload: Any,
                    actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None,
                    parent_event_id: Optional[str] = None) -> str:
        return self.writer.write(
            session,
            self.entity.name,
            entity_id(self.entity, row),
            action,
            actor_id=actor,
            payload=payload,
            parent_event_id=parent_event_id,
            context=context,
        )


# ==================== 查询辅助 ====================

def fetch_single(session: Session, target: WriteTarget, where: Any, *extra) -> Optional[Dict[str, Any]]:
    """按条件读取单行

    Raises:
        ValidationException: 条件匹配到多行（NOT_UNIQUE_WHERE）
    """
    rows = fetch_rows(session, target.table, None, target.where_clause(where, active=False), *extra, limit=2)
    if len(rows) > 1:
        raise Err.invalid(
            f"{target.entity.name} 的查询条件匹配到多条记录，单条操作要求条件唯一",
            code=ErrorCode.NOT_UNIQUE_WHERE,
            entity=target.entity.name,
        )
    return rows[0] if rows else None


def _require_single(session: Session, target: WriteTarget, where: Any, *extra) -> Dict[str, Any]:
    row = fetch_single(session, target, where, *extra)
    if row is None:
        raise Err.not_found(
            f"{target.entity.name} 记录不存在",
            entity=target.entity.name,
            where=repr(where),
        )
    return row


def _reload(session: Session, target: WriteTarget, key: Mapping[str, Any]) -> Dict[str, Any]:
    rows = fetch_rows(session, target.table, None, pk_clause(target.table, target.entity, key))
    return rows[0] if rows else dict(key)


def _inserted_key(target: WriteTarget, data: Mapping[str, Any], result) -> Dict[str, Any]:
    # inserted_primary_key 按表的主键列顺序返回，与声明顺序无关
    names = [column.name for column in target.table.primary_key.columns]
    key = dict(zip(names, result.inserted_primary_key or ()))
    for name in target.entity.primary_key:
        if key.get(name) is None and name in data:
            key[name] = data[name]
    return key


def _pair_by_key(target: WriteTarget, before: Sequence[Mapping], after: Sequence[Mapping]) -> List[tuple]:
    """按主键配对前后快照，配对失败即视为并发修改"""
    after_map = {pk_key(target.entity, row): row for row in after}
    pairs = []
    for row in before:
        match = after_map.get(pk_key(target.entity, row))
        if match is None:
            raise Err.conflict(
                f"{target.entity.name} 批量更新后无法按主键找到记录 {entity_id(target.entity, row)}",
                entity=target.entity.name,
            )
        pairs.append((row, match))
    return pairs


# ==================== 创建 ====================

def audited_create(session: Session, target: WriteTarget, data: Mapping[str, Any],
                   actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """创建记录，审计 create"""
    if target.resolver is not None:
        data = target.resolver.prepare_create(target.entity, data)
    result = session.execute(insert(target.table).values(**data))
    row = _reload(session, target, _inserted_key(target, data, result))

    if target.audits(AuditAction.CREATE):
        target.write_event(session, AuditAction.CREATE, row, row, actor, context)
    return row


def audited_create_many(session: Session, target: WriteTarget, rows: Sequence[Mapping[str, Any]],
                        actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> int:
    """批量创建，每条记录审计一次 create

    Returns:
        创建的记录数
    """
    rows = list(rows)
    if not rows:
        return 0
    if target.resolver is not None:
        rows = [target.resolver.prepare_create(target.entity, row) for row in rows]

    if not target.audits(AuditAction.CREATE):
        session.execute(insert(target.table), rows)
        return len(rows)

    for data in rows:
        result = session.execute(insert(target.table).values(**data))
        created = _reload(session, target, _inserted_key(target, data, result))
        target.write_event(session, AuditAction.CREATE, created, created, actor, context)
    return len(rows)


# ==================== 更新 ====================

def audited_update(session: Session, target: WriteTarget, where: Any, data: Mapping[str, Any],
                   actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """更新单条未删除记录，审计 update（{before, after}）

    Raises:
        ResourceNotFoundException: 记录不存在或已被软删除
    """
    before = _require_single(session, target, target.where_clause(where), target.active_clause())
    session.execute(
        update(target.table)
        .where(pk_clause(target.table, target.entity, before))
        .values(**data)
    )
    key = {**pk_values(target.entity, before), **{k: v for k, v in data.items() if k in target.entity.primary_key}}
    after = _reload(session, target, key)

    if target.audits(AuditAction.UPDATE):
        target.write_event(session, AuditAction.UPDATE, after, {"before": before, "after": after}, actor, context)
    return after


def audited_update_many(session: Session, target: WriteTarget, where: Any, data: Mapping[str, Any],
                        actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> int:
    """批量更新未删除记录

    审计时先读取变更前记录，更新后按主键重新读取并配对。

    Raises:
        ConcurrencyConflictException: 影响行数与变更前记录数不一致，或主键无法配对

    Returns:
        更新的记录数
    """
    clause = target.where_clause(where)
    active = target.active_clause()

    if not target.audits(AuditAction.UPDATE):
        result = session.execute(update(target.table).where(clause, active).values(**data))
        return result.rowcount

    before = fetch_rows(session, target.table, None, clause, active)
    result = session.execute(update(target.table).where(clause, active).values(**data))
    if result.rowcount != len(before):
        raise Err.conflict(
            f"{target.entity.name} 批量更新影响 {result.rowcount} 行，变更前读取到 {len(before)} 行",
            entity=target.entity.name,
        )

    after = refetch(session, target.table, target.entity, before)
    for old, new in _pair_by_key(target, before, after):
        target.write_event(session, AuditAction.UPDATE, new, {"before": old, "after": new}, actor, context)
    return result.rowcount


def audited_upsert(session: Session, target: WriteTarget, where: Any,
                   create: Mapping[str, Any], update_data: Mapping[str, Any],
                   actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """存在则更新，否则创建

    动作在运行时判定；只有该动作需要审计时才写事件。
    """
    existing = fetch_single(session, target, target.where_clause(where), target.active_clause())

    if existing is None:
        data = dict(create)
        if target.resolver is not None:
            data = target.resolver.prepare_create(target.entity, data)
        result = session.execute(insert(target.table).values(**data))
        row = _reload(session, target, _inserted_key(target, data, result))
        action, payload = AuditAction.CREATE, row
    else:
        session.execute(
            update(target.table)
            .where(pk_clause(target.table, target.entity, existing))
            .values(**update_data)
        )
        key = {
            **pk_values(target.entity, existing),
            **{k: v for k, v in update_data.items() if k in target.entity.primary_key},
        }
        row = _reload(session, target, key)
        action, payload = AuditAction.UPDATE, {"before": existing, "after": row}

    if target.audits(action):
        target.write_event(session, action, row, payload, actor, context)
    return row


# ==================== 删除 ====================

def _delete_single(session: Session, target: WriteTarget, where: Any, action: AuditAction,
                   actor: Optional[str], context: Optional[Mapping[str, Any]], *extra) -> Dict[str, Any]:
    record = _require_single(session, target, target.where_clause(where, active=False), *extra)
    if target.audits(action):
        target.write_event(session, action, record, record, actor, context)
    session.execute(delete(target.table).where(pk_clause(target.table, target.entity, record)))
    return record


def _delete_many(session: Session, target: WriteTarget, where: Any, action: AuditAction,
                 actor: Optional[str], context: Optional[Mapping[str, Any]], *extra) -> int:
    clause = target.where_clause(where, active=False)
    if not target.audits(action):
        return session.execute(delete(target.table).where(clause, *extra)).rowcount

    records = fetch_rows(session, target.table, None, clause, *extra)
    for record in records:
        target.write_event(session, action, record, record, actor, context)
    result = session.execute(delete(target.table).where(clause, *extra))
    if result.rowcount != len(records):
        raise Err.conflict(
            f"{target.entity.name} 批量删除影响 {result.rowcount} 行，删除前读取到 {len(records)} 行",
            entity=target.entity.name,
        )
    return result.rowcount


def audited_delete(session: Session, target: WriteTarget, where: Any,
                   actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """物理删除单条记录（不可软删除实体），审计 delete"""
    return _delete_single(session, target, where, AuditAction.DELETE, actor, context)


def audited_delete_many(session: Session, target: WriteTarget, where: Any,
                        actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> int:
    """批量物理删除（不可软删除实体），每条记录审计一次 delete"""
    return _delete_many(session, target, where, AuditAction.DELETE, actor, context)


def audited_hard_delete(session: Session, target: WriteTarget, where: Any,
                        actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """物理删除单条记录（包括已软删除的记录）

    实体审计 delete 时，在删除前写入 hard_delete 事件。
    """
    return _delete_single(session, target, where, AuditAction.HARD_DELETE, actor, context)


def audited_hard_delete_many(session: Session, target: WriteTarget, where: Any,
                             actor: Optional[str] = None, context: Optional[Mapping[str, Any]] = None) -> int:
    """批量物理删除（包括已软删除的记录），删除前逐条写入 hard_delete 事件"""
    return _delete_many(session, target, where, AuditAction.HARD_DELETE, actor, context)
