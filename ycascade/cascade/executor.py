"""级联执行器

软删除、恢复、硬删除的事务引擎。每个顶层调用在一个事务内完成：
读取目标行 → 写入根行 → 沿级联图传播（同一个删除标记）→ 审计 → 提交或整体回滚。

使用示例:
    from ycascade.cascade import CascadeExecutor

    executor = CascadeExecutor(schema)

    result = executor.soft_delete(session, "User", {"id": "u1"}, actor="admin")
    result.cascade                       # {"Post": 2, "Comment": 5}

    restored = executor.restore_cascade(session, "User", {"id": "u1"})
    restored.cascade                     # {"Post": 2, "Comment": 5}
"""

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from ycascade.audit import AuditTrailWriter, WriteTarget, fetch_single
from ycascade.audit.operations import audited_hard_delete, audited_hard_delete_many
from ycascade.exceptions import Err, ErrorCode
from ycascade.log import get_logger
from ycascade.query import fetch_rows, fk_in_clause, pk_clause, pk_in_clause, pk_key
from ycascade.schema import cascade_order, has_cascade_children, soft_deletable_descendants
from ycascade.schema.entities import AuditAction, CascadeChild, Entity
from ycascade.transaction import transaction_manager
from ycascade.unique import UniqueConflictResolver

from .result import CascadeResult, RestoreResult, SoftDeleteManyResult, SoftDeleteResult, merge_counts

logger = get_logger("ycascade.cascade")


class CascadeExecutor:
    """级联执行器

    所有方法的第一个参数是 Session。调用方已经在同一个会话上开启事务时加入该事务，
    否则自行开启并在结束时提交。

    Args:
        schema: SchemaBuildResult
        resolver: 唯一约束解析器，默认按 schema 的配置创建
        writer: 审计写入器，默认按 schema 的审计表创建
    """

    def __init__(self, schema, resolver: Optional[UniqueConflictResolver] = None,
                 writer: Optional[AuditTrailWriter] = None):
        self.schema = schema
        self.graph = schema.cascade_graph
        self.resolver = resolver or UniqueConflictResolver(schema.settings)
        self.writer = writer or AuditTrailWriter(schema)
        self._targets: Dict[str, WriteTarget] = {}
        self._scopes: Dict[str, Tuple[Entity, ...]] = {}

    def target(self, name) -> WriteTarget:
        """实体的写操作目标（缓存）"""
        entity = self.schema.entity(name)
        found = self._targets.get(entity.name)
        if found is None:
            found = WriteTarget(entity, self.schema.table(entity.name), self.writer, self.resolver)
            self._targets[entity.name] = found
        return found

    def scope(self, name) -> Tuple[Entity, ...]:
        """级联软删除 / 恢复可能触及的可软删除后代（不含自身，叶子在前，缓存）"""
        entity = self.schema.entity(name)
        found = self._scopes.get(entity.name)
        if found is None:
            found = tuple(soft_deletable_descendants(self.graph, self.schema.entities, entity.name))
            self._scopes[entity.name] = found
        return found

    def _soft_target(self, name) -> WriteTarget:
        target = self.target(name)
        if not target.entity.is_soft_deletable:
            raise Err.invalid(
                f"{target.entity.name} 没有删除字段，不支持软删除",
                entity=target.entity.name,
            )
        return target

    def _check_actor(self, entity: Entity, actor: Optional[str]) -> None:
        if entity.deleted_by_field is not None and actor is None:
            raise Err.invalid(
                f"{entity.name} 有删除人字段 {entity.deleted_by_field}，软删除时必须提供 actor",
                code=ErrorCode.ACTOR_REQUIRED,
                entity=entity.name,
            )
        if actor is None:
            unattributed = [e.name for e in self.scope(entity.name) if e.deleted_by_field is not None]
            if unattributed:
                logger.warning(
                    f"软删除 {entity.name} 未提供 actor，级联后代 {', '.join(unattributed)} 的删除人字段将为空"
                )

    def _can_fast_path(self, target: WriteTarget) -> bool:
        """没有可软删除的后代、不需要逐行变换、不审计删除时，可以用一条 UPDATE 完成"""
        return (
            not self.scope(target.entity.name)
            and not self.resolver.needs_row_transform(target.entity)
            and not target.audits(AuditAction.DELETE)
        )

    # ==================== 软删除 ====================

    def soft_delete(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None) -> SoftDeleteResult:
        """软删除单条记录并级联

        Raises:
            ResourceNotFoundException: 记录不存在或已被软删除（不写入任何数据）
            ValidationException: 需要 actor 却未提供；改写后的唯一值超长
        """
        target = self._soft_target(entity)
        self._check_actor(target.entity, actor)

        with transaction_manager.transaction(session):
            row = fetch_single(session, target, target.where_clause(where), target.active_clause())
            if row is None:
                raise Err.not_found(
                    f"{target.entity.name} 记录不存在或已被删除",
                    entity=target.entity.name,
                    where=repr(where),
                )

            marker = datetime.now()
            changes = self.resolver.deletion_changes(target.entity, row, marker, actor)
            session.execute(
                update(target.table)
                .where(pk_clause(target.table, target.entity, row))
                .values(**changes)
            )

            event_id = None
            if target.audits(AuditAction.DELETE):
                event_id = target.write_event(session, AuditAction.DELETE, row, row, actor, context)

            cascade = self._cascade_soft_delete(session, target.entity, [row], [event_id], marker, actor, context)
            record = {**row, **changes}

        logger.debug(f"软删除 {target.entity.name}#{pk_key(target.entity, row)}，级联: {cascade}")
        return SoftDeleteResult(record=record, cascade=cascade)

    def soft_delete_many(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                         context: Optional[Mapping[str, Any]] = None) -> SoftDeleteManyResult:
        """批量软删除并级联

        先读取全部匹配行（用于主键定位、级联关联和审计），再用同一个删除标记批量更新。
        """
        target = self._soft_target(entity)
        self._check_actor(target.entity, actor)
        clause = target.where_clause(where)
        active = target.active_clause()

        with transaction_manager.transaction(session):
            marker = datetime.now()

            if self._can_fast_path(target):
                changes = self.resolver.bulk_deletion_changes(target.entity, marker, actor)
                result = session.execute(update(target.table).where(clause, active).values(**changes))
                logger.debug(f"批量软删除 {target.entity.name}（单语句）: {result.rowcount} 行")
                return SoftDeleteManyResult(count=result.rowcount, cascade={})

            rows = fetch_rows(session, target.table, None, clause, active)
            if not rows:
                return SoftDeleteManyResult(count=0, cascade={})

            self._mark_deleted(session, target, rows, marker, actor)

            event_ids: List[Optional[str]] = [None] * len(rows)
            if target.audits(AuditAction.DELETE):
                event_ids = [
                    target.write_event(session, AuditAction.DELETE, row, row, actor, context)
                    for row in rows
                ]

            cascade = self._cascade_soft_delete(session, target.entity, rows, event_ids, marker, actor, context)

        logger.debug(f"批量软删除 {target.entity.name}: {len(rows)} 行，级联: {cascade}")
        return SoftDeleteManyResult(count=len(rows), cascade=cascade)

    def _mark_deleted(self, session: Session, target: WriteTarget, rows: Sequence[Mapping[str, Any]],
                      marker: datetime, actor: Optional[str]) -> None:
        """给一组行写入删除标记"""
        if self.resolver.needs_row_transform(target.entity):
            for row in rows:
                changes = self.resolver.deletion_changes(target.entity, row, marker, actor)
                session.execute(
                    update(target.table)
                    .where(pk_clause(target.table, target.entity, row))
                    .values(**changes)
                )
            return

        changes = self.resolver.bulk_deletion_changes(target.entity, marker, actor)
        session.execute(
            update(target.table)
            .where(pk_in_clause(target.table, target.entity, rows))
            .values(**changes)
        )

    def _children_of(self, session: Session, child: CascadeChild, parents: Sequence[Mapping[str, Any]], *extra):
        target = self.target(child.entity)
        clause = fk_in_clause(target.table, child.foreign_key, child.parent_key, parents)
        return target, fetch_rows(session, target.table, None, clause, *extra)

    def _cascade_soft_delete(self, session: Session, parent: Entity, parents: Sequence[Mapping[str, Any]],
                             parent_events: Sequence[Optional[str]], marker: datetime,
                             actor: Optional[str], context: Optional[Mapping[str, Any]]) -> CascadeResult:
        counts: CascadeResult = {}
        for child in self.graph.get(parent.name, ()):
            if not child.is_soft_deletable:
                # 不可软删除的子实体及其子树不处理
                continue

            target = self.target(child.entity)
            target, rows = self._children_of(session, child, parents, target.active_clause())
            if not rows:
                continue

            self._mark_deleted(session, target, rows, marker, actor)

            events: List[Optional[str]] = [None] * len(rows)
            if target.audits(AuditAction.DELETE):
                by_parent = {
                    tuple(p[name] for name in child.parent_key): event
                    for p, event in zip(parents, parent_events)
                }
                events = [
                    target.write_event(
                        session, AuditAction.DELETE, row, row, actor, context,
                        parent_event_id=by_parent.get(tuple(row[name] for name in child.foreign_key)),
                    )
                    for row in rows
                ]

            merge_counts(counts, {child.entity: len(rows)})
            merge_counts(counts, self._cascade_soft_delete(
                session, target.entity, rows, events, marker, actor, context,
            ))
        return counts

    # ==================== 恢复 ====================

    def _load_for_restore(self, session: Session, target: WriteTarget, where: Any) -> Optional[Dict[str, Any]]:
        return fetch_single(session, target, target.where_clause(where, active=False))

    def _restore_rows(self, session: Session, target: WriteTarget, rows: Sequence[Mapping[str, Any]],
                      actor: Optional[str], context: Optional[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        restored = []
        for row in rows:
            changes = self.resolver.restore_changes(target.entity, row)
            session.execute(
                update(target.table)
                .where(pk_clause(target.table, target.entity, row))
                .values(**changes)
            )
            after = {**row, **changes}
            if target.audits(AuditAction.UPDATE):
                target.write_event(session, AuditAction.UPDATE, after, {"before": row, "after": after}, actor, context)
            restored.append(after)
        return restored

    def restore(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                context: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """恢复单条记录，不级联

        Returns:
            恢复后的记录；记录不存在时为 None；本来就未删除时原样返回
        """
        target = self._soft_target(entity)
        with transaction_manager.transaction(session):
            row = self._load_for_restore(session, target, where)
            if row is None or self.resolver.is_active_value(row[target.entity.deleted_at_field]):
                return row
            return self._restore_rows(session, target, [row], actor, context)[0]

    def restore_cascade(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                        context: Optional[Mapping[str, Any]] = None) -> RestoreResult:
        """恢复记录及同一次级联删除的后代

        只恢复删除标记与根记录恢复前的标记完全相同的后代；
        被单独删除（标记不同）的后代保持删除状态。
        """
        target = self._soft_target(entity)
        with transaction_manager.transaction(session):
            row = self._load_for_restore(session, target, where)
            if row is None:
                return RestoreResult(record=None, cascade={})

            marker = row[target.entity.deleted_at_field]
            if self.resolver.is_active_value(marker):
                return RestoreResult(record=row, cascade={})

            record = self._restore_rows(session, target, [row], actor, context)[0]
            cascade = self._cascade_restore(session, target.entity, [row], marker, actor, context)

        logger.debug(f"恢复 {target.entity.name}#{pk_key(target.entity, row)}，级联: {cascade}")
        return RestoreResult(record=record, cascade=cascade)

    def _cascade_restore(self, session: Session, parent: Entity, parents: Sequence[Mapping[str, Any]],
                         marker: datetime, actor: Optional[str],
                         context: Optional[Mapping[str, Any]]) -> CascadeResult:
        counts: CascadeResult = {}
        for child in self.graph.get(parent.name, ()):
            if not child.is_soft_deletable:
                continue

            target = self.target(child.entity)
            same_marker = target.table.c[child.deleted_at_field] == marker
            target, rows = self._children_of(session, child, parents, same_marker)
            if not rows:
                continue

            self._restore_rows(session, target, rows, actor, context)
            merge_counts(counts, {child.entity: len(rows)})
            merge_counts(counts, self._cascade_restore(session, target.entity, rows, marker, actor, context))
        return counts

    # ==================== 硬删除 ====================

    def hard_delete(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                    context: Optional[Mapping[str, Any]] = None, subtree: bool = False) -> Dict[str, Any]:
        """物理删除单条记录（已软删除的记录也可以）

        Args:
            subtree: 同时物理删除级联后代（叶子先删）

        Returns:
            删除前的记录
        """
        target = self.target(entity)
        with transaction_manager.transaction(session):
            if not subtree or not has_cascade_children(self.graph, target.entity.name):
                return audited_hard_delete(session, target, where, actor, context)

            row = fetch_single(session, target, target.where_clause(where, active=False))
            if row is None:
                raise Err.not_found(
                    f"{target.entity.name} 记录不存在",
                    entity=target.entity.name,
                    where=repr(where),
                )
            self._hard_delete_subtree(session, target, [row], actor, context)
            return row

    def hard_delete_many(self, session: Session, entity, where: Any, actor: Optional[str] = None,
                         context: Optional[Mapping[str, Any]] = None, subtree: bool = False) -> int:
        """批量物理删除

        Returns:
            根实体删除的行数
        """
        target = self.target(entity)
        with transaction_manager.transaction(session):
            if not subtree or not has_cascade_children(self.graph, target.entity.name):
                return audited_hard_delete_many(session, target, where, actor, context)

            rows = fetch_rows(session, target.table, None, target.where_clause(where, active=False))
            if rows:
                self._hard_delete_subtree(session, target, rows, actor, context)
            return len(rows)

    def _hard_delete_subtree(self, session: Session, root: WriteTarget, rows: List[Dict[str, Any]],
                             actor: Optional[str], context: Optional[Mapping[str, Any]]) -> CascadeResult:
        collected: Dict[str, Dict[tuple, Dict[str, Any]]] = {root.entity.name: {}}
        for row in rows:
            collected[root.entity.name][pk_key(root.entity, row)] = row

        def walk(name: str, parents: Sequence[Mapping[str, Any]]) -> None:
            for child in self.graph.get(name, ()):
                target, found = self._children_of(session, child, parents)
                bucket = collected.setdefault(child.entity, {})
                fresh = [r for r in found if pk_key(target.entity, r) not in bucket]
                for r in fresh:
                    bucket[pk_key(target.entity, r)] = r
                if fresh:
                    walk(child.entity, fresh)

        walk(root.entity.name, rows)

        counts: CascadeResult = {}
        # 叶子先删，根最后
        for name in cascade_order(self.graph, root.entity.name):
            doomed = list(collected.get(name, {}).values())
            if not doomed:
                continue
            target = self.target(name)
            if target.audits(AuditAction.HARD_DELETE):
                for row in doomed:
                    target.write_event(session, AuditAction.HARD_DELETE, row, row, actor, context)
            session.execute(delete(target.table).where(pk_in_clause(target.table, target.entity, doomed)))
            if name != root.entity.name:
                counts[name] = len(doomed)

        logger.debug(f"物理删除 {root.entity.name}: {len(rows)} 行，子树: {counts}")
        return counts
