"""唯一约束冲突解析器

根据策略决定：
- "未删除"在存储上的表示（NULL 或哨兵常量）
- 软删除 / 恢复时需要写入的字段值
- 创建时需要注入的默认值
- 点查条件的复合键改写

执行器只读取构建期计算好的分类，不在每行上重新推导。
"""

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import Column

from ycascade.config import CascadeSettings, UniqueStrategy
from ycascade.schema.entities import Entity

from .strategies import (
    ConstraintClass,
    compute_mangle_changes,
    compute_unmangle_changes,
    strategy_transforms_rows,
)


class UniqueConflictResolver:
    """唯一约束冲突解析器

    使用示例:
        resolver = UniqueConflictResolver(CascadeSettings(unique_strategy="mangle"))

        changes = resolver.deletion_changes(user_entity, row, marker, actor="admin")
        # {"deleted_at": marker, "deleted_by": "admin", "email": "a@x.com__deleted_u1"}
    """

    def __init__(self, settings: Optional[CascadeSettings] = None):
        self.settings = settings or CascadeSettings()

    @property
    def strategy(self) -> UniqueStrategy:
        return self.settings.unique_strategy

    @property
    def sentinel_value(self) -> datetime:
        return self.settings.sentinel_value

    @property
    def active_value(self) -> Optional[datetime]:
        """未删除时删除字段的值"""
        if self.strategy == UniqueStrategy.SENTINEL:
            return self.sentinel_value
        return None

    # ==================== 谓词 ====================

    def active_predicate(self, column: Column):
        """未删除谓词"""
        if self.strategy == UniqueStrategy.SENTINEL:
            return column == self.sentinel_value
        return column.is_(None)

    def deleted_predicate(self, column: Column):
        """已删除谓词"""
        if self.strategy == UniqueStrategy.SENTINEL:
            return column != self.sentinel_value
        return column.is_not(None)

    def is_active_value(self, value: Any) -> bool:
        if self.strategy == UniqueStrategy.SENTINEL:
            return value == self.sentinel_value
        return value is None

    # ==================== 值变换 ====================

    def needs_row_transform(self, entity: Entity) -> bool:
        """软删除是否需要逐行计算字段值"""
        return strategy_transforms_rows(self.strategy, entity)

    def deletion_changes(
        self,
        entity: Entity,
        row: Mapping[str, Any],
        marker: datetime,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """软删除一行需要写入的全部字段"""
        changes: Dict[str, Any] = {entity.deleted_at_field: marker}
        if entity.deleted_by_field is not None and actor is not None:
            changes[entity.deleted_by_field] = actor
        if self.needs_row_transform(entity):
            changes.update(compute_mangle_changes(entity, row))
        return changes

    def bulk_deletion_changes(
        self,
        entity: Entity,
        marker: datetime,
        actor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """不需要逐行变换时，所有行共用的字段值"""
        changes: Dict[str, Any] = {entity.deleted_at_field: marker}
        if entity.deleted_by_field is not None and actor is not None:
            changes[entity.deleted_by_field] = actor
        return changes

    def restore_changes(self, entity: Entity, row: Mapping[str, Any]) -> Dict[str, Any]:
        """恢复一行需要写入的字段

        mangle 策略下同时去掉唯一字段上的后缀。
        """
        changes: Dict[str, Any] = {entity.deleted_at_field: self.active_value}
        if entity.deleted_by_field is not None:
            changes[entity.deleted_by_field] = None
        if self.strategy == UniqueStrategy.MANGLE and entity.mangle_fields:
            changes.update(compute_unmangle_changes(entity, row))
        return changes

    def prepare_create(self, entity: Entity, data: Mapping[str, Any]) -> Dict[str, Any]:
        """创建前注入默认值

        哨兵策略下，缺省删除字段的数据自动写入哨兵常量。
        """
        prepared = dict(data)
        if (
            self.strategy == UniqueStrategy.SENTINEL
            and entity.is_soft_deletable
            and prepared.get(entity.deleted_at_field) is None
        ):
            prepared[entity.deleted_at_field] = self.sentinel_value
        return prepared

    # ==================== 条件改写 ====================

    def flatten_compound_keys(self, entity: Entity, where: Mapping[str, Any]) -> Dict[str, Any]:
        """复合键名形式 {"email_deleted_at": {"email": "a@x.com"}} 展开为字段条件"""
        flattened = dict(where)
        for item in entity.classifications:
            name = item.constraint.compound_key_name
            if name and isinstance(flattened.get(name), Mapping) and not entity.has_field(name):
                flattened.update(flattened.pop(name))
        return flattened

    def rewrite_unique_where(self, entity: Entity, where: Mapping[str, Any]) -> Dict[str, Any]:
        """把点查条件改写成包含删除字段的复合键形式

        - 复合键名形式展开为字段条件
        - 哨兵策略下，条件恰好覆盖某个 (fields..., deleted_at) 约束的字段时，补上哨兵常量
        """
        if not entity.is_soft_deletable:
            return dict(where)
        rewritten = self.flatten_compound_keys(entity, where)

        if self.strategy != UniqueStrategy.SENTINEL:
            return rewritten
        if entity.deleted_at_field in rewritten:
            return rewritten

        plain_keys = {
            key for key, value in rewritten.items()
            if entity.has_field(key) and not isinstance(value, Mapping)
        }
        for item in entity.classifications:
            if item.classification != ConstraintClass.COMPOUND_WITH_MARKER:
                continue
            if set(item.constraint.fields) <= plain_keys:
                rewritten[entity.deleted_at_field] = self.sentinel_value
                break
        return rewritten
