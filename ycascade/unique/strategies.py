"""唯一约束分类与值变换

- 分类：每个唯一约束在构建期被标记为 MANGLEABLE / NEEDS_PARTIAL_INDEX /
  COMPOUND_WITH_MARKER / PARTIAL_INDEX
- 变换：mangle 策略下的后缀追加与去除
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Tuple

from ycascade.config import UniqueStrategy
from ycascade.exceptions import Err, ErrorCode
from ycascade.schema.entities import Entity, UniqueConstraintInfo, is_mangleable


MANGLE_SEPARATOR = "__deleted_"


class ConstraintClass(str, Enum):
    """唯一约束分类"""
    MANGLEABLE = "mangleable"
    """至少包含一个可改写的字符串字段"""

    NEEDS_PARTIAL_INDEX = "needs_partial_index"
    """没有可改写字段（数值、原生 Uuid 等），需要手工建部分唯一索引"""

    COMPOUND_WITH_MARKER = "compound_with_marker"
    """复合约束包含删除字段，哨兵策略下安全"""

    PARTIAL_INDEX = "partial_index"
    """已声明为部分唯一索引，已受保护"""


@dataclass(frozen=True)
class ConstraintClassification:
    """单个唯一约束的分类结果

    Attributes:
        constraint: 约束信息
        classification: 分类
        mangle_fields: 约束中可改写的字段
    """
    constraint: UniqueConstraintInfo
    classification: ConstraintClass
    mangle_fields: Tuple[str, ...] = ()


def classify_constraints(entity: Entity) -> Tuple[ConstraintClassification, ...]:
    """对实体的所有唯一约束分类"""
    results = []
    for constraint in entity.unique_constraints:
        mangle_fields = tuple(
            name for name in constraint.fields
            if name not in entity.key_fields and is_mangleable(entity.get_field(name))
        )
        if constraint.partial:
            kind = ConstraintClass.PARTIAL_INDEX
        elif constraint.includes_deleted_field:
            kind = ConstraintClass.COMPOUND_WITH_MARKER
        elif mangle_fields:
            kind = ConstraintClass.MANGLEABLE
        else:
            kind = ConstraintClass.NEEDS_PARTIAL_INDEX
        results.append(ConstraintClassification(constraint, kind, mangle_fields))
    return tuple(results)


# ==================== mangle ====================

def mangle_suffix(entity: Entity, row: Mapping[str, Any]) -> str:
    """计算 `__deleted_{pk}` 后缀

    复合主键：字段名按字母排序后取值，以 "_" 连接。
    """
    names = sorted(entity.primary_key) if entity.is_composite_key else entity.primary_key
    return MANGLE_SEPARATOR + "_".join(str(row[name]) for name in names)


def is_mangled(value: Optional[str], suffix: str) -> bool:
    """是否已经带有本行的后缀（只匹配结尾）"""
    return isinstance(value, str) and value.endswith(suffix)


def mangle_value(value: Optional[str], suffix: str, max_length: Optional[int] = None,
                 entity: str = None, field: str = None) -> Optional[str]:
    """给值追加后缀

    None 原样返回；已带后缀时不重复追加；超过 max_length 时在写入前抛出 ValidationException。
    """
    if value is None or is_mangled(value, suffix):
        return value
    mangled = f"{value}{suffix}"
    if max_length is not None and len(mangled) > max_length:
        raise Err.invalid(
            f"字段 {entity}.{field} 改写后长度 {len(mangled)} 超过最大长度 {max_length}",
            code=ErrorCode.VALUE_TOO_LONG,
            entity=entity,
            field=field,
            max_length=max_length,
        )
    return mangled


def unmangle_value(value: Optional[str], suffix: str) -> Optional[str]:
    """去掉后缀，没有后缀时原样返回"""
    if not is_mangled(value, suffix):
        return value
    return value[: -len(suffix)]


def compute_mangle_changes(entity: Entity, row: Mapping[str, Any]) -> dict:
    """计算软删除时需要写入的改写值（只包含真正变化的字段）"""
    suffix = mangle_suffix(entity, row)
    changes = {}
    for name in entity.mangle_fields:
        original = row.get(name)
        f = entity.get_field(name)
        mangled = mangle_value(original, suffix, f.max_length if f else None, entity.name, name)
        if mangled != original:
            changes[name] = mangled
    return changes


def compute_unmangle_changes(entity: Entity, row: Mapping[str, Any]) -> dict:
    """计算恢复时需要写回的原始值"""
    suffix = mangle_suffix(entity, row)
    changes = {}
    for name in entity.mangle_fields:
        original = row.get(name)
        restored = unmangle_value(original, suffix)
        if restored != original:
            changes[name] = restored
    return changes


def strategy_transforms_rows(strategy: UniqueStrategy, entity: Entity) -> bool:
    """该策略下软删除是否需要逐行变换值"""
    return strategy == UniqueStrategy.MANGLE and len(entity.mangle_fields) > 0
