"""唯一约束处理模块

三种策略：
- mangle: 软删除时给唯一字符串字段追加 `__deleted_{pk}`
- sentinel: 删除字段使用远未来常量表示"未删除"，唯一约束包含删除字段
- none: 不变换，只分类和报告
"""

from ycascade.config import UniqueStrategy

from .strategies import (
    MANGLE_SEPARATOR,
    ConstraintClass,
    ConstraintClassification,
    classify_constraints,
    mangle_suffix,
    is_mangled,
    mangle_value,
    unmangle_value,
    compute_mangle_changes,
    compute_unmangle_changes,
)
from .findings import (
    FindingKind,
    Finding,
    collect_findings,
    partial_index_sql,
    report_findings,
)
from .resolver import UniqueConflictResolver

__all__ = [
    "UniqueStrategy",
    "MANGLE_SEPARATOR",
    "ConstraintClass",
    "ConstraintClassification",
    "classify_constraints",
    "mangle_suffix",
    "is_mangled",
    "mangle_value",
    "unmangle_value",
    "compute_mangle_changes",
    "compute_unmangle_changes",
    "FindingKind",
    "Finding",
    "collect_findings",
    "partial_index_sql",
    "report_findings",
    "UniqueConflictResolver",
]
