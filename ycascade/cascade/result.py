"""级联操作结果"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


# 实体名 -> 受影响行数（不含根实体）
CascadeResult = Dict[str, int]


def merge_counts(target: CascadeResult, source: Mapping[str, int]) -> CascadeResult:
    """把 source 的计数累加到 target 上"""
    for name, count in source.items():
        target[name] = target.get(name, 0) + count
    return target


@dataclass
class SoftDeleteResult:
    """单条软删除结果

    Attributes:
        record: 软删除后的目标记录
        cascade: 级联影响的行数
    """
    record: Dict[str, Any]
    cascade: CascadeResult = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"record": self.record, "cascade": dict(self.cascade)}


@dataclass
class SoftDeleteManyResult:
    """批量软删除结果

    Attributes:
        count: 根实体被软删除的行数
        cascade: 级联影响的行数
    """
    count: int
    cascade: CascadeResult = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"count": self.count, "cascade": dict(self.cascade)}


@dataclass
class RestoreResult:
    """级联恢复结果

    Attributes:
        record: 恢复后的记录；记录不存在时为 None，本来就未删除时为原记录
        cascade: 级联恢复的行数
    """
    record: Optional[Dict[str, Any]]
    cascade: CascadeResult = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"record": self.record, "cascade": dict(self.cascade)}
