"""级联执行模块"""

from .result import (
    CascadeResult,
    merge_counts,
    SoftDeleteResult,
    SoftDeleteManyResult,
    RestoreResult,
)
from .executor import CascadeExecutor

__all__ = [
    "CascadeResult",
    "merge_counts",
    "SoftDeleteResult",
    "SoftDeleteManyResult",
    "RestoreResult",
    "CascadeExecutor",
]
