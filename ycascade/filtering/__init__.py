"""读取过滤模块

使用示例:
    from ycascade.filtering import SoftDeleteRewriter, install_read_filter

    install_read_filter(SessionLocal, SoftDeleteRewriter(schema))
"""

from .rewriter import (
    INCLUDE_DELETED_OPTION,
    ONLY_DELETED_OPTION,
    FilterMode,
    SoftDeleteRewriter,
    mode_from_options,
)
from .hook import install_read_filter, remove_read_filter

__all__ = [
    "INCLUDE_DELETED_OPTION",
    "ONLY_DELETED_OPTION",
    "FilterMode",
    "SoftDeleteRewriter",
    "mode_from_options",
    "install_read_filter",
    "remove_read_filter",
]
