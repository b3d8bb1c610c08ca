"""测试辅助工具模块

提供测试专用的模型、schema 描述和辅助函数，避免在核心代码中添加测试专用方法。
"""

from .transaction_helpers import (
    reset_transaction_manager,
    current_nesting_level,
)
from .models import (
    make_blog_models,
    make_email_keyed_models,
    make_client,
    audit_events,
)
from .descriptions import (
    field,
    make_entity,
    blog_description,
    composite_description,
    audit_table_entity,
)

__all__ = [
    # 事务管理器辅助
    "reset_transaction_manager",
    "current_nesting_level",
    # 模型辅助
    "make_blog_models",
    "make_email_keyed_models",
    "make_client",
    "audit_events",
    # 描述辅助
    "field",
    "make_entity",
    "blog_description",
    "composite_description",
    "audit_table_entity",
]
