"""
YCascade - 级联软删除类库

提供级联软删除 / 恢复、唯一约束处理（mangle / sentinel / none）、事务内审计等功能
"""

from .version import __version__, __author__, __description__

# 导出 schema
from .schema import (
    FieldType,
    FieldDescription,
    RelationDescription,
    UniqueDescription,
    EntityDescription,
    SchemaDescription,
    EntityKind,
    AuditAction,
    Entity,
    CascadeChild,
    SchemaBuildResult,
    build_schema,
    describe_models,
    cascade_order,
    soft_deletable_descendants,
)

# 导出唯一约束处理
from .unique import (
    UniqueStrategy,
    ConstraintClass,
    Finding,
    FindingKind,
    UniqueConflictResolver,
    report_findings,
)

# 导出级联执行
from .cascade import (
    CascadeExecutor,
    SoftDeleteResult,
    SoftDeleteManyResult,
    RestoreResult,
)

# 导出审计
from .audit import (
    AuditTrailWriter,
    merge_audit_context,
)

# 导出读取过滤
from .filtering import (
    FilterMode,
    SoftDeleteRewriter,
    install_read_filter,
)

# 导出客户端
from .client import (
    SoftDeleteClient,
    TransactionClient,
)

# 导出事务
from .transaction import (
    TransactionManager,
    TransactionPropagation,
    transaction_manager,
)

# 导出日志模块
from .log import (
    setup_logger,
    logger,
    get_logger,
)

# 导出配置
from .config import (
    CascadeSettings,
    LoggingSettings,
    ConfigLoader,
    load_yaml_config,
)

# 导出异常
from .exceptions import (
    ErrorCode,
    YCascadeException,
    ResourceNotFoundException,
    ConcurrencyConflictException,
    ValidationException,
    SchemaBuildException,
    Err,
)

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    # schema
    "FieldType",
    "FieldDescription",
    "RelationDescription",
    "UniqueDescription",
    "EntityDescription",
    "SchemaDescription",
    "EntityKind",
    "AuditAction",
    "Entity",
    "CascadeChild",
    "SchemaBuildResult",
    "build_schema",
    "describe_models",
    "cascade_order",
    "soft_deletable_descendants",
    # 唯一约束
    "UniqueStrategy",
    "ConstraintClass",
    "Finding",
    "FindingKind",
    "UniqueConflictResolver",
    "report_findings",
    # 级联
    "CascadeExecutor",
    "SoftDeleteResult",
    "SoftDeleteManyResult",
    "RestoreResult",
    # 审计
    "AuditTrailWriter",
    "merge_audit_context",
    # 读取过滤
    "FilterMode",
    "SoftDeleteRewriter",
    "install_read_filter",
    # 客户端
    "SoftDeleteClient",
    "TransactionClient",
    # 事务
    "TransactionManager",
    "TransactionPropagation",
    "transaction_manager",
    # 日志
    "setup_logger",
    "logger",
    "get_logger",
    # 配置
    "CascadeSettings",
    "LoggingSettings",
    "ConfigLoader",
    "load_yaml_config",
    # 异常
    "ErrorCode",
    "YCascadeException",
    "ResourceNotFoundException",
    "ConcurrencyConflictException",
    "ValidationException",
    "SchemaBuildException",
    "Err",
]
