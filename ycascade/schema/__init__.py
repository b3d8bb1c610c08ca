"""Schema 模块

把实体描述解析为执行期元数据：软删除 / 审计能力、唯一约束、级联图。

使用示例:
    from ycascade.schema import build_schema, describe_models

    result = build_schema(describe_models(Base))
    result.cascade_graph["User"]
"""

from .description import (
    FieldType,
    FieldDescription,
    RelationDescription,
    UniqueDescription,
    EntityDescription,
    SchemaDescription,
)
from .entities import (
    DELETED_AT_FIELD_NAMES,
    DELETED_BY_FIELD_NAMES,
    EntityKind,
    AuditAction,
    UniqueConstraintInfo,
    CascadeChild,
    Entity,
    detect_deleted_at_field,
    detect_deleted_by_field,
    extract_primary_key,
    parse_audit_actions,
    parse_entity,
)
from .cascade_graph import (
    CascadeGraph,
    build_cascade_graph,
    cascade_order,
    direct_children,
    has_cascade_children,
    soft_deletable_descendants,
    find_cycle,
)
from .builder import (
    AUDIT_REQUIRED_FIELDS,
    AuditTableConfig,
    SchemaBuildResult,
    build_schema,
)
from .introspect import describe_models, describe_mapper

__all__ = [
    "FieldType",
    "FieldDescription",
    "RelationDescription",
    "UniqueDescription",
    "EntityDescription",
    "SchemaDescription",
    "DELETED_AT_FIELD_NAMES",
    "DELETED_BY_FIELD_NAMES",
    "EntityKind",
    "AuditAction",
    "UniqueConstraintInfo",
    "CascadeChild",
    "Entity",
    "detect_deleted_at_field",
    "detect_deleted_by_field",
    "extract_primary_key",
    "parse_audit_actions",
    "parse_entity",
    "CascadeGraph",
    "build_cascade_graph",
    "cascade_order",
    "direct_children",
    "has_cascade_children",
    "soft_deletable_descendants",
    "find_cycle",
    "AUDIT_REQUIRED_FIELDS",
    "AuditTableConfig",
    "SchemaBuildResult",
    "build_schema",
    "describe_models",
    "describe_mapper",
]
