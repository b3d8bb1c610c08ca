"""Schema 构建

把 SchemaDescription 解析为执行期使用的全部元数据：
实体、级联图、唯一约束分类、诊断、审计表配置、运行时 Table 与实体名枚举。

使用示例:
    from ycascade.schema import build_schema, describe_models
    from ycascade.config import CascadeSettings

    result = build_schema(describe_models(Base), CascadeSettings(unique_strategy="mangle"))

    result.entity("User").deleted_at_field     # "deleted_at"
    result.cascade_graph["User"]               # (CascadeChild(entity="Post", ...),)
    result.entity_names.User                   # 封闭的实体名枚举
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple, Type, Union

from sqlalchemy import MetaData, Table

from ycascade.config import CascadeSettings, UniqueStrategy
from ycascade.exceptions import Err, ErrorCode
from ycascade.log import get_logger

from .cascade_graph import CascadeGraph, build_cascade_graph, find_cycle
from .description import SchemaDescription
from .entities import Entity, EntityKind, parse_entity, referenced_key_fields
from .tables import build_tables

logger = get_logger("ycascade.schema")


# 审计表必须具备的字段
AUDIT_REQUIRED_FIELDS = ("entity_type", "entity_id", "action", "actor_id", "event_data")
AUDIT_CREATED_AT_FIELD = "created_at"
AUDIT_PARENT_EVENT_FIELD = "parent_event_id"


@dataclass(frozen=True)
class AuditTableConfig:
    """审计表配置

    Attributes:
        entity: 审计表实体名
        primary_key: 审计表主键
        has_parent_event_id: 是否有 parent_event_id 列
        context_columns: 允许由审计上下文写入的额外列（白名单）
    """
    entity: str
    primary_key: Tuple[str, ...]
    has_parent_event_id: bool
    context_columns: Tuple[str, ...]


@dataclass
class SchemaBuildResult:
    """build_schema 的结果

    Attributes:
        entities: 实体名 -> Entity
        cascade_graph: 级联图
        findings: 唯一约束诊断（不会自动输出）
        audit_table: 审计表配置，没有审计表时为 None
        entity_names: 实体名枚举
        tables: 实体名 -> Table
        settings: 构建时使用的配置
    """
    entities: Mapping[str, Entity]
    cascade_graph: CascadeGraph
    findings: List = field(default_factory=list)
    audit_table: Optional[AuditTableConfig] = None
    entity_names: Optional[Type[Enum]] = None
    tables: Dict[str, Table] = field(default_factory=dict)
    settings: CascadeSettings = field(default_factory=CascadeSettings)

    def entity(self, name: Union[str, Enum]) -> Entity:
        """按名称（或实体名枚举成员）获取实体"""
        key = name.value if isinstance(name, Enum) else name
        try:
            return self.entities[key]
        except KeyError:
            raise KeyError(
                f"未知实体 '{key}'，可用实体: {', '.join(sorted(self.entities))}"
            ) from None

    def table(self, name: Union[str, Enum]) -> Table:
        return self.tables[self.entity(name).name]

    @property
    def metadata(self) -> Optional[MetaData]:
        for table in self.tables.values():
            return table.metadata
        return None


def _validate_audit_table(entity: Entity) -> AuditTableConfig:
    missing = [name for name in AUDIT_REQUIRED_FIELDS if not entity.has_field(name)]
    created_at = entity.get_field(AUDIT_CREATED_AT_FIELD)
    if created_at is None or not created_at.has_default:
        missing.append(f"{AUDIT_CREATED_AT_FIELD}（需要数据库默认值）")
    if missing:
        raise Err.schema(
            f"审计表 {entity.name} 缺少字段: {', '.join(missing)}",
            code=ErrorCode.AUDIT_TABLE_INVALID,
            details=missing,
            entity=entity.name,
        )

    reserved = set(AUDIT_REQUIRED_FIELDS) | {AUDIT_CREATED_AT_FIELD, AUDIT_PARENT_EVENT_FIELD}
    reserved.update(entity.primary_key)
    context_columns = tuple(
        f.name for f in entity.fields
        if f.name not in reserved and not f.is_relation
    )
    return AuditTableConfig(
        entity=entity.name,
        primary_key=entity.primary_key,
        has_parent_event_id=entity.has_field(AUDIT_PARENT_EVENT_FIELD),
        context_columns=context_columns,
    )


def build_schema(
    description: SchemaDescription,
    settings: Optional[CascadeSettings] = None,
    metadata: Optional[MetaData] = None,
) -> SchemaBuildResult:
    """构建 schema 元数据

    Args:
        description: schema 描述
        settings: 配置，默认使用 CascadeSettings()（读取 YCASCADE_ 环境变量）
        metadata: 自动建表时使用的 MetaData

    Returns:
        SchemaBuildResult

    Raises:
        SchemaBuildException: 主键缺失、审计表配置错误、级联环，
            以及严格模式下存在唯一约束诊断
    """
    # 避免与 unique 包之间的循环导入
    from ycascade.unique import classify_constraints, collect_findings

    settings = settings or CascadeSettings()

    referenced = referenced_key_fields(description.entities)
    entities: Dict[str, Entity] = {}
    for desc in description.entities:
        if desc.name in entities:
            raise Err.schema(f"实体重复声明: {desc.name}", entity=desc.name)
        entity = parse_entity(
            desc,
            settings.deleted_at_field,
            settings.deleted_by_field,
            referenced.get(desc.name, ()),
        )
        entities[desc.name] = replace(entity, classifications=classify_constraints(entity))

    # 审计表
    audit_tables = [e for e in entities.values() if e.kind == EntityKind.AUDIT_TABLE]
    if len(audit_tables) > 1:
        names = [e.name for e in audit_tables]
        raise Err.schema(
            f"只能声明一个审计表，当前声明了 {len(names)} 个: {', '.join(names)}",
            code=ErrorCode.AUDIT_TABLE_INVALID,
            details=names,
        )
    audit_config = _validate_audit_table(audit_tables[0]) if audit_tables else None

    auditable = [e.name for e in entities.values() if e.is_auditable]
    if auditable and audit_config is None:
        raise Err.schema(
            f"实体 {', '.join(auditable)} 声明了审计，但 schema 中没有审计表",
            code=ErrorCode.AUDIT_TABLE_INVALID,
            details=auditable,
        )

    # 级联图（环在构建期直接拒绝）
    graph = build_cascade_graph(entities, enabled=True)
    cycle = find_cycle(graph)
    if cycle is not None:
        path = " -> ".join(cycle)
        raise Err.schema(
            f"级联关系存在环: {path}",
            code=ErrorCode.CASCADE_CYCLE,
            details=list(cycle),
        )
    if not settings.cascade_enabled:
        graph = build_cascade_graph(entities, enabled=False)

    # 唯一约束诊断
    findings = collect_findings(
        entities.values(),
        UniqueStrategy(settings.unique_strategy),
        settings.sentinel_value,
        {name: e.classifications for name, e in entities.items()},
    )
    if findings and settings.strict_validation:
        raise Err.schema(
            f"严格模式下发现 {len(findings)} 个未处理的唯一约束问题",
            code=ErrorCode.UNIQUE_CONSTRAINT_UNPROTECTED,
            details=[f.message for f in findings],
        )

    sentinel_default = (
        settings.sentinel_value
        if settings.unique_strategy == UniqueStrategy.SENTINEL
        else None
    )
    tables = build_tables(description, entities, metadata, sentinel_default)

    entity_names = Enum("EntityName", [(name, name) for name in entities], type=str)

    logger.debug(
        f"schema 构建完成: {len(entities)} 个实体, "
        f"{sum(len(children) for children in graph.values())} 条级联边, "
        f"{len(findings)} 条诊断"
    )

    return SchemaBuildResult(
        entities=entities,
        cascade_graph=graph,
        findings=findings,
        audit_table=audit_config,
        entity_names=entity_names,
        tables=tables,
        settings=settings,
    )
