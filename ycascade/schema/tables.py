"""运行时建表

SchemaDescription 中没有提供 Table 的实体，按描述直接构造 SQLAlchemy Table。
"""

from dataclasses import replace
from typing import Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    Uuid,
    func,
)

from .description import EntityDescription, FieldDescription, FieldType, SchemaDescription
from .entities import Entity


_TYPE_MAP = {
    FieldType.DATETIME: DateTime,
    FieldType.INT: Integer,
    FieldType.FLOAT: Float,
    FieldType.DECIMAL: Numeric,
    FieldType.BOOLEAN: Boolean,
    FieldType.JSON: JSON,
    FieldType.BYTES: LargeBinary,
}


def _column_type(f: FieldDescription):
    if f.type == FieldType.STRING:
        if (f.native_type or "").lower() == "uuid":
            return Uuid(as_uuid=False)
        return String(f.max_length) if f.max_length else String()
    return _TYPE_MAP.get(f.type, String)()


def _build_column(f: FieldDescription, entity: Entity, sentinel_default=None) -> Column:
    kwargs = {
        "primary_key": f.name in entity.primary_key,
        "nullable": f.nullable and f.name not in entity.primary_key,
    }
    if f.has_default and f.type == FieldType.DATETIME:
        if f.name == entity.deleted_at_field:
            if sentinel_default is not None:
                kwargs["default"] = sentinel_default
        else:
            kwargs["server_default"] = func.current_timestamp()
    if f.is_unique and not f.is_id:
        kwargs["unique"] = True
    return Column(f.name, _column_type(f), **kwargs)


def build_table(
    desc: EntityDescription,
    entity: Entity,
    metadata: MetaData,
    sentinel_default=None,
) -> Table:
    """按实体描述构造 Table

    Args:
        desc: 实体描述
        entity: 已解析的实体（用于主键、删除字段）
        metadata: 目标 MetaData
        sentinel_default: 哨兵策略下删除字段的默认值
    """
    columns = [
        _build_column(f, entity, sentinel_default)
        for f in desc.fields
        if not f.is_relation
    ]
    constraints = []
    for unique in desc.unique_constraints:
        if unique.partial:
            # 部分索引依赖方言，由迁移工具负责
            continue
        constraints.append(UniqueConstraint(*unique.fields, name=unique.name))

    for relation in desc.relations:
        if not relation.is_owning:
            continue
        references = relation.references or ()
        if not references:
            continue
        target_table = relation.target
        constraints.append(ForeignKeyConstraint(
            list(relation.foreign_key),
            [f"{target_table}.{name}" for name in references],
            ondelete="CASCADE" if relation.on_delete_cascade else None,
        ))

    return Table(entity.table_name, metadata, *columns, *constraints)


def build_tables(
    description: SchemaDescription,
    entities: Dict[str, Entity],
    metadata: Optional[MetaData] = None,
    sentinel_default=None,
) -> Dict[str, Table]:
    """补齐描述中缺失的 Table

    已提供的 Table 原样保留。外键引用目标实体时使用目标实体的表名。
    """
    metadata = metadata if metadata is not None else MetaData()
    tables: Dict[str, Table] = dict(description.tables)

    # 外键引用按表名书写，先把实体名映射为表名
    table_names = {name: entity.table_name for name, entity in entities.items()}

    for desc in description.entities:
        if desc.name in tables:
            continue
        entity = entities[desc.name]
        relations = []
        for relation in desc.relations:
            target = entities.get(relation.target)
            references = relation.references or (target.primary_key if target else ())
            relations.append(replace(
                relation,
                target=table_names.get(relation.target, relation.target),
                references=references,
            ))
        normalized = replace(desc, relations=tuple(relations))
        tables[desc.name] = build_table(normalized, entity, metadata, sentinel_default)

    return tables
