"""从 SQLAlchemy 声明式模型生成 SchemaDescription

约定:
    - 实体名为模型类名，表为 mapper.local_table
    - 级联: ForeignKey(..., ondelete="CASCADE")，或 relationship(info={"cascade_soft_delete": True})
    - 审计: __table_args__ = {"info": {"audit": True}} 或 {"info": {"audit": ["create", "delete"]}}
    - 审计表: __table_args__ = {"info": {"audit_table": True}}
    - 部分唯一索引: Index(..., unique=True, postgresql_where=...) / sqlite_where=...

使用示例:
    from sqlalchemy import ForeignKey, String
    from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

    class Base(DeclarativeBase):
        pass

    class User(Base):
        __tablename__ = "users"
        id: Mapped[str] = mapped_column(String(36), primary_key=True)
        email: Mapped[str] = mapped_column(String(255), unique=True)
        deleted_at: Mapped[Optional[datetime]]
        posts = relationship("Post", back_populates="author")

    class Post(Base):
        __tablename__ = "posts"
        id: Mapped[str] = mapped_column(String(36), primary_key=True)
        author_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
        deleted_at: Mapped[Optional[datetime]]
        author = relationship("User", back_populates="posts")

    description = describe_models(Base)
"""

from dataclasses import replace
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SAEnum,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    Uuid,
    inspect,
)
from sqlalchemy.orm import Mapper, RelationshipDirection, registry as sa_registry

from .description import (
    EntityDescription,
    FieldDescription,
    FieldType,
    RelationDescription,
    SchemaDescription,
    UniqueDescription,
)


CASCADE_INFO_KEY = "cascade_soft_delete"
AUDIT_INFO_KEY = "audit"
AUDIT_TABLE_INFO_KEY = "audit_table"


def _field_type(column) -> Tuple[FieldType, Optional[str]]:
    col_type = column.type
    # 顺序敏感：Enum 是 String 子类，Float 是 Numeric 子类
    if isinstance(col_type, SAEnum):
        return FieldType.OTHER, None
    if isinstance(col_type, Uuid):
        return FieldType.STRING, "Uuid"
    if isinstance(col_type, String):
        return FieldType.STRING, None
    if isinstance(col_type, DateTime):
        return FieldType.DATETIME, None
    if isinstance(col_type, Boolean):
        return FieldType.BOOLEAN, None
    if isinstance(col_type, Integer):
        return FieldType.INT, None
    if isinstance(col_type, Float):
        return FieldType.FLOAT, None
    if isinstance(col_type, Numeric):
        return FieldType.DECIMAL, None
    if isinstance(col_type, JSON):
        return FieldType.JSON, None
    if isinstance(col_type, LargeBinary):
        return FieldType.BYTES, None
    return FieldType.OTHER, None


def _describe_column(column) -> FieldDescription:
    field_type, native_type = _field_type(column)
    return FieldDescription(
        name=column.name,
        type=field_type,
        nullable=bool(column.nullable),
        is_id=bool(column.primary_key),
        is_unique=bool(column.unique),
        has_default=column.default is not None or column.server_default is not None,
        max_length=getattr(column.type, "length", None) if field_type == FieldType.STRING else None,
        native_type=native_type,
    )


def _is_column_flag(columns) -> bool:
    """单列 unique=True 生成的约束/索引已经由字段上的 is_unique 表示"""
    return len(columns) == 1 and bool(columns[0].unique)


def _describe_uniques(table: Table) -> List[UniqueDescription]:
    uniques = []
    for constraint in table.constraints:
        if not isinstance(constraint, UniqueConstraint):
            continue
        columns = list(constraint.columns)
        if _is_column_flag(columns):
            continue
        uniques.append(UniqueDescription(
            fields=tuple(c.name for c in columns),
            name=constraint.name if isinstance(constraint.name, str) else None,
        ))

    for index in sorted(table.indexes, key=lambda i: i.name or ""):
        if not index.unique:
            continue
        columns = list(index.columns)
        if not columns or _is_column_flag(columns):
            continue
        kwargs = index.dialect_kwargs
        partial = kwargs.get("postgresql_where") is not None or kwargs.get("sqlite_where") is not None
        uniques.append(UniqueDescription(
            fields=tuple(c.name for c in columns),
            name=index.name if isinstance(index.name, str) else None,
            partial=partial,
        ))
    return uniques


def _cascade_marked(info) -> bool:
    """relationship.info 中的级联标记，接受 True 或 "delete" / "cascade"（含同值枚举）"""
    value = (info or {}).get(CASCADE_INFO_KEY)
    if value is None or value is False:
        return False
    if value is True:
        return True
    return str(getattr(value, "value", value)).lower() in ("delete", "cascade")


def _describe_relation(rel) -> Optional[RelationDescription]:
    if rel.direction == RelationshipDirection.MANYTOMANY:
        return None

    target = rel.mapper.class_.__name__
    pairs = list(rel.local_remote_pairs)

    if rel.direction == RelationshipDirection.MANYTOONE:
        fk_columns = [local for local, _ in pairs]
        foreign_key = tuple(c.name for c in fk_columns)
        references = tuple(remote.name for _, remote in pairs)
        cascade = _cascade_marked(rel.info) or any(
            (fk.ondelete or "").upper() == "CASCADE"
            for column in fk_columns
            for fk in column.foreign_keys
        )
        fk_table = fk_columns[0].table.name if fk_columns else ""
    else:
        fk_columns = [remote for _, remote in pairs]
        foreign_key, references, cascade = (), (), False
        fk_table = fk_columns[0].table.name if fk_columns else ""

    return RelationDescription(
        name=rel.key,
        target=target,
        foreign_key=foreign_key,
        references=references,
        on_delete_cascade=cascade,
        is_list=bool(rel.uselist),
        relation_name=f"{fk_table}:{','.join(c.name for c in fk_columns)}",
    )


def describe_mapper(mapper: Mapper) -> Tuple[EntityDescription, Table]:
    """描述单个映射类"""
    table = mapper.local_table
    info = table.info or {}

    fields = tuple(_describe_column(column) for column in table.columns)
    relations = tuple(
        r for r in (_describe_relation(rel) for rel in mapper.relationships)
        if r is not None
    )
    primary_key = tuple(c.name for c in table.primary_key.columns)

    desc = EntityDescription(
        name=mapper.class_.__name__,
        fields=fields,
        relations=relations,
        primary_key=primary_key,
        unique_constraints=tuple(_describe_uniques(table)),
        audit=info.get(AUDIT_INFO_KEY),
        audit_table=bool(info.get(AUDIT_TABLE_INFO_KEY)),
        table_name=table.name,
    )
    return desc, table


def _mappers(source) -> Iterable[Mapper]:
    if isinstance(source, sa_registry):
        return source.mappers
    reg = getattr(source, "registry", None)
    if isinstance(reg, sa_registry):
        return reg.mappers
    return [inspect(cls) for cls in source]


def describe_models(source) -> SchemaDescription:
    """把声明式模型转换为 SchemaDescription

    Args:
        source: 声明式基类、registry，或模型类列表

    Returns:
        SchemaDescription（tables 中是模型自身的 Table）
    """
    mappers = sorted(_mappers(source), key=lambda m: m.class_.__name__)

    # 级联标记也可以写在集合端（父实体的一对多关系）上
    marked = set()
    for mapper in mappers:
        for rel in mapper.relationships:
            if rel.direction == RelationshipDirection.ONETOMANY and _cascade_marked(rel.info):
                marked.add(_describe_relation(rel).relation_name)

    description = SchemaDescription()
    for mapper in mappers:
        desc, table = describe_mapper(mapper)
        if marked:
            desc = replace(desc, relations=tuple(
                replace(r, on_delete_cascade=True)
                if r.is_owning and r.relation_name in marked else r
                for r in desc.relations
            ))
        description.entities.append(desc)
        description.tables[desc.name] = table
    return description
