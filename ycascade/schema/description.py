"""Schema 描述

与存储无关的实体描述，是 build_schema 的输入。
可以手工构造，也可以通过 ycascade.schema.introspect.describe_models 从 SQLAlchemy 模型得到。

使用示例:
    from ycascade.schema import (
        FieldDescription, RelationDescription, EntityDescription, SchemaDescription,
    )

    user = EntityDescription(
        name="User",
        fields=[
            FieldDescription("id", "String", nullable=False, is_id=True),
            FieldDescription("email", "String", nullable=False, is_unique=True, max_length=255),
            FieldDescription("deleted_at", "DateTime"),
            FieldDescription("deleted_by", "String"),
        ],
        relations=[RelationDescription("posts", "Post", is_list=True)],
    )
    post = EntityDescription(
        name="Post",
        fields=[
            FieldDescription("id", "String", nullable=False, is_id=True),
            FieldDescription("author_id", "String", nullable=False),
            FieldDescription("deleted_at", "DateTime"),
        ],
        relations=[
            RelationDescription(
                "author", "User",
                foreign_key=["author_id"], references=["id"], on_delete_cascade=True,
            ),
        ],
    )
    description = SchemaDescription(entities=[user, post])
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import Table


class FieldType(str, Enum):
    """字段的逻辑类型"""
    STRING = "String"
    DATETIME = "DateTime"
    INT = "Int"
    FLOAT = "Float"
    DECIMAL = "Decimal"
    BOOLEAN = "Boolean"
    JSON = "Json"
    BYTES = "Bytes"
    OTHER = "Other"


def _as_tuple(value: Optional[Sequence[str]]) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@dataclass(frozen=True)
class FieldDescription:
    """字段描述

    Attributes:
        name: 字段名（同时也是列名）
        type: 逻辑类型，接受 FieldType 或其字符串值
        nullable: 是否可空
        is_id: 是否为单字段主键
        is_unique: 是否单独唯一（Column(unique=True)）
        has_default: 是否有默认值（Python 默认值或数据库默认值）
        max_length: 字符串最大长度，None 表示不限制
        native_type: 存储层原生类型，例如 "Uuid"
        is_relation: 是否为关系字段（关系字段不参与唯一约束）
    """
    name: str
    type: FieldType = FieldType.STRING
    nullable: bool = True
    is_id: bool = False
    is_unique: bool = False
    has_default: bool = False
    max_length: Optional[int] = None
    native_type: Optional[str] = None
    is_relation: bool = False

    def __post_init__(self):
        if not isinstance(self.type, FieldType):
            try:
                object.__setattr__(self, "type", FieldType(self.type))
            except ValueError:
                object.__setattr__(self, "type", FieldType.OTHER)


@dataclass(frozen=True)
class RelationDescription:
    """关系描述

    Attributes:
        name: 关系名（用于 include）
        target: 目标实体名
        foreign_key: 本实体上的外键字段；列表端 / 非拥有端为空
        references: 外键引用的目标字段；为空时使用目标实体主键
        on_delete_cascade: 是否级联（ON DELETE CASCADE）
        is_list: 是否为集合端（一对多中的"一"）
        relation_name: 关系配对名，两端相同时用于相互定位
    """
    name: str
    target: str
    foreign_key: Tuple[str, ...] = ()
    references: Tuple[str, ...] = ()
    on_delete_cascade: bool = False
    is_list: bool = False
    relation_name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "foreign_key", _as_tuple(self.foreign_key))
        object.__setattr__(self, "references", _as_tuple(self.references))

    @property
    def is_owning(self) -> bool:
        """是否为持有外键的一端"""
        return not self.is_list and len(self.foreign_key) > 0


@dataclass(frozen=True)
class UniqueDescription:
    """唯一约束描述

    Attributes:
        fields: 约束字段（按声明顺序）
        name: 约束/索引名
        partial: 是否为带过滤条件的部分唯一索引（WHERE deleted_at IS NULL）
    """
    fields: Tuple[str, ...]
    name: Optional[str] = None
    partial: bool = False

    def __post_init__(self):
        object.__setattr__(self, "fields", _as_tuple(self.fields))


@dataclass(frozen=True)
class EntityDescription:
    """实体描述

    Attributes:
        name: 实体名
        fields: 字段列表（有序）
        relations: 关系列表
        primary_key: 显式声明的主键字段（复合主键按声明顺序）
        unique_constraints: 复合唯一约束与部分唯一索引
        audit: None 表示不审计；True 表示审计全部动作；列表表示审计指定动作
        audit_table: 是否为审计事件表
        table_name: 表名，默认与实体名相同
    """
    name: str
    fields: Tuple[FieldDescription, ...] = ()
    relations: Tuple[RelationDescription, ...] = ()
    primary_key: Tuple[str, ...] = ()
    unique_constraints: Tuple[UniqueDescription, ...] = ()
    audit: Optional[object] = None
    audit_table: bool = False
    table_name: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))
        object.__setattr__(self, "relations", tuple(self.relations))
        object.__setattr__(self, "primary_key", _as_tuple(self.primary_key))
        object.__setattr__(self, "unique_constraints", tuple(self.unique_constraints))

    def get_field(self, name: str) -> Optional[FieldDescription]:
        for f in self.fields:
            if f.name == name:
                return f
        return None


@dataclass
class SchemaDescription:
    """整个 schema 的描述

    Attributes:
        entities: 实体描述列表
        tables: 实体名 -> SQLAlchemy Table；缺失的实体由 build_schema 自动建表
    """
    entities: List[EntityDescription] = field(default_factory=list)
    tables: Dict[str, Table] = field(default_factory=dict)

    def get_entity(self, name: str) -> Optional[EntityDescription]:
        for entity in self.entities:
            if entity.name == name:
                return entity
        return None
