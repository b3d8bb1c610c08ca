"""实体元数据

build_schema 的产物。构建完成后不可变，执行期只读。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ycascade.exceptions import Err

from .description import EntityDescription, FieldDescription, FieldType, RelationDescription


DELETED_AT_FIELD_NAMES = ("deleted_at", "deletedAt")
DELETED_BY_FIELD_NAMES = ("deleted_by", "deletedBy")


class EntityKind(str, Enum):
    """实体类别

    判定顺序：审计表 → 可软删除 → 仅审计 → 普通
    """
    SOFT_DELETABLE = "soft_deletable"
    AUDIT_ONLY = "audit_only"
    AUDIT_TABLE = "audit_table"
    PLAIN = "plain"


class AuditAction(str, Enum):
    """审计动作"""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    HARD_DELETE = "hard_delete"


# 可在实体上声明的审计动作，hard_delete 由 delete 隐含
DECLARABLE_AUDIT_ACTIONS = (AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE)


@dataclass(frozen=True)
class UniqueConstraintInfo:
    """唯一约束信息

    Attributes:
        fields: 约束字段（已去掉删除字段）
        includes_deleted_field: 原始约束是否包含删除字段
        standalone: 是否为单字段 unique 声明
        compound_key_name: 复合约束名；未命名时为字段名以 "_" 连接
        partial: 是否为部分唯一索引（已受保护）
    """
    fields: Tuple[str, ...]
    includes_deleted_field: bool = False
    standalone: bool = False
    compound_key_name: Optional[str] = None
    partial: bool = False


@dataclass(frozen=True)
class CascadeChild:
    """级联子实体（子 → 父的一条边）

    Attributes:
        entity: 子实体名
        foreign_key: 子实体上的外键字段
        parent_key: 外键引用的父实体字段
        is_soft_deletable: 子实体是否可软删除
        deleted_at_field: 子实体删除字段
        deleted_by_field: 子实体删除人字段
    """
    entity: str
    foreign_key: Tuple[str, ...]
    parent_key: Tuple[str, ...]
    is_soft_deletable: bool
    deleted_at_field: Optional[str] = None
    deleted_by_field: Optional[str] = None


@dataclass(frozen=True)
class Entity:
    """实体元数据

    Attributes:
        name: 实体名
        table_name: 表名
        kind: 实体类别
        primary_key: 主键字段（元组，单主键长度为 1）
        fields: 有序字段
        relations: 关系
        unique_constraints: 唯一约束
        mangle_fields: mangle 策略下需要改写的字段（已排序）
        deleted_at_field: 删除字段
        deleted_by_field: 删除人字段
        audit_actions: 审计动作
        key_fields: 主键、外键与被外键引用的字段（不参与 mangle）
        classifications: 唯一约束分类结果（按策略在构建时计算）
    """
    name: str
    table_name: str
    kind: EntityKind
    primary_key: Tuple[str, ...]
    fields: Tuple[FieldDescription, ...]
    relations: Tuple[RelationDescription, ...] = ()
    unique_constraints: Tuple[UniqueConstraintInfo, ...] = ()
    mangle_fields: Tuple[str, ...] = ()
    deleted_at_field: Optional[str] = None
    deleted_by_field: Optional[str] = None
    audit_actions: Tuple[AuditAction, ...] = ()
    key_fields: Tuple[str, ...] = ()
    classifications: tuple = ()
    _field_map: Dict[str, FieldDescription] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_field_map", {f.name: f for f in self.fields})

    @property
    def is_soft_deletable(self) -> bool:
        return self.kind == EntityKind.SOFT_DELETABLE

    @property
    def is_audit_table(self) -> bool:
        return self.kind == EntityKind.AUDIT_TABLE

    @property
    def is_auditable(self) -> bool:
        return len(self.audit_actions) > 0

    @property
    def is_composite_key(self) -> bool:
        return len(self.primary_key) > 1

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    def audits(self, action) -> bool:
        """判断某个动作是否需要审计

        hard_delete 没有独立开关，跟随 delete。
        """
        action = AuditAction(action)
        if action == AuditAction.HARD_DELETE:
            action = AuditAction.DELETE
        return action in self.audit_actions

    def has_field(self, name: str) -> bool:
        return name in self._field_map

    def get_field(self, name: str) -> Optional[FieldDescription]:
        return self._field_map.get(name)

    def get_relation(self, name: str) -> Optional[RelationDescription]:
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None


# ==================== 解析辅助函数 ====================

def _candidates(override: Optional[str], defaults: Sequence[str]) -> List[str]:
    if override:
        return [override] + [name for name in defaults if name != override]
    return list(defaults)


def _find_field(desc: EntityDescription, candidates: Iterable[str]) -> Optional[FieldDescription]:
    for name in candidates:
        found = desc.get_field(name)
        if found is not None:
            return found
    return None


def detect_deleted_at_field(desc: EntityDescription, override: Optional[str] = None) -> Optional[str]:
    """按约定检测删除字段

    必须是 DateTime，且可空（mangle / none）或有默认值（sentinel）。
    """
    found = _find_field(desc, _candidates(override, DELETED_AT_FIELD_NAMES))
    if found is None or found.type != FieldType.DATETIME:
        return None
    if found.nullable or found.has_default:
        return found.name
    return None


def detect_deleted_by_field(desc: EntityDescription, override: Optional[str] = None) -> Optional[str]:
    """按约定检测删除人字段，必须是可空 String"""
    found = _find_field(desc, _candidates(override, DELETED_BY_FIELD_NAMES))
    if found is None or found.type != FieldType.STRING or not found.nullable:
        return None
    return found.name


def extract_primary_key(desc: EntityDescription) -> Tuple[str, ...]:
    """提取主键：显式声明 → is_id 字段 → 第一个唯一约束"""
    if desc.primary_key:
        return desc.primary_key

    id_fields = tuple(f.name for f in desc.fields if f.is_id)
    if id_fields:
        return id_fields

    for f in desc.fields:
        if f.is_unique and not f.is_relation:
            return (f.name,)
    for constraint in desc.unique_constraints:
        if constraint.fields and not constraint.partial:
            return constraint.fields

    raise Err.schema(
        f'实体 "{desc.name}" 没有可识别的主键（主键字段或唯一约束），软删除操作要求每个实体都有主键',
        entity=desc.name,
    )


def extract_unique_constraints(
    desc: EntityDescription,
    deleted_at_field: Optional[str],
) -> Tuple[UniqueConstraintInfo, ...]:
    """提取唯一约束

    - 单字段 unique：跳过删除字段本身和关系字段
    - 复合约束：去掉删除字段并标记 includes_deleted_field；只剩删除字段的约束丢弃
    """
    constraints: List[UniqueConstraintInfo] = []

    for f in desc.fields:
        if not f.is_unique or f.is_relation or f.is_id:
            continue
        if deleted_at_field is not None and f.name == deleted_at_field:
            continue
        constraints.append(UniqueConstraintInfo(fields=(f.name,), standalone=True))

    for unique in desc.unique_constraints:
        has_deleted = deleted_at_field is not None and deleted_at_field in unique.fields
        remaining = tuple(name for name in unique.fields if name != deleted_at_field)
        if not remaining:
            continue
        constraints.append(UniqueConstraintInfo(
            fields=remaining,
            includes_deleted_field=has_deleted,
            standalone=False,
            compound_key_name=unique.name or "_".join(unique.fields),
            partial=unique.partial,
        ))

    return tuple(constraints)


def is_mangleable(f: Optional[FieldDescription]) -> bool:
    """字符串字段，且不是原生 Uuid 存储"""
    if f is None:
        return False
    return f.type == FieldType.STRING and (f.native_type or "").lower() != "uuid"


def key_fields(
    desc: EntityDescription,
    primary_key: Sequence[str],
    referenced: Sequence[str] = (),
) -> Tuple[str, ...]:
    """主键、外键以及被其他实体外键引用的字段，改写会破坏行定位或级联关联"""
    names = list(primary_key) + list(referenced)
    for relation in desc.relations:
        if relation.is_owning:
            names.extend(relation.foreign_key)
    return tuple(dict.fromkeys(names))


def referenced_key_fields(descriptions: Iterable[EntityDescription]) -> Dict[str, Tuple[str, ...]]:
    """被其他实体外键显式引用的非主键字段（实体名 -> 字段）

    外键通过 references 指向父实体的唯一字段时，改写该字段会破坏关联，
    恢复时也无法再按原值找回子记录。
    """
    referenced: Dict[str, List[str]] = {}
    for desc in descriptions:
        for relation in desc.relations:
            if relation.is_owning and relation.references:
                referenced.setdefault(relation.target, []).extend(relation.references)
    return {name: tuple(dict.fromkeys(fields)) for name, fields in referenced.items()}


def extract_mangle_fields(
    desc: EntityDescription,
    constraints: Sequence[UniqueConstraintInfo],
    exclude: Sequence[str] = (),
) -> Tuple[str, ...]:
    """mangle 策略下需要改写的字段，按 ASCII 排序（排除 key_fields）"""
    names = set()
    for constraint in constraints:
        if constraint.partial:
            continue
        for name in constraint.fields:
            if name not in exclude and is_mangleable(desc.get_field(name)):
                names.add(name)
    return tuple(sorted(names))


def parse_audit_actions(audit) -> Tuple[AuditAction, ...]:
    """解析审计声明

    - None / False: 不审计
    - True: 审计 create / update / delete
    - 字符串或列表: 逗号分隔或逐项列出，未知动作忽略
    """
    if audit is None or audit is False:
        return ()
    if audit is True:
        return DECLARABLE_AUDIT_ACTIONS
    if isinstance(audit, str):
        audit = audit.split(",")

    valid = {a.value: a for a in DECLARABLE_AUDIT_ACTIONS}
    actions: List[AuditAction] = []
    for item in audit:
        key = item.value if isinstance(item, AuditAction) else str(item).strip()
        action = valid.get(key)
        if action is not None and action not in actions:
            actions.append(action)
    return tuple(actions)


def parse_entity(
    desc: EntityDescription,
    deleted_at_override: Optional[str] = None,
    deleted_by_override: Optional[str] = None,
    referenced_keys: Sequence[str] = (),
) -> Entity:
    """把 EntityDescription 解析为 Entity

    referenced_keys 为其他实体外键显式引用的本实体字段，见 referenced_key_fields。
    """
    deleted_at = detect_deleted_at_field(desc, deleted_at_override)
    constraints = extract_unique_constraints(desc, deleted_at)
    audit_actions = parse_audit_actions(desc.audit)

    if desc.audit_table:
        kind = EntityKind.AUDIT_TABLE
    elif deleted_at is not None:
        kind = EntityKind.SOFT_DELETABLE
    elif audit_actions:
        kind = EntityKind.AUDIT_ONLY
    else:
        kind = EntityKind.PLAIN

    soft = kind == EntityKind.SOFT_DELETABLE
    primary_key = extract_primary_key(desc)
    keys = key_fields(desc, primary_key, referenced_keys)
    return Entity(
        name=desc.name,
        table_name=desc.table_name or desc.name,
        kind=kind,
        primary_key=primary_key,
        fields=desc.fields,
        relations=desc.relations,
        unique_constraints=constraints,
        mangle_fields=extract_mangle_fields(desc, constraints, keys) if soft else (),
        key_fields=keys,
        deleted_at_field=deleted_at if soft else None,
        deleted_by_field=detect_deleted_by_field(desc, deleted_by_override) if soft else None,
        audit_actions=() if kind == EntityKind.AUDIT_TABLE else audit_actions,
    )


__all__ = [
    "DELETED_AT_FIELD_NAMES",
    "DELETED_BY_FIELD_NAMES",
    "EntityKind",
    "AuditAction",
    "DECLARABLE_AUDIT_ACTIONS",
    "UniqueConstraintInfo",
    "CascadeChild",
    "Entity",
    "detect_deleted_at_field",
    "detect_deleted_by_field",
    "extract_primary_key",
    "extract_unique_constraints",
    "is_mangleable",
    "referenced_key_fields",
    "key_fields",
    "extract_mangle_fields",
    "parse_audit_actions",
    "parse_entity",
]
