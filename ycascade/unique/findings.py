"""唯一约束诊断

按策略检查每个可软删除实体的唯一约束，返回结构化的 Finding 列表。
构建过程不会自行打印；需要时调用 report_findings 输出到日志。

使用示例:
    result = build_schema(description)
    report_findings(result.findings)

    for finding in result.findings:
        print(finding.entity, finding.fields, finding.suggestion)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from ycascade.config import UniqueStrategy
from ycascade.log import get_logger
from ycascade.schema.entities import Entity, UniqueConstraintInfo

from .strategies import ConstraintClass, ConstraintClassification, classify_constraints

logger = get_logger("ycascade.unique")


class FindingKind(str, Enum):
    """诊断类别"""
    PARTIAL_INDEX_NEEDED = "partial_index_needed"
    NULL_MARKER_COMPOUND = "null_marker_compound"
    SENTINEL_COMPOUND_NEEDED = "sentinel_compound_needed"
    SENTINEL_NULLABLE_MARKER = "sentinel_nullable_marker"


@dataclass(frozen=True)
class Finding:
    """一条诊断

    Attributes:
        entity: 实体名
        fields: 涉及字段（已去掉删除字段）
        kind: 诊断类别
        message: 说明
        suggestion: 建议执行的 SQL 或 schema 修改
    """
    entity: str
    fields: Tuple[str, ...]
    kind: FindingKind
    message: str
    suggestion: Optional[str] = None


def partial_index_sql(entity: Entity, fields: Sequence[str]) -> str:
    """部分唯一索引建议

    例如: CREATE UNIQUE INDEX user_email_active ON "User"(email) WHERE deleted_at IS NULL
    """
    index_name = f"{entity.name.lower()}_{'_'.join(fields)}_active"
    return (
        f'CREATE UNIQUE INDEX {index_name} ON "{entity.table_name}"({", ".join(fields)}) '
        f"WHERE {entity.deleted_at_field} IS NULL"
    )


def _describe(constraint: UniqueConstraintInfo) -> str:
    if len(constraint.fields) == 1:
        return constraint.fields[0]
    return f"({', '.join(constraint.fields)})"


def _none_findings(entity: Entity, classes: Sequence[ConstraintClassification]) -> List[Finding]:
    findings = []
    for item in classes:
        c = item.constraint
        if item.classification == ConstraintClass.PARTIAL_INDEX:
            continue
        if item.classification == ConstraintClass.COMPOUND_WITH_MARKER:
            findings.append(Finding(
                entity=entity.name,
                fields=c.fields,
                kind=FindingKind.NULL_MARKER_COMPOUND,
                message=(
                    f"{entity.name}: 复合唯一约束 {_describe(c)} 包含 {entity.deleted_at_field}，"
                    f"但未删除记录的删除字段都是 NULL，而 NULL != NULL，"
                    f"因此该约束对未删除记录不起作用。可改用 NULLS NOT DISTINCT（PostgreSQL 15+）"
                    f"或部分唯一索引"
                ),
                suggestion=partial_index_sql(entity, c.fields),
            ))
            continue
        findings.append(Finding(
            entity=entity.name,
            fields=c.fields,
            kind=FindingKind.PARTIAL_INDEX_NEEDED,
            message=(
                f"{entity.name}: {_describe(c)} 在 'none' 策略下没有保护，"
                f"已软删除的记录会阻止新记录使用相同的值，需要部分唯一索引"
            ),
            suggestion=partial_index_sql(entity, c.fields),
        ))
    return findings


def _mangle_findings(entity: Entity, classes: Sequence[ConstraintClassification]) -> List[Finding]:
    findings = []
    for item in classes:
        if item.classification != ConstraintClass.NEEDS_PARTIAL_INDEX:
            continue
        c = item.constraint
        keys = [name for name in c.fields if name in entity.key_fields]
        reason = (
            f"字段 {', '.join(keys)} 属于主键、外键或被其他实体的外键引用，不能改写"
            if keys
            else "没有可改写的字符串字段（数值或原生 Uuid 存储）"
        )
        findings.append(Finding(
            entity=entity.name,
            fields=c.fields,
            kind=FindingKind.PARTIAL_INDEX_NEEDED,
            message=(
                f"{entity.name}: {_describe(c)} {reason}，"
                f"mangle 无法释放该约束，需要部分唯一索引"
            ),
            suggestion=partial_index_sql(entity, c.fields),
        ))
    return findings


def _sentinel_findings(
    entity: Entity,
    classes: Sequence[ConstraintClassification],
    sentinel_value: datetime,
) -> List[Finding]:
    findings = []
    marker = entity.deleted_at_field
    marker_field = entity.get_field(marker)
    if marker_field is not None and marker_field.nullable:
        findings.append(Finding(
            entity=entity.name,
            fields=(marker,),
            kind=FindingKind.SENTINEL_NULLABLE_MARKER,
            message=(
                f"{entity.name}.{marker} 可空。'sentinel' 策略要求删除字段为 non-nullable DateTime，"
                f"默认值为 {sentinel_value.isoformat()}，并用 UniqueConstraint(field, '{marker}') 形式声明唯一约束"
            ),
            suggestion=f"{marker} DateTime NOT NULL DEFAULT '{sentinel_value.isoformat()}'",
        ))

    for item in classes:
        if item.classification in (ConstraintClass.COMPOUND_WITH_MARKER, ConstraintClass.PARTIAL_INDEX):
            continue
        c = item.constraint
        findings.append(Finding(
            entity=entity.name,
            fields=c.fields,
            kind=FindingKind.SENTINEL_COMPOUND_NEEDED,
            message=(
                f"{entity.name}: 单独的唯一约束 {_describe(c)}，"
                f"'sentinel' 策略下应改为包含删除字段的复合约束 "
                f"UniqueConstraint({', '.join(repr(name) for name in c.fields)}, {marker!r})"
            ),
            suggestion=f"UNIQUE ({', '.join(c.fields)}, {marker})",
        ))
    return findings


def collect_findings(
    entities: Iterable[Entity],
    strategy: UniqueStrategy,
    sentinel_value: datetime,
    classifications: Optional[Mapping[str, Sequence[ConstraintClassification]]] = None,
) -> List[Finding]:
    """收集所有可软删除实体的诊断"""
    findings: List[Finding] = []
    for entity in entities:
        if not entity.is_soft_deletable:
            continue
        if classifications is not None and entity.name in classifications:
            classes = classifications[entity.name]
        else:
            classes = classify_constraints(entity)

        if strategy == UniqueStrategy.NONE:
            findings.extend(_none_findings(entity, classes))
        elif strategy == UniqueStrategy.MANGLE:
            findings.extend(_mangle_findings(entity, classes))
        elif strategy == UniqueStrategy.SENTINEL:
            findings.extend(_sentinel_findings(entity, classes, sentinel_value))
    return findings


def report_findings(findings: Sequence[Finding], log: Optional[logging.Logger] = None) -> None:
    """把诊断输出到日志（WARNING）"""
    log = log or logger
    for finding in findings:
        if finding.suggestion:
            log.warning(f"{finding.message}\n    建议: {finding.suggestion}")
        else:
            log.warning(finding.message)
