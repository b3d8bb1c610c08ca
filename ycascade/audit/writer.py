"""审计事件写入

每个被修改的行在所属事务内写入一条审计事件，本库只插入、不更新也不删除事件。
事件的 created_at 由数据库默认值生成。

使用示例:
    from ycascade.audit import AuditTrailWriter

    writer = AuditTrailWriter(schema)
    event_id = writer.write(
        session, "User", "u1", "delete", actor_id="admin",
        payload=row, context={"request_id": "req-1"},
    )
"""

import json
import uuid
from typing import Any, Dict, Mapping, Optional, Sequence

from pydantic_core import to_jsonable_python
from sqlalchemy import insert
from sqlalchemy.orm import Session

from ycascade.exceptions import Err, ErrorCode
from ycascade.log import get_logger
from ycascade.schema.description import FieldType
from ycascade.schema.entities import AuditAction

logger = get_logger("ycascade.audit")


def merge_audit_context(
    global_context: Optional[Mapping[str, Any]],
    call_context: Optional[Mapping[str, Any]],
    allowed_columns: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """合并审计上下文

    合并顺序：先取全局上下文，再用单次调用的上下文逐键覆盖。
    给出 allowed_columns 时只保留审计表上的额外列，其余键丢弃（记 DEBUG 日志，不报错）。

    使用示例:
        merge_audit_context({"ip": "1.1.1.1", "tenant": "a"}, {"tenant": "b"}, ["ip", "tenant"])
        # {"ip": "1.1.1.1", "tenant": "b"}
    """
    merged: Dict[str, Any] = dict(global_context or {})
    merged.update(call_context or {})
    if allowed_columns is None:
        return merged

    allowed = set(allowed_columns)
    dropped = [key for key in merged if key not in allowed]
    if dropped:
        logger.debug(f"审计上下文中的未知字段已丢弃: {', '.join(sorted(dropped))}")
    return {key: value for key, value in merged.items() if key in allowed}


class AuditTrailWriter:
    """审计事件写入器

    Attributes:
        config: 审计表配置（AuditTableConfig），没有审计表时为 None
        table: 审计表
    """

    def __init__(self, schema):
        self.config = schema.audit_table
        self.table = schema.table(self.config.entity) if self.config is not None else None
        self._entity = schema.entity(self.config.entity) if self.config is not None else None

    @property
    def enabled(self) -> bool:
        return self.config is not None

    def _event_data(self, payload: Any) -> Any:
        data = to_jsonable_python(payload)
        field = self._entity.get_field("event_data")
        if field is not None and field.type != FieldType.JSON:
            return json.dumps(data, ensure_ascii=False)
        return data

    def _generated_key(self) -> Dict[str, Any]:
        """单个字符串主键且没有默认值时，由本地生成"""
        if len(self.config.primary_key) != 1:
            return {}
        field = self._entity.get_field(self.config.primary_key[0])
        if field is None or field.has_default or field.type != FieldType.STRING:
            return {}
        return {field.name: uuid.uuid4().hex}

    def write(
        self,
        session: Session,
        entity_type: str,
        entity_id: str,
        action,
        actor_id: Optional[str] = None,
        payload: Any = None,
        parent_event_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """写入一条审计事件

        Args:
            session: 当前事务所在的会话
            entity_type: 实体名
            entity_id: 实体标识（单主键字符串，复合主键为 JSON）
            action: create / update / delete / hard_delete
            actor_id: 操作人
            payload: 事件数据，写入前转换为 JSON 兼容结构
            parent_event_id: 父事件 ID，只有审计表有该列时才写入
            context: 已合并的上下文，只写入白名单中的列

        Returns:
            事件 ID；审计表为复合主键时是 JSON 字符串
        """
        if not self.enabled:
            raise Err.fail("schema 中没有审计表，无法写入审计事件", code=ErrorCode.AUDIT_TABLE_INVALID)

        values: Dict[str, Any] = self._generated_key()
        values.update(merge_audit_context(None, context, self.config.context_columns))
        values.update({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "action": AuditAction(action).value,
            "actor_id": actor_id,
            "event_data": self._event_data(payload),
        })
        if parent_event_id is not None and self.config.has_parent_event_id:
            values["parent_event_id"] = parent_event_id

        result = session.execute(insert(self.table).values(**values))
        names = [column.name for column in self.table.primary_key.columns]
        key = dict(zip(names, result.inserted_primary_key or ()))
        for name in self.config.primary_key:
            if key.get(name) is None and name in values:
                key[name] = values[name]

        if len(self.config.primary_key) > 1:
            event_id = json.dumps(
                {name: key.get(name) for name in self.config.primary_key},
                default=str,
                ensure_ascii=False,
            )
        else:
            event_id = str(key.get(self.config.primary_key[0], ""))

        logger.debug(f"审计事件: {entity_type}#{entity_id} {values['action']} -> {event_id}")
        return event_id
