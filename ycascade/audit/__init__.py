"""审计模块

使用示例:
    from ycascade.audit import AuditTrailWriter, WriteTarget, audited_update

    writer = AuditTrailWriter(schema)
    target = WriteTarget(schema.entity("User"), schema.table("User"), writer, resolver)
    audited_update(session, target, {"id": "u1"}, {"name": "A"}, actor="admin")
"""

from .writer import AuditTrailWriter, merge_audit_context
from .operations import (
    WriteTarget,
    fetch_single,
    audited_create,
    audited_create_many,
    audited_update,
    audited_update_many,
    audited_upsert,
    audited_delete,
    audited_delete_many,
    audited_hard_delete,
    audited_hard_delete_many,
)

__all__ = [
    "AuditTrailWriter",
    "merge_audit_context",
    "WriteTarget",
    "fetch_single",
    "audited_create",
    "audited_create_many",
    "audited_update",
    "audited_update_many",
    "audited_upsert",
    "audited_delete",
    "audited_delete_many",
    "audited_hard_delete",
    "audited_hard_delete_many",
]
