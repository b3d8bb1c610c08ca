"""手工构造的 schema 描述"""

from ycascade.schema import (
    EntityDescription,
    FieldDescription,
    RelationDescription,
    SchemaDescription,
    UniqueDescription,
)


def field(name: str, type: str = "String", **kwargs) -> FieldDescription:
    return FieldDescription(name, type, **kwargs)


def make_entity(name: str, fields, relations=(), **kwargs) -> EntityDescription:
    return EntityDescription(name=name, fields=tuple(fields), relations=tuple(relations), **kwargs)


def audit_table_entity(name: str = "AuditEvent", parent_event: bool = True,
                       extra=("request_id",)) -> EntityDescription:
    """审计表描述，主键为没有默认值的字符串（由写入器生成）"""
    fields = [
        field("id", nullable=False, is_id=True),
        field("entity_type", nullable=False),
        field("entity_id", nullable=False),
        field("action", nullable=False),
        field("actor_id"),
        field("event_data", "Json"),
        field("created_at", "DateTime", has_default=True),
    ]
    if parent_event:
        fields.append(field("parent_event_id"))
    fields.extend(field(name) for name in extra)
    return make_entity(name, fields, audit_table=True)


def blog_description(audit=True, cascade: bool = True, with_audit_table: bool = True) -> SchemaDescription:
    """User -> Post -> Comment"""
    user = make_entity(
        "User",
        [
            field("id", nullable=False, is_id=True),
            field("email", nullable=False, is_unique=True, max_length=255),
            field("name"),
            field("deleted_at", "DateTime"),
            field("deleted_by"),
        ],
        [RelationDescription("posts", "Post", is_list=True)],
        audit=audit,
    )
    post = make_entity(
        "Post",
        [
            field("id", nullable=False, is_id=True),
            field("author_id", nullable=False),
            field("title"),
            field("deleted_at", "DateTime"),
        ],
        [
            RelationDescription(
                "author", "User",
                foreign_key=["author_id"], references=["id"], on_delete_cascade=cascade,
            ),
            RelationDescription("comments", "Comment", is_list=True),
        ],
        audit=audit,
    )
    comment = make_entity(
        "Comment",
        [
            field("id", nullable=False, is_id=True),
            field("post_id", nullable=False),
            field("body"),
            field("deleted_at", "DateTime"),
        ],
        [
            RelationDescription(
                "post", "Post",
                foreign_key=["post_id"], references=["id"], on_delete_cascade=cascade,
            ),
        ],
        audit=audit,
    )
    entities = [user, post, comment]
    if with_audit_table:
        entities.append(audit_table_entity())
    return SchemaDescription(entities=entities)


def composite_description() -> SchemaDescription:
    """复合主键实体：Membership(tenant_id, user_id)，handle 唯一"""
    membership = make_entity(
        "Membership",
        [
            field("user_id", nullable=False),
            field("tenant_id", nullable=False),
            field("handle", nullable=False, is_unique=True, max_length=100),
            field("deleted_at", "DateTime"),
        ],
        primary_key=("tenant_id", "user_id"),
        unique_constraints=(UniqueDescription(("tenant_id", "handle"), name="tenant_handle"),),
        audit=True,
    )
    return SchemaDescription(entities=[membership, audit_table_entity()])
