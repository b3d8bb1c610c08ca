"""实体解析测试

测试删除字段检测、主键提取、唯一约束提取和审计声明解析
"""

import pytest

from ycascade.exceptions import SchemaBuildException
from ycascade.schema import (
    AuditAction,
    EntityKind,
    UniqueDescription,
    detect_deleted_at_field,
    detect_deleted_by_field,
    extract_primary_key,
    parse_audit_actions,
    parse_entity,
)
from ycascade.schema.entities import extract_unique_constraints

from tests.helpers import field, make_entity


class TestDeletedFieldDetection:
    """删除字段约定检测"""

    def test_snake_case(self):
        desc = make_entity("User", [field("id", is_id=True), field("deleted_at", "DateTime")])

        assert detect_deleted_at_field(desc) == "deleted_at"

    def test_camel_case(self):
        desc = make_entity("User", [field("id", is_id=True), field("deletedAt", "DateTime")])

        assert detect_deleted_at_field(desc) == "deletedAt"

    def test_override_takes_priority(self):
        """测试配置的字段名优先于约定名"""
        desc = make_entity("User", [
            field("id", is_id=True),
            field("deleted_at", "DateTime"),
            field("removed_at", "DateTime"),
        ])

        assert detect_deleted_at_field(desc, "removed_at") == "removed_at"

    def test_wrong_type_ignored(self):
        """测试非 DateTime 的同名字段不算删除字段"""
        desc = make_entity("User", [field("id", is_id=True), field("deleted_at", "Boolean")])

        assert detect_deleted_at_field(desc) is None

    def test_required_without_default_ignored(self):
        """测试非空且无默认值的字段不算删除字段"""
        desc = make_entity("User", [field("id", is_id=True), field("deleted_at", "DateTime", nullable=False)])

        assert detect_deleted_at_field(desc) is None

    def test_required_with_default_accepted(self):
        """测试非空但有默认值（哨兵）的字段可以作为删除字段"""
        desc = make_entity("User", [
            field("id", is_id=True),
            field("deleted_at", "DateTime", nullable=False, has_default=True),
        ])

        assert detect_deleted_at_field(desc) == "deleted_at"

    def test_deleted_by(self):
        desc = make_entity("User", [field("id", is_id=True), field("deletedBy")])

        assert detect_deleted_by_field(desc) == "deletedBy"

    def test_deleted_by_must_be_nullable_string(self):
        desc = make_entity("User", [field("id", is_id=True), field("deleted_by", "Int")])

        assert detect_deleted_by_field(desc) is None


class TestPrimaryKey:
    """主键提取"""

    def test_declared(self):
        desc = make_entity("M", [field("a"), field("b")], primary_key=("b", "a"))

        assert extract_primary_key(desc) == ("b", "a")

    def test_id_field(self):
        desc = make_entity("M", [field("code", is_id=True), field("name")])

        assert extract_primary_key(desc) == ("code",)

    def test_first_unique_field(self):
        desc = make_entity("M", [field("name"), field("slug", is_unique=True)])

        assert extract_primary_key(desc) == ("slug",)

    def test_compound_unique(self):
        desc = make_entity(
            "M", [field("a"), field("b")],
            unique_constraints=(UniqueDescription(("a", "b")),),
        )

        assert extract_primary_key(desc) == ("a", "b")

    def test_missing_primary_key(self):
        """测试没有主键时构建失败"""
        desc = make_entity("M", [field("name")])

        with pytest.raises(SchemaBuildException) as exc_info:
            extract_primary_key(desc)

        assert exc_info.value.extra["entity"] == "M"


class TestUniqueConstraints:
    """唯一约束提取"""

    def test_standalone(self):
        desc = make_entity("User", [
            field("id", is_id=True, is_unique=True),
            field("email", is_unique=True),
            field("deleted_at", "DateTime"),
        ])

        constraints = extract_unique_constraints(desc, "deleted_at")

        assert [c.fields for c in constraints] == [("email",)]
        assert constraints[0].standalone is True

    def test_compound_with_deleted_field(self):
        """测试复合约束去掉删除字段并打上标记"""
        desc = make_entity(
            "User",
            [field("id", is_id=True), field("email"), field("deleted_at", "DateTime")],
            unique_constraints=(UniqueDescription(("email", "deleted_at")),),
        )

        constraint, = extract_unique_constraints(desc, "deleted_at")

        assert constraint.fields == ("email",)
        assert constraint.includes_deleted_field is True
        assert constraint.compound_key_name == "email_deleted_at"

    def test_only_deleted_field_dropped(self):
        desc = make_entity(
            "User",
            [field("id", is_id=True), field("deleted_at", "DateTime")],
            unique_constraints=(UniqueDescription(("deleted_at",)),),
        )

        assert extract_unique_constraints(desc, "deleted_at") == ()

    def test_relation_field_skipped(self):
        desc = make_entity("Post", [field("id", is_id=True), field("author", is_unique=True, is_relation=True)])

        assert extract_unique_constraints(desc, None) == ()


class TestAuditActions:
    """审计声明解析"""

    def test_true(self):
        assert parse_audit_actions(True) == (AuditAction.CREATE, AuditAction.UPDATE, AuditAction.DELETE)

    @pytest.mark.parametrize("value", [None, False, [], ""])
    def test_disabled(self, value):
        assert parse_audit_actions(value) == ()

    def test_list_with_unknown(self):
        """测试未知动作被忽略"""
        assert parse_audit_actions(["delete", "read", "create"]) == (AuditAction.DELETE, AuditAction.CREATE)

    def test_comma_string(self):
        assert parse_audit_actions("create, update") == (AuditAction.CREATE, AuditAction.UPDATE)

    def test_hard_delete_follows_delete(self):
        """测试 hard_delete 跟随 delete 开关"""
        entity = parse_entity(make_entity("User", [field("id", is_id=True)], audit=["delete"]))

        assert entity.audits("hard_delete") is True
        assert entity.audits("update") is False


class TestParseEntity:
    """实体类别判定"""

    def test_soft_deletable(self):
        entity = parse_entity(make_entity("User", [
            field("id", is_id=True),
            field("email", is_unique=True),
            field("deleted_at", "DateTime"),
            field("deleted_by"),
        ]))

        assert entity.kind == EntityKind.SOFT_DELETABLE
        assert entity.deleted_by_field == "deleted_by"
        assert entity.mangle_fields == ("email",)

    def test_audit_only(self):
        entity = parse_entity(make_entity("Log", [field("id", is_id=True)], audit=True))

        assert entity.kind == EntityKind.AUDIT_ONLY
        assert entity.is_auditable

    def test_plain(self):
        entity = parse_entity(make_entity("Tag", [field("id", is_id=True)]))

        assert entity.kind == EntityKind.PLAIN
        assert entity.deleted_at_field is None

    def test_audit_table_never_audited(self):
        entity = parse_entity(make_entity("AuditEvent", [field("id", is_id=True)], audit=True, audit_table=True))

        assert entity.kind == EntityKind.AUDIT_TABLE
        assert entity.audit_actions == ()

    def test_mangle_fields_sorted_and_exclude_uuid(self):
        """测试 mangle 字段按 ASCII 排序，原生 Uuid 与数值字段不参与"""
        entity = parse_entity(make_entity(
            "User",
            [
                field("id", is_id=True),
                field("username", is_unique=True),
                field("Email", is_unique=True),
                field("external_id", is_unique=True, native_type="Uuid"),
                field("badge_no", "Int", is_unique=True),
                field("deleted_at", "DateTime"),
            ],
        ))

        assert entity.mangle_fields == ("Email", "username")

    def test_key_fields_not_mangled(self):
        """测试复合约束中的主键与外键字段不参与 mangle"""
        from ycascade.schema import RelationDescription

        entity = parse_entity(make_entity(
            "Post",
            [
                field("id", is_id=True),
                field("author_id"),
                field("slug"),
                field("deleted_at", "DateTime"),
            ],
            [RelationDescription("author", "User", foreign_key=["author_id"], references=["id"])],
            unique_constraints=(UniqueDescription(("author_id", "slug")),),
        ))

        assert entity.mangle_fields == ("slug",)
        assert entity.key_fields == ("id", "author_id")
