"""级联软删除测试"""

import logging

import pytest

from ycascade import SoftDeleteClient, build_schema
from ycascade.exceptions import ErrorCode, ResourceNotFoundException, ValidationException
from ycascade.schema import RelationDescription, SchemaDescription

from tests.helpers import audit_events, field, make_blog_models, make_client, make_entity


SEED_EVENTS = 8


class TestSoftDelete:
    """单条软删除"""

    def test_cascade_counts(self, seeded):
        """测试 User -> Post -> Comment 的级联计数"""
        result = seeded.User.soft_delete({"id": "u1"}, actor="admin")

        assert result.cascade == {"Post": 2, "Comment": 3}

    def test_single_level_counts(self, seeded):
        result = seeded.User.soft_delete({"id": "u2"}, actor="admin")

        assert result.cascade == {"Post": 1}

    def test_descendants_share_marker(self, seeded):
        """测试整棵子树使用同一个删除标记"""
        result = seeded.User.soft_delete({"id": "u1"}, actor="admin")
        marker = result.record["deleted_at"]

        posts = seeded.Post.including_deleted.find_many({"author_id": "u1"})
        comments = seeded.Comment.including_deleted.find_many({"post_id": {"in": ["p1", "p2"]}})

        assert marker is not None
        assert {p["deleted_at"] for p in posts} == {marker}
        assert {c["deleted_at"] for c in comments} == {marker}
        assert {p["deleted_by"] for p in posts} == {"admin"}

    def test_other_subtrees_untouched(self, seeded):
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        assert [u["id"] for u in seeded.User.find_many()] == ["u2"]
        assert [p["id"] for p in seeded.Post.find_many()] == ["p3"]
        assert seeded.Comment.count() == 0

    def test_non_soft_deletable_children_untouched(self, seeded):
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        assert seeded.Attachment.find_unique({"id": "a1"})["filename"] == "a.png"

    def test_record_is_mangled(self, seeded):
        result = seeded.User.soft_delete({"id": "u1"}, actor="admin")

        assert result.record["email"] == "a@x.com__deleted_u1"
        assert result.record["deleted_by"] == "admin"
        stored = seeded.User.only_deleted.find_unique({"id": "u1"})
        assert stored["email"] == "a@x.com__deleted_u1"

    def test_email_reusable_after_delete(self, seeded):
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        created = seeded.User.create({"id": "u3", "email": "a@x.com"})

        assert created["email"] == "a@x.com"
        assert seeded.User.find_unique({"email": "a@x.com"})["id"] == "u3"

    def test_to_dict(self, seeded):
        data = seeded.User.soft_delete({"id": "u2"}, actor="admin").to_dict()

        assert data["cascade"] == {"Post": 1}
        assert data["record"]["id"] == "u2"


class TestSoftDeleteErrors:
    """失败时不写入任何数据"""

    def test_missing_record(self, seeded):
        with pytest.raises(ResourceNotFoundException):
            seeded.User.soft_delete({"id": "missing"}, actor="admin")

        assert len(audit_events(seeded)) == SEED_EVENTS

    def test_already_deleted(self, seeded):
        seeded.Comment.soft_delete({"id": "c1"})

        with pytest.raises(ResourceNotFoundException):
            seeded.Comment.soft_delete({"id": "c1"})

    def test_actor_required(self, seeded):
        """测试根实体有删除人字段时必须提供 actor"""
        with pytest.raises(ValidationException) as exc_info:
            seeded.User.soft_delete({"id": "u1"})

        assert exc_info.value.code == ErrorCode.ACTOR_REQUIRED
        assert seeded.User.count() == 2
        assert len(audit_events(seeded)) == SEED_EVENTS

    def test_actor_optional_without_field(self, seeded):
        result = seeded.Comment.soft_delete({"id": "c1"})

        assert result.cascade == {}

    def test_value_too_long_rolls_back(self, seeded):
        long_email = "x" * 240 + "@x.com"
        seeded.User.create({"id": "u9", "email": long_email})

        with pytest.raises(ValidationException) as exc_info:
            seeded.User.soft_delete({"id": "u9"}, actor="admin")

        assert exc_info.value.code == ErrorCode.VALUE_TOO_LONG
        assert seeded.User.find_unique({"id": "u9"})["email"] == long_email
        assert audit_events(seeded, action="delete") == []

    def test_not_unique_where(self, seeded):
        with pytest.raises(ValidationException) as exc_info:
            seeded.Post.soft_delete({"author_id": "u1"}, actor="admin")

        assert exc_info.value.code == ErrorCode.NOT_UNIQUE_WHERE
        assert seeded.Post.count() == 3

    def test_plain_entity_rejected(self, seeded):
        with pytest.raises(ValidationException):
            seeded.executor.soft_delete(None, "Attachment", {"id": "a1"})


class TestSoftDeleteAudit:
    """软删除审计"""

    def test_one_event_per_row(self, seeded):
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        events = audit_events(seeded, action="delete")
        assert sorted((e["entity_type"], e["entity_id"]) for e in events) == [
            ("Comment", "c1"), ("Comment", "c2"), ("Comment", "c3"),
            ("Post", "p1"), ("Post", "p2"),
            ("User", "u1"),
        ]
        assert {e["actor_id"] for e in events} == {"admin"}

    def test_event_data_is_pre_delete_snapshot(self, seeded):
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        event = audit_events(seeded, action="delete", entity_type="User")[0]
        assert event["event_data"]["email"] == "a@x.com"
        assert event["event_data"]["deleted_at"] is None

    def test_parent_event_linkage(self, seeded):
        """测试级联事件通过 parent_event_id 指向父记录的事件"""
        seeded.User.soft_delete({"id": "u1"}, actor="admin")

        events = {e["entity_id"]: e for e in audit_events(seeded, action="delete")}
        assert events["u1"]["parent_event_id"] is None
        assert events["p1"]["parent_event_id"] == str(events["u1"]["id"])
        assert events["p2"]["parent_event_id"] == str(events["u1"]["id"])
        assert events["c1"]["parent_event_id"] == str(events["p1"]["id"])
        assert events["c3"]["parent_event_id"] == str(events["p2"]["id"])


class TestSoftDeleteMany:

    def test_with_cascade(self, seeded):
        result = seeded.Post.soft_delete_many({"author_id": "u1"}, actor="admin")

        assert result.count == 2
        assert result.cascade == {"Comment": 3}
        assert len(audit_events(seeded, action="delete")) == 5

    def test_nothing_matched(self, seeded):
        result = seeded.Post.soft_delete_many({"author_id": "nobody"}, actor="admin")

        assert (result.count, result.cascade) == (0, {})

    def test_single_statement_path(self, memory_engine):
        """测试没有子实体、不改写、不审计时的单语句路径"""
        client = make_client(make_blog_models(audit=False), memory_engine)
        client.User.create({"id": "u1", "email": "a@x.com"})
        client.Post.create({"id": "p1", "author_id": "u1", "title": "t"})
        client.Comment.create_many([
            {"id": "c1", "post_id": "p1", "body": "a"},
            {"id": "c2", "post_id": "p1", "body": "b"},
        ])

        result = client.Comment.soft_delete_many({"post_id": "p1"})

        assert (result.count, result.cascade) == (2, {})
        assert client.Comment.count() == 0


class TestCascadeDisabled:

    def test_only_target_row(self, blog_models, memory_engine):
        client = make_client(blog_models, memory_engine, cascade_enabled=False)
        client.User.create({"id": "u1", "email": "a@x.com"})
        client.Post.create({"id": "p1", "author_id": "u1", "title": "t"})

        result = client.User.soft_delete({"id": "u1"}, actor="admin")

        assert result.cascade == {}
        assert client.Post.count() == 1


def folder_description() -> SchemaDescription:
    """Folder（无删除人字段）-> Doc（有删除人字段）"""
    folder = make_entity(
        "Folder",
        [field("id", nullable=False, is_id=True), field("deleted_at", "DateTime")],
        [RelationDescription("docs", "Doc", is_list=True)],
    )
    doc = make_entity(
        "Doc",
        [
            field("id", nullable=False, is_id=True),
            field("folder_id", nullable=False),
            field("deleted_at", "DateTime"),
            field("deleted_by"),
        ],
        [RelationDescription("folder", "Folder", foreign_key=["folder_id"], references=["id"],
                             on_delete_cascade=True)],
    )
    return SchemaDescription(entities=[folder, doc])


class TestDescendantScope:
    """级联可触及的可软删除后代"""

    def test_scope_skips_plain_children(self, client):
        scope = client.executor.scope("User")

        assert {e.name for e in scope} == {"Post", "Comment"}
        assert scope[-1].name == "Post"
        assert client.executor.scope("Comment") == ()

    def test_scope_empty_when_cascade_disabled(self, blog_models, memory_engine):
        client = make_client(blog_models, memory_engine, cascade_enabled=False)

        assert client.executor.scope("User") == ()

    def test_missing_actor_warns_for_descendants(self, memory_engine, caplog):
        schema = build_schema(folder_description())
        schema.metadata.create_all(memory_engine)
        client = SoftDeleteClient(memory_engine, schema)
        client.Folder.create({"id": "f1"})
        client.Doc.create({"id": "d1", "folder_id": "f1"})

        with caplog.at_level(logging.WARNING, logger="ycascade.cascade"):
            result = client.Folder.soft_delete({"id": "f1"})

        assert result.cascade == {"Doc": 1}
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("Doc" in message for message in warnings)

    def test_no_warning_with_actor(self, memory_engine, caplog):
        schema = build_schema(folder_description())
        schema.metadata.create_all(memory_engine)
        client = SoftDeleteClient(memory_engine, schema)
        client.Folder.create({"id": "f1"})

        with caplog.at_level(logging.WARNING, logger="ycascade.cascade"):
            client.Folder.soft_delete({"id": "f1"}, actor="admin")

        assert not [r for r in caplog.records if r.levelno == logging.WARNING]
