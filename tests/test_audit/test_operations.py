"""带审计的写操作测试"""

import json

import pytest
from sqlalchemy.orm import Session

from ycascade import SoftDeleteClient, build_schema
from ycascade.audit import AuditTrailWriter, WriteTarget, audited_create, audited_update
from ycascade.exceptions import (
    ConcurrencyConflictException,
    ErrorCode,
    ResourceNotFoundException,
    ValidationException,
)
from ycascade.query import fetch_rows
from ycascade.unique import UniqueConflictResolver
import ycascade.audit.operations as operations

from tests.helpers import audit_events, blog_description, composite_description, make_blog_models, make_client


SEED_EVENTS = 8


def description_client(engine, audit):
    schema = build_schema(blog_description(audit=audit))
    schema.metadata.create_all(engine)
    return SoftDeleteClient(engine, schema)


class TestCreate:

    def test_create_event(self, seeded):
        events = audit_events(seeded)

        assert len(events) == SEED_EVENTS
        first = events[0]
        assert (first["entity_type"], first["entity_id"], first["action"]) == ("User", "u1", "create")
        assert first["event_data"]["email"] == "a@x.com"
        assert first["event_data"]["deleted_at"] is None

    def test_create_with_actor(self, seeded):
        seeded.Comment.create({"id": "c9", "post_id": "p3", "body": "hi"}, actor="admin")

        event = audit_events(seeded, entity_id="c9")[0]
        assert event["actor_id"] == "admin"

    def test_unaudited_entity(self, seeded):
        seeded.Attachment.create({"id": "a2", "post_id": "p3", "filename": "b.png"})

        assert audit_events(seeded, entity_type="Attachment") == []

    def test_create_many(self, seeded):
        count = seeded.Comment.create_many([
            {"id": "c7", "post_id": "p3", "body": "x"},
            {"id": "c8", "post_id": "p3", "body": "y"},
        ])

        assert count == 2
        assert [e["entity_id"] for e in audit_events(seeded)[SEED_EVENTS:]] == ["c7", "c8"]


class TestUpdate:

    def test_before_after(self, seeded):
        updated = seeded.User.update({"id": "u1"}, {"name": "Al"}, actor="admin")

        event = audit_events(seeded, action="update")[0]
        assert updated["name"] == "Al"
        assert event["event_data"]["before"]["name"] == "Alice"
        assert event["event_data"]["after"]["name"] == "Al"
        assert event["actor_id"] == "admin"

    def test_soft_deleted_row_not_updated(self, seeded):
        seeded.Post.soft_delete({"id": "p3"}, actor="admin")

        with pytest.raises(ResourceNotFoundException):
            seeded.Post.update({"id": "p3"}, {"title": "x"})

        assert audit_events(seeded, action="update") == []

    def test_where_must_be_unique(self, seeded):
        with pytest.raises(ValidationException) as exc_info:
            seeded.Post.update({"author_id": "u1"}, {"title": "x"})

        assert exc_info.value.code == ErrorCode.NOT_UNIQUE_WHERE

    def test_update_many_pairs_by_key(self, seeded):
        """测试批量更新按主键配对前后快照"""
        count = seeded.Post.update_many({"author_id": "u1"}, {"title": "bulk"})

        events = audit_events(seeded, action="update")
        assert count == 2
        assert sorted(e["entity_id"] for e in events) == ["p1", "p2"]
        for event in events:
            assert event["event_data"]["before"]["id"] == event["entity_id"]
            assert event["event_data"]["after"]["id"] == event["entity_id"]
            assert event["event_data"]["after"]["title"] == "bulk"

    def test_update_many_skips_deleted(self, seeded):
        seeded.Post.soft_delete({"id": "p2"}, actor="admin")

        assert seeded.Post.update_many({"author_id": "u1"}, {"title": "bulk"}) == 1


class TestUpsert:

    def test_create_path(self, seeded):
        row = seeded.Post.upsert({"id": "p9"}, {"id": "p9", "author_id": "u2", "title": "new"}, {"title": "upd"})

        assert row["title"] == "new"
        assert audit_events(seeded, entity_id="p9")[0]["action"] == "create"

    def test_update_path(self, seeded):
        row = seeded.Post.upsert({"id": "p1"}, {"id": "p1", "author_id": "u1", "title": "new"}, {"title": "upd"})

        event = audit_events(seeded, action="update")[0]
        assert row["title"] == "upd"
        assert event["event_data"]["before"]["title"] == "first"

    def test_action_gating(self, memory_engine):
        """测试只审计 update 时，upsert 走创建分支不写事件"""
        client = description_client(memory_engine, ["update"])
        client.User.create({"id": "u1", "email": "a@x.com"})

        client.Post.upsert({"id": "p1"}, {"id": "p1", "author_id": "u1"}, {"title": "t"})
        assert client.AuditEvent.count() == 0

        client.Post.upsert({"id": "p1"}, {"id": "p1", "author_id": "u1"}, {"title": "t"})
        assert client.AuditEvent.count({"action": "update"}) == 1


class TestHardDeleteAudit:

    def test_hard_delete_event(self, seeded):
        record = seeded.Comment.hard_delete({"id": "c3"}, actor="admin")

        event = audit_events(seeded, action="hard_delete")[0]
        assert record["id"] == "c3"
        assert event["entity_id"] == "c3"
        assert event["event_data"]["body"] == "ok"
        assert seeded.Comment.including_deleted.find_unique({"id": "c3"}) is None

    def test_gated_by_delete(self, memory_engine):
        client = description_client(memory_engine, ["create", "update"])
        client.User.create({"id": "u1", "email": "a@x.com"})

        client.User.hard_delete({"id": "u1"})

        assert client.AuditEvent.count({"action": "hard_delete"}) == 0

    def test_plain_delete(self, seeded):
        record = seeded.Attachment.delete({"id": "a1"})

        assert record["filename"] == "a.png"
        assert seeded.Attachment.count() == 0

    def test_plain_delete_missing(self, seeded):
        with pytest.raises(ResourceNotFoundException):
            seeded.Attachment.delete({"id": "missing"})


class TestAuditContext:

    def test_global_and_call_context(self, blog_models, memory_engine):
        client = make_client(blog_models, memory_engine, audit_context=lambda: {"request_id": "global"})

        client.User.create({"id": "u1", "email": "a@x.com"})
        client.User.update({"id": "u1"}, {"name": "A"}, context={"request_id": "call", "ip": "dropped"})

        events = audit_events(client)
        assert [e["request_id"] for e in events] == ["global", "call"]
        assert "ip" not in events[1]


class TestWriteTargetDirect:
    """直接使用 WriteTarget"""

    @pytest.fixture
    def schema(self, memory_engine):
        schema = build_schema(composite_description())
        schema.metadata.create_all(memory_engine)
        return schema

    def test_composite_entity_id(self, schema, memory_engine):
        """测试复合主键的 entity_id 为按声明顺序序列化的 JSON"""
        writer = AuditTrailWriter(schema)
        target = WriteTarget(
            schema.entity("Membership"), schema.table("Membership"),
            writer, UniqueConflictResolver(schema.settings),
        )

        with Session(memory_engine) as session:
            audited_create(session, target, {"tenant_id": "t1", "user_id": "u1", "handle": "neo"})
            audited_update(session, target, {"tenant_id": "t1", "user_id": "u1"}, {"handle": "trinity"})
            session.commit()

        client = SoftDeleteClient(memory_engine, schema)
        events = client.AuditEvent.find_many()
        assert len(events) == 2
        assert {e["entity_id"] for e in events} == {json.dumps({"tenant_id": "t1", "user_id": "u1"})}
        assert {e["action"] for e in events} == {"create", "update"}

    def test_create_returns_row_with_key_order_mismatch(self, schema, memory_engine):
        """测试主键声明顺序 (tenant_id, user_id) 与列顺序不同时仍返回完整行"""
        target = WriteTarget(
            schema.entity("Membership"), schema.table("Membership"),
            AuditTrailWriter(schema), UniqueConflictResolver(schema.settings),
        )

        with Session(memory_engine) as session:
            row = audited_create(session, target, {"tenant_id": "t1", "user_id": "u1", "handle": "neo"})
            session.commit()

        assert row["tenant_id"] == "t1"
        assert row["user_id"] == "u1"
        assert row["handle"] == "neo"
        assert "deleted_at" in row

    def test_no_writer(self, schema, memory_engine):
        target = WriteTarget(schema.entity("Membership"), schema.table("Membership"))

        with Session(memory_engine) as session:
            row = audited_create(session, target, {"tenant_id": "t1", "user_id": "u1", "handle": "neo"})
            session.commit()

        assert row["handle"] == "neo"
        assert SoftDeleteClient(memory_engine, schema).AuditEvent.count() == 0


class TestConcurrencyConflict:
    """批量写入前后快照无法按主键对应时，整个操作回滚且不留下审计事件"""

    @pytest.fixture
    def drop_last_read(self, seeded, monkeypatch):
        """批量写入前的读取少返回一行，相当于读取与写入之间插入了一条记录"""
        reads = []

        def fetch(*args, **kwargs):
            rows = fetch_rows(*args, **kwargs)
            reads.append(len(rows))
            return rows[:-1]

        monkeypatch.setattr(operations, "fetch_rows", fetch)
        return reads

    def test_update_many_row_count_mismatch(self, seeded, drop_last_read):
        with pytest.raises(ConcurrencyConflictException) as exc_info:
            seeded.Post.update_many({"author_id": "u1"}, {"title": "changed"}, actor="admin")

        assert exc_info.value.code == ErrorCode.CONCURRENCY_CONFLICT
        assert drop_last_read == [2]
        assert sorted(p["title"] for p in seeded.Post.find_many({"author_id": "u1"})) == ["first", "second"]
        assert len(audit_events(seeded)) == SEED_EVENTS

    def test_update_many_key_not_paired(self, seeded):
        """测试更新主键后按原主键找不到记录"""
        with pytest.raises(ConcurrencyConflictException):
            seeded.Comment.update_many({"id": "c3"}, {"id": "c9"})

        assert seeded.Comment.find_unique({"id": "c3"})["body"] == "ok"
        assert seeded.Comment.find_unique({"id": "c9"}) is None
        assert len(audit_events(seeded)) == SEED_EVENTS

    def test_hard_delete_many_row_count_mismatch(self, seeded, drop_last_read):
        with pytest.raises(ConcurrencyConflictException):
            seeded.Comment.hard_delete_many({"post_id": "p1"}, actor="admin")

        assert drop_last_read == [2]
        assert seeded.Comment.count({"post_id": "p1"}) == 2
        assert audit_events(seeded, action="hard_delete") == []
        assert len(audit_events(seeded)) == SEED_EVENTS
