"""级联图测试"""

from ycascade import build_schema
from ycascade.schema import (
    CascadeChild,
    RelationDescription,
    SchemaDescription,
    cascade_order,
    direct_children,
    find_cycle,
    has_cascade_children,
    soft_deletable_descendants,
)

from tests.helpers import blog_description, field, make_entity


class TestCascadeGraph:
    """级联图构建与遍历"""

    def setup_method(self):
        self.result = build_schema(blog_description())
        self.graph = self.result.cascade_graph

    def test_every_entity_has_key(self):
        assert set(self.graph) == set(self.result.entities)

    def test_edges(self):
        child, = direct_children(self.graph, "User")

        assert child.entity == "Post"
        assert child.foreign_key == ("author_id",)
        assert child.parent_key == ("id",)
        assert child.is_soft_deletable is True
        assert child.deleted_at_field == "deleted_at"

    def test_has_cascade_children(self):
        assert has_cascade_children(self.graph, "Post") is True
        assert has_cascade_children(self.graph, "Comment") is False

    def test_cascade_order_leaves_first(self):
        assert cascade_order(self.graph, "User") == ["Comment", "Post", "User"]

    def test_soft_deletable_descendants(self):
        names = [e.name for e in soft_deletable_descendants(self.graph, self.result.entities, "User")]

        assert names == ["Comment", "Post"]

    def test_no_cycle(self):
        assert find_cycle(self.graph) is None

    def test_graph_is_read_only(self):
        import pytest

        with pytest.raises(TypeError):
            self.graph["User"] = ()


class TestGraphEdgeCases:
    """边界情况"""

    def test_non_cascade_relation_is_not_edge(self):
        result = build_schema(blog_description(audit=None, cascade=False, with_audit_table=False))

        assert result.cascade_graph["User"] == ()

    def test_references_non_primary_key(self):
        """测试外键引用非主键唯一字段时使用声明的目标字段"""
        team = make_entity("Team", [field("id", is_id=True), field("code", is_unique=True), field("deleted_at", "DateTime")])
        member = make_entity(
            "Member",
            [field("id", is_id=True), field("team_code"), field("deleted_at", "DateTime")],
            [RelationDescription("team", "Team", foreign_key=["team_code"], references=["code"], on_delete_cascade=True)],
        )

        result = build_schema(SchemaDescription(entities=[team, member]))

        child, = result.cascade_graph["Team"]
        assert child.parent_key == ("code",)

    def test_cascade_order_terminates_on_cycle(self):
        """测试手工构造的环图上遍历也能终止"""
        graph = {
            "A": (CascadeChild("B", ("a_id",), ("id",), True),),
            "B": (CascadeChild("A", ("b_id",), ("id",), True),),
        }

        assert cascade_order(graph, "A") == ["B", "A"]
        assert find_cycle(graph) == ["A", "B", "A"]
