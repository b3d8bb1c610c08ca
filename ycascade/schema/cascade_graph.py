"""级联图

父实体 → 直接级联子实体列表。只有持有外键、且声明级联的一端会成为边。

使用示例:
    graph = build_cascade_graph(entities)
    cascade_order(graph, "User")            # ["Comment", "Post", "User"]
    direct_children(graph, "User")          # (CascadeChild(entity="Post", ...),)
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .entities import CascadeChild, Entity


CascadeGraph = Mapping[str, Tuple[CascadeChild, ...]]


def build_cascade_graph(entities: Mapping[str, Entity], enabled: bool = True) -> CascadeGraph:
    """构建级联图

    Args:
        entities: 实体名 -> Entity
        enabled: 关闭时所有实体的子列表都为空

    Returns:
        只读映射，每个实体都有一个键
    """
    graph: Dict[str, List[CascadeChild]] = {name: [] for name in entities}

    if enabled:
        for entity in entities.values():
            for relation in entity.relations:
                if not relation.on_delete_cascade or relation.is_list:
                    continue
                if not relation.foreign_key:
                    continue

                parent = entities.get(relation.target)
                if parent is None:
                    continue

                # 外键引用非主键唯一字段时必须使用声明的目标字段
                parent_key = relation.references or parent.primary_key
                graph[parent.name].append(CascadeChild(
                    entity=entity.name,
                    foreign_key=relation.foreign_key,
                    parent_key=parent_key,
                    is_soft_deletable=entity.is_soft_deletable,
                    deleted_at_field=entity.deleted_at_field,
                    deleted_by_field=entity.deleted_by_field,
                ))

    return MappingProxyType({name: tuple(children) for name, children in graph.items()})


def cascade_order(graph: CascadeGraph, root: str) -> List[str]:
    """深度优先后序遍历，叶子在前、root 在最后

    已访问集合保证在环上也能终止（build_schema 会先拒绝环）。
    """
    visited = set()
    result: List[str] = []

    def visit(name: str) -> None:
        if name in visited:
            return
        visited.add(name)
        for child in graph.get(name, ()):
            visit(child.entity)
        result.append(name)

    visit(root)
    return result


def direct_children(graph: CascadeGraph, name: str) -> Tuple[CascadeChild, ...]:
    """直接级联子实体"""
    return tuple(graph.get(name, ()))


def has_cascade_children(graph: CascadeGraph, name: str) -> bool:
    """是否有级联子实体"""
    return len(graph.get(name, ())) > 0


def soft_deletable_descendants(
    graph: CascadeGraph,
    entities: Mapping[str, Entity],
    root: str,
) -> List[Entity]:
    """root 之下所有可软删除的后代（不含 root），叶子在前"""
    descendants = []
    for name in cascade_order(graph, root):
        if name == root:
            continue
        entity = entities.get(name)
        if entity is not None and entity.is_soft_deletable:
            descendants.append(entity)
    return descendants


def find_cycle(graph: CascadeGraph) -> Optional[Sequence[str]]:
    """查找级联环

    Returns:
        环上的实体路径（首尾相同），无环时返回 None
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {name: WHITE for name in graph}
    stack: List[str] = []

    def visit(name: str) -> Optional[List[str]]:
        color[name] = GREY
        stack.append(name)
        for child in graph.get(name, ()):
            state = color.get(child.entity, WHITE)
            if state == GREY:
                start = stack.index(child.entity)
                return stack[start:] + [child.entity]
            if state == WHITE:
                found = visit(child.entity)
                if found is not None:
                    return found
        stack.pop()
        color[name] = BLACK
        return None

    for name in graph:
        if color[name] == WHITE:
            found = visit(name)
            if found is not None:
                return found
    return None
