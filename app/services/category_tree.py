"""
分类层级构建

把扁平的 parentId 记录组装成有序森林。纯函数，不访问数据库，每个请求重新计算。
"""
from dataclasses import dataclass, field
from typing import Container, Iterable, Iterator, Optional

from app.services.category_records import CategoryRecord


@dataclass
class CategoryNode:
    """树视图中的一个节点；children 只存在于视图中，不回写到记录"""
    record: CategoryRecord
    children: list["CategoryNode"] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.record.id


def _sort_siblings(nodes: list[CategoryNode]) -> None:
    stack = [nodes]
    while stack:
        group = stack.pop()
        group.sort(key=lambda n: n.record.sort_key)
        stack.extend(n.children for n in group if n.children)


def build_tree(records: Iterable[CategoryRecord]) -> list[CategoryNode]:
    """
    扁平记录 -> 森林

    - parentId 为空，或指向不存在的分类，则作为根节点（孤儿提升，不丢数据）
    - 每一层按 (displayOrder, id) 排序
    - 对已经损坏、带环的数据，同样把环上节点提升为根，保证每个 ID 恰好出现一次
    """
    nodes: dict[int, CategoryNode] = {}
    for record in records:
        nodes.setdefault(record.id, CategoryNode(record))

    roots: list[CategoryNode] = []
    for node in nodes.values():
        parent_id = resolved_parent_id(node.record, nodes)
        if parent_id is not None:
            nodes[parent_id].children.append(node)
        else:
            roots.append(node)

    reachable = _reachable_ids(roots)
    if len(reachable) < len(nodes):
        for node_id in sorted(nodes):
            if node_id in reachable:
                continue
            # 断开环：取环上最小的 ID，从其父节点的 children 中摘下，作为根
            node = nodes[min(_cycle_ids(nodes, node_id))]
            parent = nodes[node.record.parentId]
            parent.children = [c for c in parent.children if c.id != node.id]
            roots.append(node)
            reachable |= _reachable_ids([node])

    _sort_siblings(roots)
    return roots


def _reachable_ids(roots: Iterable[CategoryNode]) -> set[int]:
    seen: set[int] = set()
    stack = list(roots)
    while stack:
        node = stack.pop()
        if node.id in seen:
            continue
        seen.add(node.id)
        stack.extend(node.children)
    return seen


def _cycle_ids(nodes: dict[int, CategoryNode], start_id: int) -> list[int]:
    # 不可达节点沿 parentId 向上一定会进入一个环
    path: list[int] = []
    seen: set[int] = set()
    current = start_id
    while current not in seen:
        seen.add(current)
        path.append(current)
        current = nodes[current].record.parentId
    return path[path.index(current):]


def flatten_tree(forest: Iterable[CategoryNode], depth: int = 0) -> Iterator[tuple[CategoryNode, int]]:
    """按渲染顺序展开森林，附带层级深度（管理端表格用）"""
    for node in forest:
        yield node, depth
        yield from flatten_tree(node.children, depth + 1)


def prune_hidden(forest: Iterable[CategoryNode]) -> list[CategoryNode]:
    """去掉不可见节点及其整棵子树，返回新的森林（前台展示用）"""
    pruned: list[CategoryNode] = []
    for node in forest:
        if not node.record.isVisible:
            continue
        pruned.append(CategoryNode(node.record, prune_hidden(node.children)))
    return pruned


def resolved_parent_id(record: CategoryRecord, known_ids: Container[int]) -> Optional[int]:
    """与 build_tree 一致：父分类不存在或指向自身时视为根"""
    parent_id = record.parentId
    if parent_id is None or parent_id == record.id or parent_id not in known_ids:
        return None
    return parent_id


def children_index(records: Iterable[CategoryRecord]) -> dict[Optional[int], list[CategoryRecord]]:
    """parentId -> 有序子分类列表（根分类、孤儿分类都在 None 键下）"""
    records = list(records)
    known_ids = {r.id for r in records}
    index: dict[Optional[int], list[CategoryRecord]] = {}
    for record in records:
        index.setdefault(resolved_parent_id(record, known_ids), []).append(record)
    for group in index.values():
        group.sort(key=lambda r: r.sort_key)
    return index


def sibling_group(records: Iterable[CategoryRecord], parent_id: Optional[int]) -> list[CategoryRecord]:
    return children_index(records).get(parent_id, [])


def descendant_ids(records: Iterable[CategoryRecord], category_id: int) -> set[int]:
    """
    category_id 的全部子孙 ID（不含自身）

    遍历步数以记录总数为上限，即使数据里已经有环也一定会结束。
    """
    records = list(records)
    index = children_index(records)
    found: set[int] = set()
    queue = [category_id]
    steps = 0
    while queue and steps <= len(records):
        steps += 1
        current = queue.pop()
        for child in index.get(current, []):
            if child.id in found or child.id == category_id:
                continue
            found.add(child.id)
            queue.append(child.id)
    return found


def ancestor_ids(by_id: dict[int, CategoryRecord], category_id: int) -> list[int]:
    """从直接父分类开始向上的祖先链（遇到缺失的父分类或环即停止）"""
    chain: list[int] = []
    seen = {category_id}
    current = by_id.get(category_id)
    while current is not None and current.parentId is not None:
        parent_id = current.parentId
        if parent_id in seen or parent_id not in by_id:
            break
        chain.append(parent_id)
        seen.add(parent_id)
        current = by_id[parent_id]
    return chain
