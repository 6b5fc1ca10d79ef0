"""
同级分类排序

所有操作都根据“期望的最终顺序”重新给整组分配 0..n-1，
而不是只写增量，因此中途失败后重放同一操作即可修复。
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Sequence

from app.core.errors import NotFound, ValidationError
from app.services.category_records import CategoryRecord


class MoveDirection(str, Enum):
    up = "up"
    down = "down"


@dataclass(frozen=True)
class OrderAssignment:
    id: int
    displayOrder: int


def reorder(new_sibling_order: Sequence[int]) -> list[OrderAssignment]:
    """按给定顺序分配 0, 1, 2, ...；与旧值无关，重复调用结果相同"""
    seen: set[int] = set()
    for category_id in new_sibling_order:
        if category_id in seen:
            raise ValidationError(f"排序列表中存在重复的分类 ID: {category_id}")
        seen.add(category_id)
    return [OrderAssignment(id=category_id, displayOrder=index) for index, category_id in enumerate(new_sibling_order)]


def move_adjacent(
    category_id: int,
    direction: MoveDirection,
    siblings_in_order: Sequence[CategoryRecord],
) -> list[OrderAssignment]:
    """与相邻分类交换位置；已在边界时顺序不变（仍返回整组的规范化结果）"""
    ids = [s.id for s in siblings_in_order]
    if category_id not in ids:
        raise NotFound(category_id=category_id)

    index = ids.index(category_id)
    target = index - 1 if MoveDirection(direction) == MoveDirection.up else index + 1
    if 0 <= target < len(ids):
        ids[index], ids[target] = ids[target], ids[index]
    return reorder(ids)


def renormalize(siblings_in_order: Sequence[CategoryRecord]) -> list[OrderAssignment]:
    """插入/删除之后把整组压缩回连续的 0..n-1"""
    return reorder([s.id for s in siblings_in_order])


def append_position(siblings: Iterable[CategoryRecord]) -> int:
    """新加入该组的分类应使用的 displayOrder（排在最后）"""
    orders = [s.displayOrder for s in siblings]
    return max(orders) + 1 if orders else 0


def changed_assignments(
    assignments: Iterable[OrderAssignment],
    records: Iterable[CategoryRecord],
) -> list[OrderAssignment]:
    """只保留与当前存储值不同的分配，减少写入"""
    current = {r.id: r.displayOrder for r in records}
    return [a for a in assignments if current.get(a.id) != a.displayOrder]
