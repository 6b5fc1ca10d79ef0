from typing import Iterable, Optional

from app.core.errors import CyclicAssignment
from app.services.category_records import CategoryRecord
from app.services.category_tree import descendant_ids


def can_reparent(
    category_id: int,
    new_parent_id: Optional[int],
    all_categories: Iterable[CategoryRecord],
) -> bool:
    """检查把 category_id 挂到 new_parent_id 下是否合法（不自指、不成环）。"""
    if new_parent_id is None:
        return True
    if new_parent_id == category_id:
        return False
    return new_parent_id not in descendant_ids(all_categories, category_id)


def ensure_can_reparent(
    category_id: int,
    new_parent_id: Optional[int],
    all_categories: Iterable[CategoryRecord],
) -> None:
    if not can_reparent(category_id, new_parent_id, all_categories):
        raise CyclicAssignment(category_id, new_parent_id)
