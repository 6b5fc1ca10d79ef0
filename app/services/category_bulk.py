"""
分类批量变更

一次逻辑变更（可见性、删除）作用于一组分类 ID。
已不存在的 ID 直接忽略；实际生效数量通过 BulkResult 与请求数量对比得出。
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from app.core.errors import NotFound, PartialBulkFailure, ValidationError
from app.services.category_order import changed_assignments, renormalize
from app.services.category_records import CategoryRecord
from app.services.category_store import CategoryStore
from app.services.category_tree import ancestor_ids, children_index, resolved_parent_id

logger = logging.getLogger(__name__)


class DeletePolicy(str, Enum):
    """被删分类的子孙如何处理"""
    promote = "promote"  # 挂到最近的存活祖先下，没有则成为根
    cascade = "cascade"  # 一并删除


class ProductPolicy(str, Enum):
    """引用被删分类的商品如何处理"""
    detach = "detach"      # categoryId 置空
    reassign = "reassign"  # 转移到指定分类


@dataclass(frozen=True)
class BulkResult:
    requested: int
    count: int
    missing: tuple[int, ...] = ()
    cascaded: int = 0
    promoted: int = 0
    products_updated: int = 0

    @property
    def partial(self) -> bool:
        return self.count < self.requested

    def raise_for_partial(self) -> "BulkResult":
        if self.partial:
            raise PartialBulkFailure(self.requested, self.count, self.missing)
        return self


@dataclass(frozen=True)
class DeleteImpact:
    """删除前的影响预览"""
    category_id: int
    children: int
    descendants: int
    products: int
    # 子孙分类上的商品，只有 cascade 时才会受影响
    descendant_products: int


@dataclass
class DeletionPlan:
    selected: set[int]
    missing: set[int]
    delete_ids: set[int]
    # 存活分类需要写入的字段（promote 的新 parentId，以及受影响同级组的 displayOrder）
    updates: dict[int, dict[str, Any]] = field(default_factory=dict)
    promoted: set[int] = field(default_factory=set)

    @property
    def cascaded(self) -> set[int]:
        return self.delete_ids - self.selected


def plan_deletion(
    records: Sequence[CategoryRecord],
    ids: Iterable[int],
    policy: DeletePolicy = DeletePolicy.promote,
) -> DeletionPlan:
    """计算删除方案（纯函数）：删哪些、哪些子分类换父、各组重新排序"""
    by_id = {r.id: r for r in records}
    requested = set(ids)
    selected = {i for i in requested if i in by_id}
    missing = requested - selected
    index = children_index(records)

    delete_ids = set(selected)
    if DeletePolicy(policy) == DeletePolicy.cascade:
        queue = list(selected)
        while queue:
            current = queue.pop()
            for child in index.get(current, []):
                if child.id not in delete_ids:
                    delete_ids.add(child.id)
                    queue.append(child.id)

    new_parent: dict[int, Optional[int]] = {}
    for record in records:
        if record.id in delete_ids or record.parentId not in delete_ids:
            continue
        new_parent[record.id] = next(
            (a for a in ancestor_ids(by_id, record.id) if a not in delete_ids),
            None,
        )

    plan = DeletionPlan(selected=selected, missing=missing, delete_ids=delete_ids, promoted=set(new_parent))

    # 受影响的同级组：失去成员的组 + 接收被提升子分类的组
    affected_groups = {resolved_parent_id(by_id[i], by_id) for i in delete_ids} | set(new_parent.values())
    for parent_id in affected_groups:
        if parent_id in delete_ids:
            continue
        staying = [
            r for r in index.get(parent_id, [])
            if r.id not in delete_ids and r.id not in new_parent
        ]
        arriving = sorted(
            (by_id[cid] for cid, pid in new_parent.items() if pid == parent_id),
            key=lambda r: (by_id[r.parentId].sort_key, r.sort_key),
        )
        assignments = renormalize(staying + arriving)
        for assignment in assignments:
            if assignment.id in new_parent:
                plan.updates[assignment.id] = {"parentId": parent_id, "displayOrder": assignment.displayOrder}
        for assignment in changed_assignments(assignments[: len(staying)], staying):
            plan.updates[assignment.id] = {"displayOrder": assignment.displayOrder}

    return plan


class BulkMutationEngine:
    def __init__(self, store: CategoryStore):
        self.store = store

    def bulk_set_visibility(self, ids: Iterable[int], visible: bool, actor: Optional[str] = None) -> BulkResult:
        requested = {int(i) for i in ids}
        with self.store.transaction():
            existing = self.store.existing_ids(requested)
            count = self.store.update_many(existing, {"isVisible": bool(visible)})

        result = BulkResult(
            requested=len(requested),
            count=count,
            missing=tuple(sorted(requested - existing)),
        )
        logger.info(
            "分类批量%s: actor=%s requested=%d updated=%d",
            "显示" if visible else "隐藏", actor, result.requested, result.count,
        )
        if result.partial:
            logger.warning("分类批量更新部分生效: missing=%s", list(result.missing))
        return result

    def bulk_delete(
        self,
        ids: Iterable[int],
        policy: DeletePolicy = DeletePolicy.promote,
        product_policy: ProductPolicy = ProductPolicy.detach,
        reassign_to: Optional[int] = None,
        records: Optional[Sequence[CategoryRecord]] = None,
        actor: Optional[str] = None,
    ) -> BulkResult:
        requested = {int(i) for i in ids}
        if records is None:
            records = self.store.fetch_all_categories()

        plan = plan_deletion(records, requested, policy)
        target = self._product_target(plan, records, ProductPolicy(product_policy), reassign_to)

        with self.store.transaction():
            if plan.updates:
                self.store.update_each(plan.updates)
            products_updated = self.store.reassign_products(plan.delete_ids, target)
            cascaded = self.store.delete_many(plan.cascaded)
            count = self.store.delete_many(plan.selected)

        result = BulkResult(
            requested=len(requested),
            count=count,
            missing=tuple(sorted(plan.missing)),
            cascaded=cascaded,
            promoted=len(plan.promoted),
            products_updated=products_updated,
        )
        logger.info(
            "分类批量删除: actor=%s policy=%s productPolicy=%s requested=%d deleted=%d cascaded=%d promoted=%d products=%d",
            actor, DeletePolicy(policy).value, ProductPolicy(product_policy).value,
            result.requested, result.count, result.cascaded, result.promoted, result.products_updated,
        )
        if result.partial:
            logger.warning("分类批量删除部分生效: missing=%s", list(result.missing))
        return result

    @staticmethod
    def _product_target(
        plan: DeletionPlan,
        records: Sequence[CategoryRecord],
        product_policy: ProductPolicy,
        reassign_to: Optional[int],
    ) -> Optional[int]:
        if product_policy == ProductPolicy.detach:
            return None
        if reassign_to is None:
            raise ValidationError("转移商品时必须指定目标分类 reassignTo")
        if reassign_to not in {r.id for r in records}:
            raise NotFound("商品转移的目标分类不存在", category_id=reassign_to)
        if reassign_to in plan.delete_ids:
            raise ValidationError("商品转移的目标分类也在删除范围内")
        return reassign_to
