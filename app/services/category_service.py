"""
分类服务（门面）

管理端的创建/编辑/移动/排序/换父/删除/批量操作都从这里进入。
每次涉及父子关系或删除的操作都会先重新读取完整分类集合，再做校验和写入，
不在请求之间缓存任何分类数据。
"""
import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

from app.core.config import settings
from app.core.errors import NotFound, PermissionDenied, ValidationError
from app.core.security import AuthorizationContext
from app.core.slugs import is_derived_from, slugify, unique_slug
from app.services.category_bulk import BulkMutationEngine, BulkResult, DeleteImpact, DeletePolicy, ProductPolicy
from app.services.category_order import (
    MoveDirection,
    OrderAssignment,
    append_position,
    changed_assignments,
    move_adjacent,
    renormalize,
    reorder,
)
from app.services.category_records import CategoryRecord
from app.services.category_store import CategoryStore
from app.services.category_tree import (
    CategoryNode,
    ancestor_ids,
    build_tree,
    descendant_ids,
    flatten_tree,
    prune_hidden,
    resolved_parent_id,
    sibling_group,
)
from app.services.category_validity import ensure_can_reparent

logger = logging.getLogger(__name__)

CREATE_FIELDS = frozenset({"name", "slug", "description", "emoji", "parentId", "displayOrder", "isVisible"})
UPDATE_FIELDS = frozenset({"name", "slug", "description", "emoji", "parentId", "isVisible"})


class CategoryService:
    def __init__(self, store: CategoryStore):
        self.store = store
        self.bulk = BulkMutationEngine(store)

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    def list_tree(self, auth: AuthorizationContext, visible_only: bool = False) -> list[CategoryNode]:
        """完整分类树；未授权调用方只能看到前台可见的部分"""
        forest = build_tree(self.store.fetch_all_categories())
        if visible_only or not auth.is_authorized:
            forest = prune_hidden(forest)
        return forest

    def list_flat(self, auth: AuthorizationContext, visible_only: bool = False) -> list[tuple[CategoryNode, int]]:
        return list(flatten_tree(self.list_tree(auth, visible_only)))

    def get(self, auth: AuthorizationContext, category_id: int) -> CategoryRecord:
        by_id = {r.id: r for r in self.store.fetch_all_categories()}
        record = by_id.get(category_id)
        if record is None:
            raise NotFound(category_id=category_id)
        if not auth.is_authorized and not _visible_in_storefront(by_id, record):
            # 隐藏分类对前台表现为不存在
            raise NotFound(category_id=category_id)
        return record

    # ------------------------------------------------------------------
    # 单个分类
    # ------------------------------------------------------------------
    def create(self, auth: AuthorizationContext, fields: Mapping[str, Any]) -> CategoryRecord:
        _require(auth)
        _reject_unknown(fields, CREATE_FIELDS)

        name = _clean_name(fields.get("name"))
        records = self.store.fetch_all_categories()
        by_id = {r.id: r for r in records}

        parent_id = fields.get("parentId")
        if parent_id is not None and parent_id not in by_id:
            raise NotFound("父分类不存在", category_id=parent_id)

        siblings = sibling_group(records, parent_id)
        _ensure_unique_name(name, siblings)

        taken = {r.slug for r in records}
        if fields.get("slug"):
            slug = _explicit_slug(fields["slug"], taken)
        else:
            slug = unique_slug(slugify(name), taken)

        display_order = fields.get("displayOrder")
        if display_order is None:
            display_order = append_position(siblings)

        values = {
            "name": name,
            "slug": slug,
            "customSlug": bool(fields.get("slug")),
            "description": fields.get("description") or "",
            "emoji": fields.get("emoji") or settings.DEFAULT_CATEGORY_EMOJI,
            "parentId": parent_id,
            "displayOrder": int(display_order),
            "isVisible": fields.get("isVisible") is not False,
        }
        new_id = self.store.insert_one(values)
        logger.info("新增分类: actor=%s id=%s name=%s parentId=%s", auth.actor, new_id, name, parent_id)
        return self._reload(new_id)

    def update(self, auth: AuthorizationContext, category_id: int, fields: Mapping[str, Any]) -> CategoryRecord:
        """编辑分类字段；包含 parentId 时走与 reparent 相同的环检测"""
        _require(auth)
        if "displayOrder" in fields:
            raise ValidationError("displayOrder 只能通过 move/reorder 修改")
        _reject_unknown(fields, UPDATE_FIELDS)

        records = self.store.fetch_all_categories()
        by_id = {r.id: r for r in records}
        current = by_id.get(category_id)
        if current is None:
            raise NotFound(category_id=category_id)

        changes: dict[str, Any] = {}
        order_updates: dict[int, dict[str, Any]] = {}

        target_parent = fields["parentId"] if "parentId" in fields else current.parentId
        if target_parent != current.parentId:
            changes, order_updates = self._plan_reparent(records, current, target_parent)

        name = current.name
        if "name" in fields:
            name = _clean_name(fields["name"])
            if name != current.name:
                changes["name"] = name
        if "name" in changes or "parentId" in changes:
            group_parent = target_parent if "parentId" in changes else resolved_parent_id(current, by_id)
            siblings = [s for s in sibling_group(records, group_parent) if s.id != category_id]
            _ensure_unique_name(name, siblings)

        taken = {r.slug for r in records if r.id != category_id}
        if fields.get("slug"):
            slug = _explicit_slug(fields["slug"], taken)
            if slug != current.slug:
                changes["slug"] = slug
            if not current.customSlug:
                changes["customSlug"] = True
        elif "name" in changes and not current.customSlug and is_derived_from(current.slug, current.name):
            changes["slug"] = unique_slug(slugify(name), taken)

        if "description" in fields:
            changes["description"] = fields["description"] or ""
        if fields.get("emoji"):
            changes["emoji"] = fields["emoji"]
        if "isVisible" in fields and fields["isVisible"] is not None:
            changes["isVisible"] = bool(fields["isVisible"])

        if not changes:
            return current

        with self.store.transaction():
            if not self.store.update_one(category_id, changes):
                raise NotFound(category_id=category_id)
            if order_updates:
                self.store.update_each(order_updates)

        logger.info("更新分类: actor=%s id=%s fields=%s", auth.actor, category_id, sorted(changes))
        return self._reload(category_id)

    def reparent(
        self,
        auth: AuthorizationContext,
        category_id: int,
        new_parent_id: Optional[int],
    ) -> CategoryRecord:
        """更换父分类；先做环检测，不合法时抛 CyclicAssignment 且不写入任何数据"""
        _require(auth)
        records = self.store.fetch_all_categories()
        by_id = {r.id: r for r in records}
        current = by_id.get(category_id)
        if current is None:
            raise NotFound(category_id=category_id)
        if new_parent_id == current.parentId:
            return current

        changes, order_updates = self._plan_reparent(records, current, new_parent_id)
        siblings = [s for s in sibling_group(records, new_parent_id) if s.id != category_id]
        _ensure_unique_name(current.name, siblings)

        with self.store.transaction():
            if not self.store.update_one(category_id, changes):
                raise NotFound(category_id=category_id)
            if order_updates:
                self.store.update_each(order_updates)

        logger.info(
            "分类换父: actor=%s id=%s from=%s to=%s",
            auth.actor, category_id, current.parentId, new_parent_id,
        )
        return self._reload(category_id)

    def _plan_reparent(
        self,
        records: Sequence[CategoryRecord],
        current: CategoryRecord,
        new_parent_id: Optional[int],
    ) -> tuple[dict[str, Any], dict[int, dict[str, Any]]]:
        if new_parent_id is not None and new_parent_id != current.id:
            if new_parent_id not in {r.id for r in records}:
                raise NotFound("父分类不存在", category_id=new_parent_id)
        ensure_can_reparent(current.id, new_parent_id, records)

        # 移入新组时排在最后；旧组去掉该分类后重新压缩
        new_siblings = [s for s in sibling_group(records, new_parent_id) if s.id != current.id]
        changes = {"parentId": new_parent_id, "displayOrder": append_position(new_siblings)}

        old_parent = resolved_parent_id(current, {r.id for r in records})
        old_siblings = [s for s in sibling_group(records, old_parent) if s.id != current.id]
        order_updates = {
            a.id: {"displayOrder": a.displayOrder}
            for a in changed_assignments(renormalize(old_siblings), old_siblings)
        }
        return changes, order_updates

    # ------------------------------------------------------------------
    # 排序
    # ------------------------------------------------------------------
    def move(
        self,
        auth: AuthorizationContext,
        category_id: int,
        direction: MoveDirection,
    ) -> list[OrderAssignment]:
        """上移/下移一位，返回整组的新顺序；已在边界时为空操作"""
        _require(auth)
        try:
            direction = MoveDirection(direction)
        except ValueError as exc:
            raise ValidationError("direction 只能是 up 或 down") from exc

        records = self.store.fetch_all_categories()
        current = next((r for r in records if r.id == category_id), None)
        if current is None:
            raise NotFound(category_id=category_id)

        siblings = sibling_group(records, resolved_parent_id(current, {r.id for r in records}))
        assignments = move_adjacent(category_id, direction, siblings)
        self._persist_order(assignments, siblings)
        logger.info("移动分类: actor=%s id=%s direction=%s", auth.actor, category_id, direction.value)
        return assignments

    def reorder(
        self,
        auth: AuthorizationContext,
        parent_id: Optional[int],
        new_order: Sequence[int],
    ) -> list[OrderAssignment]:
        """
        拖拽排序：按 new_order 给整组重新编号 0..n-1

        new_order 中未出现的同级分类（例如在选择之后才新建的）按原顺序排在末尾，
        保证整组始终连续。同一个 new_order 重复提交结果相同。
        """
        _require(auth)
        if not new_order:
            raise ValidationError("排序列表不能为空")

        records = self.store.fetch_all_categories()
        by_id = {r.id: r for r in records}
        if parent_id is not None and parent_id not in by_id:
            raise NotFound("父分类不存在", category_id=parent_id)

        for category_id in new_order:
            record = by_id.get(category_id)
            if record is None:
                raise NotFound(category_id=category_id)
            if resolved_parent_id(record, by_id) != parent_id:
                raise ValidationError(f"分类 {category_id} 不属于该同级分组")

        siblings = sibling_group(records, parent_id)
        mentioned = set(new_order)
        full_order = list(new_order) + [s.id for s in siblings if s.id not in mentioned]
        assignments = reorder(full_order)
        self._persist_order(assignments, siblings)
        logger.info("分类排序: actor=%s parentId=%s count=%d", auth.actor, parent_id, len(assignments))
        return assignments

    def _persist_order(self, assignments: Iterable[OrderAssignment], siblings: Sequence[CategoryRecord]) -> None:
        pending = changed_assignments(assignments, siblings)
        if pending:
            self.store.update_each({a.id: {"displayOrder": a.displayOrder} for a in pending})

    # ------------------------------------------------------------------
    # 删除与批量
    # ------------------------------------------------------------------
    def delete(
        self,
        auth: AuthorizationContext,
        category_id: int,
        policy: Optional[DeletePolicy] = None,
        product_policy: Optional[ProductPolicy] = None,
        reassign_to: Optional[int] = None,
    ) -> BulkResult:
        _require(auth)
        records = self.store.fetch_all_categories()
        if category_id not in {r.id for r in records}:
            raise NotFound(category_id=category_id)
        return self.bulk.bulk_delete(
            [category_id],
            policy=_delete_policy(policy),
            product_policy=_product_policy(product_policy),
            reassign_to=reassign_to,
            records=records,
            actor=auth.actor,
        )

    def delete_impact(self, auth: AuthorizationContext, category_id: int) -> DeleteImpact:
        """删除前预览：子分类、子孙分类与商品数量，不写入任何数据"""
        _require(auth)
        records = self.store.fetch_all_categories()
        if category_id not in {r.id for r in records}:
            raise NotFound(category_id=category_id)
        descendants = descendant_ids(records, category_id)
        return DeleteImpact(
            category_id=category_id,
            children=len(sibling_group(records, category_id)),
            descendants=len(descendants),
            products=self.store.count_products([category_id]),
            descendant_products=self.store.count_products(descendants),
        )

    def bulk_set_visibility(self, auth: AuthorizationContext, ids: Iterable[int], visible: bool) -> BulkResult:
        _require(auth)
        return self.bulk.bulk_set_visibility(_bulk_ids(ids), visible, actor=auth.actor)

    def bulk_delete(
        self,
        auth: AuthorizationContext,
        ids: Iterable[int],
        policy: Optional[DeletePolicy] = None,
        product_policy: Optional[ProductPolicy] = None,
        reassign_to: Optional[int] = None,
    ) -> BulkResult:
        _require(auth)
        return self.bulk.bulk_delete(
            _bulk_ids(ids),
            policy=_delete_policy(policy),
            product_policy=_product_policy(product_policy),
            reassign_to=reassign_to,
            actor=auth.actor,
        )

    def _reload(self, category_id: int) -> CategoryRecord:
        record = next((r for r in self.store.fetch_all_categories() if r.id == category_id), None)
        if record is None:
            raise NotFound(category_id=category_id)
        return record


def _require(auth: AuthorizationContext) -> None:
    if not auth.is_authorized:
        raise PermissionDenied()


def _reject_unknown(fields: Mapping[str, Any], allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"不支持的字段: {', '.join(sorted(unknown))}")


def _clean_name(value: Any) -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError("分类名称不能为空")
    return name


def _ensure_unique_name(name: str, siblings: Iterable[CategoryRecord]) -> None:
    folded = name.casefold()
    if any(s.name.casefold() == folded for s in siblings):
        raise ValidationError("同一层级下已存在同名分类")


def _explicit_slug(value: str, taken: set[str]) -> str:
    slug = slugify(value)
    if slug in taken:
        raise ValidationError(f"slug 已被占用: {slug}")
    return slug


def _visible_in_storefront(by_id: dict[int, CategoryRecord], record: CategoryRecord) -> bool:
    if not record.isVisible:
        return False
    return all(by_id[a].isVisible for a in ancestor_ids(by_id, record.id))


def _bulk_ids(ids: Iterable[int]) -> list[int]:
    unique = sorted({int(i) for i in ids})
    if not unique:
        raise ValidationError("分类 ID 列表不能为空")
    if len(unique) > settings.MAX_BULK_IDS:
        raise ValidationError(f"单次批量操作最多 {settings.MAX_BULK_IDS} 个分类")
    return unique


def _delete_policy(policy: Optional[DeletePolicy]) -> DeletePolicy:
    return DeletePolicy(policy or settings.DEFAULT_DELETE_POLICY)


def _product_policy(policy: Optional[ProductPolicy]) -> ProductPolicy:
    return ProductPolicy(policy or settings.DEFAULT_PRODUCT_POLICY)
